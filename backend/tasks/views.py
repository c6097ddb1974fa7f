"""
API Views for TodoMaster tasks.

This module provides the REST API endpoints for managing a user's tasks
and deriving the ranked, filtered view of them. Scores are recomputed
whenever a task is created, fetched or updated, and the list view is
re-derived from the full collection on every request.
"""

import logging

from django.conf import settings
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import SAFE_METHODS, AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle, UserRateThrottle
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from .models import Task, apply_partial_update
from .ranking import (
    SORT_ORDER_DESCRIPTIONS,
    STATUS_CHOICES,
    InvalidFilterError,
    SortOrder,
    TaskFilter,
    is_due_soon,
    is_overdue,
    ranked_view,
    summarize_tasks,
)
from .scoring import (
    CATEGORIES,
    PRIORITY_LEVELS,
    PRIORITY_WEIGHTS,
    ErrorCode,
    ScoringError,
    ScoringWeights,
    UrgencyScorer,
    validate_tasks,
)
from .serializers import (
    TaskQuerySerializer,
    TaskRankRequestSerializer,
    TaskSerializer,
)

logger = logging.getLogger(__name__)


# ============================================
# RATE LIMITING CLASSES
# ============================================

class TaskWriteRateThrottle(UserRateThrottle):
    """Rate limit for task writes - 60 requests per minute. Reads are not counted."""
    rate = '60/min'

    def allow_request(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return super().allow_request(request, view)


class RankRateThrottle(AnonRateThrottle):
    """Rate limit for the stateless rank endpoint - 30 requests per minute."""
    rate = '30/min'


# ============================================
# HELPERS
# ============================================

def get_scorer(overrides=None) -> UrgencyScorer:
    """Build a scorer from TODOMASTER_SCORING, with per-request overrides on top."""
    config = dict(getattr(settings, 'TODOMASTER_SCORING', {}) or {})
    config.update(overrides or {})
    return UrgencyScorer(ScoringWeights.from_dict(config))


def error_response(code: ErrorCode, message: str, http_status=status.HTTP_400_BAD_REQUEST, **extra) -> Response:
    body = {
        'success': False,
        'error_code': code.value,
        'message': message,
    }
    body.update(extra)
    return Response(body, status=http_status)


def scoring_error_response(exc: ScoringError) -> Response:
    logger.warning("Rejected task data: %s", exc.message)
    extra = {'field': exc.field} if exc.field else {}
    return error_response(exc.code, exc.message, **extra)


def serialize_record(record: dict) -> dict:
    """Convert a core record into JSON-friendly data."""
    data = dict(record)
    for key in ('start_at', 'deadline', 'created_at', 'updated_at'):
        value = data.get(key)
        if hasattr(value, 'isoformat'):
            data[key] = value.isoformat()
    return data


def _user_task(request: Request, task_id) -> Task:
    return get_object_or_404(Task, pk=task_id, owner=request.user)


def _task_payload(task: Task, now) -> dict:
    """Serialized task plus its deadline flags at ``now``."""
    data = TaskSerializer(task).data
    record = task.to_record()
    data['is_overdue'] = is_overdue(record, now)
    data['is_due_soon'] = is_due_soon(record, now)
    return data


# ============================================
# API ENDPOINTS
# ============================================

@extend_schema(
    summary="List or create tasks",
    description="""
    GET returns the current user's tasks filtered and sorted by the query
    parameters, with fresh urgency scores and summary statistics.

    POST creates a task; its urgency score is computed before it is saved.
    """,
    parameters=[
        OpenApiParameter('status', OpenApiTypes.STR, enum=list(STATUS_CHOICES)),
        OpenApiParameter('priority', OpenApiTypes.STR, enum=['all', *PRIORITY_LEVELS]),
        OpenApiParameter('category', OpenApiTypes.STR, enum=['all', *CATEGORIES]),
        OpenApiParameter('search', OpenApiTypes.STR),
        OpenApiParameter('tag', OpenApiTypes.STR),
        OpenApiParameter('sort', OpenApiTypes.STR, enum=[o.value for o in SortOrder]),
    ],
    request=TaskSerializer,
    responses={200: OpenApiTypes.OBJECT, 201: TaskSerializer},
    tags=['Tasks']
)
@api_view(['GET', 'POST'])
@throttle_classes([TaskWriteRateThrottle])
def task_list(request: Request) -> Response:
    """
    GET  /api/tasks/?status=active&priority=high&category=work&tag=urgent&search=report&sort=smart
    POST /api/tasks/
    """
    if request.method == 'POST':
        return _create_task(request)

    query = TaskQuerySerializer(data=request.query_params)
    if not query.is_valid():
        return error_response(
            ErrorCode.ERR_INVALID_FILTER,
            'Invalid filter or sort parameters.',
            errors=query.errors
        )

    now = timezone.now()
    scorer = get_scorer()
    records = [task.to_record() for task in Task.objects.filter(owner=request.user)]

    try:
        task_filter = TaskFilter.from_dict(query.to_filter_dict())
        visible = ranked_view(records, task_filter, query.validated_data['sort'], now, scorer)
        summary = summarize_tasks(records, now)
    except ScoringError as exc:
        return scoring_error_response(exc)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'count': len(visible),
        'sort': SortOrder.parse(query.validated_data['sort']).value,
        'filter': task_filter.to_dict(),
        'tasks': [serialize_record(record) for record in visible],
        'summary': summary,
    })


def _create_task(request: Request) -> Response:
    serializer = TaskSerializer(data=request.data)
    if not serializer.is_valid():
        return error_response(
            ErrorCode.ERR_MISSING_FIELD,
            'Invalid input data. Please check your task format.',
            errors=serializer.errors
        )

    now = timezone.now()
    task = Task(owner=request.user, **serializer.validated_data)
    try:
        task.refresh_sort_score(now, get_scorer())
    except ScoringError as exc:
        return scoring_error_response(exc)
    task.save()

    logger.info("User %s created task %s", request.user.pk, task.pk)
    return Response(_task_payload(task, now), status=status.HTTP_201_CREATED)


@extend_schema(
    summary="Retrieve, update or delete a task",
    request=TaskSerializer,
    responses={200: TaskSerializer, 204: None},
    tags=['Tasks']
)
@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@throttle_classes([TaskWriteRateThrottle])
def task_detail(request: Request, task_id) -> Response:
    """
    GET    /api/tasks/<id>/
    PUT    /api/tasks/<id>/
    PATCH  /api/tasks/<id>/
    DELETE /api/tasks/<id>/
    """
    task = _user_task(request, task_id)
    now = timezone.now()

    if request.method == 'DELETE':
        task.delete()
        logger.info("User %s deleted task %s", request.user.pk, task_id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    if request.method == 'GET':
        # The cached score is stale once time has passed.
        try:
            task.refresh_sort_score(now, get_scorer())
        except ScoringError as exc:
            return scoring_error_response(exc)
        return Response(_task_payload(task, now))

    serializer = TaskSerializer(task, data=request.data, partial=request.method == 'PATCH')
    if not serializer.is_valid():
        return error_response(
            ErrorCode.ERR_MISSING_FIELD,
            'Invalid input data. Please check your task format.',
            errors=serializer.errors
        )

    try:
        apply_partial_update(task, serializer.validated_data, now, get_scorer())
    except ScoringError as exc:
        return scoring_error_response(exc)

    logger.info("User %s updated task %s", request.user.pk, task.pk)
    return Response(_task_payload(task, now))


@extend_schema(
    summary="Toggle task completion",
    request=None,
    responses={200: TaskSerializer},
    tags=['Tasks']
)
@api_view(['POST'])
@throttle_classes([TaskWriteRateThrottle])
def toggle_task(request: Request, task_id) -> Response:
    """
    Flip the completed flag of a task and rescore it.

    POST /api/tasks/<id>/toggle/
    """
    task = _user_task(request, task_id)
    now = timezone.now()
    try:
        apply_partial_update(task, {'completed': not task.completed}, now, get_scorer())
    except ScoringError as exc:
        return scoring_error_response(exc)
    return Response(_task_payload(task, now))


@extend_schema(
    summary="Task statistics",
    description="Totals, completion rate, overdue count and per-category/priority counts.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['GET'])
def task_stats(request: Request) -> Response:
    """
    GET /api/tasks/stats/
    """
    records = [task.to_record() for task in Task.objects.filter(owner=request.user)]
    try:
        stats = summarize_tasks(records, timezone.now())
    except ScoringError as exc:
        return scoring_error_response(exc)

    return Response({
        'success': True,
        **stats
    })


@extend_schema(
    summary="Rank task records",
    description="""
    Score, filter and sort a list of task records without storing them.

    Accepts the same filter and sort options as the task list, an optional
    reference time ``now`` and optional overrides of the scoring constants.
    """,
    request=TaskRankRequestSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Ranking']
)
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([RankRateThrottle])
def rank_tasks(request: Request) -> Response:
    """
    POST /api/tasks/rank/

    Request Body:
    {
        "tasks": [...],
        "status": "active",            // Optional filters
        "priority": "all",
        "category": "all",
        "search": "",
        "tag": null,
        "sort": "smart",               // Optional, default smart
        "now": "2025-01-15T09:00:00Z", // Optional reference time
        "weights": {"decay_k": 0.01}   // Optional scoring overrides
    }
    """
    serializer = TaskRankRequestSerializer(data=request.data)

    if not serializer.is_valid():
        return error_response(
            ErrorCode.ERR_MISSING_FIELD,
            'Invalid input data. Please check your tasks format.',
            errors=serializer.errors
        )

    data = serializer.validated_data
    tasks = [dict(task) for task in data['tasks']]
    now = data.get('now') or timezone.now()

    errors = validate_tasks(tasks)
    if errors:
        return error_response(
            errors[0].code,
            errors[0].message,
            errors=[e.to_dict() for e in errors]
        )

    try:
        scorer = get_scorer(data.get('weights'))
    except ValueError as exc:
        return error_response(ErrorCode.ERR_INVALID_WEIGHTS, str(exc))

    try:
        task_filter = TaskFilter.from_dict({
            'status': data['status'],
            'priority': data['priority'],
            'category': data['category'],
            'search_query': data['search'],
            'tag': data.get('tag'),
        })
        ranked = ranked_view(tasks, task_filter, data['sort'], now, scorer)
    except (InvalidFilterError, ScoringError) as exc:
        return scoring_error_response(exc)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'count': len(ranked),
        'now': now.isoformat(),
        'sort': SortOrder.parse(data['sort']).value,
        'weights_used': scorer.weights.to_dict(),
        'tasks': [serialize_record(record) for record in ranked],
        'summary': summarize_tasks(tasks, now),
    })


@extend_schema(
    summary="Get available sort orders",
    description="Return the available sort orders and the scoring configuration.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Info']
)
@api_view(['GET'])
@permission_classes([AllowAny])
def get_sort_orders(request: Request) -> Response:
    """
    GET /api/tasks/sort-orders/
    """
    sort_orders = {
        order.value: {
            'name': order.name.replace('_', ' ').title(),
            'description': SORT_ORDER_DESCRIPTIONS[order],
        }
        for order in SortOrder
    }

    return Response({
        'success': True,
        'sort_orders': sort_orders,
        'default': SortOrder.SMART.value,
        'priority_weights': PRIORITY_WEIGHTS,
        'scoring': get_scorer().weights.to_dict(),
    })


@extend_schema(
    summary="API information",
    description="Get API information and available endpoints.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Info']
)
@api_view(['GET'])
@permission_classes([AllowAny])
def api_info(request: Request) -> Response:
    """
    Return API information and available endpoints.

    GET /api/
    """
    return Response({
        'name': 'TodoMaster API',
        'version': '1.0.0',
        'documentation': '/api/docs/',
        'features': [
            'Smart urgency scoring',
            'Filtering by status, priority, category, tag and text',
            'Five sort orders with completed tasks always last',
            'Task statistics',
            'Token authentication',
            'OpenAPI/Swagger documentation',
        ],
        'endpoints': {
            'POST /api/auth/register/': 'Create an account',
            'POST /api/auth/login/': 'Obtain an API token',
            'POST /api/auth/logout/': 'Revoke the API token',
            'GET|PATCH|DELETE /api/auth/me/': 'Current user profile',
            'GET|POST /api/tasks/': 'List (filtered and sorted) or create tasks',
            'GET|PUT|PATCH|DELETE /api/tasks/<id>/': 'Single task',
            'POST /api/tasks/<id>/toggle/': 'Toggle completion',
            'GET /api/tasks/stats/': 'Task statistics',
            'POST /api/tasks/rank/': 'Rank task records without storing them',
            'GET /api/tasks/sort-orders/': 'Available sort orders',
            'GET /api/docs/': 'Interactive API documentation',
            'GET /api/schema/': 'OpenAPI schema',
            'GET /api/': 'This info endpoint'
        },
        'sort_orders': {order.value: SORT_ORDER_DESCRIPTIONS[order] for order in SortOrder},
        'filters': {
            'status': list(STATUS_CHOICES),
            'priority': ['all', *PRIORITY_LEVELS],
            'category': ['all', *CATEGORIES],
        },
        'error_codes': {
            code.value: code.name for code in ErrorCode
        }
    })
