"""
API Views for local account management.

Registration, login and logout use Django's auth framework for password
hashing and DRF tokens for API sessions.
"""

import logging

from django.contrib.auth import authenticate
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from drf_spectacular.utils import extend_schema
from drf_spectacular.types import OpenApiTypes

from tasks.scoring import ErrorCode
from tasks.views import error_response

from .serializers import LoginSerializer, RegisterSerializer, UserSerializer

logger = logging.getLogger(__name__)


class AuthRateThrottle(AnonRateThrottle):
    """Rate limit for register/login - 10 requests per minute."""
    rate = '10/min'


def _session_payload(user, token) -> dict:
    return {
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'user': UserSerializer(user).data,
        'token': token.key,
    }


@extend_schema(
    summary="Register an account",
    request=RegisterSerializer,
    responses={201: OpenApiTypes.OBJECT},
    tags=['Accounts']
)
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([AuthRateThrottle])
def register(request: Request) -> Response:
    """
    POST /api/auth/register/
    """
    serializer = RegisterSerializer(data=request.data)
    if not serializer.is_valid():
        return error_response(
            ErrorCode.ERR_MISSING_FIELD,
            'Invalid registration data.',
            errors=serializer.errors
        )

    user = serializer.save()
    token, _ = Token.objects.get_or_create(user=user)
    logger.info("Registered user %s", user.pk)
    return Response(_session_payload(user, token), status=status.HTTP_201_CREATED)


@extend_schema(
    summary="Log in",
    request=LoginSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Accounts']
)
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([AuthRateThrottle])
def login(request: Request) -> Response:
    """
    POST /api/auth/login/
    """
    serializer = LoginSerializer(data=request.data)
    if not serializer.is_valid():
        return error_response(
            ErrorCode.ERR_MISSING_FIELD,
            'Email and password are required.',
            errors=serializer.errors
        )

    user = authenticate(
        request,
        username=serializer.validated_data['email'],
        password=serializer.validated_data['password']
    )
    if user is None:
        logger.info("Failed login attempt")
        return error_response(ErrorCode.ERR_INVALID_CREDENTIALS, 'Invalid email or password.')

    token, _ = Token.objects.get_or_create(user=user)
    return Response(_session_payload(user, token))


@extend_schema(
    summary="Log out",
    request=None,
    responses={204: None},
    tags=['Accounts']
)
@api_view(['POST'])
def logout(request: Request) -> Response:
    """
    Revoke the caller's API token. The account itself is kept.

    POST /api/auth/logout/
    """
    Token.objects.filter(user=request.user).delete()
    return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    summary="Current user",
    description="Read or update the profile (name and avatar), or delete the account together with its tasks.",
    request=UserSerializer,
    responses={200: UserSerializer, 204: None},
    tags=['Accounts']
)
@api_view(['GET', 'PATCH', 'DELETE'])
def me(request: Request) -> Response:
    """
    GET    /api/auth/me/
    PATCH  /api/auth/me/
    DELETE /api/auth/me/
    """
    user = request.user

    if request.method == 'DELETE':
        user_id = user.pk
        user.delete()
        logger.info("Deleted user %s and their tasks", user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    if request.method == 'PATCH':
        serializer = UserSerializer(user, data=request.data, partial=True)
        if not serializer.is_valid():
            return error_response(
                ErrorCode.ERR_MISSING_FIELD,
                'Invalid profile data.',
                errors=serializer.errors
            )
        serializer.save()

    return Response(UserSerializer(user).data)
