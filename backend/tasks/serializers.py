"""
Serializers for the Task model.

This module provides serialization/deserialization for Task objects,
the list query parameters, and free-standing task records submitted
for ranking.
"""

from rest_framework import serializers

from .models import Task, normalize_tags
from .ranking import STATUS_CHOICES, SortOrder
from .scoring import CATEGORIES, PRIORITY_LEVELS


SORT_CHOICES = [order.value for order in SortOrder] + ['created_at']


def _validate_title(value):
    if not value or not value.strip():
        raise serializers.ValidationError("Title cannot be empty")
    return value.strip()


class TaskSerializer(serializers.ModelSerializer):
    """
    Serializer for persisted tasks.

    The owner, timestamps and cached score are managed server-side.
    """

    tags = serializers.ListField(
        child=serializers.CharField(max_length=50),
        required=False,
        default=list
    )

    class Meta:
        model = Task
        fields = [
            'id', 'owner', 'title', 'description', 'tags', 'start_at', 'deadline',
            'priority', 'category', 'completed', 'created_at', 'updated_at', 'sort_score',
        ]
        read_only_fields = ['id', 'owner', 'created_at', 'updated_at', 'sort_score']

    def validate_title(self, value):
        """Ensure title is not empty or just whitespace."""
        return _validate_title(value)

    def validate_tags(self, value):
        """Store tags lower-cased and de-duplicated."""
        return normalize_tags(value)

    def validate(self, attrs):
        start_at = attrs.get('start_at', getattr(self.instance, 'start_at', None))
        deadline = attrs.get('deadline', getattr(self.instance, 'deadline', None))
        if start_at and deadline and deadline <= start_at:
            raise serializers.ValidationError({'deadline': 'Deadline must be after the start time'})
        return attrs


class TaskQuerySerializer(serializers.Serializer):
    """
    Serializer for the filter and sort query parameters of the task list.
    """

    status = serializers.ChoiceField(choices=STATUS_CHOICES, default='all', required=False)
    priority = serializers.ChoiceField(
        choices=['all', *PRIORITY_LEVELS],
        default='all',
        required=False
    )
    category = serializers.ChoiceField(
        choices=['all', *CATEGORIES],
        default='all',
        required=False
    )
    search = serializers.CharField(required=False, allow_blank=True, default='', trim_whitespace=False)
    tag = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    sort = serializers.ChoiceField(choices=SORT_CHOICES, default='smart', required=False)

    def to_filter_dict(self):
        data = self.validated_data
        return {
            'status': data.get('status', 'all'),
            'priority': data.get('priority', 'all'),
            'category': data.get('category', 'all'),
            'search_query': data.get('search', ''),
            'tag': data.get('tag') or None,
        }


class TaskRecordSerializer(serializers.Serializer):
    """
    Serializer for task records that are ranked without being persisted.

    Timestamps are required so no record is ever scored against a made-up
    deadline or creation time.
    """

    id = serializers.CharField(required=False, allow_null=True)
    title = serializers.CharField(max_length=255, required=True)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    tags = serializers.ListField(
        child=serializers.CharField(max_length=50),
        required=False,
        default=list
    )
    start_at = serializers.DateTimeField(required=False, allow_null=True)
    deadline = serializers.DateTimeField(required=True)
    created_at = serializers.DateTimeField(required=True)
    priority = serializers.ChoiceField(choices=PRIORITY_LEVELS, default='medium')
    category = serializers.ChoiceField(choices=CATEGORIES, default='personal')
    completed = serializers.BooleanField(default=False)

    def validate_title(self, value):
        """Ensure title is not empty or just whitespace."""
        return _validate_title(value)

    def validate_tags(self, value):
        return normalize_tags(value)


class WeightsSerializer(serializers.Serializer):
    """
    Optional overrides of the urgency scoring constants.
    """

    priority_mix = serializers.FloatField(min_value=0, max_value=1, required=False)
    deadline_mix = serializers.FloatField(min_value=0, max_value=1, required=False)
    age_mix = serializers.FloatField(min_value=0, max_value=1, required=False)
    decay_k = serializers.FloatField(min_value=0, required=False)
    age_cap_hours = serializers.FloatField(min_value=1, required=False)


class TaskRankRequestSerializer(serializers.Serializer):
    """
    Serializer for stateless ranking requests.
    """

    tasks = serializers.ListField(
        child=TaskRecordSerializer(),
        min_length=1,
        error_messages={
            'min_length': 'At least one task is required for ranking'
        }
    )
    status = serializers.ChoiceField(choices=STATUS_CHOICES, default='all', required=False)
    priority = serializers.ChoiceField(choices=['all', *PRIORITY_LEVELS], default='all', required=False)
    category = serializers.ChoiceField(choices=['all', *CATEGORIES], default='all', required=False)
    search = serializers.CharField(required=False, allow_blank=True, default='', trim_whitespace=False)
    tag = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    sort = serializers.ChoiceField(choices=SORT_CHOICES, default='smart', required=False)
    now = serializers.DateTimeField(required=False, allow_null=True)
    weights = WeightsSerializer(required=False)

    def validate_tasks(self, value):
        ids = [task.get('id') for task in value if task.get('id') is not None]
        if len(ids) != len(set(ids)):
            raise serializers.ValidationError("Task ids must be unique")
        return value
