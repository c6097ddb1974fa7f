"""
Task Model for TodoMaster.

This module defines the persisted Task record. The model owns storage
only; urgency scoring and list ordering live in ``scoring`` and
``ranking`` and work on the plain records returned by ``to_record``.
"""

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone

from .scoring import CATEGORIES, PRIORITY_LEVELS, UrgencyScorer


PRIORITY_CHOICES = [(level, level.title()) for level in PRIORITY_LEVELS]
CATEGORY_CHOICES = [(category, category.title()) for category in CATEGORIES]

# Fields a partial update may touch; everything else is managed by the model.
UPDATABLE_FIELDS = (
    'title',
    'description',
    'tags',
    'start_at',
    'deadline',
    'priority',
    'category',
    'completed',
)


def normalize_tags(tags):
    """Lower-case, trim and de-duplicate tags, keeping their first-seen order."""
    normalized = []
    for tag in tags or []:
        tag = str(tag).strip().lower()
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized


class Task(models.Model):
    """
    A personal task owned by a single user.

    Attributes:
        title: Short descriptive title (never empty)
        description: Free-form notes, may be empty
        tags: List of lower-cased tags, display order preserved
        start_at: When the task is scheduled to start (informational)
        deadline: When the task must be done by
        priority: One of low, medium, high, critical
        category: One of the built-in categories
        completed: Whether the task is done
        sort_score: Cached urgency score, recomputed on every save
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tasks'
    )
    title = models.CharField(max_length=255, help_text="Task title")
    description = models.TextField(blank=True, default='', help_text="Optional notes")
    tags = models.JSONField(default=list, blank=True, help_text="Freeform tags")
    start_at = models.DateTimeField(help_text="Scheduled start")
    deadline = models.DateTimeField(help_text="Due by")
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='medium')
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='personal')
    completed = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(auto_now=True)
    sort_score = models.FloatField(default=0.0, editable=False)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['owner', 'completed'], name='tasks_owner_completed_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.priority})"

    def clean(self):
        """Validate the task data."""
        from django.core.exceptions import ValidationError

        if not self.title or not self.title.strip():
            raise ValidationError({'title': 'Title cannot be empty'})

        if not isinstance(self.tags, list):
            raise ValidationError({'tags': 'Tags must be a list of strings'})

        if self.start_at and self.deadline and self.deadline <= self.start_at:
            raise ValidationError({'deadline': 'Deadline must be after the start time'})

    def to_record(self):
        """Return the plain record the scoring and ranking core works on."""
        return {
            'id': str(self.id),
            'owner_id': str(self.owner_id),
            'title': self.title,
            'description': self.description,
            'tags': list(self.tags or []),
            'start_at': self.start_at,
            'deadline': self.deadline,
            'priority': self.priority,
            'category': self.category,
            'completed': self.completed,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'sort_score': self.sort_score,
        }

    def refresh_sort_score(self, now=None, scorer=None):
        """Recompute the cached urgency score for ``now`` (defaults to the current time)."""
        scorer = scorer or UrgencyScorer()
        self.sort_score = scorer.score(self.to_record(), now or timezone.now())
        return self.sort_score


def apply_partial_update(task, changes, now=None, scorer=None):
    """
    Merge a partial update into ``task`` and save it.

    Only keys in UPDATABLE_FIELDS are accepted; an unknown key raises
    ValueError so a typo never silently drops data. Identity, ownership
    and creation time cannot change. ``updated_at`` is refreshed by the
    save and the cached score is recomputed.
    """
    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(unknown)}")

    for field_name in UPDATABLE_FIELDS:
        if field_name in changes:
            value = changes[field_name]
            if field_name == 'tags':
                value = normalize_tags(value)
            setattr(task, field_name, value)

    task.refresh_sort_score(now, scorer)
    task.save()
    return task
