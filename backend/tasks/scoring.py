"""
Smart Urgency Scoring for TodoMaster.

This module computes the "smart" urgency score used to float the most
pressing tasks to the top of a user's list. It is pure and synchronous:
every function receives the reference time ``now`` explicitly and never
reads the wall clock, so the same inputs always produce the same score.

Scoring Formula:
---------------
score = 10 * (priority_component * 0.40 +
              deadline_component * 0.40 +
              age_component      * 0.20)

- priority_component: priority weight / 4 (critical=4 ... low=1)
- deadline_component: 1.0 when overdue, otherwise e^(-0.007 * hours_left)
- age_component:      task age in hours / 720, capped at 1.0

Completed tasks always score -1 so they sink below every active task.
The result is rounded to 4 decimal places.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from dataclasses import dataclass
from enum import Enum
import logging
import math

logger = logging.getLogger(__name__)


# ==================== Error Codes ====================

class ErrorCode(Enum):
    """Error codes shared by the scoring core and the API layer."""
    SUCCESS = "SUCCESS"
    ERR_MISSING_FIELD = "ERR_MISSING_FIELD"
    ERR_INVALID_DATE = "ERR_INVALID_DATE"
    ERR_INVALID_PRIORITY = "ERR_INVALID_PRIORITY"
    ERR_INVALID_CATEGORY = "ERR_INVALID_CATEGORY"
    ERR_INVALID_FILTER = "ERR_INVALID_FILTER"
    ERR_INVALID_SORT_ORDER = "ERR_INVALID_SORT_ORDER"
    ERR_INVALID_WEIGHTS = "ERR_INVALID_WEIGHTS"
    ERR_DUPLICATE_ID = "ERR_DUPLICATE_ID"
    ERR_EMPTY_TASKS = "ERR_EMPTY_TASKS"
    ERR_INVALID_CREDENTIALS = "ERR_INVALID_CREDENTIALS"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"


@dataclass
class ValidationError:
    """Structured validation error with code and details."""
    code: ErrorCode
    message: str
    field: Optional[str] = None
    task_id: Optional[str] = None

    def to_dict(self) -> Dict:
        result = {
            'error_code': self.code.value,
            'message': self.message
        }
        if self.field:
            result['field'] = self.field
        if self.task_id is not None:
            result['task_id'] = self.task_id
        return result


class ScoringError(ValueError):
    """Base class for errors raised by the ranking core."""
    code = ErrorCode.ERR_MISSING_FIELD

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict:
        return ValidationError(code=self.code, message=self.message, field=self.field).to_dict()


class InvalidTimestampError(ScoringError):
    """A deadline or creation timestamp could not be parsed."""
    code = ErrorCode.ERR_INVALID_DATE


class UnknownPriorityError(ScoringError):
    """A priority outside the closed set of levels."""
    code = ErrorCode.ERR_INVALID_PRIORITY


# ==================== Priority Weight Table ====================

PRIORITY_WEIGHTS: Dict[str, int] = {
    'critical': 4,
    'high': 3,
    'medium': 2,
    'low': 1,
}
MAX_PRIORITY_WEIGHT = max(PRIORITY_WEIGHTS.values())

PRIORITY_LEVELS = ('low', 'medium', 'high', 'critical')

CATEGORIES = (
    'personal',
    'work',
    'health',
    'finance',
    'education',
    'shopping',
    'travel',
    'other',
)


# ==================== Scoring Constants ====================

PRIORITY_MIX = 0.40
DEADLINE_MIX = 0.40
AGE_MIX = 0.20

# Decay rate per hour: ~0.85 at 24h, ~0.31 at one week, ~0.006 at 30 days
DEADLINE_DECAY_K = 0.007

# 30 days; tasks at least this old receive the full age boost
AGE_CAP_HOURS = 720

SCORE_SCALE = 10
SCORE_PRECISION = 4
COMPLETED_SENTINEL = -1.0

SECONDS_PER_HOUR = 3600.0


@dataclass
class ScoringWeights:
    """
    Tunable configuration for the urgency scorer.

    The defaults are the production constants. Tests and tuning passes can
    build a scorer with different values without touching algorithm code.
    The three mix weights are normalized to sum to 1.0 so every active
    score stays within [0, 10].
    """
    priority: float = PRIORITY_MIX
    deadline: float = DEADLINE_MIX
    age: float = AGE_MIX
    decay_k: float = DEADLINE_DECAY_K
    age_cap_hours: float = AGE_CAP_HOURS

    def __post_init__(self):
        """Validate the tunables and normalize the three mix weights to sum to 1.0."""
        for name in ('priority', 'deadline', 'age', 'decay_k'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value < 0:
                raise ValueError(f"{name} must be a non-negative number")
        if not isinstance(self.age_cap_hours, (int, float)) or self.age_cap_hours <= 0:
            raise ValueError("age_cap_hours must be a positive number")

        total = self.priority + self.deadline + self.age
        if total <= 0:
            raise ValueError("At least one of priority_mix, deadline_mix and age_mix must be positive")
        self.priority /= total
        self.deadline /= total
        self.age /= total

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ScoringWeights':
        """Build weights from a settings-style dict, keeping defaults for missing keys."""
        data = data or {}
        return cls(
            priority=data.get('priority_mix', PRIORITY_MIX),
            deadline=data.get('deadline_mix', DEADLINE_MIX),
            age=data.get('age_mix', AGE_MIX),
            decay_k=data.get('decay_k', DEADLINE_DECAY_K),
            age_cap_hours=data.get('age_cap_hours', AGE_CAP_HOURS),
        )

    def to_dict(self) -> Dict:
        """Return weights as dictionary."""
        return {
            'priority_mix': self.priority,
            'deadline_mix': self.deadline,
            'age_mix': self.age,
            'decay_k': self.decay_k,
            'age_cap_hours': self.age_cap_hours,
        }


@dataclass
class ScoreBreakdown:
    """Detailed breakdown of how a task's urgency score was calculated."""
    priority_component: float = 0.0
    deadline_component: float = 0.0
    age_component: float = 0.0
    priority_contribution: float = 0.0
    deadline_contribution: float = 0.0
    age_contribution: float = 0.0
    hours_left: Optional[float] = None
    age_hours: Optional[float] = None
    score: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'priority': {
                'component': round(self.priority_component, SCORE_PRECISION),
                'contribution': round(self.priority_contribution, SCORE_PRECISION)
            },
            'deadline': {
                'component': round(self.deadline_component, SCORE_PRECISION),
                'contribution': round(self.deadline_contribution, SCORE_PRECISION),
                'hours_left': None if self.hours_left is None else round(self.hours_left, 2)
            },
            'age': {
                'component': round(self.age_component, SCORE_PRECISION),
                'contribution': round(self.age_contribution, SCORE_PRECISION),
                'age_hours': None if self.age_hours is None else round(self.age_hours, 2)
            },
            'score': self.score
        }


# ==================== Timestamps ====================

def parse_timestamp(value: Any, field: str = 'timestamp') -> datetime:
    """
    Parse a task timestamp into an aware datetime.

    Accepts datetime objects and ISO-8601 strings (including a trailing
    ``Z``). Naive values are interpreted as UTC. Anything else raises
    InvalidTimestampError; the value is never replaced with "now".
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidTimestampError(
                f"{field} must be an ISO-8601 timestamp, got {value!r}", field=field
            )
    else:
        raise InvalidTimestampError(f"{field} is missing or not a timestamp", field=field)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def hours_between(start: datetime, end: datetime) -> float:
    """Signed number of hours from ``start`` to ``end``."""
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def priority_weight(priority: Any) -> int:
    """Look up the weight of a priority level, failing fast on unknown levels."""
    try:
        return PRIORITY_WEIGHTS[priority]
    except (KeyError, TypeError):
        raise UnknownPriorityError(
            f"Unknown priority {priority!r}. Valid options: {list(PRIORITY_WEIGHTS)}",
            field='priority'
        )


# ==================== Urgency Scorer ====================

class UrgencyScorer:
    """
    Computes the smart urgency score of a single task.

    Tasks are plain mappings with at least ``priority``, ``deadline``,
    ``created_at`` and ``completed``. The scorer only reads them.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def calculate_priority_component(self, priority: str) -> float:
        """Normalized priority in [0.25, 1.0]."""
        return priority_weight(priority) / MAX_PRIORITY_WEIGHT

    def calculate_deadline_component(self, deadline: Any, now: Any) -> float:
        """
        Deadline urgency in (0, 1].

        Overdue tasks (no hours left) saturate at 1.0; otherwise urgency
        decays exponentially with the hours remaining.
        """
        hours_left = hours_between(
            parse_timestamp(now, 'now'), parse_timestamp(deadline, 'deadline')
        )
        if hours_left <= 0:
            return 1.0
        return math.exp(-self.weights.decay_k * hours_left)

    def calculate_age_component(self, created_at: Any, now: Any) -> float:
        """Anti-starvation boost in [0, 1], full after ``age_cap_hours``."""
        age_hours = hours_between(
            parse_timestamp(created_at, 'created_at'), parse_timestamp(now, 'now')
        )
        age_hours = max(age_hours, 0.0)
        return min(age_hours / self.weights.age_cap_hours, 1.0)

    def breakdown(self, task: Mapping[str, Any], now: Any) -> ScoreBreakdown:
        """Compute every component and the final score for one task."""
        reference = parse_timestamp(now, 'now')
        deadline = parse_timestamp(task.get('deadline'), 'deadline')
        created_at = parse_timestamp(task.get('created_at'), 'created_at')

        if task.get('completed'):
            return ScoreBreakdown(score=COMPLETED_SENTINEL)

        priority_component = self.calculate_priority_component(task.get('priority'))
        deadline_component = self.calculate_deadline_component(deadline, reference)
        age_component = self.calculate_age_component(created_at, reference)

        priority_contribution = priority_component * self.weights.priority
        deadline_contribution = deadline_component * self.weights.deadline
        age_contribution = age_component * self.weights.age

        raw = priority_contribution + deadline_contribution + age_contribution
        score = round(raw * SCORE_SCALE, SCORE_PRECISION)

        return ScoreBreakdown(
            priority_component=priority_component,
            deadline_component=deadline_component,
            age_component=age_component,
            priority_contribution=priority_contribution,
            deadline_contribution=deadline_contribution,
            age_contribution=age_contribution,
            hours_left=hours_between(reference, deadline),
            age_hours=max(hours_between(created_at, reference), 0.0),
            score=score
        )

    def score(self, task: Mapping[str, Any], now: Any) -> float:
        """
        Return the urgency score of ``task`` at time ``now``.

        Completed tasks return exactly -1. Timestamps are validated for
        every task, completed or not, so bad records fail fast.
        """
        result = self.breakdown(task, now).score
        logger.debug("Scored task %s: %s", task.get('id'), result)
        return result


_default_scorer = UrgencyScorer()


def score(task: Mapping[str, Any], now: Any) -> float:
    """Score a task with the default constants."""
    return _default_scorer.score(task, now)


# ==================== Validation ====================

def validate_tasks(tasks: List[Mapping[str, Any]]) -> List[ValidationError]:
    """
    Validate a list of task records and return any errors found.

    Callers run this before scoring so invalid records are rejected
    instead of being ranked with made-up values.
    """
    errors = []

    if not tasks:
        errors.append(ValidationError(
            code=ErrorCode.ERR_EMPTY_TASKS,
            message="At least one task is required"
        ))
        return errors

    seen_ids = set()

    for i, task in enumerate(tasks):
        task_id = task.get('id', str(i + 1))

        if not task.get('title') or not str(task.get('title', '')).strip():
            errors.append(ValidationError(
                code=ErrorCode.ERR_MISSING_FIELD,
                message="Task title is required and cannot be empty",
                field='title',
                task_id=task_id
            ))

        if task.get('priority') not in PRIORITY_WEIGHTS:
            errors.append(ValidationError(
                code=ErrorCode.ERR_INVALID_PRIORITY,
                message=f"Priority must be one of {list(PRIORITY_LEVELS)}",
                field='priority',
                task_id=task_id
            ))

        category = task.get('category')
        if category is not None and category not in CATEGORIES:
            errors.append(ValidationError(
                code=ErrorCode.ERR_INVALID_CATEGORY,
                message=f"Category must be one of {list(CATEGORIES)}",
                field='category',
                task_id=task_id
            ))

        for field_name in ('deadline', 'created_at'):
            try:
                parse_timestamp(task.get(field_name), field_name)
            except InvalidTimestampError as exc:
                errors.append(ValidationError(
                    code=ErrorCode.ERR_INVALID_DATE,
                    message=exc.message,
                    field=field_name,
                    task_id=task_id
                ))

        if task.get('id') is not None:
            if task['id'] in seen_ids:
                errors.append(ValidationError(
                    code=ErrorCode.ERR_DUPLICATE_ID,
                    message=f"Duplicate task ID: {task['id']}",
                    field='id',
                    task_id=task_id
                ))
            seen_ids.add(task['id'])

    return errors
