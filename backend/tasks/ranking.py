"""
Filter and sort engine for task lists.

Derives the visible task list from a user's full collection: the status,
priority, category, tag and free-text filters are applied in that order,
then the subset is sorted by the selected order. The input collection is
never mutated; a new list is returned.

Every sort key starts with the completion flag, so active tasks always
come before completed ones whatever order is selected. Python's sort is
stable, so tasks with equal keys keep their input order.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
import logging
import math

from .scoring import (
    CATEGORIES,
    PRIORITY_LEVELS,
    ErrorCode,
    ScoringError,
    UrgencyScorer,
    hours_between,
    parse_timestamp,
    priority_weight,
)

logger = logging.getLogger(__name__)

Task = Mapping[str, Any]

ALL = 'all'
STATUS_CHOICES = ('all', 'active', 'completed')


class InvalidFilterError(ScoringError):
    """A filter value outside its closed enumeration."""
    code = ErrorCode.ERR_INVALID_FILTER


class UnknownSortOrderError(ScoringError):
    """A sort order that has no comparator."""
    code = ErrorCode.ERR_INVALID_SORT_ORDER


class SortOrder(Enum):
    """Orders a task list can be sorted by."""
    SMART = 'smart'
    DEADLINE = 'deadline'
    PRIORITY = 'priority'
    CREATED_AT = 'createdAt'
    ALPHA = 'alpha'

    @classmethod
    def parse(cls, value: Any) -> 'SortOrder':
        """Resolve a sort order from its wire name; ``created_at`` is accepted too."""
        if isinstance(value, cls):
            return value
        if value == 'created_at':
            return cls.CREATED_AT
        try:
            return cls(value)
        except ValueError:
            raise UnknownSortOrderError(
                f"Invalid sort order: {value!r}. Valid options: {[o.value for o in cls]}",
                field='sort'
            )


SORT_ORDER_DESCRIPTIONS = {
    SortOrder.SMART: 'Most urgent first, blending priority, deadline proximity and task age',
    SortOrder.DEADLINE: 'Earliest deadline first',
    SortOrder.PRIORITY: 'Highest priority first, earlier deadline breaks ties',
    SortOrder.CREATED_AT: 'Most recently created first',
    SortOrder.ALPHA: 'Title A to Z, ignoring case',
}


@dataclass
class TaskFilter:
    """
    User-selected filter criteria.

    ``priority`` and ``category`` take a specific value or ``'all'``;
    ``tag`` of None disables the tag filter; an empty or blank
    ``search_query`` disables the text search.
    """
    status: str = ALL
    priority: str = ALL
    category: str = ALL
    search_query: str = ''
    tag: Optional[str] = None

    def validate(self) -> 'TaskFilter':
        """Raise InvalidFilterError unless every value is in its closed set."""
        if self.status not in STATUS_CHOICES:
            raise InvalidFilterError(
                f"Invalid status filter: {self.status!r}. Valid options: {list(STATUS_CHOICES)}",
                field='status'
            )
        if self.priority != ALL and self.priority not in PRIORITY_LEVELS:
            raise InvalidFilterError(
                f"Invalid priority filter: {self.priority!r}. Valid options: {[ALL, *PRIORITY_LEVELS]}",
                field='priority'
            )
        if self.category != ALL and self.category not in CATEGORIES:
            raise InvalidFilterError(
                f"Invalid category filter: {self.category!r}. Valid options: {[ALL, *CATEGORIES]}",
                field='category'
            )
        if self.search_query is None:
            self.search_query = ''
        return self

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'TaskFilter':
        """Build a filter from request or UI state; missing keys mean "no restriction"."""
        data = data or {}
        return cls(
            status=data.get('status') or ALL,
            priority=data.get('priority') or ALL,
            category=data.get('category') or ALL,
            search_query=data.get('search_query', data.get('search')) or '',
            tag=data.get('tag') or None,
        ).validate()

    def to_dict(self) -> Dict:
        return asdict(self)


# ==================== Predicates ====================

def _matches_status(task: Task, status: str) -> bool:
    if status == 'active':
        return not task.get('completed')
    if status == 'completed':
        return bool(task.get('completed'))
    return True


def _matches_search(task: Task, query: str) -> bool:
    """Case-insensitive substring match on title, description or any tag."""
    if query in str(task.get('title') or '').lower():
        return True
    if query in str(task.get('description') or '').lower():
        return True
    return any(query in str(tag).lower() for tag in task.get('tags') or [])


def filter_tasks(tasks: Iterable[Task], task_filter: TaskFilter) -> List[Task]:
    """Apply the status, priority, category, tag and search filters in order."""
    result = [t for t in tasks if _matches_status(t, task_filter.status)]

    if task_filter.priority != ALL:
        result = [t for t in result if t.get('priority') == task_filter.priority]

    if task_filter.category != ALL:
        result = [t for t in result if t.get('category') == task_filter.category]

    if task_filter.tag:
        result = [t for t in result if task_filter.tag in (t.get('tags') or [])]

    query = (task_filter.search_query or '').strip().lower()
    if query:
        result = [t for t in result if _matches_search(t, query)]

    return result


# ==================== Sort Keys ====================

def _completed(task: Task) -> bool:
    return bool(task.get('completed'))


def _deadline_ts(task: Task) -> float:
    return parse_timestamp(task.get('deadline'), 'deadline').timestamp()


def _created_ts(task: Task) -> float:
    return parse_timestamp(task.get('created_at'), 'created_at').timestamp()


def _smart_key(scores: Dict[int, float]) -> Callable[[Task], Tuple]:
    return lambda task: (_completed(task), -scores[id(task)])


def _deadline_key(task: Task) -> Tuple:
    return (_completed(task), _deadline_ts(task))


def _priority_key(task: Task) -> Tuple:
    return (_completed(task), -priority_weight(task.get('priority')), _deadline_ts(task))


def _created_at_key(task: Task) -> Tuple:
    return (_completed(task), -_created_ts(task))


def _alpha_key(task: Task) -> Tuple:
    title = str(task.get('title') or '')
    return (_completed(task), title.casefold(), title)


SORT_KEYS: Dict[SortOrder, Callable[[Task], Tuple]] = {
    SortOrder.DEADLINE: _deadline_key,
    SortOrder.PRIORITY: _priority_key,
    SortOrder.CREATED_AT: _created_at_key,
    SortOrder.ALPHA: _alpha_key,
}


def sort_tasks(
    tasks: Iterable[Task],
    sort_order: Any,
    now: Any = None,
    scorer: Optional[UrgencyScorer] = None
) -> List[Task]:
    """
    Return a new list of ``tasks`` in ``sort_order``.

    The smart order ranks by urgency computed for ``now``, which is then
    required. A cached ``sort_score`` on the records is ignored because it
    may be stale.
    """
    order = SortOrder.parse(sort_order)
    tasks = list(tasks)

    if order is SortOrder.SMART:
        if now is None:
            raise InvalidFilterError("The smart sort order needs a reference time", field='now')
        scorer = scorer or UrgencyScorer()
        scores = {id(task): scorer.score(task, now) for task in tasks}
        key = _smart_key(scores)
    else:
        key = SORT_KEYS[order]

    return sorted(tasks, key=key)


def view_of(
    tasks: Iterable[Task],
    task_filter: Optional[TaskFilter],
    sort_order: Any,
    now: Any,
    scorer: Optional[UrgencyScorer] = None
) -> List[Task]:
    """
    Filter and sort a task collection for display.

    Never raises for an empty collection or a filter that matches
    nothing; both give an empty list. Unknown filter values or sort orders
    raise InvalidFilterError / UnknownSortOrderError.
    """
    task_filter = (task_filter or TaskFilter()).validate()
    order = SortOrder.parse(sort_order)

    filtered = filter_tasks(tasks, task_filter)
    result = sort_tasks(filtered, order, now, scorer)
    logger.debug(
        "Derived view: %d task(s) after filtering, sorted by %s", len(result), order.value
    )
    return result


# ==================== Deadline Helpers ====================

def is_overdue(task: Task, now: Any) -> bool:
    """True when the task is not completed and its deadline has passed."""
    if task.get('completed'):
        return False
    return parse_timestamp(task.get('deadline'), 'deadline') < parse_timestamp(now, 'now')


def is_due_soon(task: Task, now: Any, within_hours: float = 24) -> bool:
    """True when an active task is due within the next ``within_hours`` hours."""
    if task.get('completed'):
        return False
    hours_left = hours_between(
        parse_timestamp(now, 'now'), parse_timestamp(task.get('deadline'), 'deadline')
    )
    return 0 <= hours_left <= within_hours


def summarize_tasks(tasks: Iterable[Task], now: Any) -> Dict[str, Any]:
    """
    Aggregate dashboard statistics over a full, unfiltered task list.

    ``by_category`` and ``by_priority`` only list values that occur, most
    frequent first.
    """
    tasks = list(tasks)
    total = len(tasks)
    completed = sum(1 for t in tasks if t.get('completed'))
    overdue = sum(1 for t in tasks if is_overdue(t, now))
    due_soon = sum(1 for t in tasks if is_due_soon(t, now))

    def _counts(field: str, values: Iterable[str]) -> List[Dict[str, Any]]:
        counts = [
            {field: value, 'count': sum(1 for t in tasks if t.get(field) == value)}
            for value in values
        ]
        counts = [c for c in counts if c['count'] > 0]
        return sorted(counts, key=lambda c: c['count'], reverse=True)

    return {
        'total': total,
        'completed': completed,
        'active': total - completed,
        'overdue': overdue,
        'due_soon': due_soon,
        'completion_rate': math.floor(completed / total * 100 + 0.5) if total else 0,
        'by_category': _counts('category', CATEGORIES),
        'by_priority': _counts('priority', reversed(PRIORITY_LEVELS)),
    }


# ==================== Annotated Views ====================

def annotate_task(
    task: Task,
    now: Any,
    scorer: Optional[UrgencyScorer] = None
) -> Dict[str, Any]:
    """Return a copy of the record with ``sort_score``, ``is_overdue`` and ``is_due_soon`` for ``now``."""
    scorer = scorer or UrgencyScorer()
    return {
        **task,
        'sort_score': scorer.score(task, now),
        'is_overdue': is_overdue(task, now),
        'is_due_soon': is_due_soon(task, now),
    }


def ranked_view(
    tasks: Iterable[Task],
    task_filter: Optional[TaskFilter],
    sort_order: Any,
    now: Any,
    scorer: Optional[UrgencyScorer] = None
) -> List[Dict[str, Any]]:
    """
    Filter and sort like ``view_of``, returning annotated copies.

    Each visible record is scored once; the smart order sorts on that
    fresh ``sort_score``, never on a cached one.
    """
    task_filter = (task_filter or TaskFilter()).validate()
    order = SortOrder.parse(sort_order)
    scorer = scorer or UrgencyScorer()

    annotated = [annotate_task(task, now, scorer) for task in filter_tasks(tasks, task_filter)]
    if order is SortOrder.SMART:
        key = _smart_key({id(task): task['sort_score'] for task in annotated})
    else:
        key = SORT_KEYS[order]

    result = sorted(annotated, key=key)
    logger.debug(
        "Ranked view: %d task(s) after filtering, sorted by %s", len(result), order.value
    )
    return result
