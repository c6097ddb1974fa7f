"""
Unit Tests for TodoMaster task ranking.

This module covers the urgency scorer, the filter/sort engine, the
partial-update merge on the Task model and the task API endpoints.
"""

from datetime import datetime, timedelta, timezone as dt_timezone
import copy
import math
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from .models import Task, apply_partial_update, normalize_tags
from .ranking import (
    InvalidFilterError,
    SortOrder,
    TaskFilter,
    UnknownSortOrderError,
    annotate_task,
    filter_tasks,
    is_due_soon,
    is_overdue,
    ranked_view,
    sort_tasks,
    summarize_tasks,
    view_of,
)
from .scoring import (
    AGE_CAP_HOURS,
    DEADLINE_DECAY_K,
    ErrorCode,
    InvalidTimestampError,
    ScoringWeights,
    UnknownPriorityError,
    UrgencyScorer,
    parse_timestamp,
    score,
    validate_tasks,
)
from .views import TaskWriteRateThrottle

User = get_user_model()

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=dt_timezone.utc)


def hours(n):
    return timedelta(hours=n)


def make_task(**overrides):
    """Build a plain task record; by default active, medium, due in a day, just created."""
    task = {
        'id': 'task',
        'owner_id': 'user-1',
        'title': 'Task',
        'description': '',
        'tags': [],
        'start_at': NOW,
        'deadline': NOW + hours(24),
        'created_at': NOW,
        'updated_at': NOW,
        'priority': 'medium',
        'category': 'personal',
        'completed': False,
    }
    task.update(overrides)
    return task


def ids(tasks):
    return [t['id'] for t in tasks]


class UrgencyScoreTests(TestCase):
    """Tests for the urgency score and its components."""

    def setUp(self):
        self.scorer = UrgencyScorer()

    def test_completed_task_scores_sentinel(self):
        """Completed tasks score exactly -1 whatever their priority or deadline."""
        for priority in ('low', 'medium', 'high', 'critical'):
            for deadline in (NOW - hours(500), NOW, NOW + hours(3)):
                task = make_task(priority=priority, deadline=deadline, completed=True)
                self.assertEqual(self.scorer.score(task, NOW), -1)
                self.assertEqual(self.scorer.score(task, NOW + hours(1000)), -1)

    def test_overdue_deadline_component_saturates(self):
        """A deadline at or before now gives a deadline component of exactly 1.0."""
        self.assertEqual(self.scorer.calculate_deadline_component(NOW, NOW), 1.0)
        self.assertEqual(self.scorer.calculate_deadline_component(NOW - hours(1), NOW), 1.0)
        self.assertEqual(self.scorer.calculate_deadline_component(NOW - hours(9000), NOW), 1.0)

    def test_overdue_score_depends_only_on_priority_and_age(self):
        """Two overdue tasks differing only in how overdue they are score the same."""
        slightly = make_task(priority='high', deadline=NOW - hours(1))
        badly = make_task(priority='high', deadline=NOW - hours(400))
        self.assertEqual(self.scorer.score(slightly, NOW), self.scorer.score(badly, NOW))

    def test_critical_overdue_new_task_scores_eight(self):
        """Critical, overdue and brand new: 10 * (0.4 + 0.4 + 0)."""
        task = make_task(priority='critical', deadline=NOW - hours(2), created_at=NOW)
        self.assertEqual(self.scorer.score(task, NOW), 8.0)

    def test_deadline_component_follows_exponential_decay(self):
        """Future deadlines decay as e^(-k * hours_left)."""
        for hours_left in (1, 24, 72, 168, 720):
            component = self.scorer.calculate_deadline_component(NOW + hours(hours_left), NOW)
            self.assertAlmostEqual(component, math.exp(-DEADLINE_DECAY_K * hours_left), places=12)

    def test_deadline_component_is_monotonic(self):
        """Later deadlines never give a higher deadline component or score."""
        previous_component = 1.0
        previous_score = None
        for hours_left in (0.5, 1, 6, 24, 48, 72, 168, 336, 720, 2000):
            deadline = NOW + hours(hours_left)
            component = self.scorer.calculate_deadline_component(deadline, NOW)
            current = self.scorer.score(make_task(deadline=deadline), NOW)
            self.assertLessEqual(component, previous_component)
            if previous_score is not None:
                self.assertLessEqual(current, previous_score)
            previous_component = component
            previous_score = current

    def test_deadline_component_uses_fractional_hours(self):
        """Thirty minutes left is not treated as overdue."""
        component = self.scorer.calculate_deadline_component(NOW + timedelta(minutes=30), NOW)
        self.assertLess(component, 1.0)
        self.assertAlmostEqual(component, math.exp(-DEADLINE_DECAY_K * 0.5))

    def test_priority_component(self):
        """Priority weights map to weight / 4."""
        self.assertEqual(self.scorer.calculate_priority_component('critical'), 1.0)
        self.assertEqual(self.scorer.calculate_priority_component('high'), 0.75)
        self.assertEqual(self.scorer.calculate_priority_component('medium'), 0.5)
        self.assertEqual(self.scorer.calculate_priority_component('low'), 0.25)

    def test_unknown_priority_fails_fast(self):
        """An unknown priority raises instead of scoring as zero."""
        with self.assertRaises(UnknownPriorityError):
            self.scorer.score(make_task(priority='urgent'), NOW)

    def test_age_component_caps_at_thirty_days(self):
        """Age boost grows linearly to 1.0 at 720 hours and stays there."""
        self.assertEqual(self.scorer.calculate_age_component(NOW, NOW), 0.0)
        self.assertAlmostEqual(self.scorer.calculate_age_component(NOW - hours(360), NOW), 0.5)
        self.assertEqual(self.scorer.calculate_age_component(NOW - hours(AGE_CAP_HOURS), NOW), 1.0)
        self.assertEqual(self.scorer.calculate_age_component(NOW - hours(5000), NOW), 1.0)

    def test_age_component_clamps_future_creation(self):
        """A creation time after now counts as zero age."""
        self.assertEqual(self.scorer.calculate_age_component(NOW + hours(5), NOW), 0.0)

    def test_one_hour_overdue_critical_task(self):
        """Critical, one hour overdue, created one hour ago."""
        task = make_task(priority='critical', deadline=NOW - hours(1), created_at=NOW - hours(1))
        breakdown = self.scorer.breakdown(task, NOW)

        self.assertEqual(breakdown.deadline_component, 1.0)
        self.assertEqual(breakdown.priority_component, 1.0)
        self.assertAlmostEqual(breakdown.age_component, 1 / 720)
        self.assertAlmostEqual(self.scorer.score(task, NOW), 8.0028, places=4)

    def test_low_priority_thirty_day_old_task_due_in_thirty_days(self):
        """Low priority, due in 720h, created 720h ago."""
        task = make_task(priority='low', deadline=NOW + hours(720), created_at=NOW - hours(720))
        breakdown = self.scorer.breakdown(task, NOW)

        self.assertEqual(breakdown.priority_component, 0.25)
        self.assertAlmostEqual(breakdown.deadline_component, math.exp(-5.04))
        self.assertEqual(breakdown.age_component, 1.0)
        self.assertAlmostEqual(self.scorer.score(task, NOW), 3.0259, places=4)

    def test_score_is_rounded_to_four_places(self):
        """Scores carry at most four decimal places."""
        task = make_task(deadline=NOW + hours(13), created_at=NOW - hours(7))
        result = self.scorer.score(task, NOW)
        self.assertEqual(result, round(result, 4))

    def test_score_range(self):
        """Active scores fall within [0, 10]."""
        for priority in ('low', 'critical'):
            for deadline in (NOW - hours(10), NOW + hours(10000)):
                for created_at in (NOW, NOW - hours(10000)):
                    result = score(make_task(priority=priority, deadline=deadline, created_at=created_at), NOW)
                    self.assertGreaterEqual(result, 0)
                    self.assertLessEqual(result, 10)

    def test_scoring_is_deterministic(self):
        """Identical inputs give identical scores."""
        task = make_task(priority='high', deadline=NOW + hours(30), created_at=NOW - hours(50))
        self.assertEqual(score(task, NOW), score(copy.deepcopy(task), NOW))

    def test_iso_string_timestamps(self):
        """ISO-8601 strings, including a Z suffix, score like datetimes."""
        as_datetimes = make_task(deadline=NOW + hours(24), created_at=NOW - hours(24))
        as_strings = make_task(deadline='2025-01-16T12:00:00Z', created_at='2025-01-14T12:00:00+00:00')
        self.assertEqual(score(as_datetimes, NOW), score(as_strings, '2025-01-15T12:00:00Z'))

    def test_invalid_deadline_raises(self):
        """Unparseable deadlines raise rather than defaulting to now."""
        with self.assertRaises(InvalidTimestampError) as ctx:
            score(make_task(deadline='next tuesday'), NOW)
        self.assertEqual(ctx.exception.code, ErrorCode.ERR_INVALID_DATE)
        self.assertEqual(ctx.exception.field, 'deadline')

    def test_missing_created_at_raises(self):
        """A missing creation time is an error, even for completed tasks."""
        with self.assertRaises(InvalidTimestampError):
            score(make_task(created_at=None), NOW)
        with self.assertRaises(InvalidTimestampError):
            score(make_task(created_at=None, completed=True), NOW)

    def test_scoring_does_not_mutate_task(self):
        """The scorer only reads its input."""
        task = make_task()
        before = copy.deepcopy(task)
        score(task, NOW)
        self.assertEqual(task, before)


class ScoringWeightsTests(TestCase):
    """Tests for overriding the scoring constants."""

    def test_defaults_match_constants(self):
        weights = ScoringWeights()
        self.assertEqual(weights.priority, 0.40)
        self.assertEqual(weights.deadline, 0.40)
        self.assertEqual(weights.age, 0.20)
        self.assertEqual(weights.decay_k, 0.007)
        self.assertEqual(weights.age_cap_hours, 720)

    def test_custom_weights_applied(self):
        """A scorer that only counts priority ignores deadline and age."""
        scorer = UrgencyScorer(ScoringWeights(priority=1.0, deadline=0.0, age=0.0))
        task = make_task(priority='high', deadline=NOW - hours(5), created_at=NOW - hours(900))
        self.assertEqual(scorer.score(task, NOW), 7.5)

    def test_from_dict_keeps_missing_defaults(self):
        weights = ScoringWeights.from_dict({'decay_k': 0.01})
        self.assertEqual(weights.decay_k, 0.01)
        self.assertEqual(weights.priority, 0.40)
        self.assertEqual(weights.age_cap_hours, 720)

    def test_invalid_weights_rejected(self):
        with self.assertRaises(ValueError):
            ScoringWeights(priority=-0.1)
        with self.assertRaises(ValueError):
            ScoringWeights(age_cap_hours=0)
        with self.assertRaises(ValueError):
            ScoringWeights(priority=0, deadline=0, age=0)

    def test_mix_weights_are_normalized(self):
        """Mix weights are rescaled to sum to 1.0, keeping their proportions."""
        weights = ScoringWeights(priority=2.0, deadline=1.0, age=1.0)
        self.assertAlmostEqual(weights.priority, 0.5)
        self.assertAlmostEqual(weights.deadline, 0.25)
        self.assertAlmostEqual(weights.age, 0.25)

    def test_oversized_weights_keep_score_in_range(self):
        """Weights summing past 1.0 still cap the score at 10."""
        scorer = UrgencyScorer(ScoringWeights(priority=1.0, deadline=1.0, age=1.0))
        task = make_task(priority='critical', deadline=NOW - hours(1), created_at=NOW - hours(1000))
        self.assertAlmostEqual(scorer.score(task, NOW), 10.0, places=4)
        self.assertLessEqual(scorer.score(task, NOW), 10.0)


class ValidationTests(TestCase):
    """Tests for batch pre-validation of task records."""

    def test_valid_tasks_have_no_errors(self):
        self.assertEqual(validate_tasks([make_task(id='a'), make_task(id='b')]), [])

    def test_empty_list(self):
        errors = validate_tasks([])
        self.assertEqual(errors[0].code, ErrorCode.ERR_EMPTY_TASKS)

    def test_reports_each_problem(self):
        errors = validate_tasks([
            make_task(id='a', title='  '),
            make_task(id='b', priority='urgent'),
            make_task(id='c', category='hobby'),
            make_task(id='d', deadline='not a date'),
            make_task(id='d'),
        ])
        codes = [(e.code, e.task_id) for e in errors]

        self.assertIn((ErrorCode.ERR_MISSING_FIELD, 'a'), codes)
        self.assertIn((ErrorCode.ERR_INVALID_PRIORITY, 'b'), codes)
        self.assertIn((ErrorCode.ERR_INVALID_CATEGORY, 'c'), codes)
        self.assertIn((ErrorCode.ERR_INVALID_DATE, 'd'), codes)
        self.assertIn((ErrorCode.ERR_DUPLICATE_ID, 'd'), codes)

    def test_error_to_dict(self):
        error = validate_tasks([make_task(id='x', deadline='bad')])[0]
        self.assertEqual(error.to_dict()['error_code'], 'ERR_INVALID_DATE')
        self.assertEqual(error.to_dict()['field'], 'deadline')
        self.assertEqual(error.to_dict()['task_id'], 'x')

    def test_parse_timestamp_treats_naive_as_utc(self):
        parsed = parse_timestamp('2025-01-15T12:00:00')
        self.assertEqual(parsed, NOW)


class FilterTests(TestCase):
    """Tests for the filtering stage of the engine."""

    def setUp(self):
        self.tasks = [
            make_task(id='active-work', category='work', priority='high', tags=['urgent']),
            make_task(id='done-work', category='work', priority='high', completed=True),
            make_task(id='active-home', category='personal', priority='low', tags=['home']),
        ]

    def test_default_filter_keeps_everything(self):
        self.assertEqual(ids(filter_tasks(self.tasks, TaskFilter())), ids(self.tasks))

    def test_status_filter(self):
        active = filter_tasks(self.tasks, TaskFilter(status='active'))
        completed = filter_tasks(self.tasks, TaskFilter(status='completed'))
        self.assertEqual(ids(active), ['active-work', 'active-home'])
        self.assertEqual(ids(completed), ['done-work'])

    def test_priority_and_category_filters(self):
        self.assertEqual(ids(filter_tasks(self.tasks, TaskFilter(priority='low'))), ['active-home'])
        self.assertEqual(
            ids(filter_tasks(self.tasks, TaskFilter(category='work'))),
            ['active-work', 'done-work']
        )

    def test_tag_filter_is_case_sensitive(self):
        self.assertEqual(ids(filter_tasks(self.tasks, TaskFilter(tag='urgent'))), ['active-work'])
        self.assertEqual(filter_tasks(self.tasks, TaskFilter(tag='Urgent')), [])

    def test_search_matches_title_description_or_tag(self):
        tasks = [
            make_task(id='title', title='Quarterly REPORT'),
            make_task(id='description', description='attach the report draft'),
            make_task(id='tag', tags=['reporting']),
            make_task(id='none', title='Groceries', description='milk', tags=['shop']),
        ]
        result = filter_tasks(tasks, TaskFilter(search_query='  Report '))
        self.assertEqual(ids(result), ['title', 'description', 'tag'])

    def test_blank_search_is_ignored(self):
        self.assertEqual(len(filter_tasks(self.tasks, TaskFilter(search_query='   '))), 3)

    def test_search_is_substring_not_fuzzy(self):
        tasks = [make_task(id='a', title='Report')]
        self.assertEqual(filter_tasks(tasks, TaskFilter(search_query='rpt')), [])

    def test_invalid_filter_values_raise(self):
        with self.assertRaises(InvalidFilterError):
            TaskFilter(status='pending').validate()
        with self.assertRaises(InvalidFilterError):
            TaskFilter(priority='urgent').validate()
        with self.assertRaises(InvalidFilterError):
            TaskFilter(category='hobby').validate()

    def test_from_dict(self):
        task_filter = TaskFilter.from_dict({'status': 'active', 'search': 'milk', 'tag': ''})
        self.assertEqual(task_filter.status, 'active')
        self.assertEqual(task_filter.search_query, 'milk')
        self.assertIsNone(task_filter.tag)
        self.assertEqual(task_filter.priority, 'all')


class FilterCompositionTests(TestCase):
    """All five filters together select exactly the tasks matching every one."""

    def setUp(self):
        match = dict(completed=False, priority='high', category='work', tags=['urgent'],
                     title='Write report')
        self.tasks = [
            make_task(id='match-title', **match),
            make_task(id='match-description', **{**match, 'title': 'Draft', 'description': 'Monthly REPORT'}),
            make_task(id='match-tag', **{**match, 'title': 'Numbers', 'tags': ['urgent', 'report']}),
            make_task(id='completed', **{**match, 'completed': True}),
            make_task(id='medium', **{**match, 'priority': 'medium'}),
            make_task(id='critical', **{**match, 'priority': 'critical'}),
            make_task(id='personal', **{**match, 'category': 'personal'}),
            make_task(id='no-tag', **{**match, 'tags': ['later']}),
            make_task(id='tag-case', **{**match, 'tags': ['URGENT']}),
            make_task(id='no-search', **{**match, 'title': 'Call bank'}),
            make_task(id='nothing', completed=True, priority='low', category='health', title='Gym'),
            make_task(id='only-search', title='report'),
        ]
        self.task_filter = TaskFilter(
            status='active', priority='high', category='work', tag='urgent', search_query='report'
        )

    def _expected(self):
        def passes(task):
            query = 'report'
            return (
                not task['completed']
                and task['priority'] == 'high'
                and task['category'] == 'work'
                and 'urgent' in task['tags']
                and (
                    query in task['title'].lower()
                    or query in task['description'].lower()
                    or any(query in tag.lower() for tag in task['tags'])
                )
            )
        return [t['id'] for t in self.tasks if passes(t)]

    def test_combined_filters(self):
        result = filter_tasks(self.tasks, self.task_filter)
        self.assertEqual(ids(result), ['match-title', 'match-description', 'match-tag'])
        self.assertEqual(ids(result), self._expected())

    def test_view_of_returns_same_subset(self):
        result = view_of(self.tasks, self.task_filter, 'alpha', NOW)
        self.assertEqual(sorted(ids(result)), sorted(self._expected()))


class SortTests(TestCase):
    """Tests for the sort orders and their tie-break rules."""

    def test_completed_tasks_always_last(self):
        """For every order, no completed task precedes an active one."""
        tasks = [
            make_task(id='done-critical', priority='critical', completed=True,
                      deadline=NOW - hours(5), title='Aardvark', created_at=NOW),
            make_task(id='active-low', priority='low', deadline=NOW + hours(900),
                      title='Zebra', created_at=NOW - hours(100)),
            make_task(id='done-high', priority='high', completed=True,
                      deadline=NOW - hours(50), title='Apple', created_at=NOW - hours(1)),
            make_task(id='active-medium', priority='medium', deadline=NOW + hours(400),
                      title='Yak', created_at=NOW - hours(200)),
        ]
        for order in SortOrder:
            result = view_of(tasks, TaskFilter(), order, NOW)
            completed_flags = [t['completed'] for t in result]
            self.assertEqual(completed_flags, sorted(completed_flags), order)

    def test_smart_sort_highest_score_first(self):
        tasks = [
            make_task(id='low-far', priority='low', deadline=NOW + hours(700)),
            make_task(id='critical-overdue', priority='critical', deadline=NOW - hours(1)),
            make_task(id='high-soon', priority='high', deadline=NOW + hours(4)),
        ]
        result = view_of(tasks, TaskFilter(), 'smart', NOW)
        self.assertEqual(ids(result), ['critical-overdue', 'high-soon', 'low-far'])

    def test_smart_sort_ignores_stale_cached_scores(self):
        """Ranking uses the score for the given now, not a cached sort_score."""
        tasks = [
            make_task(id='stale-high', priority='low', deadline=NOW + hours(700), sort_score=9.9),
            make_task(id='really-urgent', priority='critical', deadline=NOW - hours(1), sort_score=0.1),
        ]
        result = view_of(tasks, TaskFilter(), 'smart', NOW)
        self.assertEqual(ids(result), ['really-urgent', 'stale-high'])

    def test_smart_sort_is_stable_for_equal_scores(self):
        """Tasks with identical scores keep their input order."""
        first = make_task(id='first', title='B')
        second = make_task(id='second', title='A')
        self.assertEqual(ids(view_of([first, second], None, 'smart', NOW)), ['first', 'second'])
        self.assertEqual(ids(view_of([second, first], None, 'smart', NOW)), ['second', 'first'])

    def test_deadline_sort_earliest_first(self):
        tasks = [
            make_task(id='later', deadline=NOW + hours(48)),
            make_task(id='overdue', deadline=NOW - hours(3)),
            make_task(id='soon', deadline='2025-01-15T13:00:00Z'),
        ]
        self.assertEqual(ids(sort_tasks(tasks, SortOrder.DEADLINE)), ['overdue', 'soon', 'later'])

    def test_priority_sort_with_deadline_tie_break(self):
        tasks = [
            make_task(id='medium', priority='medium', deadline=NOW + hours(1)),
            make_task(id='high-late', priority='high', deadline=NOW + hours(50)),
            make_task(id='critical', priority='critical', deadline=NOW + hours(500)),
            make_task(id='high-early', priority='high', deadline=NOW + hours(5)),
            make_task(id='low', priority='low', deadline=NOW - hours(5)),
        ]
        self.assertEqual(
            ids(sort_tasks(tasks, 'priority')),
            ['critical', 'high-early', 'high-late', 'medium', 'low']
        )

    def test_created_at_sort_newest_first(self):
        tasks = [
            make_task(id='old', created_at=NOW - hours(100)),
            make_task(id='new', created_at=NOW),
            make_task(id='middle', created_at=NOW - hours(10)),
        ]
        self.assertEqual(ids(sort_tasks(tasks, 'createdAt')), ['new', 'middle', 'old'])
        self.assertEqual(ids(sort_tasks(tasks, 'created_at')), ['new', 'middle', 'old'])

    def test_created_at_sort_is_stable(self):
        tasks = [make_task(id='a'), make_task(id='b'), make_task(id='c')]
        self.assertEqual(ids(sort_tasks(tasks, 'createdAt')), ['a', 'b', 'c'])

    def test_alpha_sort_ignores_case(self):
        """Titles sort case-insensitively: apple, Banana, Cherry."""
        tasks = [
            make_task(id='banana', title='Banana'),
            make_task(id='apple', title='apple'),
            make_task(id='cherry', title='Cherry'),
        ]
        result = sort_tasks(tasks, 'alpha')
        self.assertEqual([t['title'] for t in result], ['apple', 'Banana', 'Cherry'])

    def test_alpha_sort_is_a_total_order(self):
        """Titles equal ignoring case are ordered the same way on every call."""
        forward = [make_task(id='lower', title='apple'), make_task(id='upper', title='Apple')]
        backward = list(reversed(forward))
        self.assertEqual(ids(sort_tasks(forward, 'alpha')), ids(sort_tasks(backward, 'alpha')))

    def test_unknown_sort_order_raises(self):
        with self.assertRaises(UnknownSortOrderError):
            view_of([make_task()], TaskFilter(), 'random', NOW)

    def test_smart_sort_requires_now(self):
        with self.assertRaises(InvalidFilterError):
            sort_tasks([make_task()], 'smart')


class ViewOfTests(TestCase):
    """Tests for the full filter-then-sort pipeline."""

    def test_empty_input(self):
        self.assertEqual(view_of([], TaskFilter(), 'smart', NOW), [])

    def test_filter_matching_nothing(self):
        self.assertEqual(view_of([make_task()], TaskFilter(status='completed'), 'smart', NOW), [])

    def test_input_is_not_mutated(self):
        tasks = [
            make_task(id='b', priority='low'),
            make_task(id='a', priority='critical', tags=['x']),
        ]
        before = copy.deepcopy(tasks)
        result = view_of(tasks, TaskFilter(), 'smart', NOW)

        self.assertEqual(tasks, before)
        self.assertIsNot(result, tasks)
        self.assertEqual(ids(result), ['a', 'b'])

    def test_invalid_timestamp_propagates(self):
        with self.assertRaises(InvalidTimestampError):
            view_of([make_task(deadline='soon')], TaskFilter(), 'deadline', NOW)

    def test_annotate_task_returns_copy_with_flags(self):
        task = make_task(id='a', priority='critical', deadline=NOW - hours(1))
        annotated = annotate_task(task, NOW)

        self.assertEqual(annotated['sort_score'], 8.0)
        self.assertTrue(annotated['is_overdue'])
        self.assertFalse(annotated['is_due_soon'])
        self.assertNotIn('sort_score', task)

    def test_ranked_view_matches_view_of(self):
        tasks = [
            make_task(id='low-far', priority='low', deadline=NOW + hours(700)),
            make_task(id='done', priority='critical', completed=True),
            make_task(id='critical-overdue', priority='critical', deadline=NOW - hours(1)),
            make_task(id='high-soon', priority='high', deadline=NOW + hours(4)),
        ]
        for order in SortOrder:
            self.assertEqual(
                ids(ranked_view(tasks, TaskFilter(), order, NOW)),
                ids(view_of(tasks, TaskFilter(), order, NOW)),
                order
            )

    def test_ranked_view_scores_each_visible_task_once(self):
        """Filtered-out tasks are never scored; visible ones are scored exactly once."""
        tasks = [
            make_task(id='a', priority='high'),
            make_task(id='b', priority='low', deadline=NOW + hours(100)),
            make_task(id='hidden', category='work'),
        ]
        scorer = UrgencyScorer()
        with mock.patch.object(scorer, 'score', wraps=scorer.score) as scored:
            result = ranked_view(tasks, TaskFilter(category='personal'), 'smart', NOW, scorer)

        self.assertEqual(ids(result), ['a', 'b'])
        self.assertEqual(scored.call_count, 2)

    def test_ranked_view_ignores_stale_cached_scores(self):
        tasks = [
            make_task(id='stale-high', priority='low', deadline=NOW + hours(700), sort_score=9.9),
            make_task(id='really-urgent', priority='critical', deadline=NOW - hours(1), sort_score=0.1),
        ]
        result = ranked_view(tasks, None, 'smart', NOW)

        self.assertEqual(ids(result), ['really-urgent', 'stale-high'])
        self.assertEqual(result[0]['sort_score'], 8.0)
        self.assertEqual(tasks[0]['sort_score'], 9.9)


class DeadlineHelperTests(TestCase):
    """Tests for overdue/due-soon helpers and statistics."""

    def test_is_overdue(self):
        self.assertTrue(is_overdue(make_task(deadline=NOW - hours(1)), NOW))
        self.assertFalse(is_overdue(make_task(deadline=NOW + hours(1)), NOW))
        self.assertFalse(is_overdue(make_task(deadline=NOW - hours(1), completed=True), NOW))

    def test_is_due_soon(self):
        self.assertTrue(is_due_soon(make_task(deadline=NOW + hours(23)), NOW))
        self.assertFalse(is_due_soon(make_task(deadline=NOW + hours(25)), NOW))
        self.assertTrue(is_due_soon(make_task(deadline=NOW + hours(25)), NOW, within_hours=48))
        self.assertFalse(is_due_soon(make_task(deadline=NOW - hours(1)), NOW))
        self.assertFalse(is_due_soon(make_task(deadline=NOW + hours(1), completed=True), NOW))

    def test_summarize_tasks(self):
        tasks = [
            make_task(id='1', category='work', priority='high', completed=True),
            make_task(id='2', category='work', priority='high', deadline=NOW - hours(2)),
            make_task(id='3', category='health', priority='low', deadline=NOW + hours(3)),
        ]
        stats = summarize_tasks(tasks, NOW)

        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['completed'], 1)
        self.assertEqual(stats['active'], 2)
        self.assertEqual(stats['overdue'], 1)
        self.assertEqual(stats['due_soon'], 1)
        self.assertEqual(stats['completion_rate'], 33)
        self.assertEqual(stats['by_category'][0], {'category': 'work', 'count': 2})
        self.assertEqual(stats['by_priority'], [
            {'priority': 'high', 'count': 2},
            {'priority': 'low', 'count': 1},
        ])

    def test_summarize_empty(self):
        stats = summarize_tasks([], NOW)
        self.assertEqual(stats['total'], 0)
        self.assertEqual(stats['completion_rate'], 0)
        self.assertEqual(stats['by_category'], [])

    def test_completion_rate_rounds_half_up(self):
        tasks = [make_task(id=str(i), completed=(i == 0)) for i in range(8)]
        self.assertEqual(summarize_tasks(tasks, NOW)['completion_rate'], 13)


class TaskModelTests(TestCase):
    """Tests for the Task model and the partial-update merge."""

    def setUp(self):
        self.user = User.objects.create_user(username='ada@example.com', password='password123')
        self.task = Task.objects.create(
            owner=self.user,
            title='Pay rent',
            start_at=NOW - hours(1),
            deadline=NOW + hours(24),
            priority='high',
            category='finance',
            created_at=NOW - hours(48),
        )

    def test_to_record(self):
        record = self.task.to_record()
        self.assertEqual(record['id'], str(self.task.id))
        self.assertEqual(record['owner_id'], str(self.user.pk))
        self.assertEqual(record['priority'], 'high')
        self.assertEqual(record['created_at'], NOW - hours(48))

    def test_refresh_sort_score(self):
        result = self.task.refresh_sort_score(NOW)
        self.assertEqual(result, score(self.task.to_record(), NOW))
        self.assertEqual(self.task.sort_score, result)

    def test_apply_partial_update(self):
        before_updated = self.task.updated_at
        apply_partial_update(self.task, {'completed': True, 'tags': [' Bills ', 'bills', 'Home']}, NOW)
        self.task.refresh_from_db()

        self.assertTrue(self.task.completed)
        self.assertEqual(self.task.tags, ['bills', 'home'])
        self.assertEqual(self.task.sort_score, -1)
        self.assertEqual(self.task.title, 'Pay rent')
        self.assertGreaterEqual(self.task.updated_at, before_updated)

    def test_apply_partial_update_rejects_unknown_fields(self):
        for field_name in ('id', 'owner', 'created_at', 'sort_score', 'colour'):
            with self.assertRaises(ValueError):
                apply_partial_update(self.task, {field_name: 'x'}, NOW)
        self.task.refresh_from_db()
        self.assertEqual(self.task.created_at, NOW - hours(48))

    def test_normalize_tags(self):
        self.assertEqual(normalize_tags([' Work', 'work', '', 'URGENT']), ['work', 'urgent'])
        self.assertEqual(normalize_tags(None), [])


class TaskAPITestBase(APITestCase):
    """Shared setup: an authenticated user and a second user."""

    def setUp(self):
        cache.clear()
        self.user = User.objects.create_user(username='ada@example.com', password='password123')
        self.other = User.objects.create_user(username='bob@example.com', password='password123')
        self.client.force_authenticate(user=self.user)

    def create_task(self, owner=None, **fields):
        now = timezone.now()
        defaults = {
            'title': 'Task',
            'start_at': now - hours(1),
            'deadline': now + hours(24),
            'priority': 'medium',
            'category': 'personal',
        }
        defaults.update(fields)
        task = Task(owner=owner or self.user, **defaults)
        task.refresh_sort_score(now)
        task.save()
        return task


class TaskListAPITests(TaskAPITestBase):
    """Tests for listing and creating tasks."""

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)
        response = self.client.get('/api/tasks/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_task(self):
        """POST /api/tasks/ should store the task with a score."""
        data = {
            'title': '  Submit report  ',
            'description': 'Q4 numbers',
            'tags': ['Work', 'urgent', 'work'],
            'start_at': '2030-01-01T09:00:00Z',
            'deadline': '2030-01-02T09:00:00Z',
            'priority': 'critical',
            'category': 'work',
        }
        response = self.client.post('/api/tasks/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['title'], 'Submit report')
        self.assertEqual(response.data['tags'], ['work', 'urgent'])
        self.assertGreater(response.data['sort_score'], 0)
        self.assertTrue(Task.objects.filter(owner=self.user, title='Submit report').exists())

    def test_create_rejects_deadline_before_start(self):
        data = {
            'title': 'Backwards',
            'start_at': '2030-01-02T09:00:00Z',
            'deadline': '2030-01-01T09:00:00Z',
        }
        response = self.client.post('/api/tasks/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertIn('deadline', response.data['errors'])

    def test_create_rejects_empty_title_and_bad_priority(self):
        data = {
            'title': '   ',
            'start_at': '2030-01-01T09:00:00Z',
            'deadline': '2030-01-02T09:00:00Z',
            'priority': 'urgent',
        }
        response = self.client.post('/api/tasks/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('title', response.data['errors'])
        self.assertIn('priority', response.data['errors'])

    def test_list_only_own_tasks_in_smart_order(self):
        now = timezone.now()
        self.create_task(title='Later', priority='low', deadline=now + hours(600))
        self.create_task(title='Overdue', priority='critical', start_at=now - hours(10), deadline=now - hours(2))
        self.create_task(title='Done', priority='critical', completed=True)
        self.create_task(owner=self.other, title='Not mine')

        response = self.client.get('/api/tasks/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual([t['title'] for t in response.data['tasks']], ['Overdue', 'Later', 'Done'])
        self.assertEqual(response.data['tasks'][-1]['sort_score'], -1)
        self.assertEqual(response.data['summary']['total'], 3)
        self.assertEqual(response.data['summary']['overdue'], 1)
        self.assertTrue(response.data['tasks'][0]['is_overdue'])
        self.assertFalse(response.data['tasks'][1]['is_overdue'])

    def test_list_filters_and_sort(self):
        self.create_task(title='Write report', priority='high', category='work', tags=['urgent'])
        self.create_task(title='Report to gym', priority='high', category='health', tags=['urgent'])
        self.create_task(title='Banana bread', priority='high', category='work', tags=['urgent'])

        response = self.client.get('/api/tasks/', {
            'status': 'active', 'priority': 'high', 'category': 'work',
            'tag': 'urgent', 'search': 'REPORT', 'sort': 'alpha',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t['title'] for t in response.data['tasks']], ['Write report'])
        self.assertEqual(response.data['sort'], 'alpha')

    def test_list_rejects_unknown_sort(self):
        response = self.client.get('/api/tasks/', {'sort': 'random'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_INVALID_FILTER.value)

    def test_list_rejects_unknown_category(self):
        response = self.client.get('/api/tasks/', {'category': 'hobby'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_empty_list(self):
        response = self.client.get('/api/tasks/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['tasks'], [])
        self.assertEqual(response.data['count'], 0)

    def test_reads_are_not_write_throttled(self):
        """Only task writes count against the write rate limit."""
        with mock.patch.object(TaskWriteRateThrottle, 'rate', '2/min'):
            for _ in range(3):
                self.assertEqual(self.client.get('/api/tasks/').status_code, status.HTTP_200_OK)

            data = {
                'title': 'Write',
                'start_at': '2030-01-01T09:00:00Z',
                'deadline': '2030-01-02T09:00:00Z',
            }
            for _ in range(2):
                response = self.client.post('/api/tasks/', data, format='json')
                self.assertEqual(response.status_code, status.HTTP_201_CREATED)
            response = self.client.post('/api/tasks/', data, format='json')
            self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)


class TaskDetailAPITests(TaskAPITestBase):
    """Tests for single-task endpoints."""

    def test_get_task(self):
        task = self.create_task(title='Read book')
        response = self.client.get(f'/api/tasks/{task.id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['title'], 'Read book')
        self.assertFalse(response.data['is_overdue'])
        self.assertTrue(response.data['is_due_soon'])

    def test_get_overdue_task_is_flagged(self):
        """GET /api/tasks/<id>/ marks a task past its deadline as overdue."""
        now = timezone.now()
        task = self.create_task(start_at=now - hours(10), deadline=now - hours(2))
        response = self.client.get(f'/api/tasks/{task.id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_overdue'])
        self.assertFalse(response.data['is_due_soon'])

    def test_completed_task_is_never_overdue(self):
        now = timezone.now()
        task = self.create_task(start_at=now - hours(10), deadline=now - hours(2))
        response = self.client.post(f'/api/tasks/{task.id}/toggle/')

        self.assertTrue(response.data['completed'])
        self.assertFalse(response.data['is_overdue'])

    def test_other_users_task_is_not_found(self):
        task = self.create_task(owner=self.other)

        self.assertEqual(self.client.get(f'/api/tasks/{task.id}/').status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.delete(f'/api/tasks/{task.id}/').status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(Task.objects.filter(pk=task.pk).exists())

    def test_patch_task_rescores(self):
        task = self.create_task(priority='low')
        old_score = task.sort_score

        response = self.client.patch(f'/api/tasks/{task.id}/', {'priority': 'critical'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['priority'], 'critical')
        self.assertGreater(response.data['sort_score'], old_score)

    def test_patch_ignores_read_only_fields(self):
        task = self.create_task(title='Original')
        response = self.client.patch(
            f'/api/tasks/{task.id}/',
            {'owner': self.other.pk, 'sort_score': 99, 'title': 'Renamed'},
            format='json'
        )
        task.refresh_from_db()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(task.owner, self.user)
        self.assertEqual(task.title, 'Renamed')
        self.assertNotEqual(task.sort_score, 99)

    def test_patch_validates_deadline_against_existing_start(self):
        task = self.create_task()
        response = self.client.patch(
            f'/api/tasks/{task.id}/',
            {'deadline': (task.start_at - hours(1)).isoformat()},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_toggle_task(self):
        task = self.create_task()

        response = self.client.post(f'/api/tasks/{task.id}/toggle/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['completed'])
        self.assertEqual(response.data['sort_score'], -1)

        response = self.client.post(f'/api/tasks/{task.id}/toggle/')
        self.assertFalse(response.data['completed'])
        self.assertGreater(response.data['sort_score'], 0)

    def test_delete_task(self):
        task = self.create_task()
        response = self.client.delete(f'/api/tasks/{task.id}/')

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Task.objects.filter(pk=task.pk).exists())

    def test_stats(self):
        now = timezone.now()
        self.create_task(completed=True, category='work')
        self.create_task(start_at=now - hours(10), deadline=now - hours(1), category='work')

        response = self.client.get('/api/tasks/stats/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 2)
        self.assertEqual(response.data['completion_rate'], 50)
        self.assertEqual(response.data['overdue'], 1)


class RankAPITests(APITestCase):
    """Tests for the stateless ranking endpoint."""

    def setUp(self):
        cache.clear()
        self.tasks = [
            {
                'id': 'a',
                'title': 'Low and far',
                'priority': 'low',
                'deadline': '2025-02-14T12:00:00Z',
                'created_at': '2024-12-16T12:00:00Z',
            },
            {
                'id': 'b',
                'title': 'Critical overdue',
                'priority': 'critical',
                'deadline': '2025-01-15T11:00:00Z',
                'created_at': '2025-01-15T11:00:00Z',
            },
            {
                'id': 'c',
                'title': 'Finished',
                'priority': 'critical',
                'completed': True,
                'deadline': '2025-01-15T11:00:00Z',
                'created_at': '2025-01-15T11:00:00Z',
            },
        ]

    def test_rank_with_fixed_now(self):
        response = self.client.post(
            '/api/tasks/rank/',
            {'tasks': self.tasks, 'now': '2025-01-15T12:00:00Z'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual([t['id'] for t in response.data['tasks']], ['b', 'a', 'c'])
        scores = [t['sort_score'] for t in response.data['tasks']]
        self.assertAlmostEqual(scores[0], 8.0028, places=4)
        self.assertAlmostEqual(scores[1], 3.0259, places=4)
        self.assertEqual(scores[2], -1)

    def test_rank_with_filter_and_sort(self):
        response = self.client.post(
            '/api/tasks/rank/',
            {'tasks': self.tasks, 'status': 'active', 'sort': 'alpha', 'now': '2025-01-15T12:00:00Z'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t['id'] for t in response.data['tasks']], ['b', 'a'])

    def test_rank_with_custom_weights(self):
        response = self.client.post(
            '/api/tasks/rank/',
            {
                'tasks': self.tasks[:1],
                'now': '2025-01-15T12:00:00Z',
                'weights': {'priority_mix': 1.0, 'deadline_mix': 0.0, 'age_mix': 0.0},
            },
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['tasks'][0]['sort_score'], 2.5)
        self.assertEqual(response.data['weights_used']['priority_mix'], 1.0)

    def test_rank_with_oversized_weights_stays_in_range(self):
        task = dict(self.tasks[1], created_at='2024-11-24T04:00:00Z')
        response = self.client.post(
            '/api/tasks/rank/',
            {
                'tasks': [task],
                'now': '2025-01-15T12:00:00Z',
                'weights': {'priority_mix': 1.0, 'deadline_mix': 1.0, 'age_mix': 1.0},
            },
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertLessEqual(response.data['tasks'][0]['sort_score'], 10)
        self.assertAlmostEqual(response.data['weights_used']['priority_mix'], 1 / 3)

    def test_rank_rejects_all_zero_weights(self):
        response = self.client.post(
            '/api/tasks/rank/',
            {
                'tasks': self.tasks,
                'weights': {'priority_mix': 0.0, 'deadline_mix': 0.0, 'age_mix': 0.0},
            },
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_INVALID_WEIGHTS.value)

    def test_rank_flags_overdue_and_due_soon(self):
        response = self.client.post(
            '/api/tasks/rank/',
            {'tasks': self.tasks, 'now': '2025-01-15T12:00:00Z'},
            format='json'
        )
        flags = {t['id']: (t['is_overdue'], t['is_due_soon']) for t in response.data['tasks']}

        self.assertEqual(flags['b'], (True, False))
        self.assertEqual(flags['a'], (False, False))
        self.assertEqual(flags['c'], (False, False))

    def test_rank_rejects_empty_tasks(self):
        response = self.client.post('/api/tasks/rank/', {'tasks': []}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])

    def test_rank_rejects_invalid_deadline(self):
        tasks = [dict(self.tasks[0], deadline='someday')]
        response = self.client.post('/api/tasks/rank/', {'tasks': tasks}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_rank_rejects_missing_created_at(self):
        task = dict(self.tasks[0])
        del task['created_at']
        response = self.client.post('/api/tasks/rank/', {'tasks': [task]}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_rank_rejects_unknown_sort(self):
        response = self.client.post('/api/tasks/rank/', {'tasks': self.tasks, 'sort': 'random'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_rank_rejects_duplicate_ids(self):
        tasks = [self.tasks[0], dict(self.tasks[1], id='a')]
        response = self.client.post('/api/tasks/rank/', {'tasks': tasks}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class InfoAPITests(APITestCase):
    """Tests for the informational endpoints."""

    def test_api_info_endpoint(self):
        """GET /api/ should return API information."""
        response = self.client.get('/api/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('name', response.data)
        self.assertIn('endpoints', response.data)
        self.assertIn('sort_orders', response.data)

    def test_sort_orders_endpoint(self):
        response = self.client.get('/api/tasks/sort-orders/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(set(response.data['sort_orders']), {'smart', 'deadline', 'priority', 'createdAt', 'alpha'})
        self.assertEqual(response.data['priority_weights']['critical'], 4)
        self.assertEqual(response.data['scoring']['decay_k'], 0.007)

    @override_settings(TODOMASTER_SCORING={'decay_k': 0.01})
    def test_scoring_settings_override(self):
        response = self.client.get('/api/tasks/sort-orders/')
        self.assertEqual(response.data['scoring']['decay_k'], 0.01)
