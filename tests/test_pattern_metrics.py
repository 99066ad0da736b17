"""
Tests: per-pattern metrics, platform analytics, admin dashboard and reconciliation.
"""

import pytest

from pattern_testing.core.exceptions import NotFoundError, PermissionDenied
from pattern_testing.models import db as _db
from pattern_testing.models.testing import PatternTestMetrics, TesterStats
from pattern_testing.services import assignment_lifecycle as lifecycle
from pattern_testing.services import feedback_channel as feedback
from pattern_testing.services import pattern_metrics as metrics


def _started(pattern, tester, deadline, hours=2):
    a = lifecycle.create_assignment(
        pattern_id=pattern.id, tester_id=tester.id, creator_id=pattern.creator_id,
        deadline=deadline, estimated_hours=hours, reward_coins=hours * 10, reward_points=hours * 5,
    )
    lifecycle.accept_assignment(a.id)
    lifecycle.start_assignment(a.id)
    return a


def _review(rating, clarity, accuracy, difficulty, message="Done"):
    return {"rating": rating, "clarity": clarity, "accuracy": accuracy,
            "difficulty": difficulty, "message": message}


def test_metrics_without_feedback_are_zero(pattern, tester, deadline):
    lifecycle.create_assignment(
        pattern_id=pattern.id, tester_id=tester.id, creator_id=pattern.creator_id,
        deadline=deadline, estimated_hours=1, reward_coins=10, reward_points=5,
    )
    row = metrics.recompute_pattern_metrics(pattern.id)

    assert row.total_tests == 1
    assert row.completed_tests == 0
    assert row.average_rating == 0
    assert row.average_difficulty == 0
    assert row.average_completion_time == 0
    assert row.common_issues == []


def test_metrics_average_final_reviews(pattern, make_user, deadline):
    a1 = _started(pattern, make_user(approved=True), deadline)
    a2 = _started(pattern, make_user(approved=True), deadline)
    _started(pattern, make_user(approved=True), deadline)

    lifecycle.complete_assignment(a1.id, _review(5, 4, 3, "easier"))
    lifecycle.complete_assignment(a2.id, _review(4, 4, 4, "harder"))

    row = metrics.get_pattern_metrics(pattern.id)
    assert row.total_tests == 3
    assert row.completed_tests == 2
    assert row.average_rating == 4.5
    assert row.average_clarity == 4.0
    assert row.average_accuracy == 3.5
    assert row.average_difficulty == 2.0


def test_completed_tests_equals_completed_assignments(pattern, make_user, deadline):
    done = _started(pattern, make_user(approved=True), deadline)
    cancelled = _started(pattern, make_user(approved=True), deadline)
    lifecycle.complete_assignment(done.id, _review(3, 3, 3, "as_expected"))
    lifecycle.cancel_assignment(cancelled.id)

    row = metrics.recompute_pattern_metrics(pattern.id)
    completed = [a for a in lifecycle.list_by_pattern(pattern.id) if a.status == "completed"]
    assert row.completed_tests == len(completed) == 1


def test_common_issues_are_first_five_distinct(pattern, tester, deadline):
    a = _started(pattern, tester, deadline)
    for message in ["Row 3 wrong", "Gauge off", "Row 3 wrong", "Typo", "Chart blurry", "Yarn", "Extra"]:
        feedback.post_feedback(a.id, "issue", message)
    feedback.post_feedback(a.id, "question", "Not an issue")

    row = metrics.recompute_pattern_metrics(pattern.id)
    assert row.common_issues == ["Row 3 wrong", "Gauge off", "Typo", "Chart blurry", "Yarn"]


def test_recompute_upserts_single_row(pattern):
    metrics.recompute_pattern_metrics(pattern.id)
    metrics.recompute_pattern_metrics(pattern.id)
    assert _db.session.query(PatternTestMetrics).filter_by(pattern_id=pattern.id).count() == 1


def test_metrics_visible_to_creator_and_admin_only(pattern, creator, admin, tester):
    assert metrics.get_or_compute_pattern_metrics(pattern.id, creator.id).pattern_id == pattern.id
    assert metrics.get_or_compute_pattern_metrics(pattern.id, admin.id).pattern_id == pattern.id
    with pytest.raises(PermissionDenied):
        metrics.get_or_compute_pattern_metrics(pattern.id, tester.id)
    with pytest.raises(NotFoundError):
        metrics.get_or_compute_pattern_metrics(9090, admin.id)


def test_platform_analytics(make_pattern, creator, make_user, deadline):
    p1 = make_pattern(creator, title="P1")
    p2 = make_pattern(creator, title="P2")
    busy = make_user(approved=True)
    idle = make_user(approved=True)

    for _ in range(2):
        a = _started(p1, busy, deadline, hours=2)
        lifecycle.complete_assignment(a.id, _review(5, 5, 5, "as_expected"))
    b = _started(p2, idle, deadline, hours=3)
    lifecycle.complete_assignment(b.id, _review(4, 4, 4, "easier"))
    _started(p2, busy, deadline)

    overview = metrics.platform_analytics()

    assert overview["total_testers"] == 2
    assert overview["active_testers"] == 1
    assert overview["total_tests"] == 4
    assert overview["completed_tests"] == 3
    assert overview["average_completion_rate"] == 75.0
    assert overview["total_rewards_distributed"] == {"coins": 70, "points": 35}
    assert overview["top_patterns"] == [
        {"pattern_id": p1.id, "completed_tests": 2},
        {"pattern_id": p2.id, "completed_tests": 1},
    ]


def test_platform_analytics_empty():
    overview = metrics.platform_analytics()
    assert overview["total_tests"] == 0
    assert overview["average_completion_rate"] == 0
    assert overview["top_patterns"] == []


def test_admin_dashboard_requires_admin(admin, creator):
    board = metrics.admin_dashboard(admin.id)
    assert set(board) == {"overview", "pattern_metrics", "top_testers"}
    with pytest.raises(PermissionDenied):
        metrics.admin_dashboard(creator.id)


def test_recompute_all_repairs_drifted_rows(pattern, tester, deadline):
    a = _started(pattern, tester, deadline, hours=4)
    lifecycle.complete_assignment(a.id, _review(5, 5, 5, "as_expected"))

    stats = _db.session.get(TesterStats, tester.id)
    stats.xp = 9999
    row = _db.session.get(PatternTestMetrics, pattern.id)
    row.completed_tests = 42
    _db.session.commit()

    counts = metrics.recompute_all()

    assert counts == {"testers": 1, "patterns": 1}
    assert _db.session.get(TesterStats, tester.id).xp == 14
    assert _db.session.get(PatternTestMetrics, pattern.id).completed_tests == 1


def test_recompute_cli_command(app, pattern, tester, deadline):
    a = _started(pattern, tester, deadline)
    lifecycle.complete_assignment(a.id, _review(5, 5, 5, "as_expected"))

    runner = app.test_cli_runner()
    result = runner.invoke(args=["recompute-testing-aggregates"])
    assert result.exit_code == 0
