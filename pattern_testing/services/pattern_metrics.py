"""
Pattern Testing: Metrics Aggregator.

Per-pattern rollups, platform analytics and the admin dashboard.

PatternTestMetrics rows are a pure function of the pattern's assignments and
feedback at the moment of recompute:

    total_tests              every assignment for the pattern
    completed_tests          assignments with status completed
    average_rating/clarity/accuracy
                             mean over final_review entries (0 when none)
    average_difficulty       mean over final reviews on easier=1,
                             as_expected=2, harder=3 (0 when none)
    average_completion_time  Σ started→completed hours / completed count;
                             completed rows without started_at add 0 hours
    common_issues            first 5 distinct issue messages, oldest first

All averages are rounded to one decimal.
"""

import logging
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import func, select

from pattern_testing.core.exceptions import PermissionDenied
from pattern_testing.models import db
from pattern_testing.models.testing import (
    DIFFICULTY_SCORES,
    PatternTestMetrics,
    TestAssignment,
    TesterStats,
)
from pattern_testing.services import feedback_channel, rewards, user_registry

logger = logging.getLogger(__name__)

MAX_COMMON_ISSUES = 5
TOP_PATTERNS_LIMIT = 5
DASHBOARD_TOP_TESTERS = 10


def _mean(values) -> float:
    values = list(values)
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


def _distinct_in_order(messages, limit):
    seen = []
    for message in messages:
        if message not in seen:
            seen.append(message)
            if len(seen) == limit:
                break
    return seen


def recompute_pattern_metrics(pattern_id: int, *, commit: bool = True) -> PatternTestMetrics:
    """Rebuild and upsert the metrics row for *pattern_id*."""
    assignments = list(db.session.execute(
        select(TestAssignment)
        .where(TestAssignment.pattern_id == pattern_id)
        .order_by(TestAssignment.id)
    ).scalars())
    completed = [a for a in assignments if a.status == "completed"]

    feedback = feedback_channel.list_by_pattern(pattern_id)
    final_reviews = [f for f in feedback if f.type == "final_review"]
    issues = [f.message for f in feedback if f.type == "issue"]

    metrics = db.session.get(PatternTestMetrics, pattern_id)
    if metrics is None:
        metrics = PatternTestMetrics(pattern_id=pattern_id)
        db.session.add(metrics)

    metrics.total_tests = len(assignments)
    metrics.completed_tests = len(completed)
    metrics.average_rating = _mean(f.rating or 0 for f in final_reviews)
    metrics.average_clarity = _mean(f.clarity or 0 for f in final_reviews)
    metrics.average_accuracy = _mean(f.accuracy or 0 for f in final_reviews)
    metrics.average_difficulty = _mean(
        DIFFICULTY_SCORES[f.difficulty] for f in final_reviews if f.difficulty in DIFFICULTY_SCORES
    )
    metrics.average_completion_time = rewards.average_completion_hours(completed)
    metrics.common_issues = _distinct_in_order(issues, MAX_COMMON_ISSUES)
    metrics.last_updated = datetime.now(timezone.utc)

    db.session.flush()
    if commit:
        db.session.commit()

    logger.debug(
        "Recomputed metrics for pattern %s: %d/%d completed",
        pattern_id, metrics.completed_tests, metrics.total_tests,
        extra={"event_type": "pattern_metrics_recomputed", "pattern_id": pattern_id},
    )
    return metrics


def get_pattern_metrics(pattern_id: int) -> PatternTestMetrics | None:
    return db.session.get(PatternTestMetrics, pattern_id)


def get_or_compute_pattern_metrics(pattern_id: int, user_id: int) -> PatternTestMetrics:
    """Metrics for a pattern, visible to its creator or an admin.

    Computes and stores the row on first access.
    """
    pattern = user_registry.require_pattern(pattern_id)
    user = user_registry.require_user(user_id)
    if pattern.creator_id != user.id and not user.is_admin:
        raise PermissionDenied(user_id, "view_pattern_metrics", reason="only the creator or an admin")

    metrics = get_pattern_metrics(pattern_id)
    if metrics is None:
        metrics = recompute_pattern_metrics(pattern_id)
    return metrics


def platform_analytics() -> dict:
    """Programme-wide overview for admins."""
    total_testers = db.session.execute(select(func.count()).select_from(TesterStats)).scalar_one()
    active_testers = db.session.execute(
        select(func.count()).select_from(TesterStats).where(TesterStats.total_tests_in_progress > 0)
    ).scalar_one()
    coins, points = db.session.execute(
        select(
            func.coalesce(func.sum(TesterStats.total_coins_earned), 0),
            func.coalesce(func.sum(TesterStats.total_points_earned), 0),
        )
    ).one()

    statuses = db.session.execute(
        select(TestAssignment.pattern_id, TestAssignment.status).order_by(TestAssignment.id)
    ).all()
    total_tests = len(statuses)
    completed_by_pattern = Counter(pid for pid, status in statuses if status == "completed")
    completed_tests = sum(completed_by_pattern.values())

    top_patterns = [
        {"pattern_id": pid, "completed_tests": count}
        for pid, count in completed_by_pattern.most_common(TOP_PATTERNS_LIMIT)
    ]

    return {
        "total_testers": total_testers,
        "active_testers": active_testers,
        "total_tests": total_tests,
        "completed_tests": completed_tests,
        "average_completion_rate": round(completed_tests / total_tests * 100, 1) if total_tests else 0,
        "total_rewards_distributed": {"coins": int(coins), "points": int(points)},
        "top_patterns": top_patterns,
    }


def admin_dashboard(admin_id: int) -> dict:
    """Overview, every pattern's metrics and the top testers. Admin only."""
    admin = user_registry.get_user_by_id(admin_id)
    if admin is None or not admin.is_admin:
        raise PermissionDenied(admin_id, "admin_dashboard", reason="admin access required")

    all_metrics = db.session.execute(
        select(PatternTestMetrics).order_by(PatternTestMetrics.pattern_id)
    ).scalars()
    return {
        "overview": platform_analytics(),
        "pattern_metrics": [m.to_dict() for m in all_metrics],
        "top_testers": rewards.leaderboard(DASHBOARD_TOP_TESTERS),
    }


def recompute_all() -> dict:
    """Rebuild every tester stats and pattern metrics row in one transaction.

    Covers every tester and pattern that has at least one assignment, plus
    any existing rollup rows, so stale rows are refreshed too.
    """
    tester_ids = set(db.session.execute(select(TestAssignment.tester_id).distinct()).scalars())
    tester_ids |= set(db.session.execute(select(TesterStats.user_id)).scalars())
    pattern_ids = set(db.session.execute(select(TestAssignment.pattern_id).distinct()).scalars())
    pattern_ids |= set(db.session.execute(select(PatternTestMetrics.pattern_id)).scalars())

    try:
        for tester_id in sorted(tester_ids):
            rewards.recompute_tester_stats(tester_id, commit=False)
        for pattern_id in sorted(pattern_ids):
            recompute_pattern_metrics(pattern_id, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Recomputed %d tester stats and %d pattern metrics rows",
        len(tester_ids), len(pattern_ids),
        extra={"event_type": "aggregates_recomputed"},
    )
    return {"testers": len(tester_ids), "patterns": len(pattern_ids)}
