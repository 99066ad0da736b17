"""
Pattern Testing: Reward & Leveling Service.

Pays completion rewards into the coin/points ledgers and keeps the derived
TesterStats row in step with the tester's assignments.

XP model:
    xp    = Σ (10 + estimated_hours) over completed assignments
    level = xp // 100 + 1

TesterStats is always recomputed from scratch; nothing here increments a
counter in place, so a recompute after any change reproduces the same row.
"""

import logging
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import select

from pattern_testing.models import db
from pattern_testing.models.marketplace import Pattern
from pattern_testing.models.testing import TestAssignment, TesterStats
from pattern_testing.services import user_registry
from pattern_testing.utils.helpers import hours_between

logger = logging.getLogger(__name__)

BASE_XP_PER_TEST = 10
XP_PER_LEVEL = 100
MAX_SPECIALTIES = 3
LEDGER_ENTRY_TYPE = "admin_adjustment"

# (minimum completed tests, badge); ascending
COMPLETION_BADGES = (
    (1, "First Test"),
    (5, "Novice Tester"),
    (10, "Experienced Tester"),
    (25, "Expert Tester"),
    (50, "Master Tester"),
    (100, "Legend Tester"),
)
LEVEL_BADGES = (
    (5, "Level 5 Achiever"),
    (10, "Level 10 Achiever"),
)


# ── Pure derivations ───────────────────────────────────────────────────────────


def assignment_xp(assignment) -> int:
    return BASE_XP_PER_TEST + (assignment.estimated_hours or 0)


def calculate_level(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def calculate_badges(completed_tests: int, level: int) -> list[str]:
    """Badges earned for a completed-test count and level.

    Monotone: raising either argument never removes a badge.
    """
    badges = [name for threshold, name in COMPLETION_BADGES if completed_tests >= threshold]
    badges += [name for threshold, name in LEVEL_BADGES if level >= threshold]
    return badges


def ledger_reference(assignment) -> str:
    return f"test_assignment:{assignment.id}"


# ── Payout ─────────────────────────────────────────────────────────────────────


def pay_out_rewards(assignment: TestAssignment) -> dict:
    """Credit the tester with the assignment's fixed rewards.

    Writes one coin and one points ledger row and bumps the user's balances.
    Called only from the completion routine, inside its transaction; does not
    commit. If the tester no longer exists nothing is written.
    """
    user = user_registry.get_user_by_id(assignment.tester_id)
    if user is None:
        logger.warning(
            "Tester %s not found; skipping payout for assignment %s",
            assignment.tester_id, assignment.id,
            extra={"event_type": "payout_skipped", "assignment_id": assignment.id,
                   "tester_id": assignment.tester_id},
        )
        return {"coins": 0, "points": 0}

    description = "Pattern testing reward for completing test"
    reference = ledger_reference(assignment)
    user_registry.create_coin_transaction({
        "user_id": user.id,
        "type": LEDGER_ENTRY_TYPE,
        "amount": assignment.reward_coins,
        "description": description,
        "reference": reference,
    })
    user_registry.create_points_transaction({
        "user_id": user.id,
        "type": LEDGER_ENTRY_TYPE,
        "amount": assignment.reward_points,
        "description": description,
        "reference": reference,
    })
    user_registry.update_user(user.id, {
        "coins": (user.coins or 0) + assignment.reward_coins,
        "points": (user.points or 0) + assignment.reward_points,
    })

    logger.info(
        "Paid %d coins / %d points to tester %s for assignment %s",
        assignment.reward_coins, assignment.reward_points, user.id, assignment.id,
        extra={"event_type": "rewards_paid", "assignment_id": assignment.id, "tester_id": user.id},
    )
    return {"coins": assignment.reward_coins, "points": assignment.reward_points}


# ── Tester stats ───────────────────────────────────────────────────────────────


def _top_categories(completed: list[TestAssignment]) -> list[str]:
    pattern_ids = {a.pattern_id for a in completed}
    if not pattern_ids:
        return []
    categories = dict(
        db.session.execute(
            select(Pattern.id, Pattern.category).where(Pattern.id.in_(pattern_ids))
        ).all()
    )
    counts = Counter(
        categories[a.pattern_id] for a in completed if categories.get(a.pattern_id)
    )
    return [category for category, _ in counts.most_common(MAX_SPECIALTIES)]


def average_completion_hours(completed: list[TestAssignment]) -> float:
    """Mean started→completed hours over *completed*, rounded to 0.1.

    Assignments missing started_at count toward the denominator with 0 hours.
    """
    if not completed:
        return 0.0
    total = sum(
        hours_between(a.started_at, a.completed_at)
        for a in completed
        if a.started_at and a.completed_at
    )
    return round(total / len(completed), 1)


def get_tester_stats(user_id: int) -> TesterStats | None:
    return db.session.get(TesterStats, user_id)


def get_or_create_tester_stats(user_id: int) -> TesterStats:
    """Return the tester's stats row, creating a zeroed one on first access."""
    user_registry.require_user(user_id)
    stats = get_tester_stats(user_id)
    if stats is None:
        stats = TesterStats(
            user_id=user_id, level=1, xp=0, specialties=[], badges=[],
        )
        db.session.add(stats)
        db.session.commit()
        logger.info("Created tester stats for user %s", user_id, extra={"user_id": user_id})
    return stats


def recompute_tester_stats(user_id: int, *, commit: bool = True) -> TesterStats:
    """Rebuild the tester's stats row from their assignments and upsert it.

    joined_at survives from an existing row; last_active_at is refreshed.
    The resulting level and XP are mirrored onto the user record.
    """
    assignments = list(db.session.execute(
        select(TestAssignment)
        .where(TestAssignment.tester_id == user_id)
        .order_by(TestAssignment.id)
    ).scalars())
    completed = [a for a in assignments if a.status == "completed"]
    in_progress = [a for a in assignments if a.status == "in_progress"]

    xp = sum(assignment_xp(a) for a in completed)
    level = calculate_level(xp)
    now = datetime.now(timezone.utc)

    stats = get_tester_stats(user_id)
    if stats is None:
        stats = TesterStats(user_id=user_id, joined_at=now)
        db.session.add(stats)

    stats.level = level
    stats.xp = xp
    stats.total_tests_completed = len(completed)
    stats.total_tests_in_progress = len(in_progress)
    # No creator-to-tester rating channel exists yet
    stats.average_rating = 0.0
    stats.average_completion_time = average_completion_hours(completed)
    stats.specialties = _top_categories(completed)
    stats.badges = calculate_badges(len(completed), level)
    stats.total_coins_earned = sum(a.reward_coins for a in completed)
    stats.total_points_earned = sum(a.reward_points for a in completed)
    stats.last_active_at = now

    if user_registry.get_user_by_id(user_id) is not None:
        user_registry.update_user(user_id, {"tester_level": level, "tester_xp": xp})

    db.session.flush()
    if commit:
        db.session.commit()

    logger.debug(
        "Recomputed tester stats for %s: level=%d xp=%d completed=%d",
        user_id, level, xp, len(completed),
        extra={"event_type": "tester_stats_recomputed", "tester_id": user_id},
    )
    return stats


def leaderboard(limit: int = 10) -> list[dict]:
    """Top testers by completed tests; rows whose user is gone are dropped."""
    rows = db.session.execute(
        select(TesterStats)
        .order_by(TesterStats.total_tests_completed.desc(), TesterStats.joined_at.asc(), TesterStats.user_id.asc())
        .limit(limit)
    ).scalars()

    entries = []
    for stats in rows:
        user = user_registry.get_user_by_id(stats.user_id)
        if user is None:
            continue
        entries.append({**stats.to_dict(), "user": user.summary()})
    return entries
