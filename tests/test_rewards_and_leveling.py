"""
Tests: XP / level derivation, badges, tester stats recompute and leaderboard.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from pattern_testing.core.exceptions import NotFoundError
from pattern_testing.models import db as _db
from pattern_testing.models.testing import TestAssignment
from pattern_testing.services import rewards


def _completed(tester, pattern, hours, coins=0, points=0, started_hours_ago=None):
    now = datetime.now(timezone.utc)
    a = TestAssignment(
        pattern_id=pattern.id,
        tester_id=tester.id,
        creator_id=pattern.creator_id,
        status="completed",
        deadline=now + timedelta(days=7),
        progress=100,
        estimated_hours=hours,
        reward_coins=coins,
        reward_points=points,
        started_at=now - timedelta(hours=started_hours_ago) if started_hours_ago else None,
        completed_at=now,
    )
    _db.session.add(a)
    _db.session.commit()
    return a


# ── Pure derivations ─────────────────────────────────────────────────────────


@pytest.mark.parametrize("xp,level", [(0, 1), (99, 1), (100, 2), (250, 3), (999, 10)])
def test_calculate_level(xp, level):
    assert rewards.calculate_level(xp) == level


def test_assignment_xp_is_base_plus_hours():
    assert rewards.assignment_xp(SimpleNamespace(estimated_hours=6)) == 16


def test_badge_thresholds():
    assert rewards.calculate_badges(0, 1) == []
    assert rewards.calculate_badges(1, 1) == ["First Test"]
    assert rewards.calculate_badges(10, 5) == [
        "First Test", "Novice Tester", "Experienced Tester", "Level 5 Achiever",
    ]
    assert "Legend Tester" in rewards.calculate_badges(100, 10)
    assert "Level 10 Achiever" in rewards.calculate_badges(100, 10)


def test_badges_are_monotone():
    previous = set()
    for completed in range(0, 120, 3):
        level = rewards.calculate_level(completed * 16)
        current = set(rewards.calculate_badges(completed, level))
        assert previous <= current
        previous = current


# ── Stats recompute ──────────────────────────────────────────────────────────


def test_recompute_tester_stats_from_assignments(make_pattern, creator, tester):
    knit = make_pattern(creator, category="Blankets")
    toy = make_pattern(creator, category="Amigurumi")
    _completed(tester, knit, hours=6, coins=60, points=30, started_hours_ago=2)
    _completed(tester, knit, hours=9, coins=90, points=45, started_hours_ago=4)
    _completed(tester, toy, hours=1, coins=10, points=5)

    stats = rewards.recompute_tester_stats(tester.id)

    assert stats.xp == 16 + 19 + 11
    assert stats.level == 1
    assert stats.total_tests_completed == 3
    assert stats.total_coins_earned == 160
    assert stats.total_points_earned == 80
    assert stats.specialties == ["Blankets", "Amigurumi"]
    assert stats.badges == ["First Test"]
    assert stats.average_rating == 0.0
    # (2 + 4 + 0) / 3, missing started_at counts as zero
    assert stats.average_completion_time == pytest.approx(2.0, abs=0.1)
    assert tester.tester_xp == 46


def test_recompute_preserves_joined_at(tester):
    first = rewards.recompute_tester_stats(tester.id)
    joined = first.joined_at
    first.joined_at = joined - timedelta(days=30)
    _db.session.commit()
    expected = first.joined_at

    again = rewards.recompute_tester_stats(tester.id)
    assert again.joined_at == expected


def test_recompute_is_idempotent(pattern, tester):
    _completed(tester, pattern, hours=3, coins=30, points=15)
    a = rewards.recompute_tester_stats(tester.id).to_dict()
    b = rewards.recompute_tester_stats(tester.id).to_dict()
    a.pop("last_active_at")
    b.pop("last_active_at")
    assert a == b


def test_get_or_create_tester_stats(tester):
    stats = rewards.get_or_create_tester_stats(tester.id)
    assert (stats.level, stats.xp, stats.badges) == (1, 0, [])
    assert rewards.get_or_create_tester_stats(tester.id) is stats


def test_get_or_create_unknown_user():
    with pytest.raises(NotFoundError):
        rewards.get_or_create_tester_stats(4040)


# ── Payout ───────────────────────────────────────────────────────────────────


def test_payout_skipped_for_missing_user(pattern, deadline, caplog):
    ghost = TestAssignment(
        id=77, pattern_id=pattern.id, tester_id=9999, creator_id=pattern.creator_id,
        status="completed", deadline=deadline, estimated_hours=1, reward_coins=10, reward_points=5,
    )
    result = rewards.pay_out_rewards(ghost)

    assert result == {"coins": 0, "points": 0}
    assert "skipping payout" in caplog.text


# ── Leaderboard ──────────────────────────────────────────────────────────────


def test_leaderboard_sorts_and_truncates(make_user, pattern):
    counts = {"low": 1, "high": 3, "mid": 2}
    for label, n in counts.items():
        user = make_user(approved=True, name=label)
        for _ in range(n):
            _completed(user, pattern, hours=1)
        rewards.recompute_tester_stats(user.id)

    board = rewards.leaderboard(limit=2)

    assert [e["user"]["name"] for e in board] == ["high", "mid"]
    assert board[0]["total_tests_completed"] == 3


def test_leaderboard_drops_unresolved_users(make_user, pattern, monkeypatch):
    keeper = make_user(approved=True)
    _completed(keeper, pattern, hours=1)
    rewards.recompute_tester_stats(keeper.id)

    gone = make_user(approved=True)
    _completed(gone, pattern, hours=1)
    _completed(gone, pattern, hours=1)
    rewards.recompute_tester_stats(gone.id)

    real_lookup = rewards.user_registry.get_user_by_id
    monkeypatch.setattr(
        rewards.user_registry, "get_user_by_id",
        lambda uid: None if uid == gone.id else real_lookup(uid),
    )

    board = rewards.leaderboard()
    assert [e["user_id"] for e in board] == [keeper.id]
