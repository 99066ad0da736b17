"""
Tests: assignment lifecycle: creation, named transitions, progress and completion.

The completion tests double as the end-to-end scenario:
apply → approve → create (60 coins, 30 points, 6 h) → accept → start →
complete (5/5/5, as_expected) → rewards paid exactly once.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pattern_testing.core.exceptions import (
    AlreadyCompletedError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from pattern_testing.models import db as _db
from pattern_testing.models.marketplace import CoinTransaction, PointsTransaction
from pattern_testing.models.testing import TestFeedback
from pattern_testing.services import application_intake as intake
from pattern_testing.services import assignment_lifecycle as lifecycle
from pattern_testing.services import rewards
from pattern_testing.utils.helpers import as_utc


GOOD_REVIEW = {
    "rating": 5,
    "clarity": 5,
    "accuracy": 5,
    "difficulty": "as_expected",
    "message": "Great!",
}


def _make_assignment(pattern, tester, deadline, hours=6, coins=60, points=30):
    return lifecycle.create_assignment(
        pattern_id=pattern.id,
        tester_id=tester.id,
        creator_id=pattern.creator_id,
        deadline=deadline,
        estimated_hours=hours,
        reward_coins=coins,
        reward_points=points,
    )


def _in_progress(pattern, tester, deadline, **kwargs):
    assignment = _make_assignment(pattern, tester, deadline, **kwargs)
    lifecycle.accept_assignment(assignment.id, tester.id)
    lifecycle.start_assignment(assignment.id, tester.id)
    return assignment


# ── Creation ─────────────────────────────────────────────────────────────────


def test_create_assignment_starts_pending(pattern, tester, deadline):
    assignment = _make_assignment(pattern, tester, deadline)

    assert assignment.status == "pending"
    assert assignment.progress == 0
    assert assignment.creator_id == pattern.creator_id
    assert assignment.accepted_at is None
    assert (assignment.reward_coins, assignment.reward_points) == (60, 30)


def test_create_assignment_rejects_negative_rewards(pattern, tester, deadline):
    with pytest.raises(ValidationError):
        _make_assignment(pattern, tester, deadline, coins=-1)


def test_request_assignment_derives_rewards_from_estimated_time(pattern, tester):
    before = datetime.now(timezone.utc)
    assignment = lifecycle.request_assignment(tester.id, pattern.id)

    assert assignment.estimated_hours == 6
    assert assignment.reward_coins == 60
    assert assignment.reward_points == 30
    assert assignment.creator_id == pattern.creator_id
    delta = as_utc(assignment.deadline) - before
    assert timedelta(days=6, hours=23) < delta <= timedelta(days=7, minutes=1)


def test_request_assignment_defaults_to_five_hours(make_pattern, creator, tester):
    vague = make_pattern(creator, estimated_time="a weekend")
    assignment = lifecycle.request_assignment(tester.id, vague.id)

    assert assignment.estimated_hours == 5
    assert assignment.reward_coins == 50
    assert assignment.reward_points == 25


def test_request_assignment_requires_approved_tester(pattern, make_user):
    outsider = make_user(approved=False)
    with pytest.raises(PermissionDenied):
        lifecycle.request_assignment(outsider.id, pattern.id)


def test_request_assignment_unknown_pattern(tester):
    with pytest.raises(NotFoundError):
        lifecycle.request_assignment(tester.id, 4242)


def test_request_assignment_blocks_duplicate_active(pattern, tester):
    first = lifecycle.request_assignment(tester.id, pattern.id)
    with pytest.raises(ConflictError):
        lifecycle.request_assignment(tester.id, pattern.id)

    lifecycle.cancel_assignment(first.id, tester.id)
    again = lifecycle.request_assignment(tester.id, pattern.id)
    assert again.id != first.id


def test_request_assignment_enforces_capacity(pattern, make_user):
    for _ in range(5):
        lifecycle.request_assignment(make_user(approved=True).id, pattern.id)

    with pytest.raises(ConflictError) as exc_info:
        lifecycle.request_assignment(make_user(approved=True).id, pattern.id)
    assert exc_info.value.details["max_testers"] == 5


# ── Named transitions ────────────────────────────────────────────────────────


def test_accept_then_start_stamps_timestamps(pattern, tester, deadline):
    assignment = _make_assignment(pattern, tester, deadline)

    lifecycle.accept_assignment(assignment.id, tester.id)
    assert assignment.status == "accepted"
    assert assignment.accepted_at is not None

    lifecycle.start_assignment(assignment.id, tester.id, progress=10)
    assert assignment.status == "in_progress"
    assert assignment.started_at is not None
    assert assignment.progress == 10


def test_start_from_pending_is_invalid(pattern, tester, deadline):
    assignment = _make_assignment(pattern, tester, deadline)
    with pytest.raises(InvalidTransitionError) as exc_info:
        lifecycle.start_assignment(assignment.id, tester.id)
    assert isinstance(exc_info.value, ValidationError)
    assert assignment.status == "pending"


def test_only_tester_may_accept(pattern, tester, make_user, deadline):
    assignment = _make_assignment(pattern, tester, deadline)
    with pytest.raises(PermissionDenied):
        lifecycle.accept_assignment(assignment.id, make_user().id)


def test_creator_may_cancel(pattern, tester, creator, deadline):
    assignment = _in_progress(pattern, tester, deadline)
    lifecycle.cancel_assignment(assignment.id, creator.id, reason="pattern withdrawn")

    assert assignment.status == "cancelled"
    assert assignment.cancelled_at is not None


def test_cancelled_assignment_is_terminal(pattern, tester, deadline):
    assignment = _make_assignment(pattern, tester, deadline)
    lifecycle.cancel_assignment(assignment.id, tester.id)

    for action in (lifecycle.accept_assignment, lifecycle.cancel_assignment):
        with pytest.raises(InvalidTransitionError):
            action(assignment.id, tester.id)


def test_transition_unknown_assignment():
    with pytest.raises(NotFoundError):
        lifecycle.accept_assignment(999)


# ── Progress & patch ─────────────────────────────────────────────────────────


def test_update_progress_while_in_progress(pattern, tester, deadline):
    assignment = _in_progress(pattern, tester, deadline)
    lifecycle.update_progress(assignment.id, tester.id, 60)
    assert assignment.progress == 60


@pytest.mark.parametrize("value", [-1, 100, 150])
def test_update_progress_rejects_out_of_range(pattern, tester, deadline, value):
    assignment = _in_progress(pattern, tester, deadline)
    with pytest.raises(ValidationError):
        lifecycle.update_progress(assignment.id, tester.id, value)
    assert assignment.progress == 0


def test_update_progress_requires_in_progress(pattern, tester, deadline):
    assignment = _make_assignment(pattern, tester, deadline)
    with pytest.raises(InvalidTransitionError):
        lifecycle.update_progress(assignment.id, tester.id, 20)


@pytest.mark.parametrize("field", ["status", "completed_at", "reward_coins"])
def test_update_assignment_rejects_lifecycle_fields(pattern, tester, deadline, field):
    assignment = _make_assignment(pattern, tester, deadline)
    with pytest.raises(ValidationError):
        lifecycle.update_assignment(assignment.id, {field: "completed"})
    assert assignment.status == "pending"


def test_update_assignment_moves_deadline(pattern, tester, deadline):
    assignment = _make_assignment(pattern, tester, deadline)
    lifecycle.update_assignment(assignment.id, {"deadline": "2030-01-31T18:00:00Z"})
    assert as_utc(assignment.deadline) == datetime(2030, 1, 31, 18, 0, tzinfo=timezone.utc)


# ── Listing ──────────────────────────────────────────────────────────────────


def test_lists_preserve_insertion_order(make_pattern, creator, tester, deadline):
    p1 = make_pattern(creator, title="One")
    p2 = make_pattern(creator, title="Two")
    a1 = _make_assignment(p2, tester, deadline)
    a2 = _make_assignment(p1, tester, deadline)

    assert [a.id for a in lifecycle.list_by_tester(tester.id)] == [a1.id, a2.id]
    assert [a.id for a in lifecycle.list_by_creator(creator.id)] == [a1.id, a2.id]
    assert [a.id for a in lifecycle.list_by_pattern(p1.id)] == [a2.id]


def test_group_by_status_enriches_entries(pattern, tester, creator, deadline):
    pending = _make_assignment(pattern, tester, deadline)
    active = _in_progress(pattern, tester, deadline)

    grouped = lifecycle.tester_assignments(tester.id)
    assert [e["id"] for e in grouped["all"]] == [pending.id, active.id]
    assert [e["id"] for e in grouped["pending"]] == [pending.id]
    assert [e["id"] for e in grouped["in_progress"]] == [active.id]
    assert grouped["completed"] == []
    assert grouped["all"][0]["pattern"]["title"] == pattern.title
    assert grouped["all"][0]["creator"]["name"] == creator.name

    creator_view = lifecycle.creator_assignments(creator.id)
    assert creator_view["all"][0]["tester"] == {
        "id": tester.id, "name": tester.name, "tester_level": 1, "tester_xp": 0,
    }


def test_creator_view_requires_creator_role(tester):
    with pytest.raises(PermissionDenied):
        lifecycle.creator_assignments(tester.id)


# ── Completion ───────────────────────────────────────────────────────────────


def test_end_to_end_apply_to_completion(make_user, admin, pattern, deadline):
    applicant = make_user(name="Nia")
    application = intake.submit_application(
        applicant.id, "Love testing", "advanced", "Evenings",
    )
    intake.approve_application(application.id, admin.id)
    assert applicant.pattern_testing_approved is True

    assignment = _make_assignment(pattern, applicant, deadline, hours=6, coins=60, points=30)
    lifecycle.accept_assignment(assignment.id, applicant.id)
    lifecycle.start_assignment(assignment.id, applicant.id)

    result = lifecycle.complete_assignment(assignment.id, GOOD_REVIEW, user_id=applicant.id)

    done = result["assignment"]
    assert done.status == "completed"
    assert done.progress == 100
    assert done.completed_at is not None
    assert result["rewards"] == {"coins": 60, "points": 30, "xp": 16}
    assert applicant.coins == 60
    assert applicant.points == 30

    stats = rewards.get_tester_stats(applicant.id)
    assert "First Test" in stats.badges
    assert stats.xp == 16
    assert stats.level == 1
    assert applicant.tester_xp == 16

    reviews = _db.session.query(TestFeedback).filter_by(assignment_id=assignment.id, type="final_review").all()
    assert len(reviews) == 1
    assert reviews[0].message == "Great!"
    assert reviews[0].difficulty == "as_expected"


def test_complete_twice_pays_once(pattern, tester, deadline):
    assignment = _in_progress(pattern, tester, deadline)
    lifecycle.complete_assignment(assignment.id, GOOD_REVIEW)

    with pytest.raises(AlreadyCompletedError):
        lifecycle.complete_assignment(assignment.id, GOOD_REVIEW)

    assert tester.coins == 60
    assert tester.points == 30
    assert _db.session.query(CoinTransaction).filter_by(user_id=tester.id).count() == 1
    assert _db.session.query(PointsTransaction).filter_by(user_id=tester.id).count() == 1
    assert _db.session.query(TestFeedback).filter_by(
        assignment_id=assignment.id, type="final_review").count() == 1


def test_ledger_rows_reference_assignment(pattern, tester, deadline):
    assignment = _in_progress(pattern, tester, deadline)
    lifecycle.complete_assignment(assignment.id, GOOD_REVIEW)

    coin = _db.session.query(CoinTransaction).filter_by(user_id=tester.id).one()
    assert coin.type == "admin_adjustment"
    assert coin.amount == 60
    assert coin.reference == f"test_assignment:{assignment.id}"


def test_complete_requires_in_progress(pattern, tester, deadline):
    assignment = _make_assignment(pattern, tester, deadline)
    lifecycle.accept_assignment(assignment.id, tester.id)

    with pytest.raises(InvalidTransitionError):
        lifecycle.complete_assignment(assignment.id, GOOD_REVIEW)
    assert assignment.status == "accepted"
    assert tester.coins == 0


@pytest.mark.parametrize("override", [
    {"rating": 0},
    {"clarity": 6},
    {"accuracy": None},
    {"difficulty": "impossible"},
    {"message": ""},
])
def test_invalid_final_review_changes_nothing(pattern, tester, deadline, override):
    assignment = _in_progress(pattern, tester, deadline)

    with pytest.raises(ValidationError):
        lifecycle.complete_assignment(assignment.id, {**GOOD_REVIEW, **override})

    _db.session.expire_all()
    assert assignment.status == "in_progress"
    assert _db.session.query(TestFeedback).filter_by(assignment_id=assignment.id).count() == 0
    assert tester.coins == 0


def test_only_tester_may_complete(pattern, tester, creator, deadline):
    assignment = _in_progress(pattern, tester, deadline)
    with pytest.raises(PermissionDenied):
        lifecycle.complete_assignment(assignment.id, GOOD_REVIEW, user_id=creator.id)


def test_complete_unknown_assignment():
    with pytest.raises(NotFoundError):
        lifecycle.complete_assignment(31337, GOOD_REVIEW)


def test_second_completion_accumulates_xp(make_pattern, creator, tester, deadline):
    first = _in_progress(make_pattern(creator), tester, deadline, hours=6)
    lifecycle.complete_assignment(first.id, GOOD_REVIEW)

    second = _in_progress(make_pattern(creator), tester, deadline, hours=9, coins=90, points=45)
    result = lifecycle.complete_assignment(second.id, GOOD_REVIEW)

    assert result["rewards"]["xp"] == 19
    stats = rewards.get_tester_stats(tester.id)
    assert stats.xp == 35
    assert stats.level == 1
    assert stats.total_tests_completed == 2
    assert stats.total_coins_earned == 150
    assert tester.coins == 150


def test_level_up_after_hundred_xp(make_pattern, creator, tester, deadline):
    for _ in range(3):
        assignment = _in_progress(make_pattern(creator), tester, deadline, hours=30, coins=0, points=0)
        lifecycle.complete_assignment(assignment.id, GOOD_REVIEW)

    stats = rewards.get_tester_stats(tester.id)
    assert stats.xp == 120
    assert stats.level >= 2
    assert tester.tester_level == stats.level


def test_completion_time_uses_started_at(pattern, tester, deadline):
    assignment = _in_progress(pattern, tester, deadline)
    assignment.started_at = datetime.now(timezone.utc) - timedelta(hours=4)
    _db.session.commit()

    lifecycle.complete_assignment(assignment.id, GOOD_REVIEW)

    stats = rewards.get_tester_stats(tester.id)
    assert stats.average_completion_time == pytest.approx(4.0, abs=0.1)
