"""
Pattern Testing: Assignment Lifecycle Service.

Manages TestAssignment status through a closed set of named transitions:

    pending --accept--> accepted --start--> in_progress --complete--> completed
       |                   |                    |
       +------cancel-------+-------cancel-------+---> cancelled

Rules:
    - Status only changes through the actions below; update_assignment
      refuses status, timestamp and reward fields.
    - progress is 100 exactly when status is completed. While in_progress
      the tester may report 0-99.
    - Rewards are fixed when the assignment is created and paid once, by
      complete_assignment, under a row lock on the assignment.

Usage:
    from pattern_testing.services.assignment_lifecycle import transition_assignment

    assignment = transition_assignment(assignment_id=12, action="accept", user_id=7)
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import func, select

from pattern_testing.core.exceptions import (
    AlreadyCompletedError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from pattern_testing.models import db
from pattern_testing.models.testing import (
    ACTIVE_ASSIGNMENT_STATUSES,
    TestAssignment,
)
from pattern_testing.services import feedback_channel, pattern_metrics, rewards, user_registry
from pattern_testing.utils.helpers import first_int, parse_datetime

logger = logging.getLogger(__name__)


# Assignment transition rules
ASSIGNMENT_TRANSITIONS = {
    "accept": {"from": ["pending"], "to": "accepted", "stamp": "accepted_at"},
    "start": {"from": ["accepted"], "to": "in_progress", "stamp": "started_at"},
    "cancel": {"from": ["pending", "accepted", "in_progress"], "to": "cancelled", "stamp": "cancelled_at"},
    "complete": {"from": ["in_progress"], "to": "completed", "stamp": "completed_at"},
}

# Actions the assigned tester owns; cancel is also open to the creator
_CREATOR_ACTIONS = frozenset({"cancel"})

_PATCHABLE_FIELDS = frozenset({"deadline", "progress"})
MAX_REPORTED_PROGRESS = 99


def validate_assignment_transition(assignment: TestAssignment, action: str) -> dict:
    """Validate whether an action is valid for the assignment's current state."""
    rule = ASSIGNMENT_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": assignment.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if assignment.status not in rule["from"]:
        return {"valid": False, "from": assignment.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{assignment.status}'"}

    return {"valid": True, "from": assignment.status, "to": rule["to"], "reason": None}


def _check_actor(assignment: TestAssignment, action: str, user_id) -> None:
    if user_id is None or user_id == assignment.tester_id:
        return
    if action in _CREATOR_ACTIONS and user_id == assignment.creator_id:
        return
    raise PermissionDenied(user_id, action, reason="not the assigned tester")


def _validate_progress(progress) -> int:
    if isinstance(progress, bool) or not isinstance(progress, int):
        raise ValidationError("progress must be an integer", details={"progress": progress})
    if not 0 <= progress <= MAX_REPORTED_PROGRESS:
        raise ValidationError(
            f"progress must be between 0 and {MAX_REPORTED_PROGRESS}; 100 is set by completion",
            details={"progress": progress},
        )
    return progress


# ── Creation ───────────────────────────────────────────────────────────────────


def create_assignment(
    pattern_id: int,
    tester_id: int,
    creator_id: int,
    deadline,
    estimated_hours: int,
    reward_coins: int,
    reward_points: int,
) -> TestAssignment:
    """Insert a pending assignment with progress 0.

    No tester/pattern uniqueness check happens here; request_assignment
    does that for the self-service path.
    """
    for name, value in (("estimated_hours", estimated_hours),
                        ("reward_coins", reward_coins),
                        ("reward_points", reward_points)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer", details={name: value})
    try:
        deadline = parse_datetime(deadline)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"deadline": deadline}) from exc
    if deadline is None:
        raise ValidationError("deadline is required")

    assignment = TestAssignment(
        pattern_id=pattern_id,
        tester_id=tester_id,
        creator_id=creator_id,
        status="pending",
        assigned_at=datetime.now(timezone.utc),
        deadline=deadline,
        progress=0,
        estimated_hours=estimated_hours,
        reward_coins=reward_coins,
        reward_points=reward_points,
    )
    db.session.add(assignment)
    db.session.commit()

    logger.info(
        "Assignment %s created: pattern %s → tester %s",
        assignment.id, pattern_id, tester_id,
        extra={"event_type": "assignment_created", "assignment_id": assignment.id,
               "pattern_id": pattern_id, "tester_id": tester_id, "creator_id": creator_id},
    )
    return assignment


def request_assignment(user_id: int, pattern_id: int) -> TestAssignment:
    """Self-service: an approved tester signs up to test a pattern.

    Rewards scale with the leading hour figure of the pattern's
    estimated_time ("4-6 hours" → 4).

    Raises:
        NotFoundError: unknown user or pattern.
        PermissionDenied: the user is not an approved tester.
        ConflictError: an active assignment for this pattern already exists
            for the user, or the pattern is at tester capacity.
    """
    cfg = current_app.config
    user = user_registry.require_user(user_id)
    if not user.pattern_testing_approved:
        raise PermissionDenied(user_id, "request_assignment",
                               reason="you must be an approved pattern tester to apply")
    pattern = user_registry.require_pattern(pattern_id)

    active_filter = (
        TestAssignment.pattern_id == pattern.id,
        TestAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
    )
    already = db.session.execute(
        select(func.count()).select_from(TestAssignment)
        .where(*active_filter, TestAssignment.tester_id == user.id)
    ).scalar_one()
    if already:
        raise ConflictError(
            "You already have an active assignment for this pattern",
            details={"pattern_id": pattern.id, "tester_id": user.id},
        )

    max_testers = cfg.get("MAX_TESTERS_PER_PATTERN", 5)
    active = db.session.execute(
        select(func.count()).select_from(TestAssignment).where(*active_filter)
    ).scalar_one()
    if active >= max_testers:
        raise ConflictError(
            "This pattern has reached the maximum number of testers",
            details={"pattern_id": pattern.id, "max_testers": max_testers},
        )

    hours = first_int(pattern.estimated_time, default=cfg.get("DEFAULT_ESTIMATED_HOURS", 5))
    deadline = datetime.now(timezone.utc) + timedelta(days=cfg.get("ASSIGNMENT_DEADLINE_DAYS", 7))

    return create_assignment(
        pattern_id=pattern.id,
        tester_id=user.id,
        creator_id=pattern.creator_id,
        deadline=deadline,
        estimated_hours=hours,
        reward_coins=hours * cfg.get("COINS_PER_HOUR", 10),
        reward_points=hours * cfg.get("POINTS_PER_HOUR", 5),
    )


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_assignment(assignment_id: int) -> TestAssignment:
    assignment = db.session.get(TestAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="TestAssignment", resource_id=assignment_id)
    return assignment


def _list_where(*criteria) -> list[TestAssignment]:
    stmt = select(TestAssignment).where(*criteria).order_by(TestAssignment.id)
    return list(db.session.execute(stmt).scalars())


def list_by_tester(tester_id: int) -> list[TestAssignment]:
    return _list_where(TestAssignment.tester_id == tester_id)


def list_by_pattern(pattern_id: int) -> list[TestAssignment]:
    return _list_where(TestAssignment.pattern_id == pattern_id)


def list_by_creator(creator_id: int) -> list[TestAssignment]:
    return _list_where(TestAssignment.creator_id == creator_id)


def _tester_summary(user):
    return {
        "id": user.id,
        "name": user.name,
        "tester_level": user.tester_level or 1,
        "tester_xp": user.tester_xp or 0,
    }


def _creator_summary(user):
    return {"id": user.id, "name": user.name, "email": user.email}


def group_by_status(assignments: list[TestAssignment], perspective: str = "tester") -> dict:
    """Bucket assignments by status, each enriched with pattern and counterpart.

    perspective="tester" attaches the creator; "creator" attaches the tester.
    """
    if perspective not in ("tester", "creator"):
        raise ValueError(f"Unknown perspective: {perspective}")

    enriched = []
    for assignment in assignments:
        pattern = user_registry.get_pattern_by_id(assignment.pattern_id)
        entry = {**assignment.to_dict(), "pattern": pattern.summary() if pattern else None}
        if perspective == "tester":
            creator = user_registry.get_user_by_id(assignment.creator_id)
            entry["creator"] = _creator_summary(creator) if creator else None
        else:
            tester = user_registry.get_user_by_id(assignment.tester_id)
            entry["tester"] = _tester_summary(tester) if tester else None
        enriched.append(entry)

    grouped = {"all": enriched}
    for status in ("pending", "accepted", "in_progress", "completed", "cancelled"):
        grouped[status] = [e for e in enriched if e["status"] == status]
    return grouped


def tester_assignments(user_id: int) -> dict:
    user_registry.require_user(user_id)
    return group_by_status(list_by_tester(user_id), "tester")


def creator_assignments(user_id: int) -> dict:
    user = user_registry.require_user(user_id)
    if user.role != "creator":
        raise PermissionDenied(user_id, "creator_assignments", reason="only creators can access this view")
    return group_by_status(list_by_creator(user_id), "creator")


# ── Updates ────────────────────────────────────────────────────────────────────


def update_assignment(assignment_id: int, patch: dict) -> TestAssignment:
    """Merge-patch the non-lifecycle fields (deadline, progress).

    Progress may only move while the assignment is in_progress.
    """
    rejected = sorted(set(patch) - _PATCHABLE_FIELDS)
    if rejected:
        raise ValidationError(
            "Only deadline and progress can be patched; use the named actions for status",
            details={"rejected": rejected},
        )
    assignment = get_assignment(assignment_id)

    changes = {}
    if "deadline" in patch:
        try:
            deadline = parse_datetime(patch["deadline"])
        except ValueError as exc:
            raise ValidationError(str(exc), details={"deadline": patch["deadline"]}) from exc
        if deadline is None:
            raise ValidationError("deadline cannot be cleared")
        changes["deadline"] = deadline

    if "progress" in patch:
        if assignment.status != "in_progress":
            raise InvalidTransitionError(
                "TestAssignment", assignment.id, "update_progress", assignment.status,
                reason="progress can only change while in progress",
            )
        changes["progress"] = _validate_progress(patch["progress"])

    for key, value in changes.items():
        setattr(assignment, key, value)
    db.session.commit()
    logger.info(
        "Assignment %s patched: %s", assignment.id, ", ".join(sorted(patch)),
        extra={"event_type": "assignment_patched", "assignment_id": assignment.id},
    )
    return assignment


def transition_assignment(
    assignment_id: int,
    action: str,
    user_id: int | None = None,
    progress: int | None = None,
    reason: str | None = None,
) -> TestAssignment:
    """Apply accept / start / cancel to an assignment.

    complete is excluded; it goes through complete_assignment, which owns
    the final review and the payout.
    """
    if action == "complete":
        raise ValidationError("Use complete_assignment to finish an assignment")

    assignment = get_assignment(assignment_id)
    _check_actor(assignment, action, user_id)

    check = validate_assignment_transition(assignment, action)
    if not check["valid"]:
        raise InvalidTransitionError("TestAssignment", assignment.id, action, assignment.status,
                                     reason=check["reason"])

    start_progress = _validate_progress(progress or 0) if action == "start" else None

    rule = ASSIGNMENT_TRANSITIONS[action]
    old_status = assignment.status
    assignment.status = rule["to"]
    setattr(assignment, rule["stamp"], datetime.now(timezone.utc))
    if start_progress is not None:
        assignment.progress = start_progress

    try:
        # In-progress counts feed TesterStats, so keep the row current
        rewards.recompute_tester_stats(assignment.tester_id, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Assignment %s: %s → %s (%s)%s",
        assignment.id, old_status, assignment.status, action,
        f" reason={reason}" if reason else "",
        extra={"event_type": f"assignment_{action}", "assignment_id": assignment.id,
               "tester_id": assignment.tester_id, "user_id": user_id},
    )
    return assignment


def accept_assignment(assignment_id: int, user_id: int | None = None) -> TestAssignment:
    return transition_assignment(assignment_id, "accept", user_id=user_id)


def start_assignment(assignment_id: int, user_id: int | None = None, progress: int = 0) -> TestAssignment:
    return transition_assignment(assignment_id, "start", user_id=user_id, progress=progress)


def cancel_assignment(assignment_id: int, user_id: int | None = None, reason: str | None = None) -> TestAssignment:
    return transition_assignment(assignment_id, "cancel", user_id=user_id, reason=reason)


def update_progress(assignment_id: int, user_id: int | None, progress: int) -> TestAssignment:
    """Tester reports progress (0-99) on an in-progress assignment."""
    assignment = get_assignment(assignment_id)
    _check_actor(assignment, "update_progress", user_id)
    return update_assignment(assignment_id, {"progress": progress})


# ── Completion ─────────────────────────────────────────────────────────────────


def complete_assignment(assignment_id: int, final_review: dict, user_id: int | None = None) -> dict:
    """Finish an in-progress assignment and pay its rewards exactly once.

    final_review keys: rating, clarity, accuracy (1-5), difficulty
    (easier | as_expected | harder), message, images (optional).

    One transaction covers the final review, the status change, the payout
    and the stats/metrics recompute. The assignment row is locked before the
    completed check so concurrent completions serialise.

    Returns:
        {"assignment": TestAssignment, "rewards": {"coins", "points", "xp"}}

    Raises:
        NotFoundError, AlreadyCompletedError, InvalidTransitionError,
        PermissionDenied, ValidationError
    """
    final_review = final_review or {}
    try:
        assignment = db.session.execute(
            select(TestAssignment)
            .where(TestAssignment.id == assignment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if assignment is None:
            raise NotFoundError(resource="TestAssignment", resource_id=assignment_id)

        if assignment.status == "completed":
            raise AlreadyCompletedError(assignment.id)
        _check_actor(assignment, "complete", user_id)

        check = validate_assignment_transition(assignment, "complete")
        if not check["valid"]:
            raise InvalidTransitionError("TestAssignment", assignment.id, "complete", assignment.status,
                                         reason="assignment must be in progress to complete")

        message = (final_review.get("message") or "").strip()
        if not message:
            raise ValidationError("Final review message is required")
        feedback_channel.validate_scores(
            final_review.get("rating"), final_review.get("clarity"),
            final_review.get("accuracy"), final_review.get("difficulty"),
            required=True,
        )

        feedback_channel.build_feedback(
            assignment, "final_review", message,
            images=final_review.get("images"),
            rating=final_review["rating"],
            clarity=final_review["clarity"],
            accuracy=final_review["accuracy"],
            difficulty=final_review["difficulty"],
        )
        assignment.status = "completed"
        assignment.progress = 100
        assignment.completed_at = datetime.now(timezone.utc)

        rewards.pay_out_rewards(assignment)
        rewards.recompute_tester_stats(assignment.tester_id, commit=False)
        pattern_metrics.recompute_pattern_metrics(assignment.pattern_id, commit=False)
        db.session.commit()
    except Exception:
        # Releases the row lock along with any partial writes
        db.session.rollback()
        raise

    granted = {
        "coins": assignment.reward_coins,
        "points": assignment.reward_points,
        "xp": rewards.assignment_xp(assignment),
    }
    logger.info(
        "Assignment %s completed by tester %s: %s",
        assignment.id, assignment.tester_id, granted,
        extra={"event_type": "assignment_completed", "assignment_id": assignment.id,
               "tester_id": assignment.tester_id, "pattern_id": assignment.pattern_id},
    )
    return {"assignment": assignment, "rewards": granted}
