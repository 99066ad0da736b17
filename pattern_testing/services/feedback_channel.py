"""
Pattern Testing: Feedback Channel Service.

Append-only tester ↔ creator conversation attached to an assignment.

    - Testers post questions, issues and progress updates in any assignment
      status. final_review entries are written only by the completion routine
      in assignment_lifecycle.
    - Creators attach a single response to an entry; that is the only
      in-place update a feedback row ever receives.
    - Conversation order is created_at ascending, id as tie-break.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from pattern_testing.core.exceptions import NotFoundError, PermissionDenied, ValidationError
from pattern_testing.models import db
from pattern_testing.models.testing import (
    DIFFICULTY_RATINGS,
    FEEDBACK_TYPES,
    TestAssignment,
    TestFeedback,
)
from pattern_testing.services import user_registry

logger = logging.getLogger(__name__)

_SCORE_FIELDS = ("rating", "clarity", "accuracy")


# ── Validation ─────────────────────────────────────────────────────────────────


def validate_scores(rating=None, clarity=None, accuracy=None, difficulty=None, *, required=False) -> None:
    """Check 1-5 scores and the difficulty enum.

    With ``required=True`` every score and difficulty must be present
    (final reviews); otherwise only supplied values are checked.
    """
    values = {"rating": rating, "clarity": clarity, "accuracy": accuracy}
    if required:
        missing = [k for k, v in values.items() if v is None]
        if difficulty is None:
            missing.append("difficulty")
        if missing:
            raise ValidationError(
                "Final review requires rating, clarity, accuracy and difficulty",
                details={"missing": missing},
            )
    bad = {
        k: v for k, v in values.items()
        if v is not None and (isinstance(v, bool) or not isinstance(v, int) or not 1 <= v <= 5)
    }
    if bad:
        raise ValidationError("Ratings must be between 1 and 5", details=bad)
    if difficulty is not None and (not isinstance(difficulty, str) or difficulty not in DIFFICULTY_RATINGS):
        raise ValidationError(
            f"Invalid difficulty value: {difficulty!r}",
            details={"allowed": sorted(DIFFICULTY_RATINGS)},
        )


def _clean_images(images) -> list[str]:
    if images is None:
        return []
    if not isinstance(images, (list, tuple)) or not all(isinstance(i, str) for i in images):
        raise ValidationError("images must be a list of URLs")
    return list(images)


def _get_assignment(assignment_id) -> TestAssignment:
    assignment = db.session.get(TestAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="TestAssignment", resource_id=assignment_id)
    return assignment


def build_feedback(assignment: TestAssignment, feedback_type: str, message: str, **fields) -> TestFeedback:
    """Create (but do not commit) a feedback row linked to *assignment*."""
    entry = TestFeedback(
        assignment_id=assignment.id,
        tester_id=assignment.tester_id,
        pattern_id=assignment.pattern_id,
        creator_id=assignment.creator_id,
        type=feedback_type,
        message=message,
        images=_clean_images(fields.get("images")),
        rating=fields.get("rating"),
        clarity=fields.get("clarity"),
        accuracy=fields.get("accuracy"),
        difficulty=fields.get("difficulty"),
        created_at=datetime.now(timezone.utc),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


# ── Public API ─────────────────────────────────────────────────────────────────


def post_feedback(
    assignment_id: int,
    type: str,
    message: str,
    images: list[str] | None = None,
    rating: int | None = None,
    clarity: int | None = None,
    accuracy: int | None = None,
    difficulty: str | None = None,
    user_id: int | None = None,
) -> TestFeedback:
    """Append a tester message to the assignment's conversation.

    Raises:
        NotFoundError: unknown assignment.
        PermissionDenied: user_id given and not the assignment's tester.
        ValidationError: unknown type, final_review, blank message, bad scores.
    """
    if type not in FEEDBACK_TYPES:
        raise ValidationError(
            f"Invalid feedback type: {type}", details={"allowed": sorted(FEEDBACK_TYPES)},
        )
    if type == "final_review":
        raise ValidationError(
            "Final reviews are submitted by completing the assignment",
            details={"type": type},
        )
    if not (message or "").strip():
        raise ValidationError("message is required")
    validate_scores(rating, clarity, accuracy, difficulty)

    assignment = _get_assignment(assignment_id)
    if user_id is not None and assignment.tester_id != user_id:
        raise PermissionDenied(user_id, "post_feedback", reason="only the assigned tester can post feedback")

    try:
        entry = build_feedback(
            assignment, type, message.strip(),
            images=images, rating=rating, clarity=clarity, accuracy=accuracy, difficulty=difficulty,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Feedback %s (%s) posted on assignment %s",
        entry.id, type, assignment.id,
        extra={"event_type": "feedback_posted", "feedback_id": entry.id,
               "assignment_id": assignment.id, "tester_id": assignment.tester_id},
    )
    return entry


def respond_to_feedback(feedback_id: int, response: str, user_id: int | None = None) -> TestFeedback:
    """Attach the creator's reply to a feedback entry."""
    if not (response or "").strip():
        raise ValidationError("response is required")

    entry = db.session.get(TestFeedback, feedback_id)
    if entry is None:
        raise NotFoundError(resource="TestFeedback", resource_id=feedback_id)
    if user_id is not None and entry.creator_id != user_id:
        raise PermissionDenied(user_id, "respond_to_feedback", reason="only the pattern creator can respond")

    entry.response = response.strip()
    entry.responded_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info(
        "Creator responded to feedback %s",
        entry.id,
        extra={"event_type": "feedback_responded", "feedback_id": entry.id,
               "assignment_id": entry.assignment_id, "creator_id": entry.creator_id},
    )
    return entry


def list_by_assignment(assignment_id: int) -> list[TestFeedback]:
    stmt = (
        select(TestFeedback)
        .where(TestFeedback.assignment_id == assignment_id)
        .order_by(TestFeedback.created_at.asc(), TestFeedback.id.asc())
    )
    return list(db.session.execute(stmt).scalars())


def list_by_pattern(pattern_id: int) -> list[TestFeedback]:
    stmt = (
        select(TestFeedback)
        .where(TestFeedback.pattern_id == pattern_id)
        .order_by(TestFeedback.id.asc())
    )
    return list(db.session.execute(stmt).scalars())


def list_conversation(assignment_id: int, user_id: int) -> list[dict]:
    """Conversation for the tester or creator of the assignment, with names attached."""
    assignment = _get_assignment(assignment_id)
    if user_id not in (assignment.tester_id, assignment.creator_id):
        raise PermissionDenied(user_id, "list_conversation", reason="not a participant in this assignment")

    tester = user_registry.get_user_by_id(assignment.tester_id)
    creator = user_registry.get_user_by_id(assignment.creator_id)
    tester_summary = tester.summary() if tester else None
    creator_summary = creator.summary() if creator else None

    return [
        {**entry.to_dict(), "tester": tester_summary, "creator": creator_summary}
        for entry in list_by_assignment(assignment_id)
    ]
