"""
Pattern Testing: Application Intake Service.

Accepts tester applications and records admin review decisions.

Rules:
    - At most one pending application per user. A user whose earlier
      application was reviewed may apply again.
    - Applicant name/email are snapshotted from the user record at submission.
    - Approval grants tester access on the user record (level 1, 0 XP);
      disapproval revokes it.
    - Re-review of an already reviewed application is controlled by the
      ALLOW_APPLICATION_REREVIEW config flag.

Usage:
    from pattern_testing.services.application_intake import submit_application

    app_ = submit_application(
        user_id=7,
        why_testing="I love trying new stitches",
        experience_level="intermediate",
        availability="Weekends",
    )
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from pattern_testing.core.exceptions import (
    DuplicatePendingApplication,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from pattern_testing.models import db
from pattern_testing.models.testing import (
    APPLICATION_STATUSES,
    EXPERIENCE_LEVELS,
    REVIEW_DECISIONS,
    TestingApplication,
)
from pattern_testing.services import user_registry

logger = logging.getLogger(__name__)


def _pending_for_user(user_id):
    stmt = (
        select(TestingApplication)
        .where(
            TestingApplication.user_id == user_id,
            TestingApplication.status == "pending",
        )
        .order_by(TestingApplication.id)
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def submit_application(
    user_id: int,
    why_testing: str,
    experience_level: str,
    availability: str,
    comments: str | None = None,
) -> TestingApplication:
    """Create a pending application for *user_id*.

    Raises:
        ValidationError: a required field is blank or experience_level is unknown.
        NotFoundError: the user does not exist.
        DuplicatePendingApplication: the user already has a pending application.
    """
    missing = [
        name for name, value in (
            ("why_testing", why_testing),
            ("experience_level", experience_level),
            ("availability", availability),
        )
        if not (value or "").strip()
    ]
    if missing:
        raise ValidationError(
            "All required fields must be filled", details={"missing": missing},
        )
    if experience_level not in EXPERIENCE_LEVELS:
        raise ValidationError(
            f"Invalid experience_level: {experience_level}",
            details={"allowed": sorted(EXPERIENCE_LEVELS)},
        )
    if comments is not None and not isinstance(comments, str):
        raise ValidationError("comments must be text", details={"comments": type(comments).__name__})

    user = user_registry.require_user(user_id)

    existing = _pending_for_user(user_id)
    if existing is not None:
        raise DuplicatePendingApplication(user_id=user_id, application_id=existing.id)

    application = TestingApplication(
        user_id=user.id,
        user_name=user.name,
        user_email=user.email,
        why_testing=why_testing.strip(),
        experience_level=experience_level,
        availability=availability.strip(),
        comments=comments or None,
        status="pending",
    )
    try:
        db.session.add(application)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Testing application %s submitted by user %s",
        application.id, user_id,
        extra={"event_type": "application_submitted", "application_id": application.id, "user_id": user_id},
    )
    return application


def get_application(application_id: int) -> TestingApplication:
    application = db.session.get(TestingApplication, application_id)
    if application is None:
        raise NotFoundError(resource="TestingApplication", resource_id=application_id)
    return application


def find_application_by_user(user_id: int) -> TestingApplication | None:
    """Return the user's first application in submission order, or None."""
    stmt = (
        select(TestingApplication)
        .where(TestingApplication.user_id == user_id)
        .order_by(TestingApplication.id)
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def list_applications(status: str | None = None) -> list[TestingApplication]:
    """All applications, newest first, optionally filtered by status."""
    stmt = select(TestingApplication)
    if status:
        if status not in APPLICATION_STATUSES:
            raise ValidationError(
                f"Invalid status filter: {status}",
                details={"allowed": sorted(APPLICATION_STATUSES)},
            )
        stmt = stmt.where(TestingApplication.status == status)
    stmt = stmt.order_by(TestingApplication.created_at.desc(), TestingApplication.id.desc())
    return list(db.session.execute(stmt).scalars())


def review_application(application_id: int, status: str, reviewed_by: int) -> TestingApplication:
    """Record an admin decision and sync the applicant's tester flags.

    Raises:
        NotFoundError: unknown application.
        ValidationError: status is not approved/disapproved.
        InvalidTransitionError: the application was already reviewed and
            re-review is disabled.
    """
    if status not in REVIEW_DECISIONS:
        raise ValidationError(
            f"Invalid review status: {status}",
            details={"allowed": sorted(REVIEW_DECISIONS)},
        )
    application = get_application(application_id)

    if application.status != "pending" and not current_app.config.get("ALLOW_APPLICATION_REREVIEW", True):
        raise InvalidTransitionError(
            "TestingApplication", application.id, status, application.status,
            reason="application was already reviewed",
        )

    previous = application.status
    application.status = status
    application.reviewed_at = datetime.now(timezone.utc)
    application.reviewed_by = reviewed_by

    try:
        if user_registry.get_user_by_id(application.user_id) is None:
            logger.warning(
                "Applicant %s no longer exists; tester flags not updated",
                application.user_id,
                extra={"application_id": application.id, "user_id": application.user_id},
            )
        elif status == "approved":
            user_registry.update_user(application.user_id, {
                "pattern_testing_approved": True,
                "tester_level": 1,
                "tester_xp": 0,
                "pattern_testing_application_id": application.id,
            })
        else:
            user_registry.update_user(application.user_id, {"pattern_testing_approved": False})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Testing application %s %s -> %s by %s",
        application.id, previous, status, reviewed_by,
        extra={"event_type": f"application_{status}", "application_id": application.id,
               "user_id": application.user_id},
    )
    return application


def _require_admin(admin_id: int, action: str):
    admin = user_registry.get_user_by_id(admin_id)
    if admin is None or not admin.is_admin:
        raise PermissionDenied(admin_id, action, reason="only admins can review applications")
    return admin


def approve_application(application_id: int, admin_id: int) -> TestingApplication:
    _require_admin(admin_id, "approve_application")
    return review_application(application_id, "approved", admin_id)


def disapprove_application(application_id: int, admin_id: int) -> TestingApplication:
    _require_admin(admin_id, "disapprove_application")
    return review_application(application_id, "disapproved", admin_id)
