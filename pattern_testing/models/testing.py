"""
Pattern Testing Engine
Testing workflow models.

Models:
    - TestingApplication: a user's request to become a pattern tester
    - TestAssignment:     one tester's commitment to test one pattern for its creator
    - TestFeedback:       append-only tester ↔ creator exchange for an assignment
    - PatternTestMetrics: derived per-pattern rollup (recomputed wholesale)
    - TesterStats:        derived per-tester progression row (recomputed wholesale)

Architecture chain: TestingApplication → (approved user) → TestAssignment → TestFeedback
Derived rows are never edited directly; see services.pattern_metrics and services.rewards.
"""

from datetime import datetime, timezone

from pattern_testing.models import db
from pattern_testing.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

APPLICATION_STATUSES = {"pending", "approved", "disapproved"}
REVIEW_DECISIONS = {"approved", "disapproved"}
EXPERIENCE_LEVELS = {"beginner", "intermediate", "advanced"}

ASSIGNMENT_STATUSES = {"pending", "accepted", "in_progress", "completed", "cancelled"}
ACTIVE_ASSIGNMENT_STATUSES = ("pending", "accepted", "in_progress")

FEEDBACK_TYPES = {"question", "issue", "progress_update", "final_review"}
DIFFICULTY_RATINGS = {"easier", "as_expected", "harder"}

# Numeric scale used when averaging reported difficulty
DIFFICULTY_SCORES = {"easier": 1, "as_expected": 2, "harder": 3}


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  APPLICATION
# ═══════════════════════════════════════════════════════════════════════════

class TestingApplication(db.Model):
    """
    A user's request to join the pattern testing programme.

    At most one application per user may be pending. Records are never
    deleted; an admin review moves status away from pending.
    """

    __tablename__ = "testing_applications"
    __test__ = False  # keep pytest from collecting the model class

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_name = db.Column(db.String(150), nullable=False, comment="Snapshot at submission time")
    user_email = db.Column(db.String(255), nullable=False, comment="Snapshot at submission time")
    why_testing = db.Column(db.Text, nullable=False)
    experience_level = db.Column(db.String(20), nullable=False, comment="beginner | intermediate | advanced")
    availability = db.Column(db.String(200), nullable=False)
    comments = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.Integer, nullable=True, comment="Admin user id")

    __table_args__ = (
        db.Index("ix_testing_applications_user_status", "user_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "why_testing": self.why_testing,
            "experience_level": self.experience_level,
            "availability": self.availability,
            "comments": self.comments,
            "status": self.status,
            "created_at": isoformat(self.created_at),
            "reviewed_at": isoformat(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
        }

    def __repr__(self):
        return f"<TestingApplication {self.id} user={self.user_id} ({self.status})>"


# ═══════════════════════════════════════════════════════════════════════════
#  ASSIGNMENT
# ═══════════════════════════════════════════════════════════════════════════

class TestAssignment(db.Model):
    """
    One tester testing one pattern for its creator.

    Lifecycle: pending → accepted → in_progress → completed, with cancel
    allowed from any non-terminal state. progress is 100 exactly when the
    assignment is completed. reward_coins / reward_points are fixed here at
    creation and paid once by the completion routine.
    """

    __tablename__ = "test_assignments"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    pattern_id = db.Column(
        db.Integer, db.ForeignKey("patterns.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    tester_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    creator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deadline = db.Column(db.DateTime(timezone=True), nullable=False)

    progress = db.Column(db.Integer, nullable=False, default=0, comment="0-100; 100 only when completed")
    estimated_hours = db.Column(db.Integer, nullable=False, default=0)
    reward_coins = db.Column(db.Integer, nullable=False, default=0)
    reward_points = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_test_assignments_progress"),
        db.Index("ix_test_assignments_tester_pattern", "tester_id", "pattern_id"),
    )

    feedback = db.relationship(
        "TestFeedback", backref="assignment", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TestFeedback.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "pattern_id": self.pattern_id,
            "tester_id": self.tester_id,
            "creator_id": self.creator_id,
            "status": self.status,
            "assigned_at": isoformat(self.assigned_at),
            "accepted_at": isoformat(self.accepted_at),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "cancelled_at": isoformat(self.cancelled_at),
            "deadline": isoformat(self.deadline),
            "progress": self.progress,
            "estimated_hours": self.estimated_hours,
            "reward_coins": self.reward_coins,
            "reward_points": self.reward_points,
        }

    def __repr__(self):
        return f"<TestAssignment {self.id} pattern={self.pattern_id} tester={self.tester_id} ({self.status})>"


# ═══════════════════════════════════════════════════════════════════════════
#  FEEDBACK
# ═══════════════════════════════════════════════════════════════════════════

class TestFeedback(db.Model):
    """
    One message in the tester ↔ creator conversation for an assignment.

    Append-only; the only in-place update is the creator attaching a
    response. Exactly one final_review exists per completed assignment,
    enforced by a partial unique index.
    """

    __tablename__ = "test_feedback"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("test_assignments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    tester_id = db.Column(db.Integer, nullable=False, index=True)
    pattern_id = db.Column(db.Integer, nullable=False, index=True)
    creator_id = db.Column(db.Integer, nullable=False, index=True)

    type = db.Column(db.String(20), nullable=False, comment="question | issue | progress_update | final_review")
    message = db.Column(db.Text, nullable=False)
    images = db.Column(db.JSON, nullable=True, comment="List of image URLs")

    rating = db.Column(db.Integer, nullable=True, comment="1-5, final review only")
    clarity = db.Column(db.Integer, nullable=True, comment="1-5")
    accuracy = db.Column(db.Integer, nullable=True, comment="1-5")
    difficulty = db.Column(db.String(20), nullable=True, comment="easier | as_expected | harder")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    response = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.Index(
            "uq_test_feedback_final_review",
            "assignment_id",
            unique=True,
            sqlite_where=db.text("type = 'final_review'"),
            postgresql_where=db.text("type = 'final_review'"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "tester_id": self.tester_id,
            "pattern_id": self.pattern_id,
            "creator_id": self.creator_id,
            "type": self.type,
            "message": self.message,
            "images": list(self.images or []),
            "rating": self.rating,
            "clarity": self.clarity,
            "accuracy": self.accuracy,
            "difficulty": self.difficulty,
            "created_at": isoformat(self.created_at),
            "responded_at": isoformat(self.responded_at),
            "response": self.response,
        }

    def __repr__(self):
        return f"<TestFeedback {self.id} assignment={self.assignment_id} {self.type}>"


# ═══════════════════════════════════════════════════════════════════════════
#  DERIVED ROLLUPS
# ═══════════════════════════════════════════════════════════════════════════

class PatternTestMetrics(db.Model):
    """Per-pattern test rollup, one row per pattern."""

    __tablename__ = "pattern_test_metrics"

    pattern_id = db.Column(
        db.Integer, db.ForeignKey("patterns.id", ondelete="CASCADE"), primary_key=True,
    )
    total_tests = db.Column(db.Integer, nullable=False, default=0)
    completed_tests = db.Column(db.Integer, nullable=False, default=0)
    average_rating = db.Column(db.Float, nullable=False, default=0.0)
    average_completion_time = db.Column(db.Float, nullable=False, default=0.0, comment="Hours")
    average_difficulty = db.Column(db.Float, nullable=False, default=0.0, comment="easier=1 .. harder=3")
    average_clarity = db.Column(db.Float, nullable=False, default=0.0)
    average_accuracy = db.Column(db.Float, nullable=False, default=0.0)
    common_issues = db.Column(db.JSON, nullable=False, default=list)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "pattern_id": self.pattern_id,
            "total_tests": self.total_tests,
            "completed_tests": self.completed_tests,
            "average_rating": self.average_rating,
            "average_completion_time": self.average_completion_time,
            "average_difficulty": self.average_difficulty,
            "average_clarity": self.average_clarity,
            "average_accuracy": self.average_accuracy,
            "common_issues": list(self.common_issues or []),
            "last_updated": isoformat(self.last_updated),
        }

    def __repr__(self):
        return f"<PatternTestMetrics pattern={self.pattern_id} {self.completed_tests}/{self.total_tests}>"


class TesterStats(db.Model):
    """Per-tester progression row: XP, level, badges, earnings."""

    __tablename__ = "tester_stats"
    __test__ = False

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    )
    level = db.Column(db.Integer, nullable=False, default=1)
    xp = db.Column(db.Integer, nullable=False, default=0)
    total_tests_completed = db.Column(db.Integer, nullable=False, default=0, index=True)
    total_tests_in_progress = db.Column(db.Integer, nullable=False, default=0)
    average_rating = db.Column(db.Float, nullable=False, default=0.0)
    average_completion_time = db.Column(db.Float, nullable=False, default=0.0, comment="Hours")
    specialties = db.Column(db.JSON, nullable=False, default=list)
    badges = db.Column(db.JSON, nullable=False, default=list)
    total_coins_earned = db.Column(db.Integer, nullable=False, default=0)
    total_points_earned = db.Column(db.Integer, nullable=False, default=0)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    last_active_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "level": self.level,
            "xp": self.xp,
            "total_tests_completed": self.total_tests_completed,
            "total_tests_in_progress": self.total_tests_in_progress,
            "average_rating": self.average_rating,
            "average_completion_time": self.average_completion_time,
            "specialties": list(self.specialties or []),
            "badges": list(self.badges or []),
            "total_coins_earned": self.total_coins_earned,
            "total_points_earned": self.total_points_earned,
            "joined_at": isoformat(self.joined_at),
            "last_active_at": isoformat(self.last_active_at),
        }

    def __repr__(self):
        return f"<TesterStats user={self.user_id} level={self.level} xp={self.xp}>"
