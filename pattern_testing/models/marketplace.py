"""
Pattern Testing Engine
Marketplace collaborator models.

The storefront (catalog, checkout, accounts) lives outside this service.
These tables carry only the columns the testing workflow reads or writes:

    - User:              identity, role, coin/point balances, tester flags
    - Pattern:           the artifact under test and its creator
    - CoinTransaction:   append-only coin ledger
    - PointsTransaction: append-only points ledger

Balances on User must always be reconstructable from the two ledgers.
"""

from datetime import datetime, timezone

from pattern_testing.models import db
from pattern_testing.utils.helpers import isoformat

# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = {"user", "seller", "creator", "admin"}

LEDGER_TYPES = {"purchase", "reward", "refund", "admin_adjustment"}


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    """A marketplace account. Testers, creators and admins are all users."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    role = db.Column(db.String(20), nullable=False, default="user", comment="user | seller | creator | admin")

    coins = db.Column(db.Integer, nullable=False, default=0)
    points = db.Column(db.Integer, nullable=False, default=0)

    # Tester profile, set when an application is approved
    pattern_testing_approved = db.Column(db.Boolean, nullable=False, default=False)
    pattern_testing_application_id = db.Column(db.Integer, nullable=True)
    tester_level = db.Column(db.Integer, nullable=True)
    tester_xp = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def summary(self) -> dict:
        """Short form embedded in assignment and feedback payloads."""
        return {"id": self.id, "name": self.name}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "coins": self.coins,
            "points": self.points,
            "pattern_testing_approved": self.pattern_testing_approved,
            "pattern_testing_application_id": self.pattern_testing_application_id,
            "tester_level": self.tester_level,
            "tester_xp": self.tester_xp,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class Pattern(db.Model):
    """A sellable crochet pattern. Read-only from the workflow's point of view."""

    __tablename__ = "patterns"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    creator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    category = db.Column(db.String(100), default="")
    difficulty_level = db.Column(db.String(20), default="beginner", comment="beginner | intermediate | advanced")
    estimated_time = db.Column(db.String(50), default="", comment='Free text, e.g. "4-6 hours"')
    thumbnail_url = db.Column(db.String(500), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "thumbnail_url": self.thumbnail_url,
            "difficulty_level": self.difficulty_level,
        }

    def to_dict(self):
        return {
            **self.summary(),
            "creator_id": self.creator_id,
            "category": self.category,
            "estimated_time": self.estimated_time,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Pattern {self.id}: {self.title[:40]}>"


class _LedgerEntryMixin:
    """Columns shared by the coin and points ledgers."""

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(30), nullable=False, comment="purchase | reward | refund | admin_adjustment")
    amount = db.Column(db.Integer, nullable=False, comment="Signed; positive credits the user")
    description = db.Column(db.String(300), default="")
    reference = db.Column(db.String(100), nullable=True, index=True, comment="e.g. test_assignment:42")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "description": self.description,
            "reference": self.reference,
            "created_at": isoformat(self.created_at),
        }


class CoinTransaction(_LedgerEntryMixin, db.Model):
    __tablename__ = "coin_transactions"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )


class PointsTransaction(_LedgerEntryMixin, db.Model):
    __tablename__ = "points_transactions"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
