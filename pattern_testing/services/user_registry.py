"""
User registry and ledger collaborator.

The workflow engine reaches the rest of the marketplace only through these
functions: user lookup and patching, pattern lookup, and appends to the coin
and points ledgers. Nothing here commits; callers own the transaction.
"""

import logging

from pattern_testing.core.exceptions import NotFoundError, ValidationError
from pattern_testing.models import db
from pattern_testing.models.marketplace import (
    LEDGER_TYPES,
    CoinTransaction,
    Pattern,
    PointsTransaction,
    User,
)

logger = logging.getLogger(__name__)

# Columns the workflow is allowed to patch on a user record
_PATCHABLE_USER_FIELDS = frozenset({
    "coins",
    "points",
    "pattern_testing_approved",
    "pattern_testing_application_id",
    "tester_level",
    "tester_xp",
})


def get_user_by_id(user_id):
    """Return the User or None."""
    if user_id is None:
        return None
    return db.session.get(User, user_id)


def require_user(user_id) -> User:
    user = get_user_by_id(user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def update_user(user_id, patch: dict) -> User:
    """Merge *patch* into the user record and return it.

    Raises:
        NotFoundError: unknown user.
        ValidationError: patch touches a column outside the workflow's reach.
    """
    user = require_user(user_id)
    unknown = set(patch) - _PATCHABLE_USER_FIELDS
    if unknown:
        raise ValidationError(
            "User fields not patchable", details={"fields": sorted(unknown)},
        )
    for key, value in patch.items():
        setattr(user, key, value)
    db.session.flush()
    return user


def get_pattern_by_id(pattern_id):
    """Return the Pattern or None."""
    if pattern_id is None:
        return None
    return db.session.get(Pattern, pattern_id)


def require_pattern(pattern_id) -> Pattern:
    pattern = get_pattern_by_id(pattern_id)
    if pattern is None:
        raise NotFoundError(resource="Pattern", resource_id=pattern_id)
    return pattern


def _ledger_entry(model, entry: dict):
    entry_type = entry.get("type", "admin_adjustment")
    if entry_type not in LEDGER_TYPES:
        raise ValidationError(
            f"Invalid ledger type: {entry_type}", details={"type": entry_type},
        )
    row = model(
        user_id=entry["user_id"],
        type=entry_type,
        amount=int(entry["amount"]),
        description=entry.get("description", ""),
        reference=entry.get("reference"),
    )
    db.session.add(row)
    db.session.flush()
    return row


def create_coin_transaction(entry: dict) -> CoinTransaction:
    """Append a coin ledger row: {user_id, type, amount, description, reference}."""
    return _ledger_entry(CoinTransaction, entry)


def create_points_transaction(entry: dict) -> PointsTransaction:
    """Append a points ledger row: {user_id, type, amount, description, reference}."""
    return _ledger_entry(PointsTransaction, entry)
