"""
Point balances and the transaction ledger.
"""

from __future__ import annotations

import logging

from rewear.db import DbClient, PointTransactionRecord
from rewear.errors import BackendError, NotFound

logger = logging.getLogger(__name__)


def get_balance(db: DbClient, user_id: str) -> int:
    user = db.get_user(user_id)
    if not user:
        raise NotFound("User not found")
    return user.points


def get_history(db: DbClient, user_id: str) -> list[PointTransactionRecord]:
    try:
        return db.list_point_transactions(user_id)
    except Exception as exc:
        logger.exception("points.get_history error: %s", exc)
        raise BackendError("Failed to load point history.") from exc
