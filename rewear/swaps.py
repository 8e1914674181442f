"""
Swap requests and their lifecycle.

    pending --(owner)--------------> accepted --(either party)--> completed
    pending --(owner or requester)-> rejected

Accepting reserves the item (status ``pending``). Completing marks it
``swapped``, credits the owner with the item's point value, and rejects every
other open request for the same item.
"""

from __future__ import annotations

import logging
from typing import Optional

from rewear import notifications
from rewear.db import SWAP_STATUSES, DbClient, ItemRecord, SwapRecord
from rewear.errors import (
    BackendError,
    Conflict,
    NotFound,
    PermissionDenied,
    ReWearError,
    ValidationError,
)
from rewear.realtime import ChangeFeed, emit

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."

# status -> {next status: roles allowed to make that move}
TRANSITIONS = {
    "pending": {"accepted": {"owner"}, "rejected": {"owner", "requester"}},
    "accepted": {"completed": {"owner", "requester"}},
    "rejected": {},
    "completed": {},
}


def _wrap_error(scope: str, exc: Exception) -> BackendError:
    logger.exception("%s error: %s", scope, exc)
    return BackendError(GENERIC_ERROR)


def request_swap(
    db: DbClient,
    item_id: str,
    requester_id: str,
    message: Optional[str] = None,
    feed: Optional[ChangeFeed] = None,
) -> SwapRecord:
    try:
        item = db.get_item(item_id)
    except Exception as exc:
        raise _wrap_error("swaps.request_swap (lookup item)", exc) from exc
    if not item:
        logger.error("swaps.request_swap (lookup item) error: no item %s", item_id)
        raise NotFound("Item not found")
    if item.owner_id == requester_id:
        raise ValidationError("You cannot request your own item", field="item_id")
    if item.status != "active":
        raise Conflict(f"This item is currently {item.status}")
    try:
        open_requests = db.list_swaps_for_item(item_id, status="pending")
    except Exception as exc:
        raise _wrap_error("swaps.request_swap (pending requests)", exc) from exc
    if any(swap.requester_id == requester_id for swap in open_requests):
        raise Conflict("You already have a pending request for this item")

    swap = SwapRecord(
        item_id=item_id,
        requester_id=requester_id,
        status="pending",
        message=(message or "").strip() or None,
    )
    try:
        db.insert_swap(swap)
    except Exception as exc:
        raise _wrap_error("swaps.request_swap (insert)", exc) from exc

    emit(feed, "swaps", "INSERT", new=swap.as_dict())
    try:
        notifications.notify(
            db, item.owner_id, "swap_requested", related_id=swap.id, feed=feed
        )
    except Exception as exc:
        # The request stands; only the owner's inbox entry is missing.
        raise _wrap_error("swaps.request_swap (notify owner)", exc) from exc
    logger.info("Swap %s requested on item %s by %s", swap.id, item_id, requester_id)
    return swap


def _joined(db: DbClient, swap: SwapRecord) -> dict:
    data = swap.as_dict()
    item = db.get_item(swap.item_id)
    requester = db.get_user(swap.requester_id)
    data["item"] = (
        {
            "id": item.id,
            "title": item.title,
            "point_value": item.point_value,
            "images": item.images,
            "owner_id": item.owner_id,
        }
        if item
        else None
    )
    data["requester"] = requester.owner_summary() if requester else None
    return data


def get_user_swaps(db: DbClient, user_id: str) -> list[dict]:
    """Swaps the user requested or received, newest first."""
    try:
        return [_joined(db, swap) for swap in db.list_swaps_for_user(user_id)]
    except Exception as exc:
        raise _wrap_error("swaps.get_user_swaps", exc) from exc


def _role(actor_id: str, swap: SwapRecord, item: ItemRecord) -> Optional[str]:
    if actor_id == item.owner_id:
        return "owner"
    if actor_id == swap.requester_id:
        return "requester"
    return None


def _set_swap_status(
    db: DbClient, swap: SwapRecord, status: str, feed: Optional[ChangeFeed]
) -> SwapRecord:
    old = swap.as_dict()
    updated = db.update_swap_status(swap.id, status)
    emit(feed, "swaps", "UPDATE", new=updated.as_dict(), old=old)
    return updated


def update_swap_status(
    db: DbClient,
    actor_id: str,
    swap_id: str,
    status: str,
    feed: Optional[ChangeFeed] = None,
) -> SwapRecord:
    if status not in SWAP_STATUSES:
        raise ValidationError(f"Unknown swap status: {status}", field="status")

    swap = db.get_swap(swap_id)
    if not swap:
        raise NotFound("Swap not found")
    item = db.get_item(swap.item_id)
    if not item:
        raise NotFound("Item not found")

    role = _role(actor_id, swap, item)
    if role is None:
        raise PermissionDenied("You are not part of this swap")
    allowed = TRANSITIONS.get(swap.status, {})
    if status not in allowed:
        raise Conflict(f"Cannot change swap from {swap.status} to {status}")
    if role not in allowed[status]:
        raise PermissionDenied(f"Only the item owner can mark this swap {status}")

    try:
        if status == "accepted":
            return _accept(db, swap, item, feed)
        if status == "rejected":
            return _reject(db, swap, role, feed)
        return _complete(db, swap, item, feed)
    except ReWearError:
        raise
    except Exception as exc:
        raise _wrap_error("swaps.update_swap_status", exc) from exc


def _accept(
    db: DbClient, swap: SwapRecord, item: ItemRecord, feed: Optional[ChangeFeed]
) -> SwapRecord:
    if item.status != "active":
        raise Conflict(f"This item is currently {item.status}")
    old_swap, old_item = swap.as_dict(), item.as_dict()
    try:
        updated, reserved = db.accept_swap(swap.id, item.id)
    except ValueError as exc:
        # Lost a race with another accept or an owner edit.
        raise Conflict("This item is no longer available") from exc

    emit(feed, "items", "UPDATE", new=reserved.as_dict(), old=old_item)
    emit(feed, "swaps", "UPDATE", new=updated.as_dict(), old=old_swap)
    notifications.notify(
        db, swap.requester_id, "swap_accepted", related_id=swap.id, feed=feed
    )
    return updated


def _reject(
    db: DbClient, swap: SwapRecord, role: str, feed: Optional[ChangeFeed]
) -> SwapRecord:
    updated = _set_swap_status(db, swap, "rejected", feed)
    # A requester withdrawing their own request needs no notification.
    if role == "owner":
        notifications.notify(
            db, swap.requester_id, "swap_rejected", related_id=swap.id, feed=feed
        )
    return updated


def _complete(
    db: DbClient, swap: SwapRecord, item: ItemRecord, feed: Optional[ChangeFeed]
) -> SwapRecord:
    # Only a reserved item can change hands.
    if item.status != "pending":
        raise Conflict(f"This item is currently {item.status}")
    old_swap, old_item = swap.as_dict(), item.as_dict()
    try:
        updated, swapped, rejected = db.complete_swap(
            swap.id, item.id, item.owner_id, item.point_value
        )
    except ValueError as exc:
        raise Conflict("This swap can no longer be completed") from exc

    emit(feed, "items", "UPDATE", new=swapped.as_dict(), old=old_item)
    emit(feed, "swaps", "UPDATE", new=updated.as_dict(), old=old_swap)
    for party in (item.owner_id, swap.requester_id):
        notifications.notify(
            db, party, "swap_completed", related_id=swap.id, feed=feed
        )
    for other in rejected:
        emit(
            feed,
            "swaps",
            "UPDATE",
            new=other.as_dict(),
            old=dict(other.as_dict(), status="pending"),
        )
        notifications.notify(
            db, other.requester_id, "swap_rejected", related_id=other.id, feed=feed
        )

    logger.info(
        "Swap %s completed: item %s swapped, %d points to %s",
        swap.id,
        item.id,
        item.point_value,
        item.owner_id,
    )
    return updated
