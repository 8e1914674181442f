"""
Clothing item listings.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from rewear.db import DbClient, ItemRecord
from rewear.errors import BackendError, Conflict, NotFound, PermissionDenied, ValidationError
from rewear.realtime import ChangeFeed, Subscription, emit, items_channel

logger = logging.getLogger(__name__)

CATEGORIES = ("Tops", "Bottoms", "Dresses", "Outerwear", "Accessories", "Footwear")
SIZES = ("XS", "S", "M", "L", "XL", "XXL")
CONDITIONS = ("New", "Like New", "Good", "Fair")
EDITABLE_STATUSES = ("active", "pending", "archived")
EDITABLE_FIELDS = (
    "title",
    "description",
    "category",
    "type",
    "size",
    "condition",
    "tags",
    "images",
    "point_value",
    "status",
)
MAX_TITLE_LENGTH = 100
MAX_POINT_VALUE = 1000

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.match(value or ""))


def _clean_tags(tags: Any) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str) or not isinstance(tags, (list, tuple)):
        raise ValidationError("Tags must be a list of strings", field="tags")
    seen: list[str] = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _validate_fields(fields: dict) -> dict:
    """Validate and normalise whichever item fields are present."""
    clean: dict = {}
    if "title" in fields:
        title = (fields["title"] or "").strip()
        if not title:
            raise ValidationError("Title is required", field="title")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Title must be at most {MAX_TITLE_LENGTH} characters", field="title"
            )
        clean["title"] = title
    if "description" in fields:
        description = fields["description"]
        clean["description"] = description.strip() if description else None
    if "type" in fields:
        clean["type"] = (fields["type"] or "").strip() or None
    if "category" in fields:
        if fields["category"] not in CATEGORIES:
            raise ValidationError("Please choose a valid category", field="category")
        clean["category"] = fields["category"]
    if "size" in fields:
        if fields["size"] not in SIZES:
            raise ValidationError("Please choose a valid size", field="size")
        clean["size"] = fields["size"]
    if "condition" in fields:
        condition = fields["condition"]
        if condition is not None and condition not in CONDITIONS:
            raise ValidationError("Please choose a valid condition", field="condition")
        clean["condition"] = condition
    if "point_value" in fields:
        value = fields["point_value"]
        if isinstance(value, bool) or not isinstance(value, int):
            try:
                value = int(str(value).strip())
            except ValueError:
                raise ValidationError("Point value must be a whole number", field="point_value")
        if not 1 <= value <= MAX_POINT_VALUE:
            raise ValidationError(
                f"Point value must be between 1 and {MAX_POINT_VALUE}", field="point_value"
            )
        clean["point_value"] = value
    if "tags" in fields:
        clean["tags"] = _clean_tags(fields["tags"])
    if "images" in fields:
        images = fields["images"] or []
        if not isinstance(images, (list, tuple)):
            raise ValidationError("Images must be a list of URLs", field="images")
        clean["images"] = [str(url) for url in images]
    return clean


def _with_owner(db: DbClient, item: ItemRecord) -> dict:
    data = item.as_dict()
    owner = db.get_user(item.owner_id)
    data["owner"] = owner.owner_summary() if owner else None
    return data


def get_active_items(db: DbClient, category: Optional[str] = None) -> list[dict]:
    """Newest active items, each with its owner's public details."""
    try:
        rows = db.list_items(status="active", category=category)
        return [_with_owner(db, item) for item in rows]
    except Exception as exc:
        logger.exception("items.get_active_items error: %s", exc)
        raise BackendError("Failed to load active items.") from exc


def get_item_by_id(db: DbClient, item_id: str) -> Optional[dict]:
    if not is_uuid(item_id):
        logger.warning("items.get_item_by_id called with non-UUID id: %s", item_id)
        return None
    try:
        item = db.get_item(item_id)
        return _with_owner(db, item) if item else None
    except Exception as exc:
        logger.exception("items.get_item_by_id error: %s", exc)
        raise BackendError("Failed to fetch the item.") from exc


def create_item(
    db: DbClient,
    owner_id: str,
    payload: dict,
    feed: Optional[ChangeFeed] = None,
) -> ItemRecord:
    required = ("title", "category", "size", "point_value")
    if any(payload.get(name) in (None, "") for name in required):
        raise ValidationError("Please fill in all required fields.")

    fields = _validate_fields({k: v for k, v in payload.items() if k in EDITABLE_FIELDS})
    status = payload.get("status") or "active"
    if status not in ("active", "pending"):
        raise ValidationError("New items must be active or pending", field="status")

    item = ItemRecord(
        owner_id=owner_id,
        title=fields["title"],
        category=fields["category"],
        size=fields["size"],
        point_value=fields["point_value"],
        description=fields.get("description"),
        type=fields.get("type"),
        condition=fields.get("condition"),
        tags=fields.get("tags", []),
        images=fields.get("images", []),
        status=status,
    )
    try:
        db.insert_item(item)
    except Exception as exc:
        logger.exception("items.create_item error: %s", exc)
        raise BackendError("Failed to create item.") from exc

    emit(feed, "items", "INSERT", new=item.as_dict())
    return item


def _ensure_not_reserved(db: DbClient, item_id: str) -> None:
    """An accepted swap holds the item until that swap completes."""
    try:
        accepted = db.list_swaps_for_item(item_id, status="accepted")
    except Exception as exc:
        logger.exception("items._ensure_not_reserved error: %s", exc)
        raise BackendError("Failed to update item.") from exc
    if accepted:
        raise Conflict("This item is reserved by an accepted swap")


def _owned_item(db: DbClient, actor_id: str, item_id: str) -> ItemRecord:
    item = db.get_item(item_id) if is_uuid(item_id) else None
    if not item:
        raise NotFound("Item not found")
    if item.owner_id != actor_id:
        raise PermissionDenied("Only the owner can change this item")
    return item


def update_item(
    db: DbClient,
    actor_id: str,
    item_id: str,
    updates: dict,
    feed: Optional[ChangeFeed] = None,
) -> ItemRecord:
    item = _owned_item(db, actor_id, item_id)
    unknown = sorted(set(updates) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Field cannot be updated: {unknown[0]}", field=unknown[0])

    fields = _validate_fields(updates)
    if "status" in updates:
        status = updates["status"]
        if status not in EDITABLE_STATUSES:
            raise ValidationError(f"Status cannot be set to {status}", field="status")
        if item.status == "swapped":
            raise Conflict("A swapped item cannot change status")
        if status != item.status:
            _ensure_not_reserved(db, item_id)
        fields["status"] = status
    if not fields:
        return item

    old = item.as_dict()
    try:
        updated = db.update_item(item_id, fields)
    except Exception as exc:
        logger.exception("items.update_item error: %s", exc)
        raise BackendError("Failed to update item.") from exc

    emit(feed, "items", "UPDATE", new=updated.as_dict(), old=old)
    return updated


def get_user_items(db: DbClient, user_id: str) -> list[ItemRecord]:
    try:
        return db.list_items(owner_id=user_id)
    except Exception as exc:
        logger.exception("items.get_user_items error: %s", exc)
        raise BackendError("Failed to load user items.") from exc


def archive_item(
    db: DbClient,
    actor_id: str,
    item_id: str,
    feed: Optional[ChangeFeed] = None,
) -> ItemRecord:
    item = _owned_item(db, actor_id, item_id)
    if item.status == "swapped":
        raise Conflict("A swapped item cannot be archived")
    if item.status == "archived":
        return item
    _ensure_not_reserved(db, item_id)

    old = item.as_dict()
    try:
        updated = db.update_item(item_id, {"status": "archived"})
    except Exception as exc:
        logger.exception("items.archive_item error: %s", exc)
        raise BackendError("Failed to archive item.") from exc

    emit(feed, "items", "UPDATE", new=updated.as_dict(), old=old)
    return updated


def subscribe_to_items(feed: ChangeFeed) -> Subscription:
    channel, filters = items_channel()
    return feed.subscribe(channel, filters)
