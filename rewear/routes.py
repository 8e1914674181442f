"""
HTTP routes for the ReWear API.
"""

from __future__ import annotations

import json
import logging
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from fastapi.responses import StreamingResponse

from rewear import auth, images, items, notifications, points, swaps
from rewear.config import get_settings
from rewear.db import DbClient, SessionRecord, UserRecord
from rewear.dependencies import (
    get_change_feed,
    get_current_user,
    get_db_client,
    get_session_token,
    get_storage_client,
)
from rewear.errors import ValidationError
from rewear.realtime import ChangeFeed, Subscription
from rewear.schemas import (
    AuthResponse,
    ImageDeleteRequest,
    ImageDeleteResponse,
    ImageUrlsResponse,
    ItemCreateRequest,
    ItemListResponse,
    ItemResponse,
    ItemUpdateRequest,
    MarkAllReadResponse,
    NotificationListResponse,
    PasswordStrengthResponse,
    PointsResponse,
    PublicProfile,
    SignInRequest,
    SignUpRequest,
    StatusResponse,
    SwapCreateRequest,
    SwapListResponse,
    SwapResponse,
    SwapStatusRequest,
    UserProfile,
)
from rewear.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()


def _set_session_cookie(response: Response, session: SessionRecord) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        session.token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
    )


def _auth_response(user: UserRecord, session: SessionRecord) -> AuthResponse:
    return AuthResponse(
        user=UserProfile(**user.as_dict()),
        session_token=session.token,
        expires_at=session.expires_at,
    )


@router.get("/health", response_model=StatusResponse)
def health():
    return StatusResponse(status="ok")


# Auth


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def sign_up(
    payload: SignUpRequest,
    response: Response,
    db: DbClient = Depends(get_db_client),
):
    errors = auth.validate_signup(
        payload.name, payload.email, payload.password, payload.confirm_password
    )
    if errors:
        field, message = next(iter(errors.items()))
        raise ValidationError(message, field=field)
    user, session = auth.sign_up(
        db,
        payload.name,
        payload.email,
        payload.password,
        ttl_hours=get_settings().session_ttl_hours,
    )
    _set_session_cookie(response, session)
    return _auth_response(user, session)


@router.post("/auth/signin", response_model=AuthResponse)
def sign_in(
    payload: SignInRequest,
    response: Response,
    db: DbClient = Depends(get_db_client),
):
    user, session = auth.sign_in(
        db, payload.email, payload.password, ttl_hours=get_settings().session_ttl_hours
    )
    _set_session_cookie(response, session)
    return _auth_response(user, session)


@router.post("/auth/signout", response_model=StatusResponse)
def sign_out(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    db: DbClient = Depends(get_db_client),
):
    auth.sign_out(db, token)
    response.delete_cookie(get_settings().session_cookie_name)
    return StatusResponse(status="ok")


@router.get("/auth/me", response_model=UserProfile)
def me(user: UserRecord = Depends(get_current_user)):
    return UserProfile(**user.as_dict())


@router.get("/auth/password-strength", response_model=PasswordStrengthResponse)
def password_strength(password: str = Query("")):
    is_valid, message = auth.validate_password(password)
    return PasswordStrengthResponse(
        strength=auth.password_strength(password), is_valid=is_valid, message=message
    )


@router.get("/users/{user_id}", response_model=PublicProfile)
def public_profile(user_id: str, db: DbClient = Depends(get_db_client)):
    profile = auth.get_user_profile(db, user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="User not found")
    return PublicProfile(**profile)


# Items


@router.get("/items", response_model=ItemListResponse)
def list_active_items(
    category: Optional[str] = Query(None),
    db: DbClient = Depends(get_db_client),
):
    return ItemListResponse(items=items.get_active_items(db, category=category))


@router.post("/items", response_model=ItemResponse, status_code=201)
def create_item(
    payload: ItemCreateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    item = items.create_item(db, user.id, payload.model_dump(), feed=feed)
    return ItemResponse(**item.as_dict(), owner=user.owner_summary())


@router.get("/items/mine", response_model=ItemListResponse)
def list_my_items(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    rows = items.get_user_items(db, user.id)
    return ItemListResponse(items=[item.as_dict() for item in rows])


@router.post("/items/images", response_model=ImageUrlsResponse, status_code=201)
async def upload_images(
    files: list[UploadFile] = File(...),
    user: UserRecord = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
):
    settings = get_settings()
    uploads = [
        images.ImageUpload(
            filename=upload.filename or "image",
            data=await upload.read(),
            content_type=upload.content_type or "",
        )
        for upload in files
    ]
    urls = images.upload_item_images(
        storage,
        uploads,
        cache_control=settings.storage_cache_control,
        max_bytes=settings.max_image_bytes,
    )
    logger.info("User %s uploaded %d image(s)", user.id, len(urls))
    return ImageUrlsResponse(urls=urls)


@router.post("/items/images/delete", response_model=ImageDeleteResponse)
def delete_images(
    payload: ImageDeleteRequest,
    user: UserRecord = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
):
    deleted = images.delete_item_images(storage, payload.urls)
    return ImageDeleteResponse(deleted=deleted)


@router.get("/items/{item_id}", response_model=ItemResponse)
def get_item(item_id: str, db: DbClient = Depends(get_db_client)):
    item = items.get_item_by_id(db, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return ItemResponse(**item)


@router.patch("/items/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: str,
    payload: ItemUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    updates = payload.model_dump(exclude_unset=True)
    item = items.update_item(db, user.id, item_id, updates, feed=feed)
    return ItemResponse(**item.as_dict(), owner=user.owner_summary())


@router.post("/items/{item_id}/archive", response_model=ItemResponse)
def archive_item(
    item_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    item = items.archive_item(db, user.id, item_id, feed=feed)
    return ItemResponse(**item.as_dict(), owner=user.owner_summary())


# Swaps


@router.post("/swaps", response_model=SwapResponse, status_code=201)
def request_swap(
    payload: SwapCreateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    if not items.is_uuid(payload.item_id):
        raise HTTPException(status_code=404, detail="Item not found")
    swap = swaps.request_swap(
        db, payload.item_id, user.id, message=payload.message, feed=feed
    )
    return SwapResponse(**swap.as_dict())


@router.get("/swaps", response_model=SwapListResponse)
def list_swaps(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return SwapListResponse(swaps=swaps.get_user_swaps(db, user.id))


@router.patch("/swaps/{swap_id}", response_model=SwapResponse)
def update_swap(
    swap_id: str,
    payload: SwapStatusRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    swap = swaps.update_swap_status(db, user.id, swap_id, payload.status, feed=feed)
    return SwapResponse(**swap.as_dict())


# Notifications and points


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    rows = notifications.get_user_notifications(db, user.id)
    return NotificationListResponse(
        notifications=[n.as_dict() for n in rows],
        unread_count=sum(1 for n in rows if not n.is_read),
    )


@router.post("/notifications/read-all", response_model=MarkAllReadResponse)
def mark_all_notifications_read(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return MarkAllReadResponse(updated=notifications.mark_all_as_read(db, user.id))


@router.post("/notifications/{notification_id}/read", response_model=StatusResponse)
def mark_notification_read(
    notification_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    notifications.mark_as_read(db, user.id, notification_id)
    return StatusResponse(status="ok")


@router.get("/points", response_model=PointsResponse)
def my_points(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    history = points.get_history(db, user.id)
    return PointsResponse(
        balance=points.get_balance(db, user.id),
        history=[t.as_dict() for t in history],
    )


# Realtime


def _sse(payload: dict) -> str:
    """Format a payload dict as a single SSE ``data:`` frame."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


def sse_stream(
    subscription: Subscription,
    poll_seconds: float,
    max_events: Optional[int] = None,
) -> Iterator[str]:
    """Yield change payloads as SSE frames, with keepalive comments while idle."""
    sent = 0
    try:
        while max_events is None or sent < max_events:
            event = subscription.get(timeout=poll_seconds)
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield _sse(event.to_payload())
            sent += 1
    finally:
        subscription.unsubscribe()


_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


@router.get("/realtime/items")
def stream_item_changes(feed: ChangeFeed = Depends(get_change_feed)):
    subscription = items.subscribe_to_items(feed)
    return StreamingResponse(
        sse_stream(subscription, get_settings().realtime_poll_seconds),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.get("/realtime/notifications")
def stream_notifications(
    user: UserRecord = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    subscription = notifications.subscribe_to_notifications(feed, user.id)
    return StreamingResponse(
        sse_stream(subscription, get_settings().realtime_poll_seconds),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )
