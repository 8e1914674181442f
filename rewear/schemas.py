"""
Pydantic schemas for the ReWear API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class SignUpRequest(BaseModel):
    name: str
    email: str
    password: str
    confirm_password: Optional[str] = None


class SignInRequest(BaseModel):
    email: str
    password: str


class UserProfile(BaseModel):
    id: str
    name: Optional[str] = None
    email: str
    avatar_url: Optional[str] = None
    points: int
    created_at: float
    updated_at: float


class PublicProfile(BaseModel):
    id: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    points: int


class AuthResponse(BaseModel):
    user: UserProfile
    session_token: str
    expires_at: float


class PasswordStrengthResponse(BaseModel):
    strength: int
    is_valid: bool
    message: Optional[str] = None


class OwnerSummary(BaseModel):
    id: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class ItemCreateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    size: Optional[str] = None
    condition: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    point_value: Optional[int | str] = None
    status: Optional[str] = None


class ItemUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    size: Optional[str] = None
    condition: Optional[str] = None
    tags: Optional[list[str]] = None
    images: Optional[list[str]] = None
    point_value: Optional[int] = None
    status: Optional[str] = None


class ItemResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    description: Optional[str] = None
    category: str
    type: Optional[str] = None
    size: str
    condition: Optional[str] = None
    tags: list[str]
    images: list[str]
    point_value: int
    status: str
    created_at: float
    updated_at: float
    owner: Optional[OwnerSummary] = None


class ItemListResponse(BaseModel):
    items: list[ItemResponse]


class ImageUrlsResponse(BaseModel):
    urls: list[str]


class ImageDeleteRequest(BaseModel):
    urls: list[str]


class ImageDeleteResponse(BaseModel):
    deleted: list[str]


class SwapCreateRequest(BaseModel):
    item_id: str
    message: Optional[str] = Field(default=None, max_length=500)


class SwapStatusRequest(BaseModel):
    status: Literal["pending", "accepted", "rejected", "completed"]


class SwapItemSummary(BaseModel):
    id: str
    title: str
    point_value: int
    images: list[str]
    owner_id: str


class SwapResponse(BaseModel):
    id: str
    item_id: str
    requester_id: str
    status: str
    message: Optional[str] = None
    requested_at: float
    updated_at: float
    item: Optional[SwapItemSummary] = None
    requester: Optional[OwnerSummary] = None


class SwapListResponse(BaseModel):
    swaps: list[SwapResponse]


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: str
    message: Optional[str] = None
    related_id: Optional[str] = None
    is_read: bool
    created_at: float


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(BaseModel):
    updated: int


class PointTransactionResponse(BaseModel):
    id: str
    amount: int
    reason: str
    related_id: Optional[str] = None
    created_at: float


class PointsResponse(BaseModel):
    balance: int
    history: list[PointTransactionResponse]


class StatusResponse(BaseModel):
    status: Literal["ok"]
