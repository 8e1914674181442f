"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    or_,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

ITEM_STATUSES = ("pending", "active", "swapped", "archived")
SWAP_STATUSES = ("pending", "accepted", "rejected", "completed")
NOTIFICATION_TYPES = (
    "swap_requested",
    "swap_accepted",
    "swap_rejected",
    "swap_completed",
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> float:
    return time.time()


class DbClient(Protocol):
    """Interface for database access."""

    def create_user(self, user: "UserRecord") -> "UserRecord":
        ...

    def get_user(self, user_id: str) -> Optional["UserRecord"]:
        ...

    def get_user_by_email(self, email: str) -> Optional["UserRecord"]:
        ...

    def update_user(self, user_id: str, fields: dict) -> Optional["UserRecord"]:
        ...

    def adjust_points(
        self,
        user_id: str,
        amount: int,
        reason: str,
        related_id: Optional[str] = None,
    ) -> int:
        ...

    def list_point_transactions(
        self, user_id: str
    ) -> list["PointTransactionRecord"]:
        ...

    def create_session(self, session: "SessionRecord") -> "SessionRecord":
        ...

    def get_session(self, token: str) -> Optional["SessionRecord"]:
        ...

    def delete_session(self, token: str) -> None:
        ...

    def delete_user_sessions(self, user_id: str) -> int:
        ...

    def purge_expired_sessions(self, now: Optional[float] = None) -> int:
        ...

    def insert_item(self, item: "ItemRecord") -> "ItemRecord":
        ...

    def get_item(self, item_id: str) -> Optional["ItemRecord"]:
        ...

    def list_items(
        self,
        *,
        status: Optional[str] = None,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 100,
    ) -> list["ItemRecord"]:
        ...

    def update_item(self, item_id: str, fields: dict) -> Optional["ItemRecord"]:
        ...

    def insert_swap(self, swap: "SwapRecord") -> "SwapRecord":
        ...

    def get_swap(self, swap_id: str) -> Optional["SwapRecord"]:
        ...

    def list_swaps_for_user(self, user_id: str) -> list["SwapRecord"]:
        ...

    def list_swaps_for_item(
        self, item_id: str, status: Optional[str] = None
    ) -> list["SwapRecord"]:
        ...

    def update_swap_status(
        self, swap_id: str, status: str
    ) -> Optional["SwapRecord"]:
        ...

    def accept_swap(
        self, swap_id: str, item_id: str
    ) -> tuple["SwapRecord", "ItemRecord"]:
        """Reserve an active item for a pending swap in one transaction."""
        ...

    def complete_swap(
        self, swap_id: str, item_id: str, owner_id: str, amount: int
    ) -> tuple["SwapRecord", "ItemRecord", list["SwapRecord"]]:
        """
        Finish an accepted swap in one transaction: item -> swapped, swap ->
        completed, owner credited with a ledger row, other pending swaps on the
        item -> rejected (returned as the third element).
        """
        ...

    def insert_notification(
        self, notification: "NotificationRecord"
    ) -> "NotificationRecord":
        ...

    def get_notification(
        self, notification_id: str
    ) -> Optional["NotificationRecord"]:
        ...

    def list_notifications(self, user_id: str) -> list["NotificationRecord"]:
        ...

    def mark_notification_read(self, notification_id: str) -> None:
        ...

    def mark_all_notifications_read(self, user_id: str) -> int:
        ...


@dataclass
class UserRecord:
    email: str
    name: Optional[str]
    password_hash: str
    id: str = field(default_factory=_new_id)
    avatar_url: Optional[str] = None
    points: int = 0
    is_admin: bool = False
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = asdict(self)
        data.pop("password_hash")
        return data

    def owner_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "avatar_url": self.avatar_url}


@dataclass
class SessionRecord:
    user_id: str
    expires_at: float
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=_now)

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ItemRecord:
    owner_id: str
    title: str
    category: str
    size: str
    point_value: int
    id: str = field(default_factory=_new_id)
    description: Optional[str] = None
    type: Optional[str] = None
    condition: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    status: str = "active"
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class SwapRecord:
    item_id: str
    requester_id: str
    id: str = field(default_factory=_new_id)
    status: str = "pending"
    message: Optional[str] = None
    requested_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class NotificationRecord:
    user_id: str
    type: str
    id: str = field(default_factory=_new_id)
    message: Optional[str] = None
    related_id: Optional[str] = None
    is_read: bool = False
    created_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class PointTransactionRecord:
    user_id: str
    amount: int
    reason: str
    id: str = field(default_factory=_new_id)
    related_id: Optional[str] = None
    created_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        return asdict(self)


def _newest_first(records: Iterable, key: str) -> list:
    # Reversing first keeps later inserts ahead of earlier ones on equal timestamps.
    return sorted(
        reversed(list(records)), key=lambda r: getattr(r, key), reverse=True
    )


def _apply(record, fields: dict) -> None:
    for name, value in fields.items():
        if not hasattr(record, name):
            raise ValueError(f"Unknown field: {name}")
        setattr(record, name, value)


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.sessions: Dict[str, SessionRecord] = {}
        self.items: Dict[str, ItemRecord] = {}
        self.swaps: Dict[str, SwapRecord] = {}
        self.notifications: Dict[str, NotificationRecord] = {}
        self.point_transactions: list[PointTransactionRecord] = []

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.sessions.clear()
        self.items.clear()
        self.swaps.clear()
        self.notifications.clear()
        self.point_transactions.clear()

    # Users

    def create_user(self, user: UserRecord) -> UserRecord:
        user.email = user.email.lower()
        if self.get_user_by_email(user.email):
            raise ValueError(f"Duplicate email: {user.email}")
        self.users[user.id] = user
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        email = email.lower()
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    def update_user(self, user_id: str, fields: dict) -> Optional[UserRecord]:
        user = self.users.get(user_id)
        if not user:
            return None
        _apply(user, fields)
        user.updated_at = time.time()
        return user

    def adjust_points(
        self,
        user_id: str,
        amount: int,
        reason: str,
        related_id: Optional[str] = None,
    ) -> int:
        user = self.users.get(user_id)
        if not user:
            raise KeyError(user_id)
        user.points += amount
        user.updated_at = time.time()
        self.point_transactions.append(
            PointTransactionRecord(
                user_id=user_id,
                amount=amount,
                reason=reason,
                related_id=related_id,
            )
        )
        return user.points

    def list_point_transactions(self, user_id: str) -> list[PointTransactionRecord]:
        rows = [t for t in self.point_transactions if t.user_id == user_id]
        return _newest_first(rows, "created_at")

    # Sessions

    def create_session(self, session: SessionRecord) -> SessionRecord:
        self.sessions[session.token] = session
        return session

    def get_session(self, token: str) -> Optional[SessionRecord]:
        return self.sessions.get(token)

    def delete_session(self, token: str) -> None:
        self.sessions.pop(token, None)

    def delete_user_sessions(self, user_id: str) -> int:
        tokens = [t for t, s in self.sessions.items() if s.user_id == user_id]
        for token in tokens:
            del self.sessions[token]
        return len(tokens)

    def purge_expired_sessions(self, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        tokens = [t for t, s in self.sessions.items() if s.is_expired(now)]
        for token in tokens:
            del self.sessions[token]
        return len(tokens)

    # Items

    def insert_item(self, item: ItemRecord) -> ItemRecord:
        self.items[item.id] = item
        return item

    def get_item(self, item_id: str) -> Optional[ItemRecord]:
        return self.items.get(item_id)

    def list_items(
        self,
        *,
        status: Optional[str] = None,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 100,
    ) -> list[ItemRecord]:
        rows = [
            item
            for item in self.items.values()
            if (status is None or item.status == status)
            and (owner_id is None or item.owner_id == owner_id)
            and (category is None or item.category == category)
        ]
        return _newest_first(rows, "created_at")[:limit]

    def update_item(self, item_id: str, fields: dict) -> Optional[ItemRecord]:
        item = self.items.get(item_id)
        if not item:
            return None
        _apply(item, fields)
        item.updated_at = time.time()
        return item

    # Swaps

    def insert_swap(self, swap: SwapRecord) -> SwapRecord:
        self.swaps[swap.id] = swap
        return swap

    def get_swap(self, swap_id: str) -> Optional[SwapRecord]:
        return self.swaps.get(swap_id)

    def list_swaps_for_user(self, user_id: str) -> list[SwapRecord]:
        rows = []
        for swap in self.swaps.values():
            item = self.items.get(swap.item_id)
            if swap.requester_id == user_id or (item and item.owner_id == user_id):
                rows.append(swap)
        return _newest_first(rows, "requested_at")

    def list_swaps_for_item(
        self, item_id: str, status: Optional[str] = None
    ) -> list[SwapRecord]:
        rows = [
            swap
            for swap in self.swaps.values()
            if swap.item_id == item_id and (status is None or swap.status == status)
        ]
        return _newest_first(rows, "requested_at")

    def update_swap_status(self, swap_id: str, status: str) -> Optional[SwapRecord]:
        swap = self.swaps.get(swap_id)
        if not swap:
            return None
        swap.status = status
        swap.updated_at = time.time()
        return swap

    def _swap_and_item(self, swap_id: str, item_id: str):
        swap = self.swaps.get(swap_id)
        item = self.items.get(item_id)
        if not swap or swap.item_id != item_id:
            raise KeyError(swap_id)
        if not item:
            raise KeyError(item_id)
        return swap, item

    def accept_swap(self, swap_id: str, item_id: str) -> tuple[SwapRecord, ItemRecord]:
        swap, item = self._swap_and_item(swap_id, item_id)
        if item.status != "active":
            raise ValueError(f"Item {item_id} is {item.status}")
        if swap.status != "pending":
            raise ValueError(f"Swap {swap_id} is {swap.status}")
        now = time.time()
        item.status, item.updated_at = "pending", now
        swap.status, swap.updated_at = "accepted", now
        return swap, item

    def complete_swap(
        self, swap_id: str, item_id: str, owner_id: str, amount: int
    ) -> tuple[SwapRecord, ItemRecord, list[SwapRecord]]:
        # Every check runs before the first write, so a failure changes nothing.
        swap, item = self._swap_and_item(swap_id, item_id)
        if item.status != "pending":
            raise ValueError(f"Item {item_id} is {item.status}")
        if swap.status != "accepted":
            raise ValueError(f"Swap {swap_id} is {swap.status}")
        if owner_id not in self.users:
            raise KeyError(owner_id)
        now = time.time()
        item.status, item.updated_at = "swapped", now
        swap.status, swap.updated_at = "completed", now
        self.adjust_points(owner_id, amount, "swap_completed", related_id=swap_id)
        rejected = self.list_swaps_for_item(item_id, status="pending")
        for other in rejected:
            other.status, other.updated_at = "rejected", now
        return swap, item, rejected

    # Notifications

    def insert_notification(
        self, notification: NotificationRecord
    ) -> NotificationRecord:
        self.notifications[notification.id] = notification
        return notification

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        return self.notifications.get(notification_id)

    def list_notifications(self, user_id: str) -> list[NotificationRecord]:
        rows = [n for n in self.notifications.values() if n.user_id == user_id]
        return _newest_first(rows, "created_at")

    def mark_notification_read(self, notification_id: str) -> None:
        notification = self.notifications.get(notification_id)
        if notification:
            notification.is_read = True

    def mark_all_notifications_read(self, user_id: str) -> int:
        updated = 0
        for notification in self.notifications.values():
            if notification.user_id == user_id and not notification.is_read:
                notification.is_read = True
                updated += 1
        return updated


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            # A single shared connection so in-memory SQLite keeps its tables.
            from sqlalchemy.pool import StaticPool

            engine_kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Row conversion

    @staticmethod
    def _to_user(row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            name=row.name,
            password_hash=row.password_hash,
            avatar_url=row.avatar_url,
            points=row.points,
            is_admin=row.is_admin,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_session(row: "SessionRow") -> SessionRecord:
        return SessionRecord(
            token=row.token,
            user_id=row.user_id,
            created_at=row.created_at,
            expires_at=row.expires_at,
        )

    @staticmethod
    def _to_item(row: "ItemRow") -> ItemRecord:
        return ItemRecord(
            id=row.id,
            owner_id=row.owner_id,
            title=row.title,
            description=row.description,
            category=row.category,
            type=row.type,
            size=row.size,
            condition=row.condition,
            tags=list(row.tags or []),
            images=list(row.images or []),
            point_value=row.point_value,
            status=row.status,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_swap(row: "SwapRow") -> SwapRecord:
        return SwapRecord(
            id=row.id,
            item_id=row.item_id,
            requester_id=row.requester_id,
            status=row.status,
            message=row.message,
            requested_at=row.requested_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_notification(row: "NotificationRow") -> NotificationRecord:
        return NotificationRecord(
            id=row.id,
            user_id=row.user_id,
            type=row.type,
            message=row.message,
            related_id=row.related_id,
            is_read=row.is_read,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_transaction(row: "PointTransactionRow") -> PointTransactionRecord:
        return PointTransactionRecord(
            id=row.id,
            user_id=row.user_id,
            amount=row.amount,
            reason=row.reason,
            related_id=row.related_id,
            created_at=row.created_at,
        )

    # Users

    def create_user(self, user: UserRecord) -> UserRecord:
        user.email = user.email.lower()
        with self.Session() as session:
            if session.execute(
                select(UserRow.id).where(UserRow.email == user.email)
            ).first():
                raise ValueError(f"Duplicate email: {user.email}")
            session.add(
                UserRow(
                    id=user.id,
                    email=user.email,
                    name=user.name,
                    password_hash=user.password_hash,
                    avatar_url=user.avatar_url,
                    points=user.points,
                    is_admin=user.is_admin,
                    created_at=user.created_at,
                    updated_at=user.updated_at,
                )
            )
            session.commit()
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email.lower())
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def update_user(self, user_id: str, fields: dict) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            _apply(row, fields)
            row.updated_at = time.time()
            session.commit()
            return self._to_user(row)

    def adjust_points(
        self,
        user_id: str,
        amount: int,
        reason: str,
        related_id: Optional[str] = None,
    ) -> int:
        now = time.time()
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.id == user_id).with_for_update()
            ).scalar_one_or_none()
            if not row:
                raise KeyError(user_id)
            row.points = row.points + amount
            row.updated_at = now
            session.add(
                PointTransactionRow(
                    id=_new_id(),
                    user_id=user_id,
                    amount=amount,
                    reason=reason,
                    related_id=related_id,
                    created_at=now,
                )
            )
            session.commit()
            return row.points

    def list_point_transactions(self, user_id: str) -> list[PointTransactionRecord]:
        with self.Session() as session:
            rows = (
                session.query(PointTransactionRow)
                .filter(PointTransactionRow.user_id == user_id)
                .order_by(PointTransactionRow.created_at.desc())
                .all()
            )
            return [self._to_transaction(row) for row in rows]

    # Sessions

    def create_session(self, session_record: SessionRecord) -> SessionRecord:
        with self.Session() as session:
            session.add(
                SessionRow(
                    token=session_record.token,
                    user_id=session_record.user_id,
                    created_at=session_record.created_at,
                    expires_at=session_record.expires_at,
                )
            )
            session.commit()
        return session_record

    def get_session(self, token: str) -> Optional[SessionRecord]:
        with self.Session() as session:
            row = session.get(SessionRow, token)
            return self._to_session(row) if row else None

    def delete_session(self, token: str) -> None:
        with self.Session() as session:
            session.query(SessionRow).filter(SessionRow.token == token).delete(
                synchronize_session=False
            )
            session.commit()

    def delete_user_sessions(self, user_id: str) -> int:
        with self.Session() as session:
            deleted = (
                session.query(SessionRow)
                .filter(SessionRow.user_id == user_id)
                .delete(synchronize_session=False)
            )
            session.commit()
            return deleted or 0

    def purge_expired_sessions(self, now: Optional[float] = None) -> int:
        cutoff = now if now is not None else time.time()
        with self.Session() as session:
            deleted = (
                session.query(SessionRow)
                .filter(SessionRow.expires_at <= cutoff)
                .delete(synchronize_session=False)
            )
            session.commit()
            return deleted or 0

    # Items

    def insert_item(self, item: ItemRecord) -> ItemRecord:
        with self.Session() as session:
            session.add(
                ItemRow(
                    id=item.id,
                    owner_id=item.owner_id,
                    title=item.title,
                    description=item.description,
                    category=item.category,
                    type=item.type,
                    size=item.size,
                    condition=item.condition,
                    tags=list(item.tags),
                    images=list(item.images),
                    point_value=item.point_value,
                    status=item.status,
                    created_at=item.created_at,
                    updated_at=item.updated_at,
                )
            )
            session.commit()
        return item

    def get_item(self, item_id: str) -> Optional[ItemRecord]:
        with self.Session() as session:
            row = session.get(ItemRow, item_id)
            return self._to_item(row) if row else None

    def list_items(
        self,
        *,
        status: Optional[str] = None,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 100,
    ) -> list[ItemRecord]:
        with self.Session() as session:
            stmt = select(ItemRow)
            if status is not None:
                stmt = stmt.where(ItemRow.status == status)
            if owner_id is not None:
                stmt = stmt.where(ItemRow.owner_id == owner_id)
            if category is not None:
                stmt = stmt.where(ItemRow.category == category)
            stmt = stmt.order_by(ItemRow.created_at.desc()).limit(limit)
            return [self._to_item(row) for row in session.execute(stmt).scalars()]

    def update_item(self, item_id: str, fields: dict) -> Optional[ItemRecord]:
        with self.Session() as session:
            row = session.get(ItemRow, item_id)
            if not row:
                return None
            _apply(row, fields)
            row.updated_at = time.time()
            session.commit()
            return self._to_item(row)

    # Swaps

    def insert_swap(self, swap: SwapRecord) -> SwapRecord:
        with self.Session() as session:
            session.add(
                SwapRow(
                    id=swap.id,
                    item_id=swap.item_id,
                    requester_id=swap.requester_id,
                    status=swap.status,
                    message=swap.message,
                    requested_at=swap.requested_at,
                    updated_at=swap.updated_at,
                )
            )
            session.commit()
        return swap

    def get_swap(self, swap_id: str) -> Optional[SwapRecord]:
        with self.Session() as session:
            row = session.get(SwapRow, swap_id)
            return self._to_swap(row) if row else None

    def list_swaps_for_user(self, user_id: str) -> list[SwapRecord]:
        with self.Session() as session:
            stmt = (
                select(SwapRow)
                .join(ItemRow, ItemRow.id == SwapRow.item_id)
                .where(
                    or_(SwapRow.requester_id == user_id, ItemRow.owner_id == user_id)
                )
                .order_by(SwapRow.requested_at.desc())
            )
            return [self._to_swap(row) for row in session.execute(stmt).scalars()]

    def list_swaps_for_item(
        self, item_id: str, status: Optional[str] = None
    ) -> list[SwapRecord]:
        with self.Session() as session:
            stmt = select(SwapRow).where(SwapRow.item_id == item_id)
            if status is not None:
                stmt = stmt.where(SwapRow.status == status)
            stmt = stmt.order_by(SwapRow.requested_at.desc())
            return [self._to_swap(row) for row in session.execute(stmt).scalars()]

    def update_swap_status(self, swap_id: str, status: str) -> Optional[SwapRecord]:
        with self.Session() as session:
            row = session.get(SwapRow, swap_id)
            if not row:
                return None
            row.status = status
            row.updated_at = time.time()
            session.commit()
            return self._to_swap(row)

    @staticmethod
    def _lock_swap_and_item(session: Session, swap_id: str, item_id: str):
        item = session.execute(
            select(ItemRow).where(ItemRow.id == item_id).with_for_update()
        ).scalar_one_or_none()
        swap = session.execute(
            select(SwapRow).where(SwapRow.id == swap_id).with_for_update()
        ).scalar_one_or_none()
        if not swap or swap.item_id != item_id:
            raise KeyError(swap_id)
        if not item:
            raise KeyError(item_id)
        return swap, item

    def accept_swap(self, swap_id: str, item_id: str) -> tuple[SwapRecord, ItemRecord]:
        now = time.time()
        with self.Session() as session:
            swap, item = self._lock_swap_and_item(session, swap_id, item_id)
            if item.status != "active":
                raise ValueError(f"Item {item_id} is {item.status}")
            if swap.status != "pending":
                raise ValueError(f"Swap {swap_id} is {swap.status}")
            item.status, item.updated_at = "pending", now
            swap.status, swap.updated_at = "accepted", now
            session.commit()
            return self._to_swap(swap), self._to_item(item)

    def complete_swap(
        self, swap_id: str, item_id: str, owner_id: str, amount: int
    ) -> tuple[SwapRecord, ItemRecord, list[SwapRecord]]:
        now = time.time()
        # Leaving the block without commit() rolls every write back.
        with self.Session() as session:
            swap, item = self._lock_swap_and_item(session, swap_id, item_id)
            if item.status != "pending":
                raise ValueError(f"Item {item_id} is {item.status}")
            if swap.status != "accepted":
                raise ValueError(f"Swap {swap_id} is {swap.status}")
            item.status, item.updated_at = "swapped", now
            swap.status, swap.updated_at = "completed", now

            owner = session.execute(
                select(UserRow).where(UserRow.id == owner_id).with_for_update()
            ).scalar_one_or_none()
            if not owner:
                raise KeyError(owner_id)
            owner.points = owner.points + amount
            owner.updated_at = now
            session.add(
                PointTransactionRow(
                    id=_new_id(),
                    user_id=owner_id,
                    amount=amount,
                    reason="swap_completed",
                    related_id=swap_id,
                    created_at=now,
                )
            )

            others = (
                session.execute(
                    select(SwapRow)
                    .where(SwapRow.item_id == item_id, SwapRow.status == "pending")
                    .order_by(SwapRow.requested_at.desc())
                )
                .scalars()
                .all()
            )
            for other in others:
                other.status, other.updated_at = "rejected", now
            session.commit()
            return (
                self._to_swap(swap),
                self._to_item(item),
                [self._to_swap(other) for other in others],
            )

    # Notifications

    def insert_notification(
        self, notification: NotificationRecord
    ) -> NotificationRecord:
        with self.Session() as session:
            session.add(
                NotificationRow(
                    id=notification.id,
                    user_id=notification.user_id,
                    type=notification.type,
                    message=notification.message,
                    related_id=notification.related_id,
                    is_read=notification.is_read,
                    created_at=notification.created_at,
                )
            )
            session.commit()
        return notification

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        with self.Session() as session:
            row = session.get(NotificationRow, notification_id)
            return self._to_notification(row) if row else None

    def list_notifications(self, user_id: str) -> list[NotificationRecord]:
        with self.Session() as session:
            rows = (
                session.query(NotificationRow)
                .filter(NotificationRow.user_id == user_id)
                .order_by(NotificationRow.created_at.desc())
                .all()
            )
            return [self._to_notification(row) for row in rows]

    def mark_notification_read(self, notification_id: str) -> None:
        with self.Session() as session:
            row = session.get(NotificationRow, notification_id)
            if not row:
                return
            row.is_read = True
            session.commit()

    def mark_all_notifications_read(self, user_id: str) -> int:
        with self.Session() as session:
            updated = (
                session.query(NotificationRow)
                .filter(
                    NotificationRow.user_id == user_id,
                    NotificationRow.is_read == False,  # noqa: E712
                )
                .update({NotificationRow.is_read: True}, synchronize_session=False)
            )
            session.commit()
            return updated or 0


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    avatar_url = Column(String, nullable=True)
    points = Column(Integer, nullable=False, default=0)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class SessionRow(Base):
    __tablename__ = "sessions"

    token = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False, index=True)


class ItemRow(Base):
    __tablename__ = "items"

    id = Column(String, primary_key=True)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False, index=True)
    type = Column(String, nullable=True)
    size = Column(String, nullable=False)
    condition = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    images = Column(JSON, nullable=False, default=list)
    point_value = Column(Integer, nullable=False)
    status = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class SwapRow(Base):
    __tablename__ = "swaps"

    id = Column(String, primary_key=True)
    item_id = Column(String, ForeignKey("items.id"), nullable=False, index=True)
    requester_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=True)
    requested_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class NotificationRow(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    related_id = Column(String, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)


class PointTransactionRow(Base):
    __tablename__ = "point_transactions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    related_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
