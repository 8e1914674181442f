"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Cookie, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from rewear import auth
from rewear.config import get_settings
from rewear.db import DbClient, InMemoryDbClient, PostgresDbClient, UserRecord
from rewear.realtime import ChangeFeed, InMemoryChangeFeed, RedisChangeFeed
from rewear.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_change_feed: ChangeFeed | None = None

bearer_scheme = HTTPBearer(auto_error=False)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    logger.info("Database client: %s", _db_client.__class__.__name__)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_endpoint:
        _storage_client = InMemoryStorageClient(bucket=settings.storage_bucket)
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.storage_public_base_url or "",
        )
    return _storage_client


def get_change_feed() -> ChangeFeed:
    """
    Return a singleton change feed for realtime subscriptions.
    """
    global _change_feed
    if _change_feed:
        return _change_feed

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _change_feed = RedisChangeFeed(
            url=settings.redis_url,
            channel_prefix=settings.realtime_channel_prefix,
        )
    else:
        _change_feed = InMemoryChangeFeed()
    return _change_feed


def get_session_token(
    session_token: Optional[str] = Cookie(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return session_token


def get_optional_user(
    token: Optional[str] = Depends(get_session_token),
    db: DbClient = Depends(get_db_client),
) -> Optional[UserRecord]:
    return auth.get_current_user(db, token)


def get_current_user(
    user: Optional[UserRecord] = Depends(get_optional_user),
) -> UserRecord:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
