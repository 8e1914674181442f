"""
Service-level exceptions. The HTTP layer maps each class to a status code.
"""

from __future__ import annotations

from typing import Optional


class ReWearError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReWearError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthError(ReWearError):
    status_code = 401


class PermissionDenied(ReWearError):
    status_code = 403


class NotFound(ReWearError):
    status_code = 404


class Conflict(ReWearError):
    status_code = 409


class BackendError(ReWearError):
    """A storage or database failure, carrying a message safe to show users."""

    status_code = 500
