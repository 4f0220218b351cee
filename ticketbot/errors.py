"""
ticketbot/errors.py
Error taxonomy shared by the clients, the tracker and the engine.
Exports: ErrorKind, BotError, classify, error_for_status, is_sqlite_busy, status_of
"""

import socket
import sqlite3
import urllib.error
from enum import Enum
from typing import Any

TRANSIENT_STATUSES = {408, 429}
AUTH_STATUSES = {401, 403}


class ErrorKind(str, Enum):
    """Closed set of failure kinds handled at the per-ticket boundary."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNEXPECTED = "unexpected"


class BotError(Exception):
    """Classified failure carrying its kind, an optional HTTP status and cause."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        *,
        cause: BaseException | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.cause = cause
        self.status = status
        if cause is not None:
            self.__cause__ = cause

    @property
    def is_auth_failure(self) -> bool:
        return self.status in AUTH_STATUSES

    @classmethod
    def transient(cls, message: str, *, cause: BaseException | None = None, status: int | None = None) -> "BotError":
        return cls(message, ErrorKind.TRANSIENT, cause=cause, status=status)

    @classmethod
    def permanent(cls, message: str, *, cause: BaseException | None = None, status: int | None = None) -> "BotError":
        return cls(message, ErrorKind.PERMANENT, cause=cause, status=status)

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


def kind_for_status(status: int) -> ErrorKind:
    """Map an HTTP status code to an error kind."""
    if status in TRANSIENT_STATUSES or 500 <= status <= 599:
        return ErrorKind.TRANSIENT
    if 400 <= status <= 499:
        return ErrorKind.PERMANENT
    return ErrorKind.UNEXPECTED


def error_for_status(status: int, message: str, *, cause: BaseException | None = None) -> BotError:
    """Build a classified error for a non-success HTTP response."""
    kind = kind_for_status(status)
    if kind is ErrorKind.UNEXPECTED:
        kind = ErrorKind.PERMANENT
    if status in AUTH_STATUSES:
        message = f"Authorization failed: {message}"
    return BotError(message, kind, cause=cause, status=status)


def is_sqlite_busy(exc: BaseException) -> bool:
    """Return True when SQLite reports lock contention with another connection."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    text = str(exc).lower()
    return "locked" in text or "busy" in text


def status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "code"):
        value: Any = getattr(exc, attr, None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def classify(exc: BaseException) -> ErrorKind:
    """
    Classify any exception into exactly one error kind.

    Args:
        exc: Raised exception.
    Returns:
        ErrorKind for the retry and per-ticket handling decisions.
    """
    if isinstance(exc, BotError):
        return exc.kind
    if isinstance(exc, urllib.error.HTTPError):
        return kind_for_status(exc.code)
    if isinstance(exc, (TimeoutError, socket.timeout, ConnectionError, urllib.error.URLError)):
        return ErrorKind.TRANSIENT
    if is_sqlite_busy(exc):
        return ErrorKind.TRANSIENT
    status = status_of(exc)
    if status is not None:
        return kind_for_status(status)
    name = type(exc).__name__
    if "Timeout" in name or "APIConnection" in name:
        return ErrorKind.TRANSIENT
    return ErrorKind.UNEXPECTED
