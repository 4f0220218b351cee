"""
ticketbot/clients/http.py
JSON-over-HTTP helpers that translate transport failures into classified errors.
Exports: request_json, with_auth_refresh
"""

import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable, TypeVar

from ticketbot.errors import BotError, error_for_status

T = TypeVar("T")

MAX_ERROR_BODY_CHARS = 500


def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    payload: dict[str, Any] | None = None,
    form: dict[str, str] | None = None,
    timeout: float = 30,
) -> Any:
    """
    Perform one HTTP request and decode its JSON body.

    Args:
        method: HTTP verb.
        url: Absolute URL.
        headers: Extra request headers.
        payload: JSON body (sets Content-Type application/json).
        form: Form-encoded body (mutually exclusive with `payload`).
        timeout: Socket timeout in seconds.
    Returns:
        Decoded JSON, or None for an empty body (e.g. 204 No Content).
    Raises:
        BotError: TRANSIENT for timeouts, connection failures, 408/429/5xx;
            PERMANENT for other 4xx and malformed JSON.
    """
    data: bytes | None = None
    request_headers = {"Accept": "application/json", **(headers or {})}
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
        request_headers["Content-Type"] = "application/json"
    elif form is not None:
        data = urllib.parse.urlencode(form).encode("utf-8")
        request_headers["Content-Type"] = "application/x-www-form-urlencoded"
    request = urllib.request.Request(url, data=data, headers=request_headers, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310 - configured API hosts
            body = response.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")[:MAX_ERROR_BODY_CHARS]
        raise error_for_status(exc.code, f"{method} {url} -> {exc.code}: {detail}", cause=exc) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise BotError.transient(f"{method} {url} timed out after {timeout}s", cause=exc) from exc
    except urllib.error.URLError as exc:
        raise BotError.transient(f"{method} {url} connection failed: {exc.reason}", cause=exc) from exc
    if not body.strip():
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise BotError.permanent(f"{method} {url} returned malformed JSON", cause=exc) from exc


def with_auth_refresh(
    fn: Callable[[], T],
    refresh: Callable[[], Any],
    *,
    label: str,
    logger: logging.Logger,
) -> T:
    """
    Run `fn`; on an auth failure force one credential refresh and retry once.

    A second auth failure is escalated to PERMANENT so refreshes never loop.
    """
    try:
        return fn()
    except BotError as exc:
        if not exc.is_auth_failure:
            raise
        logger.warning("%s rejected credentials (%s). Forcing token refresh.", label, exc.status)
    refresh()
    try:
        return fn()
    except BotError as exc:
        if exc.is_auth_failure:
            raise BotError.permanent(
                f"{label} still unauthorized after credential refresh", cause=exc, status=exc.status
            ) from exc
        raise
