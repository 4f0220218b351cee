"""
ticketbot/clients/zoho_client.py
Zoho Desk implementation of the TicketSource contract.
Exports: ZohoDeskClient, parse_ticket, parse_thread, parse_comment
"""

import logging
import urllib.parse
from typing import Any

from ticketbot.clients.http import request_json, with_auth_refresh
from ticketbot.clients.zoho_auth import ZohoAuthenticator
from ticketbot.common.retry import RetryPolicy, http_policy
from ticketbot.common.text_extract import strip_html
from ticketbot.common.timestamps import parse_timestamp
from ticketbot.errors import BotError
from ticketbot.models import (
    CHANNEL_COMMENT,
    DIRECTION_AGENT,
    DIRECTION_CUSTOMER,
    Activity,
    TicketRef,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
MAX_TICKETS_TO_FETCH = 100
MAX_COMMENTS_TO_FETCH = 200
IGNORED_STATUSES = {"On Hold", "Closed"}
PUBLIC_COMMENT_LABEL = "[Public Comment]"
PRIVATE_NOTE_LABEL = "[Private Note]"


def base_url(top_level_domain: str = "com") -> str:
    return f"https://desk.zoho.{top_level_domain}/api/v1"


def _safe_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _items(data: Any) -> list[dict[str, Any]]:
    if not isinstance(data, dict):
        return []
    items = data.get("data")
    return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []


def parse_ticket(raw: dict[str, Any]) -> TicketRef:
    """Normalize a Zoho ticket object; `modifiedTime` is the version marker when present."""
    marker = str(raw.get("modifiedTime") or "").strip()
    if not marker:
        marker = f"threads:{raw.get('threadCount', 0)}"
    assignee = raw.get("assigneeId")
    return TicketRef(
        id=str(raw.get("id", "")),
        number=str(raw.get("ticketNumber", "")),
        assignee_id=str(assignee) if assignee is not None else None,
        version_marker=marker,
        subject=str(raw.get("subject") or ""),
        status=str(raw.get("status") or ""),
    )


def parse_thread(raw: dict[str, Any]) -> Activity:
    body = raw.get("content") or raw.get("summary")
    return Activity(
        direction=str(raw.get("direction") or DIRECTION_AGENT),
        channel=str(raw.get("channel") or "").upper(),
        created_at=parse_timestamp(raw["createdTime"]),
        content=strip_html(body),
    )


def parse_comment(raw: dict[str, Any]) -> Activity:
    # endUser comments come from the customer, everything else from our side.
    commenter_type = _safe_dict(raw.get("commenter")).get("type")
    label = PUBLIC_COMMENT_LABEL if raw.get("isPublic") else PRIVATE_NOTE_LABEL
    return Activity(
        direction=DIRECTION_CUSTOMER if commenter_type == "endUser" else DIRECTION_AGENT,
        channel=CHANNEL_COMMENT,
        created_at=parse_timestamp(raw["createdTime"]),
        content=f"{label} {raw.get('content') or ''}".strip(),
        is_note=True,
    )


class ZohoDeskClient:
    """Thin Zoho Desk REST wrapper with retries, auth refresh and bounded timeouts."""

    def __init__(
        self,
        auth: ZohoAuthenticator,
        *,
        org_id: str | None = None,
        top_level_domain: str = "com",
        timeout: float = 30,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.auth = auth
        self.org_id = org_id
        self.base_url = base_url(top_level_domain)
        self.timeout = timeout
        self.retry_policy = retry_policy or http_policy()

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Zoho-oauthtoken {self.auth.access_token()}"}
        if self.org_id:
            headers["orgId"] = str(self.org_id)
        return headers

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        label = f"Zoho {method} {path}"

        def attempt() -> Any:
            return request_json(method, url, headers=self._headers(), payload=payload, timeout=self.timeout)

        return with_auth_refresh(
            lambda: self.retry_policy.call(attempt, label=label, logger=logger),
            self.auth.force_refresh,
            label=label,
            logger=logger,
        )

    def _get(self, path: str, **params: Any) -> Any:
        query = urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
        return self._request("GET", f"{path}?{query}" if query else path)

    def _paginate(self, path: str, *, cap: int | None = None, **params: Any) -> list[dict[str, Any]]:
        """Collect pages until a short page, or until `cap` items when one is given."""
        collected: list[dict[str, Any]] = []
        from_index = 1
        while cap is None or len(collected) < cap:
            batch = _items(self._get(path, limit=PAGE_SIZE, **{"from": from_index}, **params))
            collected.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            from_index += PAGE_SIZE
        if cap is None:
            return collected
        if len(collected) >= cap:
            logger.warning("Hit safety limit of %d items for %s. Stopping fetch.", cap, path)
        return collected[:cap]

    # --- Bootstrap helpers ---
    def get_my_info(self) -> dict[str, Any]:
        return _safe_dict(self._get("/myinfo"))

    def get_organizations(self) -> list[dict[str, Any]]:
        return _items(self._get("/organizations"))

    def get_views(self) -> list[dict[str, Any]]:
        return _items(self._get("/views", module="tickets"))

    # --- TicketSource ---
    def list_open_tickets(self, view_id: str) -> list[TicketRef]:
        """List tickets in a view, skipping ignored statuses. Fails open to []."""
        logger.info("Fetching tickets from view %s...", view_id)
        try:
            raw_tickets = self._paginate(
                "/tickets", cap=MAX_TICKETS_TO_FETCH, viewId=view_id, include="contacts"
            )
        except BotError as exc:
            logger.error("Failed to fetch tickets (%s): %s", exc.kind.value, exc)
            return []
        tickets = [parse_ticket(raw) for raw in raw_tickets if raw.get("status") not in IGNORED_STATUSES]
        logger.info("Fetched %d valid tickets.", len(tickets))
        return tickets

    def get_ticket_by_number(self, number: str) -> TicketRef | None:
        matches = _items(self._get("/tickets/search", ticketNumber=str(number), limit=1))
        return parse_ticket(matches[0]) if matches else None

    def get_latest_activity(self, ticket_id: str) -> Activity | None:
        data = self._get(f"/tickets/{ticket_id}/latestThread")
        if not isinstance(data, dict) or not data.get("createdTime"):
            return None
        return parse_thread(data)

    def get_full_conversation(self, ticket_id: str) -> list[Activity]:
        """Threads and comments merged in chronological order.

        Every thread is fetched because thread counts drive the activity volume;
        only comments are capped.
        """
        threads = self._paginate(f"/tickets/{ticket_id}/threads")
        comments = self._paginate(f"/tickets/{ticket_id}/comments", cap=MAX_COMMENTS_TO_FETCH)
        conversation = [parse_thread(raw) for raw in threads if raw.get("createdTime")]
        conversation.extend(parse_comment(raw) for raw in comments if raw.get("createdTime"))
        return sorted(conversation, key=lambda item: item.created_at)

    def post_private_note(self, ticket_id: str, html_content: str) -> None:
        if not html_content or not html_content.strip():
            logger.warning("Refusing to post an empty note on ticket %s.", ticket_id)
            return
        self._request(
            "POST",
            f"/tickets/{ticket_id}/comments",
            payload={"isPublic": False, "content": html_content, "contentType": "html"},
        )
