"""
ticketbot/analysis/note_format.py
HTML private-note rendering with an embedded, machine-readable state block.
Exports: NOTE_HEADER, format_note, embed_state, extract_state, extract_prior_state, is_bot_note
"""

import base64
import binascii
import html
import json
import logging
import re
from typing import Any

from ticketbot.models import Activity

logger = logging.getLogger(__name__)

NOTE_HEADER = "<b>Context Summary</b>"
STATE_BLOCK = re.compile(r"<!--\s*ticketbot-state:([A-Za-z0-9+/=]+)\s*-->")
HIGH_URGENCY_SCORE = 30


def _esc(value: Any) -> str:
    return html.escape(str(value))


def embed_state(state: dict[str, Any]) -> str:
    """Encode `state` as an HTML comment that survives the ticketing system's rendering."""
    raw = json.dumps(state, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return f"<!-- ticketbot-state:{base64.b64encode(raw).decode('ascii')} -->"


def extract_state(text: str | None) -> dict[str, Any] | None:
    """Decode the state block from one note body; None when absent or malformed."""
    if not text:
        return None
    match = STATE_BLOCK.search(text)
    if not match:
        return None
    try:
        data = json.loads(base64.b64decode(match.group(1), validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.debug("Ignoring malformed state block: %s", exc)
        return None
    return data if isinstance(data, dict) else None


def is_bot_note(item: Activity) -> bool:
    return item.is_note and (NOTE_HEADER in item.content or STATE_BLOCK.search(item.content) is not None)


def extract_prior_state(conversation: list[Activity]) -> dict[str, Any] | None:
    """Return the newest decodable state embedded in a previously posted note."""
    for item in sorted(conversation, key=lambda entry: entry.created_at, reverse=True):
        if not item.is_note:
            continue
        state = extract_state(item.content)
        if state is not None:
            return state
    return None


def format_note(state: dict[str, Any]) -> str:
    """Render the model state as an HTML note, with the state itself embedded at the end."""
    sentiment = state.get("sentiment") if isinstance(state.get("sentiment"), dict) else {}
    try:
        score = int(sentiment.get("current_score", 50))
    except (TypeError, ValueError):
        score = 50
    mood = "HIGH URGENCY" if score < HIGH_URGENCY_SCORE else "Normal"
    velocity = sentiment.get("frustration_velocity") or "Stable"

    rca = state.get("root_cause_analysis") if isinstance(state.get("root_cause_analysis"), dict) else {}
    category = rca.get("category") or "Undetermined / In Progress"
    reasoning = rca.get("technical_reasoning") or "No analysis provided."
    evidence = rca.get("evidence_quote")

    events_raw = state.get("timeline_events")
    events = events_raw if isinstance(events_raw, list) else []
    event_items = "".join(f"<li>{_esc(event)}</li>" for event in events) or "<li>No events recorded.</li>"

    next_step = state.get("next_step") if isinstance(state.get("next_step"), dict) else {}
    owner = next_step.get("owner") or "Unassigned"
    action = next_step.get("action") or "Review ticket"
    blocked = " (blocked)" if next_step.get("is_blocked") is True else ""

    lines = [
        f"{NOTE_HEADER}<br>",
        "---------------------------------<br>",
        f"<b>Status:</b> {mood} (sentiment {score}/100, {_esc(velocity)})<br>",
        f"<b>Root Cause:</b> {_esc(category)}<br><br>",
        "<b>Timeline &amp; Key Facts:</b>",
        f"<ul>{event_items}</ul>",
        "<b>Technical Analysis:</b><br>",
        f"<i>{_esc(reasoning)}</i><br>",
    ]
    if evidence:
        lines.append(f"<b>Evidence:</b> <q>{_esc(evidence)}</q><br>")
    lines.extend(
        [
            "<br><b>Next Steps:</b><br>",
            f"<b>Owner:</b> {_esc(owner)}{blocked}<br>",
            f"<b>Action:</b> {_esc(action)}<br>",
            "---------------------------------",
            embed_state(state),
        ]
    )
    return "\n".join(lines)
