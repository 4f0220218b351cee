"""Turns a ticket conversation into a formatted private note via the reasoning service."""

import json
import logging
from datetime import datetime
from typing import Callable

from ticketbot.analysis.note_format import extract_prior_state, format_note, is_bot_note
from ticketbot.analysis.prompt import build_prompt
from ticketbot.analysis.redactor import scrub
from ticketbot.common.text_extract import strip_html
from ticketbot.common.timestamps import utc_now
from ticketbot.errors import BotError
from ticketbot.interfaces import ReasoningService
from ticketbot.models import Activity, AnalysisResult, TicketRef

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100
MAX_MESSAGE_CHARS = 500
NO_TEXT_PLACEHOLDER = "[No readable text]"


def build_transcript(conversation: list[Activity]) -> str:
    """Render the last HISTORY_LIMIT items as `[time] SENDER: text`, skipping our own notes."""
    lines: list[str] = []
    for item in sorted(conversation, key=lambda entry: entry.created_at)[-HISTORY_LIMIT:]:
        if is_bot_note(item):
            continue
        body = strip_html(item.content)[:MAX_MESSAGE_CHARS]
        if not body:
            continue
        sender = "CUSTOMER" if item.from_customer else "AGENT"
        lines.append(f"[{item.created_at.strftime('%Y-%m-%d %H:%M')}] {sender}: {body}")
    return "\n".join(lines) if lines else NO_TEXT_PLACEHOLDER


class ThreadAnalyzer:
    """Analysis collaborator: redact, prompt, parse, format."""

    def __init__(self, llm: ReasoningService, *, now: Callable[[], datetime] = utc_now) -> None:
        self.llm = llm
        self._now = now

    def analyze(self, ticket: TicketRef, conversation: list[Activity]) -> AnalysisResult | None:
        previous_state = extract_prior_state(conversation)
        prompt = build_prompt(
            subject=scrub(ticket.subject or "No Subject"),
            transcript=scrub(build_transcript(conversation)),
            previous_state=previous_state,
            now=self._now(),
        )
        logger.info(
            "Analyzing ticket %s (%d items, %s).",
            ticket.number,
            len(conversation),
            "state update" if previous_state else "initial analysis",
        )
        response = self.llm.generate(prompt, json_mode=True)
        try:
            state = json.loads(response)
        except (TypeError, json.JSONDecodeError) as exc:
            raise BotError.permanent("Reasoning service returned invalid JSON.", cause=exc) from exc
        if not isinstance(state, dict) or not state:
            return None
        return AnalysisResult(note_html=format_note(state), state=state)
