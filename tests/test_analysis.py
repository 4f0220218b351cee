"""
tests/test_analysis.py
Unit tests for ticketbot/analysis: redaction, prompt, note format and the analyzer.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

T0 = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)

STATE = {
    "analysis_scratchpad": "thinking",
    "root_cause_analysis": {
        "category": "Software Bug",
        "technical_reasoning": "Crash on <script> tag",
        "evidence_quote": "it crashes",
    },
    "timeline_events": ["2026-01-01 [Customer]: Reported crash"],
    "next_step": {"owner": "Engineering", "action": "Reproduce", "is_blocked": True},
    "sentiment": {"current_score": 20, "frustration_velocity": "Increasing"},
}


def _item(content: str, *, direction: str = "in", minutes: int = 0, is_note: bool = False, channel: str = "EMAIL"):
    from ticketbot.models import Activity

    return Activity(
        direction=direction,
        channel="COMMENT" if is_note else channel,
        created_at=T0 + timedelta(minutes=minutes),
        content=content,
        is_note=is_note,
    )


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("auth Bearer aaa.bbb.ccc here", "auth [AUTH_TOKEN_REDACTED] here"),
        ("call sip:alice@pbx.example.net;transport=udp", "call [SIP_URI];transport=udp"),
        ("see https://app.example.com/p?token=abc now", "see https://app.example.com/p[URL_PARAMS_REMOVED] now"),
        ("see https://app.example.com/p now", "see https://app.example.com/p now"),
        ("mail bob.smith@example.com today", "mail [EMAIL] today"),
        ("host 192.168.1.20 down", "host [IP_ADDR] down"),
        ("call +1 415-555-1234 please", "call [PHONE] please"),
        ("ticket 12345 ok", "ticket 12345 ok"),
    ],
)
def test_scrub(raw, expected):
    from ticketbot.analysis.redactor import scrub

    assert scrub(raw) == expected


def test_scrub_none_is_empty():
    from ticketbot.analysis.redactor import scrub

    assert scrub(None) == ""


def test_format_note_renders_and_embeds_state():
    from ticketbot.analysis.note_format import NOTE_HEADER, extract_state, format_note

    note = format_note(STATE)

    assert note.startswith(NOTE_HEADER)
    assert "HIGH URGENCY" in note
    assert "&lt;script&gt;" in note
    assert "Engineering (blocked)" in note
    assert extract_state(note) == STATE


def test_format_note_tolerates_missing_sections():
    from ticketbot.analysis.note_format import format_note

    note = format_note({"summary": "x"})

    assert "Normal" in note
    assert "Undetermined / In Progress" in note
    assert "No events recorded." in note


def test_extract_state_ignores_malformed_blocks():
    from ticketbot.analysis.note_format import extract_state

    assert extract_state("no block") is None
    assert extract_state("<!-- ticketbot-state:bm90IGpzb24= -->") is None
    assert extract_state(None) is None


def test_extract_prior_state_returns_newest_note_state():
    from ticketbot.analysis.note_format import embed_state, extract_prior_state

    conversation = [
        _item(embed_state({"v": 2}), is_note=True, minutes=20),
        _item(embed_state({"v": 1}), is_note=True, minutes=10),
        _item(embed_state({"v": 3}), minutes=30),
    ]

    assert extract_prior_state(conversation) == {"v": 2}
    assert extract_prior_state([_item("hello")]) is None


def test_build_transcript_skips_bot_notes_and_truncates():
    from ticketbot.analysis.note_format import format_note
    from ticketbot.analysis.thread_analyzer import MAX_MESSAGE_CHARS, build_transcript

    conversation = [
        _item("<p>Hello</p>", minutes=0),
        _item(format_note(STATE), is_note=True, direction="out", minutes=5),
        _item("x" * 900, direction="out", minutes=10),
    ]

    lines = build_transcript(conversation).splitlines()

    assert lines[0] == "[2026-01-01 10:00] CUSTOMER: Hello"
    assert lines[1] == f"[2026-01-01 10:10] AGENT: {'x' * MAX_MESSAGE_CHARS}"
    assert len(lines) == 2


def test_build_transcript_placeholder_when_empty():
    from ticketbot.analysis.thread_analyzer import NO_TEXT_PLACEHOLDER, build_transcript

    assert build_transcript([_item("   ")]) == NO_TEXT_PLACEHOLDER


def test_build_prompt_initial_vs_update():
    from ticketbot.analysis.prompt import build_prompt

    initial = build_prompt(subject="Crash", transcript="[..] CUSTOMER: hi", previous_state=None, now=T0)
    update = build_prompt(subject="Crash", transcript="t", previous_state={"v": 1}, now=T0)

    assert "INITIAL ANALYSIS" in initial
    assert "Current Time: 2026-01-01 10:00 UTC" in initial
    assert "STATE UPDATE" in update
    assert '"v": 1' in update


def _ticket(subject: str = "Crash for bob@example.com"):
    from ticketbot.models import TicketRef

    return TicketRef(id="T1", number="101", assignee_id="a", version_marker="v1", subject=subject)


def test_analyzer_redacts_prompt_and_formats_note():
    from ticketbot.analysis.thread_analyzer import ThreadAnalyzer

    llm = MagicMock()
    llm.generate.return_value = json.dumps(STATE)
    analyzer = ThreadAnalyzer(llm, now=lambda: T0)

    result = analyzer.analyze(_ticket(), [_item("reach me at 10.1.2.3")])

    prompt = llm.generate.call_args.args[0]
    assert llm.generate.call_args.kwargs == {"json_mode": True}
    assert "bob@example.com" not in prompt
    assert "[EMAIL]" in prompt
    assert "[IP_ADDR]" in prompt
    assert "INITIAL ANALYSIS" in prompt
    assert result.state == STATE
    assert "HIGH URGENCY" in result.note_html


def test_analyzer_uses_prior_state_from_previous_note():
    from ticketbot.analysis.note_format import format_note
    from ticketbot.analysis.thread_analyzer import ThreadAnalyzer

    llm = MagicMock()
    llm.generate.return_value = json.dumps(STATE)
    conversation = [_item("first"), _item(format_note({"timeline_events": ["old"]}), is_note=True, minutes=5)]

    ThreadAnalyzer(llm, now=lambda: T0).analyze(_ticket(), conversation)

    prompt = llm.generate.call_args.args[0]
    assert "STATE UPDATE" in prompt
    assert '"old"' in prompt


def test_analyzer_invalid_json_is_permanent():
    from ticketbot.analysis.thread_analyzer import ThreadAnalyzer
    from ticketbot.errors import BotError, ErrorKind

    llm = MagicMock()
    llm.generate.return_value = "not json"

    with pytest.raises(BotError) as excinfo:
        ThreadAnalyzer(llm).analyze(_ticket(), [_item("hi")])
    assert excinfo.value.kind is ErrorKind.PERMANENT


def test_analyzer_empty_state_returns_none():
    from ticketbot.analysis.thread_analyzer import ThreadAnalyzer

    llm = MagicMock()
    llm.generate.return_value = "{}"

    assert ThreadAnalyzer(llm).analyze(_ticket(), [_item("hi")]) is None
