"""Prompt text for the ticket state analysis."""

import json
from datetime import datetime
from typing import Any

RCA_CATEGORIES = [
    "Software Bug",
    "User Error / Training",
    "Configuration / Setup",
    "Infrastructure / Network",
    "Third-Party Integration",
    "Billing / Account",
    "Feature Request",
    "Undetermined / In Progress",
]

OUTPUT_SCHEMA: dict[str, Any] = {
    "analysis_scratchpad": (
        "Internal monologue. Review the evidence, discard noise, and justify the classification "
        "before filling the final fields."
    ),
    "root_cause_analysis": {
        "category": f"One of: {', '.join(RCA_CATEGORIES)}",
        "confidence_score": "Integer 0-100",
        "technical_reasoning": "Concise technical explanation of why this category was chosen.",
        "evidence_quote": "Direct quote from the transcript supporting this conclusion (or null).",
    },
    "timeline_events": ["YYYY-MM-DD [Who]: Specific technical event or status change."],
    "next_step": {
        "owner": "Support, Engineering, Carriers, Compliance, or Customer",
        "action": "Specific action item.",
        "is_blocked": "Boolean",
    },
    "sentiment": {
        "current_score": "Integer 0 (Furious) to 100 (Delighted)",
        "frustration_velocity": "String: 'Stable', 'Increasing', or 'Decreasing'",
    },
}


def _task_block(previous_state: dict[str, Any] | None) -> str:
    if not previous_state:
        return (
            "--- TASK: INITIAL ANALYSIS ---\n"
            "This is a fresh analysis.\n"
            "1. Read the transcript below.\n"
            "2. Build a complete chronological timeline of technical events.\n"
            "3. Assess the initial root cause based on available evidence."
        )
    return (
        "--- TASK: STATE UPDATE ---\n"
        "An existing state from a previous run is attached. Update it based on the transcript.\n\n"
        f"[PREVIOUS STATE JSON]:\n{json.dumps(previous_state, indent=2, ensure_ascii=False)}\n\n"
        "1. Parse the PREVIOUS STATE.\n"
        "2. Append new significant events to 'timeline_events'; keep existing ones.\n"
        "3. Re-evaluate 'root_cause_analysis' and 'sentiment'.\n"
        "4. Update 'next_step' to reflect the latest message."
    )


def build_prompt(
    *,
    subject: str,
    transcript: str,
    previous_state: dict[str, Any] | None,
    now: datetime,
) -> str:
    """Assemble the full analysis prompt from already-redacted inputs."""
    return "\n".join(
        [
            "You are a Tier 3 Support Engineer.",
            "Analyze helpdesk logs and maintain a strict, technical state of the issue.",
            "You are speaking to engineers, not customers. Be precise, factual and succinct.",
            "",
            "--- CURRENT CONTEXT ---",
            f"Current Time: {now.strftime('%Y-%m-%d %H:%M UTC')}",
            f"Ticket Subject: {subject}",
            "",
            "--- CONSTRAINTS ---",
            "1. Populate 'analysis_scratchpad' first; filter out thank-you mails and chatter.",
            "2. Never guess dates. Use the transcript timestamps or 'Unknown Date'.",
            "3. Do not invent root causes. If evidence is vague, use 'Undetermined / In Progress'.",
            "",
            _task_block(previous_state),
            "",
            "--- INPUT TRANSCRIPT ---",
            transcript,
            "",
            "--- REQUIRED JSON SCHEMA ---",
            json.dumps(OUTPUT_SCHEMA, indent=2),
        ]
    )
