"""Crew kickoff helpers: single retry on empty LLM output and task output extraction."""

import logging
from typing import Any

EMPTY_LLM_RESPONSE_MESSAGE = "Invalid response from LLM call - None or empty."


def is_empty_llm_response_error(exc: BaseException) -> bool:
    """Return True when CrewAI surfaced an empty/None LLM response failure."""
    return EMPTY_LLM_RESPONSE_MESSAGE in str(exc)


def extract_task_output(task: Any) -> str:
    """Return the analyst task's answer text, stripped; "" when the crew left none."""
    output = getattr(task, "output", None)
    if output is None:
        return ""
    if isinstance(output, str):
        return output.strip()
    for attr in ("raw", "result"):
        value = getattr(output, attr, None)
        if isinstance(value, str):
            return value.strip()
    return ""


def kickoff_with_empty_retry(*, crew: Any, logger: logging.Logger, label: str) -> Any:
    """
    Run crew kickoff, retrying exactly once when the provider returned nothing.

    Args:
        crew: CrewAI crew-like object with `kickoff()`.
        logger: Logger instance for failure diagnostics.
        label: Operation label for log messages.
    Returns:
        Kickoff result.
    Raises:
        Exception: The kickoff failure (the retry's failure when one was made).
    """
    try:
        return crew.kickoff()
    except Exception as exc:
        if not is_empty_llm_response_error(exc):
            raise
        logger.warning("Retrying %s crew once for transient empty LLM response.", label)
    return crew.kickoff()
