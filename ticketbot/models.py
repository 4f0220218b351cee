"""Fixed-shape value types passed between the engine and its collaborators."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DIRECTION_CUSTOMER = "in"
DIRECTION_AGENT = "out"
CHANNEL_EMAIL = "EMAIL"
CHANNEL_COMMENT = "COMMENT"


@dataclass(frozen=True)
class TicketRef:
    """Identity of one unit of work as listed by the ticketing API."""

    id: str
    number: str
    assignee_id: str | None
    version_marker: str
    subject: str = ""
    status: str = ""


@dataclass(frozen=True)
class Activity:
    """One message-like conversation item (thread or comment)."""

    direction: str
    channel: str
    created_at: datetime
    content: str = ""
    is_note: bool = False

    @property
    def from_customer(self) -> bool:
        return self.direction == DIRECTION_CUSTOMER


@dataclass(frozen=True)
class TrackingRecord:
    """Persisted processing state for one ticket."""

    ticket_id: str
    last_seen_volume: int
    processed_at: datetime


@dataclass
class AnalysisResult:
    """Formatted note plus the structured state the model produced."""

    note_html: str
    state: dict[str, Any] = field(default_factory=dict)


class Outcome(str, Enum):
    """Terminal result of one ticket pipeline run."""

    SKIPPED_CACHE = "skipped_cache"
    SKIPPED_PROBE = "skipped_probe"
    SKIPPED_DELTA = "skipped_delta"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    PROCESSED = "processed"
    FAILED_TRANSIENT = "failed_transient"
    FAILED_PERMANENT = "failed_permanent"
    FAILED_UNEXPECTED = "failed_unexpected"


def count_volume(conversation: list[Activity], channel: str = CHANNEL_EMAIL) -> int:
    """Count conversation items on the qualifying channel."""
    wanted = channel.upper()
    return sum(1 for item in conversation if item.channel.upper() == wanted)
