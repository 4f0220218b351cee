"""Shared pytest fixtures for the TicketBot test suite."""

from datetime import datetime, timezone

import pytest


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep tests deterministic regardless of developer shell env vars."""
    monkeypatch.setenv("TICKETBOT_POLLING_ENABLED", "false")
    for name in ("SINGLE_TICKET_NUMBER", "FORCE_UPDATE", "ZOHO_ORG_ID", "ZOHO_AGENT_ID", "ZOHO_VIEW_ID"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture
def no_sleep_store_policy(recorded_sleeps):
    """Tracker retry policy that records sleeps instead of sleeping."""
    from ticketbot.common.retry import store_policy

    return store_policy(sleep=recorded_sleeps.append)


@pytest.fixture
def tracker(tmp_path, no_sleep_store_policy):
    from ticketbot.tracking.tracker import PersistentTracker

    instance = PersistentTracker(
        str(tmp_path / "data" / "processed.db"),
        skip_threshold=5,
        retry_policy=no_sleep_store_policy,
        now=lambda: datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
    )
    yield instance
    instance.close()
