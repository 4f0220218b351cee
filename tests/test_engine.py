"""
tests/test_engine.py
Unit tests for ticketbot/engine.py: the tiered pipeline, dispatch and run modes.
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

T0 = datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


def _activity(direction: str, channel: str = "EMAIL", minutes: int = 0):
    from ticketbot.models import Activity

    return Activity(direction=direction, channel=channel, created_at=T0 + timedelta(minutes=minutes), content="hi")


def _ticket(marker: str = "v1", ticket_id: str = "T1", assignee: str | None = "agent-1"):
    from ticketbot.models import TicketRef

    return TicketRef(id=ticket_id, number=f"#{ticket_id}", assignee_id=assignee, version_marker=marker)


class FakeSource:
    """In-memory ticket source with call counters."""

    def __init__(self, latest=None, conversation=None, tickets=None):
        self.latest = latest
        self.conversation = conversation or []
        self.tickets = tickets or []
        self.org_id = None
        self.calls: dict[str, int] = {}
        self.notes: list[tuple[str, str]] = []

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def list_open_tickets(self, view_id):
        self._count("list")
        return list(self.tickets)

    def get_ticket_by_number(self, number):
        self._count("by_number")
        return next((t for t in self.tickets if t.number == number), None)

    def get_latest_activity(self, ticket_id):
        self._count("probe")
        return self.latest

    def get_full_conversation(self, ticket_id):
        self._count("fetch")
        return list(self.conversation)

    def post_private_note(self, ticket_id, html):
        self._count("post")
        self.notes.append((ticket_id, html))


def _analyzer(note: str = "<b>Context Summary</b>"):
    from ticketbot.models import AnalysisResult

    analyzer = MagicMock()
    analyzer.analyze.return_value = AnalysisResult(note_html=note, state={"summary": "ok"})
    return analyzer


def _engine(tracker, source, analyzer, **overrides):
    from ticketbot.config import Settings
    from ticketbot.engine import Engine

    params = {"org_id": "org-1", "view_id": "view-1", "agent_id": "agent-1", "poll_interval_seconds": 60}
    params.update(overrides)
    return Engine(Settings(**params), source=source, analyzer=analyzer, tracker=tracker)


def _six_email_conversation():
    return [_activity("in" if n % 2 == 0 else "out", "EMAIL", n) for n in range(6)] + [
        _activity("out", "COMMENT", 10),
    ]


def test_first_sighting_processes_and_records_volume(tracker):
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    analyzer = _analyzer()
    engine = _engine(tracker, source, analyzer)

    assert engine.process_ticket(_ticket("v1")) is Outcome.PROCESSED

    assert tracker.get_record("T1").last_seen_volume == 6
    assert engine.cache.get("T1") == "v1"
    assert source.notes == [("T1", "<b>Context Summary</b>")]
    analyzer.analyze.assert_called_once()


def test_unchanged_ticket_hits_cache_without_collaborator_calls(tracker):
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    analyzer = _analyzer()
    engine = _engine(tracker, source, analyzer)
    engine.process_ticket(_ticket("v1"))
    calls_before = dict(source.calls)

    assert engine.process_ticket(_ticket("v1")) is Outcome.SKIPPED_CACHE
    assert source.calls == calls_before
    assert analyzer.analyze.call_count == 1


def test_agent_reply_skips_at_probe_and_refreshes_cache(tracker):
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    engine = _engine(tracker, source, _analyzer())
    engine.process_ticket(_ticket("v1"))

    source.latest = _activity("out")
    fetches_before = source.calls["fetch"]

    assert engine.process_ticket(_ticket("v2")) is Outcome.SKIPPED_PROBE
    assert engine.cache.get("T1") == "v2"
    assert source.calls["fetch"] == fetches_before
    assert tracker.get_record("T1").last_seen_volume == 6


def test_customer_comment_is_not_a_qualifying_probe(tracker):
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in", "COMMENT"), conversation=_six_email_conversation())
    engine = _engine(tracker, source, _analyzer())

    assert engine.process_ticket(_ticket()) is Outcome.SKIPPED_PROBE
    assert "fetch" not in source.calls


def test_missing_latest_activity_skips_at_probe(tracker):
    from ticketbot.models import Outcome

    engine = _engine(tracker, FakeSource(latest=None), _analyzer())
    assert engine.process_ticket(_ticket()) is Outcome.SKIPPED_PROBE


def test_small_delta_skips_and_caches_marker(tracker):
    from ticketbot.models import Outcome

    tracker.commit("T1", 4)
    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    analyzer = _analyzer()
    engine = _engine(tracker, source, analyzer)

    assert engine.process_ticket(_ticket("v3")) is Outcome.SKIPPED_DELTA
    assert engine.cache.get("T1") == "v3"
    analyzer.analyze.assert_not_called()
    assert "post" not in source.calls


def test_threshold_delta_processes(tracker):
    from ticketbot.models import Outcome

    tracker.commit("T1", 1)
    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    engine = _engine(tracker, source, _analyzer())

    assert engine.process_ticket(_ticket()) is Outcome.PROCESSED
    assert tracker.get_record("T1").last_seen_volume == 6


def test_force_bypasses_cache_probe_and_delta(tracker):
    from ticketbot.models import Outcome

    tracker.commit("T1", 6)
    source = FakeSource(latest=_activity("out"), conversation=_six_email_conversation())
    engine = _engine(tracker, source, _analyzer())
    engine.cache.update("T1", "v1")

    assert engine.process_ticket(_ticket("v1"), force=True) is Outcome.PROCESSED
    assert "probe" not in source.calls
    assert source.calls["post"] == 1


def test_commit_failure_leaves_cache_untouched(tracker):
    from ticketbot.errors import BotError
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    engine = _engine(tracker, source, _analyzer())
    tracker.commit = MagicMock(side_effect=BotError.transient("database is locked"))

    assert engine.process_ticket(_ticket("v1")) is Outcome.FAILED_TRANSIENT
    assert engine.cache.get("T1") is None
    assert source.calls["post"] == 1


def test_post_failure_does_not_commit(tracker):
    from ticketbot.errors import error_for_status
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    source.post_private_note = MagicMock(side_effect=error_for_status(422, "bad note"))
    engine = _engine(tracker, source, _analyzer())

    assert engine.process_ticket(_ticket()) is Outcome.FAILED_PERMANENT
    assert tracker.get_record("T1") is None
    assert engine.cache.get("T1") is None


def test_empty_analysis_is_permanent_failure(tracker):
    from ticketbot.models import Outcome

    analyzer = MagicMock()
    analyzer.analyze.return_value = None
    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    engine = _engine(tracker, source, analyzer)

    assert engine.process_ticket(_ticket()) is Outcome.FAILED_PERMANENT
    assert "post" not in source.calls


def test_unexpected_error_is_contained(tracker):
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in"))
    source.get_full_conversation = MagicMock(side_effect=KeyError("threads"))
    log = MagicMock()
    engine = _engine(tracker, source, _analyzer())
    engine.log = log

    assert engine.process_ticket(_ticket()) is Outcome.FAILED_UNEXPECTED
    log.exception.assert_called_once()
    assert "fetch" in log.exception.call_args.args


def test_run_cycle_dispatches_only_assigned_tickets(tracker):
    source = FakeSource(
        latest=_activity("out"),
        tickets=[_ticket(ticket_id="A"), _ticket(ticket_id="B", assignee="someone-else"), _ticket(ticket_id="C")],
    )
    engine = _engine(tracker, source, _analyzer())

    futures = engine.run_cycle()
    results = [future.result(timeout=5) for future in futures]

    assert len(results) == 2
    assert source.calls["probe"] == 2
    engine.shutdown()


def test_run_cycle_survives_listing_error(tracker):
    source = FakeSource()
    source.list_open_tickets = MagicMock(side_effect=RuntimeError("boom"))
    engine = _engine(tracker, source, _analyzer())

    assert engine.run_cycle() == []


def test_in_flight_ticket_is_not_queued_twice(tracker):
    from ticketbot.models import Outcome

    started = threading.Event()
    release = threading.Event()
    source = FakeSource(conversation=_six_email_conversation())

    def slow_probe(ticket_id):
        started.set()
        release.wait(5)
        return _activity("out")

    source.get_latest_activity = slow_probe
    engine = _engine(tracker, source, _analyzer(), concurrency=2)

    first = engine.submit(_ticket())
    assert started.wait(5)
    assert engine.submit(_ticket()) is None
    release.set()
    assert first.result(timeout=5) is Outcome.SKIPPED_PROBE

    engine.shutdown()


def test_bootstrap_detects_missing_ids(tracker):
    source = FakeSource()
    source.get_organizations = MagicMock(return_value=[{"id": 42}])
    source.get_views = MagicMock(return_value=[{"id": 7, "name": "Mine"}, {"id": 9, "name": "open cases"}])
    source.get_my_info = MagicMock(return_value={"id": "agent-9", "firstName": "Sam"})
    engine = _engine(tracker, source, _analyzer(), org_id=None, view_id=None, agent_id=None)

    engine.bootstrap()

    assert (engine.org_id, engine.view_id, engine.agent_id) == ("42", "9", "agent-9")
    assert source.org_id == "42"
    assert engine.configured() is True


def test_bootstrap_fails_when_view_missing(tracker):
    source = FakeSource()
    source.get_views = MagicMock(return_value=[{"id": 7, "name": "Mine"}])
    engine = _engine(tracker, source, _analyzer(), view_id=None)

    with pytest.raises(RuntimeError, match="Open Cases"):
        engine.bootstrap()


def test_bootstrap_fails_without_identity(tracker):
    source = FakeSource()
    source.get_my_info = MagicMock(return_value={})
    engine = _engine(tracker, source, _analyzer(), agent_id=None)

    with pytest.raises(RuntimeError, match="agent identity"):
        engine.bootstrap()


def test_run_single_processes_ticket_by_number(tracker):
    from ticketbot.engine import RunMode
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("out"), conversation=_six_email_conversation(), tickets=[_ticket()])
    engine = _engine(tracker, source, _analyzer())

    assert engine.run(RunMode.SINGLE, ticket_number="#T1", force=True) is Outcome.PROCESSED
    assert tracker.get_record("T1").last_seen_volume == 6


def test_run_single_unknown_ticket_returns_none(tracker):
    from ticketbot.engine import RunMode

    engine = _engine(tracker, FakeSource(), _analyzer())
    assert engine.run(RunMode.SINGLE, ticket_number="404") is None


def test_run_single_requires_number(tracker):
    from ticketbot.engine import RunMode

    engine = _engine(tracker, FakeSource(), _analyzer())
    with pytest.raises(RuntimeError):
        engine.run(RunMode.SINGLE)


def test_poll_mode_loops_until_stopped(tracker):
    from ticketbot.engine import RunMode

    source = FakeSource(tickets=[_ticket()], latest=_activity("out"))
    engine = _engine(tracker, source, _analyzer())
    listed = source.list_open_tickets

    def list_then_stop(view_id):
        engine.stop()
        return listed(view_id)

    source.list_open_tickets = list_then_stop

    assert engine.run(RunMode.POLL) is None
    assert source.calls["list"] == 1
    assert source.calls["probe"] == 1


def test_shutdown_is_idempotent(tracker):
    tracker.close = MagicMock()
    engine = _engine(tracker, FakeSource(), _analyzer())

    engine.shutdown()
    engine.shutdown()

    tracker.close.assert_called_once()


def test_injected_empty_cache_is_kept(tracker):
    from ticketbot.cache import VolatileCache
    from ticketbot.config import Settings
    from ticketbot.engine import Engine

    injected = VolatileCache(10)
    engine = Engine(Settings(), source=FakeSource(), analyzer=_analyzer(), tracker=tracker, cache=injected)

    assert engine.cache is injected


@pytest.mark.parametrize("stage", ["get_latest_activity", "get_full_conversation", "analyze", "post_private_note"])
def test_transient_failure_leaves_cache_and_tracker_untouched(tracker, stage):
    from ticketbot.errors import BotError
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("in"), conversation=_six_email_conversation())
    analyzer = _analyzer()
    failure = MagicMock(side_effect=BotError.transient("503 Service Unavailable"))
    if stage == "analyze":
        analyzer.analyze = failure
    else:
        setattr(source, stage, failure)
    engine = _engine(tracker, source, analyzer)
    engine.cache.update("T1", "v0")

    assert engine.process_ticket(_ticket("v1")) is Outcome.FAILED_TRANSIENT
    assert engine.cache.get("T1") == "v0"
    assert tracker.get_record("T1") is None


def test_run_single_does_not_race_a_worker_on_the_same_ticket(tracker):
    from ticketbot.models import Outcome

    started = threading.Event()
    release = threading.Event()
    source = FakeSource(latest=_activity("in"), tickets=[_ticket()])

    def slow_fetch(ticket_id):
        started.set()
        release.wait(5)
        return _six_email_conversation()

    source.get_full_conversation = slow_fetch
    analyzer = _analyzer()
    engine = _engine(tracker, source, analyzer, concurrency=2)

    worker = engine.submit(_ticket())
    assert started.wait(5)
    assert engine.run_single("#T1") is Outcome.SKIPPED_IN_FLIGHT
    release.set()
    assert worker.result(timeout=5) is Outcome.PROCESSED

    assert analyzer.analyze.call_count == 1
    assert len(source.notes) == 1
    engine.shutdown()


def test_run_single_releases_ticket_when_done(tracker):
    from ticketbot.models import Outcome

    source = FakeSource(latest=_activity("out"), tickets=[_ticket()])
    engine = _engine(tracker, source, _analyzer())

    assert engine.run_single("#T1") is Outcome.SKIPPED_PROBE
    assert engine.submit(_ticket("v2")) is not None
    engine.shutdown()
