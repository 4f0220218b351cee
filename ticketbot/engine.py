"""
ticketbot/engine.py
Tiered per-ticket decision pipeline, worker pool and polling loop.
Exports: Engine, RunMode
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum

from ticketbot.cache import VolatileCache
from ticketbot.config import Settings
from ticketbot.errors import BotError, ErrorKind
from ticketbot.interfaces import Analyzer, TicketSource
from ticketbot.models import Activity, Outcome, TicketRef, count_volume
from ticketbot.tracking.tracker import PersistentTracker

logger = logging.getLogger(__name__)

FAILED_OUTCOMES = {
    ErrorKind.TRANSIENT: Outcome.FAILED_TRANSIENT,
    ErrorKind.PERMANENT: Outcome.FAILED_PERMANENT,
    ErrorKind.UNEXPECTED: Outcome.FAILED_UNEXPECTED,
}


class RunMode(str, Enum):
    POLL = "poll"
    SINGLE = "single"


class Engine:
    """Drives poll -> cache -> probe -> fetch -> delta -> analyze -> post -> commit.

    Each ticket runs to exactly one terminal Outcome; no failure inside a
    ticket pipeline reaches the polling loop.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        source: TicketSource,
        analyzer: Analyzer,
        tracker: PersistentTracker,
        cache: VolatileCache | None = None,
        executor: ThreadPoolExecutor | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.source = source
        self.analyzer = analyzer
        self.tracker = tracker
        self.cache = cache if cache is not None else VolatileCache(settings.cache_limit)
        self.log = log or logger
        self.org_id = settings.org_id
        self.view_id = settings.view_id
        self.agent_id = settings.agent_id
        self._pool = executor or ThreadPoolExecutor(
            max_workers=settings.concurrency, thread_name_prefix="ticket-worker"
        )
        self._stop = threading.Event()
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()
        self._closed = False

    # --- Per-ticket state machine ---
    def _qualifies(self, latest: Activity | None) -> bool:
        if latest is None:
            return False
        return latest.from_customer and latest.channel.upper() == self.settings.qualifying_channel

    def process_ticket(self, ticket: TicketRef, *, force: bool = False) -> Outcome:
        """
        Run the tiered pipeline for one ticket.

        Args:
            ticket: Ticket to evaluate.
            force: Bypass the cache, probe and delta tiers (still commits).
        Returns:
            Terminal outcome; never raises.
        """
        stage = "cache"
        try:
            if not force:
                if self.cache.check_and_refresh(ticket.id, ticket.version_marker):
                    self.log.debug("Ticket %s unchanged (cache hit).", ticket.number)
                    return Outcome.SKIPPED_CACHE

                stage = "probe"
                latest = self.source.get_latest_activity(ticket.id)
                if not self._qualifies(latest):
                    self.cache.update(ticket.id, ticket.version_marker)
                    self.log.info("Ticket %s: latest activity is not a customer email. Skipping.", ticket.number)
                    return Outcome.SKIPPED_PROBE

            stage = "fetch"
            conversation = self.source.get_full_conversation(ticket.id)
            volume = count_volume(conversation, self.settings.qualifying_channel)

            if not force:
                stage = "delta"
                if self.tracker.should_skip(ticket.id, volume):
                    self.cache.update(ticket.id, ticket.version_marker)
                    self.log.info("Ticket %s has already been processed at this volume. Skipping.", ticket.number)
                    return Outcome.SKIPPED_DELTA

            stage = "analyze"
            self.log.info("Processing ticket %s (volume: %d%s)...", ticket.number, volume, ", forced" if force else "")
            result = self.analyzer.analyze(ticket, conversation)
            if result is None or not result.note_html.strip():
                raise BotError.permanent("Analysis produced no note.")

            stage = "post"
            self.source.post_private_note(ticket.id, result.note_html)

            stage = "commit"
            self.tracker.commit(ticket.id, volume)
            self.cache.update(ticket.id, ticket.version_marker)
            self.log.info("Updated ticket %s.", ticket.number)
            return Outcome.PROCESSED
        except BotError as exc:
            self.log.error(
                "Ticket %s (id %s) failed at stage '%s' [%s]: %s",
                ticket.number,
                ticket.id,
                stage,
                exc.kind.value,
                exc.message,
            )
            return FAILED_OUTCOMES[exc.kind]
        except Exception:
            self.log.exception(
                "Ticket %s (id %s) failed at stage '%s' [unexpected].", ticket.number, ticket.id, stage
            )
            return Outcome.FAILED_UNEXPECTED

    # --- Dispatch ---
    def _claim(self, ticket_id: str) -> bool:
        with self._in_flight_lock:
            if ticket_id in self._in_flight:
                return False
            self._in_flight.add(ticket_id)
            return True

    def _release(self, ticket_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(ticket_id)

    def submit(self, ticket: TicketRef) -> Future | None:
        """Queue a ticket unless it is already queued or running."""
        if not self._claim(ticket.id):
            self.log.debug("Ticket %s already in flight; not re-queued.", ticket.number)
            return None
        try:
            future = self._pool.submit(self.process_ticket, ticket)
        except RuntimeError:
            self._release(ticket.id)
            raise
        future.add_done_callback(lambda _f: self._release(ticket.id))
        return future

    def run_cycle(self) -> list[Future]:
        """List open tickets and dispatch the ones assigned to this agent without waiting."""
        try:
            tickets = self.source.list_open_tickets(self.view_id or "") or []
            futures: list[Future] = []
            for ticket in tickets:
                if ticket.assignee_id != self.agent_id:
                    continue
                future = self.submit(ticket)
                if future is not None:
                    futures.append(future)
        except Exception:
            self.log.exception("Main loop error during poll cycle.")
            return []
        self.log.info("Poll cycle dispatched %d of %d tickets.", len(futures), len(tickets))
        return futures

    # --- Configuration discovery ---
    def configured(self) -> bool:
        return bool(self.org_id and self.view_id and self.agent_id)

    def bootstrap(self) -> None:
        """Detect org, view and agent ids that were not configured explicitly."""
        self.log.info("Auto-detecting settings...")
        if not self.org_id:
            orgs = self.source.get_organizations()  # type: ignore[attr-defined]
            if orgs:
                self.org_id = str(orgs[0].get("id"))
                self.log.info("Org set: %s", self.org_id)
        if self.org_id and hasattr(self.source, "org_id"):
            self.source.org_id = self.org_id  # type: ignore[attr-defined]

        if not self.view_id:
            wanted = self.settings.view_name.lower()
            views = self.source.get_views()  # type: ignore[attr-defined]
            target = next((v for v in views if str(v.get("name", "")).lower() == wanted), None)
            if target is None:
                raise RuntimeError(f"View '{self.settings.view_name}' not found.")
            self.view_id = str(target.get("id"))
            self.log.info("View set: %s", self.view_id)

        if not self.agent_id:
            info = self.source.get_my_info()  # type: ignore[attr-defined]
            if not info.get("id"):
                raise RuntimeError("Could not fetch agent identity.")
            self.agent_id = str(info["id"])
            self.log.info("Identity verified: %s (ID: %s)", info.get("firstName", ""), self.agent_id)

    # --- Entry points ---
    def run_single(self, number: str, *, force: bool = False) -> Outcome | None:
        """Look up one ticket by number and process it synchronously."""
        self.log.info("Single ticket mode for ticket number %s%s.", number, " (force update)" if force else "")
        try:
            ticket = self.source.get_ticket_by_number(number)
        except BotError as exc:
            self.log.error("Could not retrieve ticket %s [%s]: %s", number, exc.kind.value, exc.message)
            return None
        if ticket is None:
            self.log.error("Could not retrieve ticket with number: %s", number)
            return None
        if not self._claim(ticket.id):
            self.log.warning("Ticket %s is already being processed; not run again.", number)
            return Outcome.SKIPPED_IN_FLIGHT
        try:
            outcome = self.process_ticket(ticket, force=force)
        finally:
            self._release(ticket.id)
        self.log.info("Single run complete for %s: %s", number, outcome.value)
        return outcome

    def run(self, mode: RunMode, *, ticket_number: str | None = None, force: bool | None = None) -> Outcome | None:
        """
        Run the engine until done.

        Args:
            mode: POLL loops until `stop()`/Ctrl-C; SINGLE processes one ticket.
            ticket_number: Ticket for SINGLE mode (defaults to settings).
            force: Force flag for SINGLE mode (defaults to settings).
        Returns:
            The single-ticket outcome, or None in POLL mode.
        """
        if mode is RunMode.SINGLE:
            number = ticket_number or self.settings.single_ticket_number
            if not number:
                raise RuntimeError("Single ticket mode requires a ticket number.")
            try:
                return self.run_single(number, force=self.settings.force_update if force is None else force)
            finally:
                self.shutdown()

        try:
            if not self.configured():
                self.bootstrap()
            self.log.info("Bot online. Agent ID: %s", self.agent_id)
            self.log.info("  - Concurrency: %d workers", self.settings.concurrency)
            self.log.info("  - Poll interval: %ds", self.settings.poll_interval_seconds)
            while not self._stop.is_set():
                self.run_cycle()
                self._stop.wait(self.settings.poll_interval_seconds)
        except KeyboardInterrupt:
            self.log.info("Interrupt received.")
        finally:
            self.shutdown()
        return None

    def stop(self) -> None:
        """Ask the polling loop to exit after the current cycle."""
        self._stop.set()

    def shutdown(self) -> None:
        """Stop polling, wait for in-flight tickets, then close the tracker."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        self.log.info("Shutting down worker pool...")
        self._pool.shutdown(wait=True)
        self.tracker.close()
        self.log.info("Shutdown complete.")
