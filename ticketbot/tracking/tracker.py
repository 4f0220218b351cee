"""
ticketbot/tracking/tracker.py
Durable ledger of which tickets were analyzed, and at what activity volume.
Exports: PersistentTracker
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar

from ticketbot.common.retry import RetryPolicy, store_policy
from ticketbot.common.timestamps import parse_timestamp, utc_now
from ticketbot.errors import is_sqlite_busy
from ticketbot.models import TrackingRecord
from ticketbot.tracking.schema import MEMORY_PATH, connect, init_tracking_db, prepare_db_path

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROCESSED_AT_BUFFER = timedelta(seconds=1)

UPSERT_SQL = """
    INSERT INTO processed_history (ticket_id, last_thread_count, processed_at)
    VALUES (?, ?, ?)
    ON CONFLICT(ticket_id) DO UPDATE SET
        last_thread_count = excluded.last_thread_count,
        processed_at = excluded.processed_at
"""


class PersistentTracker:
    """SQLite-backed tracker shared by all ticket workers.

    Every operation opens its own short-lived connection, so the tracker is
    safe to call from any thread. Lock contention is retried with exponential
    backoff and jitter; write failures propagate to the caller.
    """

    def __init__(
        self,
        db_path: str,
        *,
        skip_threshold: int = 5,
        retry_policy: RetryPolicy | None = None,
        now: Callable[[], datetime] = utc_now,
        log: logging.Logger | None = None,
    ) -> None:
        self.skip_threshold = skip_threshold
        self.retry_policy = retry_policy or store_policy()
        self._now = now
        self._log = log or logger
        self._anchor: sqlite3.Connection | None = None
        if db_path == MEMORY_PATH:
            # Shared-cache URI so every per-call connection sees one database;
            # the anchor connection keeps it alive.
            self.db_path = f"file:ticketbot-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._anchor = connect(self.db_path)
        else:
            prepare_db_path(db_path)
            self.db_path = db_path
        try:
            self._with_retry("schema init", init_tracking_db)
        except Exception:
            self._log.exception("FATAL: tracker database initialization failed (%s).", db_path)
            raise

    def _with_retry(self, label: str, operation: Callable[[sqlite3.Connection], T]) -> T:
        def attempt() -> T:
            conn = connect(self.db_path)
            try:
                return operation(conn)
            finally:
                conn.close()

        return self.retry_policy.call(
            attempt, label=f"Tracker {label}", logger=self._log, retry_on=is_sqlite_busy
        )

    def _fetch_row(self, ticket_id: str) -> sqlite3.Row | None:
        return self._with_retry(
            "read",
            lambda conn: conn.execute(
                "SELECT ticket_id, last_thread_count, processed_at FROM processed_history WHERE ticket_id = ?",
                (str(ticket_id),),
            ).fetchone(),
        )

    @staticmethod
    def _to_record(row: sqlite3.Row) -> TrackingRecord:
        return TrackingRecord(
            ticket_id=row["ticket_id"],
            last_seen_volume=int(row["last_thread_count"]),
            processed_at=parse_timestamp(row["processed_at"]),
        )

    def get_record(self, ticket_id: str) -> TrackingRecord | None:
        """Return the stored record for `ticket_id`, or None."""
        row = self._fetch_row(ticket_id)
        return self._to_record(row) if row is not None else None

    def needs_processing(self, ticket_id: str, remote_activity_time: datetime | str) -> bool:
        """
        Return True when remote activity is newer than the last commit.

        A one-second buffer on the stored time absorbs clock and precision skew.
        Storage or parse errors fail open (True).
        """
        try:
            record = self.get_record(ticket_id)
            if record is None:
                return True
            remote = parse_timestamp(remote_activity_time)
            return remote > record.processed_at + PROCESSED_AT_BUFFER
        except Exception as exc:
            self._log.warning(
                "Tracker check failed for ticket %s: %s. Defaulting to PROCESS.", ticket_id, exc
            )
            return True

    def should_skip(self, ticket_id: str, current_volume: int) -> bool:
        """
        Return True when fewer than `skip_threshold` new qualifying items arrived.

        Tickets without a record are never skipped. Read errors resolve to
        False so a ticket is re-attempted rather than silently suppressed.
        """
        try:
            record = self.get_record(ticket_id)
        except Exception as exc:
            self._log.error("Tracker read failed for ticket %s: %s. Defaulting to PROCESS.", ticket_id, exc)
            return False
        if record is None:
            self._log.info("[Tracker] Ticket %s is new (not in DB). Processing.", ticket_id)
            return False
        delta = current_volume - record.last_seen_volume
        self._log.info(
            "[Tracker] Ticket %s delta: %d (new: %d, old: %d). Need %d.",
            ticket_id,
            delta,
            current_volume,
            record.last_seen_volume,
            self.skip_threshold,
        )
        return delta < self.skip_threshold

    def commit(self, ticket_id: str, current_volume: int) -> None:
        """
        Upsert the record for `ticket_id` in a single immediate transaction.

        Raises:
            BotError: TRANSIENT when lock contention outlasts the retries.
            sqlite3.Error: Any other storage failure.
        """
        processed_at = self._now().astimezone(timezone.utc).isoformat()

        def upsert(conn: sqlite3.Connection) -> None:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(UPSERT_SQL, (str(ticket_id), int(current_volume), processed_at))
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

        try:
            self._with_retry("write", upsert)
        except Exception as exc:
            self._log.error("Tracker write failed for ticket %s: %s", ticket_id, exc)
            raise

    def recent(self, limit: int = 20) -> list[TrackingRecord]:
        """Return the most recently processed records, newest first."""
        rows = self._with_retry(
            "recent",
            lambda conn: conn.execute(
                """
                SELECT ticket_id, last_thread_count, processed_at
                FROM processed_history
                ORDER BY processed_at DESC
                LIMIT ?
                """,
                (max(0, int(limit)),),
            ).fetchall(),
        )
        return [self._to_record(row) for row in rows]

    def close(self) -> None:
        if self._anchor is not None:
            self._anchor.close()
            self._anchor = None
