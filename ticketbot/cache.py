"""
ticketbot/cache.py
Bounded in-memory LRU of ticket id -> last observed version marker.
Exports: VolatileCache
"""

import threading
from collections import OrderedDict


class VolatileCache:
    """Thread-safe LRU map used as the zero-cost first skip tier.

    Losing it is always safe: a miss only falls through to the remote probe.
    """

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("Cache limit must be a positive integer.")
        self.limit = limit
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def check_and_refresh(self, ticket_id: str, marker: str) -> bool:
        """Return True and mark `ticket_id` most-recently-used iff its stored marker equals `marker`."""
        with self._lock:
            stored = self._entries.get(ticket_id)
            if stored is None or stored != marker:
                return False
            self._entries.move_to_end(ticket_id)
            return True

    def update(self, ticket_id: str, marker: str) -> None:
        """Store `marker` for `ticket_id` as most-recently-used, evicting the LRU entry past the bound."""
        with self._lock:
            self._entries[ticket_id] = marker
            self._entries.move_to_end(ticket_id)
            if len(self._entries) > self.limit:
                self._entries.popitem(last=False)

    def get(self, ticket_id: str) -> str | None:
        # Read-only peek; does not touch recency.
        with self._lock:
            return self._entries.get(ticket_id)

    def snapshot(self) -> list[str]:
        """Ticket ids ordered least- to most-recently used."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, ticket_id: object) -> bool:
        with self._lock:
            return ticket_id in self._entries
