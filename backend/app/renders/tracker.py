from __future__ import annotations

import threading
from typing import Set


class InFlightTracker:
    """Listing ids currently being rendered. At most one active render per id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: Set[str] = set()

    def try_add(self, listing_id: str) -> bool:
        """Claim an id. Returns False if it is already in flight."""
        with self._lock:
            if listing_id in self._ids:
                return False
            self._ids.add(listing_id)
            return True

    def discard(self, listing_id: str) -> None:
        with self._lock:
            self._ids.discard(listing_id)

    def __contains__(self, listing_id: object) -> bool:
        with self._lock:
            return listing_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def snapshot(self) -> Set[str]:
        with self._lock:
            return set(self._ids)
