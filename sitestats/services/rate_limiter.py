from datetime import datetime, timedelta
from typing import Dict, NamedTuple


class DedupKey(NamedTuple):
    is_click: bool
    ip: str
    url: str


class RateLimiter:
    """
    Sliding-window suppressor for repeated hits from the same client.

    Process-local and unsynchronized: only the ingestion coroutine touches it.
    Entries never expire; a restart simply forgets them.
    """

    def __init__(self, window: timedelta = timedelta(hours=1)):
        self.window = window
        self._last_seen: Dict[DedupKey, datetime] = {}

    def should_suppress(self, key: DedupKey, event_time: datetime) -> bool:
        last = self._last_seen.get(key)
        if last is not None and event_time - last < self.window:
            # the burst collapses onto its first hit, so the stored time stays put
            return True
        self._last_seen[key] = event_time
        return False

    def __len__(self) -> int:
        return len(self._last_seen)

    def clear(self) -> None:
        self._last_seen.clear()
