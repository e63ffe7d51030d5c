"""
Per-session deduplication of decoded QR values.

Two independent gates decide whether a detection may trigger a capture:

- cooldown: a value seen again within ``cooldown`` seconds of its most
  recent sighting is skipped. Every sighting refreshes the timer.
- one-shot: once a capture was attempted for a value it is never attempted
  again for the rest of the session, whatever the cooldown says.
"""

from typing import Dict, Set


class DedupState:
    """
    Seen-value bookkeeping for one stream-processing session.

    Only the sampling loop mutates this object, so no locking is done here.
    """

    def __init__(self) -> None:
        self.seen_values: Set[str] = set()
        self.last_seen_at: Dict[str, float] = {}

    def should_skip(self, value: str, now: float, cooldown: float) -> bool:
        last_seen = self.last_seen_at.get(value)
        if last_seen is None:
            return False
        return (now - last_seen) < cooldown

    def record_seen(self, value: str, now: float) -> None:
        self.last_seen_at[value] = now

    def is_new(self, value: str) -> bool:
        return value not in self.seen_values

    def mark_captured(self, value: str) -> None:
        self.seen_values.add(value)
