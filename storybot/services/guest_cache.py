"""Progress cache for readers who have not signed in.

The cache is a plain dict keyed by story id, so it can be stored as-is in
the chat's FSM data and survives without any server-side row.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from storybot.utils.config import Config

MS_PER_DAY = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class GuestCache:
    def __init__(
        self,
        entries: Optional[Dict[str, Dict[str, Any]]] = None,
        *,
        ttl_days: int | None = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.entries: Dict[str, Dict[str, Any]] = dict(entries or {})
        self.ttl_ms = (ttl_days if ttl_days is not None else Config.GUEST_CACHE_TTL_DAYS) * MS_PER_DAY
        self.clock = clock

    def is_fresh(self, entry: Dict[str, Any]) -> bool:
        timestamp = entry.get("timestamp_ms")
        if not isinstance(timestamp, int):
            return False
        return self.clock() - timestamp <= self.ttl_ms

    def get(self, story_id: str) -> Optional[Dict[str, Any]]:
        """Return the fresh entry for ``story_id``; stale or malformed entries are dropped."""
        entry = self.entries.get(story_id)
        if entry is None:
            return None
        if not isinstance(entry, dict) or not isinstance(entry.get("position"), int) or not self.is_fresh(entry):
            del self.entries[story_id]
            return None
        return entry

    def get_position(self, story_id: str) -> Optional[int]:
        entry = self.get(story_id)
        return entry["position"] if entry else None

    def save(self, story_id: str, position: int) -> Dict[str, Any]:
        entry = {"story_id": story_id, "position": position, "timestamp_ms": self.clock()}
        self.entries[story_id] = entry
        return entry

    def discard(self, story_id: str) -> None:
        self.entries.pop(story_id, None)

    def story_ids(self) -> list[str]:
        return list(self.entries)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return dict(self.entries)
