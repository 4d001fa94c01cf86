"""Byte-bounded LRU store for company snapshots and compiled previews.

Every key is namespaced by company (``config:<id>``, ``preview:<id>:...``).
A configuration write drops one company's entries with a single
``invalidate_prefix`` and never touches another company's entries.

Values are sized by their JSON encoding; pydantic models go through
``model_dump_json``.  All access happens under one ``threading.Lock`` and a
``put`` swaps the stored reference in one step, so a reader sees either the
old snapshot or the new one, never a mix.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 20 * 1024 * 1024


def estimate_bytes(value: Any) -> int:
    """Encoded size of *value*; a lower bound on its real footprint."""
    if isinstance(value, BaseModel):
        encoded = value.model_dump_json()
    else:
        try:
            encoded = json.dumps(value, default=str)
        except (TypeError, ValueError, OverflowError):
            encoded = str(value)
    return len(encoded.encode("utf-8"))


class LRUCache:
    """Least-recently-used cache with a ceiling on total encoded bytes."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._max_bytes = max_bytes
        self._used = 0
        self._entries: OrderedDict[str, tuple[Any, int]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry[0]

    def put(self, key: str, value: Any) -> None:
        """Store *value*, evicting least-recently-used keys to make room.

        A value larger than the whole budget is not stored at all.
        """
        size = estimate_bytes(value)
        if size > self._max_bytes:
            logger.debug("Cache: %s not stored (%d bytes > budget %d)", key, size, self._max_bytes)
            return

        with self._lock:
            self._drop(key)
            while self._entries and self._used + size > self._max_bytes:
                oldest = next(iter(self._entries))
                freed = self._drop(oldest)
                logger.debug("Cache: evicted %s (%d bytes)", oldest, freed)
            self._entries[key] = (value, size)
            self._used += size

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._drop(key)
            return True

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key under *prefix* and return how many went."""
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                self._drop(key)
            return len(doomed)

    def keys(self, prefix: str = "") -> list[str]:
        """Keys under *prefix*, least recently used first.  Does not promote."""
        with self._lock:
            return [key for key in self._entries if key.startswith(prefix)]

    @property
    def current_bytes(self) -> int:
        return self._used

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    def _drop(self, key: str) -> int:
        # Caller holds the lock.  Returns the freed size, 0 when absent.
        entry = self._entries.pop(key, None)
        if entry is None:
            return 0
        self._used -= entry[1]
        return entry[1]
