"""Conversation-scoped branch flags (residential / commercial / after-hours …).

Flags are set explicitly by upstream turn handling and are the only input
that changes booking compilation between turns of the same company.  Each
conversation owns its own ``FlowState``; nothing here is process-wide.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from types import MappingProxyType

from agent_engine.config import FLOW_STATE_IDLE_SECONDS, FLOW_STATE_MAX_CONVERSATIONS

logger = logging.getLogger(__name__)


def _validate(name: str, value: object) -> None:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("flag name must be a non-empty string")
    if not isinstance(value, bool):
        raise TypeError(f"flag {name!r} must be a bool, got {type(value).__name__}")


class FlowState:
    """The flag set of one conversation of one company.

    Updates take a per-state lock, so two turns of the same conversation
    never interleave their writes.
    """

    def __init__(
        self,
        company_id: str,
        conversation_id: str,
        initial: Mapping[str, bool] | None = None,
    ) -> None:
        self.company_id = company_id
        self.conversation_id = conversation_id
        self._flags: dict[str, bool] = {}
        self._lock = threading.Lock()
        if initial:
            self.apply_many(initial)

    def apply(self, name: str, value: bool) -> Mapping[str, bool]:
        """Set one flag and return a read-only view of the updated set."""
        return self.apply_many({name: value})

    def apply_many(self, flags: Mapping[str, bool]) -> Mapping[str, bool]:
        for name, value in flags.items():
            _validate(name, value)
        with self._lock:
            self._flags.update(flags)
            return MappingProxyType(dict(self._flags))

    @property
    def flags(self) -> Mapping[str, bool]:
        """An immutable copy; later ``apply`` calls do not change it."""
        with self._lock:
            return MappingProxyType(dict(self._flags))


class FlowStateStore:
    """Holds ``FlowState`` objects keyed by ``(company_id, conversation_id)``.

    The company id is part of the key, so a conversation id reused by two
    companies still gets two independent flag sets.

    The store is bounded: a conversation untouched for *idle_seconds* is
    dropped, and past *max_conversations* the least recently used one is
    evicted.  An evicted conversation starts over with no flags.
    """

    def __init__(
        self,
        max_conversations: int = FLOW_STATE_MAX_CONVERSATIONS,
        idle_seconds: float = FLOW_STATE_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_conversations < 1:
            raise ValueError("max_conversations must be at least 1")
        self._max = max_conversations
        self._idle = idle_seconds
        self._clock = clock
        # key → (state, last_used)
        self._states: OrderedDict[tuple[str, str], tuple[FlowState, float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, company_id: str, conversation_id: str) -> FlowState:
        key = (company_id, conversation_id)
        now = self._clock()
        with self._lock:
            self._expire(now)
            entry = self._states.pop(key, None)
            state = entry[0] if entry is not None else FlowState(company_id, conversation_id)
            self._states[key] = (state, now)
            while len(self._states) > self._max:
                (evicted_company, evicted_conv), _ = self._states.popitem(last=False)
                logger.debug("Flow state: evicted %s/%s (capacity)", evicted_company, evicted_conv)
            return state

    def discard(self, company_id: str, conversation_id: str) -> bool:
        with self._lock:
            return self._states.pop((company_id, conversation_id), None) is not None

    def _expire(self, now: float) -> None:
        # Oldest first; stop at the first conversation still inside the window.
        while self._states:
            key, (_, last_used) = next(iter(self._states.items()))
            if now - last_used < self._idle:
                break
            del self._states[key]
            logger.debug("Flow state: expired %s/%s (idle)", *key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
