"""Company config loader: immutable snapshots with per-company invalidation.

**Snapshot contract**

``load(company_id)`` returns a frozen ``CompanyConfig`` stamped with the
company's current generation.  A reload publishes a brand-new snapshot with
one ``put`` into the cache, so concurrent readers always hold one fully
formed generation.

**Invalidation contract**

Every configuration write goes through ``write`` (or the
``set_booking_v2_enabled`` toggle), which bumps that company's generation
and drops every cached entry under its key prefix: the snapshot *and* all
compiled previews.  Other companies are never touched.  The next ``load``
or ``compiled_preview`` call recomputes lazily.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from agent_engine.core.booking import check_activation, compile_booking_contract
from agent_engine.errors import ConfigInvalid, ConfigMissing
from agent_engine.models import CompanyConfig, CompiledPreview
from agent_engine.services.cache import LRUCache
from agent_engine.services.config_store import ConfigStore

logger = logging.getLogger(__name__)

# ── Cache key prefixes ──────────────────────────────────────────────
_CK_CONFIG = "config:"
_CK_PREVIEW = "preview:"


def _flags_key(flags: Mapping[str, bool]) -> str:
    return ",".join(f"{name}={int(bool(value))}" for name, value in sorted(flags.items()))


class CompanyConfigLoader:
    """Loads, caches and invalidates per-company configuration snapshots."""

    def __init__(self, store: ConfigStore, *, cache: LRUCache | None = None) -> None:
        self._store = store
        self._cache = cache or LRUCache()
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()
        # Pairs each store read or write with its generation.
        self._io_lock = threading.Lock()

    # ── Generations ──────────────────────────────────────────────────

    def generation(self, company_id: str) -> int:
        with self._lock:
            return self._generations.get(company_id, 0)

    def invalidate(self, company_id: str) -> int:
        """Drop every cached entry of *company_id*.  Returns the new generation."""
        with self._lock:
            generation = self._generations.get(company_id, 0) + 1
            self._generations[company_id] = generation
        self._cache.invalidate(f"{_CK_CONFIG}{company_id}")
        removed = self._cache.invalidate_prefix(f"{_CK_PREVIEW}{company_id}:")
        logger.info(
            "Config: invalidated %s → generation %d (%d previews dropped)",
            company_id, generation, removed,
        )
        return generation

    # ── Reads ────────────────────────────────────────────────────────

    def load(self, company_id: str) -> CompanyConfig:
        """Return the current snapshot for *company_id* or raise ``ConfigMissing``."""
        cached = self._cache.get(f"{_CK_CONFIG}{company_id}")
        if cached is not None and cached.generation == self.generation(company_id):
            return cached

        with self._io_lock:
            try:
                document = self._store.read(company_id)
            except ValueError as exc:
                raise ConfigMissing(company_id, str(exc)) from exc
            generation = self.generation(company_id)
        if document is None:
            raise ConfigMissing(company_id)

        config = self._parse(company_id, document, generation)

        # A write may have landed while we were parsing; only publish the
        # snapshot if it is still the current generation.
        if self.generation(company_id) == generation:
            self._cache.put(f"{_CK_CONFIG}{company_id}", config)
        logger.debug(
            "Config: loaded %s generation %d (%d QA entries, %d providers)",
            company_id, generation, len(config.qa_entries), len(config.providers),
        )
        return config

    def compiled_preview(
        self,
        config: CompanyConfig,
        flags: Mapping[str, bool] | None = None,
    ) -> CompiledPreview:
        """Memoized booking preview for *config* under *flags*.

        Keyed by company, generation and flag set.  Concurrent callers may
        compute the same preview twice; compilation is deterministic, so the
        last write wins harmlessly.
        """
        flags = dict(flags or {})
        key = f"{_CK_PREVIEW}{config.company_id}:{config.generation}:{_flags_key(flags)}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        preview = compile_booking_contract(config.slot_library, config.slot_groups, flags)
        if self.generation(config.company_id) == config.generation:
            self._cache.put(key, preview)
        return preview

    def cached_preview_count(self, company_id: str) -> int:
        """How many compiled previews of *company_id* are currently memoized."""
        return len(self._cache.keys(f"{_CK_PREVIEW}{company_id}:"))

    # ── Write path ───────────────────────────────────────────────────

    def write(self, company_id: str, document: dict[str, Any]) -> CompanyConfig:
        """Validate and store a full configuration document, then invalidate.

        A document that turns the V2 booking contract on must carry a clean
        contract; otherwise ``BookingActivationError`` is raised and nothing
        is stored.
        """
        candidate = self._parse(company_id, document, self.generation(company_id))
        if candidate.booking_v2_enabled:
            check_activation(candidate)

        with self._io_lock:
            self._store.write(company_id, document)
            generation = self.invalidate(company_id)
        return candidate.model_copy(update={"generation": generation})

    def set_booking_v2_enabled(self, company_id: str, enabled: bool) -> CompanyConfig:
        """Flip ``bookingContract.enabled`` for one company.

        This toggle is the rollout *and* rollback unit: turning it off never
        needs validation, turning it on requires a clean contract.
        """
        document = self._store.read(company_id)
        if document is None:
            raise ConfigMissing(company_id)
        contract = dict(document.get("bookingContract") or document.get("booking_contract") or {})
        contract["enabled"] = enabled
        document.pop("booking_contract", None)
        document["bookingContract"] = contract
        logger.info("Config: booking contract V2 for %s → %s", company_id, enabled)
        return self.write(company_id, document)

    # ── Internal ─────────────────────────────────────────────────────

    @staticmethod
    def _parse(company_id: str, document: dict[str, Any], generation: int) -> CompanyConfig:
        payload = {
            **document,
            "companyId": company_id,
            "generation": generation,
        }
        payload.pop("company_id", None)
        try:
            return CompanyConfig.model_validate(payload)
        except ValidationError as exc:
            logger.error("Config: invalid document for %s: %s", company_id, exc)
            raise ConfigInvalid(company_id, f"invalid configuration ({exc.error_count()} errors)") from exc
