"""Backing stores for raw company configuration documents.

A store only reads and writes JSON documents keyed by company id.  Parsing,
validation, caching and invalidation are the loader's job
(see ``services/config_loader.py``).
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_COMPANY_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def is_valid_company_id(company_id: str) -> bool:
    return bool(_COMPANY_ID_RE.match(company_id)) and ".." not in company_id


class ConfigStore(Protocol):
    def read(self, company_id: str) -> dict[str, Any] | None: ...

    def write(self, company_id: str, document: dict[str, Any]) -> None: ...


class InMemoryConfigStore:
    """Dict-backed store, used by tests and the CLI demo.

    Documents are deep-copied on the way in and out so that a caller can
    never mutate what another caller reads.
    """

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self._documents = {k: copy.deepcopy(v) for k, v in (documents or {}).items()}
        self._lock = threading.Lock()

    def read(self, company_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._documents.get(company_id)
            return copy.deepcopy(document) if document is not None else None

    def write(self, company_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._documents[company_id] = copy.deepcopy(document)


class JsonFileConfigStore:
    """One ``<company_id>.json`` file per company inside *directory*."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, company_id: str) -> Path:
        if not is_valid_company_id(company_id):
            raise ValueError(f"Invalid company id: {company_id!r}")
        return self._directory / f"{company_id}.json"

    def read(self, company_id: str) -> dict[str, Any] | None:
        path = self._path(company_id)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def write(self, company_id: str, document: dict[str, Any]) -> None:
        path = self._path(company_id)
        self._directory.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a concurrent reader never sees half a file.
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Config store: wrote %s", path)
