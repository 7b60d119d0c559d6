"""Persisted ceremony configuration.

:class:`CeremonyConfigStore` owns ``.avc/avc.json``.  Reads return an
immutable :class:`CeremonyConfigSnapshot` cached against the file's mtime,
so an edited file is picked up on the next :meth:`load` without any
long-lived mutable state.  Writes go through :meth:`update`, an atomic
read-modify-write.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from ceremony_engine.core.ceremony.models import CeremonyConfig, CeremonyConfigSnapshot
from ceremony_engine.utils.exceptions import ConfigurationError
from ceremony_engine.utils.file_utils import atomic_write_json, read_json
from ceremony_engine.utils.logging import get_logger

logger = get_logger("ceremony.config_store")


class CeremonyConfigStore:
    """File-backed ceremony configuration with mtime-keyed caching.

    Parameters
    ----------
    path:
        Location of the JSON document, typically ``<project>/.avc/avc.json``.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._cached: CeremonyConfigSnapshot | None = None
        self._cached_mtime: float | None = None

    def load(self) -> CeremonyConfigSnapshot:
        """Return the current snapshot, re-reading the file if it changed."""
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            if self._cached_mtime != -1.0:
                logger.warning("ceremony_config_missing", path=str(self.path))
            self._cached = CeremonyConfigSnapshot()
            self._cached_mtime = -1.0
            return self._cached

        if self._cached is not None and self._cached_mtime == mtime:
            return self._cached

        try:
            document = read_json(self.path)
            snapshot = self._parse(document)
        except (OSError, json.JSONDecodeError, ValidationError, ConfigurationError) as exc:
            logger.warning(
                "ceremony_config_unreadable",
                path=str(self.path),
                error=str(exc),
            )
            snapshot = CeremonyConfigSnapshot()

        self._cached = snapshot
        self._cached_mtime = mtime
        logger.debug(
            "ceremony_config_loaded",
            path=str(self.path),
            ceremonies=len(snapshot.ceremonies),
        )
        return snapshot

    def invalidate(self) -> None:
        self._cached = None
        self._cached_mtime = None

    def update(self, mutator: Callable[[dict[str, Any]], None]) -> CeremonyConfigSnapshot:
        """Apply *mutator* to the raw document and persist it atomically.

        *mutator* receives the full JSON document (always shaped
        ``{"settings": {"ceremonies": [...]}}``) and edits it in place.  The
        result is validated before anything is written.
        """
        document = self._read_raw()
        mutator(document)
        snapshot = self._parse(document)
        atomic_write_json(self.path, document)
        self.invalidate()
        logger.info("ceremony_config_updated", path=str(self.path))
        return snapshot

    # ----- Internal helpers -------------------------------------------------

    def _read_raw(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"settings": {"ceremonies": []}}
        try:
            document = read_json(self.path)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"Ceremony configuration at {self.path} is not valid JSON: {exc}"
            ) from exc
        if not isinstance(document, dict):
            raise ConfigurationError(f"Ceremony configuration at {self.path} must be an object")

        # Normalise a bare {"ceremonies": [...]} into the nested layout.
        if "settings" not in document and "ceremonies" in document:
            document = {"settings": {"ceremonies": document.pop("ceremonies")}, **document}
        document.setdefault("settings", {}).setdefault("ceremonies", [])
        return document

    @staticmethod
    def _parse(document: Any) -> CeremonyConfigSnapshot:
        if not isinstance(document, dict):
            raise ConfigurationError("Ceremony configuration must be a JSON object")

        container = document.get("settings", document)
        raw = container.get("ceremonies", []) if isinstance(container, dict) else []
        if not isinstance(raw, list):
            raise ConfigurationError("'ceremonies' must be a list")

        return CeremonyConfigSnapshot(
            ceremonies=tuple(CeremonyConfig.model_validate(item) for item in raw)
        )
