"""Template directory access.

Templates (validator agents, the validator selector, ceremony prompts) are
markdown files named ``<reference>.md``.  Their content is opaque here.
"""

from __future__ import annotations

from pathlib import Path

import aiofiles  # type: ignore[import-untyped]

from ceremony_engine.utils.exceptions import TemplateNotFoundError
from ceremony_engine.utils.logging import get_logger

logger = get_logger("prompts.templates")


class TemplateStore:
    """Loads templates from *directory*, keeping each file after its first read."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._cache: dict[str, str] = {}

    def path_for(self, reference: str) -> Path:
        return self.directory / f"{reference}.md"

    def exists(self, reference: str) -> bool:
        return reference in self._cache or self.path_for(reference).is_file()

    async def load(self, reference: str) -> str:
        if reference in self._cache:
            return self._cache[reference]

        path = self.path_for(reference)
        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as fh:
                content = await fh.read()
        except FileNotFoundError as exc:
            logger.warning("template_not_found", reference=reference, path=str(path))
            raise TemplateNotFoundError(reference) from exc

        self._cache[reference] = content
        logger.debug("template_loaded", reference=reference, size=len(content))
        return content
