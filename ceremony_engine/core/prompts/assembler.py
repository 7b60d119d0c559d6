"""Prompt assembly.

Templates use ``{{NAME}}`` placeholders and are rendered with a Jinja2
environment configured with ``StrictUndefined``, so a missing value is an
error rather than an empty string.  Values are plain text: they are
inserted once and never rendered again, so a value that happens to contain
``{{...}}`` is kept literally.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError, meta
from pydantic import BaseModel

from ceremony_engine.utils.exceptions import PromptAssemblyError
from ceremony_engine.utils.logging import get_logger

logger = get_logger("prompts.assembler")


class OutputSize(Enum):
    """Output-size classes.  Callers pick a class, never a raw token count."""

    SMALL = 256  # single value
    MEDIUM = 1024  # short list of values
    LARGE = 4096  # full document
    STRUCTURED = 8000  # JSON evaluation

    @property
    def max_tokens(self) -> int:
        return self.value

    @classmethod
    def coerce(cls, size: Any) -> OutputSize:
        if isinstance(size, cls):
            return size
        if isinstance(size, str) and size.upper() in cls.__members__:
            return cls[size.upper()]
        raise TypeError(
            f"Output size must be one of {', '.join(cls.__members__)}, got {size!r}"
        )


class AssembledPrompt(BaseModel):
    """A rendered prompt.

    Attributes:
        text: Final text with agent instructions (if any) prepended.
        prompt: Rendered template alone.
        agent_instructions: Instructions kept separately for backends that
            take a system instruction.
    """

    text: str
    prompt: str
    agent_instructions: str | None = None


class PromptAssembler:
    def __init__(self) -> None:
        self._env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def placeholders(self, template: str) -> set[str]:
        """Names of every placeholder referenced by *template*."""
        try:
            return meta.find_undeclared_variables(self._env.parse(template))
        except TemplateSyntaxError as exc:
            raise PromptAssemblyError([], f"line {exc.lineno}: {exc.message}") from exc

    def assemble(
        self,
        template: str,
        values: Mapping[str, Any] | None = None,
        agent_instructions: str | None = None,
    ) -> AssembledPrompt:
        """Substitute *values* into *template*.

        Raises :class:`PromptAssemblyError` naming every placeholder that has
        no value (``None`` counts as no value).
        """
        values = dict(values or {})
        required = self.placeholders(template)
        missing = sorted(name for name in required if values.get(name) is None)
        if missing:
            logger.warning("prompt_placeholders_unresolved", missing=missing)
            raise PromptAssemblyError(missing)

        context = {name: self._render_value(values[name]) for name in required}
        try:
            prompt = self._env.from_string(template).render(context)
        except UndefinedError as exc:
            raise PromptAssemblyError(sorted(required - context.keys()), str(exc)) from exc

        if agent_instructions:
            text = f"{agent_instructions}\n\n{prompt}"
        else:
            text = prompt
        return AssembledPrompt(text=text, prompt=prompt, agent_instructions=agent_instructions)

    @staticmethod
    def _render_value(value: Any) -> str:
        # Lists become markdown bullet lines.
        if isinstance(value, (list, tuple)):
            return "\n".join(f"- {item}" for item in value)
        return str(value)
