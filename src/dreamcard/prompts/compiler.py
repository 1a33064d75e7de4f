"""Prompt compiler: ``{{ variable }}`` substitution over YAML templates."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import TYPE_CHECKING, Any

from langchain_core.messages import HumanMessage, SystemMessage

from dreamcard.prompts.loader import PromptLoader, TemplateNotFoundError

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage


@dataclass
class CompiledPrompt:
    """A compiled prompt ready for a chat model."""

    system: str
    user: str
    template_name: str

    def to_messages(self, user: str | None = None) -> list[BaseMessage]:
        """Build chat messages, optionally replacing the user part.

        Args:
            user: Replacement user text (used for retries with feedback).
        """
        return [SystemMessage(content=self.system), HumanMessage(content=user or self.user)]


class PromptCompileError(Exception):
    """Raised when prompt compilation fails."""

    def __init__(self, template_name: str, message: str) -> None:
        self.template_name = template_name
        super().__init__(f"Failed to compile template '{template_name}': {message}")


class PromptCompiler:
    """Compile prompts from templates with variable substitution.

    Placeholders use ``{{ name }}`` or dotted ``{{ style.name }}`` paths,
    resolved against dict keys or object attributes. Unresolvable
    placeholders are left in place. Literal JSON braces are untouched.
    """

    _VAR_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")

    def __init__(self, templates_path: Path | None = None) -> None:
        self._loader = PromptLoader(templates_path)

    def _resolve_variable(self, path: str, context: dict[str, Any]) -> str:
        """Resolve a dotted variable path from context.

        Raises:
            KeyError: If the path cannot be resolved.
        """
        value: Any = context
        for part in path.split("."):
            if isinstance(value, dict):
                if part not in value:
                    raise KeyError(f"Key '{part}' not found in context path '{path}'")
                value = value[part]
            elif isinstance(value, (list, tuple)) and part.isdigit():
                if int(part) >= len(value):
                    raise KeyError(f"Index {part} out of range in context path '{path}'")
                value = value[int(part)]
            elif hasattr(value, part):
                value = getattr(value, part)
            else:
                raise KeyError(f"Cannot resolve '{part}' in context path '{path}'")

        if isinstance(value, (list, dict)):
            return json.dumps(value, indent=2, ensure_ascii=False)
        return str(value)

    def _substitute_variables(self, text: str, context: dict[str, Any]) -> str:
        def replace_match(match: re.Match[str]) -> str:
            try:
                return self._resolve_variable(match.group(1), context)
            except KeyError:
                return match.group(0)

        return self._VAR_PATTERN.sub(replace_match, text)

    def compile(self, template_name: str, context: dict[str, Any] | None = None) -> CompiledPrompt:
        """Compile a template with context substitution.

        Raises:
            PromptCompileError: If the template cannot be loaded.
        """
        context = context or {}
        try:
            template = self._loader.load(template_name)
        except TemplateNotFoundError as e:
            raise PromptCompileError(template_name, str(e)) from e

        return CompiledPrompt(
            system=self._substitute_variables(template.system, context),
            user=self._substitute_variables(template.user, context).strip(),
            template_name=template_name,
        )

    def list_templates(self) -> list[str]:
        return self._loader.list_templates()
