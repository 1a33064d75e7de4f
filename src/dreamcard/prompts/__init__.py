"""Prompt compiler and template loading."""

from dreamcard.prompts.compiler import CompiledPrompt, PromptCompileError, PromptCompiler
from dreamcard.prompts.loader import (
    DEFAULT_TEMPLATES_PATH,
    PromptLoader,
    PromptTemplate,
    TemplateNotFoundError,
    TemplateParseError,
)

__all__ = [
    "DEFAULT_TEMPLATES_PATH",
    "CompiledPrompt",
    "PromptCompileError",
    "PromptCompiler",
    "PromptLoader",
    "PromptTemplate",
    "TemplateNotFoundError",
    "TemplateParseError",
]
