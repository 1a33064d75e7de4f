"""Dream interpreter: source text to a validated three-panel plan.

One logical interpretation is a bounded loop of chat model calls. Each
attempt is parsed in two stages (JSON normalization, then schema
validation) and checked by the quality gate. Failed attempts feed their
itemized problems back into the next request; the loop never recurses and
never re-enqueues.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from dreamcard.errors import InterpretationError, PlanParseError
from dreamcard.observability.logging import get_logger
from dreamcard.pipeline.json_repair import parse_plan
from dreamcard.prompts.compiler import PromptCompiler
from dreamcard.providers.content import extract_text
from dreamcard.validation.feedback import RetryFeedback
from dreamcard.validation.quality import DEFAULT_RULES, QualityRules, validate

if TYPE_CHECKING:
    from collections.abc import Sequence

    from langchain_core.language_models import BaseChatModel

    from dreamcard.models.plan import ThreePanelPlan
    from dreamcard.styles.profiles import StyleRegistry

log = get_logger(__name__)

TEMPLATE_NAME = "interpret"


def build_hints(symbols: Sequence[str], mood: str | None) -> str:
    """Optional user hints appended below the dream text."""
    lines: list[str] = []
    if symbols:
        joined = ", ".join(symbols)
        lines.append(f"Recurring symbols to transform (never depict literally): {joined}")
    if mood:
        lines.append(f"Overall mood: {mood}")
    return "\n".join(lines)


class DreamInterpreter:
    """Turn dream text into a :class:`ThreePanelPlan` with retry-with-feedback.

    Args:
        chat_model: LangChain chat model; only ``ainvoke`` is used.
        styles: Registry the requested style is resolved against.
        compiler: Prompt compiler (defaults to the packaged templates).
        rules: Quality gate thresholds.
        max_retries: Attempts after the first; the total is ``max_retries + 1``.
        accept_degraded: When every attempt fails the quality gate, return
            the last parsed plan instead of raising.
    """

    def __init__(
        self,
        chat_model: BaseChatModel,
        styles: StyleRegistry,
        *,
        compiler: PromptCompiler | None = None,
        rules: QualityRules = DEFAULT_RULES,
        max_retries: int = 2,
        accept_degraded: bool = True,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._model = chat_model
        self._styles = styles
        self._compiler = compiler or PromptCompiler()
        self._rules = rules
        self.max_retries = max_retries
        self.accept_degraded = accept_degraded

    async def interpret(
        self,
        input_text: str,
        style: str,
        symbols: Sequence[str] = (),
        mood: str | None = None,
    ) -> ThreePanelPlan:
        """Produce a plan for *input_text* in *style*.

        Returns:
            The first plan that passes the quality gate, or with
            ``accept_degraded`` the last parsed plan once the budget is spent.

        Raises:
            InterpretationError: If no acceptable plan was produced.
            StyleProfileError: If *style* is not registered.
        """
        profile = self._styles.get(style)
        prompt = self._compiler.compile(
            TEMPLATE_NAME,
            {
                "style": profile,
                "dream_text": input_text,
                "hints": build_hints(symbols, mood),
            },
        )

        max_attempts = self.max_retries + 1
        # each failed attempt appends its feedback, so later requests carry all of it
        user_text: str | None = None
        last_plan: ThreePanelPlan | None = None
        last_failures: list[str] = []

        for attempt in range(1, max_attempts + 1):
            log.debug("interpret_attempt", attempt=attempt, max_attempts=max_attempts)

            try:
                response = await self._model.ainvoke(prompt.to_messages(user_text))
            except (KeyboardInterrupt, asyncio.CancelledError):
                raise
            except Exception as e:
                feedback = RetryFeedback.from_model_error(e)
                last_failures = list(feedback.issues)
                log.warning("interpret_model_error", attempt=attempt, error=str(e))
                user_text = feedback.render(user_text or prompt.user)
                continue

            raw = extract_text(response.content)
            try:
                plan = parse_plan(raw)
            except PlanParseError as e:
                last_failures = list(e.issues)
                log.warning(
                    "interpret_parse_failed",
                    attempt=attempt,
                    issues=e.issues,
                    preview=e.raw_preview,
                )
                feedback = RetryFeedback.from_parse_error(e)
                user_text = feedback.render(user_text or prompt.user)
                continue

            last_plan = plan
            report = validate(plan, profile, self._rules)
            if report.passed:
                if report.warnings:
                    log.info("quality_check_warnings", attempt=attempt, warnings=report.warnings)
                log.info("interpret_succeeded", attempt=attempt, style=profile.id)
                return plan

            last_failures = list(report.failures)
            log.warning(
                "quality_check_failed",
                attempt=attempt,
                max_attempts=max_attempts,
                failures=report.failures,
                warnings=report.warnings,
            )
            feedback = RetryFeedback.from_quality_report(report)
            user_text = feedback.render(user_text or prompt.user)

        if last_plan is not None and self.accept_degraded:
            log.warning(
                "interpret_degraded_accept",
                attempts=max_attempts,
                failures=last_failures,
            )
            return last_plan

        log.error("interpret_failed", attempts=max_attempts, failures=last_failures)
        reason = (
            "No plan passed the quality check"
            if last_plan is not None
            else "No parseable plan was produced"
        )
        raise InterpretationError(reason, max_attempts, last_failures)
