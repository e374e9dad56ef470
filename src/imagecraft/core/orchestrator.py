"""Two-stage prompt enhancement pipeline.

The stage orchestrator turns a raw user prompt into a structured prompt in two
independent stages:

1. **Template Structuring**: the template engine applies the built-in
   role/task/context/constraints template. This stage can be switched off.
2. **Best Practices Enhancement**: the enhancement engine rewrites the
   stage 1 output, or the raw prompt when structuring is off.

A failing stage short-circuits the pipeline into a full-pipeline fallback:
a synthetic, completed "Fallback Processing" stage whose output is the
original prompt. Enhancement failures therefore never reach the caller; the
only failure ``generate_structured_prompt`` reports is a blank prompt.

Usage Example
-------------
    orchestrator = StageOrchestrator(template_engine, enhancement_engine)
    match await orchestrator.generate_structured_prompt("a knight at dawn"):
        case Success(value=result):
            print(result.structured_prompt, result.metrics.fallbacks_used)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from imagecraft.core.collaborators import (
    BUILTIN_TEMPLATE,
    BestPracticesOptions,
    EnhancementEngine,
    TemplateEngine,
)
from imagecraft.core.config import ImagecraftConfig, config
from imagecraft.core.errors import (
    CollaboratorError,
    ProcessingTimeoutError,
    ValidationError,
    as_collaborator_error,
)
from imagecraft.core.models import (
    OrchestrationMetrics,
    OrchestrationOptions,
    OrchestrationResult,
    StageRecord,
    StageStatus,
    StrategyApplication,
)
from imagecraft.core.result import Failure, Result, Success

logger = logging.getLogger(__name__)

STRUCTURING_STAGE = "Template Structuring"
ENHANCEMENT_STAGE = "Best Practices Enhancement"
FALLBACK_STAGE = "Fallback Processing"


class StageOrchestrator:
    """Runs template structuring and best-practices enhancement with fallback.

    Attributes
    ----------
    template_engine : TemplateEngine | None
        Collaborator for stage 1
    enhancement_engine : EnhancementEngine | None
        Collaborator for stage 2
    timeout : float
        Upper bound in seconds for any single collaborator call
    defaults : OrchestrationOptions
        Fully populated options that per-call options are merged over
    """

    def __init__(
        self,
        template_engine: TemplateEngine | None,
        enhancement_engine: EnhancementEngine | None,
        settings: ImagecraftConfig | None = None,
    ) -> None:
        settings = settings or config
        self.template_engine = template_engine
        self.enhancement_engine = enhancement_engine
        self.timeout = settings.orchestrator_timeout
        self.defaults = OrchestrationOptions(
            enable_structuring=settings.enable_structuring,
            enhancement_mode=settings.enhancement_mode,
            fallback_strategy=settings.fallback_strategy,
            max_processing_time=settings.orchestrator_max_processing_time,
        )
        self._last_metrics = OrchestrationMetrics()
        self._stats = {
            "total_attempts": 0,
            "successful_attempts": 0,
            "fallback_attempts": 0,
            "total_processing_time": 0.0,
        }

    def merge_options(self, options: OrchestrationOptions | None) -> OrchestrationOptions:
        """Shallow-merge caller options over the defaults; caller values win."""
        if options is None:
            return self.defaults
        overrides = options.model_dump(exclude_none=True)
        return self.defaults.model_copy(update=overrides)

    async def generate_structured_prompt(
        self, prompt: str, options: OrchestrationOptions | None = None
    ) -> Result[OrchestrationResult]:
        """Run the enhancement pipeline for ``prompt``.

        Parameters
        ----------
        prompt : str
            Raw user prompt
        options : OrchestrationOptions | None
            Per-call overrides merged over the configured defaults

        Returns
        -------
        Result[OrchestrationResult]
            ``Failure(ValidationError)`` for a blank prompt, otherwise always
            ``Success``, with the fallback recorded in the result when a
            stage failed
        """
        if not prompt or not prompt.strip():
            return Failure(
                ValidationError(
                    "Original prompt cannot be empty",
                    suggestion="Provide a non-empty prompt describing the image",
                )
            )

        merged = self.merge_options(options)
        call_timeout = min(self.timeout, merged.max_processing_time or self.timeout)
        started = time.time()
        stages: list[StageRecord] = []
        strategies: list[StrategyApplication] = []
        current = prompt
        failure_reason: str | None = None

        if merged.enable_structuring:
            stage = StageRecord(name=STRUCTURING_STAGE)
            stages.append(stage)
            outcome = await self._invoke(
                STRUCTURING_STAGE,
                call_timeout,
                lambda: self.template_engine.apply_template(prompt, BUILTIN_TEMPLATE),
            )
            match outcome:
                case Success(value=output):
                    current = output.structured_prompt
                    stage.complete(current)
                    strategies.append(
                        StrategyApplication(STRUCTURING_STAGE, True, processing_time=stage.duration)
                    )
                case Failure(error=error):
                    stage.fail(str(error))
                    failure_reason = f"{STRUCTURING_STAGE} failed: {error}"

        if failure_reason is None:
            stage = StageRecord(name=ENHANCEMENT_STAGE)
            stages.append(stage)
            practices = BestPracticesOptions(mode=merged.enhancement_mode or "complete")
            outcome = await self._invoke(
                ENHANCEMENT_STAGE,
                call_timeout,
                lambda: self.enhancement_engine.apply_best_practices(current, practices),
            )
            match outcome:
                case Success(value=output):
                    current = output.enhanced_prompt
                    stage.complete(current)
                    strategies.append(
                        StrategyApplication(ENHANCEMENT_STAGE, True, processing_time=stage.duration)
                    )
                case Failure(error=error):
                    stage.fail(str(error))
                    failure_reason = f"{ENHANCEMENT_STAGE} failed: {error}"

        fallbacks_used = 0
        if failure_reason is not None:
            logger.warning(f"Enhancement pipeline falling back to original prompt: {failure_reason}")
            fallback = StageRecord(name=FALLBACK_STAGE)
            fallback.complete(prompt)
            stages.append(fallback)
            strategies.append(
                StrategyApplication(
                    "Fallback",
                    True,
                    reason=f"Primary processing failed ({failure_reason})",
                )
            )
            current = prompt
            fallbacks_used = 1

        elapsed = time.time() - started
        metrics = self._compute_metrics(stages, fallbacks_used, elapsed)
        self._last_metrics = metrics
        self._record_attempt(fallbacks_used, elapsed)
        logger.info(
            f"Structured prompt ready in {elapsed:.3f}s "
            f"({metrics.stage_count} stages, fallbacks={fallbacks_used})"
        )

        return Success(
            OrchestrationResult(
                original_prompt=prompt,
                structured_prompt=current,
                stages=tuple(stages),
                applied_strategies=tuple(strategies),
                metrics=metrics,
            )
        )

    async def _invoke(
        self,
        stage_name: str,
        timeout: float,
        call: Callable[[], Awaitable[Result[Any]]],
    ) -> Result[Any]:
        """Call a collaborator and normalize raised exceptions into ``Failure``."""
        try:
            outcome = await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            return Failure(ProcessingTimeoutError(f"{stage_name} timed out after {timeout}s"))
        except Exception as exc:
            logger.error(f"{stage_name} raised unexpectedly: {exc}", exc_info=True)
            return Failure(as_collaborator_error(exc, stage_name))
        if not isinstance(outcome, (Success, Failure)):
            return Failure(CollaboratorError(f"{stage_name} returned an unexpected value"))
        return outcome

    @staticmethod
    def _compute_metrics(
        stages: list[StageRecord], fallbacks_used: int, elapsed: float
    ) -> OrchestrationMetrics:
        completed = sum(1 for stage in stages if stage.status is StageStatus.COMPLETED)
        failed = sum(1 for stage in stages if stage.status is StageStatus.FAILED)
        return OrchestrationMetrics(
            total_processing_time=elapsed,
            stage_count=len(stages),
            success_rate=completed / len(stages) if stages else 0.0,
            failure_count=failed,
            fallbacks_used=fallbacks_used,
            timestamp=time.time(),
        )

    def _record_attempt(self, fallbacks_used: int, elapsed: float) -> None:
        self._stats["total_attempts"] += 1
        if fallbacks_used:
            self._stats["fallback_attempts"] += 1
        else:
            self._stats["successful_attempts"] += 1
        self._stats["total_processing_time"] += elapsed

    def get_processing_metrics(self) -> OrchestrationMetrics:
        """Metrics of the most recent call (zeroed before the first call)."""
        return self._last_metrics

    def get_statistics(self) -> dict[str, Any]:
        """Attempt counters accumulated over the orchestrator's lifetime."""
        total = self._stats["total_attempts"]
        return {
            "total_attempts": total,
            "successful_attempts": self._stats["successful_attempts"],
            "fallback_attempts": self._stats["fallback_attempts"],
            "average_processing_time": self._stats["total_processing_time"] / total if total else 0.0,
        }

    async def validate_configuration(self) -> Result[bool]:
        if self.template_engine is None or self.enhancement_engine is None:
            return Failure(
                ValidationError(
                    "Required components not initialized",
                    suggestion="Provide both a template engine and an enhancement engine",
                )
            )
        if self.timeout <= 0 or (self.defaults.max_processing_time or 0) <= 0:
            return Failure(
                ValidationError(
                    "Invalid timeout configuration",
                    suggestion="Set positive timeout values",
                )
            )
        return Success(True)
