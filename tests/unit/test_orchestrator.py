"""Tests for imagecraft.core.orchestrator — the two-stage enhancement pipeline.

All collaborators are ``AsyncMock`` objects; coroutines are driven with
``asyncio.run``. Tests cover:

- The happy path through both stages.
- Skipping template structuring.
- Full-pipeline fallback when either stage fails or raises.
- Blank prompt rejection.
- Metrics and attempt statistics.
- Configuration validation.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from imagecraft.core.collaborators import BUILTIN_TEMPLATE, BestPracticesOptions
from imagecraft.core.config import ImagecraftConfig
from imagecraft.core.errors import CollaboratorError, ValidationError
from imagecraft.core.models import OrchestrationOptions, StageStatus
from imagecraft.core.orchestrator import StageOrchestrator
from imagecraft.core.result import Failure, Success


def _run(orchestrator: StageOrchestrator, prompt: str, options: OrchestrationOptions | None = None):
    return asyncio.run(orchestrator.generate_structured_prompt(prompt, options))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestSuccessfulPipeline:
    """Both stages succeed."""

    def test_both_stages_applied(self, orchestrator, template_engine, enhancement_engine):
        outcome = _run(orchestrator, "a knight at dawn")

        assert isinstance(outcome, Success)
        result = outcome.value
        assert result.original_prompt == "a knight at dawn"
        assert result.structured_prompt == "structured: a knight at dawn, enhanced"
        assert [s.name for s in result.stages] == ["Template Structuring", "Best Practices Enhancement"]
        assert all(s.status is StageStatus.COMPLETED for s in result.stages)
        assert [a.strategy for a in result.applied_strategies] == [
            "Template Structuring",
            "Best Practices Enhancement",
        ]
        assert result.metrics.fallbacks_used == 0
        assert result.metrics.success_rate == 1.0

    def test_builtin_template_and_stage_input(self, orchestrator, template_engine, enhancement_engine):
        _run(orchestrator, "a knight at dawn")

        template_engine.apply_template.assert_awaited_once_with("a knight at dawn", BUILTIN_TEMPLATE)
        text, options = enhancement_engine.apply_best_practices.await_args.args
        assert text == "structured: a knight at dawn"
        assert options == BestPracticesOptions(mode="complete")

    def test_completed_stage_records_output_and_timing(self, orchestrator):
        result = _run(orchestrator, "a knight").value
        for stage in result.stages:
            assert stage.output is not None
            assert stage.end_time >= stage.start_time

    def test_structuring_can_be_skipped(self, orchestrator, template_engine, enhancement_engine):
        outcome = _run(orchestrator, "a cat", OrchestrationOptions(enable_structuring=False))

        result = outcome.value
        template_engine.apply_template.assert_not_awaited()
        assert enhancement_engine.apply_best_practices.await_args.args[0] == "a cat"
        assert result.structured_prompt == "a cat, enhanced"
        assert [s.name for s in result.stages] == ["Best Practices Enhancement"]

    def test_caller_options_win(self, orchestrator, enhancement_engine):
        _run(orchestrator, "a cat", OrchestrationOptions(enhancement_mode="minimal"))
        assert enhancement_engine.apply_best_practices.await_args.args[1].mode == "minimal"


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


class TestFallback:
    """Stage failures never reach the caller."""

    def test_structuring_failure_skips_enhancement(self, orchestrator, template_engine, enhancement_engine):
        template_engine.apply_template = AsyncMock(return_value=Failure(CollaboratorError("template down")))

        outcome = _run(orchestrator, "a dragon")

        assert isinstance(outcome, Success)
        result = outcome.value
        enhancement_engine.apply_best_practices.assert_not_awaited()
        assert result.structured_prompt == "a dragon"
        assert [s.name for s in result.stages] == ["Template Structuring", "Fallback Processing"]
        assert result.stages[0].status is StageStatus.FAILED
        assert "template down" in result.stages[0].error
        assert result.stages[1].status is StageStatus.COMPLETED
        assert result.stages[1].output == "a dragon"
        assert result.metrics.fallbacks_used == 1
        assert result.applied_strategies[-1].strategy == "Fallback"

    def test_enhancement_failure_falls_back(self, orchestrator, enhancement_engine):
        enhancement_engine.apply_best_practices = AsyncMock(
            return_value=Failure(CollaboratorError("enhancer down"))
        )

        result = _run(orchestrator, "a dragon").value

        assert result.structured_prompt == "a dragon"
        assert [s.status for s in result.stages] == [
            StageStatus.COMPLETED,
            StageStatus.FAILED,
            StageStatus.COMPLETED,
        ]
        assert result.metrics.failure_count == 1
        assert result.metrics.stage_count == 3
        assert result.metrics.success_rate == pytest.approx(2 / 3)

    def test_raised_exception_is_absorbed(self, orchestrator, template_engine):
        template_engine.apply_template = AsyncMock(side_effect=RuntimeError("boom"))

        outcome = _run(orchestrator, "a dragon")

        assert isinstance(outcome, Success)
        assert outcome.value.metrics.fallbacks_used == 1
        assert "boom" in outcome.value.stages[0].error

    def test_slow_stage_times_out_into_fallback(self, template_engine, enhancement_engine, test_config):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        enhancement_engine.apply_best_practices = AsyncMock(side_effect=slow)
        settings = test_config.model_copy(update={"orchestrator_timeout": 0.05})
        orchestrator = StageOrchestrator(template_engine, enhancement_engine, settings=settings)

        result = _run(orchestrator, "a dragon").value

        assert result.metrics.fallbacks_used == 1
        assert "timed out" in result.stages[1].error


# ---------------------------------------------------------------------------
# Validation, metrics, configuration
# ---------------------------------------------------------------------------


class TestValidationAndMetrics:
    @pytest.mark.parametrize("prompt", ["", "   "])
    def test_blank_prompt_rejected(self, orchestrator, template_engine, prompt):
        outcome = _run(orchestrator, prompt)

        assert isinstance(outcome, Failure)
        assert isinstance(outcome.error, ValidationError)
        template_engine.apply_template.assert_not_awaited()

    def test_metrics_zeroed_before_first_call(self, orchestrator):
        metrics = orchestrator.get_processing_metrics()
        assert metrics.stage_count == 0
        assert metrics.fallbacks_used == 0

    def test_metrics_retained_between_calls(self, orchestrator):
        result = _run(orchestrator, "a cat").value
        assert orchestrator.get_processing_metrics() == result.metrics

    def test_statistics(self, orchestrator, template_engine):
        _run(orchestrator, "a cat")
        template_engine.apply_template = AsyncMock(return_value=Failure(CollaboratorError("down")))
        _run(orchestrator, "a dog")

        stats = orchestrator.get_statistics()
        assert stats["total_attempts"] == 2
        assert stats["successful_attempts"] == 1
        assert stats["fallback_attempts"] == 1


class TestValidateConfiguration:
    def test_valid(self, orchestrator):
        assert asyncio.run(orchestrator.validate_configuration()) == Success(True)

    def test_missing_component(self, enhancement_engine, test_config):
        orchestrator = StageOrchestrator(None, enhancement_engine, settings=test_config)
        outcome = asyncio.run(orchestrator.validate_configuration())
        assert isinstance(outcome.error, ValidationError)

    @pytest.mark.parametrize("field", ["orchestrator_timeout", "orchestrator_max_processing_time"])
    def test_non_positive_timeout(self, template_engine, enhancement_engine, field):
        settings = ImagecraftConfig(_env_file=None, **{field: 0})
        orchestrator = StageOrchestrator(template_engine, enhancement_engine, settings=settings)
        outcome = asyncio.run(orchestrator.validate_configuration())
        assert isinstance(outcome, Failure)
        assert "timeout" in outcome.message.lower()
