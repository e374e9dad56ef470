"""Tests for imagecraft.core.two_stage — the timeout-bounded prompt-to-image call.

Tests cover:
- The enhanced path: orchestration, parameter optimization, generation.
- Parameter optimization failures that must not abort the call.
- The raw-prompt fallback on collaborator failures and timeouts.
- Terminal validation errors.
- Session metadata, statistics and eviction.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from imagecraft.core.collaborators import GenerationParams
from imagecraft.core.errors import CollaboratorError, ValidationError
from imagecraft.core.models import GenerationRequest, ImageParameters, StageStatus
from imagecraft.core.result import Failure, Success
from imagecraft.core.two_stage import ProcessorOptions, TwoStageProcessor


def _generate(processor: TwoStageProcessor, request):
    return asyncio.run(processor.generate_image_with_structured_prompt(request))


def _request(prompt: str = "a portrait of a sailor", **params) -> GenerationRequest:
    return GenerationRequest(
        original_prompt=prompt,
        image_parameters=ImageParameters(**params) if params else None,
    )


# ---------------------------------------------------------------------------
# Enhanced path
# ---------------------------------------------------------------------------


class TestEnhancedPath:
    """Both stages succeed and the structured prompt reaches the client."""

    def test_structured_prompt_is_rendered(self, processor, generation_client):
        outcome = _generate(processor, _request())

        assert isinstance(outcome, Success)
        result = outcome.value
        assert result.original_prompt == "a portrait of a sailor"
        assert result.structured_prompt == "structured: a portrait of a sailor, enhanced"
        assert result.generated_image.metadata["prompt"] == result.structured_prompt
        params: GenerationParams = generation_client.generate_image.await_args.args[0]
        assert params.prompt == result.structured_prompt

    def test_session_is_sealed_with_both_stages(self, processor):
        session = _generate(processor, _request()).value.processing_metadata

        assert session.is_sealed
        assert session.success is True
        assert session.fallback_used is False
        assert [s.name for s in session.stages] == ["Structured Prompt Generation", "Image Generation"]
        assert all(s.status is StageStatus.COMPLETED for s in session.stages)
        assert session.total_processing_time >= 0

    def test_optimization_reasons_are_recorded(self, processor):
        result = _generate(processor, _request()).value

        assert result.optimized_parameters.aspect_ratio == "3:4"
        assert "aspect ratio optimized for portrait content" in result.processing_metadata.applied_optimizations
        assert result.processing_metadata.applied_optimizations == result.optimized_parameters.optimization_reasons

    def test_optimization_can_be_disabled(self, orchestrator, generation_client, session_store):
        processor = TwoStageProcessor(
            orchestrator,
            generation_client,
            session_store=session_store,
            options=ProcessorOptions(enable_parameter_optimization=False),
        )

        result = _generate(processor, _request(aspect_ratio="16:9")).value

        assert result.optimized_parameters.aspect_ratio == "16:9"
        assert result.processing_metadata.applied_optimizations == ()

    def test_dict_request_is_accepted(self, processor):
        outcome = _generate(processor, {"original_prompt": "a fox", "image_parameters": {"quality": "low"}})
        assert isinstance(outcome, Success)

    def test_prompt_stage_time_limit_is_passed_on(self, processor):
        spy = AsyncMock(wraps=processor.orchestrator.generate_structured_prompt)
        with patch.object(processor.orchestrator, "generate_structured_prompt", spy):
            _generate(processor, _request())

        prompt, options = spy.await_args.args
        assert prompt == "a portrait of a sailor"
        assert options.max_processing_time == 15.0


class TestOptimizationFailure:
    """A failing optimizer never aborts the call."""

    def test_original_parameters_are_used(self, processor):
        failure = Failure(CollaboratorError("Parameter optimization failed: nope"))
        with patch.object(
            processor.parameter_optimizer,
            "optimize_for_structured_prompt",
            AsyncMock(return_value=failure),
        ):
            result = _generate(processor, _request(aspect_ratio="21:9", quality="low")).value

        assert result.optimized_parameters.aspect_ratio == "21:9"
        assert result.optimized_parameters.quality == "low"
        assert result.processing_metadata.applied_optimizations == (
            "parameter optimization failed - using original",
        )
        assert result.processing_metadata.fallback_used is False

    def test_raising_optimizer_is_wrapped(self, processor):
        with patch.object(
            processor.parameter_optimizer,
            "optimize_for_structured_prompt",
            AsyncMock(side_effect=RuntimeError("kaput")),
        ):
            outcome = asyncio.run(processor.optimize_image_parameters("a cat"))

        assert isinstance(outcome, Failure)
        assert "kaput" in outcome.message


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


class TestFallback:
    """Collaborator failures retry with the caller's untouched prompt."""

    def test_image_failure_falls_back_to_raw_prompt(self, processor, generation_client):
        render = generation_client.generate_image.side_effect

        async def fail_structured(params):
            if params.prompt.startswith("structured"):
                return Failure(CollaboratorError("renderer rejected prompt"))
            return render(params)

        generation_client.generate_image = AsyncMock(side_effect=fail_structured)

        outcome = _generate(processor, _request(quality="low"))

        assert isinstance(outcome, Success)
        result = outcome.value
        assert result.structured_prompt == result.original_prompt
        assert generation_client.generate_image.await_args.args[0].prompt == "a portrait of a sailor"
        session = result.processing_metadata
        assert session.fallback_used is True
        assert session.success is True
        assert [s.name for s in session.stages][-1] == "Fallback Image Generation"
        assert result.orchestration_result.metrics.fallbacks_used == 1
        assert result.optimized_parameters.quality == "low"
        assert result.optimized_parameters.optimization_reasons == ()

    def test_double_failure_is_reported(self, processor, generation_client, session_store):
        generation_client.generate_image = AsyncMock(return_value=Failure(CollaboratorError("offline")))

        outcome = _generate(processor, _request())

        assert isinstance(outcome, Failure)
        assert isinstance(outcome.error, CollaboratorError)
        assert outcome.message.startswith("Fallback processing failed")
        stats = session_store.statistics()
        assert stats.total_sessions == 1
        assert stats.success_rate == 0.0
        assert stats.fallback_rate == 1.0

    def test_raising_client_is_absorbed(self, processor, generation_client):
        render = generation_client.generate_image.side_effect
        calls = {"count": 0}

        async def flaky(params):
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConnectionError("reset by peer")
            return render(params)

        generation_client.generate_image = AsyncMock(side_effect=flaky)

        outcome = _generate(processor, _request())

        assert isinstance(outcome, Success)
        assert outcome.value.processing_metadata.fallback_used is True

    def test_timeout_triggers_fallback(self, orchestrator, generation_client, session_store):
        render = generation_client.generate_image.side_effect

        async def slow_structured(params):
            if params.prompt.startswith("structured"):
                await asyncio.sleep(1)
            return render(params)

        generation_client.generate_image = AsyncMock(side_effect=slow_structured)
        processor = TwoStageProcessor(
            orchestrator,
            generation_client,
            session_store=session_store,
            options=ProcessorOptions(max_processing_time=0.1),
        )

        outcome = _generate(processor, _request())

        assert isinstance(outcome, Success)
        session = outcome.value.processing_metadata
        assert session.timed_out is True
        assert session.fallback_used is True
        assert [s.status for s in session.stages] == [
            StageStatus.COMPLETED,
            StageStatus.FAILED,
            StageStatus.COMPLETED,
        ]
        assert session.stages[1].error == "processing timeout"
        assert "2-stage processing timeout" in outcome.value.orchestration_result.applied_strategies[0].reason


# ---------------------------------------------------------------------------
# Validation and configuration
# ---------------------------------------------------------------------------


class TestValidation:
    """Validation errors are terminal and never reach the fallback."""

    def test_blank_prompt(self, processor, generation_client):
        outcome = _generate(processor, _request(prompt="  "))

        assert isinstance(outcome, Failure)
        assert isinstance(outcome.error, ValidationError)
        generation_client.generate_image.assert_not_awaited()

    def test_malformed_dict(self, processor):
        outcome = _generate(processor, {"image_parameters": {"quality": "ultra"}})

        assert isinstance(outcome.error, ValidationError)
        assert outcome.message.startswith("Invalid request")

    def test_missing_request(self, processor, generation_client, session_store):
        outcome = _generate(processor, None)

        assert isinstance(outcome.error, ValidationError)
        assert outcome.message.startswith("Invalid request")
        assert session_store.statistics().total_sessions == 0
        generation_client.generate_image.assert_not_awaited()

    def test_missing_client(self, orchestrator, session_store):
        processor = TwoStageProcessor(orchestrator, None, session_store=session_store)

        outcome = _generate(processor, _request())

        assert isinstance(outcome.error, ValidationError)
        assert session_store.statistics().total_sessions == 1

    @pytest.mark.parametrize("field", ["max_processing_time", "performance_target"])
    def test_invalid_timing(self, orchestrator, generation_client, field):
        processor = TwoStageProcessor(
            orchestrator, generation_client, options=ProcessorOptions(**{field: 0})
        )
        outcome = asyncio.run(processor.validate_configuration())
        assert outcome.message == "Invalid timing configuration"

    def test_valid_configuration(self, processor):
        assert asyncio.run(processor.validate_configuration()) == Success(True)


# ---------------------------------------------------------------------------
# Sessions, statistics, construction
# ---------------------------------------------------------------------------


class TestSessionsAndConstruction:
    def test_metadata_is_retrievable(self, processor):
        result = _generate(processor, _request()).value
        session_id = result.processing_metadata.session_id

        assert processor.get_processing_metadata(session_id) == result.processing_metadata
        assert processor.get_processing_metadata("unknown") is None

    def test_performance_overrun_is_noted(self, orchestrator, generation_client, session_store):
        processor = TwoStageProcessor(
            orchestrator,
            generation_client,
            session_store=session_store,
            options=ProcessorOptions(performance_target=1e-9),
        )

        session = _generate(processor, _request()).value.processing_metadata

        assert session.applied_optimizations[-1].startswith("performance target exceeded:")

    def test_expired_sessions_are_evicted_on_next_call(self, orchestrator, generation_client, session_store):
        processor = TwoStageProcessor(
            orchestrator,
            generation_client,
            session_store=session_store,
            options=ProcessorOptions(session_retention_seconds=0),
        )
        first = _generate(processor, _request()).value.processing_metadata.session_id
        _generate(processor, _request())

        assert processor.get_processing_metadata(first) is None

    def test_statistics(self, processor):
        _generate(processor, _request())
        stats = processor.get_statistics()
        assert stats.total_sessions == 1
        assert stats.success_rate == 1.0

    def test_from_config_with_overrides(self, orchestrator, generation_client, test_config):
        processor = TwoStageProcessor.from_config(
            orchestrator, generation_client, settings=test_config, max_processing_time=7.0
        )
        assert processor.options.max_processing_time == 7.0
        assert processor.options.performance_target == test_config.performance_target
        assert processor.options.prompt_stage_max_processing_time == 15.0
