"""Prompt-to-image processing with structured prompts.

``TwoStageProcessor`` wraps the stage orchestrator, the parameter optimizer
and the generation client behind a single timeout-bounded call:

1. **Structured Prompt Generation**: the orchestrator enhances the prompt.
2. Parameter optimization (optional, never fatal).
3. **Image Generation**: the client renders the structured prompt.

Any collaborator failure, including the overall timeout, triggers the outer
fallback: the client is called again with the caller's untouched prompt and
parameters. Only a failure of that raw path as well is reported to the
caller. Validation errors are terminal and skip the fallback.

Each call is tracked in a processing session owned by an injected
``SessionStore``; the sealed session is embedded in the result and stays
retrievable through ``get_processing_metadata`` until it is evicted.

Usage Example
-------------
    processor = TwoStageProcessor.from_config(orchestrator, client, performance_target=10)
    result = await processor.generate_image_with_structured_prompt(
        GenerationRequest(original_prompt="a lighthouse in a storm")
    )
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from imagecraft.core.collaborators import GeneratedImage, GenerationClient, GenerationParams
from imagecraft.core.config import ImagecraftConfig, config
from imagecraft.core.errors import (
    CollaboratorError,
    ProcessingTimeoutError,
    ValidationError,
    as_collaborator_error,
)
from imagecraft.core.models import (
    GenerationRequest,
    ImageParameters,
    OptimizedParameters,
    OrchestrationMetrics,
    OrchestrationOptions,
    OrchestrationResult,
    StrategyApplication,
    TwoStageResult,
)
from imagecraft.core.orchestrator import StageOrchestrator
from imagecraft.core.parameter_optimizer import ParameterOptimizer
from imagecraft.core.result import Failure, Result, Success
from imagecraft.core.sessions import ProcessingSession, SessionDraft, SessionStatistics, SessionStore

logger = logging.getLogger(__name__)

PROMPT_STAGE = "Structured Prompt Generation"
IMAGE_STAGE = "Image Generation"
FALLBACK_STAGE = "Fallback Image Generation"


@dataclass(frozen=True)
class ProcessorOptions:
    """Tunables of the two-stage processor. All times are in seconds."""

    max_processing_time: float = 20.0
    performance_target: float = 20.0
    enable_parameter_optimization: bool = True
    prompt_stage_max_processing_time: float = 15.0
    session_retention_seconds: float = 3600.0

    @classmethod
    def from_config(cls, settings: ImagecraftConfig) -> "ProcessorOptions":
        return cls(
            max_processing_time=settings.processor_max_processing_time,
            performance_target=settings.performance_target,
            enable_parameter_optimization=settings.enable_parameter_optimization,
            prompt_stage_max_processing_time=settings.prompt_stage_max_processing_time,
            session_retention_seconds=settings.session_retention_seconds,
        )


@dataclass(frozen=True)
class _WorkflowOutput:
    structured_prompt: str
    generated_image: GeneratedImage
    optimized_parameters: OptimizedParameters
    orchestration_result: OrchestrationResult


def _describe_image(image: GeneratedImage) -> str:
    return f"{len(image.image_data)} bytes"


class TwoStageProcessor:
    """Runs one prompt-to-image request through the enhancement pipeline.

    Attributes
    ----------
    orchestrator : StageOrchestrator | None
        Produces the structured prompt
    generation_client : GenerationClient | None
        Renders images
    parameter_optimizer : ParameterOptimizer
        Derives generation parameters from the structured prompt
    session_store : SessionStore
        Owns the processing sessions of this processor
    options : ProcessorOptions
        Timeouts, targets and feature switches
    """

    def __init__(
        self,
        orchestrator: StageOrchestrator | None,
        generation_client: GenerationClient | None,
        parameter_optimizer: ParameterOptimizer | None = None,
        session_store: SessionStore | None = None,
        options: ProcessorOptions | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.generation_client = generation_client
        self.parameter_optimizer = parameter_optimizer or ParameterOptimizer()
        self.session_store = session_store or SessionStore()
        self.options = options or ProcessorOptions.from_config(config)

    @classmethod
    def from_config(
        cls,
        orchestrator: StageOrchestrator | None,
        generation_client: GenerationClient | None,
        settings: ImagecraftConfig | None = None,
        **overrides: Any,
    ) -> "TwoStageProcessor":
        """Build a processor from configuration, with keyword overrides.

        Example:
            >>> processor = TwoStageProcessor.from_config(orch, client, max_processing_time=5)
        """
        options = ProcessorOptions.from_config(settings or config)
        if overrides:
            options = dataclasses.replace(options, **overrides)
        return cls(orchestrator, generation_client, options=options)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_image_with_structured_prompt(
        self, request: GenerationRequest | dict[str, Any]
    ) -> Result[TwoStageResult]:
        """Generate one image, enhancing the prompt first.

        Parameters
        ----------
        request : GenerationRequest | dict
            The request; a dict is validated into a ``GenerationRequest``

        Returns
        -------
        Result[TwoStageResult]
            ``Success`` when either the enhanced path or the raw fallback
            path produced an image. ``Failure(ValidationError)`` for invalid
            input or configuration, ``Failure(CollaboratorError)`` when both
            paths failed.
        """
        if isinstance(request, dict):
            try:
                request = GenerationRequest.model_validate(request)
            except PydanticValidationError as exc:
                return Failure(ValidationError(f"Invalid request: {exc}"))
        if not isinstance(request, GenerationRequest):
            return Failure(ValidationError("Invalid request: a generation request is required"))

        self.session_store.evict_older_than(self.options.session_retention_seconds)
        draft = self.session_store.create(request.original_prompt)
        started = time.time()

        validation = await self.validate_configuration()
        if isinstance(validation, Failure):
            self.session_store.seal(draft.session_id, success=False)
            return validation

        try:
            outcome = await asyncio.wait_for(
                self._execute_workflow(request, draft),
                timeout=self.options.max_processing_time,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Session {draft.session_id} exceeded {self.options.max_processing_time}s limit"
            )
            draft.record_timeout()
            self._abandon_open_stages(draft, "processing timeout")
            outcome = Failure(
                ProcessingTimeoutError(
                    "2-stage processing timeout",
                    suggestion=f"Exceeded {self.options.max_processing_time}s limit",
                )
            )
        except Exception as exc:
            logger.error(f"Two-stage workflow raised unexpectedly: {exc}", exc_info=True)
            self._abandon_open_stages(draft, str(exc))
            outcome = Failure(as_collaborator_error(exc, "2-stage processing failed"))

        match outcome:
            case Success(value=output):
                session = self._finalize(draft, started, success=True)
                return Success(
                    TwoStageResult(
                        original_prompt=request.original_prompt,
                        structured_prompt=output.structured_prompt,
                        generated_image=output.generated_image,
                        processing_metadata=session,
                        optimized_parameters=output.optimized_parameters,
                        orchestration_result=output.orchestration_result,
                    )
                )
            case Failure(error=ValidationError() as error):
                self._finalize(draft, started, success=False)
                return Failure(error)
            case Failure(error=error):
                return await self._run_fallback(request, draft, started, error)

    async def optimize_image_parameters(
        self, text: str, base_params: ImageParameters | None = None
    ) -> Result[OptimizedParameters]:
        try:
            return await self.parameter_optimizer.optimize_for_structured_prompt(text, base_params)
        except Exception as exc:
            return Failure(
                CollaboratorError(
                    f"Parameter optimization failed: {exc}",
                    suggestion="Using original parameters as fallback",
                )
            )

    def get_processing_metadata(self, session_id: str) -> ProcessingSession | None:
        return self.session_store.get(session_id)

    def get_statistics(self) -> SessionStatistics:
        return self.session_store.statistics()

    async def validate_configuration(self) -> Result[bool]:
        if self.orchestrator is None or self.generation_client is None:
            return Failure(
                ValidationError(
                    "Required components not initialized",
                    suggestion="Provide an orchestrator and a generation client",
                )
            )
        if self.options.max_processing_time <= 0 or self.options.performance_target <= 0:
            return Failure(
                ValidationError(
                    "Invalid timing configuration",
                    suggestion="Set positive timeout values",
                )
            )
        return await self.orchestrator.validate_configuration()

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def _orchestration_options(self, request: GenerationRequest) -> OrchestrationOptions:
        options = request.orchestration_options or OrchestrationOptions()
        if options.max_processing_time is None:
            options = options.model_copy(
                update={"max_processing_time": self.options.prompt_stage_max_processing_time}
            )
        return options

    async def _execute_workflow(
        self, request: GenerationRequest, draft: SessionDraft
    ) -> Result[_WorkflowOutput]:
        stage = draft.record_stage(PROMPT_STAGE, kind="prompt")
        orchestrated = await self.orchestrator.generate_structured_prompt(
            request.original_prompt, self._orchestration_options(request)
        )
        if isinstance(orchestrated, Failure):
            draft.fail_stage(stage, str(orchestrated.error))
            return orchestrated
        orchestration_result = orchestrated.value
        structured_prompt = orchestration_result.structured_prompt
        draft.complete_stage(stage, structured_prompt)

        base_params = request.image_parameters or ImageParameters()
        if self.options.enable_parameter_optimization:
            match await self.optimize_image_parameters(structured_prompt, base_params):
                case Success(value=optimized):
                    for reason in optimized.optimization_reasons:
                        draft.record_optimization(reason)
                case Failure(error=error):
                    logger.warning(f"Parameter optimization failed, using original parameters: {error}")
                    optimized = OptimizedParameters.unchanged(base_params)
                    draft.record_optimization("parameter optimization failed - using original")
        else:
            optimized = OptimizedParameters.unchanged(base_params)

        stage = draft.record_stage(IMAGE_STAGE, kind="image")
        generated = await self._generate(
            GenerationParams(
                prompt=structured_prompt,
                input_image=optimized.input_image,
                blend_images=optimized.blend_images,
                maintain_character_consistency=optimized.maintain_character_consistency,
                use_world_knowledge=optimized.use_world_knowledge,
            )
        )
        if isinstance(generated, Failure):
            draft.fail_stage(stage, str(generated.error))
            return generated
        draft.complete_stage(stage, _describe_image(generated.value))

        return Success(
            _WorkflowOutput(
                structured_prompt=structured_prompt,
                generated_image=generated.value,
                optimized_parameters=optimized,
                orchestration_result=orchestration_result,
            )
        )

    async def _generate(self, params: GenerationParams) -> Result[GeneratedImage]:
        try:
            outcome = await self.generation_client.generate_image(params)
        except Exception as exc:
            logger.error(f"Generation client raised: {exc}", exc_info=True)
            return Failure(as_collaborator_error(exc, "Image generation failed"))
        if not isinstance(outcome, (Success, Failure)):
            return Failure(CollaboratorError("Image generation returned an unexpected value"))
        return outcome

    async def _run_fallback(
        self,
        request: GenerationRequest,
        draft: SessionDraft,
        started: float,
        primary_error: Exception,
    ) -> Result[TwoStageResult]:
        """Retry generation with the caller's untouched prompt and parameters."""
        logger.warning(f"Session {draft.session_id} falling back to raw prompt: {primary_error}")
        draft.record_fallback()
        stage = draft.record_stage(FALLBACK_STAGE, kind="image")
        params = request.image_parameters or ImageParameters()

        try:
            generated = await asyncio.wait_for(
                self._generate(
                    GenerationParams(
                        prompt=request.original_prompt,
                        input_image=params.input_image,
                        blend_images=params.blend_images,
                        maintain_character_consistency=params.maintain_character_consistency,
                        use_world_knowledge=params.use_world_knowledge,
                    )
                ),
                timeout=self.options.max_processing_time,
            )
        except asyncio.TimeoutError:
            generated = Failure(ProcessingTimeoutError("Fallback image generation timed out"))

        if isinstance(generated, Failure):
            draft.fail_stage(stage, str(generated.error))
            self._finalize(draft, started, success=False)
            logger.error(f"Session {draft.session_id} failed on both paths: {generated.error}")
            return Failure(
                CollaboratorError(
                    f"Fallback processing failed: {generated.error}",
                    suggestion="Check the generation client and try again",
                    details={"primary_error": str(primary_error)},
                )
            )

        draft.complete_stage(stage, _describe_image(generated.value))
        session = self._finalize(draft, started, success=True)
        orchestration_result = OrchestrationResult(
            original_prompt=request.original_prompt,
            structured_prompt=request.original_prompt,
            stages=(),
            applied_strategies=(
                StrategyApplication("Fallback", True, reason=f"Primary processing failed ({primary_error})"),
            ),
            metrics=OrchestrationMetrics(
                total_processing_time=session.total_processing_time,
                stage_count=0,
                success_rate=0.0,
                failure_count=1,
                fallbacks_used=1,
                timestamp=time.time(),
            ),
        )
        return Success(
            TwoStageResult(
                original_prompt=request.original_prompt,
                structured_prompt=request.original_prompt,
                generated_image=generated.value,
                processing_metadata=session,
                optimized_parameters=OptimizedParameters.unchanged(params),
                orchestration_result=orchestration_result,
            )
        )

    def _finalize(self, draft: SessionDraft, started: float, success: bool) -> ProcessingSession:
        elapsed = time.time() - started
        if elapsed > self.options.performance_target:
            logger.warning(
                f"2-stage processing exceeded target: {elapsed:.2f}s > {self.options.performance_target}s"
            )
            draft.record_optimization(f"performance target exceeded: {elapsed:.2f}s")
        return self.session_store.seal(draft.session_id, success=success, total_processing_time=elapsed)

    @staticmethod
    def _abandon_open_stages(draft: SessionDraft, reason: str) -> None:
        for stage in draft.stages:
            if not stage.is_terminal:
                draft.fail_stage(stage, reason)
