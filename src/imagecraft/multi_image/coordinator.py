"""Multi-image batch coordination.

``MultiImageCoordinator.coordinate_multiple_images`` is the top-level batch
entry point. It runs a fixed sequence of gates; after a terminal failure no
later gate runs:

1. Validate the request.
2. Resolve aspect ratios with ``AspectRatioController``.
3. Derive the batch's consistency profile from the base prompt.
4. Build one generation context per requirement and apply consistency rules.
5. Execute: bounded concurrent windows (or strictly sequential) of
   ``TwoStageProcessor`` calls. Each item yields its own ``Result``; failed
   items are excluded without affecting their siblings.
6. Validate cross-image coherence.
7. Aggregate consistency metrics and processing metadata.

Only invalid input and a batch in which every item failed are reported as a
failure. A partially successful batch succeeds with the reduced image set.

Usage Example
-------------
    coordinator = MultiImageCoordinator(processor)
    result = await coordinator.coordinate_multiple_images(
        {
            "base_prompt": "a knight in a medieval castle, realistic",
            "image_requirements": [
                {"id": "gate", "specific_prompt": "at the gate", "consistency": {}},
                {"id": "hall", "specific_prompt": "in the great hall", "consistency": {}},
            ],
            "consistency_level": "moderate",
            "aspect_ratio_strategy": {"kind": "uniform"},
            "processing_options": {"max_concurrent_images": 2},
        }
    )
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from imagecraft.core.collaborators import GeneratedImage
from imagecraft.core.errors import (
    AggregateFailure,
    ImagecraftError,
    ValidationError,
    as_collaborator_error,
)
from imagecraft.core.models import GenerationRequest, ImageParameters
from imagecraft.core.result import Failure, Result, Success
from imagecraft.core.two_stage import TwoStageProcessor
from imagecraft.multi_image import consistency
from imagecraft.multi_image.aspect_ratio import AspectRatioController
from imagecraft.multi_image.coherence import validate_coherence
from imagecraft.multi_image.models import (
    AspectRatioOptimizationResult,
    CoherenceValidationResult,
    ConsistencyEnhancedContexts,
    ConsistencyMetrics,
    ConsistencyProfile,
    FailedImage,
    ImageGenerationContext,
    MultiImageOptions,
    MultiImageProcessingMetadata,
    MultiImageRequest,
    MultiImageResult,
    ProcessedImageResult,
)

logger = logging.getLogger(__name__)


def _invalid(reason: str) -> ValidationError:
    return ValidationError(
        f"Invalid request: {reason}",
        suggestion="Check the batch request fields and try again",
    )


class MultiImageCoordinator:
    """Coordinates generation of a batch of related images.

    Attributes
    ----------
    processor : TwoStageProcessor
        Generates each individual image
    aspect_ratio_controller : AspectRatioController
        Resolves per-image aspect ratios
    """

    def __init__(
        self,
        processor: TwoStageProcessor,
        aspect_ratio_controller: AspectRatioController | None = None,
    ) -> None:
        self.processor = processor
        self.aspect_ratio_controller = aspect_ratio_controller or AspectRatioController()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def coordinate_multiple_images(
        self, request: MultiImageRequest | dict[str, Any]
    ) -> Result[MultiImageResult]:
        """Generate every image of a batch.

        Parameters
        ----------
        request : MultiImageRequest | dict
            The batch; a dict is validated into a ``MultiImageRequest``

        Returns
        -------
        Result[MultiImageResult]
            ``Failure(ValidationError)`` for invalid input,
            ``Failure(AggregateFailure)`` when every image failed, otherwise
            ``Success`` with the images that were produced, in requirement
            order
        """
        if isinstance(request, dict):
            try:
                request = MultiImageRequest.model_validate(request)
            except PydanticValidationError as exc:
                return Failure(_invalid(str(exc)))
        if not isinstance(request, MultiImageRequest):
            return Failure(_invalid("a batch request is required"))

        error = self.validate_request(request)
        if error is not None:
            logger.warning(f"Rejected batch request: {error}")
            return Failure(error)

        try:
            return await self._coordinate(request)
        except Exception as exc:
            logger.error(f"Batch coordination failed unexpectedly: {exc}", exc_info=True)
            return Failure(as_collaborator_error(exc, "Multi-image coordination failed"))

    async def maintain_consistency_across_images(
        self, contexts: Sequence[ImageGenerationContext], profile: ConsistencyProfile
    ) -> Result[ConsistencyEnhancedContexts]:
        if not contexts:
            return Failure(ValidationError("No images provided for consistency maintenance"))
        return Success(consistency.maintain_consistency(list(contexts), profile))

    async def validate_image_set_coherence(
        self, images: Sequence[GeneratedImage]
    ) -> Result[CoherenceValidationResult]:
        if not images:
            return Failure(ValidationError("No images provided for coherence validation"))
        return Success(validate_coherence(list(images)))

    @staticmethod
    def validate_request(request: MultiImageRequest) -> ValidationError | None:
        """Return the first violated constraint, or ``None`` for a valid request."""
        if not request.base_prompt or not request.base_prompt.strip():
            return _invalid("base prompt is required")
        if not request.image_requirements:
            return _invalid("at least one image requirement is required")
        if request.processing_options is None:
            return _invalid("processing options are required")
        if request.processing_options.max_concurrent_images < 1:
            return _invalid("max_concurrent_images must be at least 1")

        seen: set[str] = set()
        for index, requirement in enumerate(request.image_requirements):
            if not requirement.id or not requirement.id.strip():
                return _invalid(f"image requirement {index} is missing an id")
            if requirement.id in seen:
                return _invalid(f"duplicate image requirement id '{requirement.id}'")
            seen.add(requirement.id)
            if requirement.consistency is None:
                return _invalid(f"image requirement '{requirement.id}' is missing consistency settings")
            if requirement.priority < 1:
                return _invalid(f"image requirement '{requirement.id}' priority must be at least 1")
        return None

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    async def _coordinate(self, request: MultiImageRequest) -> Result[MultiImageResult]:
        started = time.time()
        session_id = f"multi-image-{uuid.uuid4().hex}"
        options = request.processing_options
        requirements = list(request.image_requirements)
        logger.info(f"Batch {session_id}: {len(requirements)} images, {request.consistency_level.value} consistency")

        phase = time.time()
        ratios = await self.aspect_ratio_controller.optimize_aspect_ratios(
            requirements, request.aspect_ratio_strategy
        )
        if isinstance(ratios, Failure):
            return ratios
        aspect_ratio_time = time.time() - phase

        phase = time.time()
        profile = consistency.build_profile(request.base_prompt, request.consistency_level)
        profile_time = time.time() - phase

        phase = time.time()
        contexts = self._build_contexts(request, ratios.value.optimizations, profile)
        enhanced = await self.maintain_consistency_across_images(contexts, profile)
        if isinstance(enhanced, Failure):
            return enhanced
        context_time = time.time() - phase

        phase = time.time()
        parallel = options.enable_parallel_processing and len(requirements) > 1
        outcomes = await self._execute(enhanced.value.contexts, options, parallel)
        coordination_time = time.time() - phase

        processed: list[ProcessedImageResult] = []
        failed: list[FailedImage] = []
        errors: list[ImagecraftError] = []
        for requirement, outcome in zip(requirements, outcomes):
            match outcome:
                case Success(value=image):
                    processed.append(image)
                case Failure(error=error):
                    logger.warning(f"Batch {session_id}: image '{requirement.id}' failed: {error}")
                    failed.append(FailedImage(requirement.id, error.code, str(error)))
                    errors.append(error)

        if not processed:
            return Failure(
                AggregateFailure(
                    "All image processing attempts failed",
                    errors,
                    suggestion="Check the generation client and the batch prompts",
                    details={"failed_images": [f.requirement_id for f in failed]},
                )
            )

        phase = time.time()
        coherence = await self.validate_image_set_coherence(
            [image.two_stage_result.generated_image for image in processed]
        )
        if isinstance(coherence, Failure):
            return coherence
        validation_time = time.time() - phase

        total = time.time() - started
        notes = [
            f"aspect ratios resolved with {ratios.value.strategy} strategy "
            f"(coherence {ratios.value.overall_coherence:.2f})",
            f"{len(enhanced.value.applied_rules)} consistency rules applied "
            f"(consistency score {enhanced.value.consistency_score:.2f})",
        ]
        if failed:
            notes.append(f"{len(failed)} of {len(requirements)} images excluded after failure")
        if total > options.performance_target:
            logger.warning(f"Batch {session_id} exceeded target: {total:.2f}s > {options.performance_target}s")
            notes.append(f"performance target exceeded: {total:.2f}s")

        metadata = MultiImageProcessingMetadata(
            session_id=session_id,
            base_prompt=request.base_prompt,
            batch_size=len(requirements),
            parallel_processing_used=parallel,
            concurrent_images=min(options.max_concurrent_images, len(requirements)) if parallel else 1,
            failed_images=tuple(failed),
            fallback_used=any(self._used_fallback(image) for image in processed),
            applied_optimizations=tuple(notes),
            consistency_score=enhanced.value.consistency_score,
            aspect_ratio_optimization_time=aspect_ratio_time,
            consistency_profile_time=profile_time,
            context_build_time=context_time,
            image_coordination_time=coordination_time,
            consistency_validation_time=validation_time,
            total_processing_time=total,
            timestamp=time.time(),
        )
        logger.info(
            f"Batch {session_id} finished in {total:.2f}s: {len(processed)}/{len(requirements)} images, "
            f"coherence {coherence.value.coherence_score:.2f}"
        )
        return Success(
            MultiImageResult(
                base_prompt=request.base_prompt,
                processed_images=tuple(processed),
                consistency_metrics=self._consistency_metrics(coherence.value),
                processing_metadata=metadata,
                aspect_ratio_source=ratios.value.strategy,
                success=True,
            )
        )

    @staticmethod
    def _build_contexts(
        request: MultiImageRequest,
        optimizations: Sequence[AspectRatioOptimizationResult],
        profile: ConsistencyProfile,
    ) -> list[ImageGenerationContext]:
        ids = [requirement.id for requirement in request.image_requirements]
        return [
            ImageGenerationContext(
                base_prompt=request.base_prompt,
                enhanced_prompt=consistency.combine_prompts(
                    request.base_prompt, requirement.specific_prompt, profile
                ),
                requirement=requirement,
                consistency_profile=profile,
                aspect_ratio_optimization=optimization,
                related_contexts=tuple(other for other in ids if other != requirement.id),
            )
            for requirement, optimization in zip(request.image_requirements, optimizations)
        ]

    async def _execute(
        self,
        contexts: Sequence[ImageGenerationContext],
        options: MultiImageOptions,
        parallel: bool,
    ) -> list[Result[ProcessedImageResult]]:
        """Run every context, preserving input order in the returned list."""
        if not parallel:
            return [await self._process_single(context) for context in contexts]

        window = options.max_concurrent_images
        outcomes: list[Result[ProcessedImageResult]] = []
        for start in range(0, len(contexts), window):
            batch = contexts[start : start + window]
            logger.debug(f"Running window of {len(batch)} images starting at {start}")
            settled = await asyncio.gather(
                *(self._process_single(context) for context in batch),
                return_exceptions=True,
            )
            for item in settled:
                if isinstance(item, BaseException):
                    outcomes.append(Failure(as_collaborator_error(item, "Image processing failed")))
                else:
                    outcomes.append(item)
        return outcomes

    async def _process_single(self, context: ImageGenerationContext) -> Result[ProcessedImageResult]:
        requirement = context.requirement
        params = (requirement.image_parameters or ImageParameters()).model_copy(
            update={"aspect_ratio": context.aspect_ratio_optimization.optimized_ratio.ratio}
        )
        request = GenerationRequest(original_prompt=context.enhanced_prompt, image_parameters=params)

        try:
            outcome = await self.processor.generate_image_with_structured_prompt(request)
        except Exception as exc:
            return Failure(as_collaborator_error(exc, f"Image '{requirement.id}' failed"))

        if isinstance(outcome, Failure):
            return outcome
        result = outcome.value
        return Success(
            ProcessedImageResult(
                requirement=requirement,
                two_stage_result=result,
                consistency_score=consistency.vocabulary_retention(
                    result.structured_prompt, context.consistency_profile
                ),
                aspect_ratio_optimization=context.aspect_ratio_optimization,
            )
        )

    @staticmethod
    def _used_fallback(image: ProcessedImageResult) -> bool:
        result = image.two_stage_result
        return result.processing_metadata.fallback_used or result.orchestration_result.metrics.fallbacks_used > 0

    @staticmethod
    def _consistency_metrics(coherence: CoherenceValidationResult) -> ConsistencyMetrics:
        scores = {detail.aspect: detail.score for detail in coherence.validation_details}
        return ConsistencyMetrics(
            overall_consistency_score=coherence.coherence_score,
            character_consistency=scores.get("character", 0.0),
            style_consistency=scores.get("style", 0.0),
            environment_consistency=scores.get("environment", 0.0),
            lighting_consistency=scores.get("lighting", 0.0),
            mood_consistency=scores.get("mood", 0.0),
            failed_validations=tuple(
                f"{detail.aspect}: {', '.join(detail.issues)}"
                for detail in coherence.validation_details
                if detail.issues
            ),
        )
