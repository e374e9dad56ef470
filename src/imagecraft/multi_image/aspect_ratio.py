"""Aspect ratio resolution for image batches.

``AspectRatioController`` resolves one aspect ratio per requirement under
one of four strategies (see ``imagecraft.multi_image.models``):

- ``Adaptive``: each prompt is analyzed on its own.
- ``Uniform``: the dominant subject and composition of the batch select one
  ratio for every image.
- ``ContentDriven``: like ``Adaptive``, with confidence boosted by prompt
  length and specificity.
- ``LastImage``: the last explicit ratio in the batch applies to all images.

Every resolution carries a confidence score in [0, 1] and a rationale. Only
an empty requirement list fails the whole call; a single requirement whose
analysis fails gets a per-item fallback instead.
"""

import logging
from collections import Counter

from imagecraft.core import classification
from imagecraft.core.classification import Composition, ContentType
from imagecraft.core.errors import ValidationError
from imagecraft.core.result import Failure, Result, Success
from imagecraft.multi_image.models import (
    STANDARD_ASPECT_RATIOS,
    Adaptive,
    AspectRatio,
    AspectRatioOptimization,
    AspectRatioOptimizationResult,
    AspectRatioStrategy,
    ContentAnalysis,
    ContentDriven,
    ImageRequirement,
    LastImage,
    OptimizedAspectRatios,
    Uniform,
)

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = STANDARD_ASPECT_RATIOS["landscape"]

CONTENT_TYPE_RATIOS: dict[ContentType, AspectRatio] = {
    ContentType.PORTRAIT: STANDARD_ASPECT_RATIOS["portrait"],
    ContentType.LANDSCAPE: STANDARD_ASPECT_RATIOS["landscape"],
    ContentType.OBJECT: STANDARD_ASPECT_RATIOS["square"],
    ContentType.SCENE: STANDARD_ASPECT_RATIOS["wide"],
    ContentType.ABSTRACT: STANDARD_ASPECT_RATIOS["square"],
}

# Placeholder analyzed when a requirement has no prompt of its own.
GENERIC_PROMPT = "generic image"


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class AspectRatioController:
    """Resolves aspect ratios for a batch of image requirements."""

    async def optimize_aspect_ratios(
        self, requirements: list[ImageRequirement], strategy: AspectRatioStrategy
    ) -> Result[OptimizedAspectRatios]:
        """Resolve one aspect ratio per requirement.

        Parameters
        ----------
        requirements : list[ImageRequirement]
            Requirements in batch order
        strategy : AspectRatioStrategy
            One of ``Adaptive``, ``Uniform``, ``ContentDriven``, ``LastImage``

        Returns
        -------
        Result[OptimizedAspectRatios]
            One optimization per requirement, in requirement order
        """
        if not requirements:
            return Failure(
                ValidationError(
                    "No image requirements provided for aspect ratio optimization",
                    suggestion="Provide at least one image requirement",
                )
            )

        match strategy:
            case Adaptive():
                optimizations = await self._adaptive(requirements, strategy)
            case Uniform():
                optimizations = await self._uniform(requirements, strategy)
            case ContentDriven():
                optimizations = await self._content_driven(requirements, strategy)
            case LastImage():
                optimizations = await self._last_image(requirements, strategy)
            case _:
                return Failure(ValidationError(f"Unknown aspect ratio strategy: {strategy!r}"))

        coherence = self.calculate_overall_coherence(optimizations)
        logger.info(
            f"Resolved {len(optimizations)} aspect ratios with {strategy.kind} strategy "
            f"(coherence {coherence:.2f})"
        )
        return Success(
            OptimizedAspectRatios(
                optimizations=tuple(optimizations),
                strategy=strategy.kind,
                overall_coherence=coherence,
            )
        )

    async def analyze_content_for_aspect_ratio(self, prompt: str) -> Result[ContentAnalysis]:
        if not prompt or not prompt.strip():
            return Failure(ValidationError("Empty prompt provided for content analysis"))

        subject = classification.detect_primary_subject(prompt)
        composition = classification.detect_composition(prompt, subject)
        elements = classification.extract_elements(prompt)
        rationale = (
            f"{subject.value} content with {composition.value} composition "
            f"featuring {', '.join(elements)} elements"
        )
        return Success(
            ContentAnalysis(
                primary_subject=subject,
                composition=composition,
                elements=elements,
                rationale=rationale,
            )
        )

    @staticmethod
    def select_optimal_ratio(analysis: ContentAnalysis) -> AspectRatio:
        """Pure lookup keyed by composition, narrowed by subject."""
        if analysis.composition is Composition.VERTICAL:
            if analysis.primary_subject is ContentType.PORTRAIT:
                return STANDARD_ASPECT_RATIOS["portrait"]
            return STANDARD_ASPECT_RATIOS["vertical"]
        if analysis.composition is Composition.HORIZONTAL:
            if analysis.primary_subject in (ContentType.LANDSCAPE, ContentType.SCENE):
                return STANDARD_ASPECT_RATIOS["wide"]
            return STANDARD_ASPECT_RATIOS["landscape"]
        return CONTENT_TYPE_RATIOS.get(analysis.primary_subject, STANDARD_ASPECT_RATIOS["square"])

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_confidence(analysis: ContentAnalysis) -> float:
        confidence = 0.5
        if analysis.elements:
            confidence += 0.2
        if analysis.primary_subject in (ContentType.PORTRAIT, ContentType.LANDSCAPE):
            confidence += 0.2
        if analysis.composition is not Composition.SQUARE:
            confidence += 0.1
        return clamp(confidence)

    def calculate_content_driven_confidence(
        self, analysis: ContentAnalysis, prompt: str, strategy: ContentDriven
    ) -> float:
        confidence = self.calculate_confidence(analysis)
        for threshold in strategy.length_thresholds:
            if len(prompt) > threshold:
                confidence += strategy.length_bonus
        lowered = prompt.lower()
        if any(keyword in lowered for keyword in strategy.specificity_keywords):
            confidence += strategy.specificity_bonus
        return clamp(confidence)

    @staticmethod
    def calculate_overall_coherence(optimizations: list[AspectRatioOptimizationResult]) -> float:
        """Mean confidence plus a bonus when the batch uses at most two ratios."""
        if not optimizations:
            return 1.0
        mean = sum(o.optimization.confidence_score for o in optimizations) / len(optimizations)
        distinct = {o.optimized_ratio.ratio for o in optimizations}
        bonus = 0.1 if len(distinct) <= 2 else 0.0
        return clamp(mean + bonus)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    @staticmethod
    def _result(
        requirement: ImageRequirement,
        ratio: AspectRatio,
        strategy: str,
        analysis: ContentAnalysis,
        confidence: float,
        reasoning: str,
    ) -> AspectRatioOptimizationResult:
        return AspectRatioOptimizationResult(
            original_ratio=requirement.aspect_ratio or DEFAULT_ASPECT_RATIO,
            optimized_ratio=ratio,
            optimization=AspectRatioOptimization(
                strategy=strategy,
                content_analysis=analysis,
                recommended_ratio=ratio,
                confidence_score=clamp(confidence),
            ),
            reasoning=reasoning,
        )

    async def _adaptive(
        self, requirements: list[ImageRequirement], strategy: Adaptive
    ) -> list[AspectRatioOptimizationResult]:
        optimizations = []
        for requirement in requirements:
            prompt = requirement.specific_prompt or GENERIC_PROMPT
            match await self.analyze_content_for_aspect_ratio(prompt):
                case Success(value=analysis):
                    optimizations.append(
                        self._result(
                            requirement,
                            self.select_optimal_ratio(analysis),
                            strategy.kind,
                            analysis,
                            self.calculate_confidence(analysis),
                            f"Adaptive optimization based on content analysis: {analysis.rationale}",
                        )
                    )
                case Failure(error=error):
                    logger.warning(f"Content analysis failed for '{requirement.id}': {error}")
                    fallback = requirement.aspect_ratio or STANDARD_ASPECT_RATIOS["square"]
                    analysis = ContentAnalysis(
                        primary_subject=ContentType.ABSTRACT,
                        composition=Composition.SQUARE,
                        elements=(),
                        rationale="Content analysis failed, using fallback ratio",
                    )
                    optimizations.append(
                        self._result(
                            requirement,
                            fallback,
                            strategy.kind,
                            analysis,
                            strategy.fallback_confidence,
                            "Fallback applied due to content analysis failure",
                        )
                    )
        return optimizations

    async def _uniform(
        self, requirements: list[ImageRequirement], strategy: Uniform
    ) -> list[AspectRatioOptimizationResult]:
        subjects: Counter[ContentType] = Counter()
        compositions: Counter[Composition] = Counter()
        for requirement in requirements:
            outcome = await self.analyze_content_for_aspect_ratio(requirement.specific_prompt or GENERIC_PROMPT)
            if isinstance(outcome, Success):
                subjects[outcome.value.primary_subject] += 1
                compositions[outcome.value.composition] += 1

        if subjects:
            # Ties go to the value seen first.
            subject, subject_count = subjects.most_common(1)[0]
            composition, composition_count = compositions.most_common(1)[0]
            analyzed = sum(subjects.values())
            confidence = (subject_count / analyzed + composition_count / analyzed) / 2
        else:
            subject, composition = ContentType.SCENE, Composition.HORIZONTAL
            confidence = 0.5

        analysis = ContentAnalysis(
            primary_subject=subject,
            composition=composition,
            elements=("uniform processing",),
            rationale=f"Uniform ratio selected based on most common content type: {subject.value}",
        )
        ratio = self.select_optimal_ratio(analysis)
        return [
            self._result(
                requirement,
                ratio,
                strategy.kind,
                analysis,
                confidence,
                f"Uniform optimization applied: {analysis.rationale}",
            )
            for requirement in requirements
        ]

    async def _content_driven(
        self, requirements: list[ImageRequirement], strategy: ContentDriven
    ) -> list[AspectRatioOptimizationResult]:
        optimizations = []
        for requirement in requirements:
            prompt = requirement.specific_prompt or GENERIC_PROMPT
            match await self.analyze_content_for_aspect_ratio(prompt):
                case Success(value=analysis):
                    optimizations.append(
                        self._result(
                            requirement,
                            self.select_optimal_ratio(analysis),
                            strategy.kind,
                            analysis,
                            self.calculate_content_driven_confidence(analysis, prompt, strategy),
                            f"Content-driven optimization: {analysis.rationale}",
                        )
                    )
                case Failure(error=error):
                    logger.warning(f"Content-driven analysis failed for '{requirement.id}': {error}")
                    fallback = requirement.aspect_ratio or STANDARD_ASPECT_RATIOS["landscape"]
                    analysis = ContentAnalysis(
                        primary_subject=ContentType.SCENE,
                        composition=Composition.HORIZONTAL,
                        elements=("fallback processing",),
                        rationale="Content-driven analysis failed, using conservative fallback",
                    )
                    optimizations.append(
                        self._result(
                            requirement,
                            fallback,
                            strategy.kind,
                            analysis,
                            strategy.fallback_confidence,
                            f"Content-driven fallback: {error}",
                        )
                    )
        return optimizations

    async def _last_image(
        self, requirements: list[ImageRequirement], strategy: LastImage
    ) -> list[AspectRatioOptimizationResult]:
        ratio: AspectRatio | None = None
        for requirement in reversed(requirements):
            if requirement.aspect_ratio is not None:
                ratio = requirement.aspect_ratio
                break

        if ratio is None:
            last_prompt = requirements[-1].specific_prompt or "last image content"
            outcome = await self.analyze_content_for_aspect_ratio(last_prompt)
            ratio = self.select_optimal_ratio(outcome.value) if isinstance(outcome, Success) else DEFAULT_ASPECT_RATIO

        analysis = ContentAnalysis(
            primary_subject=ContentType.SCENE,
            composition=ratio.composition,
            elements=("last image reference",),
            rationale=f"Using aspect ratio from last image: {ratio.ratio}",
        )
        return [
            self._result(
                requirement,
                ratio,
                strategy.kind,
                analysis,
                strategy.confidence,
                f"Last image optimization: applied ratio {ratio.ratio} from last image",
            )
            for requirement in requirements
        ]
