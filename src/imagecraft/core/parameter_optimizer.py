"""Content-driven optimization of image generation parameters.

The optimizer reads the structured prompt produced by the stage orchestrator,
classifies it with the keyword heuristics in ``imagecraft.core.classification``
and adjusts the caller's ``ImageParameters``. Every decision appends one
human-readable reason to ``OptimizedParameters.optimization_reasons``, in the
order the decisions are made:

1. aspect ratio (override or preserve)
2. quality (upgrade only)
3. style (caller wins, otherwise filled from analysis)
4. feature flags (OR'd in, never disabled)
5. cinematic pass (square becomes widescreen)
6. macro pass (forces high quality)
"""

import logging
from dataclasses import dataclass

from imagecraft.core import classification
from imagecraft.core.classification import Complexity, ContentType, FeatureHints
from imagecraft.core.errors import CollaboratorError
from imagecraft.core.models import ImageParameters, OptimizedParameters
from imagecraft.core.result import Failure, Result, Success

logger = logging.getLogger(__name__)

# Caller ratios that are replaced even though the caller set them.
INAPPROPRIATE_RATIOS: dict[ContentType, tuple[str, ...]] = {
    ContentType.PORTRAIT: ("16:9", "21:9"),
    ContentType.LANDSCAPE: ("3:4",),
}


@dataclass(frozen=True)
class PromptCharacteristics:
    """Everything the optimizer learned from a prompt."""

    content_type: ContentType
    complexity: Complexity
    suggested_aspect_ratio: str
    suggested_quality: str
    suggested_style: str
    recommended_features: FeatureHints
    cinematic: bool
    macro: bool


class ParameterOptimizer:
    """Derives generation parameters from a structured prompt."""

    def analyze_prompt_characteristics(self, text: str) -> PromptCharacteristics:
        content_type = classification.detect_content_type(text)
        complexity = classification.detect_complexity(text)
        return PromptCharacteristics(
            content_type=content_type,
            complexity=complexity,
            suggested_aspect_ratio=classification.suggest_aspect_ratio(text, content_type),
            suggested_quality=classification.suggest_quality(text, complexity),
            suggested_style=classification.suggest_style(text),
            recommended_features=classification.detect_features(text),
            cinematic=classification.is_cinematic(text),
            macro=classification.is_macro(text),
        )

    @staticmethod
    def should_override_aspect_ratio(
        characteristics: PromptCharacteristics, current_ratio: str | None
    ) -> bool:
        """Decide whether the caller's aspect ratio gets replaced.

        Only a missing ratio or one of the known mismatches (portrait content
        in a wide frame, landscape content in a portrait frame) is replaced.
        """
        if not current_ratio:
            return True
        if current_ratio == characteristics.suggested_aspect_ratio:
            return False
        return current_ratio in INAPPROPRIATE_RATIOS.get(characteristics.content_type, ())

    async def optimize_for_structured_prompt(
        self, text: str, base_params: ImageParameters | None = None
    ) -> Result[OptimizedParameters]:
        """Optimize ``base_params`` for ``text``.

        Parameters
        ----------
        text : str
            Structured (or raw) prompt to analyze
        base_params : ImageParameters | None
            Parameters supplied by the caller

        Returns
        -------
        Result[OptimizedParameters]
            Always ``Success`` unless an unexpected internal error occurs, in
            which case a ``CollaboratorError`` is returned and the caller
            keeps its original parameters
        """
        base = base_params or ImageParameters()
        try:
            return Success(self._optimize(text, base))
        except Exception as exc:
            logger.error(f"Parameter optimization failed: {exc}", exc_info=True)
            return Failure(
                CollaboratorError(
                    f"Parameter optimization failed: {exc}",
                    suggestion="Check prompt format and try again",
                )
            )

    def _optimize(self, text: str, base: ImageParameters) -> OptimizedParameters:
        characteristics = self.analyze_prompt_characteristics(text)
        values = base.model_dump()
        reasons: list[str] = []

        if self.should_override_aspect_ratio(characteristics, base.aspect_ratio):
            values["aspect_ratio"] = characteristics.suggested_aspect_ratio
            reasons.append(f"aspect ratio optimized for {characteristics.content_type.value} content")
        else:
            reasons.append("aspect ratio preserved - appropriate for content")

        if characteristics.suggested_quality == "high" and base.quality in ("low", "medium"):
            values["quality"] = "high"
            reasons.append(f"quality upgraded for {characteristics.complexity.value} content")

        if base.style:
            reasons.append("style preserved - explicitly provided")
        else:
            values["style"] = characteristics.suggested_style
            reasons.append("style optimized for detected content characteristics")

        features = characteristics.recommended_features
        if features.maintain_character_consistency and not base.maintain_character_consistency:
            values["maintain_character_consistency"] = True
            reasons.append("character features detected - enabled consistency maintenance")
        if features.blend_images and not base.blend_images:
            values["blend_images"] = True
            reasons.append("multiple elements detected - enabled blending")
        if features.use_world_knowledge and not base.use_world_knowledge:
            values["use_world_knowledge"] = True
            reasons.append("world knowledge requirements detected")

        if characteristics.cinematic:
            reasons.append("cinematic composition detected")
            if values["aspect_ratio"] == "1:1":
                values["aspect_ratio"] = "16:9"
                reasons.append("aspect ratio adjusted for cinematic content")

        if characteristics.macro:
            values["quality"] = "high"
            # Caller style stays authoritative.
            if not base.style:
                values["style"] = "enhanced"
            reasons.append("macro photography detected - enhanced quality and detail")

        logger.debug(f"Optimized parameters for {characteristics.content_type.value} content: {reasons}")
        return OptimizedParameters(**values, optimization_reasons=tuple(reasons))
