"""Data models for multi-image batch processing.

Caller-facing inputs (requirements, options, strategies, the request itself)
are Pydantic models so batches can be submitted as plain dicts. Their
business constraints (non-empty ids, priority of at least 1, ...) are checked
by the coordinator so that violations come back as a failed result instead
of an exception at construction time.

Everything the coordinator derives is a frozen dataclass.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from imagecraft.core.classification import Composition, ContentType
from imagecraft.core.config import config
from imagecraft.core.models import ImageParameters, TwoStageResult


class AspectRatio(BaseModel):
    """A width:height ratio such as 16:9 or 1.91:1."""

    model_config = ConfigDict(frozen=True)

    width: float = Field(gt=0, allow_inf_nan=False)
    height: float = Field(gt=0, allow_inf_nan=False)
    ratio: str

    @classmethod
    def parse(cls, value: str) -> "AspectRatio":
        """Build an aspect ratio from its ``"W:H"`` notation."""
        width, _, height = value.partition(":")
        return cls(width=float(width), height=float(height), ratio=value)

    @property
    def composition(self) -> Composition:
        if self.width > self.height:
            return Composition.HORIZONTAL
        if self.width < self.height:
            return Composition.VERTICAL
        return Composition.SQUARE


STANDARD_ASPECT_RATIOS: dict[str, AspectRatio] = {
    "square": AspectRatio.parse("1:1"),
    "portrait": AspectRatio.parse("3:4"),
    "landscape": AspectRatio.parse("4:3"),
    "wide": AspectRatio.parse("16:9"),
    "ultrawide": AspectRatio.parse("21:9"),
    "vertical": AspectRatio.parse("9:16"),
}


class ConsistencyLevel(str, Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    LOOSE = "loose"


class ConsistencyRequirement(BaseModel):
    """Which aspects an image must keep consistent with its siblings."""

    model_config = ConfigDict(frozen=True)

    maintain_characters: bool = True
    maintain_style: bool = True
    maintain_environment: bool = True
    maintain_lighting: bool = True
    maintain_mood: bool = True
    custom_rules: tuple[str, ...] = ()


class ImageRequirement(BaseModel):
    """One image of a batch, as requested by the caller."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default="", description="Identifier, unique within the batch")
    specific_prompt: str | None = Field(default=None, description="Prompt text for this image only")
    aspect_ratio: AspectRatio | None = Field(default=None, description="Explicit aspect ratio")
    priority: int = Field(default=1, description="Processing priority (1 or higher)")
    consistency: ConsistencyRequirement | None = None
    image_parameters: ImageParameters | None = None

    @field_validator("aspect_ratio", mode="before")
    @classmethod
    def _parse_ratio_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return AspectRatio.parse(value)
        return value


class MultiImageOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    enable_parallel_processing: bool = True
    max_concurrent_images: int = Field(default_factory=lambda: config.default_max_concurrent_images)
    performance_target: float = Field(default_factory=lambda: config.multi_image_performance_target)


# ---------------------------------------------------------------------------
# Aspect ratio strategies
# ---------------------------------------------------------------------------


class Adaptive(BaseModel):
    """Pick the best ratio for each image independently."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["adaptive"] = "adaptive"
    fallback_confidence: float = 0.5


class Uniform(BaseModel):
    """Use one ratio, derived from the batch's dominant content, for every image."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["uniform"] = "uniform"


class ContentDriven(BaseModel):
    """Per-image analysis with confidence boosted by prompt detail."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["content_driven"] = "content_driven"
    length_thresholds: tuple[int, ...] = (50, 100)
    length_bonus: float = 0.1
    specificity_keywords: tuple[str, ...] = ("detailed", "specific", "precise", "exact", "particular")
    specificity_bonus: float = 0.15
    fallback_confidence: float = 0.4


class LastImage(BaseModel):
    """Propagate the last explicit ratio of the batch to every image."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["last_image"] = "last_image"
    confidence: float = 0.8


AspectRatioStrategy = Annotated[
    Union[Adaptive, Uniform, ContentDriven, LastImage],
    Field(discriminator="kind"),
]


class MultiImageRequest(BaseModel):
    """A batch of related images sharing one base prompt."""

    model_config = ConfigDict(frozen=True)

    base_prompt: str = ""
    image_requirements: list[ImageRequirement] = Field(default_factory=list)
    consistency_level: ConsistencyLevel = ConsistencyLevel.MODERATE
    aspect_ratio_strategy: AspectRatioStrategy = Field(default_factory=Adaptive)
    processing_options: MultiImageOptions | None = None

    @field_validator("aspect_ratio_strategy", mode="before")
    @classmethod
    def _strategy_from_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"kind": value}
        return value


# ---------------------------------------------------------------------------
# Aspect ratio results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentAnalysis:
    primary_subject: ContentType
    composition: Composition
    elements: tuple[str, ...]
    rationale: str


@dataclass(frozen=True)
class AspectRatioOptimization:
    strategy: str
    content_analysis: ContentAnalysis
    recommended_ratio: AspectRatio
    confidence_score: float


@dataclass(frozen=True)
class AspectRatioOptimizationResult:
    original_ratio: AspectRatio
    optimized_ratio: AspectRatio
    optimization: AspectRatioOptimization
    reasoning: str


@dataclass(frozen=True)
class OptimizedAspectRatios:
    optimizations: tuple[AspectRatioOptimizationResult, ...]
    strategy: str
    overall_coherence: float


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommonElements:
    """Shared vocabulary per consistency category."""

    characters: tuple[str, ...] = ()
    style: tuple[str, ...] = ()
    environment: tuple[str, ...] = ()
    lighting: tuple[str, ...] = ()
    mood: tuple[str, ...] = ()

    def all_terms(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for terms in (self.characters, self.style, self.environment, self.lighting, self.mood):
            for term in terms:
                seen.setdefault(term, None)
        return tuple(seen)


@dataclass(frozen=True)
class ConsistencyRule:
    element: str
    requirement: str
    priority: int


@dataclass(frozen=True)
class ConsistencyProfile:
    level: ConsistencyLevel
    common_elements: CommonElements
    consistency_rules: tuple[ConsistencyRule, ...]
    enforcement_priority: str = "balanced"


@dataclass(frozen=True)
class ImageGenerationContext:
    base_prompt: str
    enhanced_prompt: str
    requirement: ImageRequirement
    consistency_profile: ConsistencyProfile
    aspect_ratio_optimization: AspectRatioOptimizationResult
    related_contexts: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConsistencyEnhancedContexts:
    contexts: tuple[ImageGenerationContext, ...]
    applied_rules: tuple[ConsistencyRule, ...]
    consistency_score: float


# ---------------------------------------------------------------------------
# Batch results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessedImageResult:
    requirement: ImageRequirement
    two_stage_result: TwoStageResult
    consistency_score: float
    aspect_ratio_optimization: AspectRatioOptimizationResult


@dataclass(frozen=True)
class CoherenceValidationDetail:
    aspect: str
    score: float
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class CoherenceValidationResult:
    is_coherent: bool
    coherence_score: float
    validation_details: tuple[CoherenceValidationDetail, ...]
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class ConsistencyMetrics:
    overall_consistency_score: float
    character_consistency: float
    style_consistency: float
    environment_consistency: float
    lighting_consistency: float
    mood_consistency: float
    failed_validations: tuple[str, ...] = ()


@dataclass(frozen=True)
class FailedImage:
    requirement_id: str
    error_code: str
    message: str


@dataclass(frozen=True)
class MultiImageProcessingMetadata:
    session_id: str
    base_prompt: str
    batch_size: int
    parallel_processing_used: bool
    concurrent_images: int
    failed_images: tuple[FailedImage, ...] = ()
    fallback_used: bool = False
    applied_optimizations: tuple[str, ...] = ()
    consistency_score: float = 0.0
    aspect_ratio_optimization_time: float = 0.0
    consistency_profile_time: float = 0.0
    context_build_time: float = 0.0
    image_coordination_time: float = 0.0
    consistency_validation_time: float = 0.0
    total_processing_time: float = 0.0
    timestamp: float = 0.0


@dataclass(frozen=True)
class MultiImageResult:
    base_prompt: str
    processed_images: tuple[ProcessedImageResult, ...]
    consistency_metrics: ConsistencyMetrics
    processing_metadata: MultiImageProcessingMetadata
    aspect_ratio_source: str
    success: bool = True
