"""Data models shared by the single-image pipeline.

Inputs are Pydantic models so that callers can hand in plain dicts and get
them validated. Outputs and internal records are dataclasses; they are frozen
unless a field has to change exactly once during processing (``StageRecord``).
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

from imagecraft.core.collaborators import GeneratedImage
from imagecraft.core.config import EnhancementMode, FallbackStrategy

if TYPE_CHECKING:
    from imagecraft.core.sessions import ProcessingSession

Quality = Literal["low", "medium", "high"]
Style = Literal["enhanced", "natural", "artistic"]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ImageParameters(BaseModel):
    """Generation parameters a caller may pin down.

    Every field is optional; ``None`` means "let the optimizer decide".
    """

    model_config = ConfigDict(frozen=True)

    input_image: str | None = Field(default=None, description="Base64 or path of an input image")
    blend_images: bool | None = Field(default=None, description="Blend multiple visual elements")
    maintain_character_consistency: bool | None = Field(
        default=None, description="Keep characters consistent across generations"
    )
    use_world_knowledge: bool | None = Field(
        default=None, description="Ground the image in real-world knowledge"
    )
    aspect_ratio: str | None = Field(default=None, description="Aspect ratio such as '16:9'")
    quality: Quality | None = Field(default=None, description="Requested rendering quality")
    style: Style | None = Field(default=None, description="Requested rendering style")


class OrchestrationOptions(BaseModel):
    """Per-call overrides for the stage orchestrator.

    Unset fields fall back to the configured defaults.
    """

    model_config = ConfigDict(frozen=True)

    enable_structuring: bool | None = None
    enhancement_mode: EnhancementMode | None = None
    fallback_strategy: FallbackStrategy | None = None
    max_processing_time: float | None = None


class GenerationRequest(BaseModel):
    """One prompt-to-image request."""

    model_config = ConfigDict(frozen=True)

    original_prompt: str = Field(..., description="Prompt exactly as the caller wrote it")
    orchestration_options: OrchestrationOptions | None = None
    image_parameters: ImageParameters | None = None


# ---------------------------------------------------------------------------
# Stage records and orchestration output
# ---------------------------------------------------------------------------


class StageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StageRecord:
    """Progress of one pipeline stage.

    A record starts out processing and moves to a terminal status exactly
    once through ``complete()`` or ``fail()``.
    """

    name: str
    status: StageStatus = StageStatus.PROCESSING
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    error: str | None = None
    output: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (StageStatus.COMPLETED, StageStatus.FAILED)

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return 0.0
        return self.end_time - self.start_time

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Stage '{self.name}' already finished as {self.status.value}")

    def complete(self, output: str) -> None:
        self._ensure_open()
        self.end_time = max(time.time(), self.start_time)
        self.output = output
        self.status = StageStatus.COMPLETED

    def fail(self, error: str) -> None:
        self._ensure_open()
        self.end_time = max(time.time(), self.start_time)
        self.error = error
        self.status = StageStatus.FAILED


@dataclass(frozen=True)
class StrategyApplication:
    strategy: str
    applied: bool
    reason: str | None = None
    processing_time: float = 0.0


@dataclass(frozen=True)
class OrchestrationMetrics:
    total_processing_time: float = 0.0
    stage_count: int = 0
    success_rate: float = 0.0
    failure_count: int = 0
    fallbacks_used: int = 0
    timestamp: float = 0.0


@dataclass(frozen=True)
class OrchestrationResult:
    original_prompt: str
    structured_prompt: str
    stages: tuple[StageRecord, ...]
    applied_strategies: tuple[StrategyApplication, ...]
    metrics: OrchestrationMetrics


# ---------------------------------------------------------------------------
# Parameter optimization and two-stage output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OptimizedParameters:
    """Caller parameters after content-driven optimization.

    ``optimization_reasons`` lists one human-readable reason per decision, in
    the order the decisions were made.
    """

    input_image: str | None = None
    blend_images: bool | None = None
    maintain_character_consistency: bool | None = None
    use_world_knowledge: bool | None = None
    aspect_ratio: str | None = None
    quality: Quality | None = None
    style: Style | None = None
    optimization_reasons: tuple[str, ...] = ()

    @classmethod
    def unchanged(cls, params: ImageParameters) -> "OptimizedParameters":
        return cls(**params.model_dump())


@dataclass(frozen=True)
class TwoStageResult:
    original_prompt: str
    structured_prompt: str
    generated_image: GeneratedImage
    processing_metadata: "ProcessingSession"
    optimized_parameters: OptimizedParameters
    orchestration_result: OrchestrationResult
    success: bool = True
