"""imagecraft - Structured prompt enhancement and multi-image coordination."""

__version__ = "0.1.0"

from imagecraft.core.config import ImagecraftConfig, config
from imagecraft.core.orchestrator import StageOrchestrator
from imagecraft.core.result import Failure, Result, Success
from imagecraft.core.two_stage import TwoStageProcessor
from imagecraft.multi_image.coordinator import MultiImageCoordinator

__all__ = [
    "ImagecraftConfig",
    "config",
    "StageOrchestrator",
    "TwoStageProcessor",
    "MultiImageCoordinator",
    "Result",
    "Success",
    "Failure",
]
