"""Batch generation of related images.

- **models.py**: Requests, aspect ratio strategies and batch results
- **aspect_ratio.py**: Per-batch aspect ratio resolution
- **consistency.py**: Consistency profiles and rule application
- **coherence.py**: Cross-image coherence scoring
- **coordinator.py**: The batch entry point
"""

from imagecraft.multi_image.aspect_ratio import AspectRatioController
from imagecraft.multi_image.coordinator import MultiImageCoordinator
from imagecraft.multi_image.models import (
    Adaptive,
    AspectRatio,
    ConsistencyLevel,
    ContentDriven,
    ImageRequirement,
    LastImage,
    MultiImageOptions,
    MultiImageRequest,
    Uniform,
)

__all__ = [
    "AspectRatioController",
    "MultiImageCoordinator",
    "Adaptive",
    "AspectRatio",
    "ConsistencyLevel",
    "ContentDriven",
    "ImageRequirement",
    "LastImage",
    "MultiImageOptions",
    "MultiImageRequest",
    "Uniform",
]
