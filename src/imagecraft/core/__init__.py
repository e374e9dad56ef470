"""Core single-image pipeline.

This package turns one user prompt into one generated image:

- **config.py**: Configuration using Pydantic Settings (IMAGECRAFT_ prefix)
- **collaborators.py**: Interfaces of the template engine, enhancement
  engine and generation client
- **classification.py**: Pure keyword classifiers for prompt content
- **orchestrator.py**: Template structuring and best-practices enhancement
  with full-pipeline fallback
- **parameter_optimizer.py**: Content-driven generation parameters
- **sessions.py**: Processing sessions and their store
- **two_stage.py**: Timeout-bounded prompt-to-image processing with an
  outer fallback

Public entry points return ``Success`` or ``Failure`` from ``result.py``
and never raise; the error classes live in ``errors.py``.
"""

from imagecraft.core.config import ImagecraftConfig, config
from imagecraft.core.errors import (
    AggregateFailure,
    CollaboratorError,
    ImagecraftError,
    ProcessingTimeoutError,
    SessionSealedError,
    ValidationError,
)
from imagecraft.core.orchestrator import StageOrchestrator
from imagecraft.core.parameter_optimizer import ParameterOptimizer
from imagecraft.core.result import Failure, Result, Success
from imagecraft.core.sessions import ProcessingSession, SessionStore
from imagecraft.core.two_stage import ProcessorOptions, TwoStageProcessor

__all__ = [
    "ImagecraftConfig",
    "config",
    "ImagecraftError",
    "ValidationError",
    "CollaboratorError",
    "ProcessingTimeoutError",
    "AggregateFailure",
    "SessionSealedError",
    "StageOrchestrator",
    "ParameterOptimizer",
    "ProcessingSession",
    "SessionStore",
    "ProcessorOptions",
    "TwoStageProcessor",
    "Result",
    "Success",
    "Failure",
]
