"""Configuration management for imagecraft.

Configuration is loaded with Pydantic Settings from environment variables
carrying the IMAGECRAFT_ prefix, so the pipeline can be tuned without code
changes.

Environment Variable Loading
-----------------------------
Values are resolved in the following priority order:
1. Environment variables (IMAGECRAFT_* prefix)
2. .env file in the working directory
3. Default values defined in ImagecraftConfig

Example .env file:
    IMAGECRAFT_ORCHESTRATOR_TIMEOUT=20
    IMAGECRAFT_ENHANCEMENT_MODE=essential
    IMAGECRAFT_PERFORMANCE_TARGET=15
    IMAGECRAFT_DEFAULT_MAX_CONCURRENT_IMAGES=4

Global Configuration Instance
------------------------------
A global `config` instance is created at module import time and serves as
the default source for every component that is not handed explicit options.

    from imagecraft.core.config import config

    print(config.processor_max_processing_time)

Time Units
----------
All durations are expressed in seconds. Timeouts carry no bounds here;
components report non-positive values from ``validate_configuration()``.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

EnhancementMode = Literal["complete", "essential", "minimal"]
FallbackStrategy = Literal["primary", "secondary", "tertiary"]


class ImagecraftConfig(BaseSettings):
    """Main configuration for imagecraft.

    Attributes
    ----------
    Stage Orchestrator:
        orchestrator_timeout : float
            Per-call timeout budget for the enhancement pipeline
        orchestrator_max_processing_time : float
            Upper bound on enhancement processing time
        enable_structuring : bool
            Run the template structuring stage before enhancement
        enhancement_mode : Literal["complete", "essential", "minimal"]
            Best-practices mode handed to the enhancement engine
        fallback_strategy : Literal["primary", "secondary", "tertiary"]
            Fallback strategy label recorded with each orchestration

    Two-Stage Processor:
        processor_max_processing_time : float
            Hard timeout for one prompt-to-image workflow
        prompt_stage_max_processing_time : float
            Time budget handed to the orchestrator by the processor
        performance_target : float
            Soft target; exceeding it only adds an observability note
        enable_parameter_optimization : bool
            Derive generation parameters from the structured prompt
        session_retention_seconds : float
            Age after which sealed sessions are evicted

    Multi-Image Coordinator:
        default_max_concurrent_images : int
            Window size for parallel batch execution
        multi_image_performance_target : float
            Soft target for one whole batch
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGECRAFT_",
        case_sensitive=False,
    )

    # Stage orchestrator
    orchestrator_timeout: float = Field(
        default=20.0,
        description="Per-call timeout budget for the enhancement pipeline (seconds)",
    )
    orchestrator_max_processing_time: float = Field(
        default=20.0,
        description="Upper bound on enhancement processing time (seconds)",
    )
    enable_structuring: bool = Field(
        default=True,
        description="Run template structuring before best-practices enhancement",
    )
    enhancement_mode: EnhancementMode = Field(
        default="complete",
        description="Best-practices mode handed to the enhancement engine",
    )
    fallback_strategy: FallbackStrategy = Field(
        default="primary",
        description="Fallback strategy label recorded with each orchestration",
    )

    # Two-stage processor
    processor_max_processing_time: float = Field(
        default=20.0,
        description="Hard timeout for a full prompt-to-image workflow (seconds)",
    )
    prompt_stage_max_processing_time: float = Field(
        default=15.0,
        description="Time budget handed to the orchestrator by the processor (seconds)",
    )
    performance_target: float = Field(
        default=20.0,
        description="Soft performance target for one workflow (seconds)",
    )
    enable_parameter_optimization: bool = Field(
        default=True,
        description="Derive generation parameters from the structured prompt",
    )
    session_retention_seconds: float = Field(
        default=3600.0,
        ge=0,
        description="Age after which sealed processing sessions are evicted (seconds)",
    )

    # Multi-image coordinator
    default_max_concurrent_images: int = Field(
        default=3,
        ge=1,
        le=16,
        description="Window size for parallel batch execution",
    )
    multi_image_performance_target: float = Field(
        default=60.0,
        description="Soft performance target for one batch (seconds)",
    )


# Global config instance
config = ImagecraftConfig()
