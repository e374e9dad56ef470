"""Shared pytest fixtures for imagecraft tests."""

import io
import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from imagecraft.core.collaborators import (
    EnhancementEngine,
    EnhancementOutput,
    GeneratedImage,
    GenerationClient,
    GenerationParams,
    TemplateEngine,
    TemplateOutput,
)
from imagecraft.core.config import ImagecraftConfig
from imagecraft.core.orchestrator import StageOrchestrator
from imagecraft.core.result import Success
from imagecraft.core.sessions import SessionStore
from imagecraft.core.two_stage import ProcessorOptions, TwoStageProcessor
from imagecraft.multi_image.coordinator import MultiImageCoordinator


def make_png(color: tuple[int, int, int] = (128, 128, 128), size: tuple[int, int] = (8, 8)) -> bytes:
    """Encode a solid-colour PNG.

    Args:
        color: RGB fill colour
        size: Image width and height in pixels

    Returns:
        PNG-encoded bytes
    """
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def structure(prompt: str, template: Any, options: Any = None) -> Success:
    return Success(TemplateOutput(structured_prompt=f"structured: {prompt}", applied_features=("role",)))


def enhance(text: str, options: Any) -> Success:
    return Success(EnhancementOutput(enhanced_prompt=f"{text}, enhanced", applied_practices=("clarity",)))


def render(params: GenerationParams) -> Success:
    return Success(GeneratedImage(image_data=make_png(), metadata={"prompt": params.prompt}))


@pytest.fixture
def test_config(monkeypatch) -> ImagecraftConfig:
    """Configuration built from defaults only, ignoring the environment and .env files.

    Returns:
        ImagecraftConfig instance for testing
    """
    for name in list(os.environ):
        if name.upper().startswith("IMAGECRAFT_"):
            monkeypatch.delenv(name, raising=False)
    return ImagecraftConfig(_env_file=None)


@pytest.fixture
def template_engine() -> MagicMock:
    """Template engine prefixing prompts with ``structured:``."""
    engine = MagicMock(spec=TemplateEngine)
    engine.apply_template = AsyncMock(side_effect=structure)
    return engine


@pytest.fixture
def enhancement_engine() -> MagicMock:
    """Enhancement engine appending ``, enhanced``."""
    engine = MagicMock(spec=EnhancementEngine)
    engine.apply_best_practices = AsyncMock(side_effect=enhance)
    return engine


@pytest.fixture
def generation_client() -> MagicMock:
    """Generation client returning a grey PNG tagged with its prompt."""
    client = MagicMock(spec=GenerationClient)
    client.generate_image = AsyncMock(side_effect=render)
    return client


@pytest.fixture
def orchestrator(template_engine, enhancement_engine, test_config) -> StageOrchestrator:
    return StageOrchestrator(template_engine, enhancement_engine, settings=test_config)


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def processor(orchestrator, generation_client, session_store) -> TwoStageProcessor:
    return TwoStageProcessor(
        orchestrator,
        generation_client,
        session_store=session_store,
        options=ProcessorOptions(max_processing_time=5.0, performance_target=5.0),
    )


@pytest.fixture
def coordinator(processor) -> MultiImageCoordinator:
    return MultiImageCoordinator(processor)


@pytest.fixture
def png_factory():
    """Return the ``make_png`` helper for tests that need image bytes."""
    return make_png
