"""Interfaces of the external collaborators driven by the pipeline.

The pipeline never parses templates, rewrites text or talks to a generative
API itself. It delegates to three collaborators, each defined here as an
abstract base class with async methods:

- ``TemplateEngine``: applies a markup template to a raw prompt (stage 1).
- ``EnhancementEngine``: applies prompting best practices (stage 2).
- ``GenerationClient``: turns a final prompt into image bytes.

A collaborator may report failure by returning a ``Failure`` or by raising;
callers treat both the same way.

Example
-------
    class EchoEngine(TemplateEngine):
        async def apply_template(self, prompt, template, options=None):
            return Success(TemplateOutput(structured_prompt=prompt))
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from imagecraft.core.config import EnhancementMode
from imagecraft.core.result import Result


@dataclass(frozen=True)
class PromptTemplate:
    """Template handed to the template engine during structuring."""

    template_type: str
    features: tuple[str, ...]
    description: str = ""


BUILTIN_TEMPLATE = PromptTemplate(
    template_type="basic",
    features=("role", "task", "context", "constraints"),
    description="Role, task, context and constraints structure for image prompts",
)


@dataclass(frozen=True)
class TemplateOutput:
    structured_prompt: str
    applied_features: tuple[str, ...] = ()
    processing_meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BestPracticesOptions:
    """Options for the enhancement engine."""

    mode: EnhancementMode = "complete"
    aspect_ratio: str = "16:9"
    target_style: str = "enhanced"
    context_intent: str = "image_generation"


@dataclass(frozen=True)
class EnhancementOutput:
    enhanced_prompt: str
    applied_practices: tuple[str, ...] = ()
    transformation_meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerationParams:
    """Parameters sent to the generation client for a single image."""

    prompt: str
    input_image: str | None = None
    blend_images: bool | None = None
    maintain_character_consistency: bool | None = None
    use_world_knowledge: bool | None = None


@dataclass(frozen=True)
class GeneratedImage:
    """Image bytes plus whatever metadata the client attaches.

    Clients are expected to put the prompt they rendered under
    ``metadata["prompt"]``.
    """

    image_data: bytes
    metadata: dict[str, Any] = field(default_factory=dict)


class TemplateEngine(ABC):
    @abstractmethod
    async def apply_template(
        self,
        prompt: str,
        template: PromptTemplate,
        options: dict[str, Any] | None = None,
    ) -> Result[TemplateOutput]:
        """Structure ``prompt`` with ``template``."""


class EnhancementEngine(ABC):
    @abstractmethod
    async def apply_best_practices(
        self, text: str, options: BestPracticesOptions
    ) -> Result[EnhancementOutput]:
        """Rewrite ``text`` following prompting best practices."""


class GenerationClient(ABC):
    @abstractmethod
    async def generate_image(self, params: GenerationParams) -> Result[GeneratedImage]:
        """Generate one image for ``params``."""
