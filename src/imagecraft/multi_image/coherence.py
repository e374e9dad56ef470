"""Cross-image coherence scoring.

Five aspects are scored independently: character, style, environment,
lighting and mood. Each score is the Jaccard agreement of the aspect's
vocabulary across the prompts the images were rendered from (taken from
``GeneratedImage.metadata["prompt"]``). An aspect no image mentions, or a
set with a single image, is fully coherent.

Lighting and mood additionally look at the pixels: when every image decodes
with Pillow, the vocabulary score is averaged with the spread of mean
luminance (lighting) or mean saturation (mood) across the set.

The set is coherent when the mean of the five scores is at least 0.7.
"""

import io
import logging

from PIL import Image, ImageStat

from imagecraft.core.classification import extract_vocabulary
from imagecraft.core.collaborators import GeneratedImage
from imagecraft.multi_image.models import CoherenceValidationDetail, CoherenceValidationResult

logger = logging.getLogger(__name__)

COHERENCE_THRESHOLD = 0.7

# aspect name -> vocabulary category
ASPECT_CATEGORIES: dict[str, str] = {
    "character": "characters",
    "style": "style",
    "environment": "environment",
    "lighting": "lighting",
    "mood": "mood",
}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def vocabulary_agreement(prompts: list[str], category: str) -> tuple[float, set[str]]:
    """Jaccard agreement of ``category`` vocabulary across ``prompts``.

    Returns the score and the terms that are not shared by every prompt.
    """
    term_sets = [set(extract_vocabulary(prompt, category)) for prompt in prompts]
    union = set().union(*term_sets) if term_sets else set()
    if len(term_sets) < 2 or not union:
        return 1.0, set()
    intersection = set.intersection(*term_sets)
    return len(intersection) / len(union), union - intersection


def _channel_means(images: list[GeneratedImage]) -> tuple[list[float], list[float]] | None:
    """Mean luminance and mean saturation per image, in [0, 1].

    Returns ``None`` when any image cannot be decoded, including corrupt
    chunks and images over Pillow's decompression-bomb limit.
    """
    luminance, saturation = [], []
    for image in images:
        try:
            with Image.open(io.BytesIO(image.image_data)) as decoded:
                rgb = decoded.convert("RGB")
                luminance.append(ImageStat.Stat(rgb.convert("L")).mean[0] / 255.0)
                saturation.append(ImageStat.Stat(rgb.convert("HSV")).mean[1] / 255.0)
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
            logger.debug(f"Skipping pixel statistics, image could not be decoded: {exc}")
            return None
    return luminance, saturation


def _spread_score(values: list[float]) -> float:
    if len(values) < 2:
        return 1.0
    return _clamp(1.0 - (max(values) - min(values)))


def score_aspects(images: list[GeneratedImage]) -> list[CoherenceValidationDetail]:
    prompts = [str(image.metadata.get("prompt", "")) for image in images]
    pixel_stats = _channel_means(images)
    details = []

    for aspect, category in ASPECT_CATEGORIES.items():
        score, divergent = vocabulary_agreement(prompts, category)
        if pixel_stats is not None and aspect in ("lighting", "mood"):
            luminance, saturation = pixel_stats
            pixel_score = _spread_score(luminance if aspect == "lighting" else saturation)
            score = (score + pixel_score) / 2
        score = _clamp(score)

        issues: tuple[str, ...] = ()
        suggestions: tuple[str, ...] = ()
        if score < COHERENCE_THRESHOLD:
            if divergent:
                issues = (f"{aspect} terms differ across images: {', '.join(sorted(divergent))}",)
                suggestions = (f"use the same {aspect} terms in every prompt",)
            else:
                issues = (f"{aspect} varies visually across images",)
                suggestions = (f"describe {aspect} explicitly in the base prompt",)
        details.append(CoherenceValidationDetail(aspect, score, issues, suggestions))
    return details


def validate_coherence(images: list[GeneratedImage]) -> CoherenceValidationResult:
    details = score_aspects(images)
    coherence_score = _clamp(sum(detail.score for detail in details) / len(details))
    recommendations = tuple(
        f"Improve {detail.aspect} consistency: {'; '.join(detail.suggestions)}"
        for detail in details
        if detail.issues
    )
    return CoherenceValidationResult(
        is_coherent=coherence_score >= COHERENCE_THRESHOLD,
        coherence_score=coherence_score,
        validation_details=tuple(details),
        recommendations=recommendations or ("Image set shows good overall coherence",),
    )
