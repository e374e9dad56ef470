"""Unit tests for cross-image coherence scoring."""

import struct
import zlib
from unittest.mock import patch

import pytest

from imagecraft.core.collaborators import GeneratedImage
from imagecraft.multi_image.coherence import validate_coherence, vocabulary_agreement


def _image(data: bytes, prompt: str) -> GeneratedImage:
    return GeneratedImage(image_data=data, metadata={"prompt": prompt})


def _scores(result) -> dict[str, float]:
    return {detail.aspect: detail.score for detail in result.validation_details}


def _chunk(kind: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))


def _oversized_png() -> bytes:
    """A PNG header declaring far more pixels than Pillow will open."""
    header = struct.pack(">IIBBBBB", 20000, 20000, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + _chunk(b"IHDR", header) + _chunk(b"IDAT", b"") + _chunk(b"IEND", b"")


class TestVocabularyAgreement:
    def test_jaccard(self):
        score, divergent = vocabulary_agreement(
            ["a knight and a mage", "a knight alone"], "characters"
        )
        assert score == pytest.approx(0.5)
        assert divergent == {"mage"}

    def test_unmentioned_aspect_is_coherent(self):
        assert vocabulary_agreement(["a cat", "a dog"], "mood") == (1.0, set())

    def test_single_prompt_is_coherent(self):
        assert vocabulary_agreement(["a knight"], "characters") == (1.0, set())


class TestValidateCoherence:
    def test_identical_images_are_coherent(self, png_factory):
        images = [_image(png_factory(), "a knight, realistic"), _image(png_factory(), "a knight, realistic")]

        result = validate_coherence(images)

        assert result.is_coherent
        assert result.coherence_score == pytest.approx(1.0)
        assert [d.aspect for d in result.validation_details] == [
            "character",
            "style",
            "environment",
            "lighting",
            "mood",
        ]
        assert result.recommendations == ("Image set shows good overall coherence",)

    def test_luminance_spread_lowers_lighting(self, png_factory):
        images = [
            _image(png_factory((0, 0, 0)), "a knight"),
            _image(png_factory((255, 255, 255)), "a knight"),
        ]

        result = validate_coherence(images)
        scores = _scores(result)

        assert scores["lighting"] == pytest.approx(0.5)
        assert scores["mood"] == pytest.approx(1.0)
        assert result.is_coherent
        assert result.recommendations == (
            "Improve lighting consistency: describe lighting explicitly in the base prompt",
        )

    def test_divergent_vocabulary(self, png_factory):
        images = [
            _image(png_factory(), "a knight, anime"),
            _image(png_factory(), "a mage, cartoon"),
        ]

        result = validate_coherence(images)
        character = result.validation_details[0]

        assert character.score == 0.0
        assert character.issues == ("character terms differ across images: knight, mage",)
        assert _scores(result)["style"] == 0.0
        assert result.coherence_score == pytest.approx(0.6)
        assert not result.is_coherent

    def test_undecodable_bytes_use_vocabulary_only(self):
        images = [_image(b"not an image", "soft light"), _image(b"\x00\x01", "soft light")]

        result = validate_coherence(images)

        assert _scores(result)["lighting"] == 1.0
        assert result.is_coherent

    def test_scores_are_bounded(self, png_factory):
        images = [_image(png_factory((255, 0, 0)), "dark"), _image(png_factory((0, 0, 0)), "bright")]
        for detail in validate_coherence(images).validation_details:
            assert 0.0 <= detail.score <= 1.0

    def test_corrupt_chunk_falls_back_to_vocabulary(self, png_factory):
        images = [_image(png_factory(), "soft light"), _image(png_factory(), "soft light")]

        with patch(
            "imagecraft.multi_image.coherence.Image.open",
            side_effect=SyntaxError("broken PNG file"),
        ):
            result = validate_coherence(images)

        assert _scores(result)["lighting"] == 1.0
        assert result.is_coherent

    def test_decompression_bomb_falls_back_to_vocabulary(self):
        images = [_image(_oversized_png(), "soft light"), _image(_oversized_png(), "soft light")]

        result = validate_coherence(images)

        assert _scores(result)["lighting"] == 1.0
        assert result.is_coherent
