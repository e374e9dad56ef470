"""Keyword-based prompt classification.

Every function in this module is pure: it takes prompt text and returns an
enum, a string label or a small record. Nothing here touches collaborators,
sessions or configuration, so the heuristics can be tested and replaced in
isolation.

Matching is case-insensitive substring matching. Where several keyword sets
can match, the sets are consulted in the order they are declared and the
first hit wins.

Two families of vocabulary live here:

- Parameter classification (content type, complexity, ratio/quality/style
  suggestions, feature hints) used by the parameter optimizer.
- Aspect-ratio analysis (primary subject, composition, elements) and the
  consistency vocabularies used by the multi-image coordinator.
"""

from dataclasses import dataclass
from enum import Enum


class ContentType(str, Enum):
    """Primary kind of content a prompt describes."""

    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"
    OBJECT = "object"
    SCENE = "scene"
    ABSTRACT = "abstract"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class Composition(str, Enum):
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"
    SQUARE = "square"


# ---------------------------------------------------------------------------
# Parameter classification vocabulary
# ---------------------------------------------------------------------------

CONTENT_TYPE_KEYWORDS: dict[ContentType, tuple[str, ...]] = {
    ContentType.PORTRAIT: ("portrait", "headshot", "face", "person", "character", "selfie"),
    ContentType.LANDSCAPE: (
        "landscape",
        "panoramic",
        "vista",
        "scenery",
        "horizon",
        "mountains",
        "valley",
    ),
    ContentType.OBJECT: ("object", "product", "item", "tool", "device", "still life"),
    ContentType.SCENE: ("scene", "environment", "setting", "room", "interior", "exterior", "building"),
    ContentType.ABSTRACT: ("abstract", "conceptual", "artistic", "pattern", "texture", "geometric"),
}

SIMPLE_KEYWORDS = ("simple", "minimal", "clean", "basic")
COMPLEX_KEYWORDS = ("detailed", "intricate", "complex", "elaborate", "ornate", "sophisticated")

CINEMATIC_KEYWORDS = (
    "cinematic",
    "wide-angle",
    "dramatic",
    "professional photography",
    "film",
    "movie",
    "camera angle",
    "shot",
    "lighting",
    "composition",
)
MACRO_KEYWORDS = ("macro", "close-up", "extreme close-up", "detailed texture")
CHARACTER_KEYWORDS = ("eyes", "hair", "face", "facial features", "expression", "character", "person")
BLEND_KEYWORDS = ("blend", "combine", "merge")
WORLD_KNOWLEDGE_KEYWORDS = ("historical", "real", "accurate")

CONTENT_TYPE_RATIOS: dict[ContentType, str] = {
    ContentType.PORTRAIT: "3:4",
    ContentType.LANDSCAPE: "16:9",
    ContentType.OBJECT: "1:1",
    ContentType.SCENE: "16:9",
    ContentType.ABSTRACT: "1:1",
}

# ---------------------------------------------------------------------------
# Aspect-ratio analysis vocabulary
# ---------------------------------------------------------------------------

SUBJECT_KEYWORDS: dict[ContentType, tuple[str, ...]] = {
    ContentType.PORTRAIT: ("portrait", "face", "person", "character", "headshot"),
    ContentType.LANDSCAPE: ("landscape", "mountain", "horizon", "valley", "vista"),
    ContentType.SCENE: ("scene", "environment", "setting", "background", "location"),
    ContentType.OBJECT: ("object", "product", "item", "tool", "artifact"),
    ContentType.ABSTRACT: ("abstract", "pattern", "texture", "concept", "artistic"),
}

COMPOSITION_KEYWORDS: dict[Composition, tuple[str, ...]] = {
    Composition.VERTICAL: ("vertical", "tall", "upright"),
    Composition.HORIZONTAL: ("horizontal", "wide", "panoramic"),
    Composition.SQUARE: ("square", "centered", "balanced"),
}

ELEMENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "character": ("character", "person", "figure"),
    "environment": ("environment", "background", "setting"),
    "action": ("action", "movement", "dynamic"),
    "object": ("object", "item", "prop"),
    "lighting": ("lighting", "light", "shadow"),
}

# ---------------------------------------------------------------------------
# Consistency vocabulary
# ---------------------------------------------------------------------------

CONSISTENCY_VOCABULARY: dict[str, tuple[str, ...]] = {
    "characters": ("character", "person", "figure", "warrior", "knight", "mage", "hero", "villain"),
    "style": (
        "realistic",
        "artistic",
        "cartoon",
        "anime",
        "photorealistic",
        "illustration",
        "painting",
    ),
    "environment": (
        "forest",
        "castle",
        "city",
        "mountain",
        "beach",
        "desert",
        "medieval",
        "fantasy",
        "modern",
    ),
    "lighting": ("dramatic", "soft", "bright", "dark", "natural", "artificial", "golden", "sunset", "sunrise"),
    "mood": ("heroic", "dark", "mysterious", "cheerful", "somber", "epic", "peaceful", "intense"),
}


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def _count_hits(text: str, keywords: tuple[str, ...]) -> int:
    return sum(1 for keyword in keywords if keyword in text)


def matching_keywords(text: str, keywords: tuple[str, ...]) -> tuple[str, ...]:
    """Return the keywords present in ``text``, in vocabulary order."""
    lowered = text.lower()
    return tuple(keyword for keyword in keywords if keyword in lowered)


# ---------------------------------------------------------------------------
# Parameter classification
# ---------------------------------------------------------------------------


def detect_content_type(text: str) -> ContentType:
    """Classify the content type of a prompt.

    The keyword sets are consulted in declaration order (portrait, landscape,
    object, scene, abstract) and the first match wins. Prompts matching no
    set are treated as scenes.
    """
    lowered = text.lower()
    for content_type, keywords in CONTENT_TYPE_KEYWORDS.items():
        if _contains_any(lowered, keywords):
            return content_type
    return ContentType.SCENE


def detect_complexity(text: str) -> Complexity:
    """Majority vote between simple and complex keywords. A tie is medium."""
    lowered = text.lower()
    simple = _count_hits(lowered, SIMPLE_KEYWORDS)
    complex_ = _count_hits(lowered, COMPLEX_KEYWORDS)
    if complex_ > simple:
        return Complexity.COMPLEX
    if simple > complex_:
        return Complexity.SIMPLE
    return Complexity.MEDIUM


def suggest_aspect_ratio(text: str, content_type: ContentType) -> str:
    lowered = text.lower()
    if "panoramic" in lowered or "wide" in lowered:
        return "21:9"
    if "cinematic" in lowered:
        return "16:9"
    if "square" in lowered or "instagram" in lowered:
        return "1:1"
    return CONTENT_TYPE_RATIOS[content_type]


def suggest_quality(text: str, complexity: Complexity) -> str:
    lowered = text.lower()
    if _contains_any(lowered, ("high detail", "professional", "macro")):
        return "high"
    if _contains_any(lowered, ("sketch", "rough", "simple")):
        return "medium"
    return "high" if complexity is Complexity.COMPLEX else "medium"


def suggest_style(text: str) -> str:
    lowered = text.lower()
    if _contains_any(lowered, ("artistic", "creative", "stylized")):
        return "artistic"
    if _contains_any(lowered, ("enhanced", "detailed", "professional")):
        return "enhanced"
    return "natural"


@dataclass(frozen=True)
class FeatureHints:
    """Generation features a prompt asks for implicitly."""

    blend_images: bool = False
    maintain_character_consistency: bool = False
    use_world_knowledge: bool = False


def detect_features(text: str) -> FeatureHints:
    lowered = text.lower()
    return FeatureHints(
        blend_images=_contains_any(lowered, BLEND_KEYWORDS),
        maintain_character_consistency=_contains_any(lowered, CHARACTER_KEYWORDS),
        use_world_knowledge=_contains_any(lowered, WORLD_KNOWLEDGE_KEYWORDS),
    )


def is_cinematic(text: str) -> bool:
    return _contains_any(text.lower(), CINEMATIC_KEYWORDS)


def is_macro(text: str) -> bool:
    return _contains_any(text.lower(), MACRO_KEYWORDS)


# ---------------------------------------------------------------------------
# Aspect-ratio analysis
# ---------------------------------------------------------------------------


def detect_primary_subject(text: str) -> ContentType:
    """Classify the primary subject for aspect-ratio selection.

    Precedence is portrait, landscape, scene, object, abstract; the default
    is scene.
    """
    lowered = text.lower()
    for subject, keywords in SUBJECT_KEYWORDS.items():
        if _contains_any(lowered, keywords):
            return subject
    return ContentType.SCENE


def detect_composition(text: str, subject: ContentType) -> Composition:
    """Determine the composition of a prompt.

    Explicit orientation words win. Otherwise the composition is inferred
    from the subject, and defaults to horizontal.
    """
    lowered = text.lower()
    for composition, keywords in COMPOSITION_KEYWORDS.items():
        if _contains_any(lowered, keywords):
            return composition

    if subject is ContentType.PORTRAIT:
        return Composition.VERTICAL
    if subject is ContentType.LANDSCAPE:
        return Composition.HORIZONTAL
    if subject in (ContentType.OBJECT, ContentType.ABSTRACT):
        return Composition.SQUARE

    # Scenes and action shots both read horizontally.
    return Composition.HORIZONTAL


def extract_elements(text: str) -> tuple[str, ...]:
    """Return the element categories mentioned in a prompt.

    Each category is an independent gate. An empty result is reported as
    ``("generic",)``.
    """
    lowered = text.lower()
    elements = tuple(name for name, keywords in ELEMENT_KEYWORDS.items() if _contains_any(lowered, keywords))
    return elements or ("generic",)


def extract_vocabulary(text: str, category: str) -> tuple[str, ...]:
    """Return the consistency vocabulary of ``category`` found in ``text``."""
    return matching_keywords(text, CONSISTENCY_VOCABULARY[category])
