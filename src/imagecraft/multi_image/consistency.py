"""Consistency profile and rule application for image batches.

A batch shares one ``ConsistencyProfile`` derived from its base prompt. The
profile lists the shared vocabulary per category (characters, style,
environment, lighting, mood) and the rules that must hold across images.
The rule set grows with the consistency level:

- LOOSE: no rules
- MODERATE: characters (priority 1), style (priority 2)
- STRICT: characters and style (priority 1), environment (priority 2),
  lighting (priority 3)

Applying a rule appends ``", maintaining <keyword>"`` to a context's prompt
unless the keyword is already there. Contexts are frozen; rule application
returns new contexts.
"""

import dataclasses
import logging
from collections import Counter
from collections.abc import Iterable

from imagecraft.core.classification import CONSISTENCY_VOCABULARY, extract_vocabulary
from imagecraft.multi_image.models import (
    CommonElements,
    ConsistencyEnhancedContexts,
    ConsistencyLevel,
    ConsistencyProfile,
    ConsistencyRule,
    ImageGenerationContext,
)

logger = logging.getLogger(__name__)

RULE_KEYWORDS: dict[str, str] = {
    "characters": "character consistency",
    "style": "visual style",
    "environment": "environmental setting",
    "lighting": "lighting conditions",
    "mood": "mood and atmosphere",
}

RULE_REQUIREMENTS: dict[str, str] = {
    "characters": "Maintain exact character appearance and features",
    "style": "Maintain consistent visual style and artistic approach",
    "environment": "Maintain consistent environmental elements and setting",
    "lighting": "Maintain consistent lighting conditions and atmosphere",
}

# Requirement flag that opts an image in or out of a rule element.
REQUIREMENT_FLAGS: dict[str, str] = {
    "characters": "maintain_characters",
    "style": "maintain_style",
    "environment": "maintain_environment",
    "lighting": "maintain_lighting",
    "mood": "maintain_mood",
}


def extract_common_elements(texts: Iterable[str]) -> CommonElements:
    """Collect the consistency vocabulary found in any of ``texts``."""
    found: dict[str, dict[str, None]] = {category: {} for category in CONSISTENCY_VOCABULARY}
    for text in texts:
        for category in CONSISTENCY_VOCABULARY:
            for term in extract_vocabulary(text, category):
                found[category].setdefault(term, None)
    return CommonElements(**{category: tuple(terms) for category, terms in found.items()})


def derive_rules(common: CommonElements, level: ConsistencyLevel) -> tuple[ConsistencyRule, ...]:
    """Rules required at ``level``, sorted by priority.

    A rule is only produced for a category that has vocabulary to maintain.
    """
    rules: list[ConsistencyRule] = []

    def add(element: str, priority: int) -> None:
        if getattr(common, element):
            rules.append(ConsistencyRule(element, RULE_REQUIREMENTS[element], priority))

    if level in (ConsistencyLevel.STRICT, ConsistencyLevel.MODERATE):
        add("characters", 1)
        add("style", 1 if level is ConsistencyLevel.STRICT else 2)
    if level is ConsistencyLevel.STRICT:
        add("environment", 2)
        add("lighting", 3)
    return tuple(sorted(rules, key=lambda rule: rule.priority))


def build_profile(base_prompt: str, level: ConsistencyLevel) -> ConsistencyProfile:
    common = extract_common_elements([base_prompt])
    return ConsistencyProfile(
        level=level,
        common_elements=common,
        consistency_rules=derive_rules(common, level),
        enforcement_priority="balanced",
    )


def combine_prompts(base_prompt: str, specific_prompt: str | None, profile: ConsistencyProfile) -> str:
    """Join base prompt, specific prompt and the profile's shared phrases."""
    combined = base_prompt
    if specific_prompt and specific_prompt.strip():
        combined += f", {specific_prompt}"

    phrases = []
    if profile.common_elements.characters:
        phrases.append(f"featuring {', '.join(profile.common_elements.characters)}")
    if profile.common_elements.style:
        phrases.append(f"in {', '.join(profile.common_elements.style)} style")
    if phrases:
        combined += f", {', '.join(phrases)}"
    return combined


def merge_rules(*rule_sets: Iterable[ConsistencyRule]) -> tuple[ConsistencyRule, ...]:
    """Union of rule sets keyed by element; the most urgent priority wins."""
    merged: dict[str, ConsistencyRule] = {}
    for rules in rule_sets:
        for rule in rules:
            current = merged.get(rule.element)
            if current is None or rule.priority < current.priority:
                merged[rule.element] = rule
    return tuple(sorted(merged.values(), key=lambda rule: rule.priority))


def apply_rules(
    context: ImageGenerationContext, rules: Iterable[ConsistencyRule]
) -> ImageGenerationContext:
    prompt = context.enhanced_prompt
    consistency = context.requirement.consistency

    for rule in rules:
        flag = REQUIREMENT_FLAGS.get(rule.element)
        if consistency is not None and flag and not getattr(consistency, flag):
            continue
        keyword = RULE_KEYWORDS.get(rule.element, rule.element)
        if keyword.lower() not in prompt.lower():
            prompt += f", maintaining {keyword}"

    if consistency is not None:
        for custom in consistency.custom_rules:
            if custom.strip() and custom.lower() not in prompt.lower():
                prompt += f", maintaining {custom}"

    return dataclasses.replace(context, enhanced_prompt=prompt)


def shared_vocabulary_score(prompts: Iterable[str]) -> float:
    """Share of distinct words (longer than 3 characters) used more than once.

    Returns 0.5 when there are no such words.
    """
    counts: Counter[str] = Counter()
    for prompt in prompts:
        counts.update(word for word in prompt.lower().split(" ") if len(word) > 3)
    if not counts:
        return 0.5
    shared = sum(1 for count in counts.values() if count > 1)
    return shared / len(counts)


def vocabulary_retention(prompt: str, profile: ConsistencyProfile) -> float:
    """Share of the profile's shared vocabulary still present in ``prompt``."""
    terms = profile.common_elements.all_terms()
    if not terms:
        return 1.0
    lowered = prompt.lower()
    return sum(1 for term in terms if term in lowered) / len(terms)


def maintain_consistency(
    contexts: list[ImageGenerationContext], profile: ConsistencyProfile
) -> ConsistencyEnhancedContexts:
    """Apply the batch's consistency rules to every context.

    The profile's rules are merged with rules derived from the vocabulary
    the contexts share, so phrases introduced by specific prompts are kept
    consistent as well.
    """
    shared = extract_common_elements(context.enhanced_prompt for context in contexts)
    rules = merge_rules(profile.consistency_rules, derive_rules(shared, profile.level))
    enhanced = tuple(apply_rules(context, rules) for context in contexts)
    score = shared_vocabulary_score(context.enhanced_prompt for context in enhanced)
    logger.debug(f"Applied {len(rules)} consistency rules to {len(enhanced)} contexts (score {score:.2f})")
    return ConsistencyEnhancedContexts(contexts=enhanced, applied_rules=rules, consistency_score=score)
