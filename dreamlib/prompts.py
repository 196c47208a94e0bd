# dreamlib/prompts.py
# Prompt templates for every generation call in the submission pipeline,
# plus the image-prompt preprocessing that runs before image generation.
from __future__ import annotations

import random
import re
from typing import List, Optional, Sequence


def dream_title_prompt(dream_text: str) -> str:
    return (
        "Generate a compelling dream title (max 5 words). Be poetic yet clear.\n\n"
        f"Dream: {dream_text}\n\n"
        "Return ONLY the title, no quotes or extra formatting."
    )


def dream_tags_prompt(title: str, dream_text: str) -> str:
    return (
        "Extract 3-8 symbolic tags from this dream as a JSON array (lowercase, single words).\n\n"
        f"Dream: {title}\n"
        f"{dream_text}\n\n"
        'Examples: ["water", "flight", "falling", "transformation", "lost", "fire"]\n\n'
        "Return ONLY the JSON array."
    )


def emotion_detection_prompt(dream_text: str) -> str:
    return f"""Analyze the emotional content in this dream.

Dream: {dream_text}

Respond with ONLY this JSON format:
{{
  "hasEmotionalContent": true/false,
  "detectedEmotions": ["emotion1", "emotion2"],
  "confidence": 0.0-1.0,
  "suggestion": "Brief note if no emotions"
}}

Emotion examples: fear, joy, anxiety, sadness, excitement, confusion, anger, peace."""


def dream_interpretation_prompt(title: str, dream_text: str, tags: Sequence[str]) -> str:
    symbols = ", ".join(tags)
    return f"""You are a compassionate dream interpreter who respects the deeply personal nature of dreams. Your role is to offer POSSIBLE interpretations and invite self-discovery, NOT to provide definitive meanings.

Dream: {title}
Description: {dream_text}
Symbols: {symbols}

LANGUAGE RULES:
- Use tentative language: "This could suggest...", "It might represent...", "Some interpret this as..."
- Never claim absolute meaning ("This means...", "This is a sign that...").
- Acknowledge subjectivity and invite exploration.
- Do not claim spiritual authority, psychic insight, or universal symbolic truths.

Use this EXACT structure with numbered sections:

1. Overall Meaning:
[2-3 paragraphs exploring POSSIBLE meanings of this dream.]

2. Key Symbols & Their Significance:
[For each symbol ({symbols}), offer possible associations and note that personal meaning may differ.]

3. Emotional Themes:
[What the emotions in this dream could be reflecting.]

4. Potential Life Connections:
[How this dream MIGHT connect to the dreamer's waking life.]

5. Guidance:
[Concrete, practical suggestions the dreamer can try. Statements only, no questions.]

Be empathetic, insightful, and specific while staying humble about the subjective nature of dream interpretation."""


INTERPRETATION_SCHEMA = {
    "type": "object",
    "properties": {"interpretation": {"type": "string"}},
    "required": ["interpretation"],
}


def dream_image_prompt(title: str, dream_text: str) -> str:
    return (
        "Create a vivid, dreamlike visualization of this dream.\n\n"
        f"Title: {title}\n"
        f"Description: {dream_text}\n\n"
        "Style: Surreal, ethereal, mystical. Soft lighting, ethereal atmosphere. "
        "Capture the dream's essence with cinematic quality."
    )


def dream_pattern_prompt(dream_text: str) -> str:
    return f"""Analyze this dream description and identify:
1. Type: Is this a nightmare (scary/distressing), recurring theme, or normal dream?
2. Main themes (max 5)
3. Dominant emotions (max 5)
4. Key symbols (max 5)

Dream: {dream_text}

Respond in JSON format: {{ "type": "nightmare|recurring|normal", "themes": [], "emotions": [], "symbols": [], "confidence": 0.0-1.0 }}"""


# ---------------------
# Image prompt preprocessing
# ---------------------

STYLE_VISUAL = [
    "surreal and dreamlike",
    "ethereal atmosphere",
    "soft cinematic lighting",
    "mystical and enchanting",
    "ethereal glow",
    "dreamscape aesthetic",
    "soft focus blurred background",
]

STYLE_MOOD = [
    "ethereal and mysterious",
    "atmospheric and immersive",
    "otherworldly beauty",
    "serene yet surreal",
    "haunting elegance",
]

STYLE_COMPOSITION = [
    "dynamic composition",
    "deep depth of field",
    "artistic perspective",
    "flowing transitions",
    "layered elements",
]

QUALITY_DIRECTIVES = [
    "high quality professional artwork",
    "8k resolution",
    "cinematic quality",
    "intricate details",
    "polished and refined",
]

DEFAULT_DREAM_IMAGE_PROMPT = (
    "A beautiful, ethereal dreamscape with surreal imagery.\n"
    "Create a visually stunning visualization with artistic depth, soft ethereal lighting, and dreamlike atmosphere.\n"
    "Quality: High-resolution, cinematic, professional artwork."
)

_FORBIDDEN_PROMPT_PATTERNS = [
    re.compile(r"hate|slur|explicit", re.IGNORECASE),
    re.compile(r"\d{3,}"),
    re.compile(r"([a-z])\1{4,}", re.IGNORECASE),
]


def preprocess_dream_image_prompt(raw_prompt: str, *, rng: Optional[random.Random] = None) -> str:
    """Append one visual, mood and composition phrase plus the quality directives."""
    if not isinstance(raw_prompt, str) or not raw_prompt.strip():
        return DEFAULT_DREAM_IMAGE_PROMPT

    pick = (rng or random).choice
    parts = [
        raw_prompt.strip(),
        "",
        f"Visual Style: {pick(STYLE_VISUAL)}",
        f"Mood: {pick(STYLE_MOOD)}",
        f"Composition: {pick(STYLE_COMPOSITION)}",
        "",
        f"Quality: {', '.join(QUALITY_DIRECTIVES)}",
        "",
        "Artistic Direction: Create a visually stunning dream visualization with artistic depth and emotional resonance.",
    ]
    return "\n".join(parts)


def optimize_prompt_length(prompt: str, max_length: int = 1000) -> str:
    """
    Cut a prompt to max_length. Prefers the last sentence end, then the last
    comma, as long as the cut keeps more than 70% of the budget. The result
    never exceeds max_length.
    """
    if len(prompt) <= max_length:
        return prompt

    truncated = prompt[:max_length].strip()
    last_period = truncated.rfind(".")
    last_comma = truncated.rfind(",")

    if last_period > max_length * 0.7:
        return truncated[: last_period + 1]
    if last_comma > max_length * 0.7:
        return truncated[:last_comma] + "."
    return prompt[: max(max_length - 3, 0)].strip() + "..."


def validate_prompt_quality(prompt: str) -> List[str]:
    """Return a list of quality issues; empty means the prompt looks fine."""
    issues: List[str] = []
    if not prompt or len(prompt) < 20:
        issues.append("Prompt is too short (minimum 20 characters)")
    if prompt and len(prompt) > 5000:
        issues.append("Prompt is too long (maximum 5000 characters)")
    for pat in _FORBIDDEN_PROMPT_PATTERNS:
        if prompt and pat.search(prompt):
            issues.append("Prompt contains problematic content patterns")
    return issues
