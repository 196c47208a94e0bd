# dreamlib/emotion.py
from __future__ import annotations

import re
from typing import Dict, List

from safety import MIN_MEANINGFUL_CHARS

EMOTION_KEYWORDS: Dict[str, List[str]] = {
    "positive": [
        "happy", "joy", "excited", "love", "peaceful", "calm", "content", "grateful",
        "proud", "confident", "hopeful", "amazed", "delighted", "elated", "euphoric",
        "cheerful", "optimistic", "satisfied", "relieved", "comfortable", "serene",
        "blissful", "ecstatic", "enthusiastic", "inspired", "motivated",
    ],
    "negative": [
        "sad", "angry", "fear", "afraid", "scared", "anxious", "worried", "stressed",
        "frustrated", "upset", "disappointed", "lonely", "depressed", "nervous",
        "terrified", "horrified", "panicked", "distressed", "miserable", "desperate",
        "helpless", "hopeless", "ashamed", "guilty", "embarrassed", "jealous",
        "envious", "resentful", "bitter", "disgusted", "irritated", "annoyed",
    ],
    "neutral": [
        "confused", "surprised", "curious", "uncertain", "indifferent", "numb",
        "detached", "overwhelmed", "conflicted", "ambivalent", "nostalgic",
        "contemplative", "pensive", "melancholic", "wistful",
    ],
    "complex": [
        "vulnerable", "intense", "powerful", "weak", "strong", "trapped", "free",
        "lost", "found", "empty", "full", "heavy", "light", "dark", "bright",
        "safe", "unsafe", "comfortable", "uncomfortable", "familiar", "strange",
    ],
}

# "comfortable" sits in two groups; scan each word once, in group order
ALL_EMOTION_KEYWORDS: List[str] = list(
    dict.fromkeys(w for group in EMOTION_KEYWORDS.values() for w in group)
)

EMOTIONAL_CONTEXT_PHRASES = [
    "i felt", "i was feeling", "it felt", "feeling of", "sense of",
    "made me feel", "i felt like", "felt so", "felt very", "felt extremely",
    "i experienced", "the feeling", "emotions of", "emotional", "emotionally",
]

_KEYWORD_RES = [(w, re.compile(r"\b%s\b" % re.escape(w), re.IGNORECASE)) for w in ALL_EMOTION_KEYWORDS]

MSG_NO_DETAILS = "Please provide dream details"
MSG_TOO_SHORT = "Please provide more details about your dream (at least 20 characters)"
MSG_NO_EMOTION = (
    "Please describe how you felt during the dream. "
    "Include emotions like joy, fear, confusion, excitement, sadness, etc."
)


def detect_emotions(text: str) -> List[str]:
    """Emotion keywords present as whole words, in keyword-list order."""
    t = text or ""
    return [w for w, rx in _KEYWORD_RES if rx.search(t)]


def has_emotional_context(text: str) -> bool:
    lower = (text or "").lower()
    return any(p in lower for p in EMOTIONAL_CONTEXT_PHRASES)


def categorize_emotions(emotions: List[str]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {k: [] for k in EMOTION_KEYWORDS}
    for e in emotions:
        for category, words in EMOTION_KEYWORDS.items():
            if e in words:
                out[category].append(e)
                break
    return out


def validate_emotional_content(text: str) -> Dict[str, object]:
    """
    Keyword/phrase scan. Returns:
      {is_valid, detected_emotions, emotion_count, suggestion}
    """
    if not isinstance(text, str) or not text.strip():
        return {"is_valid": False, "detected_emotions": [], "emotion_count": 0, "suggestion": MSG_NO_DETAILS}

    detected = detect_emotions(text)
    result: Dict[str, object] = {
        "is_valid": False,
        "detected_emotions": detected,
        "emotion_count": len(detected),
        "suggestion": None,
    }

    if len(text.strip()) < MIN_MEANINGFUL_CHARS:
        result["suggestion"] = MSG_TOO_SHORT
        return result

    if not detected and not has_emotional_context(text):
        result["suggestion"] = MSG_NO_EMOTION
        return result

    result["is_valid"] = True
    return result
