# safety.py
from __future__ import annotations

import hashlib
import inspect
import re
from typing import Any

from openai import OpenAI

import config

# ----------------------------
# Input screening thresholds
# ----------------------------
MIN_MEANINGFUL_CHARS = 20
SPECIAL_CHAR_RATIO_LIMIT = 0.3
REPEATED_RUN_LENGTH = 10

# Anything outside letters, digits, whitespace and everyday punctuation
_SPECIAL_CHAR_RE = re.compile(r"[^a-zA-Z0-9\s.,!?'\-]")
_REPEATED_RUN_RE = re.compile(r"(.)\1{%d,}" % (REPEATED_RUN_LENGTH - 1), re.DOTALL)


def input_cap() -> int:
    return int(config.GLOBAL_DREAM_INPUT_CAP)


def is_text(value: Any) -> bool:
    return isinstance(value, str)


def special_char_ratio(text: str) -> float:
    t = text or ""
    if not t:
        return 0.0
    return len(_SPECIAL_CHAR_RE.findall(t)) / len(t)


def has_repeated_run(text: str) -> bool:
    """True when any single character repeats REPEATED_RUN_LENGTH+ times in a row."""
    return _REPEATED_RUN_RE.search(text or "") is not None


def strip_code_fences(text: str) -> str:
    """Models like to wrap JSON in ```json fences even when told not to."""
    t = (text or "").strip()
    t = re.sub(r"```[a-zA-Z0-9_-]*\s*", "", t)
    return t.replace("```", "").strip()


# ----------------------------
# OpenAI request helpers
# ----------------------------
def safety_identifier_from_session(session_id: str, *, prefix: str = "dw") -> str:
    """
    Create a stable, non-identifying safety identifier for OpenAI requests.
    Hash it so no identifying data is sent.
    """
    sid = (session_id or "").strip() or "anonymous"
    h = hashlib.sha256(sid.encode("utf-8")).hexdigest()[:32]
    return f"{prefix}:{h}"


def responses_create_compat(client: OpenAI, **kwargs):
    """
    Call client.responses.create with optional safety_identifier if supported by the installed SDK.
    Avoids crashing if a parameter is not recognized.
    """
    create_fn = client.responses.create
    try:
        sig = inspect.signature(create_fn)
        params = set(sig.parameters.keys())
    except (TypeError, ValueError):
        params = set()

    # If SDK doesn't support it, drop it
    if "safety_identifier" not in params and "safety_identifier" in kwargs:
        kwargs.pop("safety_identifier", None)

    return create_fn(**kwargs)
