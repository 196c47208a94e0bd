# dreamlib/tags.py
from __future__ import annotations

import logging
from typing import Any, List, Optional

import text_gen
from dreamlib.costs import UsageLedger, char_tokens, text_generation_cost
from dreamlib.prompts import dream_tags_prompt

log = logging.getLogger("tags")


def normalize_tags(items: Any) -> List[str]:
    if not isinstance(items, list):
        return []
    out: List[str] = []
    for item in items:
        if item is None:
            continue
        t = str(item).strip().lower()
        if t:
            out.append(t)
    return out


def extract_tags(
    text_service: Any,
    title: str,
    dream_text: str,
    *,
    model: str = "gpt-4.1-mini",
    ledger: Optional[UsageLedger] = None,
    user_id: str = "",
    dream_id: str = "",
) -> List[str]:
    """Single attempt. Any failure yields []; never blocks the submission."""
    prompt = dream_tags_prompt(title, dream_text)
    try:
        raw = text_gen.extract_text(text_service.generate_text(prompt))
    except Exception as e:
        log.warning("Tag extraction failed for dream=%s: %s", dream_id, e)
        return []

    (ledger or UsageLedger()).record(
        user_id=user_id, operation_type="text_generation", model=model,
        tokens_used=char_tokens(prompt, raw),
        cost_usd=text_generation_cost(model, len(prompt), len(raw)),
        metadata={"operation": "tag_extraction", "dream_id": dream_id},
    )

    try:
        parsed = text_gen.parse_json_text(raw)
    except ValueError:
        log.info("Tag extraction returned non-JSON for dream=%s", dream_id)
        return []
    return normalize_tags(parsed)
