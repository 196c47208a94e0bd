# dreamlib/titles.py
from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Any, Callable, Optional, Tuple

import text_gen
from dreamlib.costs import UsageLedger, char_tokens, text_generation_cost
from dreamlib.prompts import dream_title_prompt
from dreamlib.retry import EmptyResult, RetryExhausted, RetryPolicy, exponential
from models import TitleGenerationResult

log = logging.getLogger("titles")

MAX_TITLE_ATTEMPTS = 2
MAX_TITLE_WORDS = 5
TITLE_MIN_CHARS = 3
TITLE_MAX_CHARS = 50


def guard_title(title: Any) -> Tuple[bool, str, Optional[str]]:
    """
    (ok, cleaned, note). Titles must be 3-50 chars after trimming.
    All-caps titles are accepted but converted to sentence case.
    """
    if not isinstance(title, str) or not title.strip():
        return False, "", "Dream title cannot be empty"
    t = title.strip()
    if len(t) < TITLE_MIN_CHARS:
        return False, t, "Dream title must be at least 3 characters"
    if len(t) > TITLE_MAX_CHARS:
        return False, t[:TITLE_MAX_CHARS], "Dream title truncated to 50 characters"
    if t == t.upper() and re.search(r"[A-Z]", t):
        return True, t[0] + t[1:].lower(), "Title converted from all caps"
    return True, t, None


def cap_words(title: str, limit: int = MAX_TITLE_WORDS) -> str:
    words = title.split()
    return " ".join(words[:limit]) if len(words) > limit else title


def fallback_title(dream_text: str, reason: str, *, now: Optional[datetime] = None) -> TitleGenerationResult:
    now = now or datetime.now()
    words = [w for w in (dream_text or "").strip().split() if len(w) > 2][:MAX_TITLE_WORDS]
    title = " ".join(words)
    if len(title) < 10:
        title = f"Dream from {now.month}/{now.day}/{now.year}"
    title = title[:1].upper() + title[1:]

    ok, cleaned, _ = guard_title(title)
    if ok:
        title = cleaned
    else:
        title = f"Dream {str(int(now.timestamp() * 1000))[-6:]}"

    return TitleGenerationResult(
        title=title, used_fallback=True, fallback_reason=reason, tokens_used=0, cost_usd=0.0,
    )


def synthesize_title(
    text_service: Any,
    dream_text: str,
    *,
    model: str = "gpt-4.1-mini",
    sleep: Callable[[float], None] = time.sleep,
    ledger: Optional[UsageLedger] = None,
    user_id: str = "",
    dream_id: str = "",
    now: Optional[datetime] = None,
) -> TitleGenerationResult:
    prompt = dream_title_prompt(dream_text)
    ledger = ledger or UsageLedger()

    def _attempt(attempt: int) -> TitleGenerationResult:
        raw = text_gen.extract_text(text_service.generate_text(prompt))
        tokens = char_tokens(prompt, raw)
        cost = text_generation_cost(model, len(prompt), len(raw))
        ledger.record(
            user_id=user_id, operation_type="text_generation", model=model,
            tokens_used=tokens, cost_usd=cost,
            metadata={"operation": "title_generation", "dream_id": dream_id, "attempt": attempt},
        )

        ok, cleaned, note = guard_title(raw.replace('"', "").replace("'", ""))
        if not ok:
            raise EmptyResult(f"invalid title from model: {note}")
        return TitleGenerationResult(
            title=cap_words(cleaned), used_fallback=False, tokens_used=tokens, cost_usd=cost,
        )

    policy = RetryPolicy(
        max_attempts=MAX_TITLE_ATTEMPTS,
        backoff=exponential(1.0),
        sleep=sleep,
        name="title",
    )
    try:
        return policy.run(_attempt)
    except RetryExhausted as e:
        reason = str(e.last_error) if e.last_error else "AI generation failed"
        log.warning("Title generation fell back for dream=%s: %s", dream_id, reason)
        return fallback_title(dream_text, reason, now=now)
