# dreamlib/interpretation.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence

import text_gen
from dreamlib.costs import UsageLedger, char_tokens, text_generation_cost
from dreamlib.errors import InterpretationError
from dreamlib.prompts import INTERPRETATION_SCHEMA, dream_interpretation_prompt
from dreamlib.retry import EmptyResult, RetryExhausted, RetryPolicy, exponential

log = logging.getLogger("interpretation")

MAX_PLAIN_ATTEMPTS = 3


def _structured(text_service: Any, prompt: str) -> str:
    obj = text_service.generate_structured(prompt, INTERPRETATION_SCHEMA)
    value = obj.get("interpretation") if isinstance(obj, dict) else None
    if not isinstance(value, str) or not value.strip():
        raise EmptyResult("structured interpretation was empty")
    return value.strip()


def synthesize_interpretation(
    text_service: Any,
    title: str,
    dream_text: str,
    tags: Sequence[str],
    *,
    model: str = "gpt-4.1-mini",
    sleep: Callable[[float], None] = time.sleep,
    ledger: Optional[UsageLedger] = None,
    user_id: str = "",
    dream_id: str = "",
) -> str:
    """
    Schema-constrained request first; on failure, up to three plain
    requests with 1s/2s backoff. Raises InterpretationError when both give up.
    """
    prompt = dream_interpretation_prompt(title, dream_text, tags)
    ledger = ledger or UsageLedger()

    def _log_usage(out: str, strategy: str, attempt: int = 1) -> None:
        ledger.record(
            user_id=user_id, operation_type="text_generation", model=model,
            tokens_used=char_tokens(prompt, out),
            cost_usd=text_generation_cost(model, len(prompt), len(out)),
            metadata={"operation": "dream_interpretation", "dream_id": dream_id,
                      "strategy": strategy, "attempt": attempt},
        )

    try:
        result = _structured(text_service, prompt)
        _log_usage(result, "structured")
        return result
    except Exception as e:
        log.warning("Structured interpretation failed for dream=%s, switching to plain text: %s", dream_id, e)

    def _plain(attempt: int) -> str:
        out = text_gen.extract_text(text_service.generate_text(prompt))
        if not out:
            raise EmptyResult("interpretation text was empty")
        _log_usage(out, "plain", attempt)
        return out

    policy = RetryPolicy(
        max_attempts=MAX_PLAIN_ATTEMPTS,
        backoff=exponential(1.0, offset=-1),
        sleep=sleep,
        name="interpretation",
    )
    try:
        return policy.run(_plain)
    except RetryExhausted as e:
        raise InterpretationError(f"interpretation failed after {e.attempts} attempt(s): {e.last_error}") from e
