# dreamlib/costs.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

log = logging.getLogger("costs")

# USD per token
TEXT_MODEL_COSTS = {
    "gpt-4.1-mini": {"input": 0.00015 / 1000, "output": 0.0006 / 1000},
    "gpt-4.1": {"input": 0.0025 / 1000, "output": 0.01 / 1000},
    "gpt-4o-mini": {"input": 0.00015 / 1000, "output": 0.0006 / 1000},
}

IMAGE_COST_USD = 0.004
IMAGE_TOKENS_ESTIMATE = 7500


def text_generation_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = TEXT_MODEL_COSTS.get(model)
    if not pricing:
        return 0.0
    return input_tokens * pricing["input"] + output_tokens * pricing["output"]


def image_generation_cost(image_count: int = 1) -> float:
    return IMAGE_COST_USD * image_count


def char_tokens(prompt: str, output: str) -> int:
    # Rough usage figure: characters in + characters out
    return len(prompt or "") + len(output or "")


class UsageLedger:
    """
    Best-effort api_usage_log writer. A store without log_api_usage, or one
    that raises, never affects the calling stage.
    """

    def __init__(self, store=None):
        self.store = store

    def record(
        self,
        *,
        user_id: str,
        operation_type: str,
        model: str,
        tokens_used: int,
        cost_usd: float,
        success: bool = True,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.store is None:
            return
        try:
            self.store.log_api_usage(
                user_id=user_id,
                operation_type=operation_type,
                model_used=model,
                tokens_used=int(tokens_used),
                estimated_cost_usd=float(cost_usd),
                success=success,
                error_message=error_message,
                metadata=metadata or {},
            )
        except Exception as e:
            log.warning("api usage log failed (%s): %s", operation_type, e)
