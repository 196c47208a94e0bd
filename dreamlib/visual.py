# dreamlib/visual.py
from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, List, Optional
from urllib.parse import urlparse

from dreamlib import image_errors
from dreamlib.costs import IMAGE_TOKENS_ESTIMATE, UsageLedger, image_generation_cost
from dreamlib.prompts import (
    dream_image_prompt,
    optimize_prompt_length,
    preprocess_dream_image_prompt,
    validate_prompt_quality,
)
from dreamlib.retry import RetryExhausted, RetryPolicy
from models import ImageGenerationResult, SubmissionContext, TierCapabilities

log = logging.getLogger("visual")

MAX_IMAGE_ATTEMPTS = 3


def is_http_url(url: Any) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def image_entitled(ctx: SubmissionContext, caps: TierCapabilities) -> bool:
    allowed = caps.image_entitled or (not caps.is_paid and ctx.has_promotional_entitlement)
    return allowed and ctx.input_kind == "text" and not ctx.uploaded_image_url


def needs_watermark(ctx: SubmissionContext, caps: TierCapabilities) -> bool:
    return ctx.has_promotional_entitlement and not caps.is_paid


def build_image_prompt(title: str, dream_text: str, *, rng: Optional[random.Random] = None,
                       budget: int = 1000) -> str:
    prompt = preprocess_dream_image_prompt(dream_image_prompt(title, dream_text), rng=rng)
    issues = validate_prompt_quality(prompt)
    if issues:
        log.warning("Image prompt quality issues: %s", issues)
    return optimize_prompt_length(prompt, budget)


def _first_url(images: Any) -> str:
    if not isinstance(images, list) or not images:
        raise RuntimeError("Image service returned no images")
    first = images[0]
    url = first.get("url") if isinstance(first, dict) else getattr(first, "url", None)
    if not url:
        raise RuntimeError("Image data missing URL")
    if not is_http_url(url):
        raise RuntimeError("Image URL must use http or https")
    return str(url)


def synthesize_visual(
    image_service: Any,
    ctx: SubmissionContext,
    caps: TierCapabilities,
    title: str,
    dream_text: str,
    *,
    watermark: Optional[Callable[[str], str]] = None,
    rng: Optional[random.Random] = None,
    sleep: Callable[[float], None] = time.sleep,
    ledger: Optional[UsageLedger] = None,
    prompt_budget: int = 1000,
    model: str = "gpt-image-1-mini",
) -> ImageGenerationResult:
    """
    Generate one dream image with per-error-class backoff.
    Never raises for generation failures; success=False carries the user message.
    `watermark(url) -> new_url` is applied for promotional (non-paid) entitlements.
    """
    ledger = ledger or UsageLedger()
    prompt = build_image_prompt(title, dream_text, rng=rng, budget=prompt_budget)
    log.info("Image prompt length: %d chars", len(prompt))

    failures: List[image_errors.ImageGenerationError] = []

    def _attempt(attempt: int) -> str:
        log.info("Image generation attempt %d/%d for dream=%s", attempt, MAX_IMAGE_ATTEMPTS, ctx.dream_id)
        return _first_url(image_service.generate_image(prompt))

    def _on_failure(attempt: int, err: BaseException) -> None:
        parsed = image_errors.parse_image_error(err)
        failures.append(parsed)
        image_errors.log_image_error(parsed, {
            "user_id": ctx.user_id, "dream_id": ctx.dream_id,
            "attempt": attempt, "prompt_length": len(prompt),
        })

    policy = RetryPolicy(
        max_attempts=MAX_IMAGE_ATTEMPTS,
        backoff=lambda n, e: image_errors.retry_delay_seconds(image_errors.parse_image_error(e), n),
        retryable=lambda e: image_errors.should_retry(image_errors.parse_image_error(e), 0, MAX_IMAGE_ATTEMPTS),
        sleep=sleep,
        name="image",
    )

    started = time.monotonic()
    try:
        url = policy.run(_attempt, on_failure=_on_failure)
    except RetryExhausted as e:
        parsed = failures[-1] if failures else image_errors.parse_image_error(e.last_error)
        ledger.record(
            user_id=ctx.user_id, operation_type="image_generation", model=model,
            tokens_used=0, cost_usd=0.0, success=False, error_message=parsed.technical_message,
            metadata={"operation": "dream_image_generation", "dream_id": ctx.dream_id,
                      "error_code": parsed.code, "attempts": e.attempts},
        )
        return ImageGenerationResult(
            image_url="",
            success=False,
            retry_count=len(failures),
            fallback_used=True,
            error_message=image_errors.format_for_user(parsed, e.attempts, MAX_IMAGE_ATTEMPTS),
            error_code=parsed.code,
        )

    cost = image_generation_cost(1)
    ledger.record(
        user_id=ctx.user_id, operation_type="image_generation", model=model,
        tokens_used=IMAGE_TOKENS_ESTIMATE, cost_usd=cost,
        metadata={"operation": "dream_image_generation", "dream_id": ctx.dream_id,
                  "retries": len(failures), "duration_ms": int((time.monotonic() - started) * 1000)},
    )

    watermarked = False
    if watermark is not None and needs_watermark(ctx, caps):
        try:
            marked = watermark(url)
        except Exception as e:
            log.warning("Watermark failed for dream=%s, keeping original image: %s", ctx.dream_id, e)
        else:
            if is_http_url(marked):
                url, watermarked = marked, True
            else:
                log.warning("Watermark returned unusable URL for dream=%s, keeping original", ctx.dream_id)

    return ImageGenerationResult(
        image_url=url,
        success=True,
        retry_count=len(failures),
        fallback_used=False,
        tokens_used=IMAGE_TOKENS_ESTIMATE,
        cost_usd=cost,
        watermarked=watermarked,
    )
