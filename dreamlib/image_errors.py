# dreamlib/image_errors.py
# Classify image-generation failures by message substring. First match wins.
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from models import ImageGenerationError

log = logging.getLogger("image_gen")

# (code, triggers, user_message, technical_message, suggestion, is_retryable)
_TAXONOMY = [
    ("AUTH_ERROR", ("unauthorized", "forbidden", "401", "403"),
     "Authentication expired. Please sign in again.",
     "Authentication failed for image generation",
     "Refresh the page and try again", True),
    ("RATE_LIMIT", ("rate limit", "429", "too many requests"),
     "Too many requests. Please wait a moment and try again.",
     "Rate limit exceeded for image generation",
     "Wait 30-60 seconds before generating another image", True),
    ("TIMEOUT", ("timeout", "timed out", "408"),
     "Image generation took too long. Please try again.",
     "Request timeout during image generation",
     "This can happen with complex prompts. Try a shorter description.", True),
    ("INVALID_CONTENT", ("invalid", "content", "inappropriate"),
     "The dream description contains content that cannot be visualized.",
     "Invalid content for image generation",
     "Try describing your dream with different words or focus on different elements", False),
    ("SERVICE_ERROR", ("service unavailable", "503", "502", "500"),
     "Image generation service is temporarily unavailable.",
     "Image generation service returned an error",
     "Please try again in a few moments", True),
    ("NETWORK_ERROR", ("network", "fetch", "connection"),
     "Network connection issue. Please check your internet and try again.",
     "Network error during image generation",
     "Check your internet connection and try again", True),
    ("QUOTA_ERROR", ("quota", "billing", "credit"),
     "You have reached your image generation quota.",
     "Quota exceeded or billing issue",
     "Upgrade your plan to generate more images", False),
]

TERMINAL_CODES = ("INVALID_CONTENT", "QUOTA_ERROR")


def parse_image_error(error: Any) -> ImageGenerationError:
    msg = str(error) if error is not None else ""
    lower = msg.lower()
    for code, triggers, user_msg, tech_msg, suggestion, retryable in _TAXONOMY:
        if any(t in lower for t in triggers):
            return ImageGenerationError(
                code=code, user_message=user_msg, technical_message=tech_msg,
                suggestion=suggestion, is_retryable=retryable,
            )
    return ImageGenerationError(
        code="UNKNOWN_ERROR",
        user_message="Unable to generate dream image. Please try again.",
        technical_message=f"Image generation failed: {msg}",
        suggestion="Try again or describe your dream differently",
        is_retryable=True,
    )


def retry_delay_seconds(err: ImageGenerationError, attempt: int) -> float:
    if err.code == "RATE_LIMIT":
        return 30.0 + attempt * 10.0
    if err.code == "TIMEOUT":
        return 5.0 * (2 ** attempt)
    if err.code == "SERVICE_ERROR":
        return 3.0 * (2 ** attempt)
    return 1.0 * (2 ** attempt)


def should_retry(err: ImageGenerationError, attempts_made: int, max_attempts: int = 3) -> bool:
    if attempts_made >= max_attempts:
        return False
    return err.is_retryable and err.code not in TERMINAL_CODES


def format_for_user(err: ImageGenerationError, attempt: int, max_attempts: int = 3) -> str:
    message = f"{err.user_message} (Attempt {attempt}/{max_attempts})"
    if err.suggestion:
        message += f": {err.suggestion}"
    return message


def log_image_error(err: ImageGenerationError, context: Optional[Dict[str, Any]] = None) -> None:
    log.error(
        "Image generation error code=%s retryable=%s technical=%s context=%s",
        err.code, err.is_retryable, err.technical_message, context or {},
    )
