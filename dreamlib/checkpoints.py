# dreamlib/checkpoints.py
# The three pre-generation gates: content, emotion, usage.
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import safety
import text_gen
from dreamlib import emotion
from dreamlib.prompts import emotion_detection_prompt
from dreamlib.race import DeadlineExceeded, first_settled
from models import (
    CheckpointResult,
    SubmissionContext,
    TierTable,
    ValidationCheckpointResult,
    ValidationRecommendation,
)

log = logging.getLogger("checkpoints")

CONTENT_ID = "checkpoint_1_type_safety"
CONTENT_NAME = "Input Content Type Safety"
EMOTION_ID = "checkpoint_2_emotion_validation"
EMOTION_NAME = "Emotion Validation"
USAGE_ID = "checkpoint_3_subscription"
USAGE_NAME = "Subscription Validation"

AI_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_EMOTION_AI_TIMEOUT = 5.0


def _rec(cid: str, cname: str, severity: str, message: str, suggestion: str) -> ValidationRecommendation:
    return ValidationRecommendation(
        checkpoint_id=cid,
        checkpoint_name=cname,
        severity=severity,
        message=message,
        suggestion=suggestion,
        auto_fix_available=False,
    )


def _failed(cid: str, cname: str, message: str, recs: List[ValidationRecommendation], **metadata: Any) -> CheckpointResult:
    return CheckpointResult(
        id=cid, name=cname, status="failed", passed=False,
        message=message, recommendations=recs, metadata=metadata,
    )


# ---------------------
# Content gate
# ---------------------

def content_checkpoint(content: Any, input_kind: str = "text") -> CheckpointResult:
    if not safety.is_text(content):
        return _failed(
            CONTENT_ID, CONTENT_NAME, "Content must be a string",
            [_rec(CONTENT_ID, CONTENT_NAME, "error", "Invalid content type detected",
                  "Content must be text or converted to text. Please try again with valid text input.")],
            actual_type=type(content).__name__,
        )

    trimmed = content.strip()
    if not trimmed:
        return _failed(
            CONTENT_ID, CONTENT_NAME, "Content cannot be empty",
            [_rec(CONTENT_ID, CONTENT_NAME, "error", "No content provided",
                  "Please describe your dream in detail. Include scenes, feelings, and any memorable moments.")],
            content_length=0,
        )

    recs: List[ValidationRecommendation] = []
    if len(trimmed) < safety.MIN_MEANINGFUL_CHARS:
        recs.append(_rec(
            CONTENT_ID, CONTENT_NAME, "warning", "Content is too brief for detailed interpretation",
            "For better dream interpretation, please provide at least 20 characters. "
            "Describe what you saw, how you felt, and any significant details.",
        ))

    cap = safety.input_cap()
    if len(trimmed) > cap:
        return _failed(
            CONTENT_ID, CONTENT_NAME, "Content exceeds maximum length",
            [_rec(CONTENT_ID, CONTENT_NAME, "error", "Dream description is too long",
                  f"Please keep your dream description under {cap:,} characters. "
                  "Focus on the most significant moments and emotions.")],
            content_length=len(trimmed), max_length=cap,
        )

    if safety.special_char_ratio(trimmed) > safety.SPECIAL_CHAR_RATIO_LIMIT:
        recs.append(_rec(
            CONTENT_ID, CONTENT_NAME, "warning", "Content contains many special characters",
            "Your dream description contains many special characters. "
            "Please use standard words and punctuation for better interpretation.",
        ))

    if safety.has_repeated_run(trimmed):
        return _failed(
            CONTENT_ID, CONTENT_NAME, "Content appears to contain gibberish",
            [_rec(CONTENT_ID, CONTENT_NAME, "error", "Repeated characters detected",
                  "Please provide a meaningful description of your dream using regular words and sentences.")],
            detected_pattern="repeated_characters",
        )

    return CheckpointResult(
        id=CONTENT_ID, name=CONTENT_NAME, status="passed", passed=True,
        message="Input content is valid", recommendations=recs,
        metadata={"content_length": len(trimmed), "input_kind": input_kind},
    )


# ---------------------
# Emotion gate
# ---------------------

class _Degrade(Exception):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def _ask_ai_for_emotions(text_service: Any, content: str, timeout_seconds: float) -> Dict[str, Any]:
    """
    One classification request raced against the deadline.
    Raises _Degrade(reason) for anything that isn't a usable verdict.
    """
    prompt = emotion_detection_prompt(content)
    try:
        raw = first_settled(lambda: text_service.generate_text(prompt),
                            timeout_seconds=timeout_seconds, name="emotion-ai")
    except DeadlineExceeded:
        raise _Degrade("timeout") from None
    except text_gen.EmptyResponse:
        raise _Degrade("no_text") from None
    except Exception as e:
        log.warning("Emotion AI request failed: %s", e)
        raise _Degrade("service_error") from None

    reply = text_gen.extract_text(raw)
    if not reply:
        raise _Degrade("no_text")

    try:
        verdict = text_gen.parse_json_text(reply)
    except ValueError:
        raise _Degrade("parse_error") from None

    if not isinstance(verdict, dict) or not isinstance(verdict.get("hasEmotionalContent"), bool):
        raise _Degrade("invalid_structure")

    if not isinstance(verdict.get("detectedEmotions"), list):
        verdict["detectedEmotions"] = []
    conf = verdict.get("confidence")
    if isinstance(conf, bool) or not isinstance(conf, (int, float)):
        verdict["confidence"] = 0.7 if verdict["hasEmotionalContent"] else 0.3
    return verdict


def emotion_checkpoint(
    content: str,
    *,
    text_service: Any = None,
    use_ai_fallback: bool = True,
    timeout_seconds: float = DEFAULT_EMOTION_AI_TIMEOUT,
) -> CheckpointResult:
    rule = emotion.validate_emotional_content(content)
    detected = list(rule["detected_emotions"])  # type: ignore[arg-type]

    if rule["is_valid"]:
        return CheckpointResult(
            id=EMOTION_ID, name=EMOTION_NAME, status="passed", passed=True,
            message=f"Detected {len(detected)} emotion(s)",
            metadata={
                "method": "rule_based",
                "detected_emotions": detected,
                "emotion_categories": emotion.categorize_emotions(detected),
            },
        )

    long_enough = isinstance(content, str) and len(content.strip()) >= safety.MIN_MEANINGFUL_CHARS
    degrade_reason: Optional[str] = None

    if use_ai_fallback and text_service is not None and long_enough:
        try:
            verdict = _ask_ai_for_emotions(text_service, content, timeout_seconds)
        except _Degrade as d:
            degrade_reason = d.reason
            log.info("Emotion AI fallback degraded to keyword result (%s)", d.reason)
        else:
            conf = float(verdict["confidence"])
            emotions_ai = [str(e) for e in verdict["detectedEmotions"]]
            if verdict["hasEmotionalContent"] and conf >= AI_CONFIDENCE_THRESHOLD:
                return CheckpointResult(
                    id=EMOTION_ID, name=EMOTION_NAME, status="passed", passed=True,
                    message=f"AI detected {len(emotions_ai)} emotion(s) ({round(conf * 100)}% confidence)",
                    metadata={"method": "ai_fallback_success", "detected_emotions": emotions_ai, "confidence": conf},
                )
            suggestion = verdict.get("suggestion")
            if not isinstance(suggestion, str) or not suggestion.strip():
                suggestion = emotion.MSG_NO_EMOTION
            return _failed(
                EMOTION_ID, EMOTION_NAME, "No emotional content detected",
                [_rec(EMOTION_ID, EMOTION_NAME, "error", "Insufficient emotional content detected", suggestion)],
                method="ai_fallback_insufficient_emotions", confidence=conf,
            )

    metadata: Dict[str, Any] = {"method": "rule_based_fallback_fail", "detected_emotions": detected}
    if degrade_reason:
        metadata["degrade_reason"] = degrade_reason
    return _failed(
        EMOTION_ID, EMOTION_NAME, "No emotional content detected",
        [_rec(EMOTION_ID, EMOTION_NAME, "error", "Insufficient emotional content detected",
              str(rule["suggestion"] or emotion.MSG_NO_EMOTION))],
        **metadata,
    )


# ---------------------
# Usage gate
# ---------------------

def _count_ok(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v >= 0


def usage_checkpoint(ctx: SubmissionContext, tiers: TierTable) -> CheckpointResult:
    try:
        caps = tiers.lookup(ctx.subscription_tier)
    except KeyError:
        caps = None

    used = ctx.lifetime_usage_count if (caps and caps.is_lifetime_limit) else ctx.period_usage_count
    bonus = ctx.referral_bonus

    if caps is None or not _count_ok(used) or not _count_ok(bonus) \
            or (ctx.usage_limit is not None and not _count_ok(ctx.usage_limit)):
        log.warning("Malformed usage data for user=%s tier=%r", ctx.user_id, ctx.subscription_tier)
        return _failed(
            USAGE_ID, USAGE_NAME, "Invalid subscription data",
            [_rec(USAGE_ID, USAGE_NAME, "error", "Failed to validate subscription limits",
                  "Please refresh the page and try again. If the issue persists, contact support.")],
            code="INVALID_USAGE_DATA",
        )

    limit = ctx.usage_limit if ctx.usage_limit is not None else caps.usage_limit
    if limit is not None and caps.is_lifetime_limit:
        limit += bonus

    meta = {"used": used, "limit": limit, "tier": caps.tier}

    if limit is not None and used >= limit:
        if caps.is_lifetime_limit:
            reason = f"You've used all {limit} lifetime dream analyses. Upgrade to continue."
            headline = f"Lifetime dream analysis limit reached on the {caps.tier} plan"
        else:
            reason = f"Monthly limit of {limit} analyses reached. Upgrade for more."
            headline = f"Monthly dream analysis limit reached on the {caps.tier} plan"
        return _failed(
            USAGE_ID, USAGE_NAME, reason,
            [_rec(USAGE_ID, USAGE_NAME, "error", headline, reason)],
            code="USAGE_LIMIT_REACHED", remaining=0, **meta,
        )

    remaining = None if limit is None else limit - used
    msg = (
        "Subscription validated: unlimited analyses"
        if remaining is None
        else f"Subscription validated: {remaining} analyses remaining"
    )
    return CheckpointResult(
        id=USAGE_ID, name=USAGE_NAME, status="passed", passed=True,
        message=msg, metadata={"remaining": remaining, **meta},
    )


# ---------------------
# Aggregation (content + emotion preview)
# ---------------------

def summarize(checkpoints: List[CheckpointResult]) -> ValidationCheckpointResult:
    recs = [r for cp in checkpoints for r in cp.recommendations]
    all_passed = all(cp.passed for cp in checkpoints)
    critical = [r for r in recs if r.severity == "error"]

    if all_passed:
        overall = "All validation checkpoints passed"
    elif critical:
        overall = f"Validation failed: {len(critical)} critical issue(s) found"
    else:
        overall = f"Validation passed with {len(recs)} warning(s)"

    return ValidationCheckpointResult(
        is_valid=all_passed and not critical,
        checkpoints=checkpoints,
        recommendations=recs,
        overall_message=overall,
    )


def run_preview_checkpoints(
    content: Any,
    input_kind: str = "text",
    *,
    text_service: Any = None,
    use_ai_fallback: bool = True,
    timeout_seconds: float = DEFAULT_EMOTION_AI_TIMEOUT,
) -> ValidationCheckpointResult:
    """Content then emotion; emotion is skipped when content fails."""
    first = content_checkpoint(content, input_kind)
    if first.passed:
        second = emotion_checkpoint(
            content, text_service=text_service,
            use_ai_fallback=use_ai_fallback, timeout_seconds=timeout_seconds,
        )
    else:
        second = CheckpointResult(
            id=EMOTION_ID, name=EMOTION_NAME, status="skipped", passed=False,
            message="Skipped due to previous checkpoint failure",
        )
    return summarize([first, second])
