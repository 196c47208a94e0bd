# models.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, field_validator

CheckpointStatus = Literal["pending", "validating", "passed", "failed", "skipped"]
Severity = Literal["error", "warning", "suggestion"]
InputKind = Literal["text", "symbols", "image"]

INPUT_KINDS = ("text", "symbols", "image")


class SubmissionContext(BaseModel):
    """
    Everything one pipeline run needs to know about the submitter.
    Built per request, never persisted.
    """
    user_id: str
    dream_id: str
    subscription_tier: str = "free"
    has_promotional_entitlement: bool = False
    period_usage_count: int = 0
    lifetime_usage_count: int = 0
    usage_limit: Optional[int] = None
    referral_bonus: int = 0
    raw_input: Any = ""
    input_kind: InputKind = "text"
    uploaded_image_url: Optional[str] = None
    symbols_data: Optional[str] = None

    @field_validator("input_kind", mode="before")
    @classmethod
    def _voice_is_text(cls, v: Any) -> Any:
        # Dictated dreams arrive already transcribed
        if isinstance(v, str) and v.strip().lower() == "voice":
            return "text"
        return v


class ValidationRecommendation(BaseModel):
    checkpoint_id: str
    checkpoint_name: str = ""
    severity: Severity
    message: str
    suggestion: str = ""
    auto_fix_available: bool = False


class CheckpointResult(BaseModel):
    id: str
    name: str
    status: CheckpointStatus = "pending"
    passed: bool = False
    message: str = ""
    recommendations: List[ValidationRecommendation] = []
    metadata: Dict[str, Any] = {}


class ValidationCheckpointResult(BaseModel):
    is_valid: bool
    checkpoints: List[CheckpointResult] = []
    recommendations: List[ValidationRecommendation] = []
    overall_message: str = ""


class TitleGenerationResult(BaseModel):
    title: str
    used_fallback: bool = False
    fallback_reason: Optional[str] = None
    tokens_used: int = 0
    cost_usd: float = 0.0


class ImageGenerationResult(BaseModel):
    image_url: str = ""
    success: bool = False
    retry_count: int = 0
    fallback_used: bool = False
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    tokens_used: Optional[int] = None
    cost_usd: Optional[float] = None
    watermarked: bool = False


class ImageGenerationError(BaseModel):
    code: str
    user_message: str
    technical_message: str
    suggestion: str = ""
    is_retryable: bool = True


class DreamRecord(BaseModel):
    id: str
    user_id: str
    title: str
    description: str
    input_type: str
    image_url: Optional[str] = None
    symbols_data: Optional[str] = None
    interpretation: str
    tags: List[str] = []
    created_at: str
    updated_at: str


class IntegrityReport(BaseModel):
    is_valid: bool
    can_save: bool
    missing_fields: List[str] = []
    invalid_fields: Dict[str, str] = {}
    recommendations: List[str] = []


class DreamPattern(BaseModel):
    type: Literal["nightmare", "recurring", "normal"] = "normal"
    themes: List[str] = []
    emotions: List[str] = []
    symbols: List[str] = []
    confidence: float = 0.0


class TierCapabilities(BaseModel):
    tier: str
    usage_limit: Optional[int] = None
    is_lifetime_limit: bool = False
    image_entitled: bool = False
    symbol_garden_entitled: bool = False
    advanced_pattern_detection: bool = False

    @property
    def is_paid(self) -> bool:
        return self.tier != "free"


class TierTable:
    """Pure tier -> capabilities lookup, handed to the pipeline by its owner."""

    def __init__(self, tiers: Mapping[str, Mapping[str, Any]]):
        self._tiers = {
            str(name).lower(): TierCapabilities(tier=str(name).lower(), **dict(caps))
            for name, caps in tiers.items()
        }

    def __contains__(self, tier: object) -> bool:
        return isinstance(tier, str) and tier.lower() in self._tiers

    def lookup(self, tier: str) -> TierCapabilities:
        key = (tier or "").strip().lower()
        if key not in self._tiers:
            raise KeyError(f"Unknown subscription tier: {tier!r}")
        return self._tiers[key]

    def tiers(self) -> List[str]:
        return list(self._tiers)


class SubmissionOutcome(BaseModel):
    """What the caller of DreamSubmissionPipeline.submit gets back."""
    ok: bool
    dream: Optional[DreamRecord] = None
    failed_stage: Optional[str] = None
    error_code: Optional[str] = None
    message: str = ""
    recommendations: List[ValidationRecommendation] = []
    validation: Optional[ValidationCheckpointResult] = None
    usage: Optional[CheckpointResult] = None
    title: Optional[TitleGenerationResult] = None
    image: Optional[ImageGenerationResult] = None
    tags: List[str] = []
    integrity: Optional[IntegrityReport] = None


# ---- HTTP request bodies ----

class DreamSubmitRequest(BaseModel):
    user_id: str
    text: str
    input_kind: str = "text"
    uploaded_image_url: Optional[str] = None
    symbols_data: Optional[str] = None


class DreamValidateRequest(BaseModel):
    text: Any = ""
    input_kind: str = "text"
    use_ai_fallback: bool = True
