# engine.py
# Wires OpenAI, sqlite and local blob storage into a DreamSubmissionPipeline.
from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

import config
from dreamlib.enrichment import BackgroundDispatcher, InlineDispatcher
from dreamlib.pipeline import DreamSubmissionPipeline
from image_gen import OpenAIImageService
from models import SubmissionContext, TierTable
from storage import DreamStore, LocalBlobStorage
from text_gen import OpenAITextService


def default_tier_table() -> TierTable:
    return TierTable(config.DEFAULT_TIERS)


def build_pipeline(
    *,
    db_path: Optional[str] = None,
    enrichment_mode: Optional[str] = None,
    emotion_ai_fallback: Optional[bool] = None,
    store: Optional[DreamStore] = None,
    session_id: str = "",
) -> DreamSubmissionPipeline:
    store = store or DreamStore(db_path or config.SQLITE_PATH)
    blob = LocalBlobStorage()
    mode = (enrichment_mode or config.ENRICHMENT_MODE).strip().lower()
    dispatcher = BackgroundDispatcher() if mode == "background" else InlineDispatcher()

    return DreamSubmissionPipeline(
        text_service=OpenAITextService(session_id=session_id),
        image_service=OpenAIImageService(blob),
        store=store,
        tiers=default_tier_table(),
        blob_storage=blob,
        dispatcher=dispatcher,
        emotion_ai_fallback=config.EMOTION_AI_FALLBACK if emotion_ai_fallback is None else emotion_ai_fallback,
        emotion_timeout_seconds=config.EMOTION_AI_TIMEOUT,
        text_model=config.TEXT_MODEL,
        image_model=config.IMAGE_MODEL,
        prompt_budget=config.IMAGE_PROMPT_BUDGET,
        watermark_text=config.WATERMARK_TEXT,
    )


def context_for_user(
    store: Any,
    *,
    user_id: str,
    text: Any,
    input_kind: str = "text",
    subscription_tier: Optional[str] = None,
    has_promotional_entitlement: Optional[bool] = None,
    referral_bonus: Optional[int] = None,
    uploaded_image_url: Optional[str] = None,
    symbols_data: Optional[str] = None,
    dream_id: Optional[str] = None,
) -> SubmissionContext:
    """
    Build a SubmissionContext from the stored usage row. Explicit arguments
    update the row first (tier, promo, referral bonus).
    """
    store.ensure_user(
        user_id,
        subscription_tier=subscription_tier,
        referral_bonus=referral_bonus,
        has_promo=has_promotional_entitlement,
    )
    usage: Dict[str, Any] = store.get_usage(user_id)
    return SubmissionContext(
        user_id=user_id,
        dream_id=dream_id or str(uuid.uuid4()),
        subscription_tier=usage["subscription_tier"],
        has_promotional_entitlement=bool(usage["has_promo"]),
        period_usage_count=int(usage["period_usage_count"]),
        lifetime_usage_count=int(usage["lifetime_usage_count"]),
        referral_bonus=int(usage["referral_bonus"]),
        raw_input=text,
        input_kind=input_kind,
        uploaded_image_url=uploaded_image_url,
        symbols_data=symbols_data,
    )
