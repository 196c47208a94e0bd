# dreamlib/pipeline.py
from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import image_gen
from dreamlib import checkpoints, enrichment
from dreamlib.costs import UsageLedger
from dreamlib.errors import GateRejected, IntegrityError, PersistenceError, PipelineError
from dreamlib.integrity import check_record
from dreamlib.interpretation import synthesize_interpretation
from dreamlib.tags import extract_tags
from dreamlib.titles import synthesize_title
from dreamlib.visual import image_entitled, synthesize_visual
from models import (
    DreamRecord,
    SubmissionContext,
    SubmissionOutcome,
    TierTable,
    ValidationCheckpointResult,
)

log = logging.getLogger("pipeline")


# ============================================================
# Collaborators
# ============================================================

class TextService(Protocol):
    def generate_text(self, prompt: str) -> str: ...

    def generate_structured(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]: ...


class ImageService(Protocol):
    def generate_image(self, prompt: str) -> List[Dict[str, str]]: ...


class BlobStorage(Protocol):
    def upload(self, data: bytes, path: str) -> str: ...


class DreamSink(Protocol):
    def create_dream(self, record: DreamRecord) -> Any: ...


class Dispatcher(Protocol):
    def dispatch(self, name: str, fn: Callable[[], Any]) -> enrichment.EnrichmentHandle: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# Orchestrator
# ============================================================

class DreamSubmissionPipeline:
    """
    Gates, generation stages, one write, then post-write enrichment.

    submit() never raises for a rejected or failed submission; the outcome
    carries the failing stage and its user-facing message. Programming
    errors still propagate.
    """

    def __init__(
        self,
        *,
        text_service: TextService,
        image_service: Optional[ImageService],
        store: Any,
        tiers: TierTable,
        blob_storage: Optional[BlobStorage] = None,
        dispatcher: Optional[Dispatcher] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utc_now,
        emotion_ai_fallback: bool = True,
        emotion_timeout_seconds: float = checkpoints.DEFAULT_EMOTION_AI_TIMEOUT,
        text_model: str = "gpt-4.1-mini",
        image_model: str = "gpt-image-1-mini",
        prompt_budget: int = 1000,
        watermark_text: Optional[str] = None,
    ):
        self.text_service = text_service
        self.image_service = image_service
        self.store = store
        self.tiers = tiers
        self.blob_storage = blob_storage
        self.dispatcher = dispatcher or enrichment.InlineDispatcher()
        self.sleep = sleep
        self.rng = rng
        self.clock = clock
        self.emotion_ai_fallback = emotion_ai_fallback
        self.emotion_timeout_seconds = emotion_timeout_seconds
        self.text_model = text_model
        self.image_model = image_model
        self.prompt_budget = prompt_budget
        self.watermark_text = watermark_text
        self.ledger = UsageLedger(store)
        self.last_enrichment: List[enrichment.EnrichmentHandle] = []

    # ---------------------
    # Preview (content + emotion only, no usage, no generation)
    # ---------------------

    def validate(
        self,
        content: Any,
        input_kind: str = "text",
        *,
        use_ai_fallback: Optional[bool] = None,
    ) -> ValidationCheckpointResult:
        use_ai = self.emotion_ai_fallback if use_ai_fallback is None else use_ai_fallback
        return checkpoints.run_preview_checkpoints(
            content,
            input_kind,
            text_service=self.text_service,
            use_ai_fallback=use_ai,
            timeout_seconds=self.emotion_timeout_seconds,
        )

    # ---------------------
    # Full submission
    # ---------------------

    def submit(self, ctx: SubmissionContext) -> SubmissionOutcome:
        state: Dict[str, Any] = {}
        try:
            dream = self._run(ctx, state)
        except PipelineError as e:
            log.info("Submission dream=%s user=%s stopped at %s (%s): %s",
                     ctx.dream_id, ctx.user_id, e.stage, e.code, e)
            return SubmissionOutcome(
                ok=False,
                failed_stage=e.stage,
                error_code=e.code,
                message=e.user_message,
                recommendations=e.recommendations,
                **state,
            )

        self.last_enrichment = self._enrich(ctx, dream)
        return SubmissionOutcome(ok=True, dream=dream, message="Dream saved", **state)

    def _run(self, ctx: SubmissionContext, state: Dict[str, Any]) -> DreamRecord:
        # Gates
        content_cp = checkpoints.content_checkpoint(ctx.raw_input, ctx.input_kind)
        if not content_cp.passed:
            state["validation"] = checkpoints.summarize([content_cp])
            raise GateRejected(content_cp, "INVALID_INPUT")

        emotion_cp = checkpoints.emotion_checkpoint(
            ctx.raw_input,
            text_service=self.text_service,
            use_ai_fallback=self.emotion_ai_fallback,
            timeout_seconds=self.emotion_timeout_seconds,
        )
        state["validation"] = checkpoints.summarize([content_cp, emotion_cp])
        if not emotion_cp.passed:
            raise GateRejected(emotion_cp, "INSUFFICIENT_EMOTION")

        usage_cp = checkpoints.usage_checkpoint(ctx, self.tiers)
        state["usage"] = usage_cp
        if not usage_cp.passed:
            raise GateRejected(usage_cp, str(usage_cp.metadata.get("code") or "USAGE_LIMIT_REACHED"))

        caps = self.tiers.lookup(ctx.subscription_tier)
        dream_text = ctx.raw_input.strip()
        ids = {"user_id": ctx.user_id, "dream_id": ctx.dream_id}

        # Generation
        title_res = synthesize_title(
            self.text_service, dream_text,
            model=self.text_model, sleep=self.sleep, ledger=self.ledger,
            now=self.clock(), **ids,
        )
        state["title"] = title_res

        tags = extract_tags(self.text_service, title_res.title, dream_text,
                            model=self.text_model, ledger=self.ledger, **ids)
        state["tags"] = tags

        interpretation = synthesize_interpretation(
            self.text_service, title_res.title, dream_text, tags,
            model=self.text_model, sleep=self.sleep, ledger=self.ledger, **ids,
        )

        image_url: Optional[str] = ctx.uploaded_image_url
        if self.image_service is not None and image_entitled(ctx, caps):
            image_res = synthesize_visual(
                self.image_service, ctx, caps, title_res.title, dream_text,
                watermark=self._watermarker(ctx),
                rng=self.rng, sleep=self.sleep, ledger=self.ledger,
                prompt_budget=self.prompt_budget, model=self.image_model,
            )
            state["image"] = image_res
            if image_res.success:
                image_url = image_res.image_url

        # Integrity
        now_iso = self.clock().strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        candidate: Dict[str, Any] = {
            "id": ctx.dream_id,
            "user_id": ctx.user_id,
            "title": title_res.title,
            "description": dream_text,
            "input_type": ctx.input_kind,
            "image_url": image_url or None,
            "symbols_data": ctx.symbols_data,
            "interpretation": interpretation,
            "tags": tags,
            "created_at": now_iso,
            "updated_at": now_iso,
        }
        report = check_record(candidate)
        state["integrity"] = report
        if not report.can_save:
            raise IntegrityError(report)

        # The one write
        record = DreamRecord(**candidate)
        try:
            self.store.create_dream(record)
        except Exception as e:
            log.error("Persisting dream=%s failed: %s", ctx.dream_id, e)
            raise PersistenceError(f"create_dream failed: {type(e).__name__}: {e}") from e
        log.info("Dream %s saved for user=%s (title=%r, image=%s)",
                 record.id, record.user_id, record.title, bool(record.image_url))
        return record

    def _watermarker(self, ctx: SubmissionContext) -> Optional[Callable[[str], str]]:
        if self.blob_storage is None:
            return None
        blob = self.blob_storage

        def _apply(url: str) -> str:
            return image_gen.apply_watermark(url, blob, user_id=ctx.user_id, text=self.watermark_text)

        return _apply

    def _enrich(self, ctx: SubmissionContext, dream: DreamRecord) -> List[enrichment.EnrichmentHandle]:
        try:
            return enrichment.dispatch_enrichment(
                self.dispatcher,
                store=self.store,
                text_service=self.text_service,
                dream=dream,
                caps=self.tiers.lookup(ctx.subscription_tier),
                model=self.text_model,
                ledger=self.ledger,
            )
        except Exception:
            log.exception("Dispatching enrichment for dream=%s failed", dream.id)
            return []
