# app.py
# HTTP surface for dream submission. Tier and entitlements are read from the
# store only; a request body cannot change them.
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

import config
import engine
from dreamlib.checkpoints import USAGE_ID
from dreamlib.pipeline import DreamSubmissionPipeline
from models import DreamSubmitRequest, DreamValidateRequest, SubmissionOutcome

log = logging.getLogger("app")

app = FastAPI(title="Dream Submission API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

# Generated (and watermarked) dream images, served from static/generated
app.mount("/generated", StaticFiles(directory=str(config.GENERATED_DIR)), name="generated")

_pipeline: Optional[DreamSubmissionPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> DreamSubmissionPipeline:
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = engine.build_pipeline()
        return _pipeline


@app.on_event("shutdown")
def _shutdown():
    if _pipeline is not None:
        close = getattr(_pipeline.dispatcher, "close", None)
        if close is not None:
            close()


def _status_for(outcome: SubmissionOutcome) -> int:
    if outcome.ok:
        return 201
    if outcome.failed_stage == "interpretation":
        return 502
    if outcome.failed_stage == "persistence":
        return 500
    if outcome.failed_stage == USAGE_ID and outcome.error_code == "USAGE_LIMIT_REACHED":
        return 402
    return 422


def _outcome_json(outcome: SubmissionOutcome) -> Dict[str, Any]:
    return outcome.model_dump(mode="json")


@app.post("/dreams/validate")
async def validate_dream(payload: DreamValidateRequest, pipeline: DreamSubmissionPipeline = Depends(get_pipeline)):
    result = await asyncio.to_thread(
        pipeline.validate, payload.text, payload.input_kind, use_ai_fallback=payload.use_ai_fallback,
    )
    return JSONResponse(result.model_dump(mode="json"))


@app.post("/dreams")
async def submit_dream(payload: DreamSubmitRequest, pipeline: DreamSubmissionPipeline = Depends(get_pipeline)):
    try:
        ctx = await asyncio.to_thread(
            engine.context_for_user,
            pipeline.store,
            user_id=payload.user_id,
            text=payload.text,
            input_kind=payload.input_kind,
            uploaded_image_url=payload.uploaded_image_url,
            symbols_data=payload.symbols_data,
        )
    except ValidationError as e:
        return JSONResponse({"ok": False, "message": "Invalid submission", "errors": e.errors(include_url=False)},
                            status_code=422)

    outcome = await asyncio.to_thread(pipeline.submit, ctx)
    return JSONResponse(_outcome_json(outcome), status_code=_status_for(outcome))


@app.get("/dreams/{dream_id}")
async def get_dream(dream_id: str, pipeline: DreamSubmissionPipeline = Depends(get_pipeline)):
    dream = await asyncio.to_thread(pipeline.store.get_dream, dream_id)
    if dream is None:
        raise HTTPException(status_code=404, detail="Dream not found")
    return JSONResponse(dream.model_dump(mode="json"))


@app.get("/users/{user_id}/dreams")
async def list_user_dreams(user_id: str, limit: int = 50, pipeline: DreamSubmissionPipeline = Depends(get_pipeline)):
    dreams = await asyncio.to_thread(pipeline.store.list_dreams, user_id, limit=max(1, min(limit, 200)))
    return JSONResponse({"user_id": user_id, "dreams": [d.model_dump(mode="json") for d in dreams]})


@app.get("/users/{user_id}/usage")
async def user_usage(user_id: str, pipeline: DreamSubmissionPipeline = Depends(get_pipeline)):
    store = pipeline.store

    def _collect() -> Dict[str, Any]:
        usage = store.get_usage(user_id)
        tier = usage["subscription_tier"]
        caps = pipeline.tiers.lookup(tier) if tier in pipeline.tiers else None
        limit = caps.usage_limit if caps else None
        if caps is not None and limit is not None and caps.is_lifetime_limit:
            limit += int(usage["referral_bonus"])
        used = usage["lifetime_usage_count"] if (caps and caps.is_lifetime_limit) else usage["period_usage_count"]
        return {
            "user_id": user_id,
            "subscription_tier": tier,
            "period_usage_count": usage["period_usage_count"],
            "lifetime_usage_count": usage["lifetime_usage_count"],
            "limit": limit,
            "remaining": None if limit is None else max(0, limit - used),
            "dreams_saved": store.count_dreams(user_id),
            "api_usage": store.api_usage_totals(user_id),
        }

    return JSONResponse(await asyncio.to_thread(_collect))
