import io

from PIL import Image

from conftest import (
    EMOTION_PROMPT,
    INTERPRETATION_PROMPT,
    PATTERN_PROMPT,
    TAGS_PROMPT,
    TITLE_PROMPT,
    FailingStore,
    ScriptedImageService,
    ScriptedTextService,
)
from dreamlib import checkpoints


def test_happy_path_saves_once_and_enriches(make_pipeline, make_ctx, store, text_service, image_service):
    pipeline = make_pipeline()
    out = pipeline.submit(make_ctx())

    assert out.ok is True
    assert out.message == "Dream saved"
    dream = out.dream
    assert dream.title == "Flight Over Dark Waters"
    assert dream.tags == ["ocean", "flight", "fear"]
    assert dream.interpretation == "This could suggest a longing for freedom and open space."
    assert dream.image_url == "https://img.test/dream.png"
    assert dream.created_at == "2026-10-19T09:30:00.000000Z"
    assert dream.input_type == "text"

    assert store.create_calls == 1
    assert store.get_dream("dream-1") == dream
    assert text_service.calls == [TITLE_PROMPT, TAGS_PROMPT, "structured", PATTERN_PROMPT]
    assert len(image_service.prompts) == 1

    assert [h.name for h in pipeline.last_enrichment] == ["pattern_detection", "usage_counters"]
    assert all(h.ok for h in pipeline.last_enrichment)
    assert store.get_usage("user-1")["lifetime_usage_count"] == 1
    assert sorted(t["theme"] for t in store.list_themes("user-1")) == ["flight", "water"]
    assert store.api_usage_totals("user-1")["operations"] == 5


def test_content_gate_stops_everything(make_pipeline, make_ctx, store, text_service):
    out = make_pipeline().submit(make_ctx(raw_input="   "))
    assert out.ok is False
    assert out.failed_stage == checkpoints.CONTENT_ID
    assert out.error_code == "INVALID_INPUT"
    assert out.validation.is_valid is False
    assert text_service.calls == []
    assert store.create_calls == 0


def test_emotion_gate_rejects_flat_description(make_pipeline, make_ctx, store):
    svc = ScriptedTextService({EMOTION_PROMPT: ['{"hasEmotionalContent": false, "confidence": 0.1}']})
    out = make_pipeline(text_service=svc).submit(
        make_ctx(raw_input="A tower of glass rose from the sea at midnight")
    )
    assert out.ok is False
    assert out.failed_stage == checkpoints.EMOTION_ID
    assert out.error_code == "INSUFFICIENT_EMOTION"
    assert out.recommendations
    assert svc.calls == [EMOTION_PROMPT]
    assert store.create_calls == 0


def test_free_user_at_limit_makes_no_generation_calls(make_pipeline, make_ctx, store, text_service, image_service):
    out = make_pipeline().submit(make_ctx(subscription_tier="free", lifetime_usage_count=2))
    assert out.ok is False
    assert out.failed_stage == checkpoints.USAGE_ID
    assert out.error_code == "USAGE_LIMIT_REACHED"
    assert out.usage.passed is False
    assert text_service.calls == []
    assert image_service.prompts == []
    assert store.create_calls == 0
    assert store.api_usage_totals("user-1")["operations"] == 0


def test_unknown_tier_is_invalid_usage_data(make_pipeline, make_ctx):
    out = make_pipeline().submit(make_ctx(subscription_tier="platinum"))
    assert out.ok is False
    assert out.error_code == "INVALID_USAGE_DATA"


def test_title_fallback_still_saves(make_pipeline, make_ctx, sleep):
    svc = ScriptedTextService({TITLE_PROMPT: [RuntimeError("429 rate limit")]})
    out = make_pipeline(text_service=svc).submit(make_ctx())
    assert out.ok is True
    assert out.title.used_fallback is True
    assert out.dream.title == "Was flying over dark ocean"
    assert sleep.delays[0] == 2.0


def test_interpretation_failure_aborts_without_write(make_pipeline, make_ctx, store, sleep, image_service):
    svc = ScriptedTextService(
        routes={INTERPRETATION_PROMPT: [RuntimeError("503 service unavailable")]},
        structured=[RuntimeError("503 service unavailable")],
    )
    out = make_pipeline(text_service=svc).submit(make_ctx())
    assert out.ok is False
    assert out.failed_stage == "interpretation"
    assert out.error_code == "INTERPRETATION_FAILED"
    assert out.title.title == "Flight Over Dark Waters"
    assert sleep.delays == [1.0, 2.0]
    assert image_service.prompts == []
    assert store.create_calls == 0
    assert store.get_usage("user-1")["lifetime_usage_count"] == 0


def test_image_failure_does_not_block_save(make_pipeline, make_ctx, sleep):
    images = ScriptedImageService([RuntimeError("503 service unavailable")])
    out = make_pipeline(image_service=images).submit(make_ctx())
    assert out.ok is True
    assert out.dream.image_url is None
    assert out.image.success is False
    assert "(Attempt 3/3)" in out.image.error_message
    assert sleep.delays == [6.0, 12.0]


def test_free_tier_without_promo_gets_no_image(make_pipeline, make_ctx, image_service):
    out = make_pipeline().submit(make_ctx(subscription_tier="free"))
    assert out.ok is True
    assert out.image is None
    assert out.dream.image_url is None
    assert image_service.prompts == []


def test_promotional_image_is_watermarked_through_blob_storage(make_pipeline, make_ctx, blob):
    buf = io.BytesIO()
    Image.new("RGB", (256, 256), (20, 40, 80)).save(buf, format="PNG")
    src = blob.upload(buf.getvalue(), "dreams/src.png")

    out = make_pipeline(image_service=ScriptedImageService([[{"url": src}]])).submit(
        make_ctx(subscription_tier="free", has_promotional_entitlement=True)
    )
    assert out.ok is True
    assert out.image.watermarked is True
    assert out.dream.image_url.startswith("https://blob.test/dreams/user-1/watermarked-")


def test_uploaded_image_skips_generation(make_pipeline, make_ctx, image_service):
    out = make_pipeline().submit(make_ctx(uploaded_image_url="https://cdn.test/mine.jpg"))
    assert out.ok is True
    assert out.dream.image_url == "https://cdn.test/mine.jpg"
    assert image_service.prompts == []


def test_integrity_failure_blocks_write(make_pipeline, make_ctx, store):
    out = make_pipeline().submit(make_ctx(uploaded_image_url="ftp://files.test/a.png"))
    assert out.ok is False
    assert out.failed_stage == "integrity"
    assert out.error_code == "INTEGRITY_FAILED"
    assert "image_url" in out.integrity.invalid_fields
    assert store.create_calls == 0


def test_persistence_failure_skips_enrichment(make_pipeline, make_ctx, tmp_path):
    failing = FailingStore(str(tmp_path / "broken.sqlite"))
    pipeline = make_pipeline(store=failing)
    out = pipeline.submit(make_ctx())
    assert out.ok is False
    assert out.failed_stage == "persistence"
    assert out.message == "Failed to save your dream. Please try again."
    assert failing.create_calls == 1
    assert pipeline.last_enrichment == []
    assert failing.get_usage("user-1")["lifetime_usage_count"] == 0


def test_duplicate_submission_fails_at_write(make_pipeline, make_ctx, store):
    pipeline = make_pipeline()
    assert pipeline.submit(make_ctx()).ok is True
    again = pipeline.submit(make_ctx())
    assert again.ok is False
    assert again.failed_stage == "persistence"
    assert store.count_dreams("user-1") == 1
    assert store.get_usage("user-1")["lifetime_usage_count"] == 1


def test_enrichment_failure_is_isolated(make_pipeline, make_ctx, store):
    svc = ScriptedTextService({PATTERN_PROMPT: ["definitely not json"]})
    pipeline = make_pipeline(text_service=svc)
    out = pipeline.submit(make_ctx())
    assert out.ok is True
    by_name = {h.name: h for h in pipeline.last_enrichment}
    assert by_name["pattern_detection"].ok is False
    assert by_name["usage_counters"].ok is True
    assert store.get_dream("dream-1") is not None


def test_premium_user_waters_symbol_garden(make_pipeline, make_ctx, store):
    pipeline = make_pipeline()
    out = pipeline.submit(make_ctx(subscription_tier="premium"))
    assert out.ok is True
    assert [h.name for h in pipeline.last_enrichment][0] == "symbol_watering"
    assert sorted(s["symbol"] for s in store.list_symbols("user-1")) == ["fear", "flight", "ocean"]


def test_voice_input_is_treated_as_text(make_pipeline, make_ctx):
    out = make_pipeline().submit(make_ctx(input_kind="voice"))
    assert out.ok is True
    assert out.dream.input_type == "text"


def test_validate_preview_does_not_touch_usage(make_pipeline, store):
    res = make_pipeline().validate("I felt happy walking through a sunny meadow")
    assert res.is_valid is True
    assert store.api_usage_totals("user-1")["operations"] == 0
