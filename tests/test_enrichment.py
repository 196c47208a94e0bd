import threading

import pytest

from conftest import PATTERN_PROMPT, ScriptedTextService, pattern_json
from dreamlib import enrichment
from models import DreamRecord, TierTable

import config


def _dream(**kw):
    base = dict(
        id="dream-1", user_id="user-1", title="Flight", description="I was flying over water",
        input_type="text", interpretation="freedom", tags=["ocean", "flight"],
        created_at="2026-10-19T09:30:00.000000Z", updated_at="2026-10-19T09:30:00.000000Z",
    )
    base.update(kw)
    return DreamRecord(**base)


# ---- dispatchers ----

def test_inline_dispatcher_isolates_errors():
    def boom():
        raise RuntimeError("db locked")

    handle = enrichment.InlineDispatcher().dispatch("job", boom)
    assert handle.done is True
    assert handle.ok is False
    assert handle.error == "RuntimeError: db locked"


def test_background_dispatcher_keeps_running_after_a_failure():
    ran = []
    d = enrichment.BackgroundDispatcher()
    try:
        bad = d.dispatch("bad", lambda: 1 / 0)
        good = d.dispatch("good", lambda: ran.append("good"))
        assert good.wait(5)
        assert bad.done and not bad.ok
        assert "ZeroDivisionError" in bad.error
        assert good.ok
        assert ran == ["good"]
    finally:
        d.close()


def test_background_dispatcher_runs_off_the_calling_thread():
    seen = []
    d = enrichment.BackgroundDispatcher()
    try:
        d.dispatch("where", lambda: seen.append(threading.current_thread().name))
        d.join()
    finally:
        d.close()
    assert seen == ["enrichment-worker"]


# ---- symbol garden ----

def test_water_symbols_creates_then_increments(store):
    assert enrichment.water_symbols(store, "user-1", "First", ["Ocean", "ocean", "x", " Flight "]) == 2
    sym = store.get_symbol("user-1", "ocean")
    assert sym["occurrence_count"] == 1
    assert sym["contexts"] == ['From dream: "First"']

    enrichment.water_symbols(store, "user-1", "Second", ["ocean"])
    sym = store.get_symbol("user-1", "ocean")
    assert sym["occurrence_count"] == 2
    assert sym["contexts"][-1] == 'Appeared again in: "Second"'


def test_repeated_context_is_not_duplicated(store):
    enrichment.water_symbols(store, "u", "First", ["moon"])
    enrichment.water_symbols(store, "u", "Again", ["moon"])
    enrichment.water_symbols(store, "u", "Again", ["moon"])
    sym = store.get_symbol("u", "moon")
    assert sym["occurrence_count"] == 3
    assert sym["contexts"].count('Appeared again in: "Again"') == 1


def test_symbol_contexts_capped_at_twenty(store):
    for i in range(25):
        enrichment.water_symbols(store, "u", f"Dream {i}", ["moon"])
    sym = store.get_symbol("u", "moon")
    assert sym["occurrence_count"] == 25
    assert len(sym["contexts"]) == enrichment.SYMBOL_CONTEXT_LIMIT
    assert sym["contexts"][-1] == 'Appeared again in: "Dream 24"'


def test_one_bad_symbol_does_not_stop_the_rest(store, monkeypatch):
    real = store.create_symbol

    def flaky(user_id, symbol, contexts):
        if symbol == "bad":
            raise RuntimeError("constraint failed")
        return real(user_id, symbol, contexts)

    monkeypatch.setattr(store, "create_symbol", flaky)
    assert enrichment.water_symbols(store, "u", "T", ["bad", "good"]) == 1
    assert store.get_symbol("u", "good") is not None


# ---- pattern detection ----

def test_parse_pattern_clamps_and_normalizes():
    p = enrichment.parse_pattern({"type": "Weird", "themes": ["Fall", None, "", "Sea"], "confidence": 3})
    assert p.type == "normal"
    assert p.themes == ["fall", "sea"]
    assert p.confidence == 1.0

    with pytest.raises(ValueError):
        enrichment.parse_pattern(["nope"])


def test_detect_pattern_bumps_themes_and_flags_recurring(store):
    svc = ScriptedTextService({PATTERN_PROMPT: [pattern_json(themes=["Falling"], confidence=0.85)]})
    enrichment.detect_pattern(svc, store, _dream())
    enrichment.detect_pattern(svc, store, _dream(id="dream-2"))

    assert store.list_themes("user-1")[0]["count"] == 2
    rows = store.list_patterns("user-1")
    assert len(rows) == 2
    assert all(r["is_recurring"] == 1 for r in rows)
    assert all(r["is_nightmare"] == 0 for r in rows)


def test_detect_pattern_nightmare(store):
    svc = ScriptedTextService({PATTERN_PROMPT: [pattern_json(type="nightmare", confidence=0.5)]})
    pattern = enrichment.detect_pattern(svc, store, _dream())
    assert pattern.type == "nightmare"
    row = store.list_patterns("user-1")[0]
    assert (row["is_nightmare"], row["is_recurring"]) == (1, 0)


def test_dispatch_enrichment_jobs_by_tier(store):
    tiers = TierTable(config.DEFAULT_TIERS)
    svc = ScriptedTextService()

    handles = enrichment.dispatch_enrichment(
        enrichment.InlineDispatcher(), store=store, text_service=svc, dream=_dream(), caps=tiers.lookup("pro"),
    )
    assert [h.name for h in handles] == ["pattern_detection", "usage_counters"]

    handles = enrichment.dispatch_enrichment(
        enrichment.InlineDispatcher(), store=store, text_service=svc, dream=_dream(id="dream-2"),
        caps=tiers.lookup("premium"),
    )
    assert [h.name for h in handles] == ["symbol_watering", "pattern_detection", "usage_counters"]
    assert all(h.ok for h in handles)
    assert store.get_usage("user-1")["lifetime_usage_count"] == 2


def test_failed_pattern_job_does_not_block_usage_counter(store):
    svc = ScriptedTextService({PATTERN_PROMPT: ["not json"]})
    handles = enrichment.dispatch_enrichment(
        enrichment.InlineDispatcher(), store=store, text_service=svc, dream=_dream(),
        caps=TierTable(config.DEFAULT_TIERS).lookup("pro"),
    )
    by_name = {h.name: h for h in handles}
    assert by_name["pattern_detection"].ok is False
    assert by_name["usage_counters"].ok is True
    assert store.get_usage("user-1")["period_usage_count"] == 1
