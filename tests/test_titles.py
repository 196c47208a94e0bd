from datetime import datetime

import pytest

from conftest import TITLE_PROMPT, ScriptedTextService
from dreamlib.titles import fallback_title, guard_title, synthesize_title

NOW = datetime(2026, 3, 7, 12, 0, 0)


def test_guard_title_rules():
    assert guard_title("Hi") == (False, "Hi", "Dream title must be at least 3 characters")
    assert guard_title("   ")[0] is False
    assert guard_title(None)[0] is False
    assert guard_title("x" * 51)[0] is False
    assert guard_title("THE SILVER DOOR") == (True, "The silver door", "Title converted from all caps")
    assert guard_title("  Silver Door  ") == (True, "Silver Door", None)


def test_title_from_model(sleep):
    svc = ScriptedTextService({TITLE_PROMPT: ['"Silver Door at Dawn"']})
    res = synthesize_title(svc, "I opened a silver door and felt calm", sleep=sleep)
    assert res.title == "Silver Door at Dawn"
    assert res.used_fallback is False
    assert res.tokens_used > 0
    assert res.cost_usd > 0
    assert sleep.delays == []


def test_title_is_capped_at_five_words(sleep):
    svc = ScriptedTextService({TITLE_PROMPT: ["The Long Walk Through Endless Silver Halls"]})
    res = synthesize_title(svc, "I walked and walked and felt lost", sleep=sleep)
    assert res.title == "The Long Walk Through Endless"
    assert len(res.title.split()) <= 5


def test_all_caps_title_is_sentence_cased(sleep):
    svc = ScriptedTextService({TITLE_PROMPT: ["FALLING STARS"]})
    assert synthesize_title(svc, "stars were falling and I felt amazed", sleep=sleep).title == "Falling stars"


def test_failing_service_uses_first_meaningful_words(sleep):
    svc = ScriptedTextService({TITLE_PROMPT: [RuntimeError("network down")]})
    res = synthesize_title(svc, "I was in a big old house by the sea and felt afraid", sleep=sleep, now=NOW)
    assert res.used_fallback is True
    assert res.title == "Was big old house the"
    assert res.fallback_reason == "network down"
    assert svc.count(TITLE_PROMPT) == 2
    assert sleep.delays == [2.0]


def test_invalid_model_output_counts_as_failed_attempt(sleep):
    svc = ScriptedTextService({TITLE_PROMPT: ["", "Moonlit Garden"]})
    res = synthesize_title(svc, "a garden under the moon, I felt serene", sleep=sleep)
    assert res.title == "Moonlit Garden"
    assert res.used_fallback is False
    assert svc.count(TITLE_PROMPT) == 2
    assert sleep.delays == [2.0]


def test_fallback_short_text_uses_date():
    res = fallback_title("a b c of it", "AI generation failed", now=NOW)
    assert res.title == "Dream from 3/7/2026"
    assert res.used_fallback is True


def test_fallback_too_long_uses_timestamp():
    res = fallback_title(
        "Extraordinarily incomprehensible interdimensional transmogrification experiences",
        "AI generation failed", now=NOW,
    )
    assert res.title.startswith("Dream ")
    suffix = res.title.split(" ", 1)[1]
    assert len(suffix) == 6 and suffix.isdigit()


@pytest.mark.parametrize("text", [
    "one two three four five six seven eight nine ten",
    "the cat sat on the mat and was very happy about it",
])
def test_title_never_exceeds_five_words(text, sleep):
    svc = ScriptedTextService({TITLE_PROMPT: [RuntimeError("x")]})
    assert len(synthesize_title(svc, text, sleep=sleep, now=NOW).title.split()) <= 5
