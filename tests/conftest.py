import json
import random
from datetime import datetime, timezone

import pytest

from dreamlib.enrichment import InlineDispatcher
from dreamlib.pipeline import DreamSubmissionPipeline
from models import SubmissionContext, TierTable
from storage import DreamStore

import config

DREAM_TEXT = "I was flying over a dark ocean and felt scared of the waves below me."

TITLE_PROMPT = "Generate a compelling dream title"
TAGS_PROMPT = "Extract 3-8 symbolic tags"
EMOTION_PROMPT = "Analyze the emotional content"
INTERPRETATION_PROMPT = "compassionate dream interpreter"
PATTERN_PROMPT = "Analyze this dream description and identify"

DEFAULT_TEXT_ROUTES = {
    TITLE_PROMPT: ["Flight Over Dark Waters"],
    TAGS_PROMPT: ['["ocean", "flight", "fear"]'],
    EMOTION_PROMPT: ['{"hasEmotionalContent": true, "detectedEmotions": ["awe"], "confidence": 0.9}'],
    INTERPRETATION_PROMPT: ["1. Overall Meaning:\nThis could suggest a wish for freedom."],
    PATTERN_PROMPT: ['{"type": "normal", "themes": ["Flight", "water"], "emotions": ["fear"], '
                     '"symbols": ["ocean"], "confidence": 0.4}'],
}


def _play(script, prompt):
    """Pop the next scripted reply; the last one repeats. Exceptions are raised."""
    item = script.pop(0) if len(script) > 1 else script[0]
    if isinstance(item, BaseException):
        raise item
    if callable(item):
        return item(prompt)
    return item


class ScriptedTextService:
    """
    Routes each prompt to a script by a marker substring and records every call.
    structured: script for generate_structured (interpretation).
    """

    def __init__(self, routes=None, structured=None):
        self.routes = {k: list(v) for k, v in DEFAULT_TEXT_ROUTES.items()}
        for k, v in (routes or {}).items():
            self.routes[k] = list(v)
        self.structured = list(structured) if structured is not None else [
            {"interpretation": "This could suggest a longing for freedom and open space."}
        ]
        self.calls = []

    def _route(self, prompt):
        for marker in self.routes:
            if marker in prompt:
                return marker
        raise AssertionError(f"unexpected prompt: {prompt[:80]}")

    def generate_text(self, prompt):
        marker = self._route(prompt)
        self.calls.append(marker)
        return _play(self.routes[marker], prompt)

    def generate_structured(self, prompt, schema):
        self.calls.append("structured")
        return _play(self.structured, prompt)

    def count(self, marker):
        return self.calls.count(marker)


class ScriptedImageService:
    def __init__(self, replies=None):
        self.replies = list(replies) if replies is not None else [[{"url": "https://img.test/dream.png"}]]
        self.prompts = []

    def generate_image(self, prompt):
        self.prompts.append(prompt)
        return _play(self.replies, prompt)


class MemoryBlobStorage:
    base_url = "https://blob.test"

    def __init__(self):
        self.files = {}

    def upload(self, data, path):
        self.files[path] = data
        return f"{self.base_url}/{path}"

    def read_public_url(self, url):
        prefix = self.base_url + "/"
        if url.startswith(prefix):
            return self.files.get(url[len(prefix):])
        return None


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


class FailingStore(DreamStore):
    """Real sqlite store whose create_dream always raises."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.create_calls = 0

    def create_dream(self, record):
        self.create_calls += 1
        raise RuntimeError("disk I/O error")


class CountingStore(DreamStore):
    def __init__(self, db_path):
        super().__init__(db_path)
        self.create_calls = 0

    def create_dream(self, record):
        self.create_calls += 1
        return super().create_dream(record)


@pytest.fixture
def store(tmp_path):
    return CountingStore(str(tmp_path / "dreams.sqlite"))


@pytest.fixture
def text_service():
    return ScriptedTextService()


@pytest.fixture
def image_service():
    return ScriptedImageService()


@pytest.fixture
def blob():
    return MemoryBlobStorage()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def tiers():
    return TierTable(config.DEFAULT_TIERS)


FIXED_NOW = datetime(2026, 10, 19, 9, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_pipeline(store, text_service, image_service, blob, sleep, tiers):
    def _make(**overrides):
        kwargs = dict(
            text_service=text_service,
            image_service=image_service,
            store=store,
            tiers=tiers,
            blob_storage=blob,
            dispatcher=InlineDispatcher(),
            sleep=sleep,
            rng=random.Random(7),
            clock=lambda: FIXED_NOW,
            emotion_timeout_seconds=1.0,
        )
        kwargs.update(overrides)
        return DreamSubmissionPipeline(**kwargs)

    return _make


@pytest.fixture
def make_ctx():
    def _make(**overrides):
        fields = dict(
            user_id="user-1",
            dream_id="dream-1",
            subscription_tier="pro",
            raw_input=DREAM_TEXT,
        )
        fields.update(overrides)
        return SubmissionContext(**fields)

    return _make


def pattern_json(**fields):
    base = {"type": "normal", "themes": [], "emotions": [], "symbols": [], "confidence": 0.2}
    base.update(fields)
    return json.dumps(base)
