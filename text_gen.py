# text_gen.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from openai import OpenAI

import config
import safety

log = logging.getLogger("text_gen")


class EmptyResponse(RuntimeError):
    pass


# ============================================================
# Response normalisation
#   The pipeline only ever sees plain text. Everything the SDK
#   (or a test double) may hand back is flattened here.
# ============================================================

def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _text_from_content_items(items: Any) -> str:
    parts = []
    for item in items or []:
        for c in _field(item, "content") or []:
            if _field(c, "type") in ("output_text", "text"):
                txt = _field(c, "text")
                if txt:
                    parts.append(str(txt))
    return "\n".join(parts).strip()


def _last_step_text(steps: Any) -> str:
    if isinstance(steps, list) and steps:
        return str(_field(steps[-1], "text") or "").strip()
    return ""


def extract_text(resp: Any) -> str:
    """
    Return the text payload of a generation response, or "" if there is none.

    Handles:
      - plain strings
      - Responses API objects (output_text, or output[].content[])
      - dicts with a direct "text" field
      - dicts/objects with a "steps" list (reasoning models): the last step's text
    """
    if resp is None:
        return ""
    if isinstance(resp, str):
        return resp.strip()

    txt = _field(resp, "output_text") or _field(resp, "text")
    if isinstance(txt, str) and txt.strip():
        return txt.strip()

    step_txt = _last_step_text(_field(resp, "steps"))
    if step_txt:
        return step_txt

    return _text_from_content_items(_field(resp, "output"))


def parse_json_text(text: str) -> Any:
    """
    Parse model JSON. Strips code fences and retries once with trailing
    commas removed. Raises ValueError when the text is not JSON.
    """
    t = safety.strip_code_fences(text)
    if not t:
        raise ValueError("empty JSON payload")
    try:
        return json.loads(t)
    except json.JSONDecodeError:
        fixed = re.sub(r",\s*}", "}", t)
        fixed = re.sub(r",\s*]", "]", fixed)
        try:
            return json.loads(fixed)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse model JSON. First 200 chars:\n{t[:200]}") from e


# ============================================================
# OpenAI-backed text service
# ============================================================

class OpenAITextService:
    """
    generate_text(prompt) -> str
    generate_structured(prompt, schema) -> dict
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        *,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        session_id: str = "",
    ):
        self._client = client
        self.model = model or config.TEXT_MODEL
        self.timeout_seconds = float(timeout_seconds if timeout_seconds is not None else config.TEXT_TIMEOUT)
        self.session_id = session_id

    def _client_or_raise(self) -> OpenAI:
        if self._client is None:
            if not config.OPENAI_API_KEY:
                raise RuntimeError("OPENAI_API_KEY is not set")
            self._client = OpenAI()
        return self._client

    def generate_text(self, prompt: str) -> str:
        resp = safety.responses_create_compat(
            self._client_or_raise(),
            model=self.model,
            input=prompt,
            timeout=self.timeout_seconds,
            safety_identifier=safety.safety_identifier_from_session(self.session_id),
        )
        text = extract_text(resp)
        if not text:
            raise EmptyResponse("OpenAI response had no text output.")
        return text

    def generate_structured(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        strict_schema = dict(schema)
        strict_schema.setdefault("additionalProperties", False)
        resp = safety.responses_create_compat(
            self._client_or_raise(),
            model=self.model,
            input=prompt,
            timeout=self.timeout_seconds,
            text={
                "format": {
                    "type": "json_schema",
                    "name": "structured_output",
                    "schema": strict_schema,
                    "strict": True,
                }
            },
            safety_identifier=safety.safety_identifier_from_session(self.session_id),
        )
        text = extract_text(resp)
        if not text:
            raise EmptyResponse("OpenAI structured response had no text output.")
        obj = parse_json_text(text)
        if not isinstance(obj, dict):
            raise ValueError(f"Structured output was {type(obj).__name__}, expected object")
        return obj
