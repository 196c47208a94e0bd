# dreamlib/integrity.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping

from dreamlib.titles import guard_title
from dreamlib.visual import is_http_url
from models import INPUT_KINDS, IntegrityReport

REQUIRED_FIELDS = ("id", "user_id", "title", "description", "input_type")


def _non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and bool(v.strip())


def check_record(record: Mapping[str, Any]) -> IntegrityReport:
    """Validate a candidate dream row before it is written."""
    if not isinstance(record, Mapping):
        return IntegrityReport(
            is_valid=False, can_save=False,
            missing_fields=list(REQUIRED_FIELDS),
            recommendations=["Dream record is not an object"],
        )

    missing: List[str] = [f for f in REQUIRED_FIELDS if not record.get(f)]
    invalid: Dict[str, str] = {}

    if not _non_empty_str(record.get("id")):
        invalid["id"] = "ID must be a non-empty string"
    if not _non_empty_str(record.get("user_id")):
        invalid["user_id"] = "User ID must be a non-empty string"

    ok, _, note = guard_title(record.get("title"))
    if not ok:
        invalid["title"] = note or "Invalid title"

    if not _non_empty_str(record.get("description")):
        invalid["description"] = "Description must be a non-empty string"

    if record.get("input_type") not in INPUT_KINDS:
        invalid["input_type"] = f"Input type must be one of: {', '.join(INPUT_KINDS)}"

    image_url = record.get("image_url")
    if image_url and not is_http_url(image_url):
        invalid["image_url"] = "Image URL must use HTTP or HTTPS protocol"

    tags = record.get("tags")
    if tags is not None:
        if isinstance(tags, str):
            try:
                if not isinstance(json.loads(tags), list):
                    invalid["tags"] = "Tags string must be a valid JSON array"
            except json.JSONDecodeError:
                invalid["tags"] = "Tags string must be valid JSON"
        elif not isinstance(tags, list):
            invalid["tags"] = "Tags must be an array or a JSON stringified array"

    if not _non_empty_str(record.get("interpretation")):
        invalid["interpretation"] = "Interpretation must be a non-empty string"

    recs: List[str] = []
    if missing:
        recs.append(f"Missing required fields: {', '.join(missing)}. Please provide all required information.")
    recs.extend(f"{k}: {v}" for k, v in invalid.items())

    can_save = not missing and not invalid
    return IntegrityReport(
        is_valid=can_save,
        can_save=can_save,
        missing_fields=missing,
        invalid_fields=invalid,
        recommendations=recs,
    )
