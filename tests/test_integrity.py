import pytest

from dreamlib.integrity import check_record


def _record(**kw):
    base = {
        "id": "dream-1",
        "user_id": "user-1",
        "title": "Flight Over Water",
        "description": "I was flying over the sea.",
        "input_type": "text",
        "image_url": "https://img.test/a.png",
        "tags": ["ocean"],
        "interpretation": "A wish for freedom.",
    }
    base.update(kw)
    return base


def test_complete_record_can_save():
    report = check_record(_record())
    assert report.is_valid is True
    assert report.can_save is True
    assert report.recommendations == []


def test_image_url_and_tags_are_optional():
    assert check_record(_record(image_url=None, tags=None)).can_save is True


def test_tags_as_json_string():
    assert check_record(_record(tags='["a", "b"]')).can_save is True
    assert check_record(_record(tags='{"a": 1}')).invalid_fields["tags"] == "Tags string must be a valid JSON array"
    assert check_record(_record(tags="a, b")).invalid_fields["tags"] == "Tags string must be valid JSON"
    assert "tags" in check_record(_record(tags=5)).invalid_fields


def test_missing_fields_are_listed():
    report = check_record(_record(user_id="", description=None))
    assert report.can_save is False
    assert report.missing_fields == ["user_id", "description"]
    assert report.recommendations[0].startswith("Missing required fields: user_id, description")


@pytest.mark.parametrize("field, value", [
    ("image_url", "ftp://img.test/a.png"),
    ("image_url", "javascript:alert(1)"),
    ("input_type", "voice"),
    ("title", "ab"),
    ("interpretation", "   "),
])
def test_invalid_fields(field, value):
    report = check_record(_record(**{field: value}))
    assert report.can_save is False
    assert field in report.invalid_fields


def test_non_mapping_record():
    report = check_record(["not", "a", "dict"])
    assert report.can_save is False
    assert report.missing_fields == ["id", "user_id", "title", "description", "input_type"]
