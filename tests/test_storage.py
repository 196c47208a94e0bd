import sqlite3

import pytest

import db_init
import storage
from models import DreamRecord


def _record(**kw):
    base = dict(
        id="dream-1", user_id="user-1", title="Flight", description="I was flying",
        input_type="text", image_url=None, interpretation="freedom", tags=["ocean", "sky"],
        created_at="2026-10-19T09:30:00.000000Z", updated_at="2026-10-19T09:30:00.000000Z",
    )
    base.update(kw)
    return DreamRecord(**base)


def test_dream_round_trip_keeps_tags(store):
    store.create_dream(_record())
    got = store.get_dream("dream-1")
    assert got.tags == ["ocean", "sky"]
    assert got.title == "Flight"
    assert store.get_dream("missing") is None


def test_duplicate_dream_id_is_rejected(store):
    store.create_dream(_record())
    with pytest.raises(sqlite3.IntegrityError):
        store.create_dream(_record(title="Other"))
    assert store.count_dreams("user-1") == 1


def test_list_dreams_newest_first(store):
    store.create_dream(_record(id="a", created_at="2026-10-01T00:00:00.000000Z"))
    store.create_dream(_record(id="b", created_at="2026-10-02T00:00:00.000000Z"))
    store.create_dream(_record(id="c", user_id="someone-else"))
    assert [d.id for d in store.list_dreams("user-1")] == ["b", "a"]
    assert [d.id for d in store.list_dreams("user-1", limit=1)] == ["b"]


def test_usage_row_defaults_and_increment(store):
    usage = store.get_usage("new-user")
    assert usage["subscription_tier"] == "free"
    assert usage["period_usage_count"] == 0
    assert usage["has_promo"] is False

    store.ensure_user("new-user", subscription_tier="pro", referral_bonus=2, has_promo=True)
    store.increment_usage("new-user")
    store.increment_usage("new-user")
    usage = store.get_usage("new-user")
    assert (usage["subscription_tier"], usage["referral_bonus"], usage["has_promo"]) == ("pro", 2, True)
    assert (usage["period_usage_count"], usage["lifetime_usage_count"]) == (2, 2)


def test_period_counter_resets_in_a_new_month(store):
    store.increment_usage("u")
    with storage.connect(store.db_path) as conn:
        conn.execute("UPDATE user_usage SET period_start = '2000-01' WHERE user_id = 'u';")
    usage = store.get_usage("u")
    assert usage["period_usage_count"] == 0
    assert usage["lifetime_usage_count"] == 1


def test_api_usage_totals(store):
    store.log_api_usage(user_id="u", operation_type="text_generation", model_used="gpt-4.1-mini",
                        tokens_used=100, estimated_cost_usd=0.01)
    store.log_api_usage(user_id="u", operation_type="image_generation", model_used="gpt-image-1-mini",
                        tokens_used=0, estimated_cost_usd=0.0, success=False, error_message="503")
    totals = store.api_usage_totals("u")
    assert totals == {"operations": 2, "tokens": 100, "cost_usd": pytest.approx(0.01)}
    assert store.api_usage_totals("nobody")["operations"] == 0


def test_local_blob_storage(tmp_path):
    blob = storage.LocalBlobStorage(tmp_path / "gen", base_url="http://localhost:8000/generated")
    url = blob.upload(b"png-bytes", "dreams/x.png")
    assert url == "http://localhost:8000/generated/dreams/x.png"
    assert blob.read_public_url(url) == b"png-bytes"
    assert blob.read_public_url("https://elsewhere.test/x.png") is None
    with pytest.raises(ValueError):
        blob.upload(b"x", "../escape.png")


def test_schema_is_idempotent(tmp_path):
    conn = db_init.connect(str(tmp_path / "schema.sqlite"))
    try:
        db_init.init_db(conn)
        db_init.init_db(conn)
        assert all(db_init.table_exists(conn, t) for t in db_init.TABLES)
        assert not db_init.table_exists(conn, "nightmares")
    finally:
        conn.close()
