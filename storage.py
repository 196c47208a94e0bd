# storage.py
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import config
import db_init
from models import DreamPattern, DreamRecord


# ----------------------------
# Connection
# ----------------------------
@contextmanager
def connect(db_path: Optional[str] = None):
    path = db_path or config.SQLITE_PATH
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None) -> None:
    with connect(db_path) as conn:
        db_init.init_db(conn)


def _current_period() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


def _dream_from_row(row: sqlite3.Row) -> DreamRecord:
    d = dict(row)
    try:
        tags = json.loads(d.get("tags") or "[]")
    except json.JSONDecodeError:
        tags = []
    d["tags"] = [str(t) for t in tags] if isinstance(tags, list) else []
    return DreamRecord(**d)


class DreamStore:
    """sqlite-backed persistence for dreams, usage counters and enrichment rows."""

    def __init__(self, db_path: Optional[str] = None, *, init: bool = True):
        self.db_path = db_path or config.SQLITE_PATH
        if init:
            init_db(self.db_path)

    # ---- dreams ----

    def create_dream(self, record: DreamRecord) -> DreamRecord:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO dreams(id, user_id, title, description, input_type, image_url,
                                   symbols_data, interpretation, tags, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    record.id, record.user_id, record.title, record.description, record.input_type,
                    record.image_url, record.symbols_data, record.interpretation,
                    json.dumps(record.tags, ensure_ascii=False), record.created_at, record.updated_at,
                ),
            )
        return record

    def get_dream(self, dream_id: str) -> Optional[DreamRecord]:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM dreams WHERE id = ?;", (dream_id,)).fetchone()
        return _dream_from_row(row) if row else None

    def list_dreams(self, user_id: str, *, limit: int = 50) -> List[DreamRecord]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM dreams WHERE user_id = ? ORDER BY created_at DESC LIMIT ?;",
                (user_id, int(limit)),
            ).fetchall()
        return [_dream_from_row(r) for r in rows]

    def count_dreams(self, user_id: str) -> int:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM dreams WHERE user_id = ?;", (user_id,)).fetchone()
        return int(row["n"])

    # ---- usage counters ----

    def ensure_user(
        self,
        user_id: str,
        *,
        subscription_tier: Optional[str] = None,
        referral_bonus: Optional[int] = None,
        has_promo: Optional[bool] = None,
    ) -> None:
        with connect(self.db_path) as conn:
            conn.execute("INSERT OR IGNORE INTO user_usage(user_id) VALUES (?);", (user_id,))
            if subscription_tier is not None:
                conn.execute(
                    "UPDATE user_usage SET subscription_tier = ?, updated_at = datetime('now') WHERE user_id = ?;",
                    (subscription_tier, user_id),
                )
            if referral_bonus is not None:
                conn.execute("UPDATE user_usage SET referral_bonus = ? WHERE user_id = ?;",
                             (int(referral_bonus), user_id))
            if has_promo is not None:
                conn.execute("UPDATE user_usage SET has_promo = ? WHERE user_id = ?;",
                             (1 if has_promo else 0, user_id))

    def get_usage(self, user_id: str) -> Dict[str, Any]:
        """Usage row for a user; the period counter resets when the month changes."""
        period = _current_period()
        with connect(self.db_path) as conn:
            conn.execute("INSERT OR IGNORE INTO user_usage(user_id) VALUES (?);", (user_id,))
            conn.execute(
                """
                UPDATE user_usage SET period_usage_count = 0, period_start = ?
                WHERE user_id = ? AND period_start <> ?;
                """,
                (period, user_id, period),
            )
            row = conn.execute("SELECT * FROM user_usage WHERE user_id = ?;", (user_id,)).fetchone()
        d = dict(row)
        d["has_promo"] = bool(d.get("has_promo"))
        return d

    def increment_usage(self, user_id: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute("INSERT OR IGNORE INTO user_usage(user_id) VALUES (?);", (user_id,))
            conn.execute(
                """
                UPDATE user_usage
                SET period_usage_count = period_usage_count + 1,
                    lifetime_usage_count = lifetime_usage_count + 1,
                    updated_at = datetime('now')
                WHERE user_id = ?;
                """,
                (user_id,),
            )

    # ---- symbols ----

    def get_symbol(self, user_id: str, symbol: str) -> Optional[Dict[str, Any]]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM dream_symbols WHERE user_id = ? AND symbol = ?;", (user_id, symbol)
            ).fetchone()
        if not row:
            return None
        d = dict(row)
        d["contexts"] = json.loads(d.pop("contexts_json") or "[]")
        return d

    def create_symbol(self, user_id: str, symbol: str, contexts: List[str]) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO dream_symbols(user_id, symbol, occurrence_count, contexts_json) VALUES (?, ?, 1, ?);",
                (user_id, symbol, json.dumps(contexts, ensure_ascii=False)),
            )

    def update_symbol(self, user_id: str, symbol: str, *, occurrence_count: int, contexts: List[str]) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE dream_symbols
                SET occurrence_count = ?, contexts_json = ?, last_seen = datetime('now')
                WHERE user_id = ? AND symbol = ?;
                """,
                (int(occurrence_count), json.dumps(contexts, ensure_ascii=False), user_id, symbol),
            )

    def list_symbols(self, user_id: str) -> List[Dict[str, Any]]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM dream_symbols WHERE user_id = ? ORDER BY occurrence_count DESC, symbol ASC;",
                (user_id,),
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["contexts"] = json.loads(d.pop("contexts_json") or "[]")
            out.append(d)
        return out

    # ---- themes / patterns ----

    def bump_theme(self, user_id: str, theme: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO dream_themes(user_id, theme, count, last_occurred)
                VALUES (?, ?, 1, datetime('now'))
                ON CONFLICT(user_id, theme) DO UPDATE SET
                  count = count + 1,
                  last_occurred = datetime('now');
                """,
                (user_id, theme),
            )

    def list_themes(self, user_id: str) -> List[Dict[str, Any]]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT theme, count, last_occurred FROM dream_themes WHERE user_id = ? ORDER BY count DESC;",
                (user_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def save_pattern(
        self,
        user_id: str,
        dream_id: str,
        pattern: DreamPattern,
        *,
        is_nightmare: bool,
        is_recurring: bool,
    ) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO dream_patterns(user_id, dream_id, pattern_type, themes_json, emotions_json,
                                           symbols_json, confidence, is_nightmare, is_recurring)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    user_id, dream_id, pattern.type,
                    json.dumps(pattern.themes, ensure_ascii=False),
                    json.dumps(pattern.emotions, ensure_ascii=False),
                    json.dumps(pattern.symbols, ensure_ascii=False),
                    float(pattern.confidence),
                    1 if is_nightmare else 0,
                    1 if is_recurring else 0,
                ),
            )

    def list_patterns(self, user_id: str) -> List[Dict[str, Any]]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM dream_patterns WHERE user_id = ? ORDER BY pattern_id DESC;", (user_id,)
            ).fetchall()
        return [dict(r) for r in rows]

    # ---- API usage ledger ----

    def log_api_usage(
        self,
        *,
        user_id: str,
        operation_type: str,
        model_used: str,
        tokens_used: int,
        estimated_cost_usd: float,
        success: bool = True,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO api_usage_log(user_id, operation_type, model_used, tokens_used,
                                          estimated_cost_usd, success, error_message, metadata_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    user_id, operation_type, model_used, int(tokens_used), float(estimated_cost_usd),
                    1 if success else 0, error_message,
                    json.dumps(metadata or {}, ensure_ascii=False),
                ),
            )

    def api_usage_totals(self, user_id: str) -> Dict[str, Any]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS operations,
                       COALESCE(SUM(tokens_used), 0) AS tokens,
                       COALESCE(SUM(estimated_cost_usd), 0.0) AS cost_usd
                FROM api_usage_log WHERE user_id = ?;
                """,
                (user_id,),
            ).fetchone()
        return {"operations": int(row["operations"]), "tokens": int(row["tokens"]),
                "cost_usd": float(row["cost_usd"])}


# ----------------------------
# Blob storage (generated images)
# ----------------------------
class LocalBlobStorage:
    """
    Writes under `root` and serves from `base_url` (app.py mounts GENERATED_DIR
    at /generated).
    """

    def __init__(self, root: Optional[Path] = None, base_url: Optional[str] = None):
        self.root = Path(root or config.GENERATED_DIR).resolve()
        self.base_url = (base_url or f"{config.PUBLIC_BASE_URL}/generated").rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if self.root not in target.parents:
            raise ValueError(f"blob path escapes storage root: {path}")
        return target

    def upload(self, data: bytes, path: str) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.base_url}/{target.relative_to(self.root).as_posix()}"

    def read_public_url(self, url: str) -> Optional[bytes]:
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            return None
        target = self._resolve(url[len(prefix):])
        return target.read_bytes() if target.exists() else None
