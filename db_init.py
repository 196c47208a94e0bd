# db_init.py
from __future__ import annotations

import argparse
import sqlite3

TABLES = ("dreams", "user_usage", "dream_symbols", "dream_themes", "dream_patterns", "api_usage_log")


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    return conn


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1;",
        (name,),
    ).fetchone()
    return row is not None


def init_db(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS dreams (
              id              TEXT PRIMARY KEY,
              user_id         TEXT NOT NULL,
              title           TEXT NOT NULL,
              description     TEXT NOT NULL,
              input_type      TEXT NOT NULL,
              image_url       TEXT DEFAULT NULL,
              symbols_data    TEXT DEFAULT NULL,
              interpretation  TEXT NOT NULL,
              tags            TEXT NOT NULL DEFAULT '[]',
              created_at      TEXT NOT NULL,
              updated_at      TEXT NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_dreams_user ON dreams(user_id, created_at);")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS user_usage (
              user_id              TEXT PRIMARY KEY,
              subscription_tier    TEXT NOT NULL DEFAULT 'free',
              period_usage_count   INTEGER NOT NULL DEFAULT 0,
              lifetime_usage_count INTEGER NOT NULL DEFAULT 0,
              referral_bonus       INTEGER NOT NULL DEFAULT 0,
              has_promo            INTEGER NOT NULL DEFAULT 0,
              period_start         TEXT NOT NULL DEFAULT (strftime('%Y-%m', 'now')),
              updated_at           TEXT NOT NULL DEFAULT (datetime('now'))
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS dream_symbols (
              symbol_id         INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id           TEXT NOT NULL,
              symbol            TEXT NOT NULL,
              occurrence_count  INTEGER NOT NULL DEFAULT 1,
              contexts_json     TEXT NOT NULL DEFAULT '[]',
              first_seen        TEXT NOT NULL DEFAULT (datetime('now')),
              last_seen         TEXT NOT NULL DEFAULT (datetime('now')),
              UNIQUE(user_id, symbol)
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS dream_themes (
              theme_id       INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id        TEXT NOT NULL,
              theme          TEXT NOT NULL,
              count          INTEGER NOT NULL DEFAULT 1,
              last_occurred  TEXT NOT NULL DEFAULT (datetime('now')),
              UNIQUE(user_id, theme)
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS dream_patterns (
              pattern_id     INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id        TEXT NOT NULL,
              dream_id       TEXT NOT NULL,
              pattern_type   TEXT NOT NULL,
              themes_json    TEXT NOT NULL DEFAULT '[]',
              emotions_json  TEXT NOT NULL DEFAULT '[]',
              symbols_json   TEXT NOT NULL DEFAULT '[]',
              confidence     REAL NOT NULL DEFAULT 0.0,
              is_nightmare   INTEGER NOT NULL DEFAULT 0,
              is_recurring   INTEGER NOT NULL DEFAULT 0,
              created_at     TEXT NOT NULL DEFAULT (datetime('now'))
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_dream_patterns_user ON dream_patterns(user_id);")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS api_usage_log (
              log_id              INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id             TEXT NOT NULL,
              operation_type      TEXT NOT NULL,
              model_used          TEXT DEFAULT NULL,
              tokens_used         INTEGER NOT NULL DEFAULT 0,
              estimated_cost_usd  REAL NOT NULL DEFAULT 0.0,
              success             INTEGER NOT NULL DEFAULT 1,
              error_message       TEXT DEFAULT NULL,
              metadata_json       TEXT DEFAULT NULL,
              created_at          TEXT NOT NULL DEFAULT (datetime('now'))
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_api_usage_user ON api_usage_log(user_id, created_at);")


def main() -> None:
    p = argparse.ArgumentParser()
    p.add_argument("--db", required=True, help="Path to sqlite db, e.g. ./data/dreams.sqlite")
    args = p.parse_args()

    conn = connect(args.db)
    try:
        init_db(conn)
        conn.commit()
        missing = [t for t in TABLES if not table_exists(conn, t)]
        if missing:
            raise SystemExit(f"schema incomplete, missing: {', '.join(missing)}")
        print("OK: schema ensured")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
