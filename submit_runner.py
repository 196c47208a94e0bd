# submit_runner.py
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import engine
from storage import DreamStore


def _read_text(args: argparse.Namespace) -> str:
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    return args.text or ""


def main() -> None:
    p = argparse.ArgumentParser(description="Submit one dream through the pipeline")
    p.add_argument("--db", default="./data/dreams.sqlite")
    p.add_argument("--user", required=True, help="User id")
    p.add_argument("--tier", default=None, help="Subscription tier (free, pro, premium, vip)")
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument("--text", default=None, help="Dream text")
    src.add_argument("--file", default=None, help="Read dream text from a file")
    p.add_argument("--input_kind", default="text", help="text, voice, symbols or image")
    p.add_argument("--promo", action="store_true", help="Grant the promotional image entitlement")
    p.add_argument("--no-ai-fallback", dest="no_ai_fallback", action="store_true",
                   help="Keyword-only emotion check")
    p.add_argument("--validate-only", dest="validate_only", action="store_true",
                   help="Run content and emotion checks without generating or saving")
    p.add_argument("-v", "--verbose", action="store_true")
    args = p.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    text = _read_text(args)
    store = DreamStore(args.db)
    pipeline = engine.build_pipeline(
        store=store,
        enrichment_mode="inline",
        emotion_ai_fallback=not args.no_ai_fallback,
        session_id=args.user,
    )

    if args.validate_only:
        out = pipeline.validate(text, args.input_kind)
        print(json.dumps(out.model_dump(mode="json"), ensure_ascii=False, indent=2))
        raise SystemExit(0 if out.is_valid else 1)

    ctx = engine.context_for_user(
        store,
        user_id=args.user,
        text=text,
        input_kind=args.input_kind,
        subscription_tier=args.tier,
        has_promotional_entitlement=True if args.promo else None,
    )
    outcome = pipeline.submit(ctx)
    print(json.dumps(outcome.model_dump(mode="json"), ensure_ascii=False, indent=2))
    raise SystemExit(0 if outcome.ok else 1)


if __name__ == "__main__":
    main()
