# dreamlib/enrichment.py
# Post-write jobs. Each job runs inside its own error boundary: a failure is
# logged and never reaches the submission that dispatched it.
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, List, Optional, Sequence

import text_gen
from dreamlib.costs import UsageLedger, char_tokens, text_generation_cost
from dreamlib.prompts import dream_pattern_prompt
from models import DreamPattern, DreamRecord, TierCapabilities

log = logging.getLogger("enrichment")

SYMBOL_CONTEXT_LIMIT = 20
RECURRING_CONFIDENCE = 0.7
_PATTERN_TYPES = ("nightmare", "recurring", "normal")


class EnrichmentHandle:
    """Completion marker for one dispatched job."""

    def __init__(self, name: str):
        self.name = name
        self.error: Optional[str] = None
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def ok(self) -> bool:
        return self.done and self.error is None

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


def _run_isolated(name: str, fn: Callable[[], Any], handle: EnrichmentHandle) -> None:
    try:
        fn()
    except Exception as e:
        handle.error = f"{type(e).__name__}: {e}"
        log.exception("Enrichment job %s failed", name)
    finally:
        handle._done.set()


class InlineDispatcher:
    """Runs each job immediately on the calling thread. Used by tests and the CLI."""

    def dispatch(self, name: str, fn: Callable[[], Any]) -> EnrichmentHandle:
        handle = EnrichmentHandle(name)
        _run_isolated(name, fn, handle)
        return handle

    def close(self) -> None:
        pass


class BackgroundDispatcher:
    """Single worker thread draining a job queue."""

    _STOP = object()

    def __init__(self, name: str = "enrichment"):
        self._q: "queue.Queue[Any]" = queue.Queue()
        self._thread = threading.Thread(target=self._worker, name=f"{name}-worker", daemon=True)
        self._thread.start()

    def _worker(self) -> None:
        while True:
            item = self._q.get()
            try:
                if item is self._STOP:
                    return
                name, fn, handle = item
                _run_isolated(name, fn, handle)
            finally:
                self._q.task_done()

    def dispatch(self, name: str, fn: Callable[[], Any]) -> EnrichmentHandle:
        handle = EnrichmentHandle(name)
        self._q.put((name, fn, handle))
        return handle

    def join(self) -> None:
        """Block until every queued job has finished."""
        self._q.join()

    def close(self, timeout: Optional[float] = 5.0) -> None:
        self._q.put(self._STOP)
        self._thread.join(timeout)


# ---------------------
# Jobs
# ---------------------

def normalize_symbols(tags: Sequence[str]) -> List[str]:
    out: List[str] = []
    for t in tags or []:
        s = str(t).strip().lower()
        if len(s) >= 2 and s not in out:
            out.append(s)
    return out


def water_symbols(store: Any, user_id: str, title: str, tags: Sequence[str]) -> int:
    """
    Find-or-create each tag in the user's symbol garden.
    Returns the number of symbols touched; a bad tag is skipped, not fatal.
    """
    touched = 0
    for symbol in normalize_symbols(tags):
        try:
            existing = store.get_symbol(user_id, symbol)
            if existing is None:
                store.create_symbol(user_id, symbol, [f'From dream: "{title}"'])
            else:
                contexts = list(existing.get("contexts") or [])
                ctx_line = f'Appeared again in: "{title}"'
                if ctx_line not in contexts:
                    contexts.append(ctx_line)
                    contexts = contexts[-SYMBOL_CONTEXT_LIMIT:]
                store.update_symbol(
                    user_id, symbol,
                    occurrence_count=int(existing.get("occurrence_count") or 0) + 1,
                    contexts=contexts,
                )
            touched += 1
        except Exception as e:
            log.warning("Symbol watering failed for %r (user=%s): %s", symbol, user_id, e)
    return touched


def _str_list(v: Any, limit: int = 5) -> List[str]:
    if not isinstance(v, list):
        return []
    out = [str(x).strip() for x in v if x is not None and str(x).strip()]
    return out[:limit]


def parse_pattern(obj: Any) -> DreamPattern:
    if not isinstance(obj, dict):
        raise ValueError(f"pattern payload was {type(obj).__name__}, expected object")
    ptype = str(obj.get("type") or "normal").strip().lower()
    if ptype not in _PATTERN_TYPES:
        ptype = "normal"
    conf = obj.get("confidence")
    try:
        conf_f = float(conf) if conf is not None and not isinstance(conf, bool) else 0.0
    except (TypeError, ValueError):
        conf_f = 0.0
    return DreamPattern(
        type=ptype,
        themes=[t.lower() for t in _str_list(obj.get("themes"))],
        emotions=_str_list(obj.get("emotions")),
        symbols=_str_list(obj.get("symbols")),
        confidence=max(0.0, min(1.0, conf_f)),
    )


def detect_pattern(
    text_service: Any,
    store: Any,
    dream: DreamRecord,
    *,
    model: str = "gpt-4.1-mini",
    ledger: Optional[UsageLedger] = None,
) -> DreamPattern:
    prompt = dream_pattern_prompt(dream.description)
    raw = text_gen.extract_text(text_service.generate_text(prompt))
    (ledger or UsageLedger()).record(
        user_id=dream.user_id, operation_type="text_generation", model=model,
        tokens_used=char_tokens(prompt, raw),
        cost_usd=text_generation_cost(model, len(prompt), len(raw)),
        metadata={"operation": "pattern_detection", "dream_id": dream.id},
    )

    pattern = parse_pattern(text_gen.parse_json_text(raw)) if raw else DreamPattern()

    for theme in pattern.themes:
        store.bump_theme(dream.user_id, theme)

    is_nightmare = pattern.type == "nightmare"
    is_recurring = pattern.type == "recurring" or pattern.confidence > RECURRING_CONFIDENCE
    store.save_pattern(dream.user_id, dream.id, pattern, is_nightmare=is_nightmare, is_recurring=is_recurring)
    if is_nightmare or is_recurring:
        log.info("Dream %s flagged (nightmare=%s recurring=%s)", dream.id, is_nightmare, is_recurring)
    return pattern


def bump_usage(store: Any, user_id: str) -> None:
    store.increment_usage(user_id)


def dispatch_enrichment(
    dispatcher: Any,
    *,
    store: Any,
    text_service: Any,
    dream: DreamRecord,
    caps: TierCapabilities,
    model: str = "gpt-4.1-mini",
    ledger: Optional[UsageLedger] = None,
) -> List[EnrichmentHandle]:
    """Queue every post-write job for one persisted dream."""
    handles: List[EnrichmentHandle] = []
    if caps.symbol_garden_entitled and dream.tags:
        handles.append(dispatcher.dispatch(
            "symbol_watering", lambda: water_symbols(store, dream.user_id, dream.title, dream.tags)
        ))
    handles.append(dispatcher.dispatch(
        "pattern_detection", lambda: detect_pattern(text_service, store, dream, model=model, ledger=ledger)
    ))
    handles.append(dispatcher.dispatch("usage_counters", lambda: bump_usage(store, dream.user_id)))
    return handles
