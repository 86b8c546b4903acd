"""Fingerprint cache for recommendation calls, plus output sanitisers.

A cached output is reused only while the inputs it was produced from are
unchanged. Failed fetches never touch the cache, so the next call retries.
"""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional


def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_canonical(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def fingerprint(inputs: Any) -> str:
    """Structural serialisation of a request's inputs. Key order never matters."""
    return json.dumps(_canonical(inputs), sort_keys=True, separators=(",", ":"), default=str)


def _is_empty(output: Any) -> bool:
    if output is None:
        return True
    if isinstance(output, (str, list, tuple, dict, set)):
        return len(output) == 0
    return False


class RecommendationCache:
    """Per-session store of (fingerprint, output) keyed by logical call name."""

    def __init__(self):
        self._entries: dict[str, tuple[str, Any]] = {}

    async def get_or_refresh(self, key: str, inputs: Any,
                             fetch: Callable[[Any], Awaitable[Any]]) -> Any:
        fp = fingerprint(inputs)
        entry = self._entries.get(key)
        if entry and entry[0] == fp and not _is_empty(entry[1]):
            print(f"[CACHE] hit {key}")
            return entry[1]

        print(f"[CACHE] miss {key}")
        output = await fetch(inputs)
        self._entries[key] = (fp, output)
        return output

    def is_current(self, key: str, inputs: Any) -> bool:
        entry = self._entries.get(key)
        return bool(entry) and entry[0] == fingerprint(inputs)

    def peek(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def invalidate(self, key: str = None):
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


# ────────── SANITISERS ──────────

def sanitize_addon_recommendation(raw: dict, available_ids) -> dict:
    """Keep only catalog ids that carry a reasoning string.

    The surviving id list and reasoning map always cover the same ids.
    """
    available = set(available_ids)
    raw = raw or {}
    reasoning_in = raw.get("reasoning_by_addon_id") or {}

    ids: list[str] = []
    reasoning: dict[str, str] = {}
    for addon_id in raw.get("recommended_addon_ids") or []:
        if addon_id not in available or addon_id in reasoning:
            continue
        text = reasoning_in.get(addon_id)
        if not isinstance(text, str) or not text.strip():
            continue
        ids.append(addon_id)
        reasoning[addon_id] = text.strip()

    return {
        "recommended_addon_ids": ids,
        "reasoning_by_addon_id": reasoning,
        "intro_text": raw.get("intro_text") or "",
    }


def sanitize_intro_text(text: Optional[str], fallback: str) -> str:
    text = (text or "").strip()
    if text.endswith(":"):
        text = text[:-1].rstrip()
    return text or fallback
