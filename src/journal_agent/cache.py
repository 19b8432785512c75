"""Process-lifetime cache for large tool results, referenced by short ids."""

from __future__ import annotations

import copy
import json
import logging
import threading
from typing import Any

from journal_agent.config import CacheConfig
from journal_agent.errors import NotFoundError

logger = logging.getLogger(__name__)

_SUMMARY_KEYS = frozenset({"result_id", "item_count", "metadata", "preview", "note", "items", "aggregate"})


def serialize(payload: Any) -> str:
    return json.dumps(payload, default=str, ensure_ascii=False)


class ResultCache:
    """Stores full payloads so the conversation can carry compact summaries.

    Entries live until `clear()` or process exit. Payloads are deep-copied on
    the way in and out, so callers never share mutable state with the cache.
    """

    def __init__(self, config: CacheConfig | None = None) -> None:
        self.config = config or CacheConfig()
        self._entries: dict[str, Any] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def put(self, payload: Any) -> str:
        stored = copy.deepcopy(payload)
        with self._lock:
            self._counter += 1
            result_id = f"result_{self._counter}"
            self._entries[result_id] = stored
        logger.debug("cached %s (%d chars)", result_id, len(serialize(stored)))
        return result_id

    def get(self, result_id: str) -> Any:
        with self._lock:
            if result_id not in self._entries:
                raise NotFoundError(f"Cached result not found: {result_id}")
            stored = self._entries[result_id]
        return copy.deepcopy(stored)

    def __contains__(self, result_id: object) -> bool:
        with self._lock:
            return result_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def should_cache(self, serialized: str) -> bool:
        return len(serialized) > self.config.threshold_chars

    def summarize(self, payload: Any, result_id: str | None = None) -> dict[str, Any]:
        """Build a compact stand-in for `payload` smaller than the threshold."""
        if isinstance(payload, dict) and isinstance(payload.get("aggregate"), dict):
            return self._summarize_aggregate(payload, result_id)

        items = payload.get("items", []) if isinstance(payload, dict) else []
        metadata = payload.get("metadata", {}) if isinstance(payload, dict) else {}
        carried = _small_fields(payload, self.config.carry_field_chars)

        summary: dict[str, Any] = {
            **carried,
            "result_id": result_id,
            "item_count": len(items),
            "metadata": _key_metadata(metadata),
            "preview": [
                self._preview(item, self.config.preview_chars)
                for item in items[: self.config.preview_items]
                if isinstance(item, dict)
            ],
            "note": (
                f"Full result cached as {result_id}; pass this id to analyze to use all items."
                if result_id
                else "Result too large to include in full."
            ),
        }

        # Shrink previews, then drop them, until strictly below the threshold.
        preview_chars = self.config.preview_chars
        while len(serialize(summary)) >= self.config.threshold_chars and summary["preview"]:
            preview_chars //= 2
            if preview_chars < 10:
                summary["preview"] = []
                break
            summary["preview"] = [
                self._preview(item, preview_chars)
                for item in items[: self.config.preview_items]
                if isinstance(item, dict)
            ]
        if len(serialize(summary)) >= self.config.threshold_chars:
            summary["metadata"] = {}
            for key in carried:
                summary.pop(key, None)
        return summary

    def _summarize_aggregate(self, payload: dict[str, Any], result_id: str | None) -> dict[str, Any]:
        """Keep the aggregate itself, dropping the oldest rows until it fits.

        Timeline buckets are chronological, so the most recent ones survive.
        Scalar stats carry no rows and are kept whole.
        """
        aggregate = copy.deepcopy(payload["aggregate"])
        rows_key = next((key for key in ("buckets", "bins") if isinstance(aggregate.get(key), list)), None)
        rows = aggregate[rows_key] if rows_key else []
        total = len(rows)

        summary: dict[str, Any] = {
            "result_id": result_id,
            "scope": payload.get("scope"),
            "view": payload.get("view"),
            "metadata": _key_metadata(payload.get("metadata", {})),
            "aggregate": aggregate,
            "note": f"Full aggregate cached as {result_id}." if result_id else "Aggregate shown in full.",
        }

        shown = total
        while len(serialize(summary)) >= self.config.threshold_chars and shown > 0:
            shown //= 2
            summary["aggregate"] = {**aggregate, rows_key: rows[total - shown :] if shown else []}
            summary["note"] = (
                f"Showing the last {shown} of {total} {rows_key}"
                + (f"; full aggregate cached as {result_id}." if result_id else ".")
            )
        if len(serialize(summary)) >= self.config.threshold_chars:
            summary["metadata"] = {}
        return summary

    @staticmethod
    def _preview(item: dict[str, Any], max_chars: int) -> dict[str, Any]:
        text = str(item.get("text") or "")
        if len(text) > max_chars:
            text = text[:max_chars].rstrip() + "..."
        preview = {"id": item.get("id"), "date": item.get("date"), "text": text}
        if "score" in item:
            preview["score"] = item["score"]
        return preview


def _small_fields(payload: Any, max_chars: int) -> dict[str, Any]:
    """Top-level fields outside the summary's own keys that serialize within `max_chars`."""
    if not isinstance(payload, dict):
        return {}
    return {
        key: copy.deepcopy(value)
        for key, value in payload.items()
        if key not in _SUMMARY_KEYS and len(serialize(value)) <= max_chars
    }


def _key_metadata(metadata: Any) -> dict[str, Any]:
    if not isinstance(metadata, dict):
        return {}
    key: dict[str, Any] = {}
    if "confidence" in metadata:
        key["confidence"] = metadata["confidence"]
    date_range = metadata.get("date_range")
    if isinstance(date_range, dict):
        key["date_range"] = {"start": date_range.get("start"), "end": date_range.get("end")}
    if "gaps" in metadata:
        key["gap_count"] = len(metadata.get("gaps") or [])
    return key
