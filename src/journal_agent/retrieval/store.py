"""Document/analytics store interfaces and concrete adapters."""

from __future__ import annotations

import json
import math
import re
import sqlite3
import threading
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Protocol

from journal_agent.types import Scope, SearchableItem

_TERM_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class DocumentStore(Protocol):
    """Minimal store contract consumed by the retrieval gateway."""

    def fetch(
        self,
        scope: Scope,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        ids: Sequence[str] | None = None,
    ) -> list[SearchableItem]:
        """Return items of a scope inside an inclusive date range / id allow-list."""

    def keyword_scores(self, keyword: str, item_ids: Sequence[str]) -> dict[str, float]:
        """Return raw BM25 relevance (higher is better) for matching items only."""

    def add(self, items: Sequence[SearchableItem]) -> None:
        """Insert or replace items."""


def tokenize(text: str) -> list[str]:
    return [term.lower() for term in _TERM_PATTERN.findall(text)]


def _in_range(item: SearchableItem, date_from: date | None, date_to: date | None) -> bool:
    day = item.timestamp.date()
    if date_from is not None and day < date_from:
        return False
    if date_to is not None and day > date_to:
        return False
    return True


class InMemoryDocumentStore:
    """Deterministic store with its own BM25 inverted index.

    Used for tests, local prototyping and the offline API mode.
    """

    def __init__(self, items: Iterable[SearchableItem] = (), *, k1: float = 1.2, b: float = 0.75) -> None:
        self._items: dict[str, SearchableItem] = {}
        self._postings: dict[str, dict[str, int]] = {}
        self._lengths: dict[str, int] = {}
        self._lock = threading.Lock()
        self.k1 = k1
        self.b = b
        self.add(list(items))

    def add(self, items: Sequence[SearchableItem]) -> None:
        with self._lock:
            for item in items:
                if item.item_id in self._items:
                    self._unindex(item.item_id)
                self._items[item.item_id] = item
                self._index(item)

    def fetch(
        self,
        scope: Scope,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        ids: Sequence[str] | None = None,
    ) -> list[SearchableItem]:
        allowed = set(ids) if ids is not None else None
        with self._lock:
            items = list(self._items.values())
        return [
            item
            for item in items
            if item.scope == scope
            and (allowed is None or item.item_id in allowed)
            and _in_range(item, date_from, date_to)
        ]

    def keyword_scores(self, keyword: str, item_ids: Sequence[str]) -> dict[str, float]:
        terms = tokenize(keyword)
        if not terms or not item_ids:
            return {}

        with self._lock:
            total_docs = len(self._lengths)
            if total_docs == 0:
                return {}
            avg_length = sum(self._lengths.values()) / total_docs
            scores: dict[str, float] = {}
            for item_id in item_ids:
                length = self._lengths.get(item_id)
                if not length:
                    continue
                score = 0.0
                for term in terms:
                    postings = self._postings.get(term, {})
                    freq = postings.get(item_id, 0)
                    if freq == 0:
                        continue
                    df = len(postings)
                    idf = math.log((total_docs - df + 0.5) / (df + 0.5) + 1.0)
                    norm = freq + self.k1 * (1 - self.b + self.b * length / avg_length)
                    score += idf * (freq * (self.k1 + 1)) / norm
                if score > 0:
                    scores[item_id] = score
        return scores

    def _index(self, item: SearchableItem) -> None:
        terms = tokenize(item.text or "")
        if not terms:
            return
        self._lengths[item.item_id] = len(terms)
        for term, freq in Counter(terms).items():
            self._postings.setdefault(term, {})[item.item_id] = freq

    def _unindex(self, item_id: str) -> None:
        self._lengths.pop(item_id, None)
        for postings in self._postings.values():
            postings.pop(item_id, None)


class SqliteDocumentStore:
    """SQLite-backed store using an FTS5 virtual table for BM25 keyword ranking."""

    def __init__(self, sqlite_path: str | Path) -> None:
        self.db_file = Path(sqlite_path)
        _ensure_tables(self.db_file)

    def add(self, items: Sequence[SearchableItem]) -> None:
        with sqlite3.connect(self.db_file) as conn:
            for item in items:
                conn.execute("DELETE FROM items_fts WHERE item_id = ?", (item.item_id,))
                conn.execute(
                    """
                    INSERT INTO items(item_id, scope, ts, day, text, embedding, metrics,
                                      parent_id, fragment_id, tags)
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(item_id) DO UPDATE SET
                        scope=excluded.scope, ts=excluded.ts, day=excluded.day,
                        text=excluded.text, embedding=excluded.embedding,
                        metrics=excluded.metrics, parent_id=excluded.parent_id,
                        fragment_id=excluded.fragment_id, tags=excluded.tags
                    """,
                    (
                        item.item_id,
                        item.scope.value,
                        item.timestamp.isoformat(),
                        item.timestamp.date().isoformat(),
                        item.text,
                        json.dumps(list(item.embedding)) if item.embedding is not None else None,
                        json.dumps(dict(item.metrics)),
                        item.parent_id,
                        item.fragment_id,
                        json.dumps(list(item.tags)),
                    ),
                )
                if item.text:
                    conn.execute(
                        "INSERT INTO items_fts(item_id, text) VALUES(?, ?)",
                        (item.item_id, item.text),
                    )
            conn.commit()

    def fetch(
        self,
        scope: Scope,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        ids: Sequence[str] | None = None,
    ) -> list[SearchableItem]:
        clauses = ["scope = ?"]
        args: list[object] = [scope.value]
        if date_from is not None:
            clauses.append("day >= ?")
            args.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("day <= ?")
            args.append(date_to.isoformat())
        if ids is not None:
            if not ids:
                return []
            clauses.append(f"item_id IN ({','.join('?' for _ in ids)})")
            args.extend(ids)

        sql = (
            "SELECT item_id, scope, ts, text, embedding, metrics, parent_id, fragment_id, tags "
            f"FROM items WHERE {' AND '.join(clauses)}"
        )
        with sqlite3.connect(self.db_file) as conn:
            rows = conn.execute(sql, args).fetchall()
        return [_row_to_item(row) for row in rows]

    def keyword_scores(self, keyword: str, item_ids: Sequence[str]) -> dict[str, float]:
        match = build_match_query(tokenize(keyword))
        if not match or not item_ids:
            return {}
        placeholders = ",".join("?" for _ in item_ids)
        sql = (
            "SELECT item_id, bm25(items_fts) FROM items_fts "
            f"WHERE items_fts MATCH ? AND item_id IN ({placeholders})"
        )
        with sqlite3.connect(self.db_file) as conn:
            rows = conn.execute(sql, [match, *item_ids]).fetchall()
        # FTS5 bm25() is negative; closer to zero is worse.
        return {str(item_id): -float(raw) for item_id, raw in rows if raw is not None}


def build_match_query(terms: Sequence[str], operator: str = "OR") -> str:
    """Quote each term so user text cannot inject FTS5 syntax."""
    quoted = ['"' + term.replace('"', '""') + '"' for term in terms if term]
    return f" {operator} ".join(quoted)


def _row_to_item(row: tuple) -> SearchableItem:
    item_id, scope, ts, text, embedding, metrics, parent_id, fragment_id, tags = row
    return SearchableItem(
        item_id=str(item_id),
        scope=Scope(scope),
        timestamp=datetime.fromisoformat(ts),
        text=text,
        embedding=tuple(json.loads(embedding)) if embedding else None,
        metrics=json.loads(metrics) if metrics else {},
        parent_id=parent_id,
        fragment_id=fragment_id,
        tags=tuple(json.loads(tags)) if tags else (),
    )


def _ensure_tables(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS items (
                item_id TEXT PRIMARY KEY,
                scope TEXT NOT NULL,
                ts TEXT NOT NULL,
                day TEXT NOT NULL,
                text TEXT,
                embedding TEXT,
                metrics TEXT,
                parent_id TEXT,
                fragment_id TEXT,
                tags TEXT
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS items_scope_day ON items(scope, day)")
        conn.execute(
            "CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(item_id UNINDEXED, text)"
        )
        conn.commit()
