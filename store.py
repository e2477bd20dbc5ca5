"""
Persistence layer for the Shift OEE Tracker
===========================================
A small document-store contract (find / upsert / delete / aggregate /
replace-set) and two backends:

  MemoryStore    — process-local, used by tests and offline runs
  SupabaseStore  — tables in Supabase, one table per collection

Filters are equality maps. A filter value may also be a range dict using
the keys gte / lte / gt / lt. Sort is a list of (field, direction) pairs,
direction 1 ascending, -1 descending.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from typing import Iterable, Optional

import pandas as pd

from errors import StoreError

logger = logging.getLogger(__name__)

RANGE_OPS = ("gte", "lte", "gt", "lt")


def _is_range(value) -> bool:
    return isinstance(value, dict) and bool(value) and set(value) <= set(RANGE_OPS)


def matches(record: dict, flt: Optional[dict]) -> bool:
    """True if ``record`` satisfies every clause of ``flt``."""
    for key, expected in (flt or {}).items():
        actual = record.get(key)
        if _is_range(expected):
            if actual is None:
                return False
            for op, bound in expected.items():
                if op == "gte" and not actual >= bound:
                    return False
                if op == "lte" and not actual <= bound:
                    return False
                if op == "gt" and not actual > bound:
                    return False
                if op == "lt" and not actual < bound:
                    return False
        elif actual != expected:
            return False
    return True


def sort_records(records: list, sort) -> list:
    """Multi-key stable sort. Missing fields sort first ascending."""
    out = list(records)
    for field, direction in reversed(list(sort or [])):
        out.sort(
            key=lambda r: (r.get(field) is not None, r.get(field) if r.get(field) is not None else 0),
            reverse=direction < 0,
        )
    return out


def _equality_part(flt: Optional[dict]) -> dict:
    return {k: v for k, v in (flt or {}).items() if not _is_range(v)}


class Store:
    """Persistence contract. Backends implement the abstract calls."""

    def find(self, collection: str, flt: Optional[dict] = None, sort=None,
             limit: Optional[int] = None) -> list:
        raise NotImplementedError

    def insert(self, collection: str, record: dict) -> dict:
        raise NotImplementedError

    def upsert(self, collection: str, flt: dict, patch: dict,
               on_insert: Optional[dict] = None) -> dict:
        """Update the first match with ``patch`` or insert filter + on_insert + patch."""
        raise NotImplementedError

    def update_one(self, collection: str, flt: dict, patch: dict) -> Optional[dict]:
        raise NotImplementedError

    def delete_many(self, collection: str, flt: dict) -> int:
        raise NotImplementedError

    def replace_sets(self, replacements: Iterable) -> dict:
        """Apply ``(collection, filter, rows)`` replacements all-or-nothing.

        Each replacement deletes every row matching ``filter`` and inserts
        ``rows``. Returns inserted counts per collection.
        """
        raise NotImplementedError

    # -- derived ----------------------------------------------------------
    def find_one(self, collection: str, flt: Optional[dict] = None, sort=None) -> Optional[dict]:
        rows = self.find(collection, flt, sort=sort, limit=1)
        return rows[0] if rows else None

    def aggregate(self, collection: str, group_key: str, sum_field: str,
                  flt: Optional[dict] = None) -> dict:
        """Sum ``sum_field`` per ``group_key`` value."""
        rows = self.find(collection, flt)
        if not rows:
            return {}
        df = pd.DataFrame(rows)
        if group_key not in df.columns or sum_field not in df.columns:
            return {}
        df[sum_field] = pd.to_numeric(df[sum_field], errors="coerce").fillna(0)
        sums = df.groupby(group_key)[sum_field].sum()
        return dict(zip(sums.index.tolist(), sums.tolist()))


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------
class MemoryStore(Store):
    """Dict-of-lists store. Every call runs under one re-entrant lock."""

    def __init__(self):
        self._data: dict = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _rows(self, collection: str) -> list:
        return self._data.setdefault(collection, [])

    def find(self, collection, flt=None, sort=None, limit=None):
        with self._lock:
            hits = [r for r in self._rows(collection) if matches(r, flt)]
            hits = sort_records(hits, sort)
            if limit is not None:
                hits = hits[:limit]
            return copy.deepcopy(hits)

    def insert(self, collection, record):
        with self._lock:
            row = dict(record)
            row.setdefault("id", next(self._ids))
            self._rows(collection).append(row)
            return copy.deepcopy(row)

    def upsert(self, collection, flt, patch, on_insert=None):
        with self._lock:
            for row in self._rows(collection):
                if matches(row, flt):
                    row.update(patch)
                    return copy.deepcopy(row)
            record = {**_equality_part(flt), **(on_insert or {}), **patch}
            return self.insert(collection, record)

    def update_one(self, collection, flt, patch):
        with self._lock:
            for row in self._rows(collection):
                if matches(row, flt):
                    row.update(patch)
                    return copy.deepcopy(row)
            return None

    def delete_many(self, collection, flt):
        with self._lock:
            rows = self._rows(collection)
            keep = [r for r in rows if not matches(r, flt)]
            removed = len(rows) - len(keep)
            self._data[collection] = keep
            return removed

    def replace_sets(self, replacements):
        with self._lock:
            staged = {}
            counts = {}
            try:
                for collection, flt, rows in replacements:
                    current = staged.get(collection, self._rows(collection))
                    kept = [r for r in current if not matches(r, flt)]
                    for row in rows:
                        new_row = dict(row)
                        new_row.setdefault("id", next(self._ids))
                        kept.append(new_row)
                    staged[collection] = kept
                    counts[collection] = counts.get(collection, 0) + len(rows)
            except Exception as exc:
                raise StoreError(f"Replace failed, nothing written: {exc}") from exc
            self._data.update(staged)
            return counts


# ---------------------------------------------------------------------------
# Supabase backend
# ---------------------------------------------------------------------------
class SupabaseStore(Store):
    """One Supabase table per collection; rows carry an ``id`` primary key."""

    def __init__(self, client):
        self.client = client

    @staticmethod
    def _apply_filter(query, flt):
        for key, value in (flt or {}).items():
            if _is_range(value):
                for op, bound in value.items():
                    query = getattr(query, op)(key, bound)
            else:
                query = query.eq(key, value)
        return query

    def _execute(self, what, query):
        logger.debug("supabase %s", what)
        try:
            resp = query.execute()
        except Exception as exc:
            raise StoreError(f"Supabase {what} failed: {exc}") from exc
        return resp.data or []

    def find(self, collection, flt=None, sort=None, limit=None):
        query = self._apply_filter(self.client.table(collection).select("*"), flt)
        for field, direction in sort or []:
            query = query.order(field, desc=direction < 0)
        if limit is not None:
            query = query.limit(limit)
        return self._execute(f"select {collection}", query)

    def insert(self, collection, record):
        data = self._execute(f"insert {collection}", self.client.table(collection).insert(record))
        return data[0] if data else dict(record)

    def upsert(self, collection, flt, patch, on_insert=None):
        existing = self.find_one(collection, flt)
        if existing is None:
            return self.insert(collection, {**_equality_part(flt), **(on_insert or {}), **patch})
        query = self.client.table(collection).update(patch).eq("id", existing["id"])
        data = self._execute(f"update {collection}", query)
        return data[0] if data else {**existing, **patch}

    def update_one(self, collection, flt, patch):
        existing = self.find_one(collection, flt)
        if existing is None:
            return None
        query = self.client.table(collection).update(patch).eq("id", existing["id"])
        data = self._execute(f"update {collection}", query)
        return data[0] if data else {**existing, **patch}

    def delete_many(self, collection, flt):
        query = self._apply_filter(self.client.table(collection).delete(), flt)
        return len(self._execute(f"delete {collection}", query))

    def replace_sets(self, replacements):
        replacements = list(replacements)
        snapshots = [(c, f, self.find(c, f)) for c, f, _ in replacements]
        counts = {}
        try:
            for collection, flt, rows in replacements:
                self.delete_many(collection, flt)
                if rows:
                    self._execute(f"insert {collection}",
                                  self.client.table(collection).insert([dict(r) for r in rows]))
                counts[collection] = counts.get(collection, 0) + len(rows)
        except StoreError as exc:
            logger.warning("Replace failed, restoring %d snapshot(s): %s", len(snapshots), exc)
            self._restore(snapshots)
            raise
        return counts

    def _restore(self, snapshots):
        for collection, flt, rows in snapshots:
            self.delete_many(collection, flt)
            if rows:
                self._execute(f"restore {collection}", self.client.table(collection).insert(rows))
