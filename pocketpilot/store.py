# pocketpilot/store.py
# JSON-file row store standing in for the hosted Postgres tables.
# One file per table under DATA_DIR/tables/, written via tmp + replace.
from __future__ import annotations

import copy
import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from pocketpilot.dates import utcnow_iso
from pocketpilot.errors import StoreError

log = logging.getLogger(__name__)

Row = Dict[str, Any]

_LOCK = threading.RLock()


def _matches(row: Row, eq: Dict[str, Any]) -> bool:
    return all(row.get(k) == v for k, v in eq.items())


def _sort_key(value):
    # None first, then numbers, then everything else as strings
    if value is None:
        return (0, 0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value, "")
    return (2, 0, str(value))


class Table:
    def __init__(self, store: "Store", name: str):
        self.store = store
        self.name = name

    @property
    def path(self) -> Path:
        return self.store.tables_dir / f"{self.name}.json"

    # ---------- file I/O ----------
    def _load(self) -> List[Row]:
        p = self.path
        if not p.exists():
            return []
        try:
            data = json.loads(p.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as e:
            raise StoreError(f"Table '{self.name}' is corrupt: {e}")
        if isinstance(data, dict):
            data = data.get("rows") or []
        return [r for r in data if isinstance(r, dict)]

    def _save(self, rows: List[Row]) -> None:
        p = self.path
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".tmp")
        tmp.write_text(json.dumps(rows, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        tmp.replace(p)

    # ---------- reads ----------
    def select(
        self,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
        where: Optional[Callable[[Row], bool]] = None,
        **eq,
    ) -> List[Row]:
        with _LOCK:
            rows = [r for r in self._load() if _matches(r, eq)]
        if where is not None:
            rows = [r for r in rows if where(r)]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=desc)
        if limit is not None:
            rows = rows[: max(0, int(limit))]
        return copy.deepcopy(rows)

    def first(self, **eq) -> Optional[Row]:
        rows = self.select(limit=1, **eq)
        return rows[0] if rows else None

    def get(self, row_id: str) -> Optional[Row]:
        return self.first(id=row_id)

    def count(self, where: Optional[Callable[[Row], bool]] = None, **eq) -> int:
        return len(self.select(where=where, **eq))

    # ---------- writes ----------
    def insert(self, row_or_rows: Union[Row, Sequence[Row]]):
        single = isinstance(row_or_rows, dict)
        incoming: Iterable[Row] = [row_or_rows] if single else list(row_or_rows)
        now = utcnow_iso()
        out: List[Row] = []
        with _LOCK:
            rows = self._load()
            ids = {r.get("id") for r in rows}
            for raw in incoming:
                row = dict(raw)
                row.setdefault("id", uuid.uuid4().hex)
                if row["id"] in ids:
                    raise StoreError(f"Duplicate id '{row['id']}' in table '{self.name}'")
                row.setdefault("created_at", now)
                ids.add(row["id"])
                rows.append(row)
                out.append(row)
            self._save(rows)
        log.debug("insert %s rows=%d", self.name, len(out))
        out = copy.deepcopy(out)
        return out[0] if single else out

    def update(self, changes: Row, **eq) -> List[Row]:
        if not eq:
            raise StoreError("update() needs at least one filter")
        changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
        now = utcnow_iso()
        updated: List[Row] = []
        with _LOCK:
            rows = self._load()
            for r in rows:
                if _matches(r, eq):
                    r.update(changes)
                    r["updated_at"] = now
                    updated.append(r)
            if updated:
                self._save(rows)
        return copy.deepcopy(updated)

    def upsert(self, row: Row, on_conflict: Sequence[str]) -> Row:
        if not on_conflict:
            raise StoreError("upsert() needs on_conflict columns")
        key = {c: row.get(c) for c in on_conflict}
        now = utcnow_iso()
        with _LOCK:
            rows = self._load()
            for i, existing in enumerate(rows):
                if _matches(existing, key):
                    merged = dict(existing)
                    merged.update({k: v for k, v in row.items() if k not in ("id", "created_at")})
                    merged["updated_at"] = now
                    rows[i] = merged
                    self._save(rows)
                    return copy.deepcopy(merged)
            new = dict(row)
            new.setdefault("id", uuid.uuid4().hex)
            new.setdefault("created_at", now)
            rows.append(new)
            self._save(rows)
            return copy.deepcopy(new)

    def delete(self, **eq) -> int:
        if not eq:
            raise StoreError("delete() needs at least one filter")
        with _LOCK:
            rows = self._load()
            kept = [r for r in rows if not _matches(r, eq)]
            removed = len(rows) - len(kept)
            if removed:
                self._save(kept)
        return removed


class Store:
    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.tables_dir = self.data_dir / "tables"
        self.tables_dir.mkdir(parents=True, exist_ok=True)

    def table(self, name: str) -> Table:
        if not name or not name.replace("_", "").isalnum():
            raise StoreError(f"Invalid table name: {name!r}")
        return Table(self, name)
