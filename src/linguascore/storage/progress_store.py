"""Durable per-user progress store with atomic increment/set updates.

Updates use ``find_one_and_update`` semantics: ``inc`` adds to numeric
fields, ``set_`` overwrites fields and ``add_to_set`` appends unique values
to list fields. Keys are dotted paths (``"stats.total_messages"``). Each
call is applied atomically per user, so concurrent writers never lose an
increment.
"""

import asyncio
import copy
import fcntl
import json
import os
import tempfile
import weakref
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

from linguascore.exceptions import PersistenceError


class ProgressStore(Protocol):
    async def find_one(self, user_id: str) -> dict[str, Any] | None: ...

    async def find_one_and_update(
        self,
        user_id: str,
        inc: dict[str, float] | None = None,
        set_: dict[str, Any] | None = None,
        add_to_set: dict[str, list[Any]] | None = None,
        upsert: bool = True,
    ) -> dict[str, Any] | None: ...


def _resolve_parent(doc: dict, path: str) -> tuple[dict, str]:
    parts = path.split(".")
    node = doc
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    return node, parts[-1]


def get_path(doc: dict, path: str, default: Any = None) -> Any:
    """Read a dotted path from a nested dict."""
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def apply_update(
    doc: dict[str, Any],
    inc: dict[str, float] | None = None,
    set_: dict[str, Any] | None = None,
    add_to_set: dict[str, list[Any]] | None = None,
) -> dict[str, Any]:
    """Apply $inc / $set / $addToSet operators to ``doc`` in place."""
    for path, amount in (inc or {}).items():
        parent, key = _resolve_parent(doc, path)
        parent[key] = (parent.get(key) or 0) + amount
    for path, value in (set_ or {}).items():
        parent, key = _resolve_parent(doc, path)
        parent[key] = value
    for path, values in (add_to_set or {}).items():
        parent, key = _resolve_parent(doc, path)
        existing = parent.get(key)
        if not isinstance(existing, list):
            existing = []
        for value in values:
            if value not in existing:
                existing.append(value)
        parent[key] = existing
    return doc


def _new_document(user_id: str) -> dict[str, Any]:
    return {"user_id": user_id, "created_at": datetime.now().isoformat()}


class MemoryProgressStore:
    """In-process store. One lock per user keeps each update atomic."""

    def __init__(self):
        self._docs: dict[str, dict[str, Any]] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def find_one(self, user_id: str) -> dict[str, Any] | None:
        doc = self._docs.get(user_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find_one_and_update(
        self,
        user_id: str,
        inc: dict[str, float] | None = None,
        set_: dict[str, Any] | None = None,
        add_to_set: dict[str, list[Any]] | None = None,
        upsert: bool = True,
    ) -> dict[str, Any] | None:
        async with self._lock_for(user_id):
            doc = self._docs.get(user_id)
            if doc is None:
                if not upsert:
                    return None
                doc = _new_document(user_id)
                self._docs[user_id] = doc
            apply_update(doc, inc, set_, add_to_set)
            return copy.deepcopy(doc)


class JsonProgressStore:
    """One JSON document per user (fcntl.flock + atomic write)."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, user_id: str) -> Path:
        # Percent-encoded, so distinct ids never share a file
        return self.directory / f"{quote(user_id, safe='')}.json"

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, path: Path, doc: dict[str, Any]) -> None:
        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, delete=False, suffix=".json", encoding="utf-8"
        ) as tmp:
            json.dump(doc, tmp, default=str)
        os.replace(tmp.name, path)

    def _update_locked(
        self,
        user_id: str,
        inc: dict[str, float] | None,
        set_: dict[str, Any] | None,
        add_to_set: dict[str, list[Any]] | None,
        upsert: bool,
    ) -> dict[str, Any] | None:
        path = self._path(user_id)
        lock_path = path.with_name(path.name + ".lock")
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_EX)
            doc = self._read(path)
            if doc is None:
                if not upsert:
                    return None
                doc = _new_document(user_id)
            apply_update(doc, inc, set_, add_to_set)
            self._write(path, doc)
            return doc

    def _find_locked(self, user_id: str) -> dict[str, Any] | None:
        path = self._path(user_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            data = json.load(f)
            fcntl.flock(f, fcntl.LOCK_UN)
        return data

    async def find_one(self, user_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._find_locked, user_id)

    async def find_one_and_update(
        self,
        user_id: str,
        inc: dict[str, float] | None = None,
        set_: dict[str, Any] | None = None,
        add_to_set: dict[str, list[Any]] | None = None,
        upsert: bool = True,
    ) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(
                self._update_locked, user_id, inc, set_, add_to_set, upsert
            )
        except (OSError, ValueError) as e:
            raise PersistenceError(user_id, str(e)) from e
