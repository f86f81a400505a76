"""
Document store back ends.

Paths are slash-separated and alternate collection/document segments, so a
document path always has an even number of segments. Writes go through a
batch object whose ``commit`` either applies every queued operation or
raises ``LoadBatchError``; reads that fail raise ``StoreError``.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Protocol

from .config import StoreConfig
from .errors import LoadBatchError, StoreError


logger = logging.getLogger(__name__)


def check_document_path(path: str) -> str:
    segments = [s for s in path.split("/") if s]
    if not segments or len(segments) % 2:
        raise ValueError(f"not a document path (odd segment count): {path!r}")
    return "/".join(segments)


class WriteBatch(Protocol):
    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None: ...

    async def commit(self) -> None: ...

    def __len__(self) -> int: ...


class DocumentStore(Protocol):
    name: str

    async def get(self, path: str) -> Optional[dict[str, Any]]: ...

    def batch(self) -> WriteBatch: ...

    async def close(self) -> None: ...


# -----------------------------
# Buffered batch shared by the local back ends
# -----------------------------
class BufferedBatch:
    def __init__(self, store: "_LocalStoreBase") -> None:
        self._store = store
        self._ops: list[tuple[str, Optional[dict[str, Any]], bool]] = []

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        self._ops.append((check_document_path(path), data, merge))

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        ops, self._ops = self._ops, []
        try:
            await self._store.apply(ops)
        except Exception as e:  # noqa: BLE001
            raise LoadBatchError(f"{self._store.name} commit failed: {e}", len(ops)) from e


class _LocalStoreBase:
    name = "local"

    def batch(self) -> BufferedBatch:
        return BufferedBatch(self)

    async def apply(self, ops: list[tuple[str, Optional[dict[str, Any]], bool]]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryStore(_LocalStoreBase):
    """Dict-backed store for dry runs and tests."""

    name = "memory"

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.commits = 0

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        doc = self.docs.get(check_document_path(path))
        return copy.deepcopy(doc) if doc is not None else None

    async def apply(self, ops: list[tuple[str, Optional[dict[str, Any]], bool]]) -> None:
        for path, data, merge in ops:
            if merge and path in self.docs:
                self.docs[path].update(copy.deepcopy(data or {}))
            else:
                self.docs[path] = copy.deepcopy(data or {})
        self.commits += 1


class LocalFileStore(_LocalStoreBase):
    """One pretty-printed JSON file per document under ``root``."""

    name = "local"

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _file(self, path: str) -> Path:
        return self.root / f"{check_document_path(path)}.json"

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        f = self._file(path)
        if not f.exists():
            return None
        try:
            text = await asyncio.to_thread(f.read_text, encoding="utf-8")
            return json.loads(text) if text.strip() else None
        except (OSError, ValueError) as e:
            raise StoreError(f"cannot read {f}: {e}") from e

    async def apply(self, ops: list[tuple[str, Optional[dict[str, Any]], bool]]) -> None:
        for path, data, merge in ops:
            f = self._file(path)
            doc = dict(data or {})
            if merge:
                existing = await self.get(path)
                if existing:
                    existing.update(doc)
                    doc = existing
            await write_json(f, doc)


async def write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(obj, ensure_ascii=False, indent=2, default=str)
    await asyncio.to_thread(path.write_text, text, encoding="utf-8")


# -----------------------------
# Firestore
# -----------------------------
class FirestoreBatch:
    def __init__(self, client: Any) -> None:
        self._client = client
        self._batch = client.batch()
        self._count = 0

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        self._batch.set(self._client.document(check_document_path(path)), data, merge=merge)
        self._count += 1

    def __len__(self) -> int:
        return self._count

    async def commit(self) -> None:
        try:
            await self._batch.commit()
        except Exception as e:  # noqa: BLE001
            raise LoadBatchError(f"firestore commit failed: {e}", self._count) from e


class FirestoreStore:
    name = "firestore"

    def __init__(self, project_id: str, client: Any = None) -> None:
        if client is None:
            from google.cloud import firestore

            client = firestore.AsyncClient(project=project_id)
        self._client = client

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        try:
            snap = await self._client.document(check_document_path(path)).get()
        except Exception as e:  # noqa: BLE001
            raise StoreError(f"cannot read {path}: {e}") from e
        return snap.to_dict() if snap.exists else None

    def batch(self) -> FirestoreBatch:
        return FirestoreBatch(self._client)

    async def close(self) -> None:
        result = self._client.close()
        if inspect.isawaitable(result):
            await result


def open_store(destination: str, cfg: StoreConfig) -> DocumentStore:
    if destination == "memory":
        return MemoryStore()
    if destination == "local":
        logger.info("Store: local JSON files under %s", cfg.output_dir)
        return LocalFileStore(cfg.output_dir)
    if destination == "emulator":
        host = cfg.emulator_host or "localhost:8080"
        os.environ["FIRESTORE_EMULATOR_HOST"] = host
        logger.info("Store: Firestore emulator at %s (project %s)", host, cfg.project_id)
        store = FirestoreStore(cfg.project_id)
        store.name = "emulator"
        return store
    if destination == "firestore":
        if os.environ.get("FIRESTORE_EMULATOR_HOST"):
            logger.warning(
                "FIRESTORE_EMULATOR_HOST is set; writes will go to the emulator, not production"
            )
        logger.info("Store: Firestore project %s", cfg.project_id)
        return FirestoreStore(cfg.project_id)
    raise ValueError(f"unknown destination: {destination}")
