from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence

from .config import RatePolicy
from .entities import EntityBasic
from .errors import LoadBatchError
from .records import Record, key_of
from .scheduler import chunked
from .store import DocumentStore


logger = logging.getLogger(__name__)

# (path, data, merge)
Op = tuple[str, Optional[dict[str, Any]], bool]


@dataclass
class BatchResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    elapsed: float = 0.0
    details: list[str] = field(default_factory=list)

    def __add__(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            attempted=self.attempted + other.attempted,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            elapsed=self.elapsed + other.elapsed,
            details=self.details + other.details,
        )


def merge_records(
    existing: Iterable[dict[str, Any]],
    incoming: Iterable[dict[str, Any]],
    key: Callable[[dict[str, Any]], str] = key_of,
) -> list[dict[str, Any]]:
    """
    Union of stored and incoming records, one per key.

    Stored order is kept; an incoming record with a known key replaces the
    stored one in place, new keys are appended. Merging the same input twice
    gives the same key set.
    """
    out: list[dict[str, Any]] = []
    index: dict[str, int] = {}
    for doc in existing:
        k = key(doc)
        if k in index:
            continue
        index[k] = len(out)
        out.append(doc)
    for doc in incoming:
        k = key(doc)
        if k in index:
            out[index[k]] = doc
        else:
            index[k] = len(out)
            out.append(doc)
    return out


class PathLayout:
    """Document paths for one house/domain pair."""

    def __init__(self, house: str, domain: str) -> None:
        self.root = f"{house}_{domain}"

    def summary(self, entity_id: str) -> str:
        return f"{self.root}/{entity_id}"

    def periods(self, entity_id: str) -> str:
        return f"{self.root}/{entity_id}/periodos"

    def period(self, entity_id: str, period: str) -> str:
        return f"{self.periods(entity_id)}/{period}"

    def metadata(self, term: int) -> str:
        return f"{self.root}_metadata/legislatura_{term}"


def _period_stats(items: Sequence[dict[str, Any]]) -> dict[str, Any]:
    types = Counter(
        d.get("tipo_despesa") or d.get("tipo_discurso") or d.get("tipo_descricao") or "OUTROS"
        for d in items
    )
    amount = sum(float(d.get("valor_liquido") or 0) for d in items)
    return {"total": len(items), "valor": round(amount, 2), "porTipo": dict(types)}


class BatchLoader:
    def __init__(
        self,
        store: DocumentStore,
        layout: PathLayout,
        *,
        batch_size: int = 500,
        rate: Optional[RatePolicy] = None,
    ) -> None:
        self.store = store
        self.layout = layout
        self.batch_size = max(1, batch_size)
        self.rate = rate or RatePolicy()

    async def load(
        self,
        entity_id: str,
        records: Sequence[Record],
        mode: str = "full",
        entity: Optional[EntityBasic] = None,
    ) -> BatchResult:
        """Write one entity's records, grouped into one document per period."""
        groups: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for rec in records:
            groups[rec.period].append(rec.to_dict())

        ops: list[Op] = []
        merged: dict[str, list[dict[str, Any]]] = {}

        if mode == "incremental":
            for period, items in groups.items():
                current = await self.store.get(self.layout.period(entity_id, period))
                stored = (current or {}).get("items") or []
                merged[period] = merge_records(stored, items)
                logger.debug(
                    "%s/%s: stored=%d incoming=%d merged=%d",
                    entity_id,
                    period,
                    len(stored),
                    len(items),
                    len(merged[period]),
                )
        else:
            # full mode rewrites only the periods this run fetched
            for period, items in groups.items():
                merged[period] = merge_records([], items)

        summary = await self.store.get(self.layout.summary(entity_id))
        now = datetime.now().isoformat(timespec="seconds")
        for period in sorted(merged):
            items = merged[period]
            ops.append(
                (
                    self.layout.period(entity_id, period),
                    {
                        "periodo": period,
                        "total": len(items),
                        "ultimaAtualizacao": now,
                        "items": items,
                    },
                    False,
                )
            )
        ops.append(
            (
                self.layout.summary(entity_id),
                self._summary(entity_id, merged, summary, entity, now),
                False,
            )
        )
        return await self.commit_ops(ops, label=f"entity {entity_id}")

    def _summary(
        self,
        entity_id: str,
        merged: dict[str, list[dict[str, Any]]],
        previous: Optional[dict[str, Any]],
        entity: Optional[EntityBasic],
        now: str,
    ) -> dict[str, Any]:
        periods = dict((previous or {}).get("periodos") or {})
        for period, items in merged.items():
            periods[period] = _period_stats(items)
        doc: dict[str, Any] = {
            "id": entity_id,
            "totalRegistros": sum(p.get("total", 0) for p in periods.values()),
            "valorTotal": round(sum(p.get("valor", 0.0) for p in periods.values()), 2),
            "ultimaAtualizacao": now,
            "periodos": periods,
        }
        if entity is not None:
            doc.update({"nome": entity.name, "partido": entity.party, "uf": entity.state})
        return doc

    async def write_run_metadata(self, term: int, payload: dict[str, Any]) -> BatchResult:
        doc = dict(payload)
        doc.setdefault("legislatura", term)
        doc.setdefault("ultimaAtualizacao", datetime.now().isoformat(timespec="seconds"))
        return await self.commit_ops(
            [(self.layout.metadata(term), doc, True)], label=f"metadata term {term}"
        )

    async def commit_ops(self, ops: Sequence[Op], label: str = "") -> BatchResult:
        """Commit ``ops`` in batches; a failed commit is counted, not raised."""
        t0 = time.perf_counter()
        result = BatchResult(attempted=len(ops))
        chunks = chunked(list(ops), self.batch_size)
        for idx, chunk in enumerate(chunks):
            batch = self.store.batch()
            for path, data, merge in chunk:
                batch.set(path, data or {}, merge=merge)
            try:
                await batch.commit()
                result.succeeded += len(chunk)
            except LoadBatchError as e:
                result.failed += len(chunk)
                result.details.append(str(e))
                logger.error("%s: batch %d/%d failed: %s", label, idx + 1, len(chunks), e)
            if idx < len(chunks) - 1 and self.rate.between_batches > 0:
                await asyncio.sleep(self.rate.between_batches)
        result.elapsed = time.perf_counter() - t0
        return result
