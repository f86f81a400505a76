from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from tqdm import tqdm

from .config import RatePolicy
from .entities import EntityBasic


logger = logging.getLogger(__name__)


@dataclass
class RawExtractionResult:
    entity_id: str
    items: list[Any] = field(default_factory=list)
    total_pages: int = 0
    error: Optional[str] = None
    entity: Optional[EntityBasic] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ChunkProgress:
    done: int
    total: int
    succeeded: int
    failed: int
    chunk: int
    chunks: int


Extractor = Callable[[EntityBasic], Awaitable[RawExtractionResult]]


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


async def extract_all(
    entities: Sequence[EntityBasic],
    extract_one: Extractor,
    *,
    concurrency: int = 2,
    rate: Optional[RatePolicy] = None,
    on_chunk: Optional[Callable[[ChunkProgress], None]] = None,
    desc: str = "entities",
    show_progress: bool = True,
) -> list[RawExtractionResult]:
    """
    Run ``extract_one`` over the roster in consecutive chunks of ``concurrency``.

    A chunk only starts once the previous one has settled, so at most
    ``concurrency`` extractions are ever in flight. A failing entity becomes
    a result with ``error`` set; it never aborts its siblings.
    """
    rate = rate or RatePolicy()
    chunks = chunked(list(entities), concurrency)
    results: list[RawExtractionResult] = []
    ok = 0
    fail = 0

    pbar = tqdm(total=len(entities), desc=desc, unit="entity", disable=not show_progress)
    try:
        for idx, chunk in enumerate(chunks):
            outcomes = await asyncio.gather(
                *(extract_one(e) for e in chunk), return_exceptions=True
            )
            for entity, out in zip(chunk, outcomes):
                if isinstance(out, asyncio.CancelledError):
                    raise out
                if isinstance(out, BaseException):
                    logger.error("Extraction failed for %s (%s): %s", entity.id, entity.name, out)
                    out = RawExtractionResult(
                        entity_id=entity.id,
                        entity=entity,
                        error=str(out) or type(out).__name__,
                    )
                if out.entity is None:
                    out.entity = entity
                if out.ok:
                    ok += 1
                else:
                    fail += 1
                results.append(out)
            pbar.update(len(chunk))

            if on_chunk is not None:
                on_chunk(
                    ChunkProgress(
                        done=len(results),
                        total=len(entities),
                        succeeded=ok,
                        failed=fail,
                        chunk=idx + 1,
                        chunks=len(chunks),
                    )
                )
            if idx < len(chunks) - 1 and rate.between_chunks > 0:
                await asyncio.sleep(rate.between_chunks)
    finally:
        pbar.close()

    logger.info("%s OK=%d FAIL=%d", desc, ok, fail)
    return results
