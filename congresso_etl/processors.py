from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Any, Optional, Type

from . import endpoints
from .config import PipelineOptions
from .entities import EntityBasic, RosterExtractor, apply_filters
from .errors import NoEntitiesFoundError, RequestError
from .loader import BatchLoader, BatchResult, PathLayout
from .pipeline import Pipeline, RunContext
from .records import Record
from .scheduler import ChunkProgress, RawExtractionResult, extract_all
from .transform import (
    ExpenseTransformer,
    LeadershipTransformer,
    RecordTransformer,
    SpeechTransformer,
    reference_list,
)
from .windows import IncrementalWindow


logger = logging.getLogger(__name__)

FULL_MAX_PAGES = 100
INCREMENTAL_MAX_PAGES = 20

Grouped = dict[str, list[Record]]


class EntityPipeline(Pipeline):
    """Roster -> per-deputy extraction -> transform -> per-deputy load."""

    domain = ""
    transformer_cls: Type[RecordTransformer] = RecordTransformer
    # incremental windows: trailing months (expenses) or trailing days (speeches)
    window_months: Optional[int] = None
    window_days: Optional[int] = None

    def __init__(self, options: PipelineOptions, ctx: RunContext) -> None:
        super().__init__(options, ctx)
        self.roster = RosterExtractor(ctx.api)
        self.window = self._window()
        self.max_pages = INCREMENTAL_MAX_PAGES if options.incremental else FULL_MAX_PAGES

    def _window(self) -> Optional[IncrementalWindow]:
        opts = self.options
        if opts.start_date or opts.end_date:
            try:
                start = date.fromisoformat(opts.start_date) if opts.start_date else date(2000, 1, 1)
                end = date.fromisoformat(opts.end_date) if opts.end_date else self.ctx.now.date()
            except ValueError:
                # rejected later by validate()
                return None
            return IncrementalWindow(start, end)
        if not opts.incremental:
            return None
        if self.window_months is not None:
            return IncrementalWindow.trailing_months(self.ctx.now, self.window_months)
        return IncrementalWindow.trailing_days(self.ctx.now, self.window_days or 60)

    async def resolve_entities(self) -> list[EntityBasic]:
        opts = self.options
        if opts.entity_id:
            entity = await self.roster.fetch_entity(str(opts.entity_id), opts.term)
            if entity is None:
                raise NoEntitiesFoundError(f"deputy {opts.entity_id} not found")
            return [entity]
        return await self.roster.list_entities(
            opts.term, party=opts.party, state=opts.state, limit=opts.limit
        )

    async def collect(
        self, path: str, params: dict[str, Any], context: str
    ) -> tuple[list[Any], int]:
        return await self.ctx.api.get_all_pages(
            path, params, max_pages=self.max_pages, context=context
        )

    async def extract_one(self, entity: EntityBasic) -> RawExtractionResult:
        raise NotImplementedError

    def _chunk_progress(self, p: ChunkProgress) -> None:
        self.emit(
            min(90.0, 30 + p.done / max(1, p.total) * 60),
            f"{p.done}/{p.total} deputies (ok={p.succeeded} fail={p.failed})",
        )

    async def extract(self) -> list[RawExtractionResult]:
        self.entities = await self.resolve_entities()
        self.emit(30, f"{len(self.entities)} deputies selected")
        if self.window is not None:
            logger.info("Window: %s .. %s", self.window.start, self.window.end)

        results = await extract_all(
            self.entities,
            self.extract_one,
            concurrency=self.options.concurrency,
            rate=self.ctx.rate,
            on_chunk=self._chunk_progress,
            desc=f"{self.domain} term {self.options.term}",
            show_progress=self.options.show_progress,
        )
        self.result.succeeded = sum(1 for r in results if r.ok)
        self.result.failed = sum(1 for r in results if not r.ok)
        self.result.extracted = sum(len(r.items) for r in results)
        return results

    def transform(self, raw: list[RawExtractionResult]) -> Grouped:
        transformer = self.transformer_cls(now=self.ctx.now)
        grouped: Grouped = {}
        outside = 0
        for r in raw:
            if not r.ok:
                continue
            records = transformer.transform_many(r.items, r.entity_id)
            if self.window is not None:
                kept = [rec for rec in records if self.window.contains(rec.day)]
                outside += len(records) - len(kept)
                records = kept
            grouped[r.entity_id] = records

        if outside:
            logger.info("%d records outside %s..%s ignored", outside, self.window.start, self.window.end)
        self.result.dropped = transformer.stats.dropped
        self.result.transformed = sum(len(v) for v in grouped.values())
        self.result.stats = transformer.stats.as_dict()
        return grouped

    async def load(self, grouped: Grouped) -> None:
        loader = BatchLoader(
            self.ctx.store,
            PathLayout(self.house, self.domain),
            batch_size=self.ctx.batch_size,
            rate=self.ctx.rate,
        )
        by_id = {e.id: e for e in self.entities}
        total = BatchResult()
        for idx, (entity_id, records) in enumerate(grouped.items(), start=1):
            if self.options.incremental and not records:
                continue
            total = total + await loader.load(
                entity_id, records, self.options.mode, by_id.get(entity_id)
            )
            self.emit(95 + 4 * idx / max(1, len(grouped)), f"loaded {idx}/{len(grouped)}")

        meta = await loader.write_run_metadata(
            self.options.term,
            {
                "dominio": self.domain,
                "modo": self.options.mode,
                "entidades": len(self.entities),
                "sucessos": self.result.succeeded,
                "falhas": self.result.failed,
                "estatisticas": self.result.stats,
            },
        )
        total = total + meta
        self.result.written = total.succeeded
        self.result.write_failures = total.failed
        if total.failed:
            self.result.errors.extend(total.details)


class ExpensesPipeline(EntityPipeline):
    name = "despesas"
    domain = "despesas"
    transformer_cls = ExpenseTransformer
    window_months = 2

    async def extract_one(self, entity: EntityBasic) -> RawExtractionResult:
        path = endpoints.fill_path(endpoints.DESPESAS.path, codigo=entity.id)
        term = self.options.term

        if self.window is None:
            params = endpoints.DESPESAS.with_params(
                idLegislatura=term, ano=self.options.year, mes=self.options.month
            )
            items, pages = await self.collect(path, params, f"expenses {entity.id}")
            return RawExtractionResult(entity.id, items, pages, entity=entity)

        items: list[Any] = []
        pages = 0
        for year, month in self.window.months():
            params = endpoints.DESPESAS.with_params(idLegislatura=term, ano=year, mes=month)
            try:
                got, n = await self.collect(path, params, f"expenses {entity.id} {year}-{month:02d}")
            except RequestError as e:
                logger.warning("Expenses %s %d-%02d skipped: %s", entity.id, year, month, e)
                continue
            items.extend(got)
            pages += n
        return RawExtractionResult(entity.id, items, pages, entity=entity)


class SpeechesPipeline(EntityPipeline):
    name = "discursos"
    domain = "discursos"
    transformer_cls = SpeechTransformer
    window_days = 60

    async def extract_one(self, entity: EntityBasic) -> RawExtractionResult:
        path = endpoints.fill_path(endpoints.DISCURSOS.path, codigo=entity.id)
        extra = self.window.as_params() if self.window is not None else {}
        params = endpoints.DISCURSOS.with_params(idLegislatura=self.options.term, **extra)
        items, pages = await self.collect(path, params, f"speeches {entity.id}")
        return RawExtractionResult(entity.id, items, pages, entity=entity)


class LeadershipPipeline(Pipeline):
    """Senate leadership roles: one listing call, records grouped by senator."""

    name = "liderancas"
    house = "senado"
    domain = "liderancas"

    def __init__(self, options: PipelineOptions, ctx: RunContext) -> None:
        super().__init__(options, ctx)
        self.references: dict[str, list[dict[str, str]]] = {}

    async def extract(self) -> RawExtractionResult:
        api = self.ctx.api
        ep = endpoints.LIDERANCAS
        payload = await api.get_json(
            ep.path, dict(ep.params), house=ep.house, context="leaderships"
        )

        for key, ref in (
            ("tiposLideranca", endpoints.TIPOS_LIDERANCA),
            ("tiposUnidade", endpoints.TIPOS_UNIDADE),
            ("tiposCargo", endpoints.TIPOS_CARGO),
        ):
            try:
                data = await api.get_json(ref.path, dict(ref.params), house=ref.house, context=key)
            except RequestError as e:
                logger.warning("Reference list %s unavailable: %s", key, e)
                self.result.warnings += 1
                continue
            self.references[key] = reference_list(data, key)

        self.emit(60, "leaderships fetched")
        return RawExtractionResult("senado", [payload], 1)

    def transform(self, raw: RawExtractionResult) -> Grouped:
        transformer = LeadershipTransformer(now=self.ctx.now)
        records = transformer.transform_payload(raw.items[0] if raw.items else {})
        opts = self.options

        owners: dict[str, EntityBasic] = {}
        for rec in records:
            owners.setdefault(
                rec.owner_id,
                EntityBasic(id=rec.owner_id, name=rec.nome_parlamentar, party=rec.partido, state=rec.uf),
            )
        selected = list(owners.values())
        if opts.entity_id:
            selected = [e for e in selected if e.id == str(opts.entity_id)]
        selected = apply_filters(selected, party=opts.party, state=opts.state, limit=opts.limit)
        if not selected:
            raise NoEntitiesFoundError("no senators with leadership roles matched the filters")
        self.entities = selected

        wanted = {e.id for e in selected}
        grouped: Grouped = defaultdict(list)
        for rec in records:
            if rec.owner_id in wanted:
                grouped[rec.owner_id].append(rec)

        self.result.extracted = len(records) + transformer.stats.dropped
        self.result.succeeded = len(selected)
        self.result.dropped = transformer.stats.dropped
        self.result.transformed = sum(len(v) for v in grouped.values())
        self.result.stats = transformer.stats.as_dict()
        return dict(grouped)

    async def load(self, grouped: Grouped) -> None:
        loader = BatchLoader(
            self.ctx.store,
            PathLayout(self.house, self.domain),
            batch_size=self.ctx.batch_size,
            rate=self.ctx.rate,
        )
        by_id = {e.id: e for e in self.entities}
        total = BatchResult()
        for entity_id, records in grouped.items():
            total = total + await loader.load(entity_id, records, self.options.mode, by_id.get(entity_id))
        total = total + await loader.write_run_metadata(
            self.options.term,
            {
                "dominio": self.domain,
                "modo": self.options.mode,
                "senadores": len(grouped),
                "estatisticas": self.result.stats,
                **self.references,
            },
        )
        self.result.written = total.succeeded
        self.result.write_failures = total.failed


PIPELINES: dict[str, Type[Pipeline]] = {
    "despesas": ExpensesPipeline,
    "discursos": SpeechesPipeline,
    "liderancas": LeadershipPipeline,
}


def build_pipeline(options: PipelineOptions, ctx: RunContext) -> Pipeline:
    return PIPELINES[options.domain](options, ctx)
