r"""
Run state machine shared by every domain.

    IDLE -> VALIDATING -> EXTRACTING -> TRANSFORMING -> LOADING -> FINISHED
                   \____________\______________\____________\--> ERROR

Subclasses provide ``extract``, ``transform`` and ``load``; ``run`` drives
the stages, times them, reports progress and turns any unhandled exception
into an ERROR result instead of raising.
"""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from .client import ApiClient
from .config import DESTINATIONS, DOMAINS, PipelineOptions, RatePolicy
from .entities import EntityBasic
from .errors import ValidationError
from .store import DocumentStore


logger = logging.getLogger(__name__)

MIN_TERM = 1
MAX_TERM = 58
MIN_YEAR = 2000

_iso_date_re = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class PipelineState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    LOADING = "loading"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    state: PipelineState
    percent: float
    message: str = ""


ProgressSink = Callable[[ProgressEvent], None]


def log_progress(event: ProgressEvent) -> None:
    logger.info("[%s %3.0f%%] %s", event.state.value, event.percent, event.message)


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class PipelineResult:
    domain: str
    term: int
    destination: str
    mode: str = "full"
    state: PipelineState = PipelineState.IDLE
    succeeded: int = 0
    failed: int = 0
    warnings: int = 0
    dropped: int = 0
    extracted: int = 0
    transformed: int = 0
    written: int = 0
    write_failures: int = 0
    elapsed: float = 0.0
    stage_times: dict[str, float] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.FINISHED


@dataclass
class RunContext:
    """Collaborators injected into a pipeline; built once by the caller."""

    api: ApiClient
    store: DocumentStore
    rate: RatePolicy = field(default_factory=RatePolicy)
    batch_size: int = 500
    now: datetime = field(default_factory=datetime.now)


def _parse_iso(value: str) -> Optional[date]:
    if not _iso_date_re.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def validate_options(options: PipelineOptions, today: Optional[date] = None) -> ValidationReport:
    today = today or date.today()
    report = ValidationReport()
    err, warn = report.errors.append, report.warnings.append

    if options.term is None:
        err("legislatura is required")
    elif not MIN_TERM <= options.term <= MAX_TERM:
        err(f"legislatura must be between {MIN_TERM} and {MAX_TERM}")
    if options.domain not in DOMAINS:
        err(f"unknown domain {options.domain!r}")
    if options.destination not in DESTINATIONS:
        err(f"unknown destination {options.destination!r}")
    if options.entity_id is not None and not str(options.entity_id).isdigit():
        err(f"entity id must be numeric, got {options.entity_id!r}")
    if not 1 <= options.concurrency <= 10:
        err("concurrency must be between 1 and 10")
    if options.limit < 0:
        err("limit must not be negative")
    elif options.limit > 1000:
        warn(f"limit {options.limit} is very high")

    start = end = None
    for label, value in (("start date", options.start_date), ("end date", options.end_date)):
        if value is None:
            continue
        parsed = _parse_iso(value)
        if parsed is None:
            err(f"{label} must be YYYY-MM-DD, got {value!r}")
        elif label == "start date":
            start = parsed
        else:
            end = parsed
    if start and end:
        if start > end:
            err("start date is after end date")
        elif (end - start).days > 365:
            warn(f"period of {(end - start).days} days may take a long time")

    if options.year is not None and not MIN_YEAR <= options.year <= today.year:
        err(f"year must be between {MIN_YEAR} and {today.year}")
    if options.month is not None:
        if not 1 <= options.month <= 12:
            err("month must be between 1 and 12")
        elif options.year is None:
            warn("month given without year; it applies to every year")

    if not options.limit and not options.entity_id:
        warn("no limit and no entity given: the whole roster will be processed")
    if options.incremental:
        if start or end:
            warn("explicit dates override the incremental window")
        else:
            warn("incremental mode: only the trailing window is fetched and merged")
    return report


class Pipeline:
    """Template for one ETL run. Subclasses fill in the three stages."""

    name = "pipeline"
    house = "camara"

    def __init__(self, options: PipelineOptions, ctx: RunContext) -> None:
        self.options = options
        self.ctx = ctx
        self.state = PipelineState.IDLE
        self.entities: list[EntityBasic] = []
        self.result = PipelineResult(
            domain=options.domain,
            term=options.term,
            destination="dry-run" if options.dry_run else options.destination,
            mode=options.mode,
        )
        self._sinks: list[ProgressSink] = []

    def on_progress(self, sink: ProgressSink) -> None:
        self._sinks.append(sink)

    def emit(self, percent: float, message: str = "") -> None:
        event = ProgressEvent(self.state, min(100.0, max(0.0, percent)), message)
        for sink in self._sinks:
            sink(event)

    def _enter(self, state: PipelineState, percent: float, message: str) -> None:
        logger.debug("%s: %s -> %s", self.name, self.state.value, state.value)
        self.state = state
        self.result.state = state
        self.emit(percent, message)

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.result.stage_times[name] = round(time.perf_counter() - t0, 3)

    # -- stages ------------------------------------------------------------
    def validate(self) -> ValidationReport:
        return validate_options(self.options, self.ctx.now.date())

    async def extract(self) -> Any:
        raise NotImplementedError

    def transform(self, raw: Any) -> Any:
        raise NotImplementedError

    async def load(self, records: Any) -> None:
        raise NotImplementedError

    # -- driver ------------------------------------------------------------
    async def run(self) -> PipelineResult:
        t0 = time.perf_counter()
        res = self.result
        try:
            self._enter(PipelineState.VALIDATING, 0, "validating options")
            with self._stage("validate"):
                report = self.validate()
            for w in report.warnings:
                logger.warning("%s", w)
            res.warnings += len(report.warnings)
            if not report.ok:
                raise ValidationError(report.errors, report.warnings)

            self._enter(PipelineState.EXTRACTING, 10, "extracting")
            with self._stage("extract"):
                raw = await self.extract()

            self._enter(PipelineState.TRANSFORMING, 90, "transforming")
            with self._stage("transform"):
                records = self.transform(raw)

            if self.options.dry_run:
                logger.info("Dry run: skipping load")
            else:
                self._enter(PipelineState.LOADING, 95, "loading")
                with self._stage("load"):
                    await self.load(records)

            res.elapsed = time.perf_counter() - t0
            self._enter(PipelineState.FINISHED, 100, "done")
        except Exception as e:  # noqa: BLE001
            res.elapsed = time.perf_counter() - t0
            res.errors.append(str(e))
            res.failed = max(1, len(self.entities))
            res.succeeded = 0
            if isinstance(e, ValidationError):
                for msg in e.errors:
                    logger.error("Invalid option: %s", msg)
            else:
                logger.exception("%s failed during %s", self.name, self.state.value)
            self._enter(PipelineState.ERROR, 100, str(e))

        self.log_summary()
        return res

    def log_summary(self) -> None:
        res = self.result
        logger.info("Run summary (%s, %s mode):", self.name, res.mode)
        logger.info("  state=%s succeeded=%d failed=%d warnings=%d", res.state.value, res.succeeded, res.failed, res.warnings)
        logger.info(
            "  extracted=%d transformed=%d dropped=%d written=%d write_failures=%d",
            res.extracted,
            res.transformed,
            res.dropped,
            res.written,
            res.write_failures,
        )
        logger.info(
            "  elapsed=%.2fs stages=%s destination=%s legislatura=%s",
            res.elapsed,
            res.stage_times,
            res.destination,
            res.term,
        )
