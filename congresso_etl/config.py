from __future__ import annotations

import os
import random
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional


CAMARA_API_ROOT = "https://dadosabertos.camara.leg.br/api/v2"
SENADO_API_ROOT = "https://legis.senado.leg.br/dadosabertos"

DOMAINS = ("despesas", "discursos", "liderancas")
DESTINATIONS = ("local", "emulator", "firestore", "memory")
BACKOFFS = ("fixed", "linear", "exponential")


# -----------------------------
# Helpers
# -----------------------------
def safe_int(x: Any) -> Optional[int]:
    if x is None:
        return None
    if isinstance(x, bool):
        return None
    if isinstance(x, int):
        return x
    s = str(x).strip()
    if re.fullmatch(r"-?\d+", s):
        return int(s)
    return None


def safe_float(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        return float(x)
    s = str(x).strip().replace(",", ".")
    try:
        return float(s)
    except ValueError:
        return None


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = safe_int(environ.get(key))
    return default if value is None else value


def _env_float(environ: Mapping[str, str], key: str, default: float) -> float:
    value = safe_float(environ.get(key))
    return default if value is None else value


# -----------------------------
# Policies
# -----------------------------
@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    backoff: str = "fixed"
    cap: float = 12.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the failed attempt number ``attempt`` (0-based)."""
        if self.base_delay <= 0:
            return 0.0
        if self.backoff == "linear":
            return min(self.cap, self.base_delay * (attempt + 1))
        if self.backoff == "exponential":
            t = min(self.cap, self.base_delay * (2**attempt))
            return t * (0.6 + random.random() * 0.8)
        return self.base_delay


@dataclass(frozen=True)
class RatePolicy:
    """Pauses (seconds) inserted between pages, entity chunks and store batches."""

    between_pages: float = 0.5
    between_chunks: float = 2.0
    between_batches: float = 0.5

    @classmethod
    def none(cls) -> "RatePolicy":
        return cls(between_pages=0.0, between_chunks=0.0, between_batches=0.0)


# -----------------------------
# Configs
# -----------------------------
@dataclass(frozen=True)
class ApiConfig:
    camara_root: str = CAMARA_API_ROOT
    senado_root: str = SENADO_API_ROOT
    user_agent: str = "congresso-etl/0.1 (dados abertos)"
    http2: bool = True
    timeout_s: float = 30.0
    max_connections: int = 20
    max_keepalive: int = 10
    items_per_page: int = 100
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ApiConfig":
        env = os.environ if environ is None else environ
        retry = RetryPolicy(
            max_attempts=_env_int(env, "ETL_MAX_RETRIES", 3),
            base_delay=_env_float(env, "ETL_RETRY_DELAY", 2.0),
            backoff=env.get("ETL_RETRY_BACKOFF", "fixed"),
        )
        return cls(
            camara_root=env.get("CAMARA_API_BASE_URL", CAMARA_API_ROOT).rstrip("/"),
            senado_root=env.get("SENADO_API_BASE_URL", SENADO_API_ROOT).rstrip("/"),
            user_agent=env.get("ETL_USER_AGENT", cls.user_agent),
            retry=retry,
        )


@dataclass(frozen=True)
class StoreConfig:
    batch_size: int = 500
    output_dir: Path = Path("data") / "store"
    project_id: str = "congresso-etl"
    emulator_host: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        output_dir: Optional[Path] = None,
    ) -> "StoreConfig":
        env = os.environ if environ is None else environ
        return cls(
            batch_size=_env_int(env, "FIRESTORE_BATCH_SIZE", 500),
            output_dir=output_dir or cls.output_dir,
            project_id=env.get("FIRESTORE_PROJECT_ID", cls.project_id),
            emulator_host=env.get("FIRESTORE_EMULATOR_HOST") or None,
        )


@dataclass(frozen=True)
class PipelineOptions:
    term: int
    domain: str = "despesas"
    entity_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    party: Optional[str] = None
    state: Optional[str] = None
    limit: int = 0
    concurrency: int = 2
    destination: str = "local"
    incremental: bool = False
    dry_run: bool = False
    verbose: bool = False
    show_progress: bool = True

    @property
    def mode(self) -> str:
        return "incremental" if self.incremental else "full"


def rate_policy_from_env(environ: Optional[Mapping[str, str]] = None) -> RatePolicy:
    env = os.environ if environ is None else environ
    default = RatePolicy()
    return RatePolicy(
        between_pages=_env_float(env, "ETL_PAUSE_BETWEEN_PAGES", default.between_pages),
        between_chunks=_env_float(env, "ETL_PAUSE_BETWEEN_CHUNKS", default.between_chunks),
        between_batches=_env_float(
            env, "FIRESTORE_PAUSE_BETWEEN_BATCHES", default.between_batches
        ),
    )


def validate_config(api: ApiConfig, store: StoreConfig) -> list[str]:
    """Range checks for the environment-driven settings; returns error messages."""
    errors: list[str] = []
    if not 1 <= api.retry.max_attempts <= 10:
        errors.append("ETL_MAX_RETRIES must be between 1 and 10")
    if api.retry.base_delay < 0:
        errors.append("ETL_RETRY_DELAY must not be negative")
    if api.retry.backoff not in BACKOFFS:
        errors.append(f"ETL_RETRY_BACKOFF must be one of {', '.join(BACKOFFS)}")
    if not 1 <= api.items_per_page <= 100:
        errors.append("items per page must be between 1 and 100")
    if not 1 <= store.batch_size <= 500:
        errors.append("FIRESTORE_BATCH_SIZE must be between 1 and 500")
    return errors
