from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

import httpx

from .config import ApiConfig, RatePolicy, RetryPolicy
from .errors import ClientRequestError, RequestError, TransientRequestError


logger = logging.getLogger(__name__)

T = TypeVar("T")

# 408 and 429 are the only 4xx answers worth repeating
TRANSIENT_CODES = (408, 429)

ItemsPicker = Callable[[Any], Any]


@dataclass(frozen=True)
class FetchResult:
    ok: bool
    status_code: int
    url: str
    data: Any = None
    error: Optional[str] = None


def make_client(
    cfg: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    limits = httpx.Limits(
        max_connections=cfg.max_connections, max_keepalive_connections=cfg.max_keepalive
    )
    headers = {"User-Agent": cfg.user_agent, "Accept": "application/json"}
    return httpx.AsyncClient(
        http2=cfg.http2,
        headers=headers,
        limits=limits,
        timeout=cfg.timeout_s,
        follow_redirects=True,
        transport=transport,
    )


def raise_for_status(r: httpx.Response, context: str = "") -> None:
    code = r.status_code
    if code < 400:
        return
    url = str(r.request.url) if r.request is not None else None
    if code in TRANSIENT_CODES or code >= 500:
        raise TransientRequestError(
            r.reason_phrase or "server error", context=context, status_code=code, url=url
        )
    raise ClientRequestError(
        r.reason_phrase or "client error", context=context, status_code=code, url=url
    )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 2.0,
    context: str = "",
    backoff: str = "fixed",
) -> T:
    """Run ``operation`` until it succeeds; client errors are raised at once."""
    policy = RetryPolicy(
        max_attempts=max(1, max_attempts), base_delay=base_delay, backoff=backoff
    )
    last_err: Optional[Exception] = None

    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except ClientRequestError as e:
            if not e.context:
                e.context = context
            logger.warning("Not retrying client error: %s", e)
            raise
        except Exception as e:  # noqa: BLE001
            last_err = e
            logger.warning(
                "%s failed (attempt %d/%d): %s",
                context or "operation",
                attempt + 1,
                policy.max_attempts,
                e,
            )
            if attempt + 1 >= policy.max_attempts:
                break
            await asyncio.sleep(policy.delay_for(attempt))

    if isinstance(last_err, RequestError):
        if not last_err.context:
            last_err.context = context
        raise last_err
    raise TransientRequestError(str(last_err), context=context) from last_err


def dados_items(payload: Any) -> Any:
    """Câmara wraps every list answer in ``{"dados": [...], "links": [...]}``."""
    if isinstance(payload, dict):
        return payload.get("dados")
    return None


class ApiClient:
    """Thin JSON client over both houses' open-data APIs."""

    def __init__(
        self,
        cfg: ApiConfig,
        rate: Optional[RatePolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cfg = cfg
        self.rate = rate or RatePolicy()
        self._client = make_client(cfg, transport)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def url_for(self, path: str, house: str = "camara") -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        root = self.cfg.senado_root if house == "senado" else self.cfg.camara_root
        return f"{root}{path}"

    async def _get_once(
        self, url: str, params: Optional[dict[str, Any]], context: str
    ) -> Any:
        try:
            r = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransientRequestError(f"timeout: {e}", context=context, url=url) from e
        except httpx.TransportError as e:
            raise TransientRequestError(
                f"transport error: {e}", context=context, url=url
            ) from e

        raise_for_status(r, context)
        if not r.content.strip():
            raise TransientRequestError(
                "empty response body", context=context, status_code=r.status_code, url=url
            )
        try:
            return r.json()
        except ValueError as e:
            raise TransientRequestError(
                "response is not JSON", context=context, status_code=r.status_code, url=url
            ) from e

    async def get_json(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        *,
        house: str = "camara",
        context: str = "",
    ) -> Any:
        url = self.url_for(path, house)
        retry = self.cfg.retry
        return await call_with_retry(
            lambda: self._get_once(url, params, context or path),
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            context=context or path,
            backoff=retry.backoff,
        )

    async def fetch(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        *,
        house: str = "camara",
        context: str = "",
    ) -> FetchResult:
        """Like ``get_json`` but a 404 comes back as ``FetchResult(ok=False)``."""
        url = self.url_for(path, house)
        try:
            data = await self.get_json(path, params, house=house, context=context)
        except ClientRequestError as e:
            if e.status_code == 404:
                return FetchResult(ok=False, status_code=404, url=url, error="404")
            raise
        return FetchResult(ok=True, status_code=200, url=url, data=data)

    async def iter_pages(
        self,
        path: str,
        base_params: Optional[dict[str, Any]] = None,
        *,
        max_pages: int = 100,
        items: Optional[ItemsPicker] = None,
        house: str = "camara",
        context: str = "",
    ) -> AsyncIterator[tuple[int, list[Any]]]:
        """Yield ``(page, items)`` until an empty page or ``max_pages``."""
        pick = items or dados_items
        label = context or path
        for page in range(1, max_pages + 1):
            params = dict(base_params or {})
            params["pagina"] = page
            params["itens"] = self.cfg.items_per_page
            payload = await self.get_json(
                path, params, house=house, context=f"{label} p{page}"
            )
            batch = pick(payload)
            if not isinstance(batch, list) or not batch:
                logger.debug("%s: no items on page %d, done", label, page)
                return
            yield page, batch
            if page < max_pages and self.rate.between_pages > 0:
                await asyncio.sleep(self.rate.between_pages)
        logger.info("%s: stopped at max_pages=%d (may be truncated)", label, max_pages)

    async def get_all_pages(
        self,
        path: str,
        base_params: Optional[dict[str, Any]] = None,
        *,
        max_pages: int = 100,
        items: Optional[ItemsPicker] = None,
        house: str = "camara",
        context: str = "",
    ) -> tuple[list[Any], int]:
        """Collect every page; returns the items and the number of non-empty pages."""
        all_items: list[Any] = []
        pages = 0
        async for _, batch in self.iter_pages(
            path,
            base_params,
            max_pages=max_pages,
            items=items,
            house=house,
            context=context,
        ):
            pages += 1
            all_items.extend(batch)
        logger.debug("%s: %d items in %d pages", context or path, len(all_items), pages)
        return all_items, pages
