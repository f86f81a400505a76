"""Client fixtures wired to in-process fake APIs."""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
import pytest

from congresso_etl.client import ApiClient
from congresso_etl.config import ApiConfig, RatePolicy, RetryPolicy


@pytest.fixture
def api_cfg() -> ApiConfig:
    return ApiConfig(http2=False, retry=RetryPolicy(max_attempts=3, base_delay=0.0))


@pytest.fixture
def make_api(api_cfg: ApiConfig) -> Callable[..., ApiClient]:
    def factory(handler: Callable[[httpx.Request], Any], cfg: Optional[ApiConfig] = None) -> ApiClient:
        return ApiClient(cfg or api_cfg, RatePolicy.none(), transport=httpx.MockTransport(handler))

    return factory
