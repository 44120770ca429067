import os
from pathlib import Path
import sys
from collections.abc import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storefront.config import (  # noqa: E402
    BulkPurchaseConfig,
    PlatformCallConfig,
    ProductInfoConfig,
    StorefrontConfig,
    load_config,
    reset_settings,
)
from storefront.metrics import reset_registry  # noqa: E402
from tests._fakes import FakeMarketplaceService, FakePlayer  # noqa: E402

_ENV_PREFIX = "STOREFRONT_"


@pytest.fixture(autouse=True)
def _test_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in list(os.environ):
        if key.startswith(_ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    reset_registry()
    try:
        yield
    finally:
        reset_settings()
        reset_registry()


@pytest.fixture
def config() -> StorefrontConfig:
    return load_config({})


@pytest.fixture
def bulk_config() -> BulkPurchaseConfig:
    return BulkPurchaseConfig(
        item_timeout_ms=None,
        stop_on_failure=False,
        max_batch_items=50,
        reject_duplicate_items=True,
    )


@pytest.fixture
def platform_config() -> PlatformCallConfig:
    return PlatformCallConfig(timeout_ms=None)


@pytest.fixture
def product_info_config() -> ProductInfoConfig:
    return ProductInfoConfig(retry_max=0, backoff_base_ms=1, jitter_pct=0)


@pytest.fixture
def service() -> FakeMarketplaceService:
    return FakeMarketplaceService()


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer(user_id=1001, name="alice")
