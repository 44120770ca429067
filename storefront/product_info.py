"""Product metadata lookups shaped into frozen records."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from storefront.config import ProductInfoConfig, get_settings
from storefront.errors import CallError
from storefront.logging import get_logger
from storefront.logging_events import log_event
from storefront.platform.contracts import InfoType, MarketplaceService, PlatformNotFoundError
from storefront.platform.safe_call import CallResult, SafeCall
from storefront.utils.retry import retry_call_result

logger = get_logger(__name__)


class ProductCreator(BaseModel):
    """Creator block of a catalog record."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: int | None = Field(default=None, validation_alias=AliasChoices("id", "Id", "CreatorTargetId"))
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "Name"))
    creator_type: str | None = Field(
        default=None, validation_alias=AliasChoices("creator_type", "CreatorType")
    )
    has_verified_badge: bool = Field(
        default=False, validation_alias=AliasChoices("has_verified_badge", "HasVerifiedBadge")
    )


class ProductInfo(BaseModel):
    """Read-only snapshot of a catalog entry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    target_id: int = Field(
        validation_alias=AliasChoices("target_id", "TargetId", "AssetId", "ProductId")
    )
    info_type: InfoType
    name: str = Field(validation_alias=AliasChoices("name", "Name"))
    description: str | None = Field(
        default=None, validation_alias=AliasChoices("description", "Description")
    )
    price: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("price", "Price", "PriceInRobux")
    )
    product_type: str | None = Field(
        default=None, validation_alias=AliasChoices("product_type", "ProductType")
    )
    is_for_sale: bool = Field(default=False, validation_alias=AliasChoices("is_for_sale", "IsForSale"))
    is_limited: bool = Field(default=False, validation_alias=AliasChoices("is_limited", "IsLimited"))
    is_limited_unique: bool = Field(
        default=False, validation_alias=AliasChoices("is_limited_unique", "IsLimitedUnique")
    )
    is_new: bool = Field(default=False, validation_alias=AliasChoices("is_new", "IsNew"))
    is_public_domain: bool = Field(
        default=False, validation_alias=AliasChoices("is_public_domain", "IsPublicDomain")
    )
    creator: ProductCreator | None = Field(
        default=None, validation_alias=AliasChoices("creator", "Creator")
    )
    icon_image_asset_id: int | None = Field(
        default=None, validation_alias=AliasChoices("icon_image_asset_id", "IconImageAssetId")
    )
    created: datetime | None = Field(default=None, validation_alias=AliasChoices("created", "Created"))
    updated: datetime | None = Field(default=None, validation_alias=AliasChoices("updated", "Updated"))

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("product name must not be empty")
        return stripped

    @property
    def on_sale(self) -> bool:
        return self.is_for_sale or self.is_public_domain


def shape_product_info(
    record: Mapping[str, Any], *, target_id: int, info_type: InfoType
) -> ProductInfo:
    """Validate a raw platform record into a :class:`ProductInfo`."""

    payload = dict(record)
    if not any(key in payload for key in ("target_id", "TargetId", "AssetId", "ProductId")):
        payload["target_id"] = target_id
    payload["info_type"] = info_type
    return ProductInfo.model_validate(payload)


class ProductInfoResolver:
    """Fetch catalog metadata. Every call queries the platform; no caching."""

    def __init__(
        self,
        service: MarketplaceService,
        safe_call: SafeCall,
        *,
        config: ProductInfoConfig | None = None,
    ) -> None:
        self._service = service
        self._safe_call = safe_call
        self._config = config or get_settings().product_info

    async def get_info(
        self, product_id: int, info_type: InfoType | str = InfoType.ASSET
    ) -> CallResult[ProductInfo | None]:
        """Return the shaped record, ``None`` for an unknown id, or a :class:`CallError`."""

        try:
            resolved_type = InfoType(info_type)
        except ValueError as exc:
            return CallResult(
                error=CallError(
                    f"unknown info type {info_type!r}",
                    retriable=False,
                    operation="get_product_info",
                    cause=exc,
                )
            )

        async def _query() -> CallResult[Any]:
            return await self._safe_call.invoke(
                self._service.get_product_info,
                product_id,
                resolved_type,
                operation="get_product_info",
            )

        result = await retry_call_result(
            _query,
            retries=self._config.retry_max,
            base_ms=self._config.backoff_base_ms,
            jitter_pct=self._config.jitter_pct,
        )
        if not result.ok:
            error = result.error
            if error is not None and isinstance(error.cause, PlatformNotFoundError):
                return self._absent(product_id, resolved_type)
            return CallResult(error=error)
        if not result.value:
            return self._absent(product_id, resolved_type)
        if not isinstance(result.value, Mapping):
            return CallResult(
                error=CallError(
                    f"unexpected product info payload: {type(result.value).__name__}",
                    retriable=False,
                    operation="get_product_info",
                )
            )
        try:
            info = shape_product_info(result.value, target_id=product_id, info_type=resolved_type)
        except ValidationError as exc:
            return CallResult(
                error=CallError(
                    f"malformed product info for {product_id}",
                    retriable=False,
                    operation="get_product_info",
                    cause=exc,
                )
            )
        return CallResult(value=info)

    @staticmethod
    def _absent(product_id: int, info_type: InfoType) -> CallResult[ProductInfo | None]:
        log_event(
            logger,
            "marketplace.product_info",
            component="product_info",
            item_id=product_id,
            info_type=info_type.value,
            status="not_found",
        )
        return CallResult(value=None)


__all__ = ["ProductCreator", "ProductInfo", "ProductInfoResolver", "shape_product_info"]
