"""Pydantic schemas for API payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import ResponseSchemaError


class ApiModel(BaseModel):
    """Base model speaking the backend's camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Pagination(ApiModel):
    page: Optional[int] = None
    limit: Optional[int] = None
    total: Optional[int] = None
    total_pages: Optional[int] = None
    next_cursor: Optional[str] = None

    @field_validator("next_cursor", mode="before")
    @classmethod
    def _cursor_as_text(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)


class QueryResult(BaseModel):
    """One page of a list endpoint. Replaced wholesale on every fetch."""

    model_config = ConfigDict(frozen=True)

    items: tuple[Any, ...] = ()
    pagination: Pagination = Field(default_factory=Pagination)
    meta: Optional[dict[str, Any]] = None

    @classmethod
    def from_response(cls, body: Any, schema: Optional[type[BaseModel]] = None) -> "QueryResult":
        """Normalize a list response into a result.

        Accepts ``{"data": [...], "pagination": {...}}``, the older ``meta``
        envelope, or a bare JSON array.
        """

        if isinstance(body, list):
            raw_items, raw_pagination, meta = body, None, None
        elif isinstance(body, dict):
            raw_items = body.get("data", [])
            meta = body.get("meta") if isinstance(body.get("meta"), dict) else None
            raw_pagination = body.get("pagination") or meta
        else:
            raise ResponseSchemaError(f"Unexpected list response: {type(body).__name__}", operation="fetch")

        if not isinstance(raw_items, list):
            raise ResponseSchemaError("List response 'data' is not an array", operation="fetch")

        items: list[Any] = raw_items
        try:
            if schema is not None:
                items = [schema.model_validate(item) for item in raw_items]
            pagination = Pagination.model_validate(raw_pagination or {})
        except ValidationError as exc:
            raise ResponseSchemaError(f"Invalid list response: {exc}", operation="fetch") from exc
        return cls(items=tuple(items), pagination=pagination, meta=meta)


def unwrap_record(body: Any, *keys: str) -> Any:
    """Return the record inside a ``{key: record}`` envelope, or the body itself."""

    if isinstance(body, dict):
        for key in (*keys, "data"):
            inner = body.get(key)
            if isinstance(inner, dict):
                return inner
    return body


class Warehouse(ApiModel):
    id: int
    code: str
    name: str
    address: Optional[str] = None
    status: Optional[str] = None


class Item(ApiModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    unit_price: Optional[float] = None
    status: Optional[str] = None


class Bin(ApiModel):
    id: int
    location_code: str
    warehouse_id: int
    description: Optional[str] = None
    is_receiving_bin: bool = False
    status: Optional[str] = None


class Partner(ApiModel):
    id: int
    code: str
    name: str
    type: str = "both"
    email: Optional[str] = None
    status: Optional[str] = None


class BinStock(ApiModel):
    """Stock held by one bin, as returned by the drafting stock lookup."""

    item_id: int
    warehouse_id: int
    bin_id: int
    quantity: int = 0
    bin: Optional[dict[str, Any]] = None

    @property
    def bin_code(self) -> str:
        if self.bin:
            return str(self.bin.get("code") or self.bin.get("locationCode") or f"Bin {self.bin_id}")
        return f"Bin {self.bin_id}"


class CheckStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    PROCESSED = "processed"


class ResolutionAction(str, Enum):
    IGNORE = "ignore"
    PURCHASE_ORDER = "purchase_order"
    SALES_ORDER = "sales_order"


class CheckDetail(ApiModel):
    id: Optional[int] = None
    item_id: int
    bin_id: int
    actual_quantity: int
    book_quantity: Optional[int] = None
    discrepancy: Optional[int] = None
    discrepancy_handled: bool = False

    @model_validator(mode="after")
    def _derive_discrepancy(self) -> "CheckDetail":
        if self.discrepancy is None and self.book_quantity is not None:
            self.discrepancy = self.actual_quantity - self.book_quantity
        return self

    @property
    def is_surplus(self) -> bool:
        return bool(self.discrepancy and self.discrepancy > 0)

    @property
    def is_shortage(self) -> bool:
        return bool(self.discrepancy and self.discrepancy < 0)

    @property
    def requires_resolution(self) -> bool:
        return bool(self.discrepancy) and not self.discrepancy_handled


class InventoryCheck(ApiModel):
    id: int
    code: str
    warehouse_id: int
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    checker_id: Optional[int] = None
    description: Optional[str] = None
    check_status: CheckStatus = CheckStatus.DRAFT
    details: list[CheckDetail] = Field(default_factory=list)

    @property
    def is_editable(self) -> bool:
        return self.check_status is CheckStatus.DRAFT

    @property
    def pending_details(self) -> list[CheckDetail]:
        """Details whose non-zero discrepancy still awaits a resolution."""

        if self.check_status is CheckStatus.DRAFT:
            return []
        return [detail for detail in self.details if detail.requires_resolution]

    @property
    def is_fully_handled(self) -> bool:
        return self.check_status is not CheckStatus.DRAFT and not self.pending_details

    def detail(self, detail_id: int) -> Optional[CheckDetail]:
        for detail in self.details:
            if detail.id == detail_id:
                return detail
        return None


class CheckDetailDraft(ApiModel):
    item_id: int
    bin_id: int
    actual_quantity: int = Field(..., ge=0)


class InventoryCheckDraft(ApiModel):
    """Payload for creating or editing a check while it is a draft."""

    warehouse_id: int
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=500)
    details: list[CheckDetailDraft] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_range(self) -> "InventoryCheckDraft":
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("fromDate must not be after toDate")
        return self


class CreateOrderRequest(ApiModel):
    partner_id: int


class ProcessDiscrepancyRequest(ApiModel):
    """Wire shape of ``POST /inventory-checks/process-discrepancy``."""

    detail_id: int
    action: ResolutionAction
    create_order_request: Optional[CreateOrderRequest] = None


class DiscrepancyResolution(ApiModel):
    detail_id: int
    action: ResolutionAction
    partner_id: Optional[int] = None

    @model_validator(mode="after")
    def _partner_required_for_orders(self) -> "DiscrepancyResolution":
        if self.action is not ResolutionAction.IGNORE and self.partner_id is None:
            raise ValueError(f"partnerId is required for action '{self.action.value}'")
        return self

    def to_payload(self) -> dict[str, Any]:
        order = None
        if self.action is not ResolutionAction.IGNORE:
            order = CreateOrderRequest(partner_id=self.partner_id)
        return ProcessDiscrepancyRequest(
            detail_id=self.detail_id, action=self.action, create_order_request=order
        ).to_payload()


class LoginResult(ApiModel):
    token: str
    user: dict[str, Any] = Field(default_factory=dict)


ENTITY_SCHEMAS: dict[str, type[ApiModel]] = {
    "/warehouses": Warehouse,
    "/items": Item,
    "/bins": Bin,
    "/partners": Partner,
    "/inventory-checks": InventoryCheck,
    "/inventory-stock/filter": BinStock,
}


def schema_for(endpoint: str) -> Optional[type[ApiModel]]:
    """Return the registered schema for a list endpoint, if any."""

    return ENTITY_SCHEMAS.get("/" + endpoint.strip("/"))
