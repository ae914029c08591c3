"""Inventory check reconciliation workflow.

A check moves ``draft -> completed -> processed`` and never back:

* while ``draft`` it can be edited or deleted;
* ``complete`` makes the server snapshot book quantities and compute
  ``discrepancy = actualQuantity - bookQuantity`` for every detail;
* each detail with a non-zero discrepancy is resolved once (ignore, or a
  corrective purchase/sales order), after which the server marks the check
  ``processed`` when nothing is pending.

State guards run before any network call; the server still has the last word
and its rejections surface as :class:`~inventory_console.errors.StateConflictError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from itertools import count
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from .errors import (
    CheckNotEditableError,
    DiscrepancyAlreadyHandledError,
    DiscrepancyNotResolvableError,
    InvalidPayloadError,
    ResponseSchemaError,
    StateConflictError,
)
from .mutations import MutationGateway
from .notifications import Notifier
from .query import QueryEngine
from .schemas import (
    BinStock,
    CheckDetailDraft,
    CheckStatus,
    InventoryCheck,
    InventoryCheckDraft,
    DiscrepancyResolution,
    ResolutionAction,
    unwrap_record,
)

logger = logging.getLogger(__name__)

CHECKS_ENDPOINT = "/inventory-checks"
STOCK_ENDPOINT = "/inventory-stock/filter"
DISCREPANCY_REPORT_ENDPOINT = "/reports/inventory-check-discrepancy"

_ORDER_ENDPOINTS = {
    ResolutionAction.PURCHASE_ORDER: "/purchase-orders",
    ResolutionAction.SALES_ORDER: "/sales-orders",
}


@dataclass(slots=True)
class DraftLine:
    key: str
    item_id: int
    bin_id: int
    bin_code: str
    actual_quantity: int
    book_quantity: Optional[int] = None


@dataclass(frozen=True, slots=True)
class CheckSummary:
    total: int
    matched: int
    surplus: int
    shortage: int
    pending: int
    fully_handled: bool


class CheckDraftBuilder:
    """Collect check lines item by item before submitting them in one call."""

    def __init__(
        self,
        workflow: "InventoryCheckWorkflow",
        warehouse_id: int,
        *,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> None:
        self.workflow = workflow
        self.warehouse_id = warehouse_id
        self.from_date = from_date
        self.to_date = to_date
        self.description = description
        self.lines: list[DraftLine] = []
        self._keys = count(1)

    @classmethod
    def from_check(cls, workflow: "InventoryCheckWorkflow", check: InventoryCheck) -> "CheckDraftBuilder":
        """Start from an existing draft check, e.g. to edit it."""

        workflow.ensure_editable(check)
        builder = cls(
            workflow,
            check.warehouse_id,
            from_date=check.from_date,
            to_date=check.to_date,
            description=check.description,
        )
        for detail in check.details:
            builder.lines.append(
                DraftLine(
                    key=builder._next_key(detail.item_id, detail.bin_id),
                    item_id=detail.item_id,
                    bin_id=detail.bin_id,
                    bin_code=f"Bin {detail.bin_id}",
                    actual_quantity=detail.actual_quantity,
                    book_quantity=detail.book_quantity,
                )
            )
        return builder

    def _next_key(self, item_id: int, bin_id: int) -> str:
        return f"detail-{item_id}-{bin_id}-{next(self._keys)}"

    async def add_item(self, item_id: int, counts: Mapping[int, int]) -> list[DraftLine]:
        """Add one line per bin holding ``item_id``; bins missing from ``counts`` count as 0."""

        candidates = await self.workflow.candidate_bins(item_id, self.warehouse_id)
        if not candidates:
            raise InvalidPayloadError(
                f"No bins hold stock for item {item_id} in warehouse {self.warehouse_id}", operation="create"
            )
        known = {stock.bin_id for stock in candidates}
        unknown = sorted(set(counts) - known)
        if unknown:
            raise InvalidPayloadError(
                f"Bins {unknown} hold no stock for item {item_id} in warehouse {self.warehouse_id}",
                operation="create",
            )

        added = [
            DraftLine(
                key=self._next_key(item_id, stock.bin_id),
                item_id=item_id,
                bin_id=stock.bin_id,
                bin_code=stock.bin_code,
                actual_quantity=int(counts.get(stock.bin_id, 0)),
                book_quantity=stock.quantity,
            )
            for stock in candidates
        ]
        self.lines.extend(added)
        return added

    def remove(self, key: str) -> None:
        self.lines = [line for line in self.lines if line.key != key]

    def build(self) -> InventoryCheckDraft:
        if not self.lines:
            raise InvalidPayloadError("Add at least one detail to the check", operation="create")
        try:
            return InventoryCheckDraft(
                warehouse_id=self.warehouse_id,
                from_date=self.from_date,
                to_date=self.to_date,
                description=self.description,
                details=[
                    CheckDetailDraft(item_id=line.item_id, bin_id=line.bin_id, actual_quantity=line.actual_quantity)
                    for line in self.lines
                ],
            )
        except ValidationError as exc:
            raise InvalidPayloadError(f"Invalid check draft: {exc}", operation="create") from exc


class InventoryCheckWorkflow:
    """Drive inventory checks through their lifecycle."""

    def __init__(
        self,
        engine: QueryEngine,
        *,
        notifier: Optional[Notifier] = None,
        strict_actions: bool = False,
    ) -> None:
        self.engine = engine
        self.strict_actions = strict_actions
        self.gateway = MutationGateway(
            engine,
            CHECKS_ENDPOINT,
            soft_delete=False,
            also_invalidates=(DISCREPANCY_REPORT_ENDPOINT,),
            notifier=notifier,
        )

    async def load(self, check_id: int) -> InventoryCheck:
        return await self.engine.fetch_record(
            CHECKS_ENDPOINT, check_id, schema=InventoryCheck, envelope=("inventoryCheck",)
        )

    async def candidate_bins(self, item_id: int, warehouse_id: int) -> list[BinStock]:
        result = await self.engine.fetch(
            STOCK_ENDPOINT, {"itemId": item_id, "warehouseId": warehouse_id}, schema=BinStock
        )
        return list(result.items)

    def new_draft(self, warehouse_id: int, **kwargs: Any) -> CheckDraftBuilder:
        return CheckDraftBuilder(self, warehouse_id, **kwargs)

    @staticmethod
    def ensure_editable(check: InventoryCheck, operation: str = "update") -> None:
        """Reject any change to a check that is no longer a draft."""

        if not check.is_editable:
            raise CheckNotEditableError(check.code, check.check_status.value, operation)

    @staticmethod
    def _parse(body: Any) -> InventoryCheck:
        record = unwrap_record(body, "inventoryCheck")
        try:
            return InventoryCheck.model_validate(record)
        except ValidationError as exc:
            raise ResponseSchemaError(f"Invalid inventory check: {exc}", operation="fetch") from exc

    async def create(self, draft: InventoryCheckDraft) -> InventoryCheck:
        if not draft.details:
            raise InvalidPayloadError("Add at least one detail to the check", operation="create")
        check = self._parse(await self.gateway.create(draft))
        logger.info("Created inventory check %s in warehouse %s", check.code, check.warehouse_id)
        return check

    async def edit(self, check: InventoryCheck, draft: InventoryCheckDraft) -> InventoryCheck:
        self.ensure_editable(check)
        await self.gateway.update(check.id, draft)
        return await self.load(check.id)

    async def delete(self, check: InventoryCheck) -> None:
        self.ensure_editable(check, "delete")
        await self.gateway.remove(check.id)
        logger.info("Deleted inventory check %s", check.code)

    async def complete(self, check: InventoryCheck) -> InventoryCheck:
        """Freeze the counts; the server snapshots book quantities at this instant."""

        if check.check_status is not CheckStatus.DRAFT:
            raise StateConflictError(
                f"Check {check.code} is already {check.check_status.value}", operation="update"
            )
        await self.gateway.perform("complete", record_id=check.id)
        completed = await self.load(check.id)
        logger.info(
            "Completed inventory check %s: %d of %d details need resolution",
            completed.code,
            len(completed.pending_details),
            len(completed.details),
        )
        return completed

    def _validate_resolution(self, check: InventoryCheck, resolution: DiscrepancyResolution) -> None:
        detail = check.detail(resolution.detail_id)
        if detail is None:
            raise DiscrepancyNotResolvableError(resolution.detail_id, f"not part of check {check.code}")
        if detail.discrepancy_handled:
            raise DiscrepancyAlreadyHandledError(resolution.detail_id)
        if check.check_status is not CheckStatus.COMPLETED:
            raise DiscrepancyNotResolvableError(resolution.detail_id, f"check is {check.check_status.value}")
        if not detail.discrepancy:
            raise DiscrepancyNotResolvableError(resolution.detail_id, "there is no discrepancy")
        if self.strict_actions:
            if resolution.action is ResolutionAction.PURCHASE_ORDER and not detail.is_shortage:
                raise InvalidPayloadError("A purchase order only covers a shortage", operation="update")
            if resolution.action is ResolutionAction.SALES_ORDER and not detail.is_surplus:
                raise InvalidPayloadError("A sales order only disposes of a surplus", operation="update")

    async def resolve_discrepancy(
        self,
        check: InventoryCheck,
        detail_id: int,
        action: ResolutionAction | str,
        partner_id: Optional[int] = None,
    ) -> InventoryCheck:
        """Resolve one detail's discrepancy and return the refreshed check."""

        try:
            resolution = DiscrepancyResolution(detail_id=detail_id, action=action, partner_id=partner_id)
        except ValidationError as exc:
            raise InvalidPayloadError(f"Invalid resolution: {exc}", operation="update") from exc
        self._validate_resolution(check, resolution)

        invalidates = ["/inventory-stock"]
        order_endpoint = _ORDER_ENDPOINTS.get(resolution.action)
        if order_endpoint:
            invalidates.append(order_endpoint)
        await self.gateway.perform(
            "process-discrepancy", payload=resolution.to_payload(), invalidates=invalidates
        )
        refreshed = await self.load(check.id)
        logger.info(
            "Resolved detail %s of check %s with %s; check is %s",
            detail_id,
            check.code,
            resolution.action.value,
            refreshed.check_status.value,
        )
        return refreshed

    @staticmethod
    def summarize(check: InventoryCheck) -> CheckSummary:
        return CheckSummary(
            total=len(check.details),
            matched=sum(1 for detail in check.details if detail.discrepancy == 0),
            surplus=sum(1 for detail in check.details if detail.is_surplus),
            shortage=sum(1 for detail in check.details if detail.is_shortage),
            pending=len(check.pending_details),
            fully_handled=check.is_fully_handled,
        )
