"""Database access helpers for the sandbox backend."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

from pydantic.alias_generators import to_camel, to_snake
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..schemas import CheckStatus, InventoryCheckDraft, ProcessDiscrepancyRequest, ResolutionAction
from . import models

_PAGING_KEYS = {"page", "limit", "order", "cursor", "search", "from", "to"}


class RecordNotFoundError(LookupError):
    """Raised when the requested record does not exist."""


class ConflictError(RuntimeError):
    """Raised when an operation conflicts with the record's state."""


class RejectedError(ValueError):
    """Raised when the request is well-formed but not acceptable."""


@dataclass(frozen=True)
class Resource:
    model: type[models.Base]
    writable: tuple[str, ...]
    search: tuple[str, ...] = ("code", "name")
    fixed: Mapping[str, Any] = field(default_factory=dict)
    deleted_status: Optional[str] = "inactive"


RESOURCES: dict[str, Resource] = {
    "warehouses": Resource(models.Warehouse, ("code", "name", "address", "status")),
    "items": Resource(models.Item, ("code", "name", "description", "unit_price", "status")),
    "bins": Resource(
        models.Bin,
        ("location_code", "warehouse_id", "description", "is_receiving_bin", "status"),
        search=("location_code", "description"),
    ),
    "partners": Resource(models.Partner, ("code", "name", "type", "email", "status")),
    "purchase-orders": Resource(
        models.Order,
        ("order_number", "partner_id", "item_id", "quantity", "status", "notes"),
        search=("order_number", "notes"),
        fixed={"kind": "purchase"},
        deleted_status="cancelled",
    ),
    "sales-orders": Resource(
        models.Order,
        ("order_number", "partner_id", "item_id", "quantity", "status", "notes"),
        search=("order_number", "notes"),
        fixed={"kind": "sales"},
        deleted_status="cancelled",
    ),
    "inventory-stock": Resource(models.InventoryStock, (), search=(), deleted_status=None),
    "inventory-checks": Resource(
        models.InventoryCheck, (), search=("code", "description"), deleted_status=None
    ),
}


def get_resource(entity: str) -> Resource:
    try:
        return RESOURCES[entity]
    except KeyError as exc:
        raise RecordNotFoundError(f"Unknown entity '{entity}'") from exc


def to_dict(record: models.Base) -> dict[str, Any]:
    """Serialize a row's columns into camelCase JSON-ready values."""

    data: dict[str, Any] = {}
    for column in record.__table__.columns:
        value = getattr(record, column.key)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        data[to_camel(column.key)] = value
    return data


def _coerce(column, raw: str) -> Any:
    python_type = column.type.python_type
    if python_type is bool:
        return raw.lower() in {"1", "true", "yes"}
    if python_type in (int, float):
        return python_type(raw)
    return raw


def _parse_datetime(raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError as exc:
        raise RejectedError(f"Invalid date '{raw}'") from exc


def list_records(db: Session, resource: Resource, params: Mapping[str, str]) -> tuple[list[Any], dict[str, Any]]:
    """Filter, order and paginate a resource; returns rows and pagination metadata."""

    model = resource.model
    columns = model.__table__.columns
    statement = select(model)

    for key, value in resource.fixed.items():
        statement = statement.where(getattr(model, key) == value)
    for key, raw in params.items():
        if key in _PAGING_KEYS or raw == "":
            continue
        name = to_snake(key)
        if name not in columns:
            continue
        try:
            statement = statement.where(getattr(model, name) == _coerce(columns[name], raw))
        except ValueError as exc:
            raise RejectedError(f"Invalid value for {key}: '{raw}'") from exc

    search = params.get("search")
    if search and resource.search:
        pattern = f"%{search}%"
        statement = statement.where(or_(*(getattr(model, name).ilike(pattern) for name in resource.search)))
    if "created_at" in columns:
        if params.get("from"):
            statement = statement.where(model.created_at >= _parse_datetime(params["from"]))
        if params.get("to"):
            statement = statement.where(model.created_at <= _parse_datetime(params["to"]))

    try:
        limit = max(1, min(int(params.get("limit") or 50), 200))
    except ValueError as exc:
        raise RejectedError("limit must be an integer") from exc

    order = params.get("order") or "id"
    descending = order.startswith("-")
    order_name = to_snake(order.lstrip("-"))
    if order_name not in columns:
        raise RejectedError(f"Cannot order by '{order}'")
    order_column = getattr(model, order_name)

    if params.get("cursor"):
        try:
            cursor = int(params["cursor"])
        except ValueError as exc:
            raise RejectedError("cursor must be an integer") from exc
        rows = list(db.scalars(statement.where(model.id > cursor).order_by(model.id).limit(limit + 1)))
        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = str(rows[-1].id)
        return rows, {"limit": limit, "nextCursor": next_cursor}

    try:
        page = max(1, int(params.get("page") or 1))
    except ValueError as exc:
        raise RejectedError("page must be an integer") from exc
    total = db.scalar(select(func.count()).select_from(statement.subquery())) or 0
    statement = statement.order_by(order_column.desc() if descending else order_column.asc(), model.id)
    rows = list(db.scalars(statement.offset((page - 1) * limit).limit(limit)))
    return rows, {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }


def get_record(db: Session, resource: Resource, record_id: int) -> Any:
    record = db.get(resource.model, record_id)
    if record is None or any(getattr(record, key) != value for key, value in resource.fixed.items()):
        raise RecordNotFoundError(f"{resource.model.__name__} {record_id} not found")
    return record


def _apply(record: models.Base, resource: Resource, payload: Mapping[str, Any]) -> None:
    for key, value in payload.items():
        name = to_snake(key)
        if name in resource.writable:
            setattr(record, name, value)


def create_record(db: Session, resource: Resource, payload: Mapping[str, Any]) -> Any:
    if not resource.writable:
        raise RejectedError(f"{resource.model.__name__} records are read-only")
    record = resource.model(**resource.fixed)
    _apply(record, resource, payload)
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Cannot create {resource.model.__name__}: {exc.orig}") from exc
    db.refresh(record)
    return record


def update_record(db: Session, resource: Resource, record_id: int, payload: Mapping[str, Any]) -> Any:
    if not resource.writable:
        raise RejectedError(f"{resource.model.__name__} records are read-only")
    record = get_record(db, resource, record_id)
    _apply(record, resource, payload)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Cannot update {resource.model.__name__}: {exc.orig}") from exc
    db.refresh(record)
    return record


def delete_record(db: Session, resource: Resource, record_id: int) -> Any:
    """Logically delete through ``status`` where the resource supports it."""

    if not resource.writable:
        raise RejectedError(f"{resource.model.__name__} records are read-only")
    record = get_record(db, resource, record_id)
    if resource.deleted_status:
        record.status = resource.deleted_status
        db.commit()
        db.refresh(record)
        return record
    db.delete(record)
    db.commit()
    return None


# stock lookup


def stock_dict(stock: models.InventoryStock) -> dict[str, Any]:
    data = to_dict(stock)
    data["bin"] = {"id": stock.bin.id, "code": stock.bin.location_code, "locationCode": stock.bin.location_code}
    return data


def filter_stock(db: Session, *, item_id: Optional[int], warehouse_id: Optional[int]) -> list[models.InventoryStock]:
    statement = select(models.InventoryStock).where(models.InventoryStock.quantity > 0)
    if item_id is not None:
        statement = statement.where(models.InventoryStock.item_id == item_id)
    if warehouse_id is not None:
        statement = statement.where(models.InventoryStock.warehouse_id == warehouse_id)
    return list(db.scalars(statement.order_by(models.InventoryStock.bin_id)))


def _book_quantity(db: Session, warehouse_id: int, item_id: int, bin_id: int) -> int:
    statement = select(models.InventoryStock.quantity).where(
        models.InventoryStock.warehouse_id == warehouse_id,
        models.InventoryStock.item_id == item_id,
        models.InventoryStock.bin_id == bin_id,
    )
    return db.scalar(statement) or 0


# inventory checks


def check_dict(check: models.InventoryCheck) -> dict[str, Any]:
    data = to_dict(check)
    data["details"] = [to_dict(detail) for detail in check.details]
    return data


def get_check(db: Session, check_id: int) -> models.InventoryCheck:
    check = db.get(models.InventoryCheck, check_id)
    if check is None:
        raise RecordNotFoundError(f"Inventory check {check_id} not found")
    return check


def _require_draft(check: models.InventoryCheck) -> None:
    if check.check_status != CheckStatus.DRAFT.value:
        raise ConflictError(f"Cannot edit completed check {check.code}")


def _build_details(db: Session, payload: InventoryCheckDraft) -> list[models.CheckDetail]:
    details = []
    for line in payload.details:
        holding = db.scalar(
            select(models.InventoryStock.id)
            .join(models.Bin, models.Bin.id == models.InventoryStock.bin_id)
            .where(
                models.InventoryStock.item_id == line.item_id,
                models.InventoryStock.bin_id == line.bin_id,
                models.Bin.warehouse_id == payload.warehouse_id,
            )
        )
        if holding is None:
            raise RejectedError(
                f"Bin {line.bin_id} holds no stock for item {line.item_id} in warehouse {payload.warehouse_id}"
            )
        details.append(
            models.CheckDetail(item_id=line.item_id, bin_id=line.bin_id, actual_quantity=line.actual_quantity)
        )
    return details


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    return value.replace(tzinfo=None) if value is not None else None


def create_check(db: Session, payload: InventoryCheckDraft, checker_id: Optional[int]) -> models.InventoryCheck:
    if db.get(models.Warehouse, payload.warehouse_id) is None:
        raise RecordNotFoundError(f"Warehouse {payload.warehouse_id} not found")
    check = models.InventoryCheck(
        warehouse_id=payload.warehouse_id,
        checker_id=checker_id,
        from_date=_naive(payload.from_date),
        to_date=_naive(payload.to_date),
        description=payload.description,
        details=_build_details(db, payload),
    )
    db.add(check)
    db.flush()
    check.code = f"IC-{check.id:05d}"
    db.commit()
    db.refresh(check)
    return check


def update_check(db: Session, check_id: int, payload: InventoryCheckDraft) -> models.InventoryCheck:
    check = get_check(db, check_id)
    _require_draft(check)
    check.warehouse_id = payload.warehouse_id
    check.from_date = _naive(payload.from_date)
    check.to_date = _naive(payload.to_date)
    check.description = payload.description
    check.details = _build_details(db, payload)
    db.commit()
    db.refresh(check)
    return check


def delete_check(db: Session, check_id: int) -> None:
    check = get_check(db, check_id)
    _require_draft(check)
    db.delete(check)
    db.commit()


def complete_check(db: Session, check_id: int) -> models.InventoryCheck:
    """Snapshot book quantities and discrepancies; later stock moves never touch them."""

    check = get_check(db, check_id)
    _require_draft(check)
    for detail in check.details:
        detail.book_quantity = _book_quantity(db, check.warehouse_id, detail.item_id, detail.bin_id)
        detail.discrepancy = detail.actual_quantity - detail.book_quantity
    check.check_status = CheckStatus.COMPLETED.value
    db.commit()
    db.refresh(check)
    return check


def process_discrepancy(
    db: Session, payload: ProcessDiscrepancyRequest
) -> tuple[models.CheckDetail, Optional[models.Order]]:
    detail = db.get(models.CheckDetail, payload.detail_id)
    if detail is None:
        raise RecordNotFoundError(f"Check detail {payload.detail_id} not found")
    check = detail.check
    if check.check_status != CheckStatus.COMPLETED.value:
        raise ConflictError(f"Check {check.code} is {check.check_status}")
    if detail.discrepancy_handled:
        raise ConflictError(f"Discrepancy of detail {detail.id} is already handled")
    if not detail.discrepancy:
        raise RejectedError(f"Detail {detail.id} has no discrepancy")

    order = None
    if payload.action is not ResolutionAction.IGNORE:
        if payload.create_order_request is None:
            raise RejectedError("createOrderRequest.partnerId is required")
        partner_id = payload.create_order_request.partner_id
        if db.get(models.Partner, partner_id) is None:
            raise RecordNotFoundError(f"Partner {partner_id} not found")
        kind = "purchase" if payload.action is ResolutionAction.PURCHASE_ORDER else "sales"
        order = models.Order(
            kind=kind,
            partner_id=partner_id,
            item_id=detail.item_id,
            quantity=abs(detail.discrepancy),
            source_detail_id=detail.id,
            notes=f"Corrective order for check {check.code}",
        )
        db.add(order)
        db.flush()
        order.order_number = f"{'PO' if kind == 'purchase' else 'SO'}-{order.id:05d}"

    detail.discrepancy_handled = True
    detail.resolution_action = payload.action.value
    if all(item.discrepancy_handled or not item.discrepancy for item in check.details):
        check.check_status = CheckStatus.PROCESSED.value
    db.commit()
    db.refresh(detail)
    return detail, order


def seed_demo_data(db: Session) -> None:
    """Populate a warehouse, bins, items, partners and stock for demos and tests."""

    if db.scalar(select(func.count()).select_from(models.Warehouse)):
        return
    main = models.Warehouse(code="WH-MAIN", name="Main Warehouse", address="1 Dock Road")
    annex = models.Warehouse(code="WH-ANNEX", name="Annex")
    db.add_all([main, annex])
    db.flush()

    bins = [models.Bin(location_code=f"A-0{n}", warehouse_id=main.id) for n in (1, 2, 3)]
    bins.append(models.Bin(location_code="B-01", warehouse_id=annex.id, is_receiving_bin=True))
    items = [
        models.Item(code="ITM-001", name="Bottled Water", unit_price=0.8),
        models.Item(code="ITM-002", name="Paper Towels", unit_price=2.5),
        models.Item(code="ITM-003", name="Dish Soap", unit_price=3.1, status="inactive"),
    ]
    partners = [
        models.Partner(code=f"P-00{n}", name=name, type=kind)
        for n, (name, kind) in enumerate(
            [
                ("Acme Supply", "supplier"),
                ("Blue River Foods", "supplier"),
                ("Corner Shop", "customer"),
                ("Delta Traders", "both"),
                ("Evergreen Wholesale", "supplier"),
            ],
            start=1,
        )
    ]
    db.add_all([*bins, *items, *partners])
    db.flush()

    water, towels = items[0], items[1]
    db.add_all(
        [models.InventoryStock(item_id=water.id, warehouse_id=main.id, bin_id=b.id, quantity=10) for b in bins[:3]]
    )
    db.add(models.InventoryStock(item_id=towels.id, warehouse_id=main.id, bin_id=bins[0].id, quantity=5))
    db.add(models.InventoryStock(item_id=towels.id, warehouse_id=annex.id, bin_id=bins[3].id, quantity=40))
    db.commit()
