"""FastAPI application factory for the sandbox backend."""

from __future__ import annotations

import hmac
import secrets
from typing import Any, Generator, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import __version__
from ..config import Settings, get_settings
from ..schemas import InventoryCheckDraft, ProcessDiscrepancyRequest
from . import crud
from .database import create_sandbox_engine, create_session_factory, init_database, session_scope

SANDBOX_USER_ID = 1


def get_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def require_token(request: Request) -> int:
    """Accept only bearer tokens issued by ``/users/login``."""

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or token not in request.app.state.tokens:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return SANDBOX_USER_ID


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, crud.RecordNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, crud.ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


_DOMAIN_ERRORS = (crud.RecordNotFoundError, crud.ConflictError, crud.RejectedError)


def _checks_router() -> APIRouter:
    router = APIRouter(prefix="/inventory-checks", tags=["inventory-checks"], dependencies=[Depends(require_token)])

    @router.post("", status_code=status.HTTP_201_CREATED)
    def create_check(
        payload: InventoryCheckDraft, db: Session = Depends(get_db), user_id: int = Depends(require_token)
    ) -> dict[str, Any]:
        try:
            check = crud.create_check(db, payload, checker_id=user_id)
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return {"inventoryCheck": crud.check_dict(check)}

    @router.post("/process-discrepancy")
    def process_discrepancy(payload: ProcessDiscrepancyRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            detail, order = crud.process_discrepancy(db, payload)
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return {"detail": crud.to_dict(detail), "order": crud.to_dict(order) if order else None}

    @router.get("/{check_id}")
    def get_check(check_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            return {"inventoryCheck": crud.check_dict(crud.get_check(db, check_id))}
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc

    @router.put("/{check_id}")
    def update_check(check_id: int, payload: InventoryCheckDraft, db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            return {"inventoryCheck": crud.check_dict(crud.update_check(db, check_id, payload))}
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc

    @router.delete("/{check_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_check(check_id: int, db: Session = Depends(get_db)) -> Response:
        try:
            crud.delete_check(db, check_id)
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.post("/{check_id}/complete")
    def complete_check(check_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            return {"inventoryCheck": crud.check_dict(crud.complete_check(db, check_id))}
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc

    return router


def _entities_router() -> APIRouter:
    router = APIRouter(tags=["entities"], dependencies=[Depends(require_token)])

    @router.get("/inventory-stock/filter")
    def filter_stock(
        itemId: Optional[int] = None, warehouseId: Optional[int] = None, db: Session = Depends(get_db)
    ) -> dict[str, Any]:
        stocks = crud.filter_stock(db, item_id=itemId, warehouse_id=warehouseId)
        return {"data": [crud.stock_dict(stock) for stock in stocks]}

    @router.get("/{entity}")
    def list_entities(entity: str, request: Request, db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            resource = crud.get_resource(entity)
            rows, pagination = crud.list_records(db, resource, dict(request.query_params))
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return {"data": [crud.to_dict(row) for row in rows], "pagination": pagination}

    @router.get("/{entity}/{record_id}")
    def get_entity(entity: str, record_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            record = crud.get_record(db, crud.get_resource(entity), record_id)
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return {"data": crud.to_dict(record)}

    @router.post("/{entity}", status_code=status.HTTP_201_CREATED)
    def create_entity(
        entity: str, payload: dict[str, Any] = Body(...), db: Session = Depends(get_db)
    ) -> dict[str, Any]:
        try:
            record = crud.create_record(db, crud.get_resource(entity), payload)
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return {"data": crud.to_dict(record)}

    @router.put("/{entity}/{record_id}")
    def update_entity(
        entity: str, record_id: int, payload: dict[str, Any] = Body(...), db: Session = Depends(get_db)
    ) -> dict[str, Any]:
        try:
            record = crud.update_record(db, crud.get_resource(entity), record_id, payload)
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return {"data": crud.to_dict(record)}

    @router.delete("/{entity}/{record_id}")
    def delete_entity(entity: str, record_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            record = crud.delete_record(db, crud.get_resource(entity), record_id)
        except _DOMAIN_ERRORS as exc:
            raise _translate(exc) from exc
        return {"data": crud.to_dict(record) if record is not None else None}

    return router


def create_app(settings: Optional[Settings] = None, *, seed: bool = True) -> FastAPI:
    """Create and configure the sandbox FastAPI application."""

    settings = settings or get_settings()
    engine = create_sandbox_engine(settings.sandbox_database)
    init_database(engine)
    session_factory = create_session_factory(engine)
    if seed:
        with session_scope(session_factory) as session:
            crud.seed_demo_data(session)

    app = FastAPI(title="Inventory Console Sandbox", version=__version__)
    app.state.session_factory = session_factory
    app.state.tokens = set()

    @app.exception_handler(HTTPException)
    async def message_envelope(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/users/login", tags=["users"])
    def login(email: str = Body(...), password: str = Body(...)) -> dict[str, Any]:
        valid_email = hmac.compare_digest(email, settings.sandbox_email)
        valid_password = hmac.compare_digest(password, settings.sandbox_password)
        if not (valid_email and valid_password):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
        token = secrets.token_urlsafe(32)
        app.state.tokens.add(token)
        return {"token": token, "user": {"id": SANDBOX_USER_ID, "email": email, "roles": ["admin"]}}

    app.include_router(_checks_router())
    app.include_router(_entities_router())
    return app


def create_app_from_env() -> FastAPI:
    """Uvicorn factory entry point."""

    return create_app()
