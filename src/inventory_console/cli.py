"""Command line interface for the inventory console."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

import typer
import uvicorn

from .auth import TokenStore, login as login_request, logout as forget_token
from .config import Settings, get_settings
from .errors import ConsoleError
from .listing import FilteredList
from .notifications import Notification, Notifier
from .query import QueryEngine
from .reconciliation import InventoryCheckWorkflow
from .schemas import InventoryCheck, ResolutionAction
from .transport import ApiClient

app = typer.Typer(help="Browse inventory data and drive inventory checks against the backend.")
check_app = typer.Typer(help="Inspect and advance inventory checks.")
app.add_typer(check_app, name="check")

T = TypeVar("T")

_COLORS = {"error": typer.colors.RED, "success": typer.colors.GREEN}


def _print_header(title: str) -> None:
    typer.secho(title, bold=True, fg=typer.colors.CYAN)


def _echo_notification(notification: Notification) -> None:
    text = notification.title
    if notification.description:
        text = f"{text}: {notification.description}"
    typer.secho(text, fg=_COLORS.get(notification.level))


notifier = Notifier([_echo_notification])


def build_client(settings: Settings) -> ApiClient:
    return ApiClient(
        settings.api_url,
        token_provider=TokenStore(settings.token_path),
        timeout=settings.request_timeout,
    )


@asynccontextmanager
async def _engine(settings: Settings) -> AsyncIterator[QueryEngine]:
    async with build_client(settings) as client:
        yield QueryEngine(client)


def _run(factory: Callable[[], Awaitable[T]]) -> T:
    try:
        return asyncio.run(factory())
    except ConsoleError as exc:
        notifier.failure(exc)
        raise typer.Exit(code=1) from exc


def _parse_filters(pairs: list[str]) -> dict[str, str]:
    filters: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            typer.secho(f"Filters must look like key=value, got {pair!r}", fg=typer.colors.RED)
            raise typer.Exit(code=2)
        filters[key] = value
    return filters


def _print_check(check: InventoryCheck) -> None:
    _print_header(f"Inventory check {check.code} [{check.check_status.value}]")
    typer.echo(f"Warehouse: {check.warehouse_id}")
    if check.description:
        typer.echo(f"Description: {check.description}")
    for detail in check.details:
        book = "-" if detail.book_quantity is None else detail.book_quantity
        if detail.discrepancy is None:
            diff = "-"
        elif detail.discrepancy == 0:
            diff = "0"
        else:
            diff = f"{detail.discrepancy:+d} ({'surplus' if detail.is_surplus else 'shortage'})"
        handled = "handled" if detail.discrepancy_handled else ("pending" if detail.requires_resolution else "")
        typer.echo(
            f"- #{detail.id} item={detail.item_id} bin={detail.bin_id} "
            f"actual={detail.actual_quantity} book={book} discrepancy={diff} {handled}".rstrip()
        )
    summary = InventoryCheckWorkflow.summarize(check)
    typer.echo(f"Pending resolutions: {summary.pending}")


@app.callback()
def main_callback() -> None:
    """Configure logging from the environment."""

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def login(
    email: str = typer.Argument(..., help="Account email"),
    password: Optional[str] = typer.Option(
        None, "--password", prompt=True, hide_input=True, help="Account password"
    ),
) -> None:
    """Log in and store the bearer token for later commands."""

    settings = get_settings()
    store = TokenStore(settings.token_path)

    async def _login():
        async with build_client(settings) as client:
            return await login_request(client, store, email, password or "")

    result = _run(_login)
    typer.secho(f"Logged in as {result.user.get('email') or email}", fg=typer.colors.GREEN)


@app.command()
def logout() -> None:
    """Forget the stored bearer token."""

    forget_token(TokenStore(get_settings().token_path))
    typer.echo("Logged out.")


@app.command()
def whoami_token() -> None:
    """Show whether a bearer token is stored, without revealing it."""

    token = TokenStore(get_settings().token_path).load()
    if token is None:
        typer.secho("No token stored. Run 'inventory-console login' first.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    typer.echo(f"Token: {token[:4]}...{token[-4:]} ({len(token)} characters)")


@app.command()
def show_paths() -> None:
    """Print out the backend URL and local storage paths."""

    settings = get_settings()
    typer.echo(f"Backend: {settings.api_url}")
    typer.echo(f"Token file: {settings.token_path}")
    typer.echo(f"Logged in: {'yes' if TokenStore(settings.token_path).load() else 'no'}")


@app.command("list")
def list_entities(
    entity: str = typer.Argument(..., help="Endpoint name, e.g. items or purchase-orders"),
    page: Optional[int] = typer.Option(None, min=1, help="Page number"),
    limit: Optional[int] = typer.Option(None, min=1, help="Page size"),
    search: Optional[str] = typer.Option(None, help="Free text search"),
    order: Optional[str] = typer.Option(None, help="Sort field, prefix with - for descending"),
    cursor: Optional[str] = typer.Option(None, help="Continuation cursor"),
    filters: list[str] = typer.Option([], "--filter", "-f", help="Extra key=value filter, repeatable"),
) -> None:
    """List records of an entity with backend filtering and pagination."""

    settings = get_settings()
    extra = _parse_filters(filters)

    async def _list():
        async with _engine(settings) as engine:
            view = FilteredList(
                engine, entity, default_limit=settings.default_page_size, notifier=notifier
            )
            return await view.set_filters(
                {"page": page, "limit": limit, "search": search, "order": order, "cursor": cursor, **extra}
            )

    state = _run(_list)
    if state.error is not None:
        raise typer.Exit(code=1)
    if not state.items:
        typer.echo("No records found.")
        return
    _print_header(f"/{entity.strip('/')}")
    for record in state.items:
        data: Any = record.model_dump(by_alias=True) if hasattr(record, "model_dump") else record
        typer.echo("- " + ", ".join(f"{key}={value}" for key, value in data.items() if value is not None))
    pagination = state.pagination
    if pagination is not None:
        if pagination.total is not None:
            typer.echo(f"Page {pagination.page} of {pagination.total_pages} ({pagination.total} records)")
        if pagination.next_cursor:
            typer.echo(f"Next cursor: {pagination.next_cursor}")


@check_app.command("show")
def show_check(check_id: int = typer.Argument(..., help="Inventory check id")) -> None:
    """Show a check with its per-detail discrepancies."""

    settings = get_settings()

    async def _show():
        async with _engine(settings) as engine:
            return await InventoryCheckWorkflow(engine).load(check_id)

    _print_check(_run(_show))


@check_app.command("complete")
def complete_check(check_id: int = typer.Argument(..., help="Inventory check id")) -> None:
    """Complete a draft check, freezing book quantities."""

    settings = get_settings()

    async def _complete():
        async with _engine(settings) as engine:
            workflow = InventoryCheckWorkflow(engine)
            return await workflow.complete(await workflow.load(check_id))

    check = _run(_complete)
    typer.secho(f"Check {check.code} completed.", fg=typer.colors.GREEN)
    _print_check(check)


@check_app.command("resolve")
def resolve_discrepancy(
    check_id: int = typer.Argument(..., help="Inventory check id"),
    detail_id: int = typer.Argument(..., help="Check detail id"),
    action: ResolutionAction = typer.Option(..., "--action", help="How to settle the discrepancy"),
    partner_id: Optional[int] = typer.Option(None, "--partner-id", help="Partner for corrective orders"),
) -> None:
    """Resolve the discrepancy of one check detail."""

    settings = get_settings()

    async def _resolve():
        async with _engine(settings) as engine:
            workflow = InventoryCheckWorkflow(engine, strict_actions=settings.strict_discrepancy_actions)
            check = await workflow.load(check_id)
            return await workflow.resolve_discrepancy(check, detail_id, action, partner_id)

    check = _run(_resolve)
    typer.secho(f"Detail #{detail_id} resolved with {action.value}.", fg=typer.colors.GREEN)
    _print_check(check)


@check_app.command("delete")
def delete_check(check_id: int = typer.Argument(..., help="Inventory check id")) -> None:
    """Delete a draft check."""

    settings = get_settings()

    async def _delete():
        async with _engine(settings) as engine:
            workflow = InventoryCheckWorkflow(engine)
            check = await workflow.load(check_id)
            await workflow.delete(check)
            return check

    check = _run(_delete)
    typer.secho(f"Check {check.code} deleted.", fg=typer.colors.GREEN)


@app.command()
def serve_sandbox(
    host: Optional[str] = typer.Option(None, help="Hostname to bind"),
    port: Optional[int] = typer.Option(None, help="Port to expose"),
    log_level: Optional[str] = typer.Option(None, help="Uvicorn log level"),
) -> None:
    """Run the sandbox backend with demo data using Uvicorn."""

    settings = get_settings()
    typer.echo(f"Sandbox login: {settings.sandbox_email}")
    uvicorn.run(
        "inventory_console.sandbox.app:create_app_from_env",
        host=host or settings.sandbox_host,
        port=port or settings.sandbox_port,
        log_level=log_level or settings.log_level,
        factory=True,
    )


def main() -> None:
    """Entry-point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
