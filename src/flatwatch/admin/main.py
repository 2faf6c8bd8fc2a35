from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from flatwatch.common.config import settings
from flatwatch.common.logging import setup_logging
from flatwatch.db.errors import (
    DuplicateEndpointError,
    EndpointNotFoundError,
    PersistenceUnavailableError,
    ReadOnlyStoreError,
)
from flatwatch.db.gateway import BaseGateway, open_gateway
from flatwatch.monitor.notifier import SmtpTransport


logger = logging.getLogger("admin")
T = TypeVar("T")

app = typer.Typer(add_completion=False, help="Manage tracked endpoints, settings and listing history.")
urls_app = typer.Typer(help="Manage tracked endpoint URLs.")
settings_app = typer.Typer(help="Show or change notification settings.")
ads_app = typer.Typer(help="Browse recorded listings.")
app.add_typer(urls_app, name="urls")
app.add_typer(settings_app, name="settings")
app.add_typer(ads_app, name="ads")

_HANDLED_ERRORS = (DuplicateEndpointError, EndpointNotFoundError, ReadOnlyStoreError, PersistenceUnavailableError)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging.")) -> None:
    setup_logging("DEBUG" if verbose else settings.log_level)


def _with_gateway(action: Callable[[BaseGateway], Awaitable[T]]) -> T:
    async def _run() -> T:
        gateway = await open_gateway(settings)
        try:
            return await action(gateway)
        finally:
            await gateway.close()

    try:
        return asyncio.run(_run())
    except _HANDLED_ERRORS as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _parse_ref(ref: str) -> int | str:
    return int(ref) if ref.isdigit() else ref


@urls_app.command("list")
def urls_list() -> None:
    endpoints = _with_gateway(lambda gateway: gateway.list_endpoints())
    if not endpoints:
        typer.echo("No URLs configured.")
        return
    for endpoint in endpoints:
        status = "active" if endpoint.is_active else "inactive"
        name = f" ({endpoint.display_name})" if endpoint.display_name else ""
        typer.echo(f"[{endpoint.id}] {status:<8} {endpoint.url}{name}")


@urls_app.command("add")
def urls_add(url: str, name: Optional[str] = typer.Argument(None, help="Display name.")) -> None:
    endpoint = _with_gateway(lambda gateway: gateway.add_endpoint(url, name))
    typer.echo(f"Added URL [{endpoint.id}]: {endpoint.url}")


@urls_app.command("activate")
def urls_activate(ref: str = typer.Argument(..., help="URL or id.")) -> None:
    endpoint = _with_gateway(lambda gateway: gateway.set_endpoint_active(_parse_ref(ref), True))
    typer.echo(f"Activated [{endpoint.id}]: {endpoint.url}")


@urls_app.command("deactivate")
def urls_deactivate(ref: str = typer.Argument(..., help="URL or id.")) -> None:
    endpoint = _with_gateway(lambda gateway: gateway.set_endpoint_active(_parse_ref(ref), False))
    typer.echo(f"Deactivated [{endpoint.id}]: {endpoint.url}")


@urls_app.command("rename")
def urls_rename(endpoint_id: int, name: str) -> None:
    endpoint = _with_gateway(lambda gateway: gateway.update_endpoint(endpoint_id, name=name))
    typer.echo(f"Renamed [{endpoint.id}] to {endpoint.display_name}")


@urls_app.command("delete")
def urls_delete(endpoint_id: int) -> None:
    deleted = _with_gateway(lambda gateway: gateway.delete_endpoint(endpoint_id))
    if not deleted:
        typer.echo(f"Error: Endpoint not found: {endpoint_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Deleted [{endpoint_id}]")


@settings_app.command("show")
def settings_show() -> None:
    current = _with_gateway(lambda gateway: gateway.get_notification_settings())
    typer.echo(f"send_emails: {'true' if current.send_emails else 'false'}")
    typer.echo(f"email_recipients: {current.email_recipients or '-'}")


@settings_app.command("set")
def settings_set(
    send_emails: Optional[bool] = typer.Option(None, "--send-emails/--no-send-emails"),
    recipients: Optional[str] = typer.Option(None, "--recipients", help="Comma-separated addresses."),
) -> None:
    if send_emails is None and recipients is None:
        typer.echo("Nothing to update.", err=True)
        raise typer.Exit(code=2)
    current = _with_gateway(
        lambda gateway: gateway.update_notification_settings(send_emails=send_emails, email_recipients=recipients)
    )
    typer.echo(f"send_emails: {'true' if current.send_emails else 'false'}")
    typer.echo(f"email_recipients: {current.email_recipients or '-'}")


@ads_app.command("list")
def ads_list(
    page: int = typer.Option(1, min=1),
    limit: int = typer.Option(20, min=1, max=200),
    search: Optional[str] = typer.Option(None, "--search"),
) -> None:
    async def _load(gateway: BaseGateway):
        records = await gateway.list_seen(limit=limit, offset=(page - 1) * limit, search=search)
        total = await gateway.count_seen(search=search)
        return records, total

    records, total = _with_gateway(_load)
    pages = max(1, math.ceil(total / limit))
    for record in records:
        created = record.created_at.strftime("%Y-%m-%d %H:%M") if record.created_at else "-"
        typer.echo(f"{created}  {record.title} | {record.price} | {record.address} | {record.link}")
    typer.echo(f"page {page}/{pages}, total {total}")


@app.command("stats")
def stats() -> None:
    data = _with_gateway(lambda gateway: gateway.get_stats())
    for key in ("total_urls", "active_urls", "total_ads", "ads_today", "ads_this_week", "latest_ad"):
        typer.echo(f"{key}: {data.get(key) if data.get(key) is not None else '-'}")


@app.command("cleanup")
def cleanup(days: int = typer.Option(settings.cleanup_days, min=0, help="Keep listings newer than this.")) -> None:
    deleted = _with_gateway(lambda gateway: gateway.cleanup_older_than(days))
    typer.echo(f"Deleted {deleted} listings older than {days} days")


@app.command("check-db")
def check_db() -> None:
    async def _storage_kind(gateway: BaseGateway) -> str:
        await gateway.count_seen()
        return "database" if gateway.durable else "file"

    typer.echo(f"Storage OK: {_with_gateway(_storage_kind)}")


@app.command("check-email")
def check_email() -> None:
    ok = asyncio.run(SmtpTransport.from_settings(settings).verify())
    if not ok:
        typer.echo("Email configuration invalid or missing", err=True)
        raise typer.Exit(code=1)
    typer.echo("Email configuration OK")


if __name__ == "__main__":
    app()
