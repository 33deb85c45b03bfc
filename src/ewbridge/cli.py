"""Thin CLI wrapper over :class:`ewbridge.Client` and the web server."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import sys

import typer

from ewbridge.client import Client
from ewbridge.config import Settings
from ewbridge.devices import Device
from ewbridge.exceptions import BridgeError, ValidationError
from ewbridge.overrides import validate_state

app = typer.Typer(help="Bridge an eWeLink account to a web frontend.", invoke_without_command=True)


@app.callback()
def main(ctx: typer.Context) -> None:
    """Bridge an eWeLink account to a web frontend."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


def _print_json(obj: object) -> None:
    """Print JSON, syntax-highlighted when stdout is a TTY, compact otherwise."""
    if sys.stdout.isatty():
        from rich.console import Console
        from rich.syntax import Syntax

        Console().print(Syntax(json.dumps(obj, indent=2), "json"))
    else:
        typer.echo(json.dumps(obj))


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except BridgeError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


def _make_client(settings: Settings) -> Client:
    try:
        settings.require_credentials()
        return Client.from_settings(settings)
    except BridgeError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


def _format_state(device: Device) -> str:
    state = device.switch_state
    if isinstance(state, list):
        return ", ".join(f"#{s['outlet']} {s['switch']}" for s in state)
    return state or "unknown"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str | None = typer.Option(None, help="Interface to bind (default: $HOST)"),
    port: int | None = typer.Option(None, help="Port to listen on (default: $PORT or 3000)"),
) -> None:
    """Run the web server."""
    from dataclasses import replace

    from ewbridge.server import run

    settings = _load_settings()
    if host is not None:
        settings = replace(settings, host=host)
    if port is not None:
        settings = replace(settings, port=port)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run(settings)


@app.command()
def devices(
    email: str = typer.Option(..., prompt=True, help="eWeLink account email or +phone"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="eWeLink password"),
    region: str | None = typer.Option(None, help="Region hint: eu, us, as or cn"),
    as_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Log in and list the account's devices."""
    client = _make_client(_load_settings())

    async def _run() -> list[Device]:
        await client.login(email, password, region)
        return await client.fetch_devices()

    try:
        found = asyncio.run(_run())
    except BridgeError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    if as_json:
        _print_json([d.as_dict() for d in found])
        return
    if not found:
        typer.echo("No devices found.", err=True)
        raise typer.Exit(1)
    for dev in found:
        online = "online" if dev.online else "offline"
        typer.echo(f"  {dev.name} ({dev.id}): {online}, {_format_state(dev)}")


@app.command()
def toggle(
    device_id: str = typer.Argument(..., help="Device id"),
    state: str = typer.Argument(..., help="on | off"),
    email: str = typer.Option(..., prompt=True, help="eWeLink account email or +phone"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="eWeLink password"),
    region: str | None = typer.Option(None, help="Region hint: eu, us, as or cn"),
    outlet: list[int] | None = typer.Option(None, "--outlet", "-o", help="Outlet (repeatable)"),
) -> None:
    """Switch a device on or off."""
    try:
        validate_state(state)
    except ValidationError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
    client = _make_client(_load_settings())

    async def _run() -> dict[str, object]:
        await client.login(email, password, region)
        return await client.toggle(device_id, state, outlet or None)

    try:
        params = asyncio.run(_run())
    except BridgeError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
    typer.echo(f"Command sent to {device_id}: {json.dumps(params)}")


@app.command("oauth-url")
def oauth_url() -> None:
    """Print a link to the vendor's hosted login page."""
    client = _make_client(_load_settings())
    try:
        typer.echo(client.oauth_url(secrets.token_urlsafe(16)))
    except BridgeError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
