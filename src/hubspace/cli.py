"""Thin CLI wrapper over :class:`hubspace.Client`."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from typing import Any, TypeVar

import aiohttp
import typer
from rich.console import Console
from rich.syntax import Syntax

from hubspace.client import Client, HubspaceError
from hubspace.models import DeviceFunctionState, StateValue

app = typer.Typer(help="Control Hubspace smart devices.", invoke_without_command=True)

T = TypeVar("T")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log HTTP requests"),
) -> None:
    """Control Hubspace smart devices."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


def _print_json(obj: object) -> None:
    """Print JSON, syntax-highlighted when stdout is a TTY."""
    if sys.stdout.isatty():
        Console().print(Syntax(json.dumps(obj, indent=2), "json"))
    else:
        typer.echo(json.dumps(obj, indent=2))


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning library, HTTP and network errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except (HubspaceError, aiohttp.ClientError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


def _ensure_client() -> Client:
    """Load saved credentials or exit with an error."""
    try:
        client = Client.from_saved()
    except FileNotFoundError:
        typer.echo("No saved credentials. Run `hubspace login` first.", err=True)
        raise typer.Exit(1) from None
    if not client.authenticated:
        typer.echo("Saved credentials are incomplete. Run `hubspace login` again.", err=True)
        raise typer.Exit(1)
    return client


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def login(
    username: str = typer.Option(
        ..., prompt=True, envvar="HUBSPACE_USERNAME", help="Hubspace account email"
    ),
    password: str = typer.Option(
        ...,
        prompt=True,
        hide_input=True,
        envvar="HUBSPACE_PASSWORD",
        help="Hubspace account password",
    ),
) -> None:
    """Authenticate with Hubspace and save credentials locally."""
    typer.echo(f"Logging in as {username}...")
    client = Client(username, password)
    _run(client.login())
    client.save_credentials()
    typer.echo(f"Logged in. Account: {client.account_id}")


@app.command()
def devices(
    as_json: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """List all devices on the account."""
    client = _ensure_client()
    all_devices = _run(client.get_metadevice_info())
    if as_json:
        _print_json([d.raw for d in all_devices])
        return
    if not all_devices:
        typer.echo("No devices found.", err=True)
        raise typer.Exit(1)

    for dev in all_devices:
        model = " ".join(p for p in (dev.manufacturer, dev.model) if p) or "Unknown model"
        typer.echo(f"  {dev.friendly_name} ({model})")
        typer.echo(f"        ID: {dev.id}")
        functions = ", ".join(dict.fromkeys(s.function_class for s in dev.states))
        if functions:
            typer.echo(f"        Functions: {functions}")


@app.command("get", context_settings={"help_option_names": ["-h", "--help"]})
def get_state(
    name: str = typer.Argument(..., help="Device name"),
    function: str | None = typer.Argument(None, help='Function class (like "power")'),
    instance: str | None = typer.Option(None, "--instance", "-i", help="Function instance"),
) -> None:
    """Query device function states.

    \b
    Without a function, shows every state the device reports.
    """
    client = _ensure_client()
    if function is None:
        _print_json(_run(client.get_device_function_states(name)).to_dict())
        return

    result = _run(
        client.get_device_function_state(name, function, function_instance=instance)
    )
    if result.state is None:
        typer.echo(f"Function '{function}' not reported by '{name}'.", err=True)
        raise typer.Exit(1)
    _print_json(result.to_dict())


@app.command("set", context_settings={"help_option_names": ["-h", "--help"]})
def set_state(
    name: str = typer.Argument(..., help="Device name"),
    function: str = typer.Argument(..., help='Function class (like "power")'),
    value: str = typer.Argument(..., help="Value to set"),
    instance: str | None = typer.Option(None, "--instance", "-i", help="Function instance"),
) -> None:
    """Change a device function state.

    \b
    Numeric functions (brightness, ...) take a number; others take
    the named value (on, off, ...).
    """
    client = _ensure_client()
    typer.echo(f"Setting {function} on {name} to {value}...")
    try:
        result = _run(_set_state_async(client, name, function, value, instance))
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    if result.state is None:
        typer.echo("Write accepted, but the new value was not confirmed.", err=True)
        raise typer.Exit(1)
    _print_json(result.to_dict())


async def _set_state_async(
    client: Client, name: str, function: str, raw: str, instance: str | None
) -> DeviceFunctionState:
    """Coerce *raw* using the device's function definition, then write it."""
    device = await client.get_device_by_name(name)
    definition = device.function(function, instance)
    value: StateValue = definition.coerce(raw) if definition is not None else raw
    return await client.set_function_state(device, function, value, function_instance=instance)
