"""CLI entry point for the apptclient tool.

This module is the composition root of the application.  It is the only
place that builds concrete implementations (engines, file storage,
refresh endpoint) via :func:`apptclient.client.build_client`.  All other
layers depend solely on abstractions.
"""

import asyncio
import json
import logging
import sys
from enum import Enum

# Ensure UTF-8 output on Windows where stdout may default to cp1252.
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from apptclient.auth.credentials import JsonFileStorage
from apptclient.client import ApiClient, build_client
from apptclient.core.config import ClientSettings
from apptclient.core.exceptions import (
    ClientError,
    ConfigurationError,
    CredentialStoreError,
)
from apptclient.core.models import ErrorKind

app = typer.Typer(help="Command-line client for the appointment platform API.")
auth_app = typer.Typer(help="Manage stored API credentials.")
api_app = typer.Typer(help="Send authenticated API requests.")

app.add_typer(auth_app, name="auth")
app.add_typer(api_app, name="api")

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)


# ---------------------------------------------------------------------------
# Output format
# ---------------------------------------------------------------------------


class OutputFormat(str, Enum):
    """Supported output formats for api commands."""

    table = "table"
    json = "json"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_expired() -> None:
    err_console.print(
        "[yellow]Session expired.[/yellow] "
        "Run [bold]apptclient auth login[/bold] to sign in again."
    )


def _get_client() -> ApiClient:
    """Build an :class:`ApiClient` from environment settings.

    Returns:
        A client whose interceptors are already initialized.
    """
    try:
        settings = ClientSettings.from_env()
    except ConfigurationError as e:
        err_console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(2)
    return build_client(settings, on_session_expired=_session_expired)


def _fail(error: ClientError) -> None:
    status = f" [{error.status_code}]" if error.status_code else ""
    err_console.print(
        f"[red]✗ {error.kind.value}{status}:[/red] {error.message}"
    )
    raise typer.Exit(1)


def _print_body(body, output: OutputFormat) -> None:
    """Render a decoded response body.

    Args:
        body: The decoded JSON (or text) body.
        output: ``json`` prints indented JSON; ``table`` renders dicts and
            lists of dicts as a table and anything else verbatim.
    """
    if output == OutputFormat.json or not isinstance(body, (dict, list)):
        if isinstance(body, (dict, list)):
            print(json.dumps(body, indent=2))
        elif body is not None:
            print(body)
        return

    if isinstance(body, dict):
        table = Table(show_header=True, header_style="bold")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for key, value in body.items():
            table.add_row(str(key), _cell(value))
        console.print(table)
        return

    rows = [row for row in body if isinstance(row, dict)]
    if not rows:
        print(json.dumps(body, indent=2))
        return
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    table = Table(show_header=True, header_style="bold")
    for column in columns:
        table.add_column(str(column))
    for row in rows:
        table.add_row(*(_cell(row.get(column)) for column in columns))
    console.print(table)


def _cell(value) -> str:
    if value is None:
        return "—"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _parse_data(data: str | None):
    if data is None:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        err_console.print(f"[red]--data is not valid JSON:[/red] {e}")
        raise typer.Exit(2)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log requests and recovery steps."
    ),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# auth commands
# ---------------------------------------------------------------------------


@auth_app.command()
def login(
    username: str = typer.Option(..., prompt=True, help="Account user name."),
    password: str = typer.Option(
        ..., prompt=True, hide_input=True, help="Account password."
    ),
):
    """Log in and store the returned tokens."""
    client = _get_client()

    async def _login():
        try:
            return await client.auth.login(username, password)
        finally:
            await client.close()

    try:
        body = asyncio.run(_login())
    except ClientError as e:
        _fail(e)
    except CredentialStoreError as e:
        err_console.print(f"[red]Could not save credentials:[/red] {e}")
        raise typer.Exit(1)

    user = body.get("user") or {}
    name = user.get("email") or user.get("firstName") or username
    console.print(f"[green]✓ Logged in as[/green] {name}")


@auth_app.command()
def logout():
    """Invalidate the session on the server and remove local tokens."""
    client = _get_client()

    async def _logout():
        try:
            await client.auth.logout()
        finally:
            await client.close()

    try:
        asyncio.run(_logout())
    except ClientError as e:
        console.print("[green]✓ Local credentials removed.[/green]")
        _fail(e)
    except CredentialStoreError as e:
        err_console.print(f"[red]Could not remove credentials:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]✓ Logged out.[/green]")


@auth_app.command()
def status():
    """Show which tokens are stored."""
    client = _get_client()
    credentials = client.store.load()

    if credentials.access_token is None and credentials.refresh_token is None:
        console.print("[yellow]No credentials stored.[/yellow]")
        console.print("Run [bold]apptclient auth login[/bold] to sign in.")
        raise typer.Exit(1)

    storage = getattr(client.store, "storage", None)
    if isinstance(storage, JsonFileStorage):
        console.print(f"[dim]Credentials file:[/dim] {storage.path}")
    for label, value in (
        ("Access token ", credentials.access_token),
        ("Refresh token", credentials.refresh_token),
    ):
        state = "[green]present[/green]" if value else "[red]missing[/red]"
        console.print(f"  {label} : {state}")


@auth_app.command()
def clear():
    """Remove locally stored tokens without contacting the server."""
    client = _get_client()
    try:
        client.store.clear_tokens()
    except CredentialStoreError as e:
        err_console.print(f"[red]Could not remove credentials:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]✓ Credentials removed.[/green]")


# ---------------------------------------------------------------------------
# api commands
# ---------------------------------------------------------------------------


def _send(method: str, path: str, data: str | None, output: OutputFormat):
    payload = _parse_data(data)
    client = _get_client()

    async def _call():
        try:
            response = await client.transport.request(method, path, payload)
            return response.body
        finally:
            await client.close()

    try:
        body = asyncio.run(_call())
    except ClientError as e:
        if e.kind is ErrorKind.UNAUTHORIZED:
            err_console.print(
                "[dim]Run [bold]apptclient auth login[/bold] "
                "if your session has expired.[/dim]"
            )
        _fail(e)
    _print_body(body, output)


_OUTPUT_OPTION = typer.Option(
    OutputFormat.json, "--output", "-o", help="Output format."
)
_DATA_OPTION = typer.Option(None, "--data", "-d", help="JSON request body.")


@api_app.command()
def get(path: str, output: OutputFormat = _OUTPUT_OPTION):
    """Send a GET request."""
    _send("GET", path, None, output)


@api_app.command()
def post(
    path: str,
    data: str | None = _DATA_OPTION,
    output: OutputFormat = _OUTPUT_OPTION,
):
    """Send a POST request."""
    _send("POST", path, data, output)


@api_app.command()
def put(
    path: str,
    data: str | None = _DATA_OPTION,
    output: OutputFormat = _OUTPUT_OPTION,
):
    """Send a PUT request."""
    _send("PUT", path, data, output)


@api_app.command()
def patch(
    path: str,
    data: str | None = _DATA_OPTION,
    output: OutputFormat = _OUTPUT_OPTION,
):
    """Send a PATCH request."""
    _send("PATCH", path, data, output)


@api_app.command()
def delete(
    path: str,
    data: str | None = _DATA_OPTION,
    output: OutputFormat = _OUTPUT_OPTION,
):
    """Send a DELETE request."""
    _send("DELETE", path, data, output)


if __name__ == "__main__":
    app()
