"""payrelay CLI — run the relay, provision terminals, fire test webhooks.

Usage:
    payrelay serve                                   # Run the API (uvicorn)
    payrelay register me@shop.co                     # Create a merchant account
    payrelay login me@shop.co                        # Print an access token
    payrelay devices add DEV-001                     # Claim a terminal
    payrelay devices list                            # Your terminals
    payrelay transactions                            # Recent ledger rows
    payrelay simulate DEV-001 15000                  # POST a transaction.completed webhook
    payrelay health                                  # Server / DB / Redis / MQTT status
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import uuid
from typing import Optional

import click
import httpx

from payrelay.auth.signature import SIGNATURE_HEADER, sign

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3000"


def _api_url() -> str:
    return os.environ.get("PAYRELAY_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0, headers=headers)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    return asyncio.run(coro)


def _require_token(token: Optional[str]) -> str:
    tok = token or os.environ.get("PAYRELAY_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set PAYRELAY_TOKEN; see `payrelay login`)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _check(resp: httpx.Response) -> dict | list:
    if resp.status_code >= 400:
        try:
            detail = resp.json().get("detail", resp.text)
        except (ValueError, AttributeError):
            detail = resp.text
        click.secho(f"Error {resp.status_code}: {detail}", fg="red", err=True)
        sys.exit(1)
    return resp.json()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table. columns: (header, dict_key, width)."""
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        click.echo("  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns))


token_option = click.option("--token", envvar="PAYRELAY_TOKEN", help="Access token")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="payrelay")
def main():
    """payrelay — payment-terminal event relay."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: PAYRELAY_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: PAYRELAY_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the relay API server."""
    import uvicorn

    from payrelay.config import settings

    uvicorn.run(
        "payrelay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command()
@click.argument("email")
@click.password_option()
def register(email: str, password: str):
    """Create a merchant account."""
    async def _go():
        async with _client() as c:
            return _check(await c.post("/api/v1/auth/register", json={"email": email, "password": password}))

    account = _run(_go())
    click.secho(f"Registered {account['email']} ({account['id']})", fg="green")


@main.command()
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True)
def login(email: str, password: str):
    """Log in and print an access token (export it as PAYRELAY_TOKEN)."""
    async def _go():
        async with _client() as c:
            return _check(await c.post("/api/v1/auth/login", json={"email": email, "password": password}))

    tokens = _run(_go())
    click.echo(tokens["access_token"])


@main.group()
def devices():
    """Provision and list terminals."""


@devices.command("add")
@click.argument("serial")
@token_option
def devices_add(serial: str, token: Optional[str]):
    tok = _require_token(token)

    async def _go():
        async with _client(tok) as c:
            return _check(await c.post("/api/v1/devices", json={"serial": serial}))

    device = _run(_go())
    click.secho(f"Device {device['serial']} registered", fg="green")


@devices.command("list")
@token_option
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def devices_list(token: Optional[str], as_json: bool):
    tok = _require_token(token)

    async def _go():
        async with _client(tok) as c:
            return _check(await c.get("/api/v1/devices"))

    rows = _run(_go())
    if as_json:
        click.echo(_pretty_json(rows))
        return
    _print_table(rows, [("SERIAL", "serial", 24), ("STATUS", "status", 10), ("CREATED", "created_at", 26)])


@main.command()
@token_option
@click.option("--limit", default=20, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def transactions(token: Optional[str], limit: int, as_json: bool):
    """Show recent transactions for your account."""
    tok = _require_token(token)

    async def _go():
        async with _client(tok) as c:
            return _check(await c.get("/api/v1/transactions", params={"limit": limit}))

    rows = _run(_go())
    if as_json:
        click.echo(_pretty_json(rows))
        return
    _print_table(
        rows,
        [
            ("REQUEST", "request_id", 24),
            ("DEVICE", "device_serial", 16),
            ("AMOUNT", "amount", 14),
            ("STATUS", "status", 10),
            ("CREATED", "created_at", 26),
        ],
    )


@main.command()
@click.argument("terminal_id")
@click.argument("amount")
@click.option("--request-id", default=None, help="Idempotency key (random if omitted)")
@click.option("--secret", envvar="PAYRELAY_WEBHOOK_SECRET", default="", help="Sign the body with this secret")
def simulate(terminal_id: str, amount: str, request_id: Optional[str], secret: str):
    """POST a transaction.completed webhook, as the payment processor would."""
    body = json.dumps({
        "event_type": "transaction.completed",
        "data": {
            "id": request_id or f"sim-{uuid.uuid4().hex[:12]}",
            "amount": amount,
            "metadata": {"terminal_id": terminal_id},
        },
    }).encode()
    headers = {"Content-Type": "application/json"}
    if secret:
        headers[SIGNATURE_HEADER] = f"sha256={sign(secret, body)}"

    async def _go():
        async with _client() as c:
            return _check(await c.post("/api/v1/notify", content=body, headers=headers))

    result = _run(_go())
    color = {"processed": "green", "duplicate": "yellow"}.get(result["status"], "white")
    click.secho(f"{result['status']}: {result.get('request_id')}", fg=color)


@main.command()
def health():
    """Check server, database, Redis and MQTT status."""
    async def _go():
        async with _client() as c:
            return _check(await c.get("/api/v1/health"))

    click.echo(_pretty_json(_run(_go())))


if __name__ == "__main__":
    main()
