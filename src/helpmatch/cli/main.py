"""HelpMatch CLI — browse helpers, send and answer requests, chat from the terminal.

Usage:
    helpmatch login alice@example.com                # Print an access token
    helpmatch helpers --city Berlin                  # Helper directory
    helpmatch request <helper-id> "Mentorship" "..." # Receiver sends a request
    helpmatch requests                               # Sent or incoming requests
    helpmatch accept 42                              # Helper accepts request #42
    helpmatch decline 42                             # Helper declines request #42
    helpmatch matches                                # Your matches
    helpmatch history 7                              # Chat history of match #7
    helpmatch send 7 "see you at 5"                  # Send a chat message
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("HELPMATCH_API_URL", DEFAULT_API_URL).rstrip("/")


def _token() -> Optional[str]:
    return os.environ.get("HELPMATCH_TOKEN")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the HelpMatch backend."""
    headers = {}
    token = _token()
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _require_token() -> None:
    if not _token():
        click.secho(
            "Error: not logged in (run `helpmatch login` and set HELPMATCH_TOKEN)",
            fg="red",
            err=True,
        )
        sys.exit(1)


def _check(r: httpx.Response) -> None:
    """Exit with the API's error detail instead of a traceback."""
    if r.is_success:
        return
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    click.secho(f"Error {r.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    """Map request status to click colors."""
    colors = {
        "pending": "yellow",
        "accepted": "green",
        "declined": "red",
    }
    return colors.get(status, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="helpmatch")
def main():
    """HelpMatch — connect receivers with helpers and chat once matched."""


# ---------------------------------------------------------------------------
# helpmatch login
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
def login(email: str, password: str):
    """Log in and print an access token for HELPMATCH_TOKEN."""
    _run(_login_impl(email, password))


async def _login_impl(email: str, password: str):
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json={"email": email, "password": password})
        _check(r)
        tokens = r.json()
        click.secho("Logged in.", fg="green", err=True)
        click.echo(f"export HELPMATCH_TOKEN={tokens['access_token']}")


# ---------------------------------------------------------------------------
# helpmatch helpers
# ---------------------------------------------------------------------------


@main.command()
@click.option("--city", "-c", help="Only helpers in this city")
@click.option("--limit", "-l", default=50, help="Max results")
def helpers(city: Optional[str], limit: int):
    """List available helpers."""
    _run(_helpers_impl(city, limit))


async def _helpers_impl(city: Optional[str], limit: int):
    async with _client() as c:
        params: dict = {"limit": limit}
        if city:
            params["city"] = city
        r = await c.get("/api/v1/users/helpers", params=params)
        _check(r)
        rows = r.json()

        if not rows:
            click.echo("No helpers found.")
            return

        click.secho(f"Helpers ({len(rows)}):", bold=True)
        click.echo()
        _print_table(rows, [
            ("ID", "id", 36),
            ("Name", "name", 24),
            ("City", "city", 20),
        ])


# ---------------------------------------------------------------------------
# helpmatch request
# ---------------------------------------------------------------------------


@main.command()
@click.argument("helper_id")
@click.argument("reason")
@click.argument("details")
def request(helper_id: str, reason: str, details: str):
    """Send a help request to a helper."""
    _run(_request_impl(helper_id, reason, details))


async def _request_impl(helper_id: str, reason: str, details: str):
    _require_token()
    async with _client() as c:
        r = await c.post("/api/v1/requests", json={
            "helper_id": helper_id,
            "reason": reason,
            "details": details,
        })
        _check(r)
        hr = r.json()
        click.secho(f"Request #{hr['id']} sent ({hr['status']})", fg="green")


# ---------------------------------------------------------------------------
# helpmatch requests
# ---------------------------------------------------------------------------


@main.command()
@click.option("--status", "-s", "status_filter",
              type=click.Choice(["pending", "accepted", "declined"]),
              help="Filter by status")
def requests(status_filter: Optional[str]):
    """List your requests (incoming for helpers, sent for receivers)."""
    _run(_requests_impl(status_filter))


async def _requests_impl(status_filter: Optional[str]):
    _require_token()
    async with _client() as c:
        params = {"status": status_filter} if status_filter else {}
        r = await c.get("/api/v1/requests/my-requests", params=params)
        _check(r)
        rows = r.json()

        if not rows:
            click.echo("No requests found.")
            return

        click.secho(f"Requests ({len(rows)}):", bold=True)
        click.echo()
        for hr in rows:
            status_str = click.style(f"{hr['status']:9s}", fg=_status_color(hr["status"]))
            match = f"match #{hr['match_id']}" if hr.get("match_id") else ""
            click.echo(f"  #{hr['id']:5d}  {status_str}  {hr['reason'][:30]:30s}  {match}")


# ---------------------------------------------------------------------------
# helpmatch accept / decline
# ---------------------------------------------------------------------------


@main.command()
@click.argument("request_id", type=int)
def accept(request_id: int):
    """Accept a pending request and open the chat."""
    _run(_decide_impl(request_id, "accept"))


@main.command()
@click.argument("request_id", type=int)
def decline(request_id: int):
    """Decline a pending request."""
    _run(_decide_impl(request_id, "decline"))


async def _decide_impl(request_id: int, action: str):
    _require_token()
    async with _client() as c:
        r = await c.put(f"/api/v1/requests/{request_id}/{action}")
        _check(r)
        hr = r.json()
        status_str = click.style(hr["status"], fg=_status_color(hr["status"]))
        click.echo(f"Request #{request_id}: {status_str}")
        if hr.get("match_id"):
            click.echo(f"Chat with: helpmatch send {hr['match_id']} \"hello\"")


# ---------------------------------------------------------------------------
# helpmatch matches
# ---------------------------------------------------------------------------


@main.command()
def matches():
    """List your matches."""
    _run(_matches_impl())


async def _matches_impl():
    _require_token()
    async with _client() as c:
        r = await c.get("/api/v1/matches")
        _check(r)
        rows = r.json()

        if not rows:
            click.echo("No matches yet.")
            return

        _print_table(rows, [
            ("ID", "id", 6),
            ("Request", "request_id", 8),
            ("Receiver", "receiver_id", 36),
            ("Helper", "helper_id", 36),
        ])


# ---------------------------------------------------------------------------
# helpmatch history / send
# ---------------------------------------------------------------------------


@main.command()
@click.argument("match_id", type=int)
@click.option("--after", "after_id", type=int, help="Only messages after this id")
def history(match_id: int, after_id: Optional[int]):
    """Show the chat history of a match, oldest first."""
    _run(_history_impl(match_id, after_id))


async def _history_impl(match_id: int, after_id: Optional[int]):
    _require_token()
    async with _client() as c:
        params = {"after_id": after_id} if after_id is not None else {}
        r = await c.get(f"/api/v1/messages/{match_id}", params=params)
        _check(r)
        rows = r.json()

        if not rows:
            click.echo("No messages yet.")
            return

        for m in rows:
            stamp = m["created_at"][:19].replace("T", " ")
            sender = click.style(m["sender_id"][:8], fg="cyan")
            click.echo(f"  [{stamp}] {sender}: {m['content']}")


@main.command()
@click.argument("match_id", type=int)
@click.argument("content")
def send(match_id: int, content: str):
    """Send a chat message to a match."""
    _run(_send_impl(match_id, content))


async def _send_impl(match_id: int, content: str):
    _require_token()
    async with _client() as c:
        r = await c.post("/api/v1/messages", json={"match_id": match_id, "content": content})
        _check(r)
        msg = r.json()
        click.secho(f"Message #{msg['id']} sent", fg="green")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
