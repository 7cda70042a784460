"""TechFlow CLI — watch the contact dashboard from a terminal.

Usage:
    techflow watch                        # Live dashboard (realtime, polling fallback)
    techflow stats                        # Aggregate counts
    techflow contacts --status new        # List contacts
    techflow export -o contacts.csv       # Download CSV
    techflow status <id> replied          # Change a contact's status
    techflow submit "Ada" ada@x.io "..."  # Send the public contact form

Connection settings come from TECHFLOW_API_URL and TECHFLOW_TOKEN, or the
--api-url / --token options.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import sys
from datetime import datetime
from typing import Optional

import click
import httpx

from techflow.client.api import DEFAULT_API_URL, ContactApiClient

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _client(ctx: click.Context, admin: bool = False) -> ContactApiClient:
    """Build an API client from the group options."""
    return ContactApiClient(
        base_url=ctx.obj["api_url"], token=ctx.obj["token"], admin=admin
    )


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
        # No running loop — normal CLI invocation
        return asyncio.run(coro)
    else:
        # Already inside an event loop (e.g. test runner) — run in a thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _call(coro):
    """_run() plus friendly reporting of HTTP failures."""
    try:
        return _run(coro)
    except httpx.HTTPStatusError as e:
        try:
            detail = e.response.json().get("detail", e.response.text)
        except ValueError:
            detail = e.response.text
        _fail(f"{e.response.status_code} {detail}")
    except httpx.TransportError as e:
        _fail(f"cannot reach API ({e})")


def _status_color(status: str) -> str:
    """Map contact statuses to click colors."""
    colors = {
        "new": "cyan",
        "read": "white",
        "replied": "green",
        "archived": "bright_black",
    }
    return colors.get(status, "white")


def _print_stats(stats: dict) -> None:
    keys = ("total", "new", "read", "replied", "archived", "unread", "last_30_days")
    click.echo("  ".join(f"{k}={stats.get(k, 0)}" for k in keys))


def _print_contacts(contacts: list[dict]) -> None:
    header = f"{'ID':8s}  {'STATUS':9s}  {'NAME':20s}  {'EMAIL':28s}  CREATED"
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for c in contacts:
        status_str = click.style(f"{c['status']:9s}", fg=_status_color(c["status"]))
        created = c.get("created_at", "")[:16].replace("T", " ")
        click.echo(
            f"{str(c['id'])[:8]:8s}  {status_str}  {c['name'][:20]:20s}  "
            f"{c['email'][:28]:28s}  {created}"
        )


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="techflow")
@click.option("--api-url", envvar="TECHFLOW_API_URL", default=DEFAULT_API_URL,
              show_default=True, help="API base URL")
@click.option("--token", envvar="TECHFLOW_TOKEN", default=None,
              help="JWT access token")
@click.pass_context
def main(ctx: click.Context, api_url: str, token: Optional[str]):
    """TechFlow — contact dashboard from the command line."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url.rstrip("/")
    ctx.obj["token"] = token


# ---------------------------------------------------------------------------
# techflow watch
# ---------------------------------------------------------------------------


@main.command()
@click.option("--poll-interval", default=15.0, show_default=True,
              help="Seconds between polls while the realtime channel is down")
@click.option("--all", "all_contacts", is_flag=True,
              help="Show every contact (admin tokens only)")
@click.pass_context
def watch(ctx: click.Context, poll_interval: float, all_contacts: bool):
    """Live dashboard: realtime updates with a polling fallback."""
    if not ctx.obj["token"]:
        _fail("watch needs --token (or TECHFLOW_TOKEN)")
    try:
        _call(_watch_impl(ctx, poll_interval, all_contacts))
    except KeyboardInterrupt:
        click.echo()


async def _watch_impl(ctx: click.Context, poll_interval: float, all_contacts: bool):
    from techflow.client.channel import RealtimeChannel, ws_url_for
    from techflow.client.reconciler import ContactReconciler

    def render(reconciler: ContactReconciler):
        label = click.style(
            reconciler.status_label,
            fg="green" if reconciler.status_label == "Live" else "yellow",
        )
        click.echo(f"[{datetime.now():%H:%M:%S}] {label}  ", nl=False)
        if reconciler.error:
            click.secho(reconciler.error, fg="red")
        elif reconciler.stats is not None:
            _print_stats(reconciler.stats)
        else:
            click.echo()

    async with _client(ctx, admin=all_contacts) as api:
        me = await api.get_me()
        reconciler = ContactReconciler(
            api,
            poll_interval=poll_interval,
            account_id=me["id"],
            scope="all" if all_contacts else "own",
            on_change=render,
        )
        channel = RealtimeChannel(
            ws_url_for(ctx.obj["api_url"]), ctx.obj["token"], reconciler
        )
        await reconciler.start()
        try:
            await channel.run()
        finally:
            channel.stop()
            await reconciler.close()


# ---------------------------------------------------------------------------
# techflow stats / contacts
# ---------------------------------------------------------------------------


@main.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show aggregate contact counts."""
    async def _impl():
        async with _client(ctx) as api:
            return await api.get_stats()

    _print_stats(_call(_impl()))


@main.command()
@click.option("--status", "status_filter", default=None,
              type=click.Choice(["new", "read", "replied", "archived"]))
@click.option("--search", default=None, help="Match name, email, or message")
@click.option("--page", default=1, show_default=True)
@click.option("--limit", default=20, show_default=True)
@click.pass_context
def contacts(ctx: click.Context, status_filter: Optional[str], search: Optional[str],
             page: int, limit: int):
    """List contacts, newest first."""
    async def _impl():
        async with _client(ctx) as api:
            return await api.list_contacts(
                page=page, limit=limit, status=status_filter, search=search
            )

    result = _call(_impl())
    _print_contacts(result["data"])
    p = result["pagination"]
    click.echo(f"\npage {p['page']}/{max(p['pages'], 1)}  ({p['total']} total)")


# ---------------------------------------------------------------------------
# techflow export / status / submit
# ---------------------------------------------------------------------------


@main.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
              help="Write to a file instead of stdout")
@click.pass_context
def export(ctx: click.Context, output: Optional[str]):
    """Export contacts as CSV."""
    async def _impl():
        async with _client(ctx) as api:
            return await api.export_csv()

    body = _call(_impl())
    if output:
        with open(output, "w", encoding="utf-8", newline="") as f:
            f.write(body)
        click.secho(f"Wrote {output}", fg="green")
    else:
        click.echo(body, nl=False)


@main.command("status")
@click.argument("contact_id")
@click.argument("new_status", type=click.Choice(["new", "read", "replied", "archived"]))
@click.pass_context
def set_status(ctx: click.Context, contact_id: str, new_status: str):
    """Change a contact's status."""
    async def _impl():
        async with _client(ctx) as api:
            return await api.update_status(contact_id, new_status)

    contact = _call(_impl())
    click.echo(f"{contact['id']}: {click.style(contact['status'], fg=_status_color(contact['status']))}")


@main.command()
@click.argument("name")
@click.argument("email")
@click.argument("message")
@click.option("--subject", default="general", show_default=True,
              type=click.Choice(["general", "demo", "support", "partnership"]))
@click.pass_context
def submit(ctx: click.Context, name: str, email: str, message: str, subject: str):
    """Send the public contact form."""
    async def _impl():
        async with _client(ctx) as api:
            return await api.submit_contact(name, email, message, subject=subject)

    contact = _call(_impl())
    click.secho(f"Submitted {contact['id']}", fg="green")


if __name__ == "__main__":
    main()
