"""
CLI interface for Webhook Monitor.

Sends payloads, probes the endpoint and renders ledger statistics.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any, List, Optional

import httpx
import typer
import yaml
from rich.console import Console
from rich.table import Table

from webhook_monitor.config.loader import MonitorConfig, load_monitor_config
from webhook_monitor.core.prober import HealthProber
from webhook_monitor.logging_utils import configure_logging
from webhook_monitor.sdk import DeliveryResult, MonitoredWebhook
from webhook_monitor.storage.ledger import RequestLedger
from webhook_monitor.storage.models import LedgerStats, RequestStatus, WebhookRequest

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log request lifecycle details to stderr"
    )
):
    """Webhook Monitor CLI."""
    ctx.obj = {"verbose": verbose}
    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    if ctx.invoked_subcommand is None:
        console.print("Webhook Monitor - Use --help to see available commands")


@app.command()
def send(
    ctx: typer.Context,
    url: Optional[str] = typer.Argument(None, help="Webhook URL (overrides config)"),
    payload: Optional[str] = typer.Option(
        None,
        "--payload",
        "-p",
        help="JSON payload to send; a connectivity test payload is sent if omitted"
    ),
    category: str = typer.Option("text", "--category", "-c", help="Label for the request"),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait before the request counts as failed"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to YAML config")
):
    """Deliver one payload to the webhook and show the recorded outcome."""
    config = _load_config(ctx, config_path)
    target = _resolve_url(url, config)
    if timeout is not None and timeout <= 0:
        console.print(f"[red]Error:[/] --timeout must be > 0, got {timeout:g}")
        sys.exit(EXIT_CODE_FAIL)

    body = None
    if payload is not None:
        try:
            body = json.loads(payload)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid JSON payload:[/] {e}")
            sys.exit(EXIT_CODE_FAIL)

    ledger = RequestLedger.from_config(config)
    client = _build_client()
    webhook = MonitoredWebhook(
        target,
        ledger=ledger,
        timeout_seconds=timeout if timeout is not None else config.webhook.timeout_seconds,
        client=client,
    )
    result = asyncio.run(_deliver(webhook, client, body, category))

    if result.ok:
        console.print(
            f"[green]✓[/] Delivered to {target} "
            f"({result.status_code}, {_format_duration(result.duration_ms)})"
        )
    else:
        console.print(f"[red]✗[/] Delivery to {target} failed: {result.error}")

    _display_stats(ledger.stats)
    sys.exit(EXIT_CODE_OK if result.ok else EXIT_CODE_FAIL)


@app.command()
def probe(
    ctx: typer.Context,
    url: Optional[str] = typer.Argument(None, help="Webhook URL (overrides config)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to YAML config")
):
    """Run a single health check against the webhook."""
    config = _load_config(ctx, config_path)
    target = _resolve_url(url, config)

    ledger = RequestLedger.from_config(config)
    client = _build_client()
    prober = HealthProber.from_config(ledger, config, client=client)
    asyncio.run(_probe_once(prober, client, target))

    record = ledger.get_recent_requests(1)[0]
    if record.status is RequestStatus.SUCCESS:
        console.print(f"[green]✓[/] {target} is reachable ({_format_duration(record.duration_ms)})")
    else:
        console.print(f"[red]✗[/] {target} health check failed: {record.error}")

    _display_stats(ledger.stats)
    sys.exit(EXIT_CODE_OK if record.status is RequestStatus.SUCCESS else EXIT_CODE_FAIL)


@app.command()
def watch(
    ctx: typer.Context,
    url: Optional[str] = typer.Argument(None, help="Webhook URL (overrides config)"),
    duration: float = typer.Option(
        300.0,
        "--duration",
        "-d",
        help="Seconds to keep the health prober running"
    ),
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between health check ticks"
    ),
    idle_threshold: Optional[float] = typer.Option(
        None,
        "--idle-threshold",
        help="Idle seconds after which a tick issues a probe"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to YAML config")
):
    """
    Run the background health prober for a bounded session.

    Prints a status line whenever the ledger changes, then the final
    statistics and the most recent requests.
    """
    config = _load_config(ctx, config_path)
    target = _resolve_url(url, config)

    ledger = RequestLedger.from_config(config)
    client = _build_client()
    prober = HealthProber.from_config(ledger, config, client=client)
    if interval is not None:
        prober.interval_seconds = interval
    if idle_threshold is not None:
        prober.idle_threshold_seconds = idle_threshold

    unsubscribe = ledger.subscribe(lambda stats: console.print(_format_status_line(stats)))
    try:
        asyncio.run(_watch(prober, client, target, duration))
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/]")
    finally:
        unsubscribe()

    _display_stats(ledger.stats)
    _display_requests(ledger.get_recent_requests(10))
    sys.exit(EXIT_CODE_OK if ledger.stats.is_connected else EXIT_CODE_FAIL)


@app.command("validate-config")
def validate_config(path: str = typer.Argument(..., help="Path to YAML config")):
    """Validate a monitor configuration file."""
    try:
        config = load_monitor_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("[green]✓[/] Configuration is valid")
    console.print(f"Webhook URL: {config.webhook.url or '[dim]not set[/]'}")
    console.print(f"Request timeout: {config.webhook.timeout_seconds:g}s")
    console.print(f"History size: {config.ledger.max_requests}")
    console.print(
        f"Health checks: every {config.health_check.interval_seconds:g}s "
        f"when idle for more than {config.health_check.idle_threshold_seconds:g}s"
    )
    sys.exit(EXIT_CODE_OK)


def _load_config(ctx: typer.Context, path: Optional[str]) -> MonitorConfig:
    """Load the config file, applying its log level unless --verbose was given."""
    if path is None:
        return MonitorConfig()
    try:
        config = load_monitor_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not (ctx.obj or {}).get("verbose"):
        configure_logging(config.logging.numeric_level)
    return config


def _resolve_url(url: Optional[str], config: MonitorConfig) -> str:
    target = url or config.webhook.url
    if not target:
        console.print("[red]Error:[/] no webhook URL given and none configured")
        sys.exit(EXIT_CODE_FAIL)
    return target


def _build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient()


async def _deliver(
    webhook: MonitoredWebhook,
    client: httpx.AsyncClient,
    payload: Any,
    category: str
) -> DeliveryResult:
    async with client:
        if payload is None:
            return await webhook.test_connection()
        return await webhook.send(payload, category=category)


async def _probe_once(prober: HealthProber, client: httpx.AsyncClient, url: str) -> None:
    async with client:
        await prober.probe(url)


async def _watch(
    prober: HealthProber,
    client: httpx.AsyncClient,
    url: str,
    duration: float
) -> None:
    async with client:
        prober.start(url)
        try:
            await asyncio.sleep(duration)
        finally:
            prober.stop()


def _format_duration(duration_ms: Optional[float]) -> str:
    """Format milliseconds as "350ms" or "1.2s"."""
    if not duration_ms:
        return "N/A"
    if duration_ms < 1000:
        return f"{duration_ms:.0f}ms"
    return f"{duration_ms / 1000:.1f}s"


def _format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "never"
    return value.strftime("%H:%M:%S")


def _format_status_line(stats: LedgerStats) -> str:
    state = "[green]connected[/]" if stats.is_connected else "[red]disconnected[/]"
    return (
        f"{state} total={stats.total_requests} ok={stats.success_count} "
        f"errors={stats.error_count} latency={_format_duration(stats.average_latency_ms)}"
    )


def _display_stats(stats: LedgerStats):
    """Display ledger statistics as a table."""
    table = Table(title="Webhook Statistics")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    status = "[green]Connected[/]" if stats.is_connected else "[red]Disconnected[/]"
    success_rate = stats.success_rate
    table.add_row("Status", status)
    table.add_row("Total requests", str(stats.total_requests))
    table.add_row("Successful", str(stats.success_count))
    table.add_row("Failed", str(stats.error_count))
    table.add_row("Success rate", "N/A" if success_rate is None else f"{success_rate:.1f}%")
    table.add_row("Average latency", _format_duration(stats.average_latency_ms))
    table.add_row("Consecutive errors", str(stats.consecutive_errors))
    table.add_row("Last success", _format_timestamp(stats.last_success_at))
    table.add_row("Last error", _format_timestamp(stats.last_error_at))
    console.print(table)

    if not stats.is_connected:
        console.print(
            f"[bold red]Connectivity problems:[/] {stats.consecutive_errors} consecutive errors. "
            "Check the webhook URL."
        )


def _display_requests(requests: List[WebhookRequest]):
    """Display recent requests, newest first."""
    if not requests:
        console.print("\n[dim]No requests recorded.[/]")
        return

    table = Table(title="Recent Requests")
    table.add_column("Time")
    table.add_column("Method")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")

    colors = {
        RequestStatus.SUCCESS: "green",
        RequestStatus.ERROR: "red",
        RequestStatus.PENDING: "yellow",
    }
    for request in requests:
        color = colors[request.status]
        table.add_row(
            _format_timestamp(request.created_at),
            request.method,
            request.category or "-",
            f"[{color}]{request.status.value}[/]",
            _format_duration(request.duration_ms),
            request.error or "",
        )
    console.print(table)


if __name__ == "__main__":
    app()
