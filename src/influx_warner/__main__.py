"""CLI entry point for influx-warner."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click

from . import __version__
from .exceptions import ConfigError

# ── Helpers ──────────────────────────────────────────────


def _echo_alert(alert: dict[str, Any]) -> None:
    click.echo(json.dumps(alert, default=str, ensure_ascii=False))


def _echo_error(payload: dict[str, Any]) -> None:
    where = payload.get("measurement") or "config"
    click.echo(f"ERROR [{where}] {payload['error']}", err=True)
    if payload.get("ql"):
        click.echo(f"  ql: {payload['ql']}", err=True)


def _load(config_path: str, timeout: float | None):
    from .warner import Warner

    try:
        return Warner(Path(config_path), timeout=timeout)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


async def _run_forever(warner, interval: float, webhook: str) -> None:
    notifier = None
    if webhook:
        from .notifications import WebhookNotifier

        notifier = WebhookNotifier(webhook)
        warner.on("warn", notifier.notify)
    warner.start(interval)
    try:
        await asyncio.Event().wait()
    finally:
        warner.stop()
        await warner.wait_idle()
        if notifier:
            await notifier.close()


# ── CLI Commands ─────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="influx-warner")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity",
)
def main(log_level: str) -> None:
    """influx-warner — threshold alerts over InfluxDB."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command()
@click.option("--config", "config_path", required=True, help="Rules config file (YAML)")
@click.option("--interval", default=60.0, type=float, show_default=True, help="Seconds between checks")
@click.option("--timeout", default=None, type=float, help="Per-query timeout in seconds")
@click.option("--webhook", default="", help="POST every alert to this URL")
def run(config_path: str, interval: float, timeout: float | None, webhook: str) -> None:
    """Check the rules every INTERVAL seconds and print alerts."""
    warner = _load(config_path, timeout)
    warner.on("warn", _echo_alert)
    warner.on("error", _echo_error)
    try:
        asyncio.run(_run_forever(warner, interval, webhook))
    except KeyboardInterrupt:
        click.echo("Stopped.")


@main.command()
@click.option("--config", "config_path", required=True, help="Rules config file (YAML)")
@click.option("--once", is_flag=True, help="Also run one check and print the alerts")
@click.option("--timeout", default=None, type=float, help="Per-query timeout in seconds")
def check(config_path: str, once: bool, timeout: float | None) -> None:
    """Validate the rules config (and optionally run it once)."""
    warner = _load(config_path, timeout)
    click.echo(
        f"{len(warner.rules)} rules across {len(warner.config.databases)} databases"
    )
    for error in warner.config_errors:
        click.echo(f"  invalid: {error}", err=True)

    if once:
        warner.on("warn", _echo_alert)
        warner.on("error", _echo_error)
        asyncio.run(warner.check_once())

    if warner.config_errors:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
