"""Herald CLI — relay a BitCraft region's chat and moderation to a webhook.

Usage:
    herald init                          # Write a blank config.json
    herald check                         # Is the config complete?
    herald run                           # Relay the configured region
    herald replay feed.jsonl             # Relay a recorded feed instead

Ctrl-C (or SIGTERM) drains: everything already received is echoed and
delivered before the process exits.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import signal
import sys
from typing import Optional

import click
import structlog

from herald import __version__
from herald.config import Settings, config_path, load_settings, write_template
from herald.events.types import ResolutionPolicy
from herald.relay.coordinator import DisconnectOutcome, ShutdownCoordinator
from herald.relay.materializer import Materializer
from herald.relay.queue import NotificationQueue
from herald.relay.sink import Sink
from herald.services.webhook import build_delivery
from herald.sources.base import ChangeSource
from herald.sources.replay import ReplaySource
from herald.sources.spacetime import SpacetimeSqlSource

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configure_logging(level: str = "INFO") -> None:
    """Send stdlib and structlog output to stderr in one format."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def _run(coro):
    """Drive a relay coroutine to completion from a click command.

    A command called while a loop is already running (CliRunner inside an
    async test, or herald embedded in another asyncio app) gets a private
    loop on a worker thread; signal handlers are skipped there.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix="herald-relay"
    ) as pool:
        return pool.submit(asyncio.run, coro).result()


async def relay(
    source: ChangeSource,
    *,
    webhook_url: str = "",
    webhook_timeout: Optional[float] = None,
    policy: ResolutionPolicy = ResolutionPolicy.SUBSTITUTE,
) -> DisconnectOutcome:
    """Wire source → materializer → queue → sink and run until drained."""
    queue = NotificationQueue()
    delivery = build_delivery(webhook_url, webhook_timeout)
    coordinator = ShutdownCoordinator(
        source, Materializer(policy), queue, Sink(queue, delivery)
    )

    # Operator interrupt drains
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, coordinator.request_shutdown, "interrupted")
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows, or not on the main thread
            pass

    try:
        return await coordinator.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        if delivery is not None:
            await delivery.aclose()


def _report(outcome: DisconnectOutcome) -> None:
    """Print the final outcome and exit non-zero on a source or sink error."""
    click.echo("disconnected!")
    if outcome.error is not None:
        label = "sink error" if outcome.reason == "sink error" else "db error"
        click.secho(f"{label}: {outcome.error!r}", fg="red", err=True)
        sys.exit(1)


def _describe(settings: Settings) -> list[tuple[str, bool]]:
    return [
        ("cluster_url", bool(settings.cluster_url)),
        ("region", bool(settings.region)),
        ("token", bool(settings.token)),
        ("webhook_url", bool(settings.webhook_url)),
    ]


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="herald")
def main():
    """Herald — relay BitCraft region chat and moderation to a webhook."""


# ---------------------------------------------------------------------------
# herald init
# ---------------------------------------------------------------------------


@main.command()
@click.option("--config", "-c", "config", help="Config file (default: config.json)")
def init(config: Optional[str]):
    """Write a blank configuration file."""
    path = config_path(config)
    if write_template(config):
        click.secho(f"Wrote {path} — fill in cluster_url, region and token.", fg="green")
    else:
        click.echo(f"{path} already exists, leaving it alone.")


# ---------------------------------------------------------------------------
# herald check
# ---------------------------------------------------------------------------


@main.command()
@click.option("--config", "-c", "config", help="Config file (default: config.json)")
def check(config: Optional[str]):
    """Show which settings are filled in (values are never printed)."""
    settings = load_settings(config)
    for key, present in _describe(settings):
        mark = click.style("set", fg="green") if present else click.style("missing", fg="red")
        click.echo(f"{key.ljust(12)} {mark}")
    click.echo(f"{'policy'.ljust(12)} {settings.resolution_policy.value}")
    if not settings.is_configured:
        sys.exit(1)


# ---------------------------------------------------------------------------
# herald run
# ---------------------------------------------------------------------------


@main.command()
@click.option("--config", "-c", "config", help="Config file (default: config.json)")
def run(config: Optional[str]):
    """Relay the configured region until interrupted or disconnected."""
    if write_template(config):
        click.echo(f"Created blank {config_path(config)}")

    settings = load_settings(config)
    if not settings.is_configured:
        click.secho(
            f"please fill out the configuration file ({config_path(config)})!",
            fg="red",
            err=True,
        )
        sys.exit(1)

    _configure_logging(settings.log_level)

    source = SpacetimeSqlSource(
        settings.cluster_url,
        settings.region,
        settings.token,
        poll_interval=settings.poll_interval,
        on_connect=lambda: click.echo("connected!"),
    )
    outcome = _run(relay(
        source,
        webhook_url=settings.webhook_url,
        webhook_timeout=settings.webhook_timeout,
        policy=settings.resolution_policy,
    ))
    _report(outcome)


# ---------------------------------------------------------------------------
# herald replay
# ---------------------------------------------------------------------------


@main.command()
@click.argument("feed", type=click.Path(exists=True, dir_okay=False))
@click.option("--webhook-url", "-w", default="", help="POST notifications here too")
@click.option("--interval", "-i", default=0.0, help="Seconds between ticks")
@click.option(
    "--policy",
    "-p",
    type=click.Choice([p.value for p in ResolutionPolicy]),
    default=ResolutionPolicy.SUBSTITUTE.value,
    help="Moderation rows for unknown players",
)
@click.option("--log-level", default="WARNING", help="Logging level")
def replay(feed: str, webhook_url: str, interval: float, policy: str, log_level: str):
    """Relay a recorded JSON-lines FEED (one tick per line)."""
    _configure_logging(log_level.upper())
    outcome = _run(relay(
        ReplaySource(feed, interval=interval),
        webhook_url=webhook_url,
        policy=ResolutionPolicy(policy),
    ))
    _report(outcome)


if __name__ == "__main__":
    main()
