"""SimTerm CLI."""

import asyncio
import logging
import time
from pathlib import Path

import click

from simterm.app import SimTermApp
from simterm.bus.event_bus import EventBus
from simterm.bus.events import Topic
from simterm.config_loader import FeedConfig, load_config_with_overrides
from simterm.constants import DEFAULT_INSTRUMENTS
from simterm.data.sim_feed import SimMarketFeed


@click.group()
def cli():
    """SimTerm Command Line Interface."""
    pass


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file (built-in defaults if omitted)",
)
@click.option("--duration", type=float, help="Stop after this many seconds")
@click.option(
    "--commands",
    "commands_file",
    type=click.Path(exists=True),
    help="File of operator commands to execute, one per line",
)
@click.option("--seed", type=int, help="Seed for a reproducible run")
@click.option("--no-dashboard", is_flag=True, help="Disable the console dashboard")
def run(config, duration, commands_file, seed, no_dashboard):
    """Start the simulated terminal."""
    try:
        cfg = load_config_with_overrides(
            config, seed=seed, dashboard=False if no_dashboard else None
        )
        commands = None
        if commands_file:
            commands = Path(commands_file).read_text(encoding="utf-8").splitlines()

        app = SimTermApp(config_path=None, config=cfg)
        asyncio.run(app.run(duration=duration, commands=commands))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        click.echo(f"Fatal error: {e}", err=True)
        raise SystemExit(1) from e


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file (built-in defaults if omitted)",
)
def smoke_test(config):
    """Run a smoke test (start every component briefly, trade once, and exit)."""

    async def _smoke() -> None:
        cfg = load_config_with_overrides(config, dashboard=False)
        cfg = cfg.model_copy(update={"journal": cfg.journal.model_copy(update={"enabled": False})})
        app = SimTermApp(config_path=None, config=cfg)
        script = [f"/open {cfg.instruments[0]} 0.01 market buy", "/portfolio"]
        await app.run(commands=script)

        snapshot = app.engine.get_portfolio_snapshot()
        if len(snapshot.open_positions) != 1:
            raise RuntimeError(f"expected 1 open position, found {len(snapshot.open_positions)}")

    try:
        asyncio.run(_smoke())
        click.echo("Smoke test passed: Components started and an order filled.")
    except Exception as e:
        click.echo(f"Smoke test failed: {e}", err=True)
        raise SystemExit(1) from e


@cli.command()
@click.option("--seconds", default=5.0, help="Benchmark duration")
@click.option("--min-tps", default=500, help="Minimum target ticks per second")
@click.option("--max-tps", default=1000, help="Maximum target ticks per second")
@click.option("--frame-ms", default=25, help="Generator frame interval")
def bench(seconds, min_tps, max_tps, frame_ms):
    """Measure raw generator throughput through the bus."""
    logging.basicConfig(level=logging.WARNING, format="%(message)s")

    async def _bench() -> tuple[int, float]:
        bus = EventBus()
        feed = SimMarketFeed(
            bus,
            list(DEFAULT_INSTRUMENTS),
            FeedConfig(min_ticks_per_second=min_tps, max_ticks_per_second=max_tps, frame_ms=frame_ms),
        )
        count = 0

        def _count(_tick) -> None:
            nonlocal count
            count += 1

        bus.subscribe(Topic.TICK, _count)
        started = time.perf_counter()
        await feed.start()
        await asyncio.sleep(seconds)
        await feed.stop()
        await bus.drain()
        elapsed = time.perf_counter() - started
        await bus.shutdown()
        return count, elapsed

    count, elapsed = asyncio.run(_bench())
    click.echo(
        f"bench: ticks={count} elapsedMs={elapsed * 1000:.0f} "
        f"approxTicksPerSec={count / elapsed:.2f}"
    )


main = cli

if __name__ == "__main__":
    main()
