import asyncio
import logging

import typer

from flatwatch.common.config import settings
from flatwatch.common.logging import setup_logging
from flatwatch.db.errors import PersistenceUnavailableError
from flatwatch.db.gateway import open_gateway
from flatwatch.monitor.scheduler import TrackerScheduler
from flatwatch.monitor.tracker import Tracker


logger = logging.getLogger("monitor")

app = typer.Typer(add_completion=False, help="Track new real-estate listings and email a digest.")


async def run_once(app_settings) -> int:
    try:
        gateway = await open_gateway(app_settings)
    except PersistenceUnavailableError as exc:
        logger.error("FATAL: %s", exc)
        return 1

    tracker = Tracker.from_settings(gateway, app_settings)
    try:
        await tracker.run()
    except PersistenceUnavailableError as exc:
        logger.error("FATAL: durable store unavailable: %s", exc)
        return 1
    except Exception:
        logger.exception("Tracking run failed")
        return 1
    finally:
        await tracker.aclose()
        await gateway.close()
    return 0


async def run_scheduled(app_settings) -> int:
    try:
        gateway = await open_gateway(app_settings)
    except PersistenceUnavailableError as exc:
        logger.error("FATAL: %s", exc)
        return 1

    tracker = Tracker.from_settings(gateway, app_settings)
    scheduler = TrackerScheduler(
        tracker.run,
        timezone=app_settings.timezone,
        interval_min=app_settings.schedule_interval_min,
        cron=app_settings.schedule_cron,
    )
    try:
        return await scheduler.serve()
    finally:
        await tracker.aclose()
        await gateway.close()


@app.command()
def main(
    schedule: bool = typer.Option(False, "--schedule", "-s", help="Keep running on the configured schedule."),
) -> None:
    setup_logging(settings.log_level)
    if schedule:
        logger.info("Starting tracker in scheduled mode")
        code = asyncio.run(run_scheduled(settings))
    else:
        logger.info("Running tracker once (use --schedule to keep running)")
        code = asyncio.run(run_once(settings))
    raise typer.Exit(code=code)


if __name__ == "__main__":
    app()
