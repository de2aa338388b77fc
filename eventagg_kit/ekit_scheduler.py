import argparse
import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from eventagg_kit import ekit_logs, ekit_shutdown
from eventagg_kit.ekit_cleanup import cleanup_old_events
from eventagg_kit.ekit_config import ConfigError, EventAggConfig
from eventagg_kit.ekit_schedule import calculate_next_run
from eventagg_kit.ekit_services import EventAggServices, build_services
from eventagg_kit.ekit_token_health import monitor_token_health


logger = logging.getLogger("sched")


async def job_token_refresh(services: EventAggServices) -> Dict[str, Any]:
    summary = await services.refresher.refresh_expiring_tokens(services.config.app_credentials())
    return summary.to_json_dict()


async def job_event_sync(services: EventAggServices) -> Dict[str, Any]:
    summary = await services.syncer.sync_all_pages()
    return summary.to_json_dict()


async def job_token_monitor(services: EventAggServices) -> Dict[str, Any]:
    report = await monitor_token_health(services.reporter, services.mailer)
    return report.to_json_dict()


async def job_cleanup(services: EventAggServices) -> Dict[str, Any]:
    result = await cleanup_old_events(services.events)
    return result.to_json_dict()


JobFunc = Callable[[EventAggServices], Awaitable[Dict[str, Any]]]

JOBS: Dict[str, Tuple[str, JobFunc]] = {
    "token-refresh": ("EVERY:1h", job_token_refresh),
    "event-sync": ("EVERY:4h", job_event_sync),
    "token-monitor": ("DAILY:09:00", job_token_monitor),
    "cleanup": ("DAILY:03:00", job_cleanup),
}


async def run_job(services: EventAggServices, name: str, jobs: Dict[str, Tuple[str, JobFunc]] = JOBS) -> Optional[Dict[str, Any]]:
    """
    Run one job, log its outcome. A failed run is logged at ALERT level and
    returns None, the next slot tries again.
    """
    _, func = jobs[name]
    t0 = time.time()
    logger.info("job %s start", name)
    try:
        result = await func(services)
    except ConfigError as e:
        ekit_logs.alert(logger, "job %s cannot run, configuration: %s", name, e)
        return None
    except Exception as e:
        ekit_logs.alert(logger, "job %s failed after %.1fs: %s %s", name, time.time() - t0, type(e).__name__, e, exc_info=e)
        return None
    logger.info("job %s done in %.1fs: %s", name, time.time() - t0, json.dumps(result, default=str)[:1000])
    return result


async def scheduler_loop(
    services: EventAggServices,
    jobs: Dict[str, Tuple[str, JobFunc]] = JOBS,
    tz_name: str = "UTC",
    run_at_start: bool = False,
) -> None:
    now = time.time()
    next_runs = {name: (now if run_at_start else calculate_next_run(when, now, tz_name, name)) for name, (when, _) in jobs.items()}
    for name, ts in next_runs.items():
        logger.info("job %s %s next run in %.0fs", name, jobs[name][0], ts - now)
    while not ekit_shutdown.shutdown_event.is_set():
        name = min(next_runs, key=next_runs.get)
        delay = max(0.0, next_runs[name] - time.time())
        if await ekit_shutdown.wait(delay):
            break
        task = asyncio.create_task(run_job(services, name, jobs))
        ekit_shutdown.give_task_to_cancel(name, task)
        try:
            await task
        except asyncio.CancelledError:
            logger.info("job %s cancelled by shutdown", name)
            break
        finally:
            ekit_shutdown.take_away_task_to_cancel(name)
        next_runs[name] = calculate_next_run(jobs[name][0], time.time(), tz_name, name)
    logger.info("scheduler stopped")


async def main_async(args: argparse.Namespace) -> int:
    try:
        services = build_services(EventAggConfig.from_env())
    except ConfigError as e:
        logger.error("configuration error: %s", e)
        return 1
    try:
        await services.ensure_indexes()
        if args.sync_page:
            r = await services.syncer.sync_page_by_id(args.sync_page)
            print(json.dumps({"pageId": r.page_id, "events": len(r.events), "error": r.error}, indent=2))
            return 0 if r.error is None else 1
        if args.once:
            result = await run_job(services, args.once)
            print(json.dumps(result, indent=2, default=str))
            return 0 if result is not None else 1
        ekit_shutdown.setup_signals()
        await scheduler_loop(services, tz_name=args.tz, run_at_start=args.run_at_start)
        return 0
    finally:
        await services.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Event aggregator scheduler: token refresh, event sync, token monitor, cleanup")
    parser.add_argument("--once", choices=sorted(JOBS.keys()), help="Run a single job now, print its result as JSON and exit")
    parser.add_argument("--sync-page", metavar="PAGE_ID", help="Sync events of one registered page and exit")
    parser.add_argument("--tz", default="UTC", help="Timezone for DAILY jobs")
    parser.add_argument("--run-at-start", action="store_true", help="Run every job once right after start")
    args = parser.parse_args()
    ekit_logs.setup_logger()
    raise SystemExit(asyncio.run(main_async(args)))


if __name__ == "__main__":
    main()
