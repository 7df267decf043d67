from __future__ import annotations

import json
import sys
from typing import List, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from comic_sync.adapters.sites import register_all
from comic_sync.config_models import SourceConfig, SyncConfig, config_to_jobs, load_and_validate_config
from comic_sync.core.engine import CrawlJob
from comic_sync.core.factory import ComponentFactory
from comic_sync.core.models import RunState, RunSummary
from comic_sync.utils.logging import get_logger, setup_logging

log = get_logger("comic_sync.main")


def run_one(factory: ComponentFactory, job: CrawlJob, source: SourceConfig) -> RunSummary:
    """Run a single invocation of one source."""
    built = factory.build(source)
    try:
        summary = built.engine.run(job)
    finally:
        built.client.close()

    print("DONE:", json.dumps(summary.as_dict(), ensure_ascii=False))
    return summary


def run_all(config: SyncConfig, only: Optional[List[str]] = None) -> List[RunSummary]:
    """Run every enabled source once, or only the named ones."""
    factory = ComponentFactory(config)
    summaries = []
    for job, source in _select_jobs(config, only):
        try:
            summaries.append(run_one(factory, job, source))
        except Exception as e:
            log.exception("Run for %s could not start", source.key)
            summaries.append(
                RunSummary(run_id="", source=source.key, status=RunState.FAILED, error=f"{type(e).__name__}: {e}")
            )
    return summaries


def run_schedule(config: SyncConfig, only: Optional[List[str]] = None) -> None:
    """Fire each source on its own interval until interrupted."""
    factory = ComponentFactory(config)
    scheduler = BlockingScheduler()

    for job, source in _select_jobs(config, only):
        interval = source.schedule.trigger_kwargs()
        scheduler.add_job(
            run_one,
            trigger=IntervalTrigger(**interval),
            args=[factory, job, source],
            id=f"sync_{source.key}",
            name=f"Scheduled sync: {source.key}",
            max_instances=1,
            coalesce=True,
        )
        log.info("Scheduled %s every %s", source.key, interval)

    try:
        scheduler.start()
    except KeyboardInterrupt:
        print("Scheduler stopped by user")


def _select_jobs(config: SyncConfig, only: Optional[List[str]]):
    jobs = config_to_jobs(config)
    if not only:
        return jobs
    unknown = set(only) - {source.key for _, source in jobs}
    if unknown:
        raise SystemExit(f"Unknown or disabled sources: {', '.join(sorted(unknown))}")
    return [(job, source) for job, source in jobs if source.key in only]


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point: comic-sync <config> [source ...]"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("Usage: comic-sync configs/sources.yaml [source ...]")
        return 2

    setup_logging("configs/logging.yaml")
    register_all()

    config_path, only = args[0], args[1:]
    config = load_and_validate_config(config_path)

    if config.schedule.enabled:
        print("Running in scheduled mode")
        run_schedule(config, only)
        return 0

    summaries = run_all(config, only)
    failed = [s.source for s in summaries if s.status != RunState.DONE]
    if failed:
        log.error("Runs with failures: %s", ", ".join(failed))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
