from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from comic_sync.adapters.base import SourceAdapter
from comic_sync.core.checkpoint import CheckpointRunner, StepFailed
from comic_sync.core.decision import DecisionEngine, explained_by_growth
from comic_sync.core.errors import BudgetExhausted
from comic_sync.core.executor import BatchExecutor
from comic_sync.core.models import (
    BatchResult,
    ChangeFeed,
    Discovery,
    Listing,
    Plan,
    PlanKind,
    Progress,
    RunState,
    RunSummary,
)
from comic_sync.http.policies import CallBudget, Deadline, RateLimiter
from comic_sync.state.base import DedupIndex, ProgressStore, StepJournal
from comic_sync.state.schema import decode_progress, encode_progress
from comic_sync.utils.logging import get_logger
from comic_sync.utils.time import utc_now_iso


@dataclass(frozen=True)
class CrawlJob:
    """Per-source run settings."""

    key: str
    batch_size: int = 10
    call_budget: int = 50
    delay_ms: int = 1000
    time_budget_s: Optional[float] = None
    max_attempts: int = 3
    compare_and_swap: bool = True


class CrawlEngine:
    """
    Runs one invocation of a source: discover, plan, execute, commit.

    Each step goes through a CheckpointRunner, so re-invoking an unfinished
    run replays the steps that already succeeded instead of repeating their
    outbound calls. A RunSummary is returned whether or not a step failed.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        progress_store: ProgressStore,
        dedup: DedupIndex,
        journal: StepJournal,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.adapter = adapter
        self.progress_store = progress_store
        self.dedup = dedup
        self.journal = journal
        self.clock = clock
        self.log = get_logger("comic_sync.engine")

    @property
    def capabilities(self):
        return self.adapter.capabilities

    def run(self, job: CrawlJob) -> RunSummary:
        summary = RunSummary(run_id="", source=job.key, status=RunState.PENDING)
        try:
            self._run(job, summary)
        except StepFailed as e:
            summary.status = RunState.FAILED
            summary.failed_step = e.step
            summary.error = f"{type(e.cause).__name__}: {e.cause}"
            self.log.error("Run failed: source=%s run=%s step=%s error=%s", job.key, summary.run_id, e.step, summary.error)
        except Exception as e:
            summary.status = RunState.FAILED
            summary.error = f"{type(e).__name__}: {e}"
            self.log.exception("Run failed outside a step: source=%s run=%s", job.key, summary.run_id or "-")
        return summary

    def _run(self, job: CrawlJob, summary: RunSummary) -> None:
        deadline = Deadline(job.time_budget_s)
        run = self.journal.open_run(job.key, job.max_attempts)
        runner = CheckpointRunner(self.journal, run)
        summary.run_id = run.run_id
        summary.resumed = run.resumed

        self.log.info("Run started: source=%s run=%s attempt=%s resumed=%s", job.key, run.run_id, run.attempts, run.resumed)

        discovery = decode_discovery(job.key, runner.step("discover", lambda: self._discover(job)))
        self.log.info(
            "Discovery: source=%s listed=%s feed=%s calls=%s",
            job.key,
            len(discovery.listing.ids),
            len(discovery.feed.ids) if discovery.feed else "-",
            discovery.calls,
        )

        plan = Plan.from_dict(runner.step("plan", lambda: self._plan(job, discovery)))
        summary.plan = plan.describe()
        self.log.info("Plan: source=%s %s (%s)", job.key, plan.describe(), plan.reason)

        result = BatchResult.from_dict(runner.step("execute", lambda: self._execute(job, discovery, plan, deadline)))
        summary.processed = result.processed
        summary.added = result.added
        summary.skipped = result.skipped
        summary.errors = result.errors
        summary.error_ids = list(result.error_ids)

        committed = runner.step("commit", lambda: self._commit(job, run.run_id, discovery, plan, result))
        runner.finish()

        after = decode_progress(job.key, committed["progress"])
        summary.status = RunState.DONE
        summary.cursor_state = {
            "backfill_cursor": after.backfill_cursor,
            "backfill_complete": after.backfill_complete,
            "discovered": len(after.discovered_ids),
            "signature": after.last_discovery_signature,
        }

        self.log.info(
            "Run done: source=%s run=%s plan=%s processed=%s added=%s skipped=%s errors=%s replayed=%s",
            job.key,
            run.run_id,
            summary.plan,
            summary.processed,
            summary.added,
            summary.skipped,
            summary.errors,
            ",".join(runner.replayed) or "-",
        )

    # ---------- Steps ----------

    def _discover(self, job: CrawlJob) -> Dict[str, Any]:
        """Read progress, then fetch listing and change feed concurrently."""
        progress = self.progress_store.get(job.key) or Progress.initial(job.key)
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"discover-{job.key}") as pool:
            listing_future = None
            if self._needs_listing(progress):
                listing_future = pool.submit(self.adapter.fetch_listing, self.dedup.contains_any)
            feed_future = pool.submit(self.adapter.fetch_change_feed) if self.capabilities.has_change_feed else None

            listing = listing_future.result() if listing_future is not None else Listing.not_fetched()
            feed = feed_future.result() if feed_future is not None else None

        calls = listing.calls + (feed.calls if feed is not None else 0)
        if calls > job.call_budget:
            raise BudgetExhausted(f"Discovery used {calls} calls, budget is {job.call_budget}")

        known = self.dedup.contains_any(feed.ids) if feed is not None else set()
        discovery = Discovery(
            progress=progress,
            listing=listing,
            feed=feed,
            known_feed_ids=tuple(sorted(known)),
            calls=calls,
        )
        return encode_discovery(discovery)

    def _needs_listing(self, progress: Progress) -> bool:
        """A listing that is not one cheap fetch is only worth it while a backfill is open."""
        caps = self.capabilities
        return caps.has_single_listing or not caps.has_change_feed or not progress.backfill_complete

    def _plan(self, job: CrawlJob, discovery: Discovery) -> Dict[str, Any]:
        engine = DecisionEngine(self.capabilities, job.batch_size)
        plan = engine.decide(discovery.progress, discovery.listing, discovery.feed, discovery.known_feed_ids)
        return plan.as_dict()

    def _execute(self, job: CrawlJob, discovery: Discovery, plan: Plan, deadline: Deadline) -> Dict[str, Any]:
        executor = BatchExecutor(
            adapter=self.adapter,
            dedup=self.dedup,
            capabilities=self.capabilities,
            item_budget=job.batch_size,
            call_budget=CallBudget(job.call_budget, spent=discovery.calls),
            limiter=RateLimiter(job.delay_ms),
            deadline=deadline,
        )
        return executor.execute(plan, discovery.listing.ids).as_dict()

    def _commit(self, job: CrawlJob, run_id: str, discovery: Discovery, plan: Plan, result: BatchResult) -> Dict[str, Any]:
        current = self.progress_store.get(job.key)
        if current is not None and current.last_run_id == run_id:
            self.log.info("Progress for %s already holds run %s, not writing again", job.key, run_id)
            return {"progress": encode_progress(current), "written": False}

        after = advance_progress(discovery, plan, result, run_id, self.clock())
        expected = discovery.progress.version if job.compare_and_swap else None
        self.progress_store.put(job.key, after, expected_version=expected)
        self.log.info(
            "Progress committed: source=%s cursor=%s complete=%s version=%s",
            job.key,
            after.backfill_cursor,
            after.backfill_complete,
            after.version,
        )
        return {"progress": encode_progress(after), "written": True}


def advance_progress(discovery: Discovery, plan: Plan, result: BatchResult, run_id: str, now: str) -> Progress:
    """
    Compute the Progress that follows one run. Deterministic in its inputs.

    Discovered ids and the listing signature only move forward when the new
    listing is simple growth of the old one; otherwise the old values are kept
    so the next decision still sees the mismatch and asks for a rescan.
    """
    before = discovery.progress
    listing = discovery.listing
    feed = discovery.feed

    cursor = before.backfill_cursor
    complete = before.backfill_complete
    discovered = before.discovered_ids
    listing_signature = before.last_discovery_signature
    if explained_by_growth(before.discovered_ids, listing.ids, before.backfill_cursor):
        discovered = listing.ids
        listing_signature = listing.signature

    if plan.kind == PlanKind.FULL_RESCAN:
        cursor = 1
        complete = False
        discovered = listing.ids
        signature = None
    elif plan.kind == PlanKind.BACKFILL:
        cursor = max(before.backfill_cursor, result.next_cursor or before.backfill_cursor)
        complete = not any(i >= cursor for i in listing.ids)
        if feed is None:
            signature = listing_signature
        elif complete:
            signature = feed.signature
        else:
            signature = before.last_discovery_signature
    elif plan.kind == PlanKind.CHANGE_FEED_DELTA:
        signature = feed.signature if feed is not None and result.drained else before.last_discovery_signature
    else:
        signature = feed.signature if feed is not None else listing_signature

    return Progress(
        source_key=before.source_key,
        discovered_ids=tuple(discovered),
        backfill_cursor=cursor,
        backfill_complete=complete,
        last_discovery_signature=signature,
        total_processed=before.total_processed + result.processed,
        last_run_time=now,
        last_run_id=run_id,
        last_plan=plan.describe(),
        version=before.version + 1,
    )


def encode_discovery(discovery: Discovery) -> Dict[str, Any]:
    return {
        "progress": encode_progress(discovery.progress),
        "listing": discovery.listing.as_dict(),
        "feed": discovery.feed.as_dict() if discovery.feed is not None else None,
        "known_feed_ids": list(discovery.known_feed_ids),
        "calls": discovery.calls,
    }


def decode_discovery(source_key: str, payload: Dict[str, Any]) -> Discovery:
    feed = payload.get("feed")
    return Discovery(
        progress=decode_progress(source_key, payload["progress"]),
        listing=Listing.from_dict(payload["listing"]),
        feed=ChangeFeed.from_dict(feed) if feed else None,
        known_feed_ids=tuple(int(i) for i in payload.get("known_feed_ids", [])),
        calls=int(payload.get("calls", 0)),
    )
