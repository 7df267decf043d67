from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set

from comic_sync.adapters.base import SourceAdapter
from comic_sync.core.errors import PersistenceError, SourceError
from comic_sync.core.models import BatchResult, Capabilities, Item, Plan, PlanKind
from comic_sync.http.policies import CallBudget, Deadline, RateLimiter
from comic_sync.state.base import DedupIndex
from comic_sync.utils.logging import get_logger


class BatchExecutor:
    """
    Performs the bounded fetch+persist work of one plan.

    At most ``item_budget`` ids are fetched. The loop also stops when the call
    budget or the deadline runs out, or when the plan has nothing left. A bad
    id never stalls the cursor: errors and misses are recorded and passed.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        dedup: DedupIndex,
        capabilities: Capabilities,
        item_budget: int,
        call_budget: CallBudget,
        limiter: RateLimiter,
        deadline: Optional[Deadline] = None,
    ):
        self.adapter = adapter
        self.dedup = dedup
        self.capabilities = capabilities
        self.item_budget = max(1, int(item_budget))
        self.call_budget = call_budget
        self.limiter = limiter
        self.deadline = deadline or Deadline(None)
        self.log = get_logger("comic_sync.executor")

    def execute(self, plan: Plan, listing_ids: Sequence[int]) -> BatchResult:
        if plan.kind == PlanKind.BACKFILL:
            result, successes = self._run_backfill(plan, listing_ids)
        elif plan.kind == PlanKind.CHANGE_FEED_DELTA:
            result, successes = self._run_delta(plan)
        else:
            return BatchResult(stop_reason="no_work")

        self._persist(successes, result)

        self.log.info(
            "Batch done: plan=%s processed=%s added=%s skipped=%s errors=%s stop=%s",
            plan.describe(),
            result.processed,
            result.added,
            result.skipped,
            result.errors,
            result.stop_reason,
        )
        return result

    # ---------- Plans ----------

    def _run_backfill(self, plan: Plan, listing_ids: Sequence[int]) -> tuple[BatchResult, List[Item]]:
        result = BatchResult(next_cursor=plan.start)
        successes: List[Item] = []
        candidates = [i for i in listing_ids if i >= plan.start]
        limit = min(plan.target_count, self.item_budget)
        known = self._already_ingested(candidates)
        cursor = plan.start

        for item_id in candidates:
            if item_id < cursor:
                # passed by a redirect
                continue

            if item_id in known:
                self.log.debug("Comic %s already ingested, not fetching", item_id)
                cursor = item_id + 1
                continue

            stop = self._stop_reason(result.processed, limit)
            if stop:
                result.stop_reason = stop
                break

            if result.processed:
                self.limiter.sleep()

            cursor = self._fetch_for_backfill(item_id, result, successes)
            result.last_consumed_id = cursor - 1
        else:
            result.exhausted = True
            result.stop_reason = "id_space_exhausted"

        result.next_cursor = max(cursor, plan.start)
        return result, successes

    def _already_ingested(self, candidates: List[int]) -> Set[int]:
        if self.capabilities.stable_ids:
            return self.dedup.contains_any(candidates)

        # listing ids are positions; match the pages they point at instead
        origins: Dict[int, str] = {}
        for item_id in candidates:
            url = self.adapter.origin_url(item_id)
            if url:
                origins[item_id] = url
        stored = self.dedup.contains_origins(origins.values())
        return {item_id for item_id, url in origins.items() if url in stored}

    def _fetch_for_backfill(self, item_id: int, result: BatchResult, successes: List[Item]) -> int:
        """Fetch one id and return the cursor that follows it."""
        result.processed += 1
        try:
            if self.capabilities.has_nearest_redirect:
                item = self.adapter.fetch_item_or_nearest(item_id)
            else:
                item = self.adapter.fetch_item(item_id)
        except SourceError as e:
            self.log.warning("Fetch failed for comic %s: %s", item_id, e)
            result.record_error(item_id)
            return item_id + 1

        if item is None:
            self.log.debug("Comic %s has no translation", item_id)
            result.skipped += 1
            return item_id + 1

        if self.capabilities.has_nearest_redirect and item.id != item_id:
            if item.id < item_id:
                self.log.warning("Comic %s redirected backwards to %s, treating as missing", item_id, item.id)
                result.skipped += 1
                return item_id + 1

            gap = list(range(item_id + 1, item.id))
            self.log.info("Comic %s redirected to %s, discarding %s ids in between", item_id, item.id, len(gap))
            result.discarded.extend(gap)
            successes.append(item)
            return item.id + 1

        successes.append(item)
        return item_id + 1

    def _run_delta(self, plan: Plan) -> tuple[BatchResult, List[Item]]:
        result = BatchResult()
        successes: List[Item] = []
        limit = min(len(plan.ids), self.item_budget)
        known = self.dedup.contains_any(plan.ids)
        handled = 0

        for item_id in plan.ids:
            if item_id in known:
                self.log.debug("Feed comic %s ingested since planning, not fetching", item_id)
                handled += 1
                continue

            stop = self._stop_reason(result.processed, limit)
            if stop:
                result.stop_reason = stop
                break

            if result.processed:
                self.limiter.sleep()

            result.processed += 1
            try:
                item = self.adapter.fetch_item(item_id)
            except SourceError as e:
                self.log.warning("Fetch failed for feed comic %s: %s", item_id, e)
                result.record_error(item_id)
                item = None
            else:
                if item is None:
                    result.skipped += 1
                else:
                    successes.append(item)

            result.last_consumed_id = item_id
            handled += 1

        result.drained = handled == len(plan.ids)
        if result.drained:
            result.stop_reason = "plan_exhausted"
        return result, successes

    def _stop_reason(self, processed: int, limit: int) -> str:
        if processed >= limit:
            return "item_budget"
        if self.deadline.expired():
            return "time_budget"
        if not self.call_budget.try_spend():
            return "call_budget"
        return ""

    # ---------- Persistence ----------

    def _persist(self, successes: List[Item], result: BatchResult) -> None:
        """Re-check against the dedup index, then bulk upsert with a per-item fallback."""
        if not successes:
            return

        unique: Dict[int, Item] = {}
        for item in successes:
            unique.setdefault(item.id, item)

        already: Set[int] = self.dedup.contains_any(unique.keys())
        fresh = [item for item_id, item in unique.items() if item_id not in already]
        result.skipped += len(successes) - len(fresh)

        if not fresh:
            return

        try:
            self.dedup.insert_batch(fresh)
            result.added += len(fresh)
            return
        except PersistenceError as e:
            self.log.error("Bulk insert of %s comics failed, falling back to single inserts: %s", len(fresh), e)

        for item in fresh:
            try:
                self.dedup.insert_one(item)
                result.added += 1
            except PersistenceError as e:
                self.log.error("Insert failed for comic %s: %s", item.id, e)
                result.record_error(item.id)
