from __future__ import annotations

from typing import Iterable, Optional

from comic_sync.core.models import Capabilities, ChangeFeed, Listing, Plan, Progress
from comic_sync.utils.logging import get_logger


class DecisionEngine:
    """
    Decides what a run should do. Pure: reads Progress and discovery data, returns one Plan.

    Priority order:
      1. An unfinished backfill always wins.
      2. Change-feed sources compare the feed signature; a feed whose whole
         window is unseen has outrun what it can show, so only a full rescan
         is safe.
      3. Listing sources compare the listing signature and fall back to the
         backlog below the cursor.
    """

    def __init__(self, capabilities: Capabilities, batch_size: int):
        self.capabilities = capabilities
        self.batch_size = max(1, int(batch_size))
        self.log = get_logger("comic_sync.decision")

    def decide(
        self,
        progress: Progress,
        listing: Listing,
        feed: Optional[ChangeFeed] = None,
        known_feed_ids: Iterable[int] = (),
    ) -> Plan:
        backlog = progress.backlog(listing.ids)

        if not progress.backfill_complete:
            return self._backfill(progress, backlog, "backfill incomplete")

        if self.capabilities.has_change_feed:
            return self._decide_from_feed(progress, feed, set(known_feed_ids))

        return self._decide_from_listing(progress, listing, backlog)

    def _decide_from_feed(self, progress: Progress, feed: Optional[ChangeFeed], known: set) -> Plan:
        if feed is None:
            return Plan.idle("change feed unavailable")

        if feed.signature == progress.last_discovery_signature:
            return Plan.idle("change feed unchanged")

        unseen = [i for i in feed.ids if i not in known]
        if feed.window_size > 0 and len(unseen) >= feed.window_size:
            self.log.warning(
                "Change feed saturated: %s of %s visible ids unseen, requesting full rescan",
                len(unseen),
                feed.window_size,
            )
            return Plan.full_rescan("change feed saturated")

        if unseen:
            return Plan.change_feed_delta(unseen, f"{len(unseen)} unseen feed ids")

        return Plan.idle("change feed changed, nothing unseen")

    def _decide_from_listing(self, progress: Progress, listing: Listing, backlog: list) -> Plan:
        if listing.signature != progress.last_discovery_signature:
            if not self._explained_by_growth(progress, listing):
                return Plan.full_rescan("listing changed beyond simple growth")
            if backlog:
                return self._backfill(progress, backlog, "listing grew")
            return Plan.idle("listing signature changed, backlog empty")

        if backlog:
            return self._backfill(progress, backlog, "backlog pending")

        return Plan.idle("listing unchanged")

    def _explained_by_growth(self, progress: Progress, listing: Listing) -> bool:
        return explained_by_growth(progress.discovered_ids, listing.ids, progress.backfill_cursor)

    def _backfill(self, progress: Progress, backlog: list, reason: str) -> Plan:
        return Plan.backfill(progress.backfill_cursor, min(self.batch_size, len(backlog)), reason)


def explained_by_growth(previous_ids: Iterable[int], listing_ids: Iterable[int], cursor: int) -> bool:
    """True when every previous id is still listed and every added id lies at or above the cursor."""
    previous = set(previous_ids)
    current = set(listing_ids)
    if not previous <= current:
        return False
    return all(i >= cursor for i in current - previous)
