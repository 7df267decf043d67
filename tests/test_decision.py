import unittest

from comic_sync.core.decision import DecisionEngine, explained_by_growth
from comic_sync.core.models import Capabilities, ChangeFeed, Listing, PlanKind, Progress


LISTING_SOURCE = Capabilities(has_single_listing=True)
FEED_SOURCE = Capabilities(has_change_feed=True, has_single_listing=False)


def progress(**kwargs):
    return Progress(source_key="test", **kwargs)


class TestBackfillPriority(unittest.TestCase):
    def test_fresh_source_backfills_whole_small_listing(self):
        engine = DecisionEngine(LISTING_SOURCE, batch_size=10)
        plan = engine.decide(progress(), Listing.dense(3))

        self.assertEqual(plan.kind, PlanKind.BACKFILL)
        self.assertEqual(plan.start, 1)
        self.assertEqual(plan.target_count, 3)
        self.assertEqual(plan.describe(), "Backfill(1,3)")

    def test_batch_size_caps_target(self):
        engine = DecisionEngine(LISTING_SOURCE, batch_size=5)
        plan = engine.decide(progress(backfill_cursor=11), Listing.dense(100))

        self.assertEqual(plan.kind, PlanKind.BACKFILL)
        self.assertEqual(plan.start, 11)
        self.assertEqual(plan.target_count, 5)

    def test_incomplete_backfill_wins_over_change_feed(self):
        engine = DecisionEngine(FEED_SOURCE, batch_size=5)
        feed = ChangeFeed(ids=tuple(range(81, 101)), window_size=20)
        plan = engine.decide(progress(backfill_cursor=40), Listing.dense(100), feed, known_feed_ids=())

        self.assertEqual(plan.kind, PlanKind.BACKFILL)
        self.assertEqual(plan.start, 40)


class TestChangeFeedDecisions(unittest.TestCase):
    def setUp(self):
        self.engine = DecisionEngine(FEED_SOURCE, batch_size=10)
        self.listing = Listing.dense(100)

    def test_unchanged_feed_is_idle(self):
        feed = ChangeFeed(ids=(98, 99, 100), window_size=3)
        done = progress(backfill_cursor=101, backfill_complete=True, last_discovery_signature=feed.signature)

        plan = self.engine.decide(done, self.listing, feed, known_feed_ids=(98, 99, 100))
        self.assertEqual(plan.kind, PlanKind.IDLE)

    def test_saturated_feed_requests_full_rescan(self):
        feed = ChangeFeed(ids=tuple(range(81, 101)), window_size=20)
        done = progress(backfill_cursor=81, backfill_complete=True, last_discovery_signature="ids:old")

        plan = self.engine.decide(done, self.listing, feed, known_feed_ids=())
        self.assertEqual(plan.kind, PlanKind.FULL_RESCAN)

    def test_partial_unseen_feed_is_delta(self):
        feed = ChangeFeed(ids=tuple(range(81, 101)), window_size=20)
        done = progress(backfill_cursor=99, backfill_complete=True, last_discovery_signature="ids:old")

        plan = self.engine.decide(done, self.listing, feed, known_feed_ids=range(81, 99))
        self.assertEqual(plan.kind, PlanKind.CHANGE_FEED_DELTA)
        self.assertEqual(plan.ids, (99, 100))

    def test_changed_feed_with_everything_known_is_idle(self):
        feed = ChangeFeed(ids=(5, 6), window_size=2)
        done = progress(backfill_complete=True, backfill_cursor=7, last_discovery_signature="ids:old")

        plan = self.engine.decide(done, self.listing, feed, known_feed_ids=(5, 6))
        self.assertEqual(plan.kind, PlanKind.IDLE)

    def test_unbounded_feed_never_saturates(self):
        feed = ChangeFeed(ids=(1, 2, 3), window_size=0)
        done = progress(backfill_complete=True, backfill_cursor=4, last_discovery_signature="ids:old")

        plan = self.engine.decide(done, self.listing, feed, known_feed_ids=())
        self.assertEqual(plan.kind, PlanKind.CHANGE_FEED_DELTA)
        self.assertEqual(plan.ids, (1, 2, 3))


class TestListingDecisions(unittest.TestCase):
    def setUp(self):
        self.engine = DecisionEngine(LISTING_SOURCE, batch_size=10)

    def test_unchanged_listing_with_empty_backlog_is_idle(self):
        listing = Listing.counted([1, 2, 5])
        done = progress(
            discovered_ids=(1, 2, 5),
            backfill_cursor=6,
            backfill_complete=True,
            last_discovery_signature=listing.signature,
        )

        plan = self.engine.decide(done, listing)
        self.assertEqual(plan.kind, PlanKind.IDLE)

    def test_growth_above_cursor_backfills(self):
        listing = Listing.counted([1, 2, 5, 8, 9])
        done = progress(
            discovered_ids=(1, 2, 5),
            backfill_cursor=6,
            backfill_complete=True,
            last_discovery_signature="count:3",
        )

        plan = self.engine.decide(done, listing)
        self.assertEqual(plan.kind, PlanKind.BACKFILL)
        self.assertEqual(plan.start, 6)
        self.assertEqual(plan.target_count, 2)

    def test_insertion_below_cursor_requests_rescan(self):
        listing = Listing.counted([1, 2, 3, 5])
        done = progress(
            discovered_ids=(1, 2, 5),
            backfill_cursor=6,
            backfill_complete=True,
            last_discovery_signature="count:3",
        )

        plan = self.engine.decide(done, listing)
        self.assertEqual(plan.kind, PlanKind.FULL_RESCAN)

    def test_removed_id_requests_rescan(self):
        listing = Listing.counted([1, 5, 6])
        done = progress(
            discovered_ids=(1, 2, 5),
            backfill_cursor=6,
            backfill_complete=True,
            last_discovery_signature="count:3",
        )

        plan = self.engine.decide(done, listing)
        self.assertEqual(plan.kind, PlanKind.FULL_RESCAN)

    def test_decide_does_not_touch_progress(self):
        listing = Listing.counted([1, 2, 3])
        before = progress(discovered_ids=(1, 2), backfill_cursor=3, backfill_complete=True, last_discovery_signature="count:2")

        self.engine.decide(before, listing)
        self.assertEqual(before.backfill_cursor, 3)
        self.assertEqual(before.discovered_ids, (1, 2))


class TestExplainedByGrowth(unittest.TestCase):
    def test_first_discovery_is_growth(self):
        self.assertTrue(explained_by_growth((), (1, 2, 3), 1))

    def test_new_ids_must_sit_at_or_above_cursor(self):
        self.assertTrue(explained_by_growth((1, 2), (1, 2, 4), 3))
        self.assertFalse(explained_by_growth((1, 4), (1, 2, 4), 3))


if __name__ == "__main__":
    unittest.main()
