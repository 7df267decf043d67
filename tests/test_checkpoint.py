import unittest

from comic_sync.core.checkpoint import CheckpointRunner, StepFailed
from comic_sync.core.models import RunState
from comic_sync.state.memory_store import InMemoryStepJournal


class TestCheckpointRunner(unittest.TestCase):
    def setUp(self):
        self.journal = InMemoryStepJournal()
        self.run = self.journal.open_run("ru", max_attempts=3)
        self.calls = 0

    def work(self):
        self.calls += 1
        return {"value": self.calls}

    def test_step_result_is_memoized(self):
        runner = CheckpointRunner(self.journal, self.run)
        self.assertEqual(runner.step("discover", self.work), {"value": 1})

        again = CheckpointRunner(self.journal, self.journal.open_run("ru", max_attempts=3))
        self.assertEqual(again.step("discover", self.work), {"value": 1})
        self.assertEqual(self.calls, 1)
        self.assertEqual(again.replayed, ["discover"])

    def test_failed_step_is_not_memoized(self):
        runner = CheckpointRunner(self.journal, self.run)

        def boom():
            raise RuntimeError("boom")

        with self.assertRaises(StepFailed) as ctx:
            runner.step("plan", boom)

        self.assertEqual(ctx.exception.step, "plan")
        self.assertIsInstance(ctx.exception.cause, RuntimeError)
        self.assertIsNone(self.journal.load_step(self.run.run_id, "plan"))
        self.assertEqual(self.journal.runs[self.run.run_id]["state"], RunState.FAILED)
        self.assertEqual(self.journal.runs[self.run.run_id]["failed_step"], "plan")

        self.assertEqual(runner.step("plan", self.work), {"value": 1})

    def test_states_follow_steps(self):
        runner = CheckpointRunner(self.journal, self.run)
        seen = []

        def record():
            seen.append(self.journal.runs[self.run.run_id]["state"])
            return {}

        for name in ("discover", "plan", "execute", "commit"):
            runner.step(name, record)
        runner.finish()

        self.assertEqual(seen, [RunState.DISCOVERING, RunState.PLANNING, RunState.EXECUTING, RunState.COMMITTING])
        self.assertEqual(self.journal.runs[self.run.run_id]["state"], RunState.DONE)

    def test_unknown_step(self):
        with self.assertRaises(ValueError):
            CheckpointRunner(self.journal, self.run).step("publish", self.work)


if __name__ == "__main__":
    unittest.main()
