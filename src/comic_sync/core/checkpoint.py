from __future__ import annotations

from typing import Any, Callable, Dict, List

from comic_sync.core.models import RunState
from comic_sync.state.base import RunRecord, StepJournal
from comic_sync.utils.logging import get_logger

STEP_STATES: Dict[str, RunState] = {
    "discover": RunState.DISCOVERING,
    "plan": RunState.PLANNING,
    "execute": RunState.EXECUTING,
    "commit": RunState.COMMITTING,
}


class StepFailed(Exception):
    """A named step raised. The step is not memoized and will be retried on the next invocation."""

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"step '{step}' failed: {type(cause).__name__}: {cause}")
        self.step = step
        self.cause = cause


class CheckpointRunner:
    """
    Runs named steps of one logical run with durable memoization.

    The first successful payload of a step is written to the journal; asking for
    the same step again, in this process or a later one, returns that payload
    without calling the step function. Payloads must be JSON-serializable.
    """

    def __init__(self, journal: StepJournal, run: RunRecord):
        self.journal = journal
        self.run = run
        self.replayed: List[str] = []
        self.executed: List[str] = []
        self.log = get_logger("comic_sync.checkpoint")

    @property
    def run_id(self) -> str:
        return self.run.run_id

    def step(self, name: str, fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        if name not in STEP_STATES:
            raise ValueError(f"Unknown step '{name}'. Known steps: {', '.join(STEP_STATES)}")

        cached = self.journal.load_step(self.run_id, name)
        if cached is not None:
            self.log.info("Step replayed from checkpoint: run=%s step=%s", self.run_id, name)
            self.replayed.append(name)
            return cached

        self.journal.set_state(self.run_id, STEP_STATES[name])
        try:
            payload = fn()
        except Exception as exc:
            self.log.error("Step failed: run=%s step=%s error=%s", self.run_id, name, exc)
            self.journal.set_state(self.run_id, RunState.FAILED, failed_step=name, error=f"{type(exc).__name__}: {exc}")
            raise StepFailed(name, exc) from exc

        self.journal.save_step(self.run_id, name, payload)
        self.executed.append(name)
        # another invocation may have finished the same step first
        return self.journal.load_step(self.run_id, name) or payload

    def finish(self) -> None:
        self.journal.set_state(self.run_id, RunState.DONE)
