from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from comic_sync.core.models import Item, Progress, RunState


@dataclass(frozen=True)
class RunRecord:
    """A logical run of one source, as stored by the step journal."""

    run_id: str
    source_key: str
    state: RunState
    attempts: int
    started_at_utc: str
    updated_at_utc: str
    failed_step: Optional[str] = None
    error: Optional[str] = None
    resumed: bool = False


class ProgressStore(Protocol):
    """Whole-blob storage of one Progress record per source."""

    def get(self, source_key: str) -> Optional[Progress]: ...

    def put(self, source_key: str, progress: Progress, expected_version: Optional[int] = None) -> None: ...


class DedupIndex(Protocol):
    """Store of already-ingested items for one source."""

    def contains_any(self, ids: Iterable[int]) -> Set[int]: ...

    def contains_origins(self, urls: Iterable[str]) -> Set[str]: ...

    def insert_batch(self, items: List[Item]) -> None: ...

    def insert_one(self, item: Item) -> None: ...


class StepJournal(Protocol):
    """Durable memo of completed steps, keyed by run."""

    def open_run(self, source_key: str, max_attempts: int) -> RunRecord: ...

    def load_step(self, run_id: str, step: str) -> Optional[Dict[str, Any]]: ...

    def save_step(self, run_id: str, step: str, payload: Dict[str, Any]) -> None: ...

    def set_state(
        self,
        run_id: str,
        state: RunState,
        failed_step: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None: ...
