from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from comic_sync.core.errors import ConcurrencyError
from comic_sync.core.models import Item, Progress, RunState
from comic_sync.state.base import RunRecord
from comic_sync.state.schema import decode_progress, encode_progress
from comic_sync.utils.time import utc_now_iso


class InMemoryProgressStore:
    """Process-local progress store. Blobs go through the same schema as SQLite."""

    def __init__(self):
        self._blobs: Dict[str, Dict[str, Any]] = {}
        self.puts = 0

    def get(self, source_key: str) -> Optional[Progress]:
        blob = self._blobs.get(source_key)
        if blob is None:
            return None
        return decode_progress(source_key, copy.deepcopy(blob))

    def put(self, source_key: str, progress: Progress, expected_version: Optional[int] = None) -> None:
        if expected_version is not None:
            current = self._blobs.get(source_key)
            current_version = int(current["version"]) if current else 0
            if current_version != expected_version:
                raise ConcurrencyError(
                    f"Progress for {source_key} changed concurrently (expected version {expected_version})"
                )
        self._blobs[source_key] = encode_progress(progress)
        self.puts += 1

    def put_raw(self, source_key: str, blob: Dict[str, Any]) -> None:
        """Store an arbitrary blob, e.g. a legacy one, bypassing encoding."""
        self._blobs[source_key] = copy.deepcopy(blob)


class InMemoryDedupIndex:
    """Dict-backed dedup index."""

    def __init__(self, items: Iterable[Item] = ()):
        self.items: Dict[int, Item] = {item.id: item for item in items}

    def contains_any(self, ids: Iterable[int]) -> Set[int]:
        return {int(i) for i in ids if int(i) in self.items}

    def contains_origins(self, urls: Iterable[str]) -> Set[str]:
        stored = {item.origin_url for item in self.items.values()}
        return {u for u in urls if u in stored}

    def insert_batch(self, items: List[Item]) -> None:
        for item in items:
            self.items[item.id] = item

    def insert_one(self, item: Item) -> None:
        self.items[item.id] = item


class InMemoryStepJournal:
    """Dict-backed step journal with the same run semantics as SQLiteStepJournal."""

    def __init__(self):
        self.runs: Dict[str, Dict[str, Any]] = {}
        self.steps: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._seq: Dict[str, int] = {}

    def open_run(self, source_key: str, max_attempts: int) -> RunRecord:
        now = utc_now_iso()
        seq = self._seq.get(source_key, 0)
        if seq:
            latest = self.runs[f"{source_key}:{seq}"]
            if latest["state"] not in (RunState.DONE, RunState.ABANDONED):
                if latest["attempts"] < max_attempts:
                    latest["attempts"] += 1
                    latest["updated_at_utc"] = now
                    return self._record(latest["run_id"], resumed=True)
                latest["state"] = RunState.ABANDONED

        seq += 1
        self._seq[source_key] = seq
        run_id = f"{source_key}:{seq}"
        self.runs[run_id] = {
            "run_id": run_id,
            "source_key": source_key,
            "state": RunState.PENDING,
            "attempts": 1,
            "failed_step": None,
            "error": None,
            "started_at_utc": now,
            "updated_at_utc": now,
        }
        return self._record(run_id, resumed=False)

    def load_run(self, run_id: str) -> Optional[RunRecord]:
        if run_id not in self.runs:
            return None
        return self._record(run_id, resumed=False)

    def load_step(self, run_id: str, step: str) -> Optional[Dict[str, Any]]:
        payload = self.steps.get((run_id, step))
        return copy.deepcopy(payload) if payload is not None else None

    def save_step(self, run_id: str, step: str, payload: Dict[str, Any]) -> None:
        self.steps.setdefault((run_id, step), copy.deepcopy(payload))

    def set_state(
        self,
        run_id: str,
        state: RunState,
        failed_step: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        run = self.runs[run_id]
        run.update(state=state, failed_step=failed_step, error=error, updated_at_utc=utc_now_iso())

    def _record(self, run_id: str, resumed: bool) -> RunRecord:
        run = self.runs[run_id]
        return RunRecord(
            run_id=run["run_id"],
            source_key=run["source_key"],
            state=run["state"],
            attempts=run["attempts"],
            started_at_utc=run["started_at_utc"],
            updated_at_utc=run["updated_at_utc"],
            failed_step=run["failed_step"],
            error=run["error"],
            resumed=resumed,
        )
