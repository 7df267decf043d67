from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from comic_sync.utils.hashing import fingerprint_ids


class PlanKind(str, Enum):
    """What a single run is going to do."""

    IDLE = "IDLE"
    BACKFILL = "BACKFILL"
    CHANGE_FEED_DELTA = "CHANGE_FEED_DELTA"
    FULL_RESCAN = "FULL_RESCAN"


class RunState(str, Enum):
    """Lifecycle of a logical run."""

    PENDING = "PENDING"
    DISCOVERING = "DISCOVERING"
    PLANNING = "PLANNING"
    EXECUTING = "EXECUTING"
    COMMITTING = "COMMITTING"
    DONE = "DONE"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"


@dataclass(frozen=True)
class RequestSpec:
    """Specification for an HTTP request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Capabilities:
    """What a source can do. Engine logic branches on this, never on the source type."""

    has_change_feed: bool = False
    has_nearest_redirect: bool = False
    has_single_listing: bool = True
    stable_ids: bool = True


@dataclass(frozen=True)
class Item:
    """One translated comic."""

    id: int
    title: str
    image_ref: str
    alt_text: str
    origin_url: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        return cls(
            id=int(data["id"]),
            title=str(data["title"]),
            image_ref=str(data["image_ref"]),
            alt_text=str(data.get("alt_text") or ""),
            origin_url=str(data.get("origin_url") or ""),
        )


def normalize_ids(ids: Iterable[int]) -> Tuple[int, ...]:
    """Sorted, unique, positive ids."""
    return tuple(sorted({int(i) for i in ids if int(i) > 0}))


@dataclass(frozen=True)
class Listing:
    """Ids a source currently exposes, plus an opaque signature of the listing."""

    ids: Tuple[int, ...]
    signature: str
    calls: int = 1

    @classmethod
    def dense(cls, max_id: int, calls: int = 1) -> "Listing":
        """Listing covering every id from 1 up to max_id."""
        return cls(ids=tuple(range(1, max_id + 1)), signature=f"max:{max_id}", calls=calls)

    @classmethod
    def counted(cls, ids: Iterable[int], calls: int = 1) -> "Listing":
        """Listing fingerprinted by its id count."""
        normalized = normalize_ids(ids)
        return cls(ids=normalized, signature=f"count:{len(normalized)}", calls=calls)

    @classmethod
    def not_fetched(cls) -> "Listing":
        """Stands in for a costly listing the run did not need."""
        return cls(ids=(), signature="", calls=0)

    @property
    def max_id(self) -> int:
        return self.ids[-1] if self.ids else 0

    def as_dict(self) -> Dict[str, Any]:
        return {"ids": list(self.ids), "signature": self.signature, "calls": self.calls}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Listing":
        return cls(ids=tuple(int(i) for i in data.get("ids", [])), signature=str(data["signature"]), calls=int(data.get("calls", 1)))


@dataclass(frozen=True)
class ChangeFeed:
    """A small window of recently published ids."""

    ids: Tuple[int, ...]
    window_size: int
    calls: int = 1

    @property
    def signature(self) -> str:
        return fingerprint_ids(self.ids)

    def as_dict(self) -> Dict[str, Any]:
        return {"ids": list(self.ids), "window_size": self.window_size, "calls": self.calls}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeFeed":
        return cls(
            ids=tuple(int(i) for i in data.get("ids", [])),
            window_size=int(data["window_size"]),
            calls=int(data.get("calls", 1)),
        )


@dataclass(frozen=True)
class Plan:
    """Exactly one unit of intent produced by the decision engine."""

    kind: PlanKind
    start: int = 0
    target_count: int = 0
    ids: Tuple[int, ...] = ()
    reason: str = ""

    @classmethod
    def idle(cls, reason: str = "") -> "Plan":
        return cls(kind=PlanKind.IDLE, reason=reason)

    @classmethod
    def backfill(cls, start: int, target_count: int, reason: str = "") -> "Plan":
        return cls(kind=PlanKind.BACKFILL, start=start, target_count=target_count, reason=reason)

    @classmethod
    def change_feed_delta(cls, ids: Iterable[int], reason: str = "") -> "Plan":
        return cls(kind=PlanKind.CHANGE_FEED_DELTA, ids=tuple(sorted(ids)), target_count=0, reason=reason)

    @classmethod
    def full_rescan(cls, reason: str = "") -> "Plan":
        return cls(kind=PlanKind.FULL_RESCAN, reason=reason)

    def describe(self) -> str:
        if self.kind == PlanKind.BACKFILL:
            return f"Backfill({self.start},{self.target_count})"
        if self.kind == PlanKind.CHANGE_FEED_DELTA:
            return f"ChangeFeedDelta({list(self.ids)})"
        if self.kind == PlanKind.FULL_RESCAN:
            return "FullRescan"
        return "Idle"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "start": self.start,
            "target_count": self.target_count,
            "ids": list(self.ids),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        return cls(
            kind=PlanKind(data["kind"]),
            start=int(data.get("start", 0)),
            target_count=int(data.get("target_count", 0)),
            ids=tuple(int(i) for i in data.get("ids", [])),
            reason=str(data.get("reason", "")),
        )


PROGRESS_SCHEMA_VERSION = 2


@dataclass(frozen=True)
class Progress:
    """Durable per-source crawl state. Superseded on every commit, never mutated in place."""

    source_key: str
    discovered_ids: Tuple[int, ...] = ()
    backfill_cursor: int = 1
    backfill_complete: bool = False
    last_discovery_signature: Optional[str] = None
    total_processed: int = 0
    last_run_time: Optional[str] = None
    last_run_id: Optional[str] = None
    last_plan: Optional[str] = None
    version: int = 0
    schema_version: int = PROGRESS_SCHEMA_VERSION

    @classmethod
    def initial(cls, source_key: str) -> "Progress":
        return cls(source_key=source_key)

    def backlog(self, listing_ids: Iterable[int]) -> List[int]:
        """Listed ids the cursor has not passed yet."""
        return [i for i in listing_ids if i >= self.backfill_cursor]


@dataclass(frozen=True)
class Discovery:
    """Everything the discover step learned. Memoized as a whole."""

    progress: Progress
    listing: Listing
    feed: Optional[ChangeFeed] = None
    known_feed_ids: Tuple[int, ...] = ()
    calls: int = 0


@dataclass
class BatchResult:
    """Summary of one executor pass."""

    processed: int = 0
    added: int = 0
    skipped: int = 0
    errors: int = 0
    error_ids: List[int] = field(default_factory=list)
    last_consumed_id: Optional[int] = None
    next_cursor: Optional[int] = None
    exhausted: bool = False
    drained: bool = True
    discarded: List[int] = field(default_factory=list)
    stop_reason: str = ""

    def record_error(self, item_id: int) -> None:
        self.errors += 1
        self.error_ids.append(item_id)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchResult":
        return cls(
            processed=int(data.get("processed", 0)),
            added=int(data.get("added", 0)),
            skipped=int(data.get("skipped", 0)),
            errors=int(data.get("errors", 0)),
            error_ids=[int(i) for i in data.get("error_ids", [])],
            last_consumed_id=data.get("last_consumed_id"),
            next_cursor=data.get("next_cursor"),
            exhausted=bool(data.get("exhausted", False)),
            drained=bool(data.get("drained", True)),
            discarded=[int(i) for i in data.get("discarded", [])],
            stop_reason=str(data.get("stop_reason", "")),
        )


@dataclass
class RunSummary:
    """Structured result of one invocation, returned even when a step failed."""

    run_id: str
    source: str
    status: RunState
    plan: Optional[str] = None
    processed: int = 0
    added: int = 0
    skipped: int = 0
    errors: int = 0
    error_ids: List[int] = field(default_factory=list)
    cursor_state: Dict[str, Any] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    resumed: bool = False

    @property
    def success(self) -> bool:
        return self.status == RunState.DONE and self.errors == 0

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["success"] = self.success
        return data
