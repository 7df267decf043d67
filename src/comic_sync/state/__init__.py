from comic_sync.state.base import DedupIndex, ProgressStore, RunRecord, StepJournal
from comic_sync.state.memory_store import InMemoryDedupIndex, InMemoryProgressStore, InMemoryStepJournal
from comic_sync.state.sqlite_store import SQLiteDedupIndex, SQLiteProgressStore, SQLiteStepJournal

__all__ = [
    "DedupIndex",
    "InMemoryDedupIndex",
    "InMemoryProgressStore",
    "InMemoryStepJournal",
    "ProgressStore",
    "RunRecord",
    "SQLiteDedupIndex",
    "SQLiteProgressStore",
    "SQLiteStepJournal",
    "StepJournal",
]
