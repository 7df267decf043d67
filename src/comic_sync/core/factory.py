from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from comic_sync.adapters import registry
from comic_sync.adapters.base import SourceAdapter
from comic_sync.config_models import SourceConfig, SyncConfig
from comic_sync.core.engine import CrawlEngine
from comic_sync.http.client import DEFAULT_USER_AGENT, RequestsHttpClient
from comic_sync.state.base import DedupIndex, ProgressStore, StepJournal
from comic_sync.state.memory_store import InMemoryDedupIndex, InMemoryProgressStore, InMemoryStepJournal
from comic_sync.state.sqlite_store import SQLiteDedupIndex, SQLiteProgressStore, SQLiteStepJournal


@dataclass(frozen=True)
class BuiltComponents:
    engine: CrawlEngine
    client: RequestsHttpClient
    adapter: SourceAdapter
    progress_store: ProgressStore
    dedup: DedupIndex
    journal: StepJournal


class ComponentFactory:
    """
    Factory responsible for wiring dependencies.
    Every build gets a fresh HTTP session and adapter; storage is shared per backend.
    """

    def __init__(self, config: SyncConfig):
        self.config = config
        # process-lifetime stores for backend "memory"
        self._memory_progress = InMemoryProgressStore()
        self._memory_journal = InMemoryStepJournal()
        self._memory_dedup: Dict[str, InMemoryDedupIndex] = {}

    def build(self, source: SourceConfig) -> BuiltComponents:
        client = self._http_client()
        adapter = registry.create(source.adapter_key, client)
        progress_store = self._progress_store()
        dedup = self._dedup(adapter)
        journal = self._journal()

        engine = CrawlEngine(
            adapter=adapter,
            progress_store=progress_store,
            dedup=dedup,
            journal=journal,
        )

        return BuiltComponents(
            engine=engine,
            client=client,
            adapter=adapter,
            progress_store=progress_store,
            dedup=dedup,
            journal=journal,
        )

    # ---------- Builders (private) ----------

    def _http_client(self) -> RequestsHttpClient:
        http = self.config.http
        return RequestsHttpClient(
            timeout_s=http.timeout_s,
            retry=http.retry.to_policy(),
            user_agent=http.user_agent or DEFAULT_USER_AGENT,
        )

    def _progress_store(self) -> ProgressStore:
        if self.config.storage.backend == "memory":
            return self._memory_progress
        return SQLiteProgressStore(self.config.storage.state_path)

    def _journal(self) -> StepJournal:
        if self.config.storage.backend == "memory":
            return self._memory_journal
        return SQLiteStepJournal(self.config.storage.state_path)

    def _dedup(self, adapter: SourceAdapter) -> DedupIndex:
        table = adapter.table()
        if self.config.storage.backend == "memory":
            return self._memory_dedup.setdefault(table, InMemoryDedupIndex())
        return SQLiteDedupIndex(self.config.storage.comics_path, table)
