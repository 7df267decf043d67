from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional, Set

from comic_sync.core.errors import TransientFetchError
from comic_sync.core.models import Capabilities, ChangeFeed, Item, Listing, RequestSpec
from comic_sync.http.client import HttpClient
from comic_sync.utils.logging import get_logger

KnownLookup = Callable[[Iterable[int]], Set[int]]


class SourceAdapter(ABC):
    """
    Contract between one translation site and the crawl engine.

    Adapters translate markup into ids, listings and items. They never decide
    what to fetch next and never persist anything.
    """

    capabilities: Capabilities = Capabilities()
    base_url: str = ""

    def __init__(self, client: HttpClient):
        self.client = client
        self.log = get_logger(f"comic_sync.adapters.{self.key()}")

    @abstractmethod
    def key(self) -> str:
        """Return the adapter key, also used as the source key."""

    @abstractmethod
    def fetch_listing(self, known: Optional[KnownLookup] = None) -> Listing:
        """
        Ids currently available at the source. Raises ParseError or TransientFetchError.

        ``known`` answers which of the given ids are already ingested. Sources
        with a paginated index use it to stop walking once every id is accounted for.
        """

    @abstractmethod
    def fetch_item(self, item_id: int) -> Optional[Item]:
        """The item with exactly this id, or None when the source has no translation for it."""

    def fetch_change_feed(self) -> ChangeFeed:
        raise NotImplementedError(f"Source {self.key()} has no change feed")

    def fetch_item_or_nearest(self, item_id: int) -> Optional[Item]:
        raise NotImplementedError(f"Source {self.key()} does not redirect to the nearest id")

    def origin_url(self, item_id: int) -> Optional[str]:
        """Page URL of a listed id when it is known without fetching, else None."""
        return None

    def table(self) -> str:
        return f"comics_{self.key()}"

    def _get(self, url: str, allow_missing: bool = False) -> Optional[str]:
        """GET a page. None on 404 when allow_missing, TransientFetchError on other failures."""
        resp = self.client.send(RequestSpec(url=url))
        if resp.status_code == 404 and allow_missing:
            return None
        if not resp.ok:
            raise TransientFetchError(f"Failed to fetch {url}: HTTP {resp.status_code}")
        return resp.text
