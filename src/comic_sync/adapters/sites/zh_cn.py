from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Set, Tuple

from comic_sync.adapters.base import SourceAdapter
from comic_sync.core.errors import ParseError
from comic_sync.core.models import Capabilities, ChangeFeed, Item, Listing, normalize_ids
from comic_sync.http.policies import RateLimiter
from comic_sync.parse.html_utils import absolute_url, attr, ids_from_links, make_soup, text_of

_COMIC_LINK = r"/comic\?lg=cn&id=(\d+)"


@dataclass(frozen=True)
class _FirstPage:
    data_counts: int
    page_counts: int
    ids: Tuple[int, ...]


class ZhCnAdapter(SourceAdapter):
    """
    Simplified Chinese translations at xkcd.in.

    The index is paginated, newest first. Page 1 carries the total count in a
    hidden ``data_counts`` input and doubles as the change feed. Ids are not
    contiguous: the listing walks further index pages only until every
    translated id is accounted for, and falls back to 1..max id when that
    takes more than ``max_pages`` pages.
    """

    capabilities = Capabilities(has_change_feed=True, has_single_listing=False)
    base_url = "https://xkcd.in"

    def __init__(self, client, max_pages: int = 30, page_delay_ms: int = 1000):
        super().__init__(client)
        self.max_pages = max_pages
        self.limiter = RateLimiter(page_delay_ms)
        self._lock = threading.Lock()
        self._page: Optional[_FirstPage] = None

    def key(self) -> str:
        return "zh_cn"

    def fetch_listing(self, known=None) -> Listing:
        page, calls = self._first_page()
        max_id = max(page.ids)
        signature = f"count:{page.data_counts}"
        ingested = set(known(range(1, max_id + 1))) if known is not None else set()

        ids, scanned = self._scan_index(page, ingested)
        if ids is None:
            self.log.warning(
                "Index not accounted for within %s pages, listing every id up to %s",
                self.max_pages,
                max_id,
            )
            ids = tuple(range(1, max_id + 1))
        return Listing(ids=ids, signature=signature, calls=calls + scanned)

    def fetch_change_feed(self) -> ChangeFeed:
        page, calls = self._first_page()
        # a single page shows everything, so it can never be outrun
        window = len(page.ids) if page.page_counts > 1 else 0
        return ChangeFeed(ids=page.ids, window_size=window, calls=calls)

    def fetch_item(self, item_id: int) -> Optional[Item]:
        url = f"{self.base_url}/comic?lg=cn&id={item_id}"
        html = self._get(url, allow_missing=True)
        if html is None:
            return None

        soup = make_soup(html)
        img = soup.find("img", src=lambda s: bool(s) and "/resources/compiled_cn/" in s)
        if img is None:
            return None

        image_ref = attr(img, "src")
        link = img.find_parent("a")
        if link is not None and "/resources/compiled_cn/" in attr(link, "href"):
            image_ref = attr(link, "href")

        img_title = attr(img, "title")
        details = soup.find("div", class_="comic-details")
        alt_text = text_of(details) if details is not None else img_title

        return Item(
            id=item_id,
            title=img_title or f"Comic {item_id}",
            image_ref=absolute_url(image_ref, self.base_url),
            alt_text=alt_text,
            origin_url=url,
        )

    def _first_page(self) -> Tuple[_FirstPage, int]:
        """Page 1, fetched at most once per adapter instance. Returns (page, calls spent)."""
        with self._lock:
            if self._page is not None:
                return self._page, 0

            html = self._get(f"{self.base_url}/?lg=cn&page=1")
            soup = make_soup(html)
            data_counts = self._hidden_int(soup, "data_counts")
            page_counts = self._hidden_int(soup, "page_counts")
            ids = normalize_ids(ids_from_links(soup, _COMIC_LINK))
            if not ids:
                raise ParseError("Failed to parse any comic ids from xkcd.in page 1 - HTML structure may have changed")

            self._page = _FirstPage(data_counts=data_counts, page_counts=page_counts, ids=ids)
            return self._page, 1

    def _scan_index(self, page: _FirstPage, ingested: Set[int]) -> Tuple[Optional[Tuple[int, ...]], int]:
        """
        Walk index pages 2..N until every translated id is accounted for.

        ``data_counts`` minus what is already ingested says how many new ids to
        look for; the walk stops as soon as that many turned up. Returns
        (ids, pages fetched), with ids None when ``max_pages`` ran out first.
        """
        expected_new = page.data_counts - len(ingested)
        found = set(page.ids)
        new = len(found - ingested)
        scanned = 0

        for number in range(2, page.page_counts + 1):
            if new >= expected_new:
                break
            if scanned >= self.max_pages:
                return None, scanned

            self.limiter.sleep()
            html = self._get(f"{self.base_url}/?lg=cn&page={number}")
            scanned += 1
            for item_id in ids_from_links(make_soup(html), _COMIC_LINK):
                if item_id > 0 and item_id not in found:
                    found.add(item_id)
                    if item_id not in ingested:
                        new += 1

        self.log.info("Index walk: %s extra pages, %s of %s new ids found", scanned, max(new, 0), max(expected_new, 0))
        return normalize_ids(found | ingested), scanned

    def _hidden_int(self, soup, element_id: str) -> int:
        el = soup.find("input", id=element_id)
        value = attr(el, "value")
        if not value.isdigit():
            raise ParseError(f"Failed to parse {element_id} from xkcd.in - HTML structure may have changed")
        return int(value)
