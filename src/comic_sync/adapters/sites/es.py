from __future__ import annotations

import threading
from typing import Dict, List, Optional

from comic_sync.adapters.base import SourceAdapter
from comic_sync.core.errors import ParseError
from comic_sync.core.models import Capabilities, Item, Listing
from comic_sync.parse.html_utils import absolute_url, attr, first_int, make_soup

# archive pages whose "original" link points at the wrong comic
WRONG_ID_URLS: Dict[str, int] = {
    "https://es.xkcd.com/strips/geografia/": 1472,
    "https://es.xkcd.com/strips/subjetividad/": 255,
    "https://es.xkcd.com/strips/that-lovin-feelin/": 317,
    "https://es.xkcd.com/strips/pensamientos/": 275,
}


class EsAdapter(SourceAdapter):
    """
    Spanish translations at es.xkcd.com.

    Strips are addressed by slug, not by comic id, and the comic id is only
    known after fetching the strip page. Listing ids are therefore archive
    positions counted from the oldest entry (the bottom of the archive page),
    so new strips append at the end. The comic id is read from each page, and
    already-ingested strips are recognised by their URL instead.
    """

    capabilities = Capabilities(has_single_listing=True, stable_ids=False)
    base_url = "https://es.xkcd.com"

    def __init__(self, client):
        super().__init__(client)
        self._lock = threading.Lock()
        self._archive: Optional[List[str]] = None

    def key(self) -> str:
        return "es"

    def fetch_listing(self, known=None) -> Listing:
        urls = self._archive_urls()
        return Listing.counted(range(1, len(urls) + 1))

    def origin_url(self, item_id: int) -> Optional[str]:
        urls = self._archive_urls()
        if item_id < 1 or item_id > len(urls):
            return None
        return urls[item_id - 1]

    def fetch_item(self, item_id: int) -> Optional[Item]:
        url = self.origin_url(item_id)
        if url is None:
            return None

        html = self._get(url, allow_missing=True)
        if html is None:
            return None

        comic_id = first_int(r"xkcd\.com/(\d+)/", html)
        if comic_id is None:
            self.log.warning("Could not extract xkcd id from %s", url)
            return None

        soup = make_soup(html)
        img = soup.find("img", class_="strip")
        if img is None or not attr(img, "src") or not attr(img, "alt"):
            raise ParseError(f"Failed to parse image from {url}")

        return Item(
            id=WRONG_ID_URLS.get(url, comic_id),
            title=attr(img, "alt"),
            image_ref=absolute_url(attr(img, "src"), self.base_url),
            alt_text=attr(img, "title"),
            origin_url=url,
        )

    def _archive_urls(self) -> List[str]:
        """Strip URLs, oldest first. Fetched once per adapter instance."""
        with self._lock:
            if self._archive is None:
                soup = make_soup(self._get(f"{self.base_url}/archive/"))
                urls = [absolute_url(attr(a, "href"), self.base_url) for a in soup.select("div.archive-entry a[href]")]
                if not urls:
                    raise ParseError("Failed to parse any entries from the Spanish archive - HTML structure may have changed")
                self.log.info("Found %s comics in archive", len(urls))
                # the archive is newest first
                self._archive = list(reversed(urls))
            return self._archive
