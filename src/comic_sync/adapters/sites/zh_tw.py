from __future__ import annotations

import re
from typing import Optional

from comic_sync.adapters.base import SourceAdapter
from comic_sync.core.errors import ParseError
from comic_sync.core.models import Capabilities, Item, Listing
from comic_sync.parse.html_utils import absolute_url, attr, ids_from_links, make_soup, text_of


class ZhTwAdapter(SourceAdapter):
    """Traditional Chinese translations at xkcd.tw. The homepage links every translated comic."""

    capabilities = Capabilities(has_single_listing=True)
    base_url = "https://xkcd.tw"

    def key(self) -> str:
        return "zh_tw"

    def fetch_listing(self, known=None) -> Listing:
        soup = make_soup(self._get(f"{self.base_url}/"))
        ids = ids_from_links(soup, r"^/(\d+)$")
        if not ids:
            raise ParseError("Failed to parse any comic ids from xkcd.tw homepage - HTML structure may have changed")
        return Listing.counted(ids)

    def fetch_item(self, item_id: int) -> Optional[Item]:
        url = f"{self.base_url}/{item_id}"
        html = self._get(url, allow_missing=True)
        if html is None:
            return None

        soup = make_soup(html)
        # <h1>[123] Title</h1>
        m = re.match(r"^\[\d+\]\s*(.+)$", text_of(soup.find("h1")))
        if not m:
            raise ParseError(f"Failed to parse title for comic {item_id}")

        img = soup.find("img", src=True, alt=True, title=True)
        if img is None:
            raise ParseError(f"Failed to parse image for comic {item_id}")

        return Item(
            id=item_id,
            title=m.group(1).strip(),
            image_ref=absolute_url(attr(img, "src"), self.base_url),
            alt_text=attr(img, "title") or attr(img, "alt"),
            origin_url=url,
        )
