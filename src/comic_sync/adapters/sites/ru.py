from __future__ import annotations

from typing import Optional

from comic_sync.adapters.base import SourceAdapter
from comic_sync.core.errors import ParseError
from comic_sync.core.models import Capabilities, Item, Listing
from comic_sync.parse.html_utils import absolute_url, attr, make_soup, text_of


class RuAdapter(SourceAdapter):
    """Russian translations at xkcd.ru. ``/num/`` lists every translated id."""

    capabilities = Capabilities(has_single_listing=True)
    base_url = "https://xkcd.ru"

    def key(self) -> str:
        return "ru"

    def fetch_listing(self, known=None) -> Listing:
        soup = make_soup(self._get(f"{self.base_url}/num/"))
        ids = []
        for a in soup.select("li.real > a[href]"):
            href = attr(a, "href").strip("/")
            if href.isdigit():
                ids.append(int(href))
        if not ids:
            raise ParseError("Failed to parse any comic ids from xkcd.ru/num/ - HTML structure may have changed")
        return Listing.counted(ids)

    def fetch_item(self, item_id: int) -> Optional[Item]:
        url = f"{self.base_url}/{item_id}/"
        html = self._get(url, allow_missing=True)
        if html is None:
            return None

        soup = make_soup(html)
        title = text_of(soup.find("h1"))
        if not title:
            raise ParseError(f"Failed to parse title for comic {item_id}")

        img = soup.find("img", src=True, alt=True)
        if img is None:
            raise ParseError(f"Failed to parse image for comic {item_id}")

        return Item(
            id=item_id,
            title=title,
            image_ref=absolute_url(attr(img, "src"), self.base_url),
            alt_text=text_of(soup.find("div", class_="comics_text")),
            origin_url=url,
        )
