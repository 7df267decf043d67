from __future__ import annotations

from typing import Optional

from comic_sync.adapters.base import SourceAdapter
from comic_sync.core.errors import ParseError
from comic_sync.core.models import Capabilities, Item, Listing
from comic_sync.parse.html_utils import absolute_url, attr, ids_from_links, make_soup, text_of


class FrAdapter(SourceAdapter):
    """
    French translations at xkcd.lapin.org.

    The site stopped at a fixed range; ``tous-episodes.php`` links every
    episode, and the highest link bounds a dense id range.
    """

    capabilities = Capabilities(has_single_listing=True)
    base_url = "https://xkcd.lapin.org"

    def key(self) -> str:
        return "fr"

    def fetch_listing(self, known=None) -> Listing:
        soup = make_soup(self._get(f"{self.base_url}/tous-episodes.php"))
        ids = ids_from_links(soup, r"index\.php\?number=(\d+)")
        if not ids:
            raise ParseError("Failed to parse any comic ids from tous-episodes.php - HTML structure may have changed")
        return Listing.dense(max(ids))

    def fetch_item(self, item_id: int) -> Optional[Item]:
        url = f"{self.base_url}/index.php?number={item_id}"
        html = self._get(url, allow_missing=True)
        if html is None:
            return None

        soup = make_soup(html)
        title = text_of(soup.find("h1"))
        if not title:
            raise ParseError(f"Failed to parse title for comic {item_id}")

        img = soup.find("img", src=True)
        if img is None:
            raise ParseError(f"Failed to parse image for comic {item_id}")

        return Item(
            id=item_id,
            title=title,
            image_ref=absolute_url(attr(img, "src"), self.base_url),
            alt_text=attr(img, "title") or attr(img, "alt"),
            origin_url=url,
        )
