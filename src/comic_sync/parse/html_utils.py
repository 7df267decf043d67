from __future__ import annotations

import re
from typing import Any, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def absolute_url(url: str, base_url: str) -> str:
    """Resolve relative and protocol-relative URLs against the site root."""
    if url.startswith("//"):
        return f"https:{url}"
    return urljoin(base_url.rstrip("/") + "/", url)


def attr(el: Any, name: str) -> str:
    """Attribute value as a plain string ('' when absent)."""
    if el is None:
        return ""
    raw = el.get(name)
    if isinstance(raw, list):
        return " ".join(raw)
    return str(raw) if raw is not None else ""


def text_of(el: Any) -> str:
    if el is None:
        return ""
    return el.get_text(" ", strip=True)


def ids_from_links(soup: BeautifulSoup, pattern: str) -> List[int]:
    """
    Collect the integer captured by ``pattern`` from every link href.
    The pattern must have exactly one group.
    """
    rx = re.compile(pattern)
    ids: List[int] = []
    for a in soup.find_all("a", href=True):
        m = rx.search(attr(a, "href"))
        if m:
            ids.append(int(m.group(1)))
    return ids


def first_int(pattern: str, text: str) -> Optional[int]:
    m = re.search(pattern, text)
    return int(m.group(1)) if m else None
