"""Candidate listing URL discovery from sitemaps and inventory pages."""

from __future__ import annotations

import re
from html import unescape
from typing import Dict, List, Optional
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from .jsonld import extract_blocks, flatten, item_list_urls

LISTING_URL_RE = re.compile(r"(inventory|vehicle|used|new|car|listing|stock|detail|pre-owned)", re.IGNORECASE)
LOC_RE = re.compile(r"<loc>\s*([^<]+?)\s*</loc>", re.IGNORECASE)

SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:")


def looks_like_listing_url(url: str) -> bool:
    return bool(LISTING_URL_RE.search(url))


def origin(url: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def resolve(href: str, base_url: str) -> Optional[str]:
    href = (href or "").strip()
    if not href or href.startswith("#") or href.lower().startswith(SKIPPED_SCHEMES):
        return None
    try:
        resolved, _fragment = urldefrag(urljoin(base_url, href))
    except ValueError:
        return None
    return resolved if origin(resolved) else None


def parse_sitemap_urls(xml: str, base_origin: str) -> List[str]:
    """Same-origin ``<loc>`` entries of a sitemap, in document order."""
    urls: List[str] = []
    for match in LOC_RE.finditer(xml or ""):
        url = unescape(match.group(1)).strip()
        if url and origin(url) == base_origin:
            urls.append(url)
    return urls


def _document_base(soup: BeautifulSoup, page_url: str) -> str:
    base = soup.find("base", href=True)
    if base is None:
        return page_url
    try:
        return urljoin(page_url, base["href"].strip())
    except ValueError:
        return page_url


def extract_listing_urls(html: str, page_url: str) -> List[str]:
    """Same-origin links on an inventory page.

    ``ItemList`` entries come first, then anchors. Keyword-looking URLs are
    preferred; when none match, every same-origin link is returned.
    """
    page_origin = origin(page_url)
    if not html or page_origin is None:
        return []

    soup = BeautifulSoup(html, "html.parser")
    base_url = _document_base(soup, page_url)
    page_self, _fragment = urldefrag(page_url)

    hrefs = item_list_urls(flatten(extract_blocks(html)))
    hrefs.extend(anchor["href"] for anchor in soup.find_all("a", href=True))

    urls: Dict[str, None] = {}
    keyword_urls: Dict[str, None] = {}
    for href in hrefs:
        resolved = resolve(href, base_url)
        if resolved is None or resolved == page_self or origin(resolved) != page_origin:
            continue
        urls.setdefault(resolved, None)
        if looks_like_listing_url(resolved):
            keyword_urls.setdefault(resolved, None)

    return list(keyword_urls or urls)


__all__ = [
    "LISTING_URL_RE",
    "looks_like_listing_url",
    "origin",
    "resolve",
    "parse_sitemap_urls",
    "extract_listing_urls",
]
