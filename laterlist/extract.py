"""Best-effort page metadata: images, description, publish date, summary, keywords.

Two extractors share the markup parsing. ``MarkupMetadataExtractor`` fetches a
URL and reads its ``<meta>`` tags and JSON-LD. ``RenderedPageExtractor`` works
from a snapshot of a live page, where image sizes and visibility are known, so
decorative images can be filtered out.

Nothing here raises to the caller: a failed fetch, probe or parse degrades to
empty metadata, because a link save must never fail on extraction.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from .errors import ExtractionFailure

logger = logging.getLogger(__name__)


FETCH_TIMEOUT = float(os.environ.get("LATERLIST_FETCH_TIMEOUT", "10"))
PROBE_TIMEOUT = float(os.environ.get("LATERLIST_PROBE_TIMEOUT", "3"))

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.114 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

MIN_IMAGE_SIDE = 128
MIN_ASPECT_RATIO = 0.3
MAX_ASPECT_RATIO = 3.5
DESCRIPTION_LIMIT = 300
SUMMARY_LIMIT = 500
SUMMARY_MIN_LENGTH = 50

_META_IMAGE_SELECTORS = (
    'meta[property="og:image"]',
    'meta[name="twitter:image"]',
    'meta[name="twitter:image:src"]',
)
_DATE_SELECTORS = (
    'meta[property="article:published_time"]',
    'meta[name="publish_date"]',
    'meta[name="date"]',
    'meta[property="og:published_time"]',
)
_DESCRIPTION_SELECTORS = (
    'meta[property="og:description"]',
    'meta[name="description"]',
    'meta[name="twitter:description"]',
)
_SUMMARY_SELECTORS = (
    "article",
    "main",
    '[role="main"]',
    ".article-content",
    ".post-content",
    ".entry-content",
)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class PageMetadata:
    image_urls: List[str] = field(default_factory=list)
    description: Optional[str] = None
    published_at: Optional[int] = None
    summary: Optional[str] = None
    keywords: List[str] = field(default_factory=list)

    def to_link_metadata(self) -> Dict[str, Any]:
        """Metadata in stored link field names, ready for ``operations.add_link``."""
        out: Dict[str, Any] = {}
        if self.image_urls:
            out["imageUrl"] = self.image_urls[0]
            out["imageUrls"] = list(self.image_urls)
        if self.published_at is not None:
            out["publishedAt"] = self.published_at
        if self.description:
            out["description"] = self.description
        if self.summary:
            out["summary"] = self.summary
        if self.keywords:
            out["keywords"] = list(self.keywords)
        return out


@dataclass
class RenderedImage:
    """An ``<img>`` as the browser laid it out."""
    src: str
    natural_width: int = 0
    natural_height: int = 0
    complete: bool = True
    visible: bool = True
    # Inside nav/header/footer/form.
    in_landmark: bool = False


@dataclass
class RenderedPage:
    url: str
    html: str
    images: List[RenderedImage] = field(default_factory=list)


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _is_svg(url: str) -> bool:
    lowered = url.strip().lower()
    return lowered.endswith(".svg") or lowered.startswith("data:image/svg")


def _usable_image_url(url: Optional[str]) -> bool:
    if not url or not url.strip():
        return False
    lowered = url.strip().lower()
    if lowered.startswith(("data:", "about:", "javascript:")):
        return False
    return not _is_svg(lowered)


def parse_date_ms(value: Any) -> Optional[int]:
    """ISO-8601 or RFC 2822 date string -> epoch milliseconds."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        when = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            when = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return int(when.timestamp() * 1000)


def _json_ld(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    for script in soup.select('script[type="application/ld+json"]'):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            return data
    return None


def _meta_content(soup: BeautifulSoup, selector: str) -> Optional[str]:
    el = soup.select_one(selector)
    content = el.get("content") if el else None
    if isinstance(content, str) and content.strip():
        return content.strip()
    return None


def _published_at(soup: BeautifulSoup, ld: Optional[Dict[str, Any]]) -> Optional[int]:
    if ld:
        stamp = parse_date_ms(ld.get("datePublished"))
        if stamp is not None:
            return stamp
    for selector in _DATE_SELECTORS:
        stamp = parse_date_ms(_meta_content(soup, selector))
        if stamp is not None:
            return stamp
    return None


def _description(soup: BeautifulSoup, ld: Optional[Dict[str, Any]]) -> Optional[str]:
    if ld and isinstance(ld.get("description"), str) and ld["description"].strip():
        return ld["description"].strip()
    for selector in _DESCRIPTION_SELECTORS:
        content = _meta_content(soup, selector)
        if content:
            return content
    paragraph = soup.select_one("article p, main p, p")
    if paragraph:
        text = paragraph.get_text(strip=True)
        if text:
            return _truncate(text, DESCRIPTION_LIMIT)
    return None


def _summary(soup: BeautifulSoup) -> Optional[str]:
    for selector in _SUMMARY_SELECTORS:
        el = soup.select_one(selector)
        if el is None:
            continue
        text = _WHITESPACE_RE.sub(" ", el.get_text(" ", strip=True)).strip()
        if len(text) > SUMMARY_MIN_LENGTH:
            return _truncate(text, SUMMARY_LIMIT)
    return None


def _keywords(soup: BeautifulSoup, ld: Optional[Dict[str, Any]]) -> List[str]:
    keywords: List[str] = []
    seen = set()

    def add(values: Iterable[Any]) -> None:
        for value in values:
            if not isinstance(value, str):
                continue
            cleaned = value.strip()
            if cleaned and cleaned not in seen:
                seen.add(cleaned)
                keywords.append(cleaned)

    if ld:
        raw = ld.get("keywords")
        if isinstance(raw, list):
            add(raw)
        elif isinstance(raw, str):
            add(raw.split(","))
    meta = _meta_content(soup, 'meta[name="keywords"]')
    if meta:
        add(meta.split(","))
    add(tag.get("content") for tag in soup.select('meta[property="article:tag"]'))
    return keywords


def meta_image_candidates(soup: BeautifulSoup, base_url: Optional[str] = None) -> List[str]:
    """og/twitter image URLs then the page icon, absolute and de-duplicated."""
    found: List[str] = []
    for selector in _META_IMAGE_SELECTORS:
        found.append(_meta_content(soup, selector))
    icon = soup.select_one('link[rel*="icon"]')
    if icon is not None:
        found.append(icon.get("href"))

    out: List[str] = []
    for url in found:
        if not url:
            continue
        try:
            url = urljoin(base_url, url.strip()) if base_url else url.strip()
        except ValueError as e:
            logger.debug("Skipping image candidate %r: %s", url, e)
            continue
        if _usable_image_url(url) and url not in out:
            out.append(url)
    return out


def parse_metadata(html: str, base_url: Optional[str] = None) -> Tuple[PageMetadata, List[str]]:
    """Text metadata from markup, plus meta image URLs still needing validation."""
    soup = BeautifulSoup(html or "", "html.parser")
    ld = _json_ld(soup)
    metadata = PageMetadata(
        description=_description(soup, ld),
        published_at=_published_at(soup, ld),
        summary=_summary(soup),
        keywords=_keywords(soup, ld),
    )
    return metadata, meta_image_candidates(soup, base_url)


def visible_enough(image: RenderedImage) -> bool:
    """Loaded, visible, outside landmarks, big enough and not a banner or sliver."""
    if not image.complete or image.natural_width <= 0 or image.natural_height <= 0:
        return False
    if not image.visible or image.in_landmark:
        return False
    if image.natural_width < MIN_IMAGE_SIDE or image.natural_height < MIN_IMAGE_SIDE:
        return False
    ratio = image.natural_width / image.natural_height
    return MIN_ASPECT_RATIO < ratio < MAX_ASPECT_RATIO


def filter_rendered_images(images: Iterable[RenderedImage]) -> List[str]:
    out: List[str] = []
    for image in images:
        if not visible_enough(image):
            continue
        src = (image.src or "").strip()
        if _usable_image_url(src) and src not in out:
            out.append(src)
    return out


async def probe_image(client: httpx.AsyncClient, url: str, timeout: float = PROBE_TIMEOUT) -> bool:
    """True if ``url`` serves an image; tries HEAD, falls back to GET."""
    try:
        response = await client.head(url, timeout=timeout)
        if response.status_code >= 400 or not response.headers.get("content-type", "").startswith("image/"):
            response = await client.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        logger.debug("Image probe failed for %s: %s", url, e)
        return False
    return response.status_code < 400 and response.headers.get("content-type", "").startswith("image/")


async def _validated(client: httpx.AsyncClient, urls: List[str], timeout: float) -> List[str]:
    results = await asyncio.gather(*(probe_image(client, url, timeout) for url in urls))
    return [url for url, ok in zip(urls, results) if ok]


class _Extractor:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, probe_timeout: float = PROBE_TIMEOUT):
        self.client = client
        self.probe_timeout = probe_timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(follow_redirects=True, headers=HEADERS)

    async def _run(self, work) -> PageMetadata:
        try:
            if self.client is not None:
                return await work(self.client)
            async with self._client() as client:
                return await work(client)
        except (httpx.HTTPError, ExtractionFailure, ValueError) as e:
            logger.warning("Metadata extraction failed: %s", e)
            return PageMetadata()


class MarkupMetadataExtractor(_Extractor):
    """Fetches a page's markup; no visual filtering is possible here."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        fetch_timeout: float = FETCH_TIMEOUT,
        probe_timeout: float = PROBE_TIMEOUT,
    ):
        super().__init__(client, probe_timeout)
        self.fetch_timeout = fetch_timeout

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> str:
        response = await client.get(url, timeout=self.fetch_timeout)
        if response.status_code >= 400:
            raise ExtractionFailure(f"{url} returned HTTP {response.status_code}")
        return response.text or ""

    async def extract(self, url: str) -> PageMetadata:
        async def work(client: httpx.AsyncClient) -> PageMetadata:
            html = await self._fetch(client, url)
            metadata, candidates = parse_metadata(html, url)
            metadata.image_urls = await _validated(client, candidates, self.probe_timeout)
            return metadata

        return await self._run(work)

    async def extract_many(self, urls: Iterable[str]) -> List[PageMetadata]:
        """Extract several pages concurrently; each failure is isolated."""
        return list(await asyncio.gather(*(self.extract(url) for url in urls)))


class RenderedPageExtractor(_Extractor):
    """Works from a live page snapshot, where layout facts are known."""

    async def extract(self, page: RenderedPage) -> PageMetadata:
        async def work(client: httpx.AsyncClient) -> PageMetadata:
            metadata, candidates = parse_metadata(page.html, page.url)
            in_page = filter_rendered_images(page.images)
            candidates = [url for url in candidates if url not in in_page]
            validated = await _validated(client, candidates, self.probe_timeout)
            # Meta images first; they are the page's chosen preview.
            metadata.image_urls = validated + in_page
            return metadata

        return await self._run(work)
