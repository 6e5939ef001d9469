"""Fetch web pages and reduce them to markdown plus page metadata."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict

import httpx
from bs4 import BeautifulSoup

from lifedigest.errors import UnsupportedFileError, VendorError
from lifedigest.utils.text import count_words

LOGGER = logging.getLogger(__name__)

VENDOR = "web"

USER_AGENT = "Mozilla/5.0 (compatible; LifeDigest/0.1)"
WORDS_PER_MINUTE = 200

_DROPPED_TAGS = [
    "script",
    "style",
    "noscript",
    "template",
    "svg",
    "iframe",
    "form",
    "nav",
    "header",
    "footer",
    "aside",
]
_HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_BLOCKS = [*_HEADINGS, "p", "li", "pre", "blockquote"]
_SPACES_RE = re.compile(r"\s+")


@dataclass(slots=True)
class CrawlResult:
    url: str
    final_url: str
    markdown: str
    domain: str
    title: str | None = None
    description: str | None = None
    author: str | None = None
    published_date: str | None = None
    image: str | None = None
    site_name: str | None = None

    @property
    def word_count(self) -> int:
        return count_words(self.markdown)

    @property
    def reading_time_minutes(self) -> int:
        return max(1, math.ceil(self.word_count / WORDS_PER_MINUTE))

    def metadata(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "published_date": self.published_date,
            "image": self.image,
            "site_name": self.site_name,
            "domain": self.domain,
            "word_count": self.word_count,
            "reading_time_minutes": self.reading_time_minutes,
        }


def _meta(soup: BeautifulSoup, *keys: str) -> str | None:
    """First non-empty meta value among ``keys``, matched on property or name."""
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag is not None and tag.get("content", "").strip():
            return tag["content"].strip()
    return None


def _squash(text: str) -> str:
    return _SPACES_RE.sub(" ", text).strip()


def html_to_markdown(soup: BeautifulSoup) -> str:
    """Render the main content of a page as markdown. Drops chrome from ``soup``."""
    for tag in soup(_DROPPED_TAGS):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup

    blocks = []
    for element in root.find_all(_BLOCKS):
        if element.find_parent(_BLOCKS) is not None:
            continue
        if element.name == "pre":
            code = element.get_text().strip("\n")
            if code.strip():
                blocks.append(f"```\n{code}\n```")
            continue
        text = _squash(element.get_text(" "))
        if not text:
            continue
        if element.name in _HEADINGS:
            blocks.append("#" * int(element.name[1]) + " " + text)
        elif element.name == "li":
            blocks.append(f"- {text}")
        elif element.name == "blockquote":
            blocks.append(f"> {text}")
        else:
            blocks.append(text)

    if not blocks:
        return _squash(root.get_text(" "))
    return "\n\n".join(blocks)


def parse_page(url: str, final_url: str, html: str) -> CrawlResult:
    soup = BeautifulSoup(html, "html.parser")
    domain = httpx.URL(final_url).host
    title = _meta(soup, "og:title", "twitter:title")
    if title is None and soup.title is not None and soup.title.string:
        title = soup.title.string.strip()
    result = CrawlResult(
        url=url,
        final_url=final_url,
        markdown="",
        domain=domain,
        title=title,
        description=_meta(soup, "og:description", "twitter:description", "description"),
        author=_meta(soup, "article:author", "author"),
        published_date=_meta(soup, "article:published_time"),
        image=_meta(soup, "og:image", "twitter:image"),
        site_name=_meta(soup, "og:site_name") or domain,
    )
    # Metadata first: rendering strips the header and nav out of the tree.
    result.markdown = html_to_markdown(soup)
    return result


class WebCrawler:
    """Fetches one HTML page per call, following redirects."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str = USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    async def crawl(self, url: str) -> CrawlResult:
        try:
            scheme = httpx.URL(url).scheme
        except httpx.InvalidURL as exc:
            raise VendorError(VENDOR, f"invalid URL {url!r}: {exc}") from exc
        if scheme not in ("http", "https"):
            raise VendorError(VENDOR, f"unsupported URL scheme in {url!r}")

        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(url)
            except httpx.HTTPError as exc:
                raise VendorError(VENDOR, f"{url}: {exc}") from exc

        if response.status_code >= 400:
            raise VendorError(VENDOR, f"{url}: {response.reason_phrase}", status_code=response.status_code)

        content_type = response.headers.get("content-type", "text/html")
        if "html" not in content_type.lower():
            raise UnsupportedFileError(f"Unsupported content type: {content_type}")

        LOGGER.debug("Fetched %s (%d bytes)", response.url, len(response.content))
        return parse_page(url, str(response.url), response.text)
