"""Page fetching and content extraction.

This module fetches story chapters and private documents from the site
and cuts the content region out of each page. It uses ``httpx`` for HTTP
requests and ``BeautifulSoup`` (via ``ContentLocator``) for parsing.

The functions here make exactly one request per call. They return
``None`` when a page cannot be fetched and raise ``UnitNotFound`` when a
page loads but its content region is missing. Retrying is the job of
``ficarchive.scheduler``, which paces requests so the host does not
start throttling.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from .errors import UnitNotFound
from .locator import ContentLocator, Elements, parse_html
from .naming import chapter_path

logger = logging.getLogger(__name__)

# Pages larger than this are truncated listings or error dumps, not content.
MAX_PAGE_SIZE = 3_000_000


async def fetch_html(client: httpx.AsyncClient, url: str) -> Optional[str]:
    """Fetch the HTML content from ``url``; ``None`` on any failure."""
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("Request for %s failed: %s", url, exc)
        return None
    if response.status_code != 200:
        logger.warning("Network error for %s: HTTP %s", url, response.status_code)
        return None
    text = response.text
    if len(text) > MAX_PAGE_SIZE:
        logger.warning("Response for %s is %d characters; ignoring it", url, len(text))
        return None
    return text


async def fetch_page(client: httpx.AsyncClient, url: str) -> Optional[BeautifulSoup]:
    html_doc = await fetch_html(client, url)
    if not html_doc:
        return None
    return parse_html(html_doc)


async def fetch_chapter(
    client: httpx.AsyncClient,
    locator: ContentLocator,
    story_id: str,
    number: int,
) -> Optional[str]:
    """Fetch one chapter page and return the raw HTML of its story text."""
    doc = await fetch_page(client, chapter_path(story_id, number))
    if doc is None:
        return None
    fragment = locator.fragment(Elements.STORY_TEXT, doc)
    if fragment is None:
        raise UnitNotFound(f"Story text missing from chapter {number} of {story_id}")
    return fragment


async def fetch_document(client: httpx.AsyncClient, locator: ContentLocator, doc_id: str) -> Optional[str]:
    """Fetch a private document from the editor page and return its HTML source.

    The editor renders its content inside an iframe at runtime, but the
    served page keeps the document source in a ``<textarea>``, which is
    what the locator reads.
    """
    doc = await fetch_page(client, f"/docs/edit.php?docid={doc_id}")
    if doc is None:
        return None
    fragment = locator.fragment(Elements.DOC_CONTENT, doc)
    if fragment is None:
        raise UnitNotFound(f"Selectors failed for document {doc_id}")
    return fragment
