"""Semantic element lookup over FanFiction.net pages.

The export engine never hard-codes CSS selectors. It asks a
``ContentLocator`` for an element by key, either on the page the export
was started from or on a page fetched in the background. The locator is
constructed explicitly and handed to each component that needs it.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)


class Elements(str, Enum):
    STORY_TEXT = "story_text"
    STORY_TITLE = "story_title"
    STORY_AUTHOR = "story_author"
    STORY_SUMMARY = "story_summary"
    STORY_COVER = "story_cover"
    STORY_META_BLOCK = "story_meta_block"
    CHAPTER_DROPDOWN = "chapter_dropdown"
    DOC_CONTENT = "doc_content"
    DOC_TABLE = "doc_table"


# Candidates are tried in order; the first selector that matches wins.
SELECTORS: Dict[Elements, Tuple[str, ...]] = {
    Elements.STORY_TEXT: ("#storytext",),
    Elements.STORY_TITLE: ("#profile_top b.xcontrast_txt",),
    Elements.STORY_AUTHOR: ("#profile_top a.xcontrast_txt",),
    Elements.STORY_SUMMARY: ("#profile_top > div.xcontrast_txt",),
    Elements.STORY_COVER: ("#profile_top img.cimage",),
    Elements.STORY_META_BLOCK: ("#profile_top > span.xgray.xcontrast_txt",),
    Elements.CHAPTER_DROPDOWN: ("#chap_select",),
    Elements.DOC_CONTENT: ("textarea[name='bio']", "#story_text", "#content"),
    Elements.DOC_TABLE: ("#gui_table1",),
}

_DOC_ID_RE = re.compile(r"docid=(\d+)")


def parse_html(html_doc: str) -> BeautifulSoup:
    return BeautifulSoup(html_doc or "", "lxml")


class ContentLocator:
    """Look up page regions by semantic key.

    ``page`` is the document the export was triggered from. Every lookup
    accepts a ``doc`` override so the same table serves fetched pages.
    """

    def __init__(self, page: Optional[BeautifulSoup] = None,
                 selectors: Optional[Dict[Elements, Tuple[str, ...]]] = None) -> None:
        self.page = page
        self.selectors = selectors or SELECTORS

    def get(self, key: Elements, doc: Optional[BeautifulSoup] = None) -> Optional[Tag]:
        source = doc if doc is not None else self.page
        if source is None:
            return None
        for selector in self.selectors.get(key, ()):
            element = source.select_one(selector)
            if element is not None:
                return element
        logger.debug("Selector failed for key: %s", key.value)
        return None

    def text(self, key: Elements, doc: Optional[BeautifulSoup] = None, default: str = "") -> str:
        element = self.get(key, doc)
        if element is None:
            return default
        text = element.get_text(strip=True)
        return text or default

    def fragment(self, key: Elements, doc: Optional[BeautifulSoup] = None) -> Optional[str]:
        """Return the raw inner markup of a content region.

        Editor pages keep the document source inside a ``<textarea>``, so
        its text value is the HTML fragment; other regions return their
        inner HTML. ``None`` means the region is missing or empty.
        """
        element = self.get(key, doc)
        if element is None:
            return None
        if element.name == "textarea":
            raw = element.get_text()
        else:
            raw = element.decode_contents()
        return raw if raw.strip() else None

    def timestamps(self, doc: Optional[BeautifulSoup] = None) -> List[int]:
        """Epoch values of the ``data-xutime`` nodes in the metadata block, in order."""
        block = self.get(Elements.STORY_META_BLOCK, doc)
        if block is None:
            return []
        values: List[int] = []
        for node in block.select("[data-xutime]"):
            try:
                values.append(int(node["data-xutime"]))
            except (KeyError, ValueError):
                continue
        return values

    def chapter_options(self, doc: Optional[BeautifulSoup] = None) -> List[Tuple[str, str]]:
        """(value, label) pairs of the chapter dropdown; empty for one-shots."""
        select = self.get(Elements.CHAPTER_DROPDOWN, doc)
        if select is None:
            return []
        return [(opt.get("value", ""), opt.get_text(strip=True)) for opt in select.find_all("option")]

    def document_rows(self, doc: Optional[BeautifulSoup] = None) -> List[Tuple[str, str]]:
        """(doc_id, title) pairs listed in the document manager table."""
        table = self.get(Elements.DOC_TABLE, doc)
        if table is None:
            return []
        rows: List[Tuple[str, str]] = []
        for row in table.find_all("tr"):
            link = row.select_one("a[href*='docid=']")
            cells = row.find_all("td")
            if link is None or len(cells) < 2:
                continue
            match = _DOC_ID_RE.search(link["href"])
            if not match:
                continue
            rows.append((match.group(1), cells[1].get_text(strip=True)))
        return rows
