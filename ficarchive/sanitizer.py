"""Conversion of loose site HTML into strict markup or Markdown.

Chapter bodies on the site are ordinary HTML: ``<br>`` and ``<hr>`` are
never closed, attributes may be unquoted and entities like ``&nbsp;``
appear freely. Text pasted from word processors adds control characters
and prefixed tags such as ``<o:p>``. EPUB content documents are XML, so
every fragment is run through :func:`to_xhtml` before it is packaged.
Private documents are exported as Markdown instead, via
:func:`to_markdown`.
"""

from __future__ import annotations

import logging
import re
from typing import List

from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag
from markdownify import markdownify

logger = logging.getLogger(__name__)

# Everything outside the XML 1.0 ``Char`` production.
_INVALID_XML_CHARS = re.compile("[^\x09\x0a\x0d\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

# Unprefixed XML names; anything else cannot be serialized without a namespace.
_XML_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")

DROPPED_TAGS = ("script", "style")

_MARKUP_NODES = (Comment, Declaration, Doctype, ProcessingInstruction, CData)


def _parse_fragment(fragment: str) -> List:
    soup = BeautifulSoup(fragment or "", "lxml")
    # lxml wraps fragments in <html><body>; anything it hoisted into
    # <head> (stray <style>/<title>) is dropped on purpose.
    if soup.body is None:
        return []
    _clean(soup.body)
    return list(soup.body.contents)


def _clean(root: Tag) -> None:
    """Remove everything under ``root`` that has no well-formed XHTML form."""
    for node in list(root.descendants):
        if isinstance(node, _MARKUP_NODES):
            node.extract()
    for tag in root.find_all(DROPPED_TAGS):
        tag.decompose()
    for tag in root.find_all(True):
        if tag.prefix or not _XML_NAME.match(tag.name):
            tag.unwrap()
            continue
        tag.attrs = {
            name: value
            for name, value in tag.attrs.items()
            if _XML_NAME.match(name) and not name.startswith("xmlns")
        }


def to_xhtml(fragment: str) -> str:
    """Return ``fragment`` re-serialized as well-formed XHTML.

    Each top-level node is serialized on its own so the result is not
    wrapped in ``<html>``/``<body>``. Void elements come out self-closed
    (``<br/>``) and text is escaped for ``&``, ``<`` and ``>``. Comments,
    scripts and styles are dropped, prefixed tags are unwrapped and
    characters XML cannot carry are removed.
    """
    parts: List[str] = []
    for node in _parse_fragment(fragment):
        if isinstance(node, NavigableString):
            parts.append(node.output_ready(formatter="minimal"))
        else:
            parts.append(node.decode(formatter="minimal"))
    return _INVALID_XML_CHARS.sub("", "".join(parts))


def to_markdown(fragment: str) -> str:
    """Convert an HTML document body to Markdown (ATX headings, ``-`` bullets)."""
    if not fragment:
        return ""
    markdown = markdownify(fragment, heading_style="ATX", bullets="-")
    return markdown.strip() + "\n"
