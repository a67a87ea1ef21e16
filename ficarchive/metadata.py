"""Story metadata normalization and cover art retrieval.

The story header carries a single line of statistics such as::

    Rated: Fiction T - English - Romance/Drama - [Harry P., Hermione G.] -
    Chapters: 12 - Words: 50,113 - Reviews: 240 - Favs: 1,002 -
    Follows: 1,307 - Updated: 5h - Published: Jan 3, 2019 - Complete

``parse_metadata_line`` turns that line into a dict of ``StoryMetadata``
fields. Classification is driven by ``SEGMENT_RULES``, an ordered table
evaluated for every segment: the lowest priority rule whose predicate
matches claims the segment. Relative dates such as ``5h`` are replaced
by the epoch timestamps the page embeds in ``data-xutime`` attributes
(see ``apply_timestamps``).
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from .locator import ContentLocator, Elements
from .models import StoryMetadata, StoryStatus

logger = logging.getLogger(__name__)

SEGMENT_DELIMITER = " - "

KNOWN_LANGUAGES = frozenset({"English", "Spanish", "French", "German", "Chinese", "Japanese"})

_GENRE_WORD_RE = re.compile(r"^[A-Z][a-z]+$")

# Cover thumbnails are served from paths like /image/123/75/; the number is
# the edge length. Ordered smallest to largest.
RESOLUTION_TOKENS = ("/75/", "/150/", "/180/")
_RESOLUTION_RE = re.compile("|".join(re.escape(token) for token in RESOLUTION_TOKENS))


class SegmentRule(NamedTuple):
    priority: int
    field: str
    predicate: Callable[[str], bool]
    value: Callable[[str], Any]
    # Keep the first value assigned instead of overwriting it.
    first_wins: bool = False


def _label_rule(priority: int, label: str, field: str) -> SegmentRule:
    return SegmentRule(
        priority,
        field,
        lambda segment: segment.startswith(label),
        lambda segment: segment[len(label):].strip(),
    )


SEGMENT_RULES: List[SegmentRule] = sorted(
    [
        _label_rule(10, "Rated:", "rating"),
        _label_rule(11, "Words:", "words"),
        _label_rule(12, "Reviews:", "reviews"),
        _label_rule(13, "Favs:", "favs"),
        _label_rule(14, "Follows:", "follows"),
        _label_rule(15, "Updated:", "updated"),
        _label_rule(16, "Published:", "published"),
        SegmentRule(20, "status", lambda s: s == "Complete", lambda s: StoryStatus.COMPLETE),
        SegmentRule(30, "characters", lambda s: s.startswith("["), lambda s: s),
        SegmentRule(40, "language", lambda s: s in KNOWN_LANGUAGES, lambda s: s),
        SegmentRule(
            50,
            "genre",
            lambda s: "/" in s or bool(_GENRE_WORD_RE.match(s)),
            lambda s: s,
            first_wins=True,
        ),
    ],
    key=lambda rule: rule.priority,
)


def classify_segment(segment: str, rules: Sequence[SegmentRule] = SEGMENT_RULES) -> Optional[SegmentRule]:
    """Return the rule that claims ``segment``, or ``None`` if it is ignored."""
    for rule in rules:
        if rule.predicate(segment):
            return rule
    return None


def parse_metadata_line(text: str, rules: Sequence[SegmentRule] = SEGMENT_RULES) -> Dict[str, Any]:
    """Split a ``segment - segment`` metadata line into StoryMetadata fields.

    ``status`` is always present and defaults to ``In Progress``.
    Segments no rule claims (``Chapters: 12``, ``id: 123``) are dropped.
    """
    meta: Dict[str, Any] = {"status": StoryStatus.IN_PROGRESS}
    if not text:
        return meta
    for segment in (part.strip() for part in text.split(SEGMENT_DELIMITER)):
        if not segment:
            continue
        rule = classify_segment(segment, rules)
        if rule is None:
            continue
        if rule.first_wins and meta.get(rule.field) is not None:
            continue
        meta[rule.field] = rule.value(segment)
    return meta


def format_epoch(value: int) -> str:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).strftime("%Y-%m-%d")


def apply_timestamps(meta: Dict[str, Any], timestamps: Sequence[int]) -> Dict[str, Any]:
    """Override text-derived dates with authoritative epoch values.

    With two or more values the first is the update date and the second
    the publication date; a story that was never updated carries a single
    value, which is its publication date.
    """
    if len(timestamps) >= 2:
        meta["updated"] = format_epoch(timestamps[0])
        meta["published"] = format_epoch(timestamps[1])
    elif len(timestamps) == 1:
        meta["published"] = format_epoch(timestamps[0])
    return meta


def normalize_metadata(text: str, timestamps: Sequence[int] = ()) -> Dict[str, Any]:
    return apply_timestamps(parse_metadata_line(text), timestamps)


def cover_candidates(base_url: str) -> List[str]:
    """Larger-resolution variants of ``base_url``, largest first.

    The original URL is not included; callers fall back to it once every
    candidate has failed.
    """
    match = _RESOLUTION_RE.search(base_url)
    if not match:
        return []
    current = RESOLUTION_TOKENS.index(match.group(0))
    larger = RESOLUTION_TOKENS[current + 1:]
    return [_RESOLUTION_RE.sub(token, base_url, count=1) for token in reversed(larger)]


async def probe_cover(client: httpx.AsyncClient, base_url: str) -> Optional[bytes]:
    """Fetch the best available cover image for ``base_url``.

    Each candidate resolution is tried in order and the first successful
    response wins. Failures are logged and skipped. If every candidate
    fails the original URL is fetched; ``None`` means no image at all.
    """
    for url in cover_candidates(base_url) + [base_url]:
        try:
            response = await client.get(url)
        except httpx.HTTPError as exc:
            logger.info("Cover probe failed for %s: %s", url, exc)
            continue
        if response.is_success and response.content:
            logger.info("Fetched cover art from %s", url)
            return response.content
        logger.info("Cover probe for %s returned HTTP %s", url, response.status_code)
    return None


def read_story_metadata(
    locator: ContentLocator,
    story_id: str,
    canonical_url: str,
    doc: Optional[BeautifulSoup] = None,
) -> StoryMetadata:
    """Build a StoryMetadata record from a story page header (without cover)."""
    author_el = locator.get(Elements.STORY_AUTHOR, doc)
    author_url = None
    if author_el is not None and author_el.get("href"):
        author_url = urljoin(canonical_url, author_el["href"])

    meta = StoryMetadata(
        id=story_id,
        title=locator.text(Elements.STORY_TITLE, doc, default="Unknown Title"),
        author=locator.text(Elements.STORY_AUTHOR, doc, default="Unknown Author"),
        author_url=author_url,
        description=locator.text(Elements.STORY_SUMMARY, doc),
        canonical_url=canonical_url,
    )
    block = locator.get(Elements.STORY_META_BLOCK, doc)
    line = block.get_text(" ", strip=True) if block is not None else ""
    meta.apply(normalize_metadata(line, locator.timestamps(doc)))
    return meta


def cover_url(locator: ContentLocator, page_url: str, doc: Optional[BeautifulSoup] = None) -> Optional[str]:
    img = locator.get(Elements.STORY_COVER, doc)
    if img is None or not img.get("src"):
        return None
    return urljoin(page_url, img["src"])
