"""Freshness check against the FicHub mirror.

FicHub caches stories and serves ready-made e-books. Its copy lags
behind the site, so before recommending it the service compares the
mirror's chapter count and update time with what the story page shows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from .locator import ContentLocator

logger = logging.getLogger(__name__)

FICHUB_META_URL = "https://fichub.net/api/v0/meta"

# Allowed clock skew between the site and the mirror.
STALENESS_MARGIN = timedelta(minutes=1)


class FicHubStatus(str, Enum):
    FRESH = "FRESH"
    STALE = "STALE"
    ERROR = "ERROR"


def local_chapter_count(locator: ContentLocator, doc: Optional[BeautifulSoup] = None) -> int:
    return len(locator.chapter_options(doc)) or 1


def local_updated(locator: ContentLocator, doc: Optional[BeautifulSoup] = None) -> datetime:
    """Update time shown on the page (publication time if never updated)."""
    stamps = locator.timestamps(doc)
    if not stamps:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromtimestamp(stamps[0], tz=timezone.utc)


def _parse_remote_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def check_freshness(
    client: httpx.AsyncClient,
    story_url: str,
    chapter_count: int,
    updated: datetime,
) -> FicHubStatus:
    """Compare FicHub's cached copy of ``story_url`` with the live page.

    A chapter count mismatch is always stale. With matching counts the
    mirror is stale only if the page was updated more than a minute after
    the mirror's copy. Any network or payload problem yields ``ERROR``.
    """
    try:
        response = await client.get(FICHUB_META_URL, params={"q": story_url})
        if not response.is_success:
            logger.info("FicHub meta request failed with HTTP %s", response.status_code)
            return FicHubStatus.ERROR
        data = response.json()
        if not data.get("updated") or not data.get("chapters"):
            return FicHubStatus.ERROR
        remote_updated = _parse_remote_date(data["updated"])
        remote_chapters = int(data["chapters"])
    except (httpx.HTTPError, ValueError, TypeError, AttributeError) as exc:
        logger.info("Freshness check failed: %s", exc)
        return FicHubStatus.ERROR

    logger.info(
        "Local: %d ch / %s | FicHub: %d ch / %s",
        chapter_count,
        updated.isoformat(),
        remote_chapters,
        remote_updated.isoformat(),
    )
    if chapter_count != remote_chapters:
        return FicHubStatus.STALE
    if updated > remote_updated + STALENESS_MARGIN:
        return FicHubStatus.STALE
    return FicHubStatus.FRESH
