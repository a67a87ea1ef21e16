"""Story identifiers, canonical URLs and output filenames."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

_STORY_ID_RE = re.compile(r"/s/(\d+)")
_CHAPTER_SEGMENT_RE = re.compile(r"/s/(\d+)/\d+")
_UNSAFE_FILENAME_RE = re.compile(r'[/\\?%*:|"<>]')


def parse_story_id(story: str) -> str:
    """Extract the numeric story id from a raw id or a story URL."""
    value = story.strip()
    if value.isdigit():
        return value
    match = _STORY_ID_RE.search(urlparse(value).path)
    if match:
        return match.group(1)
    raise ValueError(f"Could not find a story id in '{story}'")


def canonical_story_url(story: str, base_url: str = "https://www.fanfiction.net") -> str:
    """Return the chapter 1 URL for ``story``.

    URLs keep their slug; whichever chapter they pointed at is rewritten
    to chapter 1 so every export starts from the same page.
    """
    value = story.strip().split("?")[0]
    if value.isdigit():
        return f"{base_url.rstrip('/')}/s/{value}/1/"
    if "/s/" not in value:
        raise ValueError(f"Not a story URL: '{story}'")
    if _CHAPTER_SEGMENT_RE.search(value):
        return _CHAPTER_SEGMENT_RE.sub(r"/s/\1/1", value, count=1)
    return f"{base_url.rstrip('/')}/s/{parse_story_id(value)}/1/"


def chapter_path(story_id: str, chapter: int) -> str:
    return f"/s/{story_id}/{chapter}/"


def safe_filename(title: str, extension: Optional[str] = None) -> str:
    """Replace characters that are unsafe in filenames with ``-``."""
    name = _UNSAFE_FILENAME_RE.sub("-", title.strip()) or "Untitled"
    return f"{name}.{extension}" if extension else name


def archive_name(prefix: str = "ffn", now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d-%H-%M-%S")
    return f"{prefix}_{stamp}.zip"
