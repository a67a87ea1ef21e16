"""Flat zip archives for bulk document exports.

Every document considered by a bulk export gets exactly one entry: its
Markdown file, or an error marker when it could not be fetched. Entry
names are de-duplicated so two documents sharing a title never collapse
into one entry.
"""

from __future__ import annotations

import io
import logging
import zipfile
from datetime import datetime
from typing import Optional, Sequence, Set

from .errors import PackagingError
from .models import ContentUnit, Package, UnitStatus
from .naming import archive_name, safe_filename

logger = logging.getLogger(__name__)

ZIP_MEDIA_TYPE = "application/zip"


def error_marker(unit: ContentUnit) -> str:
    return (
        f"Document: {unit.label}\n"
        f"Document ID: {unit.key}\n"
        "Retrieval failed after repeated attempts. "
        "The document was not included in this archive.\n"
    )


def _unique_name(stem: str, extension: str, key: str, taken: Set[str]) -> str:
    name = f"{stem}.{extension}"
    if name in taken:
        name = f"{stem} ({key}).{extension}"
    counter = 2
    while name in taken:
        name = f"{stem} ({key}-{counter}).{extension}"
        counter += 1
    taken.add(name)
    return name


def build_archive(units: Sequence[ContentUnit], prefix: str = "ffn", now: Optional[datetime] = None) -> Package:
    """Zip every unit into a flat archive, one entry per unit."""
    if not units:
        raise PackagingError("Cannot build an archive without documents.")
    taken: Set[str] = set()
    stamp = (now or datetime.now()).timetuple()[:6]
    try:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as zf:
            for unit in units:
                stem = safe_filename(unit.label)
                if unit.status == UnitStatus.FETCHED and unit.raw_content is not None:
                    name = _unique_name(stem, "md", unit.key, taken)
                    content = unit.raw_content
                else:
                    name = _unique_name(stem, "error.txt", unit.key, taken)
                    content = error_marker(unit)
                zf.writestr(zipfile.ZipInfo(name, date_time=stamp), content.encode("utf-8"))
        data = buffer.getvalue()
    except Exception as exc:
        raise PackagingError(f"Archive generation failed: {exc}") from exc

    logger.info("Built archive with %d entries (%d bytes)", len(taken), len(data))
    return Package(
        filename=archive_name(prefix, now),
        data=data,
        media_type=ZIP_MEDIA_TYPE,
        entry_count=len(taken),
    )
