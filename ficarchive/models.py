"""Data records shared by the export pipeline.

The records are plain dataclasses. ``ContentUnit`` and ``ExportJob`` are
mutated in place while a job runs; ``Package`` is built once at the end
and never changed afterwards.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class UnitStatus(str, Enum):
    PENDING = "pending"
    FETCHED = "fetched"
    FAILED = "failed"


class StoryStatus(str, Enum):
    COMPLETE = "Complete"
    IN_PROGRESS = "In Progress"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobKind(str, Enum):
    STORY = "story"
    DOCUMENT = "document"
    DOCUMENTS = "documents"


@dataclass
class ContentUnit:
    """One chapter of a story or one standalone document."""

    sequence_number: int
    label: str
    key: str = ""
    raw_content: Optional[str] = None
    status: UnitStatus = UnitStatus.PENDING

    def __post_init__(self) -> None:
        if self.sequence_number < 1:
            raise ValueError("sequence_number must be >= 1")
        if not self.key:
            self.key = str(self.sequence_number)


@dataclass
class StoryMetadata:
    id: str
    title: str
    author: str
    description: str = ""
    source_label: str = "FanFiction.net"
    canonical_url: str = ""
    author_url: Optional[str] = None
    cover_bytes: Optional[bytes] = None
    rating: Optional[str] = None
    language: Optional[str] = None
    genre: Optional[str] = None
    characters: Optional[str] = None
    words: Optional[str] = None
    reviews: Optional[str] = None
    favs: Optional[str] = None
    follows: Optional[str] = None
    updated: Optional[str] = None
    published: Optional[str] = None
    status: StoryStatus = StoryStatus.IN_PROGRESS

    def apply(self, parsed: Dict[str, Any]) -> None:
        """Copy the non-empty fields of a normalizer result onto this record."""
        for name, value in parsed.items():
            if value is not None and hasattr(self, name):
                setattr(self, name, value)


@dataclass
class StatusEvent:
    """A human readable progress message emitted while a job runs."""

    message: str
    key: Optional[str] = None
    attempt: int = 0
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Package:
    """The finished artifact handed to a save sink."""

    filename: str
    data: bytes
    media_type: str = "application/octet-stream"
    entry_count: int = 0


@dataclass
class ExportJob:
    """State of a single user-initiated export.

    A job is created when an export starts and stays registered after it
    finishes so its status and package remain available. ``units`` keeps
    the source ordering; ``deferred`` holds keys waiting for the second
    fetch pass.
    """

    kind: JobKind
    target: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.IDLE
    units: List[ContentUnit] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    success_count: int = 0
    permanent_failure_count: int = 0
    events: List[StatusEvent] = field(default_factory=list)
    error: Optional[str] = None
    package: Optional[Package] = None
    location: Optional[str] = None
    cancel_token: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def total_unit_count(self) -> int:
        return len(self.units)

    def record(self, event: StatusEvent) -> None:
        self.events.append(event)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "target": self.target,
            "status": self.state.value,
            "total": self.total_unit_count,
            "succeeded": self.success_count,
            "failed": self.permanent_failure_count,
            "error": self.error,
            "filename": self.package.filename if self.package else None,
        }
