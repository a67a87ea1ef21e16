"""Exception types raised by the export engine.

Only whole-job failures are raised as exceptions. Failures of a single
chapter or document are absorbed by the scheduler and recorded on the
job instead, so callers normally only ever see the types below.
"""

from __future__ import annotations


class ExportError(RuntimeError):
    """Base class for every failure that aborts an export job."""


class SchedulerError(ExportError):
    """Raised when the fetch scheduler cannot begin a batch at all."""


class ExportCancelled(ExportError):
    """Raised when a job's cancellation token is set mid-run."""


class PackagingError(ExportError):
    """Raised when an EPUB or zip archive cannot be assembled."""


class JobAlreadyRunning(ExportError):
    """Raised when a second export is started against a busy target."""


class UnitNotFound(ExportError):
    """Raised when the expected content region is missing from a page."""
