"""Export jobs: wiring fetch, sanitize, normalize and package together.

Three job shapes are supported:

* ``story`` - every chapter of a story is fetched, sanitized to XHTML
  and bundled into an EPUB together with the story metadata and cover.
* ``document`` - a single private document is fetched and saved as
  Markdown.
* ``documents`` - many private documents are fetched and zipped into a
  flat archive, one entry per document.

Each export is tracked by an ``ExportJob`` that moves through
``idle -> running -> succeeded | failed``. A second export against a
target that already has a live job is rejected with
``JobAlreadyRunning``. Chapter and document failures never fail a job on
their own; they show up as placeholders in the output instead.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from .archive import build_archive
from .config import SchedulerConfig, Settings
from .epub import build_epub
from .errors import ExportCancelled, ExportError, JobAlreadyRunning
from .extractor import fetch_chapter, fetch_document, fetch_page
from .locator import ContentLocator, Elements
from .metadata import cover_url, probe_cover, read_story_metadata
from .models import ContentUnit, ExportJob, JobKind, JobState, Package, StatusEvent, UnitStatus
from .naming import canonical_story_url, parse_story_id, safe_filename
from .sanitizer import to_markdown, to_xhtml
from .scheduler import FetchScheduler, ScheduleResult, WorkItem
from .sink import SaveSink

logger = logging.getLogger(__name__)

DOC_MANAGER_PATH = "/docs/docs.php"
MARKDOWN_MEDIA_TYPE = "text/markdown; charset=utf-8"


class ExportOrchestrator:
    """Run export jobs against one site with injected collaborators."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        locator: ContentLocator,
        sink: SaveSink,
        settings: Optional[Settings] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.client = client
        self.locator = locator
        self.sink = sink
        self.settings = settings or Settings()
        self._sleep = sleep
        self._rng = rng
        self.jobs: Dict[str, ExportJob] = {}
        self._active: Dict[Tuple[JobKind, str], str] = {}

    # ------------------------------------------------------------------
    # Job lifecycle

    def create_job(self, kind: JobKind, target: str) -> ExportJob:
        """Register a new idle job, refusing a target that is already busy."""
        slot = self._slot(kind, target)
        busy_id = self._active.get(slot)
        if busy_id is not None:
            busy = self.jobs.get(busy_id)
            if busy is not None and busy.state in (JobState.IDLE, JobState.RUNNING):
                raise JobAlreadyRunning(f"An export of {target} is already in progress (job {busy_id})")
        job = ExportJob(kind=kind, target=target)
        self.jobs[job.id] = job
        self._active[slot] = job.id
        return job

    def get_job(self, job_id: str) -> Optional[ExportJob]:
        return self.jobs.get(job_id)

    @staticmethod
    def _slot(kind: JobKind, target: str) -> Tuple[JobKind, str]:
        # Story URLs and bare ids name the same story.
        if kind == JobKind.STORY:
            return kind, parse_story_id(target)
        return kind, target

    def cancel(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        if job is None or job.state not in (JobState.IDLE, JobState.RUNNING):
            return False
        job.cancel_token.set()
        job.record(StatusEvent("Cancellation requested"))
        return True

    async def run(self, job: ExportJob) -> ExportJob:
        """Execute ``job`` to completion; never raises for job failures.

        The job's final state and error describe the outcome. Nothing is
        handed to the sink unless a complete package was built.
        """
        if job.state != JobState.IDLE:
            raise ExportError(f"Job {job.id} has already been started")
        job.state = JobState.RUNNING
        runners = {
            JobKind.STORY: self._run_story,
            JobKind.DOCUMENT: self._run_document,
            JobKind.DOCUMENTS: self._run_documents,
        }
        try:
            package = await runners[job.kind](job)
            job.location = self.sink.save(package, job.id)
            job.package = package
            job.state = JobState.SUCCEEDED
            job.record(StatusEvent(f"Done: {package.filename}"))
            logger.info(
                "Job %s succeeded: %d fetched, %d failed",
                job.id,
                job.success_count,
                job.permanent_failure_count,
            )
        except ExportCancelled as exc:
            job.state = JobState.FAILED
            job.error = str(exc)
            logger.info("Job %s cancelled", job.id)
        except ExportError as exc:
            job.state = JobState.FAILED
            job.error = str(exc)
            logger.error("Job %s failed: %s", job.id, exc)
        except Exception as exc:
            job.state = JobState.FAILED
            job.error = f"Unexpected failure: {exc}"
            logger.exception("Job %s failed unexpectedly", job.id)
        finally:
            slot = self._slot(job.kind, job.target)
            if self._active.get(slot) == job.id:
                del self._active[slot]
        return job

    # ------------------------------------------------------------------
    # Convenience entry points

    async def export_story(self, story: str) -> ExportJob:
        return await self.run(self.create_job(JobKind.STORY, story))

    async def export_document(self, doc_id: str, title: Optional[str] = None) -> ExportJob:
        job = self.create_job(JobKind.DOCUMENT, doc_id)
        job.units = [ContentUnit(1, title or f"Document {doc_id}", key=doc_id)]
        return await self.run(job)

    async def export_documents(self, documents: Optional[Sequence[Tuple[str, str]]] = None) -> ExportJob:
        job = self.create_job(JobKind.DOCUMENTS, DOC_MANAGER_PATH)
        if documents:
            job.units = self.document_units(documents)
        return await self.run(job)

    @staticmethod
    def document_units(documents: Sequence[Tuple[str, str]]) -> List[ContentUnit]:
        """Build one unit per distinct doc id, keeping first-seen order."""
        units: List[ContentUnit] = []
        seen = set()
        for doc_id, title in documents:
            if doc_id in seen:
                logger.info("Skipping repeated document %s", doc_id)
                continue
            seen.add(doc_id)
            units.append(ContentUnit(len(units) + 1, title or f"Document {doc_id}", key=doc_id))
        return units

    # ------------------------------------------------------------------
    # Job bodies

    def _scheduler(self, config: SchedulerConfig) -> FetchScheduler:
        return FetchScheduler(config, sleep=self._sleep, rng=self._rng)

    async def _schedule(self, job: ExportJob, items: List[WorkItem], config: SchedulerConfig) -> ScheduleResult:
        result = await self._scheduler(config).run(items, job)
        if job.success_count + job.permanent_failure_count != job.total_unit_count:
            raise ExportError(
                f"Accounting mismatch: {job.success_count} fetched + "
                f"{job.permanent_failure_count} failed != {job.total_unit_count} units"
            )
        return result

    async def _run_story(self, job: ExportJob) -> Package:
        story_url = canonical_story_url(job.target, self.settings.base_url)
        story_id = parse_story_id(story_url)
        job.record(StatusEvent("Reading story page..."))
        doc = await fetch_page(self.client, story_url)
        if doc is None or self.locator.get(Elements.STORY_TITLE, doc) is None:
            raise ExportError(f"Could not load story page {story_url}")

        meta = read_story_metadata(self.locator, story_id, story_url, doc)
        options = self.locator.chapter_options(doc)
        if options:
            job.units = [ContentUnit(index, label, key=str(index)) for index, (_, label) in enumerate(options, start=1)]
        else:
            job.units = [ContentUnit(1, meta.title, key="1")]
        logger.info("Starting export of %r (%s): %d chapters", meta.title, story_id, job.total_unit_count)

        image_url = cover_url(self.locator, story_url, doc)
        if image_url:
            if job.cancel_token.is_set():
                raise ExportCancelled("Export cancelled")
            job.record(StatusEvent("Fetching cover art..."))
            meta.cover_bytes = await probe_cover(self.client, image_url)

        # The story page is chapter 1, so its text is taken from there.
        pending = job.units
        first = self.locator.fragment(Elements.STORY_TEXT, doc)
        if first and first.strip():
            opening = job.units[0]
            opening.raw_content = to_xhtml(first)
            opening.status = UnitStatus.FETCHED
            job.success_count += 1
            job.record(StatusEvent(f"Read 1/{job.total_unit_count}: {opening.label}", key=opening.key, attempt=1))
            pending = job.units[1:]

        if pending:
            items = [
                WorkItem(
                    key=unit.key,
                    label=unit.label,
                    fetch=functools.partial(fetch_chapter, self.client, self.locator, story_id, unit.sequence_number),
                )
                for unit in pending
            ]
            result = await self._schedule(job, items, self.settings.story_schedule)
            for unit in pending:
                content = result.outcomes.get(unit.key)
                if content is None:
                    unit.status = UnitStatus.FAILED
                else:
                    unit.raw_content = to_xhtml(content)
                    unit.status = UnitStatus.FETCHED

        if job.cancel_token.is_set():
            raise ExportCancelled("Export cancelled")
        job.record(StatusEvent("Bundling EPUB..."))
        return build_epub(meta, job.units)

    async def _run_document(self, job: ExportJob) -> Package:
        if not job.units:
            job.units = [ContentUnit(1, f"Document {job.target}", key=job.target)]
        unit = job.units[0]
        result = await self._schedule(job, self._document_items(job.units), self.settings.document_schedule)
        content = result.outcomes.get(unit.key)
        if content is None:
            unit.status = UnitStatus.FAILED
            raise ExportError(f"Failed to fetch document content for {unit.label!r}")
        unit.raw_content = to_markdown(content)
        unit.status = UnitStatus.FETCHED
        return Package(
            filename=safe_filename(unit.label, "md"),
            data=unit.raw_content.encode("utf-8"),
            media_type=MARKDOWN_MEDIA_TYPE,
            entry_count=1,
        )

    async def _run_documents(self, job: ExportJob) -> Package:
        if not job.units:
            job.record(StatusEvent("Reading document list..."))
            doc = await fetch_page(self.client, DOC_MANAGER_PATH)
            if doc is None:
                raise ExportError("Could not load the document manager page")
            job.units = self.document_units(self.locator.document_rows(doc))
        if not job.units:
            raise ExportError("No documents to export")

        result = await self._schedule(job, self._document_items(job.units), self.settings.document_schedule)
        for unit in job.units:
            content = result.outcomes.get(unit.key)
            if content is None:
                unit.status = UnitStatus.FAILED
            else:
                unit.raw_content = to_markdown(content)
                unit.status = UnitStatus.FETCHED

        job.record(StatusEvent("Zipping..."))
        package = build_archive(job.units)
        if package.entry_count != job.total_unit_count:
            raise ExportError(f"Archive has {package.entry_count} entries for {job.total_unit_count} documents")
        return package

    def _document_items(self, units: Sequence[ContentUnit]) -> List[WorkItem]:
        return [
            WorkItem(
                key=unit.key,
                label=unit.label,
                fetch=functools.partial(fetch_document, self.client, self.locator, unit.key),
            )
            for unit in units
        ]
