"""Main FastAPI application for the archival export service.

This module defines the HTTP API and the small web UI for the service.
Exports are long running, so every export endpoint registers a job and
hands it to FastAPI's ``BackgroundTasks``; clients poll ``/jobs/{id}``
for progress and fetch the finished package from ``/download/{id}``.

Configuration is read from the environment once, at import time (see
``ficarchive.config.Settings``). The HTTP client carries the configured
session cookie so private documents can be read.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple
from urllib.parse import quote

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from .config import Settings
from .errors import JobAlreadyRunning
from .extractor import fetch_page
from .fichub import check_freshness, local_chapter_count, local_updated
from .locator import ContentLocator
from .models import ExportJob, JobKind
from .naming import canonical_story_url
from .orchestrator import DOC_MANAGER_PATH, ExportOrchestrator
from .sink import DirectorySink

settings = Settings.from_env()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="FanFiction Archival Export Service")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

http_client = httpx.AsyncClient(
    base_url=settings.base_url,
    headers=settings.headers,
    timeout=settings.http_timeout,
    follow_redirects=True,
)
locator = ContentLocator()
orchestrator = ExportOrchestrator(http_client, locator, DirectorySink(settings.output_dir), settings)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await http_client.aclose()


async def _read_payload(request: Request) -> Dict[str, Any]:
    """Return the JSON body as a dict; an empty or missing body is ``{}``."""
    body = await request.body()
    if not body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body is not valid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def _start(kind: JobKind, target: str, background_tasks: BackgroundTasks) -> ExportJob:
    try:
        job = orchestrator.create_job(kind, target)
    except JobAlreadyRunning as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Queued %s export of %s as job %s", kind.value, target, job.id)
    background_tasks.add_task(orchestrator.run, job)
    return job


def _get_job(job_id: str) -> ExportJob:
    job = orchestrator.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.post("/export/story", status_code=202)
async def export_story_endpoint(request: Request, background_tasks: BackgroundTasks) -> Response:
    """Export a whole story as an EPUB.

    The payload must contain ``story``: a story URL or numeric story id.
    """
    data = await _read_payload(request)
    story = str(data.get("story") or "").strip()
    if not story:
        raise HTTPException(status_code=400, detail="Missing 'story' in request body")
    job = _start(JobKind.STORY, story, background_tasks)
    return JSONResponse({"job_id": job.id}, status_code=202)


@app.post("/export/document/{doc_id}", status_code=202)
async def export_document_endpoint(doc_id: str, request: Request, background_tasks: BackgroundTasks) -> Response:
    """Export one private document as Markdown."""
    data = await _read_payload(request)
    job = _start(JobKind.DOCUMENT, doc_id, background_tasks)
    title = data.get("title")
    job.units = orchestrator.document_units([(doc_id, title or "")])
    return JSONResponse({"job_id": job.id}, status_code=202)


@app.post("/export/documents", status_code=202)
async def export_documents_endpoint(request: Request, background_tasks: BackgroundTasks) -> Response:
    """Export many private documents into one zip archive.

    ``documents`` is an optional list of ``{"id", "title"}`` objects. When
    it is missing the list is read from the document manager page.
    """
    data = await _read_payload(request)
    documents: List[Tuple[str, str]] = []
    for entry in data.get("documents") or []:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise HTTPException(status_code=400, detail="Each document needs an 'id'")
        documents.append((str(entry["id"]), str(entry.get("title") or "")))
    job = _start(JobKind.DOCUMENTS, DOC_MANAGER_PATH, background_tasks)
    if documents:
        job.units = orchestrator.document_units(documents)
    return JSONResponse({"job_id": job.id}, status_code=202)


@app.get("/jobs/{job_id}")
async def job_status(job_id: str) -> Response:
    return JSONResponse(_get_job(job_id).to_dict())


@app.get("/jobs/{job_id}/events")
async def job_events(job_id: str) -> Response:
    job = _get_job(job_id)
    return JSONResponse({
        "id": job.id,
        "events": [
            {"message": event.message, "key": event.key, "attempt": event.attempt, "created_at": event.created_at}
            for event in job.events
        ],
    })


@app.delete("/jobs/{job_id}")
async def cancel_job(job_id: str) -> Response:
    job = _get_job(job_id)
    if not orchestrator.cancel(job_id):
        raise HTTPException(status_code=409, detail=f"Job is already {job.state.value}")
    return JSONResponse({"id": job.id, "cancelling": True})


@app.get("/download/{job_id}")
async def download_endpoint(job_id: str) -> Response:
    """Return the finished package of a job as an attachment."""
    job = _get_job(job_id)
    if job.package is None:
        raise HTTPException(status_code=404, detail="Package not available")
    package = job.package
    return Response(
        content=package.data,
        media_type=package.media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(package.filename, safe='')}"},
    )


@app.get("/story/{story}/freshness")
async def freshness_endpoint(story: str) -> Response:
    """Report whether FicHub's cached copy of a story is up to date."""
    try:
        story_url = canonical_story_url(story, settings.base_url)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    doc = await fetch_page(http_client, story_url)
    if doc is None:
        raise HTTPException(status_code=502, detail="Could not load story page")
    status = await check_freshness(
        http_client,
        story_url,
        local_chapter_count(locator, doc),
        local_updated(locator, doc),
    )
    return JSONResponse({"story": story_url, "status": status.value})


# UI ROUTES

@app.get("/ui/jobs/{job_id}")
async def ui_job(request: Request, job_id: str) -> HTMLResponse:
    job = _get_job(job_id)
    return templates.TemplateResponse(
        request=request,
        name="job.html",
        context={"job": job.to_dict(), "events": job.events, "units": job.units},
    )
