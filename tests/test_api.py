import random

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import edit_page, story_page
from ficarchive import main
from ficarchive.config import Settings
from ficarchive.locator import ContentLocator
from ficarchive.models import JobKind
from ficarchive.orchestrator import ExportOrchestrator
from ficarchive.sink import MemorySink


@pytest.fixture
def api(monkeypatch, story_site, sleep):
    client = story_site.client()
    orchestrator = ExportOrchestrator(
        client,
        ContentLocator(),
        MemorySink(),
        Settings(),
        sleep=sleep,
        rng=random.Random(3),
    )
    monkeypatch.setattr(main, "orchestrator", orchestrator)
    monkeypatch.setattr(main, "http_client", client)
    return TestClient(main.app)


def test_story_export_round_trip(api, story_site) -> None:
    response = api.post("/export/story", json={"story": "123"})
    assert response.status_code == 202
    job_id = response.json()["job_id"]

    status = api.get(f"/jobs/{job_id}").json()
    assert status["status"] == "succeeded"
    assert status["total"] == 3
    assert status["succeeded"] == 2
    assert status["failed"] == 1
    assert status["filename"] == "The Long Road.epub"

    download = api.get(f"/download/{job_id}")
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/epub+zip"
    assert "The%20Long%20Road.epub" in download.headers["content-disposition"]
    assert download.content[30:38] == b"mimetype"

    events = api.get(f"/jobs/{job_id}/events").json()["events"]
    assert events[0]["message"] == "Reading story page..."
    assert any(event["attempt"] == 2 for event in events)

    page = api.get(f"/ui/jobs/{job_id}")
    assert page.status_code == 200
    assert "The Long Road.epub" in page.text
    assert "2. The Storm" in page.text


def test_story_export_requires_story(api) -> None:
    assert api.post("/export/story", json={}).status_code == 400
    assert api.post("/export/story", json={"story": "https://example.com/nope"}).status_code == 400
    assert api.post("/export/story", content=b"{broken").status_code == 400


def test_overlapping_story_export_conflicts(api) -> None:
    main.orchestrator.create_job(JobKind.STORY, "123")
    response = api.post("/export/story", json={"story": "https://www.fanfiction.net/s/123/3/"})
    assert response.status_code == 409


def test_document_export(api, story_site) -> None:
    story_site.add("/docs/edit.php?docid=77", edit_page("<h2>Plan</h2>"))

    job_id = api.post("/export/document/77", json={"title": "Plan: v2"}).json()["job_id"]

    download = api.get(f"/download/{job_id}")
    assert download.status_code == 200
    assert download.text == "## Plan\n"
    assert "Plan-%20v2.md" in download.headers["content-disposition"]


def test_documents_export_with_list(api, story_site) -> None:
    story_site.add("/docs/edit.php?docid=1", edit_page("<p>One</p>"))
    response = api.post("/export/documents", json={"documents": [{"id": "1", "title": "First"}, {"id": "2"}]})
    assert response.status_code == 202

    status = api.get(f"/jobs/{response.json()['job_id']}").json()
    assert status["status"] == "succeeded"
    assert status["succeeded"] == 1
    assert status["failed"] == 1
    assert status["filename"].endswith(".zip")


def test_documents_export_with_repeated_ids(api, story_site) -> None:
    story_site.add("/docs/edit.php?docid=1", edit_page("<p>One</p>"))
    documents = [{"id": "1", "title": "A"}, {"id": "1", "title": "A"}]
    job_id = api.post("/export/documents", json={"documents": documents}).json()["job_id"]

    status = api.get(f"/jobs/{job_id}").json()
    assert status["status"] == "succeeded", status["error"]
    assert status["total"] == 1
    assert status["succeeded"] == 1


def test_documents_export_rejects_entries_without_id(api) -> None:
    assert api.post("/export/documents", json={"documents": [{"title": "x"}]}).status_code == 400


def test_unknown_job_is_404(api) -> None:
    assert api.get("/jobs/nope").status_code == 404
    assert api.get("/jobs/nope/events").status_code == 404
    assert api.delete("/jobs/nope").status_code == 404
    assert api.get("/download/nope").status_code == 404
    assert api.get("/ui/jobs/nope").status_code == 404


def test_cancel_only_live_jobs(api, story_site) -> None:
    idle = main.orchestrator.create_job(JobKind.STORY, "456")
    response = api.delete(f"/jobs/{idle.id}")
    assert response.status_code == 200
    assert idle.cancel_token.is_set()

    story_site.add("/docs/edit.php?docid=5", edit_page("<p>x</p>"))
    done = api.post("/export/document/5").json()["job_id"]
    assert api.delete(f"/jobs/{done}").status_code == 409


def test_failed_job_has_nothing_to_download(api) -> None:
    job_id = api.post("/export/document/404").json()["job_id"]
    status = api.get(f"/jobs/{job_id}").json()
    assert status["status"] == "failed"
    assert "Failed to fetch document content" in status["error"]
    assert api.get(f"/download/{job_id}").status_code == 404


def test_freshness(api, story_site) -> None:
    story_site.add("/api/v0/meta", '{"chapters": 3, "updated": "2024-01-01T00:00:00Z"}')

    response = api.get("/story/123/freshness")

    assert response.status_code == 200
    assert response.json() == {"story": "https://www.fanfiction.net/s/123/1/", "status": "FRESH"}


def test_freshness_without_story_page(api) -> None:
    assert api.get("/story/999/freshness").status_code == 502
