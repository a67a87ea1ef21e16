from __future__ import annotations

import html
from typing import Dict, List, Tuple, Union

import httpx
import pytest

BASE_URL = "https://www.fanfiction.net"
COVER_URL = "https://img.example/image/123/75/"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def story_page(
    title: str = "The Long Road",
    chapters: Tuple[str, ...] = ("1. Departure", "2. The Storm", "3. Arrival"),
    body: str = "<p>It began<br>at dawn &amp; dusk.</p>",
    cover: bool = True,
) -> str:
    options = "".join(
        f"<option value='{index}'>{html.escape(label)}</option>" for index, label in enumerate(chapters, start=1)
    )
    dropdown = f"<select id='chap_select'>{options}</select>" if len(chapters) > 1 else ""
    cover_img = f"<img class='cimage' src='{COVER_URL}'>" if cover else ""
    return (
        "<html><body>"
        "<div id='profile_top'>"
        f"{cover_img}"
        f"<b class='xcontrast_txt'>{html.escape(title)}</b> "
        "<span>By:</span> <a class='xcontrast_txt' href='/u/42/Writer'>Writer</a>"
        "<div class='xcontrast_txt'>Two travellers &amp; one road.</div>"
        "<span class='xgray xcontrast_txt'>Rated: <a>Fiction T</a> - English - Romance/Drama - "
        "[Harry P., Hermione G.] - Chapters: 3 - Words: 50,113 - Reviews: 240 - Favs: 1,002 - "
        "Follows: 1,307 - Updated: <span data-xutime='1700000000'>5h</span> - "
        "Published: <span data-xutime='1600000000'>Sep 13, 2020</span> - Complete - id: 123</span>"
        "</div>"
        f"{dropdown}"
        f"<div id='storytext'>{body}</div>"
        "</body></html>"
    )


def chapter_page(body: str) -> str:
    return f"<html><body><div id='storytext'>{body}</div></body></html>"


def edit_page(source: str) -> str:
    return f"<html><body><textarea name='bio'>{html.escape(source)}</textarea></body></html>"


def doc_manager_page(rows: List[Tuple[str, str]]) -> str:
    body = "".join(
        f"<tr><td><input type='checkbox'></td><td>{html.escape(title)}</td>"
        f"<td><a href='/docs/edit.php?docid={doc_id}'>Edit</a></td></tr>"
        for doc_id, title in rows
    )
    return f"<html><body><table id='gui_table1'><tr><th></th><th>Title</th><th></th></tr>{body}</table></body></html>"


Body = Union[str, bytes]


class FakeSite:
    """Route table served through ``httpx.MockTransport``.

    Routes are looked up by path plus query first, then by path alone.
    A list of responses is consumed one per request, the last one repeating.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, List[Tuple[int, Body]]] = {}
        self.requests: List[str] = []

    def add(self, path: str, body: Body, status: int = 200) -> None:
        self.routes[path] = [(status, body)]

    def add_sequence(self, path: str, responses: List[Tuple[int, Body]]) -> None:
        self.routes[path] = list(responses)

    def handle(self, request: httpx.Request) -> httpx.Response:
        full = request.url.raw_path.decode("ascii")
        self.requests.append(full)
        responses = self.routes.get(full) or self.routes.get(request.url.path)
        if not responses:
            return httpx.Response(404, text="Not found")
        status, body = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, text=body)

    def count(self, path: str) -> int:
        return sum(1 for seen in self.requests if seen == path)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(self.handle))


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def story_site(site: FakeSite) -> FakeSite:
    """A three chapter story whose second chapter never loads."""
    site.add("/s/123/1/", story_page())
    site.add("/s/123/2/", "Service unavailable", status=503)
    site.add("/s/123/3/", chapter_page("<p>The end.</p><hr>"))
    site.add("/image/123/180/", "missing", status=404)
    site.add("/image/123/150/", PNG_BYTES)
    site.add("/image/123/75/", b"\xff\xd8small")
    return site
