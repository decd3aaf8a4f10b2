from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from site_mirror import http_client
from site_mirror.context import MirrorContext
from site_mirror.metadata import metadata_path, new_metadata, save_metadata
from site_mirror.state import CrawlTracker


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        *,
        body: bytes | str = b"",
        headers: dict[str, str] | None = None,
        url: str = "",
        json_body: Any = None,
    ) -> None:
        if json_body is not None:
            body = json.dumps(json_body)
            headers = {"Content-Type": "application/json", **(headers or {})}
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = dict(headers or {})
        self.url = url
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text)

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class FakeSession:
    """Route table keyed by (METHOD, url).

    A value may be a FakeResponse, an exception instance to raise, or a list
    of either (consumed in order, the last one repeats).
    """

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None) -> None:
        self.routes: dict[tuple[str, str], Any] = dict(routes or {})
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def add(self, method: str, url: str, response: Any) -> None:
        self.routes[(method, url)] = response

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        entry = self.routes.get((method, url))
        if entry is None:
            return FakeResponse(404, body="not found", url=url)
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, Exception):
            raise entry
        if not entry.url:
            entry.url = url
        return entry

    def urls_called(self, method: str = "GET") -> list[str]:
        return [u for m, u, _ in self.calls if m == method]


def html_page(*links: str, body: str = "") -> FakeResponse:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return FakeResponse(
        200,
        body=f"<html><body>{body}{anchors}</body></html>",
        headers={"Content-Type": "text/html; charset=utf-8"},
    )


def pdf_response(data: bytes = b"%PDF-1.4 fake") -> FakeResponse:
    return FakeResponse(200, body=data, headers={"Content-Type": "application/pdf"})


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    slept: list[float] = []
    monkeypatch.setattr(http_client.time, "sleep", slept.append)
    return slept


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "mirror"
    path.mkdir()
    return path


@pytest.fixture
def make_context(workdir: Path):
    def _make(urls: list[str], exclude: list[str] | None = None) -> MirrorContext:
        path = metadata_path(workdir)
        record = new_metadata(urls, exclude)
        save_metadata(record, path)
        return MirrorContext(
            working_dir=workdir,
            metadata_path=path,
            record=record,
            tracker=CrawlTracker.from_exclusions(record.input.exclude),
        )

    return _make
