from __future__ import annotations

from pathlib import Path

import pytest

from site_mirror.config import MirrorSettings
from site_mirror.hosted import (
    CrawlApiClient,
    CrawlApiError,
    CrawlStatus,
    HostedConfig,
    HostedCrawler,
)
from site_mirror.http_client import FetchError, HttpClient, RetryPolicy
from site_mirror.metadata import load_metadata, metadata_path, new_metadata, save_metadata
from site_mirror.mirror import run_pass

from .conftest import FakeResponse, FakeSession

API = "http://fc.test"
JOB_URL = f"{API}/v1/crawl/job-1"
NEXT_URL = f"{API}/v1/crawl/job-1?skip=2"


def _doc(url: str, markdown: str, modified: str | None = None) -> dict:
    meta: dict = {"sourceURL": url}
    if modified:
        meta["modifiedTime"] = modified
    return {"markdown": markdown, "metadata": meta}


def _api_session(*, first_page: list[dict], second_page: list[dict]) -> FakeSession:
    return FakeSession(
        {
            ("POST", f"{API}/v1/crawl"): FakeResponse(
                200, json_body={"success": True, "id": "job-1"}
            ),
            ("GET", JOB_URL): [
                FakeResponse(
                    200, json_body={"status": "scraping", "completed": 1, "total": 3}
                ),
                FakeResponse(
                    200,
                    json_body={
                        "status": "completed",
                        "completed": 3,
                        "total": 3,
                        "data": first_page,
                        "next": NEXT_URL,
                    },
                ),
            ],
            ("GET", NEXT_URL): FakeResponse(
                200,
                json_body={
                    "status": "completed",
                    "completed": 3,
                    "total": 3,
                    "data": second_page,
                },
            ),
        }
    )


def _default_session() -> FakeSession:
    return _api_session(
        first_page=[
            _doc("http://a.test", "# Home\n", "2026-01-01"),
            _doc("http://a.test/docs/readme/", "# Readme\n", "2026-01-02"),
        ],
        second_page=[_doc("http://a.test/about", "# About\n")],
    )


def _settings(workdir: Path) -> MirrorSettings:
    return MirrorSettings(
        working_dir=workdir,
        mode="hosted",
        firecrawl_url=API,
        firecrawl_api_key="secret",
        poll_interval_s=0,
        show_progress=False,
    )


def _init(workdir: Path, urls: list[str], exclude: list[str] | None = None) -> None:
    save_metadata(new_metadata(urls, exclude), metadata_path(workdir))


def test_status_payload_parsing():
    status = CrawlStatus.from_payload(
        {
            "status": "completed",
            "completed": 1,
            "total": 1,
            "data": [_doc("http://a.test/x", "x", "t"), "junk"],
        }
    )
    assert status.next_url is None
    assert len(status.data) == 1
    assert status.data[0].source_url == "http://a.test/x"
    assert status.data[0].modified_time == "t"

    with pytest.raises(CrawlApiError):
        CrawlStatus.from_payload({"success": False, "error": "bad key"})


def test_submit_sends_markdown_request():
    session = _default_session()
    api = CrawlApiClient(HttpClient(session), base_url=API + "/", api_key="secret")

    assert api.submit("http://a.test/", limit=50) == "job-1"

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", f"{API}/v1/crawl")
    assert kwargs["json"] == {
        "url": "http://a.test/",
        "limit": 50,
        "scrapeOptions": {"formats": ["markdown"]},
    }
    assert kwargs["headers"]["Authorization"] == "Bearer secret"


def test_submit_rejection_raises():
    session = FakeSession(
        {("POST", f"{API}/v1/crawl"): FakeResponse(200, json_body={"success": False})}
    )
    api = CrawlApiClient(HttpClient(session), base_url=API)
    with pytest.raises(CrawlApiError):
        api.submit("http://a.test/", limit=10)


def test_pass_polls_paginates_and_writes(workdir: Path):
    _init(workdir, ["http://a.test/"])
    session = _default_session()

    run_pass(_settings(workdir), session=session)

    host = workdir / "a.test"
    assert (host / "index.md").read_text(encoding="utf-8") == "# Home\n"
    assert (host / "docs" / "readme.md").read_text(encoding="utf-8") == "# Readme\n"
    assert (host / "about.md").exists()
    assert session.urls_called().count(JOB_URL) == 2
    assert NEXT_URL in session.urls_called()

    record = load_metadata(metadata_path(workdir))
    assert set(record.output.pages) == {
        "http://a.test/",
        "http://a.test/docs/readme/",
        "http://a.test/about",
    }
    assert record.output.pages["http://a.test/"].last_update == "2026-01-01"
    assert record.output.scrape_job_ids == {}
    assert record.output.folders == {str(host)}


def test_persisted_job_is_resumed(workdir: Path):
    record = new_metadata(["http://a.test/"])
    record.output.scrape_job_ids = {"http://a.test/": "job-1"}
    save_metadata(record, metadata_path(workdir))
    session = _default_session()

    run_pass(_settings(workdir), session=session)

    assert session.urls_called("POST") == []
    assert (workdir / "a.test" / "index.md").exists()


def test_unchanged_documents_are_not_rewritten(workdir: Path):
    _init(workdir, ["http://a.test/"])
    run_pass(_settings(workdir), session=_default_session())
    index = workdir / "a.test" / "index.md"
    index.write_text("# Home\n", encoding="utf-8")
    mtime = index.stat().st_mtime_ns

    session = _api_session(
        first_page=[
            _doc("http://a.test/", "# Home changed\n", "2026-01-01"),
            _doc("http://a.test/docs/readme/", "# Readme v2\n", "2026-02-01"),
        ],
        second_page=[],
    )
    run_pass(_settings(workdir), session=session)

    assert index.read_text(encoding="utf-8") == "# Home\n"
    assert index.stat().st_mtime_ns == mtime
    readme = workdir / "a.test" / "docs" / "readme.md"
    assert readme.read_text(encoding="utf-8") == "# Readme v2\n"
    # about.md was not in this crawl
    assert not (workdir / "a.test" / "about.md").exists()
    record = load_metadata(metadata_path(workdir))
    assert set(record.output.pages) == {"http://a.test/", "http://a.test/docs/readme/"}


def test_excluded_documents_are_skipped(workdir: Path):
    _init(workdir, ["http://a.test/"], exclude=["http://a.test/about"])

    run_pass(_settings(workdir), session=_default_session())

    assert not (workdir / "a.test" / "about.md").exists()
    record = load_metadata(metadata_path(workdir))
    assert "http://a.test/about" not in record.output.pages


def test_failed_job_is_recorded_and_dropped(workdir: Path, make_context):
    ctx = make_context(["http://a.test/"])
    session = FakeSession(
        {
            ("POST", f"{API}/v1/crawl"): FakeResponse(
                200, json_body={"success": True, "id": "job-1"}
            ),
            ("GET", JOB_URL): FakeResponse(200, json_body={"status": "failed"}),
        }
    )
    crawler = HostedCrawler(
        api=CrawlApiClient(HttpClient(session), base_url=API),
        config=HostedConfig(poll_interval_s=0, show_progress=False),
        context=ctx,
    )

    crawler.crawl(ctx.record.input.urls)

    assert "job-1 failed" in ctx.record.output.error
    assert ctx.record.output.scrape_job_ids == {}
    assert ctx.tracker.errors


def test_poll_budget_is_bounded(workdir: Path, make_context):
    ctx = make_context(["http://a.test/"])
    session = FakeSession(
        {
            ("POST", f"{API}/v1/crawl"): FakeResponse(
                200, json_body={"success": True, "id": "job-1"}
            ),
            ("GET", JOB_URL): FakeResponse(
                200, json_body={"status": "scraping", "completed": 0, "total": 9}
            ),
        }
    )
    crawler = HostedCrawler(
        api=CrawlApiClient(HttpClient(session), base_url=API),
        config=HostedConfig(poll_interval_s=0, max_polls=3, show_progress=False),
        context=ctx,
    )

    crawler.crawl(ctx.record.input.urls)

    assert session.urls_called().count(JOB_URL) == 3
    assert "not completed after 3 polls" in ctx.record.output.error
    saved = load_metadata(ctx.metadata_path)
    assert saved.output.status == "crawling status: scraping, completed 0, total 9"


def test_unreachable_api_is_fatal(workdir: Path):
    _init(workdir, ["http://a.test/"])
    session = FakeSession(
        {("POST", f"{API}/v1/crawl"): FakeResponse(503, body="unavailable")}
    )
    settings = _settings(workdir)

    with pytest.raises(FetchError):
        run_pass(settings, session=session)

    # bounded retries
    assert len(session.urls_called("POST")) == RetryPolicy().max_attempts


def test_bad_progress_counts_raise_api_error():
    with pytest.raises(CrawlApiError, match="progress counts"):
        CrawlStatus.from_payload({"status": "scraping", "completed": "lots"})


def test_document_with_invalid_url_is_skipped(workdir: Path):
    _init(workdir, ["http://a.test/"])
    session = _api_session(
        first_page=[
            _doc("http://[oops/", "# Broken\n"),
            _doc("http://a.test/", "# Home\n"),
        ],
        second_page=[],
    )

    run_pass(_settings(workdir), session=session)

    record = load_metadata(metadata_path(workdir))
    assert set(record.output.pages) == {"http://a.test/"}
    assert record.output.error == ""


def test_job_ids_are_keyed_by_normalized_seed(workdir: Path, make_context):
    ctx = make_context(["HTTP://A.test"])
    ctx.record.output.scrape_job_ids = {"http://a.test/": "job-1"}
    session = _default_session()
    crawler = HostedCrawler(
        api=CrawlApiClient(HttpClient(session), base_url=API),
        config=HostedConfig(poll_interval_s=0, show_progress=False),
        context=ctx,
    )

    crawler.crawl(ctx.record.input.urls)

    assert session.urls_called("POST") == []
    assert ctx.record.output.scrape_job_ids == {}
    assert (workdir / "a.test" / "index.md").exists()
