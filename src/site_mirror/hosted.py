"""Mirror through a Firecrawl-compatible hosted crawl API.

Each seed becomes one asynchronous crawl job. The job id is persisted before
polling starts so an interrupted pass resumes the same job instead of
submitting a new one; once its results have been consumed the id is dropped
and the next pass starts a fresh crawl.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import urlparse

from tqdm import tqdm

from .context import MirrorContext
from .http_client import HttpClient
from .paths import UnsafePathError, page_path
from .urls import normalize_url
from .writer import write_artifact

logger = logging.getLogger(__name__)

COMPLETED = "completed"
TERMINAL_FAILURES = {"failed", "cancelled"}


class CrawlApiError(RuntimeError):
    """The hosted API answered with something unusable."""


class CrawlJobFailed(RuntimeError):
    """A crawl job ended without results (failed, cancelled or timed out)."""


@dataclass(frozen=True)
class CrawlDocument:
    source_url: str
    modified_time: str | None
    markdown: str

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> "CrawlDocument":
        meta = raw.get("metadata") or {}
        modified = meta.get("modifiedTime") or None
        return cls(
            source_url=str(meta.get("sourceURL") or meta.get("url") or ""),
            modified_time=str(modified) if modified else None,
            markdown=str(raw.get("markdown") or ""),
        )


@dataclass(frozen=True)
class CrawlStatus:
    status: str
    completed: int = 0
    total: int = 0
    data: list[CrawlDocument] = field(default_factory=list)
    next_url: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CrawlStatus":
        if payload.get("success") is False:
            raise CrawlApiError(str(payload.get("error") or "crawl API error"))
        status = payload.get("status")
        if not isinstance(status, str):
            raise CrawlApiError("crawl status response has no 'status'")
        data = payload.get("data") or []
        try:
            completed = int(payload.get("completed") or 0)
            total = int(payload.get("total") or 0)
        except (TypeError, ValueError) as e:
            raise CrawlApiError(f"crawl status has bad progress counts: {e}") from e
        return cls(
            status=status,
            completed=completed,
            total=total,
            data=[CrawlDocument.from_payload(d) for d in data if isinstance(d, dict)],
            next_url=payload.get("next") or None,
        )


class CrawlApiClient:
    def __init__(self, http: HttpClient, *, base_url: str, api_key: str = "") -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def submit(self, url: str, *, limit: int) -> str:
        payload: dict[str, Any] = {
            "url": url,
            "scrapeOptions": {"formats": ["markdown"]},
        }
        if limit:
            payload["limit"] = limit
        resp = self.http.post_json(
            f"{self.base_url}/v1/crawl", payload, headers=self._headers
        )
        if resp.get("success") is False or not resp.get("id"):
            raise CrawlApiError(
                f"crawl submission for {url} rejected: {resp.get('error') or resp}"
            )
        return str(resp["id"])

    def status(self, job_id: str) -> CrawlStatus:
        payload = self.http.get_json(
            f"{self.base_url}/v1/crawl/{job_id}", headers=self._headers
        )
        return CrawlStatus.from_payload(payload)

    def next_page(self, next_url: str) -> CrawlStatus:
        payload = self.http.get_json(next_url, headers=self._headers)
        return CrawlStatus.from_payload(payload)


@dataclass
class HostedConfig:
    max_pages: int = 100
    poll_interval_s: float = 2.0
    max_polls: int = 900
    show_progress: bool = True


class HostedCrawler:
    def __init__(
        self,
        *,
        api: CrawlApiClient,
        config: HostedConfig,
        context: MirrorContext,
    ) -> None:
        self.api = api
        self.cfg = config
        self.ctx = context

    @property
    def job_ids(self) -> dict[str, str]:
        return self.ctx.record.output.scrape_job_ids

    def crawl(self, seeds: Iterable[str]) -> None:
        for raw_seed in seeds:
            try:
                seed = normalize_url(raw_seed)
            except ValueError as e:
                logger.error("Invalid seed URL %r: %s", raw_seed, e)
                self.ctx.note_error(f"invalid seed URL {raw_seed}: {e}")
                continue
            try:
                self._mirror_seed(seed)
            except CrawlJobFailed as e:
                logger.error("%s", e)
                self.job_ids.pop(seed, None)
                self.ctx.note_error(str(e))

    def _job_for(self, seed: str) -> str:
        job_id = self.job_ids.get(seed)
        if job_id:
            logger.info("resuming crawl job %s for %s", job_id, seed)
            return job_id

        # Submission failures propagate: nothing has been mirrored yet.
        job_id = self.api.submit(seed, limit=self.cfg.max_pages)
        logger.info("submitted crawl job %s for %s", job_id, seed)
        self.job_ids[seed] = job_id
        self.ctx.save()
        return job_id

    def _wait_for_completion(self, job_id: str) -> CrawlStatus:
        for _ in range(max(1, self.cfg.max_polls)):
            status = self.api.status(job_id)
            if status.status == COMPLETED:
                return status
            if status.status in TERMINAL_FAILURES:
                raise CrawlJobFailed(f"crawl job {job_id} {status.status}")
            self.ctx.set_status(
                f"crawling status: {status.status}, "
                f"completed {status.completed}, total {status.total}"
            )
            time.sleep(self.cfg.poll_interval_s)
        raise CrawlJobFailed(
            f"crawl job {job_id} not completed after {self.cfg.max_polls} polls"
        )

    def _mirror_seed(self, seed: str) -> None:
        job_id = self._job_for(seed)
        status = self._wait_for_completion(job_id)

        with tqdm(
            total=status.total or None,
            desc="Mirror pages",
            unit="page",
            disable=not self.cfg.show_progress,
        ) as progress:
            while True:
                for doc in status.data:
                    self._save_document(doc)
                    progress.update(1)
                if not status.next_url:
                    break
                status = self.api.next_page(status.next_url)

        self.job_ids.pop(seed, None)
        self.ctx.save()

    def _save_document(self, doc: CrawlDocument) -> None:
        if not doc.source_url:
            logger.warning("skipping crawl result without a source URL")
            return

        try:
            url = normalize_url(doc.source_url)
        except ValueError as e:
            logger.warning(
                "Skipping crawl result with invalid URL %r: %s", doc.source_url, e
            )
            return
        tracker = self.ctx.tracker
        if tracker.is_excluded(url) or tracker.is_visited(url):
            return

        parsed = urlparse(url)
        hostname = parsed.hostname or ""
        try:
            path = page_path(self.ctx.working_dir, hostname, parsed.path)
        except UnsafePathError as e:
            logger.error("Skipping %s: %s", url, e)
            return

        existing = self.ctx.record.output.pages.get(url)
        if (
            existing is not None
            and doc.modified_time
            and existing.last_update == doc.modified_time
            and Path(existing.path) == path
            and path.exists()
        ):
            self.ctx.reaffirm(url, folder_host=hostname)
            return

        if not write_artifact(path, doc.markdown):
            return
        self.ctx.record_artifact(
            url,
            path,
            folder_host=hostname,
            last_update=doc.modified_time,
            status_verb="wrote",
        )
