from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from . import __version__
from .config import MirrorSettings
from .context import MirrorContext
from .crawl import CrawlConfig, LinkCrawler
from .hosted import CrawlApiClient, HostedConfig, HostedCrawler
from .http_client import HttpClient
from .metadata import load_metadata, metadata_path
from .reconcile import ReconcileResult, reconcile
from .state import CrawlTracker

logger = logging.getLogger(__name__)

USER_AGENT = f"site-mirror/{__version__}"


@dataclass(frozen=True)
class PassResult:
    pages: int
    folders: int
    visited: int
    reconciled: ReconcileResult
    errors: list[str]


def run_pass(
    settings: MirrorSettings, *, session: requests.Session | None = None
) -> PassResult:
    """Run one full pass: acquire, reconcile, commit.

    Raises ``MetadataError`` when the metadata document cannot be loaded or
    written, and lets hosted-API submission/polling errors propagate; per-page
    failures are handled inside the backends.
    """

    path = metadata_path(settings.working_dir)
    record = load_metadata(path)
    tracker = CrawlTracker.from_exclusions(record.input.exclude)
    ctx = MirrorContext(
        working_dir=settings.working_dir,
        metadata_path=path,
        record=record,
        tracker=tracker,
    )

    # A new pass starts clean; errors from this pass are re-applied below.
    record.output.error = ""

    http = HttpClient(
        session or requests.Session(),
        timeout_s=settings.timeout_s,
        headers={"User-Agent": USER_AGENT},
    )

    if settings.mode == "hosted":
        api = CrawlApiClient(
            http,
            base_url=settings.firecrawl_url,
            api_key=settings.firecrawl_api_key,
        )
        backend: LinkCrawler | HostedCrawler = HostedCrawler(
            api=api,
            config=HostedConfig(
                max_pages=settings.max_pages,
                poll_interval_s=settings.poll_interval_s,
                max_polls=settings.max_polls,
                show_progress=settings.show_progress,
            ),
            context=ctx,
        )
    else:
        backend = LinkCrawler(
            http=http,
            config=CrawlConfig(
                max_pages=settings.max_pages,
                per_host_delay_s=settings.per_host_delay_s,
            ),
            context=ctx,
        )

    logger.info(
        "mirroring %d seed(s) into %s (%s mode)",
        len(record.input.urls),
        settings.working_dir,
        settings.mode,
    )
    backend.crawl(record.input.urls)

    result = reconcile(
        record,
        visited=tracker.visited,
        folders=tracker.folders,
        exclude=tracker.exclude,
        working_dir=settings.working_dir,
    )
    errors = tracker.errors
    if errors:
        record.output.error = "; ".join(errors)
    ctx.save()

    logger.info(
        "pass done: %d pages, %d removed, %d folders removed",
        len(record.output.pages),
        result.removed_pages,
        result.removed_folders,
    )
    return PassResult(
        pages=len(record.output.pages),
        folders=len(record.output.folders),
        visited=tracker.visited_count(),
        reconciled=result,
        errors=errors,
    )
