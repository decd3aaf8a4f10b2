from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .context import MirrorContext
from .convert.html_to_md import parse_html, soup_to_markdown
from .http_client import FetchError, FetchResult, HttpClient, is_success
from .paths import UnsafePathError, page_path, pdf_path
from .state import CrawlTracker
from .urls import HostScope, is_pdf_url, normalize_url, url_host
from .writer import content_matches, download_artifact, write_artifact

logger = logging.getLogger(__name__)

_HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}
_SKIPPED_SCHEMES = ("mailto:", "javascript:", "tel:", "data:")


def looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip().lower()
    return head.startswith(b"<") and (
        b"<html" in head or b"<!doctype" in head or b"<head" in head
    )


def is_html_response(res: FetchResult) -> bool:
    ct = res.content_type.split(";", 1)[0].strip().lower()
    if ct:
        return ct in _HTML_CONTENT_TYPES
    return looks_like_html(res.body)


def extract_links(soup: BeautifulSoup, *, page_url: str) -> list[str]:
    def _attr_text(val: object) -> str:
        if isinstance(val, list):
            if not val:
                return ""
            return str(val[0])
        return str(val or "")

    effective_base = page_url
    base = soup.find("base")
    if base is not None:
        base_href = _attr_text(base.get("href")).strip()
        if base_href:
            try:
                effective_base = urljoin(page_url, base_href)
            except ValueError as e:
                logger.warning("Ignoring invalid base href %r: %s", base_href, e)

    out: list[str] = []
    for a in soup.select("a[href]"):
        href = _attr_text(a.get("href")).strip()
        if not href or href.startswith("#"):
            continue
        if href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        try:
            abs_url = urljoin(effective_base, href)
            if urlparse(abs_url).scheme not in {"http", "https"}:
                continue
            out.append(normalize_url(abs_url))
        except ValueError as e:
            logger.warning("Invalid link URL %r on %s: %s", href, page_url, e)
            continue

    return list(dict.fromkeys(out))


def extract_links_from_html(html: str, *, page_url: str) -> list[str]:
    return extract_links(parse_html(html), page_url=page_url)


@dataclass
class CrawlConfig:
    max_pages: int = 100
    per_host_delay_s: float = 0.0


class LinkCrawler:
    """Follow same-host links from each seed and mirror what it finds.

    Traversal is an explicit breadth-first work-list per seed. A URL is queued
    at most once per pass; the tracker's visited set keeps pages and PDFs
    from being written twice when several seeds overlap.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        config: CrawlConfig,
        context: MirrorContext,
        convert: Callable[[BeautifulSoup], str] = soup_to_markdown,
    ) -> None:
        self.http = http
        self.cfg = config
        self.ctx = context
        self._convert = convert

        self._seen: set[str] = set()
        self._last_fetch_at_by_host: dict[str, float] = {}

    @property
    def tracker(self) -> CrawlTracker:
        return self.ctx.tracker

    def _pacing_sleep(self, host: str) -> None:
        last = self._last_fetch_at_by_host.get(host)
        if last is None:
            return
        elapsed = time.time() - last
        if elapsed < self.cfg.per_host_delay_s:
            time.sleep(self.cfg.per_host_delay_s - elapsed)

    def _limit_reached(self) -> bool:
        return bool(self.cfg.max_pages) and (
            self.tracker.visited_count() >= self.cfg.max_pages
        )

    def _fetch(self, url: str) -> FetchResult:
        host = url_host(url)
        self._pacing_sleep(host)
        try:
            res = self.http.get(url)
        finally:
            self._last_fetch_at_by_host[host] = time.time()
        if not is_success(res.status_code):
            raise FetchError(f"{url} answered HTTP {res.status_code}")
        return res

    def crawl(self, seeds: Iterable[str]) -> None:
        for seed in seeds:
            if self._limit_reached():
                logger.info("page limit %d reached", self.cfg.max_pages)
                break
            try:
                start = normalize_url(seed)
            except ValueError as e:
                logger.error("Invalid seed URL %r: %s", seed, e)
                self.ctx.note_error(f"invalid seed URL {seed}: {e}")
                continue
            self._crawl_seed(start)

    def _crawl_seed(self, seed: str) -> None:
        scope = HostScope.for_seed(seed)
        queue: deque[str] = deque([seed])
        self._seen.add(seed)

        while queue:
            url = queue.popleft()
            if self.tracker.is_visited(url):
                continue
            if self._limit_reached():
                logger.info("page limit %d reached", self.cfg.max_pages)
                return

            try:
                res = self._fetch(url)
            except FetchError as e:
                logger.error("Failed to fetch %s: %s", url, e)
                if url == seed:
                    self.ctx.note_error(f"failed to visit {seed}: {e}")
                continue

            if not is_html_response(res):
                logger.warning("skipping %s: not an HTML page", url)
                continue

            soup = parse_html(res.body.decode("utf-8", errors="replace"))
            links = extract_links(soup, page_url=url)

            if self.tracker.is_excluded(url):
                logger.info("not writing excluded page %s", url)
            else:
                self._save_page(url, soup)

            for link in links:
                if self.tracker.is_visited(link):
                    continue
                if is_pdf_url(link):
                    self._save_pdf(seed, link)
                elif scope.is_followable(link) and link not in self._seen:
                    self._seen.add(link)
                    queue.append(link)

    def _save_page(self, url: str, soup: BeautifulSoup) -> None:
        parsed = urlparse(url)
        hostname = parsed.hostname or ""
        try:
            path = page_path(self.ctx.working_dir, hostname, parsed.path)
        except UnsafePathError as e:
            logger.error("Skipping %s: %s", url, e)
            return

        markdown = self._convert(soup)
        existing = self.ctx.record.output.pages.get(url)
        if (
            existing is not None
            and Path(existing.path) == path
            and content_matches(path, markdown)
        ):
            logger.debug("unchanged %s", url)
            self.ctx.reaffirm(url, folder_host=hostname)
            return

        logger.info("scraping %s", url)
        if not write_artifact(path, markdown):
            return
        self.ctx.record_artifact(url, path, folder_host=hostname)

    def _save_pdf(self, seed: str, link: str) -> None:
        if link in self._seen or self.tracker.is_excluded(link):
            return
        self._seen.add(link)
        if self._limit_reached():
            return

        source_host = url_host(seed)
        try:
            path: Path = pdf_path(
                self.ctx.working_dir, source_host, url_host(link), urlparse(link).path
            )
        except UnsafePathError as e:
            logger.error("Skipping PDF %s: %s", link, e)
            return

        logger.info("downloading PDF %s", link)
        if not download_artifact(self.http, link, path):
            return
        self.ctx.record_artifact(link, path, folder_host=source_host)
