from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .metadata import MetadataRecord, PageRecord, save_metadata, utc_iso
from .paths import host_folder
from .state import CrawlTracker

logger = logging.getLogger(__name__)


@dataclass
class MirrorContext:
    """What both acquisition backends share during one pass.

    Every unit of progress ends with :meth:`save`, so the metadata document on
    disk never lags behind the artifacts by more than one page.
    """

    working_dir: Path
    metadata_path: Path
    record: MetadataRecord
    tracker: CrawlTracker

    def save(self) -> None:
        save_metadata(self.record, self.metadata_path)

    def host_folder(self, hostname: str) -> Path:
        return host_folder(self.working_dir, hostname)

    def record_artifact(
        self,
        url: str,
        path: Path,
        *,
        folder_host: str,
        last_update: str | None = None,
        status_verb: str = "scraped",
    ) -> None:
        self.tracker.mark_visited(url)
        self.tracker.touch_folder(self.host_folder(folder_host))
        self.record.output.pages[url] = PageRecord(
            url=url,
            path=str(path),
            last_update=last_update or utc_iso(),
        )
        count = self.tracker.visited_count()
        self.record.output.status = f"{status_verb} {count} pages"
        logger.info("%s %s -> %s", status_verb, url, path)
        self.save()

    def reaffirm(self, url: str, *, folder_host: str) -> None:
        """Keep an unchanged artifact alive without rewriting it."""

        self.tracker.mark_visited(url)
        self.tracker.touch_folder(self.host_folder(folder_host))

    def set_status(self, status: str) -> None:
        self.record.output.status = status
        self.save()

    def note_error(self, message: str) -> None:
        self.tracker.note_error(message)
        self.record.output.error = message
        self.save()
