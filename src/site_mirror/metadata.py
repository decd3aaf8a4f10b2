"""Persisted mirror record (``<working_dir>/.metadata.json``).

The document is the single source of truth for the next pass's
reconciliation, and the only channel through which progress is reported::

    {
      "input": {"urls": [...], "exclude": [...]},
      "output": {
        "status": "...",
        "error": "...",
        "scrape_job_ids": {"<seed url>": "<job id>"},
        "pages": {"<url>": {"path": "...", "url": "...", "last_update": "..."}},
        "folders": ["..."]
      }
    }

Saving always rewrites the whole document through a temporary sibling file,
so readers see either the previous or the new state.
"""

from __future__ import annotations

import json
import os
import stat
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

METADATA_FILENAME = ".metadata.json"
METADATA_MODE = 0o644


class MetadataError(RuntimeError):
    """The metadata document is missing, unreadable, or cannot be written."""


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def metadata_path(working_dir: Path) -> Path:
    return working_dir / METADATA_FILENAME


@dataclass
class PageRecord:
    url: str
    path: str
    last_update: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "url": self.url, "last_update": self.last_update}


@dataclass
class MetadataInput:
    urls: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)


@dataclass
class MetadataOutput:
    status: str = ""
    error: str = ""
    scrape_job_ids: dict[str, str] = field(default_factory=dict)
    pages: dict[str, PageRecord] = field(default_factory=dict)
    folders: set[str] = field(default_factory=set)


@dataclass
class MetadataRecord:
    input: MetadataInput = field(default_factory=MetadataInput)
    output: MetadataOutput = field(default_factory=MetadataOutput)
    # Unknown top-level keys written by other tools are carried through.
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = dict(self.extra)
        doc["input"] = {
            "urls": list(self.input.urls),
            "exclude": list(self.input.exclude),
        }
        doc["output"] = {
            "status": self.output.status,
            "error": self.output.error,
            "scrape_job_ids": dict(self.output.scrape_job_ids),
            "pages": {
                key: page.to_dict() for key, page in self.output.pages.items()
            },
            "folders": sorted(self.output.folders),
        }
        return doc


def _str_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v) for v in value if isinstance(v, str) and v.strip()]
    raise MetadataError(f"Expected a string list, got {type(value).__name__}")


def _parse_input(raw: dict[str, Any]) -> MetadataInput:
    urls = _str_list(raw.get("urls"))
    # Older documents carried a single seed under "url".
    for legacy in _str_list(raw.get("url")):
        if legacy not in urls:
            urls.append(legacy)
    return MetadataInput(urls=urls, exclude=_str_list(raw.get("exclude")))


def _parse_pages(raw: object) -> dict[str, PageRecord]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise MetadataError("output.pages must be an object")

    pages: dict[str, PageRecord] = {}
    for key, entry in raw.items():
        if not isinstance(entry, dict):
            raise MetadataError(f"output.pages[{key!r}] must be an object")
        pages[key] = PageRecord(
            url=str(entry.get("url") or key),
            path=str(entry.get("path") or ""),
            last_update=str(entry.get("last_update") or ""),
        )
    return pages


def _parse_job_ids(raw: dict[str, Any], seeds: list[str]) -> dict[str, str]:
    job_ids = raw.get("scrape_job_ids")
    if isinstance(job_ids, dict):
        return {str(k): str(v) for k, v in job_ids.items() if v}
    legacy = raw.get("scrape_job_id")
    if isinstance(legacy, str) and legacy and seeds:
        return {seeds[0]: legacy}
    return {}


def _parse_folders(raw: object) -> set[str]:
    if raw is None:
        return set()
    if isinstance(raw, dict):
        return {str(k) for k in raw}
    return set(_str_list(raw))


def parse_metadata(doc: object) -> MetadataRecord:
    if not isinstance(doc, dict):
        raise MetadataError("Metadata document must be a JSON object")

    raw_input = doc.get("input") or {}
    raw_output = doc.get("output") or {}
    if not isinstance(raw_input, dict) or not isinstance(raw_output, dict):
        raise MetadataError("Metadata 'input' and 'output' must be objects")

    meta_input = _parse_input(raw_input)
    output = MetadataOutput(
        status=str(raw_output.get("status") or ""),
        error=str(raw_output.get("error") or ""),
        scrape_job_ids=_parse_job_ids(raw_output, meta_input.urls),
        pages=_parse_pages(raw_output.get("pages")),
        folders=_parse_folders(raw_output.get("folders")),
    )
    extra = {k: v for k, v in doc.items() if k not in {"input", "output"}}
    return MetadataRecord(input=meta_input, output=output, extra=extra)


def load_metadata(path: Path) -> MetadataRecord:
    if not path.exists():
        raise MetadataError(f"Metadata file not found: {path}")
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MetadataError(f"Failed to read metadata {path}: {e}") from e
    return parse_metadata(doc)


def save_metadata(record: MetadataRecord, path: Path) -> None:
    text = json.dumps(record.to_dict(), indent=2, ensure_ascii=False) + "\n"
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        mode = stat.S_IMODE(path.stat().st_mode) if path.exists() else METADATA_MODE
        fd, tmp_name = tempfile.mkstemp(
            prefix=path.name + ".", suffix=".tmp", dir=str(path.parent)
        )
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        # mkstemp creates files 0600.
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise MetadataError(f"Failed to write metadata {path}: {e}") from e


def new_metadata(urls: list[str], exclude: list[str] | None = None) -> MetadataRecord:
    return MetadataRecord(
        input=MetadataInput(urls=list(urls), exclude=list(exclude or []))
    )
