"""Map remote URLs onto files under the mirror's working directory.

Pages become Markdown files laid out like the URL path::

    /                -> <working_dir>/<host>/index.md
    /docs/readme     -> <working_dir>/<host>/docs/readme.md

PDFs keep their name and extension under both the seed host and the host that
serves them::

    http://b.test/x/y.pdf (seed a.test) -> <working_dir>/a.test/b.test/x/y.pdf

Empty segments (``//``) are dropped. A path with no segments left maps to the
host's ``index.md``; pages are never skipped for having an empty tail.
"""

from __future__ import annotations

import os
from pathlib import Path

INDEX_FILENAME = "index.md"
MARKDOWN_SUFFIX = ".md"

_UNSAFE_SEGMENTS = {".", ".."}


class UnsafePathError(ValueError):
    """A URL would map to a path outside the working directory."""


def _segments(url_path: str) -> list[str]:
    segments = [s for s in url_path.strip("/").split("/") if s]
    for segment in segments:
        if segment in _UNSAFE_SEGMENTS or "\\" in segment or "\x00" in segment:
            raise UnsafePathError(f"Refusing unsafe path segment {segment!r}")
    return segments


def _host_dir(working_dir: Path, host: str) -> Path:
    host = (host or "").strip().lower()
    if not host or host in _UNSAFE_SEGMENTS or "/" in host or "\\" in host:
        raise UnsafePathError(f"Refusing unsafe host {host!r}")
    return working_dir / host


def is_within(path: Path, root: Path) -> bool:
    try:
        Path(os.path.abspath(path)).relative_to(os.path.abspath(root))
    except ValueError:
        return False
    return True


def _checked(path: Path, working_dir: Path) -> Path:
    if not is_within(path, working_dir):
        raise UnsafePathError(f"{path} escapes {working_dir}")
    return path


def page_path(working_dir: Path, hostname: str, url_path: str) -> Path:
    host_dir = _host_dir(working_dir, hostname)
    segments = _segments(url_path or "")
    if not segments:
        return _checked(host_dir / INDEX_FILENAME, working_dir)

    *parents, last = segments
    return _checked(
        host_dir.joinpath(*parents) / f"{last}{MARKDOWN_SUFFIX}", working_dir
    )


def pdf_path(
    working_dir: Path, source_host: str, link_host: str, url_path: str
) -> Path:
    segments = _segments(url_path or "")
    if not segments:
        raise UnsafePathError(f"PDF URL path {url_path!r} has no file name")

    base = _host_dir(_host_dir(working_dir, source_host), link_host)
    return _checked(base.joinpath(*segments), working_dir)


def host_folder(working_dir: Path, hostname: str) -> Path:
    return _host_dir(working_dir, hostname)
