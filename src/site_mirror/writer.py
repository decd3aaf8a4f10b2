from __future__ import annotations

import logging
from pathlib import Path

from requests import exceptions as req_exc

from .http_client import FetchError, HttpClient

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def write_artifact(path: Path, content: str | bytes) -> bool:
    """Write one artifact, creating parent directories. Returns success."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8", newline="\n")
    except OSError as e:
        logger.error("Failed to write %s: %s", path, e)
        return False
    return True


def content_matches(path: Path, content: str) -> bool:
    try:
        return path.read_text(encoding="utf-8") == content
    except (OSError, UnicodeDecodeError):
        return False


def download_artifact(http: HttpClient, url: str, path: Path) -> bool:
    """Stream a remote binary (PDF) to ``path``. Returns success.

    Nothing is created on disk unless the server answered 2xx; a failure
    mid-stream may leave a partial file that the next successful download
    overwrites.
    """

    try:
        resp = http.open_stream(url)
    except FetchError as e:
        logger.error("Failed to download %s: %s", url, e)
        return False

    try:
        with resp:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except (OSError, req_exc.RequestException) as e:
        logger.error("Failed to save %s to %s: %s", url, path, e)
        return False
    return True
