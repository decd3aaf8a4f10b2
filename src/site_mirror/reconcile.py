"""Mark-and-sweep of the local mirror after a pass.

Whatever the pass did not re-affirm (pages not visited, folders not touched)
is presumed gone from the remote site and is removed from disk and from the
metadata record. Removal is best effort: a failed delete is logged and the
sweep carries on with the remaining entries.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet

from .metadata import MetadataRecord
from .paths import is_within

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    removed_pages: int = 0
    removed_folders: int = 0
    failures: int = 0


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _prune_empty_parents(path: Path, working_dir: Path) -> None:
    # Stops below the host folder; host folders are swept with the folder set.
    parent = path.parent
    while parent != working_dir and parent.parent != working_dir:
        if not is_within(parent, working_dir):
            return
        try:
            parent.rmdir()
        except OSError:
            return
        parent = parent.parent


def reconcile(
    metadata: MetadataRecord,
    *,
    visited: AbstractSet[str],
    folders: AbstractSet[str],
    exclude: AbstractSet[str],
    working_dir: Path,
) -> ReconcileResult:
    result = ReconcileResult()
    pages = metadata.output.pages

    stale = [key for key in pages if key not in visited or key in exclude]
    live_paths = {page.path for key, page in pages.items() if key not in stale}

    for key in stale:
        page = pages[key]
        path = Path(page.path)
        if not page.path:
            logger.warning("dropping %s: record has no path", key)
        elif page.path in live_paths:
            logger.info("keeping %s, still referenced by another page", path)
        elif not is_within(path, working_dir):
            logger.warning("not removing %s: outside %s", path, working_dir)
        else:
            logger.info("removing file %s", path)
            try:
                _remove_path(path)
                _prune_empty_parents(path, working_dir)
            except OSError as e:
                logger.error("Failed to remove %s: %s", path, e)
                result.failures += 1
        del pages[key]
        result.removed_pages += 1

    for folder in sorted(metadata.output.folders - set(folders)):
        folder_path = Path(folder)
        if not is_within(folder_path, working_dir) or folder_path == working_dir:
            logger.warning("not removing folder %s: outside %s", folder, working_dir)
        else:
            logger.info("removing folder %s", folder)
            try:
                if folder_path.exists():
                    shutil.rmtree(folder_path)
            except OSError as e:
                logger.error("Failed to remove %s: %s", folder, e)
                result.failures += 1
        result.removed_folders += 1

    metadata.output.folders = set(folders)
    metadata.output.status = ""
    metadata.output.error = ""
    return result
