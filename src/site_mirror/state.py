from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .urls import normalize_url


@dataclass
class CrawlTracker:
    """Run-scoped bookkeeping for one pass.

    ``exclude`` is frozen at construction; ``visited`` and ``folders`` only
    grow while the pass runs and are compared against the persisted metadata
    by the reconciler afterwards.
    """

    exclude: frozenset[str] = frozenset()
    _visited: set[str] = field(default_factory=set, init=False, repr=False)
    _folders: set[str] = field(default_factory=set, init=False, repr=False)
    _errors: list[str] = field(default_factory=list, init=False, repr=False)

    @classmethod
    def from_exclusions(cls, urls: Iterable[str]) -> "CrawlTracker":
        exclude: set[str] = set()
        for u in urls:
            if not u.strip():
                continue
            try:
                exclude.add(normalize_url(u))
            except ValueError:
                # Unparseable entries can only match themselves.
                exclude.add(u.strip())
        return cls(exclude=frozenset(exclude))

    def mark_visited(self, url: str) -> None:
        self._visited.add(url)

    def is_visited(self, url: str) -> bool:
        return url in self._visited

    def is_excluded(self, url: str) -> bool:
        return url in self.exclude

    def touch_folder(self, path: Path) -> None:
        self._folders.add(str(path))

    def visited_count(self) -> int:
        return len(self._visited)

    def note_error(self, message: str) -> None:
        self._errors.append(message)

    @property
    def visited(self) -> frozenset[str]:
        return frozenset(self._visited)

    @property
    def folders(self) -> frozenset[str]:
        return frozenset(self._folders)

    @property
    def errors(self) -> list[str]:
        return list(self._errors)
