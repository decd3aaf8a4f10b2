from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import ParseResult, urlparse, urlunparse

_TRACKING_QUERY_EXACT = {"agt=index"}


def normalize_url(raw_url: str) -> str:
    """Normalize a URL into the identifier used for pages, PDFs and exclusions.

    - Lowercases scheme + host.
    - Strips fragments.
    - Drops trivial tracking query params known to create duplicates.
    - Maps an empty path to ``/`` so ``http://a.test`` and ``http://a.test/``
      are the same page.
    """

    parsed: ParseResult = urlparse(raw_url.strip())
    scheme = (parsed.scheme or "").lower()
    netloc = (parsed.netloc or "").lower()

    query = parsed.query
    if query.strip().lower() in _TRACKING_QUERY_EXACT:
        query = ""

    path = parsed.path
    if netloc and not path:
        path = "/"

    parsed = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=path,
        fragment="",
        query=query,
    )
    return urlunparse(parsed)


def is_pdf_url(url: str) -> bool:
    return urlparse(url).path.lower().endswith(".pdf")


def url_host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


@dataclass(frozen=True)
class HostScope:
    """Same-host traversal boundary for one seed."""

    seed_netloc: str

    @classmethod
    def for_seed(cls, seed_url: str) -> "HostScope":
        return cls(seed_netloc=(urlparse(seed_url).netloc or "").lower())

    def is_followable(self, url: str) -> bool:
        netloc = (urlparse(url).netloc or "").lower()
        return not netloc or netloc == self.seed_netloc
