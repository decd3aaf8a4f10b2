from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

import requests
from requests import exceptions as req_exc

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


class FetchError(RuntimeError):
    """A request failed for good: retries exhausted or a non-2xx answer."""


def _retry_after_seconds(headers: dict[str, str]) -> float | None:
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_s: float = 0.5
    # 1.0 keeps the delay fixed; 2.0 doubles it after every attempt.
    backoff: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.delay_s * (self.backoff**attempt)


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    headers: dict[str, str]
    fetched_at: float
    body: bytes

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""


class HttpClient:
    def __init__(
        self,
        session: requests.Session,
        *,
        timeout_s: int = 45,
        retry: RetryPolicy | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._session = session
        self._timeout_s = timeout_s
        self._retry = retry or RetryPolicy()
        self._headers = dict(headers or {})

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        headers = {**self._headers, **(kwargs.pop("headers", None) or {})}
        last_error: Exception | None = None
        attempts = max(1, self._retry.max_attempts)

        for attempt in range(attempts):
            is_last = attempt + 1 >= attempts
            try:
                resp = self._session.request(
                    method, url, timeout=self._timeout_s, headers=headers, **kwargs
                )
            except req_exc.RequestException as e:
                last_error = e
                if is_last:
                    break
                time.sleep(self._retry.delay_for(attempt))
                continue

            if resp.status_code in TRANSIENT_HTTP_STATUSES and not is_last:
                retry_after = _retry_after_seconds(dict(resp.headers))
                resp.close()
                wait_s = (
                    retry_after
                    if retry_after is not None
                    else self._retry.delay_for(attempt)
                )
                time.sleep(wait_s)
                continue

            return resp

        raise FetchError(
            f"{method} {url} failed after {attempts} attempts: {last_error}"
        )

    def get(self, url: str, *, headers: dict[str, str] | None = None) -> FetchResult:
        resp = self._request("GET", url, headers=headers)
        # Callers decide what a non-2xx status means for them.
        return FetchResult(
            url=url,
            final_url=str(resp.url),
            status_code=int(resp.status_code),
            headers={k: str(v) for k, v in resp.headers.items()},
            fetched_at=time.time(),
            body=resp.content,
        )

    def _json_body(self, resp: requests.Response, url: str) -> dict[str, Any]:
        if not is_success(resp.status_code):
            raise FetchError(f"{url} answered HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            payload = resp.json()
        except (ValueError, json.JSONDecodeError) as e:
            raise FetchError(f"{url} did not return JSON: {e}") from e
        if not isinstance(payload, dict):
            raise FetchError(f"{url} returned {type(payload).__name__}, not an object")
        return payload

    def get_json(
        self, url: str, *, headers: dict[str, str] | None = None
    ) -> dict[str, Any]:
        resp = self._request("GET", url, headers=headers)
        return self._json_body(resp, url)

    def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        resp = self._request("POST", url, json=payload, headers=headers)
        return self._json_body(resp, url)

    def open_stream(self, url: str) -> requests.Response:
        """GET with a streamed body. Non-2xx closes the response and raises."""

        resp = self._request("GET", url, stream=True)
        if not is_success(resp.status_code):
            resp.close()
            raise FetchError(f"{url} answered HTTP {resp.status_code}")
        return resp
