from __future__ import annotations

from typing import Protocol

import requests

from comic_sync.core.errors import TransientFetchError
from comic_sync.core.models import RequestSpec
from comic_sync.http.policies import RetryPolicy, backoff_sleep
from comic_sync.http.response import HttpResponse
from comic_sync.utils.logging import get_logger

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ComicSync/0.1)"


class HttpClient(Protocol):
    """Protocol for HTTP clients."""

    def send(self, req: RequestSpec) -> HttpResponse: ...


class RequestsHttpClient:
    """
    HTTP client using the requests library.

    This is the single place where retries and backoff happen. Adapters see
    either a response (possibly a non-2xx one once retries are exhausted) or a
    TransientFetchError.
    """

    def __init__(
        self,
        timeout_s: int = 30,
        retry: RetryPolicy | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.session = requests.Session()
        self.session.headers["User-Agent"] = user_agent
        self.timeout_s = timeout_s
        self.retry = retry or RetryPolicy()
        self.log = get_logger("comic_sync.http")

    def send(self, req: RequestSpec) -> HttpResponse:
        """Send an HTTP request with retry logic."""
        for attempt in range(self.retry.max_attempts):
            try:
                r = self.session.request(
                    method=req.method,
                    url=req.url,
                    headers=req.headers,
                    params=req.params,
                    timeout=self.timeout_s,
                )
            except requests.RequestException as e:
                if attempt < self.retry.max_attempts - 1:
                    self.log.warning("Retrying %s (exception=%s, attempt=%s)", req.url, type(e).__name__, attempt + 1)
                    backoff_sleep(self.retry, attempt)
                    continue
                raise TransientFetchError(f"{req.method} {req.url} failed: {type(e).__name__}") from e

            ct = r.headers.get("Content-Type", "")
            # If charset not specified, force utf-8 for HTML-ish content
            if "charset=" not in ct.lower() and ("html" in ct.lower() or "xml" in ct.lower() or "text/plain" in ct.lower()):
                r.encoding = "utf-8"

            resp = HttpResponse(url=r.url or req.url, status_code=r.status_code, headers=dict(r.headers), text=r.text)

            if resp.status_code in self.retry.retry_statuses and attempt < self.retry.max_attempts - 1:
                self.log.warning("Retrying %s (status=%s, attempt=%s)", req.url, resp.status_code, attempt + 1)
                backoff_sleep(self.retry, attempt)
                continue

            return resp

        raise TransientFetchError(f"{req.method} {req.url} failed: retry policy allows no attempts")

    def close(self) -> None:
        self.session.close()
