"""HTTP helper utilities with credential injection and linear retry/backoff."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import requests
from requests.structures import CaseInsensitiveDict

from planner_sync import config
from planner_sync.config import PlannerCredentials

LOGGER = logging.getLogger(__name__)

CredentialsSource = Union[PlannerCredentials, Callable[[], PlannerCredentials]]
RetryPredicate = Callable[[Exception], bool]

RETRYABLE_STATUS_CODES = frozenset({408, 429})


class HttpStatusError(RuntimeError):
    """Raised when the upstream API answers with a non-success status."""

    def __init__(self, status_code: int, body: str, *, response: Optional[requests.Response] = None) -> None:
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body
        self.response = response


def retry_everything(error: Exception) -> bool:
    return True


def retry_transient(error: Exception) -> bool:
    """Retry transport failures, timeouts, throttling and 5xx; give up on other statuses."""

    if isinstance(error, HttpStatusError):
        return error.status_code in RETRYABLE_STATUS_CODES or error.status_code >= 500
    return True


@dataclass
class RetryingFetcher:
    """Async HTTP client that injects credential headers and retries with linear backoff.

    Each attempt runs the blocking ``requests`` call in a worker thread and the
    delay between attempts is awaited, so one call backing off never stalls
    other coroutines.

    Without an injected *session* every call opens its own
    :class:`requests.Session` and closes it before returning, so concurrent
    calls never share one. An injected session is owned by the caller.
    """

    credentials: CredentialsSource = PlannerCredentials.from_env
    session: Optional[Any] = None
    timeout_seconds: float = config.REQUEST_TIMEOUT
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    should_retry: RetryPredicate = retry_everything

    def _resolve_credentials(self) -> PlannerCredentials:
        if isinstance(self.credentials, PlannerCredentials):
            return self.credentials
        return self.credentials()

    def _merge_headers(
        self, credentials: PlannerCredentials, headers: Optional[Mapping[str, str]]
    ) -> CaseInsensitiveDict:
        merged: CaseInsensitiveDict = CaseInsensitiveDict(headers or {})
        merged.update(credentials.headers())
        return merged

    async def fetch(
        self,
        url: str,
        options: Optional[Mapping[str, Any]] = None,
        retries: int = config.MAX_RETRIES,
        backoff_ms: float = config.RETRY_BACKOFF_MS,
    ) -> requests.Response:
        """Send a request to *url*, returning the first successful response.

        *options* may carry ``method``, ``headers``, ``body`` and any keyword
        accepted by :meth:`requests.Session.request`. *retries* is the total
        number of attempts. After failed attempt ``n`` the fetcher waits
        ``backoff_ms * n`` milliseconds. When every attempt fails, the error
        from the last attempt is raised.
        """

        if not url:
            raise ValueError("url must be a non-empty string")
        if retries < 1:
            raise ValueError("retries must be at least 1")

        request_kwargs = dict(options or {})
        method = str(request_kwargs.pop("method", "GET")).upper()
        caller_headers = request_kwargs.pop("headers", None)
        if "body" in request_kwargs:
            request_kwargs["data"] = request_kwargs.pop("body")
        request_kwargs.setdefault("timeout", self.timeout_seconds)
        headers = self._merge_headers(self._resolve_credentials(), caller_headers)

        if self.session is not None:
            return await self._attempt_all(self.session, method, url, headers, request_kwargs, retries, backoff_ms)
        with requests.Session() as session:
            return await self._attempt_all(session, method, url, headers, request_kwargs, retries, backoff_ms)

    async def _attempt_all(
        self,
        session: Any,
        method: str,
        url: str,
        headers: CaseInsensitiveDict,
        request_kwargs: Mapping[str, Any],
        retries: int,
        backoff_ms: float,
    ) -> requests.Response:
        last_error: Optional[Exception] = None
        for attempt in range(1, retries + 1):
            try:
                LOGGER.debug("%s %s (attempt %s/%s)", method, url, attempt, retries)
                response = await asyncio.to_thread(
                    session.request,
                    method,
                    url,
                    headers=headers,
                    **request_kwargs,
                )
                if not response.ok:
                    raise HttpStatusError(response.status_code, response.text, response=response)
                return response
            except (requests.RequestException, HttpStatusError) as exc:
                last_error = exc
                LOGGER.warning("Request to %s failed (attempt %s/%s): %s", url, attempt, retries, exc)
                if attempt == retries or not self.should_retry(exc):
                    break
                await self.sleep(backoff_ms * attempt / 1000)
        assert last_error is not None
        raise last_error


FETCHER = RetryingFetcher()


async def fetch_with_retry(
    url: str,
    options: Optional[Mapping[str, Any]] = None,
    retries: int = config.MAX_RETRIES,
    backoff_ms: float = config.RETRY_BACKOFF_MS,
    *,
    credentials: Optional[CredentialsSource] = None,
    session: Optional[Any] = None,
) -> requests.Response:
    """Fetch *url* with the shared fetcher, or a one-off one when overrides are given."""

    fetcher = FETCHER
    if credentials is not None or session is not None:
        fetcher = RetryingFetcher(
            credentials=credentials or FETCHER.credentials,
            session=session or FETCHER.session,
        )
    return await fetcher.fetch(url, options, retries=retries, backoff_ms=backoff_ms)
