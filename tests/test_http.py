import asyncio

import pytest
import requests

from planner_sync.config import PlannerCredentials
from planner_sync.utils.http import (
    HttpStatusError,
    RetryingFetcher,
    fetch_with_retry,
    retry_transient,
)

URL = "https://planner.test/api/v1/purchase-orders"


def _fetcher(credentials, session, sleep, **kwargs) -> RetryingFetcher:
    return RetryingFetcher(credentials=credentials, session=session, sleep=sleep, **kwargs)


def test_first_attempt_success_returns_without_delay(credentials, make_response, stub_session, sleep) -> None:
    response = make_response(200, {"ok": True})
    session = stub_session([response])

    result = asyncio.run(_fetcher(credentials, session, sleep).fetch(URL))

    assert result is response
    assert len(session.calls) == 1
    assert sleep.delays == []
    assert session.calls[0]["method"] == "GET"


def test_success_leaves_body_unread(credentials, make_response, stub_session, sleep) -> None:
    response = make_response(200, {"ok": True})

    result = asyncio.run(_fetcher(credentials, stub_session([response]), sleep).fetch(URL))

    assert result._content_consumed is False
    assert result.json() == {"ok": True}


def test_recovers_after_transient_failures(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session(
        [
            make_response(500, "boom"),
            make_response(502, "bad gateway"),
            make_response(200, "{}"),
        ]
    )

    result = asyncio.run(_fetcher(credentials, session, sleep).fetch(URL))

    assert result.status_code == 200
    assert len(session.calls) == 3
    assert sleep.delays == [2.0, 4.0]


def test_exhaustion_raises_error_from_last_attempt(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session(
        [
            make_response(500, "first"),
            make_response(503, "second"),
            make_response(504, "third"),
        ]
    )

    with pytest.raises(HttpStatusError) as excinfo:
        asyncio.run(_fetcher(credentials, session, sleep).fetch(URL, retries=3))

    assert len(session.calls) == 3
    assert sleep.delays == [2.0, 4.0]
    assert excinfo.value.status_code == 504
    assert excinfo.value.body == "third"
    assert str(excinfo.value) == "HTTP 504: third"


def test_client_errors_are_retried_by_default(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session([make_response(400, "bad request"), make_response(200, "{}")])

    result = asyncio.run(_fetcher(credentials, session, sleep).fetch(URL))

    assert result.status_code == 200
    assert sleep.delays == [2.0]


def test_backoff_grows_linearly(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session([make_response(500, "nope") for _ in range(4)])

    with pytest.raises(HttpStatusError):
        asyncio.run(_fetcher(credentials, session, sleep).fetch(URL, retries=4, backoff_ms=1000))

    assert sleep.delays == [1.0, 2.0, 3.0]


def test_network_errors_follow_same_retry_path(credentials, stub_session, sleep) -> None:
    errors = [requests.ConnectionError(f"Name or service not known ({n})") for n in range(1, 4)]
    session = stub_session(list(errors))

    with pytest.raises(requests.ConnectionError) as excinfo:
        asyncio.run(_fetcher(credentials, session, sleep).fetch("https://unreachable.invalid/variants"))

    assert excinfo.value is errors[-1]
    assert len(session.calls) == 3
    assert sleep.delays == [2.0, 4.0]


def test_credential_headers_override_caller_headers(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session([make_response(200, "{}")])
    options = {
        "headers": {
            "authorization": "Bearer caller-token",
            "Account": "someone-else",
            "X-Request-Id": "abc123",
        }
    }

    asyncio.run(_fetcher(credentials, session, sleep).fetch(URL, options))

    sent = session.calls[0]["headers"]
    assert sent["Authorization"] == "secret-key"
    assert sent["Account"] == "acct-42"
    assert sent["Accept"] == "application/json"
    assert sent["Content-Type"] == "application/json"
    assert sent["X-Request-Id"] == "abc123"
    assert len([key for key in sent if key.lower() == "authorization"]) == 1


def test_credentials_are_resolved_on_every_call(make_response, stub_session, sleep) -> None:
    keys = iter(["key-1", "key-2"])

    def provider() -> PlannerCredentials:
        return PlannerCredentials(api_key=next(keys), account_id="acct")

    session = stub_session([make_response(200, "{}"), make_response(200, "{}")])
    fetcher = _fetcher(provider, session, sleep)

    asyncio.run(fetcher.fetch(URL))
    asyncio.run(fetcher.fetch(URL))

    assert [call["headers"]["Authorization"] for call in session.calls] == ["key-1", "key-2"]


def test_options_are_forwarded_to_transport(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session([make_response(201, "{}")])
    options = {"method": "post", "body": '{"sku": "A-1"}', "params": {"page": "0"}}

    asyncio.run(_fetcher(credentials, session, sleep, timeout_seconds=7).fetch(URL, options))

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["data"] == '{"sku": "A-1"}'
    assert call["params"] == {"page": "0"}
    assert call["timeout"] == 7
    assert "body" not in call


def test_stricter_policy_stops_on_client_error(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session([make_response(404, "missing")])
    fetcher = _fetcher(credentials, session, sleep, should_retry=retry_transient)

    with pytest.raises(HttpStatusError) as excinfo:
        asyncio.run(fetcher.fetch(URL))

    assert excinfo.value.status_code == 404
    assert len(session.calls) == 1
    assert sleep.delays == []


def test_stricter_policy_still_retries_throttling(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session([make_response(429, "slow down"), make_response(200, "{}")])
    fetcher = _fetcher(credentials, session, sleep, should_retry=retry_transient)

    result = asyncio.run(fetcher.fetch(URL))

    assert result.status_code == 200
    assert sleep.delays == [2.0]


def test_retry_transient_classification() -> None:
    assert retry_transient(requests.Timeout("slow"))
    assert retry_transient(HttpStatusError(500, ""))
    assert retry_transient(HttpStatusError(408, ""))
    assert not retry_transient(HttpStatusError(401, ""))


@pytest.mark.parametrize("url, retries", [("", 3), (URL, 0)])
def test_invalid_arguments_rejected_before_any_request(credentials, stub_session, sleep, url, retries) -> None:
    session = stub_session([])

    with pytest.raises(ValueError):
        asyncio.run(_fetcher(credentials, session, sleep).fetch(url, retries=retries))

    assert session.calls == []


def test_backoff_does_not_block_concurrent_calls(credentials, make_response, stub_session) -> None:
    order: list[str] = []

    async def slow_sleep(seconds: float) -> None:
        order.append("backoff-start")
        await asyncio.sleep(0.2)
        order.append("backoff-end")

    failing = RetryingFetcher(
        credentials=credentials,
        session=stub_session([make_response(500, "x"), make_response(200, "{}")]),
        sleep=slow_sleep,
    )
    healthy = RetryingFetcher(credentials=credentials, session=stub_session([make_response(200, "{}")]))

    async def run_healthy():
        await asyncio.sleep(0.01)
        result = await healthy.fetch(URL)
        order.append("healthy-done")
        return result

    async def main():
        return await asyncio.gather(failing.fetch(URL), run_healthy())

    first, second = asyncio.run(main())

    assert first.status_code == 200
    assert second.status_code == 200
    assert order.index("healthy-done") < order.index("backoff-end")


def test_fetch_with_retry_accepts_overrides(credentials, make_response, stub_session) -> None:
    session = stub_session([make_response(200, "{}")])

    result = asyncio.run(fetch_with_retry(URL, credentials=credentials, session=session))

    assert result.status_code == 200
    assert session.calls[0]["headers"]["Account"] == "acct-42"


class ClosingSession:
    """Stands in for ``requests.Session`` and records whether it was closed."""

    created: list = []
    response = None

    def __init__(self) -> None:
        self.closed = False
        self.calls: list[dict] = []
        ClosingSession.created.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.closed = True

    def request(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        return ClosingSession.response


def test_each_call_uses_its_own_closed_session(credentials, make_response, monkeypatch) -> None:
    ClosingSession.created = []
    ClosingSession.response = make_response(200, "{}")
    monkeypatch.setattr(requests, "Session", ClosingSession)
    fetcher = RetryingFetcher(credentials=credentials)

    async def main():
        return await asyncio.gather(*(fetcher.fetch(URL) for _ in range(3)))

    results = asyncio.run(main())

    assert [result.status_code for result in results] == [200, 200, 200]
    assert len(ClosingSession.created) == 3
    assert all(len(session.calls) == 1 for session in ClosingSession.created)
    assert all(session.closed for session in ClosingSession.created)
    assert fetcher.session is None


def test_per_call_session_is_closed_after_exhaustion(credentials, monkeypatch, sleep) -> None:
    ClosingSession.created = []

    class FailingSession(ClosingSession):
        def request(self, method: str, url: str, **kwargs):
            raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "Session", FailingSession)
    fetcher = RetryingFetcher(credentials=credentials, sleep=sleep)

    with pytest.raises(requests.ConnectionError):
        asyncio.run(fetcher.fetch(URL, retries=2))

    assert len(ClosingSession.created) == 1
    assert ClosingSession.created[0].closed


def test_injected_session_is_left_open(credentials, make_response, stub_session, sleep) -> None:
    session = stub_session([make_response(200, "{}")])
    session.close = lambda: pytest.fail("caller-owned session was closed")

    asyncio.run(_fetcher(credentials, session, sleep).fetch(URL))

    assert len(session.calls) == 1
