import io
import json
from typing import Any, Callable, List, Union

import pytest
import requests

from planner_sync.config import PlannerCredentials


def build_response(status: int, body: Union[str, dict] = "", *, url: str = "https://planner.test/api/v1") -> requests.Response:
    if isinstance(body, dict):
        body = json.dumps(body)
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.encoding = "utf-8"
    response.raw = io.BytesIO(body.encode("utf-8"))
    return response


class StubSession:
    """Replays canned responses or exceptions and records each request."""

    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    def request(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.outcomes:
            raise AssertionError(f"Unexpected request to {url}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def credentials() -> PlannerCredentials:
    return PlannerCredentials(api_key="secret-key", account_id="acct-42", api_url="https://planner.test/api/v1")


@pytest.fixture
def make_response() -> Callable[..., requests.Response]:
    return build_response


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def stub_session() -> Callable[[List[Any]], StubSession]:
    return StubSession
