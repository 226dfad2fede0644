"""Root test configuration for the CodeSent scan client.

Isolates every test from the developer's machine:
  - CODESENT_* environment variables are cleared
  - config search paths point into tmp_path, so ~/.codesent/config.yaml is never read
  - logging is reset to the defaults after each test

Provides ``FakeBackend``, an in-process CodeSent API built on
httpx.MockTransport that records every request and answers each of the four
endpoints from configurable canned responses.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator, Optional

import httpx
import pytest

from codesent.client import CodeSentClient
from codesent.utils.logger import clear_scan_id, configure_logging

BASE_URL = "https://codesent.test/api/scan/v1"
API_KEY = "cs-test-key-0123456789"
REPORT_URL = "https://codesent.io/report/abc123"


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    for name in (
        "CODESENT_API_KEY",
        "CODESENT_CONFIG",
        "CODESENT_BASE_URL",
        "CODESENT_POLL_INTERVAL",
        "CODESENT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "codesent.config.DEFAULT_CONFIG_PATHS",
        [str(tmp_path / "no-such-dir" / "config.yaml")],
    )
    yield
    clear_scan_id()
    configure_logging()


def _step_of(request: httpx.Request) -> str:
    return request.url.path.rstrip("/").rsplit("/", 1)[-1]


class FakeBackend:
    """Mock CodeSent API that records received requests.

    ``statuses`` is consumed one value per status request; the last value
    repeats once the list is exhausted.
    ``failures`` maps a step name ("upload", "validate", "status", "results")
    to ``(status_code, json_body_or_None)``; ``raise_on`` maps a step to an
    exception raised instead of answering.
    """

    def __init__(
        self,
        *,
        proxy_uuid: str = "P1",
        task_uuid: str = "T1",
        statuses: Optional[list[str]] = None,
        report_url: str = REPORT_URL,
    ) -> None:
        self.proxy_uuid = proxy_uuid
        self.task_uuid = task_uuid
        self.statuses = list(statuses or ["done"])
        self.report_url = report_url
        self.failures: dict[str, tuple[int, Any]] = {}
        self.raise_on: dict[str, Exception] = {}
        self.overrides: dict[str, httpx.Response] = {}
        self.received_requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.received_requests.append(request)
        step = _step_of(request)
        if step in self.raise_on:
            raise self.raise_on[step]
        if step in self.overrides:
            return self.overrides[step]
        if step in self.failures:
            status_code, body = self.failures[step]
            if body is None:
                return httpx.Response(status_code, content=b"")
            return httpx.Response(status_code, json=body)

        if step == "upload":
            return httpx.Response(200, json={"proxy_uuid": self.proxy_uuid})
        if step == "validate":
            return httpx.Response(200, json={"task_uuid": self.task_uuid})
        if step == "status":
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return httpx.Response(200, json={"status": status})
        if step == "results":
            return httpx.Response(
                200,
                json={
                    "online_report": self.report_url,
                    "issues": [{"id": "PV-001", "severity": "high"}],
                },
            )
        return httpx.Response(404, json={"error": f"no route for {request.url.path}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def client(self, api_key: str = API_KEY, base_url: str = BASE_URL) -> CodeSentClient:
        return CodeSentClient(api_key, base_url, http_client=self.http_client())

    def calls(self, step: str) -> int:
        return sum(1 for r in self.received_requests if _step_of(r) == step)

    @property
    def steps(self) -> list[str]:
        return [_step_of(r) for r in self.received_requests]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def proxy_dir(tmp_path: Path) -> Path:
    """A small Apigee proxy bundle on disk."""
    root = tmp_path / "proxy"
    (root / "apiproxy" / "policies").mkdir(parents=True)
    (root / "apiproxy" / "proxies").mkdir(parents=True)
    (root / "apiproxy" / "orders-v1.xml").write_text("<APIProxy name='orders-v1'/>")
    (root / "apiproxy" / "policies" / "AM-SetHeader.xml").write_text("<AssignMessage/>")
    (root / "apiproxy" / "proxies" / "default.xml").write_text("<ProxyEndpoint/>")
    (root / "README.md").write_text(json.dumps({"owner": "platform"}))
    return root


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
