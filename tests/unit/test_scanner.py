"""Unit tests for Scanner: step ordering, state transitions, abort and cleanup."""

from __future__ import annotations

import asyncio
import tempfile
import threading
from pathlib import Path
from typing import Any

import httpx
import pytest
from structlog.testing import capture_logs

import codesent.archive
from codesent.errors import (
    ArchiveError,
    AuthError,
    NetworkError,
    ReportError,
    ScanInProgressError,
    UploadError,
    ValidationFailedError,
    ValidationInitError,
)
from codesent.models import ProgressEvent, ScanResult, ScanState
from codesent.workflow import Scanner


class RecordingSink:
    def __init__(self) -> None:
        self.results: list[ScanResult] = []

    def present(self, result: ScanResult) -> None:
        self.results.append(result)


class FailingSink:
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc

    def present(self, result: ScanResult) -> None:
        raise self.exc


def _scanner(backend: Any, sleep: Any, **kwargs: Any) -> Scanner:
    return Scanner(
        "cs-key",
        "https://codesent.test/api/scan/v1",
        sleep=sleep,
        client_factory=backend.client,
        **kwargs,
    )


@pytest.fixture
def isolated_tempdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    temp_root = tmp_path / "tmp"
    temp_root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(temp_root))
    return temp_root


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_steps_run_in_order(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.statuses = ["running", "running", "done"]
        outcome = await _scanner(backend, sleep_recorder).run(proxy_dir)

        assert backend.steps == ["upload", "validate", "status", "status", "status", "results"]
        assert outcome.polls == 3
        assert sleep_recorder.delays == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_outcome_carries_report_and_identifiers(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.proxy_uuid = "P-42"
        backend.task_uuid = "T-7"
        outcome = await _scanner(backend, sleep_recorder).run(proxy_dir)

        assert outcome.report_url == backend.report_url
        assert outcome.result.proxy_uuid == "P-42"
        assert outcome.result.task_uuid == "T-7"
        assert outcome.state is ScanState.REPORTED
        assert len(outcome.scan_id) == 26
        assert outcome.elapsed_s >= 0

    @pytest.mark.asyncio
    async def test_identifiers_flow_into_later_paths(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.proxy_uuid = "P-42"
        backend.task_uuid = "T-7"
        await _scanner(backend, sleep_recorder).run(proxy_dir)

        paths = [r.url.path for r in backend.received_requests]
        assert paths == [
            "/api/scan/v1/upload",
            "/api/scan/v1/P-42/validate",
            "/api/scan/v1/P-42/T-7/status",
            "/api/scan/v1/P-42/T-7/results",
        ]

    @pytest.mark.asyncio
    async def test_sink_receives_result(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        sink = RecordingSink()
        await _scanner(backend, sleep_recorder, sink=sink).run(proxy_dir)

        assert [r.online_report for r in sink.results] == [backend.report_url]

    @pytest.mark.asyncio
    async def test_progress_follows_state_machine(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.statuses = ["running", "done"]
        events: list[ProgressEvent] = []
        await _scanner(backend, sleep_recorder, on_progress=events.append).run(proxy_dir)

        assert [e.state for e in events] == [
            ScanState.ARCHIVING,
            ScanState.UPLOADING,
            ScanState.UPLOADED,
            ScanState.VALIDATING,
            ScanState.VALIDATING,
            ScanState.COMPLETED,
            ScanState.REPORTED,
        ]
        assert events[0].message == "Zipping the proxy directory..."
        assert "Current status: running" in [e.message for e in events]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["file", "memory"])
    async def test_both_archive_modes_upload_the_bundle(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path, mode: str
    ) -> None:
        await _scanner(backend, sleep_recorder, archive_mode=mode).run(proxy_dir)

        upload = backend.received_requests[0].content
        assert b"apiproxy/proxies/default.xml" in upload


class TestAbort:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("step", ["upload", "validate", "status", "results"])
    async def test_401_at_any_step_stops_the_pipeline(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path, step: str
    ) -> None:
        backend.failures[step] = (401, {"error": "bad key"})
        scanner = _scanner(backend, sleep_recorder)

        with pytest.raises(AuthError):
            await scanner.run(proxy_dir)

        assert backend.steps[-1] == step
        assert scanner.state is ScanState.FAILED

    @pytest.mark.asyncio
    async def test_failed_status_never_calls_results(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.statuses = ["running", "failed"]
        sink = RecordingSink()

        with pytest.raises(ValidationFailedError):
            await _scanner(backend, sleep_recorder, sink=sink).run(proxy_dir)

        assert backend.calls("results") == 0
        assert sink.results == []

    @pytest.mark.asyncio
    async def test_upload_error_stops_before_validate(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.failures["upload"] = (413, {"error": "Bundle too large"})
        with pytest.raises(UploadError, match="Bundle too large"):
            await _scanner(backend, sleep_recorder).run(proxy_dir)
        assert backend.steps == ["upload"]

    @pytest.mark.asyncio
    async def test_validate_error(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.failures["validate"] = (500, None)
        with pytest.raises(ValidationInitError, match="Unknown error"):
            await _scanner(backend, sleep_recorder).run(proxy_dir)

    @pytest.mark.asyncio
    async def test_network_error(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        backend.raise_on["validate"] = httpx.ConnectError("offline")
        with pytest.raises(NetworkError):
            await _scanner(backend, sleep_recorder).run(proxy_dir)

    @pytest.mark.asyncio
    async def test_archive_error_makes_no_requests(
        self, backend: Any, sleep_recorder: Any, tmp_path: Path
    ) -> None:
        with pytest.raises(ArchiveError):
            await _scanner(backend, sleep_recorder).run(tmp_path / "missing")
        assert backend.received_requests == []


class TestArchiveCleanup:
    @pytest.mark.asyncio
    async def test_temp_archive_removed_after_success(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path, isolated_tempdir: Path
    ) -> None:
        await _scanner(backend, sleep_recorder).run(proxy_dir)
        assert list(isolated_tempdir.iterdir()) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("step", ["upload", "validate", "status", "results"])
    async def test_temp_archive_removed_after_failure(
        self,
        backend: Any,
        sleep_recorder: Any,
        proxy_dir: Path,
        isolated_tempdir: Path,
        step: str,
    ) -> None:
        backend.failures[step] = (500, {"error": "boom"})
        with pytest.raises(Exception):
            await _scanner(backend, sleep_recorder).run(proxy_dir)
        assert list(isolated_tempdir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_temp_archive_exists_during_upload(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path, isolated_tempdir: Path
    ) -> None:
        seen: list[list[Path]] = []
        real_handler = backend.handler

        def spying_handler(request: Any) -> Any:
            if request.url.path.endswith("/upload"):
                seen.append(list(isolated_tempdir.iterdir()))
            return real_handler(request)

        backend.handler = spying_handler
        await _scanner(backend, sleep_recorder).run(proxy_dir)

        assert len(seen) == 1 and len(seen[0]) == 1
        assert seen[0][0].name.startswith("codesent-")


class TestConcurrencyGuard:
    @pytest.mark.asyncio
    async def test_second_run_while_busy_is_rejected(
        self, backend: Any, proxy_dir: Path
    ) -> None:
        backend.statuses = ["running", "done"]
        release = asyncio.Event()

        async def gated_sleep(delay: float) -> None:
            await release.wait()

        scanner = _scanner(backend, gated_sleep)
        first = asyncio.create_task(scanner.run(proxy_dir))
        while not scanner.busy or backend.calls("status") == 0:
            await asyncio.sleep(0)

        with pytest.raises(ScanInProgressError):
            await scanner.run(proxy_dir)

        release.set()
        outcome = await first
        assert outcome.state is ScanState.REPORTED
        assert backend.calls("upload") == 1

    @pytest.mark.asyncio
    async def test_scanner_is_reusable_after_failure(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        scanner = _scanner(backend, sleep_recorder)
        backend.failures["upload"] = (500, {"error": "try later"})
        with pytest.raises(UploadError):
            await scanner.run(proxy_dir)

        del backend.failures["upload"]
        outcome = await scanner.run(proxy_dir)
        assert outcome.state is ScanState.REPORTED
        assert not scanner.busy


class TestUnexpectedFailures:
    @pytest.mark.asyncio
    async def test_sink_os_error_becomes_report_error(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        scanner = _scanner(backend, sleep_recorder, sink=FailingSink(OSError("disk full")))

        with capture_logs() as logs:
            with pytest.raises(ReportError) as exc_info:
                await scanner.run(proxy_dir)

        assert backend.report_url in exc_info.value.message
        assert "disk full" in exc_info.value.message
        assert scanner.state is ScanState.FAILED
        assert any(e["event"] == "scan_failed" for e in logs)

    @pytest.mark.asyncio
    async def test_non_codesent_error_still_marks_failed(
        self, backend: Any, sleep_recorder: Any, proxy_dir: Path
    ) -> None:
        scanner = _scanner(backend, sleep_recorder, sink=FailingSink(RuntimeError("sink bug")))

        with capture_logs() as logs:
            with pytest.raises(RuntimeError):
                await scanner.run(proxy_dir)

        assert scanner.state is ScanState.FAILED
        failed = [e for e in logs if e["event"] == "scan_failed"]
        assert failed and failed[0]["error_code"] == "RuntimeError"
        assert not scanner.busy

    @pytest.mark.asyncio
    async def test_task_cancellation_marks_failed(
        self, backend: Any, proxy_dir: Path
    ) -> None:
        backend.statuses = ["running"]
        waiting = asyncio.Event()

        async def blocking_sleep(delay: float) -> None:
            waiting.set()
            await asyncio.sleep(3600)

        scanner = _scanner(backend, blocking_sleep)
        task = asyncio.create_task(scanner.run(proxy_dir))
        await waiting.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert scanner.state is ScanState.FAILED

    def test_unknown_archive_mode_rejected_up_front(self, backend: Any, sleep_recorder: Any) -> None:
        with pytest.raises(ValueError, match="Unknown archive mode"):
            _scanner(backend, sleep_recorder, archive_mode="tape")


class TestArchiveOffLoop:
    @pytest.mark.asyncio
    async def test_zip_runs_in_worker_thread(
        self,
        backend: Any,
        sleep_recorder: Any,
        proxy_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        real_zip = codesent.archive.zip_directory
        threads: list[int] = []

        def recording_zip(source: Any, destination: Any) -> int:
            threads.append(threading.get_ident())
            return real_zip(source, destination)

        monkeypatch.setattr(codesent.archive, "zip_directory", recording_zip)
        await _scanner(backend, sleep_recorder).run(proxy_dir)

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()
