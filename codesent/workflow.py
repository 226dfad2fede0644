"""Scan pipeline: archive → upload → validate → poll → fetch results → present.

The pipeline is strictly sequential inside one asyncio task. Suspension points
are the HTTP calls and the sleep between status polls; nothing runs in
parallel and no step is retried. Any step error aborts the scan immediately,
and the ephemeral archive is released on every exit path because it is owned
by the ``build_archive()`` context manager for the whole run.

Polling runs until the remote status is terminal. ``max_attempts`` and
``max_duration_s`` are opt-in bounds (None = poll forever), and an optional
``asyncio.Event`` acts as a cancel token between polls.
"""

from __future__ import annotations

import asyncio
import os
import time
from contextlib import ExitStack
from typing import Awaitable, Callable, Optional, Union

from codesent.archive import build_archive
from codesent.client import CodeSentClient
from codesent.constants import (
    ARCHIVE_MODES,
    DEFAULT_POLL_INTERVAL_S,
    FAILED_STATUSES,
    STATUS_DONE,
)
from codesent.errors import (
    CodeSentError,
    PollTimeoutError,
    ScanCancelledError,
    ReportError,
    ScanInProgressError,
    ValidationFailedError,
)
from codesent.models import (
    ProgressCallback,
    ProgressEvent,
    ScanOutcome,
    ScanResult,
    ScanState,
)
from codesent.sinks import ReportSink
from codesent.utils.logger import PerformanceLogger, clear_scan_id, get_logger, set_scan_id
from codesent.utils.ulid import generate_ulid

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def _now() -> float:
    return time.monotonic()


def _noop_progress(event: ProgressEvent) -> None:
    return None


async def _wait(
    delay: float,
    sleep: SleepFunc,
    cancel_event: Optional[asyncio.Event],
) -> None:
    """Sleep ``delay`` seconds, waking early if ``cancel_event`` is set."""
    if cancel_event is None:
        await sleep(delay)
        return
    sleeper = asyncio.ensure_future(sleep(delay))
    canceller = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, canceller):
            task.cancel()
        await asyncio.gather(sleeper, canceller, return_exceptions=True)
    if cancel_event.is_set():
        raise ScanCancelledError()


async def poll_until_complete(
    client: CodeSentClient,
    proxy_uuid: str,
    task_uuid: str,
    *,
    interval_s: float = DEFAULT_POLL_INTERVAL_S,
    max_attempts: Optional[int] = None,
    max_duration_s: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
    on_progress: ProgressCallback = _noop_progress,
    sleep: SleepFunc = asyncio.sleep,
) -> int:
    """Poll the status endpoint until the task reaches a terminal status.

    Status values are compared case-insensitively:
      - "done"              → return
      - "failed" / "error"  → ValidationFailedError
      - anything else       → report progress, sleep ``interval_s``, poll again

    Returns:
        Number of status requests performed.

    Raises:
        ValidationFailedError: Remote analysis reported failure.
        PollTimeoutError:      max_attempts or max_duration_s exceeded.
        ScanCancelledError:    ``cancel_event`` was set.
        AuthError, StatusCheckError, NetworkError: from the status request.
    """
    started = _now()
    attempts = 0

    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelledError()

        status = await client.check_status(proxy_uuid, task_uuid)
        attempts += 1
        normalized = status.lower()
        logger.debug("status_polled", task_uuid=task_uuid, status=status, attempt=attempts)

        if normalized == STATUS_DONE:
            return attempts
        if normalized in FAILED_STATUSES:
            raise ValidationFailedError(status)

        on_progress(
            ProgressEvent(ScanState.VALIDATING, f"Current status: {status}", status=status)
        )

        elapsed = _now() - started
        if max_attempts is not None and attempts >= max_attempts:
            raise PollTimeoutError(attempts, elapsed)
        if max_duration_s is not None and elapsed + interval_s > max_duration_s:
            raise PollTimeoutError(attempts, elapsed)

        await _wait(interval_s, sleep, cancel_event)


# ─── Scanner ──────────────────────────────────────────────────────────────────


class Scanner:
    """Runs the full scan pipeline for one credential and base URL.

    A Scanner runs one scan at a time; calling ``run()`` while a previous call
    is still in flight raises ScanInProgressError instead of queueing.

    ``client_factory`` returns the CodeSentClient for a run. Tests inject one
    bound to an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        timeout_s: Optional[float] = None,
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
        max_attempts: Optional[int] = None,
        max_duration_s: Optional[float] = None,
        archive_mode: str = "file",
        sink: Optional[ReportSink] = None,
        on_progress: ProgressCallback = _noop_progress,
        sleep: SleepFunc = asyncio.sleep,
        client_factory: Optional[Callable[[], CodeSentClient]] = None,
    ) -> None:
        if archive_mode not in ARCHIVE_MODES:
            raise ValueError(f"Unknown archive mode: {archive_mode!r}")
        self.base_url = base_url
        self.interval_s = interval_s
        self.max_attempts = max_attempts
        self.max_duration_s = max_duration_s
        self.archive_mode = archive_mode
        self.sink = sink
        self.state = ScanState.IDLE
        self._on_progress = on_progress
        self._sleep = sleep
        self._lock = asyncio.Lock()
        if client_factory is None:
            client_kwargs: dict[str, float] = {} if timeout_s is None else {"timeout_s": timeout_s}

            def _default_factory() -> CodeSentClient:
                return CodeSentClient(api_key, base_url, **client_kwargs)

            client_factory = _default_factory

        self._client_factory = client_factory

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _advance(self, state: ScanState, message: str) -> None:
        self.state = state
        self._on_progress(ProgressEvent(state, message))

    async def run(
        self,
        source: Union[str, os.PathLike],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScanOutcome:
        """Scan ``source`` end to end and hand the result to the report sink.

        Raises:
            ScanInProgressError: another run() on this Scanner has not finished.
            CodeSentError:       any step failure (see codesent.errors).
            ReportError:         the sink raised OSError; the message carries the URL.
        """
        if self._lock.locked():
            raise ScanInProgressError()

        async with self._lock:
            scan_id = generate_ulid()
            set_scan_id(scan_id)
            started = _now()
            self.state = ScanState.IDLE
            logger.info("scan_started", source=str(source), base_url=self.base_url)
            try:
                result, polls = await self._run_steps(source, cancel_event)
            except CodeSentError as exc:
                self.state = ScanState.FAILED
                logger.error("scan_failed", error_code=exc.code, error=exc.message)
                raise
            except BaseException as exc:
                self.state = ScanState.FAILED
                logger.error("scan_failed", error_code=type(exc).__name__, error=str(exc))
                raise
            finally:
                clear_scan_id()

            elapsed = _now() - started
            logger.info(
                "scan_completed",
                scan_id=scan_id,
                report_url=result.online_report,
                polls=polls,
                elapsed_s=round(elapsed, 3),
            )
            return ScanOutcome(
                scan_id=scan_id,
                result=result,
                state=self.state,
                polls=polls,
                elapsed_s=elapsed,
            )

    async def _run_steps(
        self,
        source: Union[str, os.PathLike],
        cancel_event: Optional[asyncio.Event],
    ) -> tuple[ScanResult, int]:
        with ExitStack() as stack:
            self._advance(ScanState.ARCHIVING, "Zipping the proxy directory...")
            loop = asyncio.get_running_loop()
            with PerformanceLogger("archive", logger):
                # zipping is blocking file I/O; keep it off the event loop
                payload = await loop.run_in_executor(
                    None,
                    stack.enter_context,
                    build_archive(source, mode=self.archive_mode),
                )

            async with self._client_factory() as client:
                self._advance(ScanState.UPLOADING, "Uploading ZIP file...")
                with PerformanceLogger("upload", logger):
                    proxy_uuid = await client.upload(payload)
                self._advance(ScanState.UPLOADED, "Initiating validation...")

                with PerformanceLogger("validate", logger):
                    task_uuid = await client.validate(proxy_uuid)
                self._advance(ScanState.VALIDATING, "Waiting for validation...")

                with PerformanceLogger("poll", logger):
                    polls = await poll_until_complete(
                        client,
                        proxy_uuid,
                        task_uuid,
                        interval_s=self.interval_s,
                        max_attempts=self.max_attempts,
                        max_duration_s=self.max_duration_s,
                        cancel_event=cancel_event,
                        on_progress=self._on_progress,
                        sleep=self._sleep,
                    )
                self._advance(ScanState.COMPLETED, "Retrieving validation results...")

                with PerformanceLogger("results", logger):
                    result = await client.get_results(proxy_uuid, task_uuid)

        if self.sink is not None:
            try:
                self.sink.present(result)
            except OSError as exc:
                raise ReportError(
                    f"Could not present report {result.online_report}: {exc}"
                ) from exc
        self._advance(ScanState.REPORTED, "SAST scan completed successfully.")
        return result, polls
