"""Data contracts shared by the client, the workflow and the report sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


class ScanState(str, Enum):
    """Pipeline position of a scan.

    IDLE → ARCHIVING → UPLOADING → UPLOADED → VALIDATING (self-loop while running)
         → COMPLETED → REPORTED, or FAILED from any step.
    """

    IDLE = "idle"
    ARCHIVING = "archiving"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    VALIDATING = "validating"
    COMPLETED = "completed"
    REPORTED = "reported"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ScanResult:
    """Payload returned by the results endpoint.

    Only ``online_report`` is interpreted; the rest of the body is kept
    verbatim in ``raw`` for callers that want it.
    """

    online_report: str
    proxy_uuid: str
    task_uuid: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScanOutcome:
    """What ``Scanner.run()`` hands back after a successful scan."""

    scan_id: str
    result: ScanResult
    state: ScanState
    polls: int
    elapsed_s: float

    @property
    def report_url(self) -> str:
        return self.result.online_report


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification emitted between pipeline steps."""

    state: ScanState
    message: str
    status: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], None]
