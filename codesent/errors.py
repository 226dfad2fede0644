"""Exception taxonomy for the CodeSent scan client.

Every failure raised by this package derives from ``CodeSentError``. Each class
carries a stable ``code`` string so callers (the CLI, an editor integration)
can branch on the failure kind without string matching.

Hierarchy::

    CodeSentError
      ArchiveError              — source dir unreadable / zip failed
      NetworkError              — no HTTP response at all
      AuthError                 — HTTP 401 at any step
      RemoteError               — non-200, non-401 response
        UploadError
        ValidationInitError
        StatusCheckError
        ResultsError
      ValidationFailedError     — remote analysis reported failed/error
      PollTimeoutError          — polling.max_attempts / max_duration exceeded
      ScanCancelledError        — cancel event set while polling
      ScanInProgressError       — second run() on a busy Scanner
      ReportError               — report sink could not present the result
      CredentialStoreError      — secret store read/write failure
      MissingCredentialError    — no API key configured

Messages NEVER include the API key.
"""

from __future__ import annotations

from typing import Optional


class CodeSentError(Exception):
    """Base class for all scan client failures."""

    code: str = "codesent_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ArchiveError(CodeSentError):
    """Raised when the source directory cannot be read or compressed."""

    code = "archive_error"


class NetworkError(CodeSentError):
    """Raised when a request produced no HTTP response (connect, timeout, protocol)."""

    code = "network_error"


class AuthError(CodeSentError):
    """Raised on HTTP 401 from any endpoint: the API key was rejected."""

    code = "auth_error"

    def __init__(self, message: str = "Invalid API key") -> None:
        super().__init__(message)


class RemoteError(CodeSentError):
    """Non-200 response from a pipeline step.

    ``server_message`` is the ``error`` field from the response body, or
    ``"Unknown error"`` when absent.
    """

    code = "remote_error"
    step: str = "Request"

    def __init__(self, server_message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{self.step} failed: {server_message}")
        self.server_message = server_message
        self.status_code = status_code


class UploadError(RemoteError):
    code = "upload_error"
    step = "File upload"


class ValidationInitError(RemoteError):
    code = "validation_init_error"
    step = "Validation initiation"


class StatusCheckError(RemoteError):
    code = "status_check_error"
    step = "Status check"


class ResultsError(RemoteError):
    code = "results_error"
    step = "Results retrieval"


class ValidationFailedError(CodeSentError):
    """The remote analysis finished with a failure status. Not a transport problem."""

    code = "validation_failed"

    def __init__(self, status: str) -> None:
        super().__init__(f"Validation completed with errors (status: {status})")
        self.status = status


class PollTimeoutError(CodeSentError):
    code = "poll_timeout"

    def __init__(self, attempts: int, elapsed_s: float) -> None:
        super().__init__(
            f"Validation did not finish after {attempts} status checks "
            f"({elapsed_s:.1f}s)"
        )
        self.attempts = attempts
        self.elapsed_s = elapsed_s


class ScanCancelledError(CodeSentError):
    code = "scan_cancelled"

    def __init__(self, message: str = "Scan cancelled") -> None:
        super().__init__(message)


class ScanInProgressError(CodeSentError):
    code = "scan_in_progress"

    def __init__(self, message: str = "A scan is already in progress") -> None:
        super().__init__(message)


class ReportError(CodeSentError):
    """Raised when the report sink fails after a successful scan."""

    code = "report_error"


class CredentialStoreError(CodeSentError):
    code = "credential_store_error"


class MissingCredentialError(CodeSentError):
    code = "missing_credential"

    def __init__(
        self,
        message: str = (
            "API key is not set. Run 'codesent set-key' or export CODESENT_API_KEY."
        ),
    ) -> None:
        super().__init__(message)
