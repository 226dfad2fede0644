"""Async HTTP client for the CodeSent scan API.

Wraps the four endpoints of the fixed backend contract:

  POST {base}/upload                      multipart file=proxy.zip → proxy_uuid
  POST {base}/{proxy}/validate            empty body             → task_uuid
  POST {base}/{proxy}/{task}/status       empty body             → status
  POST {base}/{proxy}/{task}/results      empty body             → full JSON

Every call carries ``Authorization: Bearer <api key>``.

Failure mapping (identical for every step):
  - HTTP 200                     → parsed JSON body
  - HTTP 401                     → AuthError
  - any other status             → step-specific RemoteError subclass carrying the
                                   body's ``error`` field or "Unknown error"
  - httpx.TransportError         → NetworkError (connect, timeout, protocol errors)
  - 200 with non-JSON / bad body → step-specific RemoteError ("Malformed response")

There is no retry. The first failure propagates to the caller.
"""

from __future__ import annotations

from typing import Any, Optional, Type
from urllib.parse import quote

import httpx

from codesent.archive import ArchivePayload
from codesent.constants import (
    ARCHIVE_CONTENT_TYPE,
    ARCHIVE_FIELD_NAME,
    ARCHIVE_FILENAME,
    DEFAULT_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT_S,
    FIELD_ERROR,
    FIELD_ONLINE_REPORT,
    FIELD_PROXY_UUID,
    FIELD_STATUS,
    FIELD_TASK_UUID,
    UNKNOWN_ERROR_MESSAGE,
)
from codesent.errors import (
    AuthError,
    NetworkError,
    RemoteError,
    ResultsError,
    StatusCheckError,
    UploadError,
    ValidationInitError,
)
from codesent.models import ScanResult
from codesent.utils.logger import get_logger

logger = get_logger(__name__)

MALFORMED_RESPONSE_MESSAGE: str = "Malformed response"


# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


def create_http_client(timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S) -> httpx.AsyncClient:
    """Create the httpx.AsyncClient used for one scan session.

    Redirects are not followed: the API answers every endpoint directly, and a
    redirect would drop the Authorization header on a cross-host hop anyway.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=False,
    )


def _error_message(response: httpx.Response) -> str:
    """Return the server's ``error`` field, or "Unknown error"."""
    try:
        body = response.json()
    except ValueError:
        return UNKNOWN_ERROR_MESSAGE
    if isinstance(body, dict):
        message = body.get(FIELD_ERROR)
        if isinstance(message, str) and message:
            return message
    return UNKNOWN_ERROR_MESSAGE


def _segment(value: str) -> str:
    """Percent-encode a server-supplied id so it stays one path segment."""
    return quote(value, safe="")


def _require_str(body: dict[str, Any], key: str, error_cls: Type[RemoteError]) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value:
        raise error_cls(f"{MALFORMED_RESPONSE_MESSAGE}: missing '{key}'", 200)
    return value


# ─── Client ───────────────────────────────────────────────────────────────────


class CodeSentClient:
    """One authenticated session against the scan API.

    Use as an async context manager so the underlying connection pool is
    closed. An externally supplied ``http_client`` is NOT closed by this class.

    Example::

        async with CodeSentClient(api_key, base_url) as client:
            proxy_uuid = await client.upload(payload)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or create_http_client(timeout_s)

    def __repr__(self) -> str:
        # never expose the key
        return f"CodeSentClient(base_url={self.base_url!r})"

    async def __aenter__(self) -> "CodeSentClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def _post(
        self,
        path: str,
        error_cls: Type[RemoteError],
        **kwargs: Any,
    ) -> dict[str, Any]:
        """POST to ``{base_url}/{path}`` and return the JSON body of a 200 response."""
        url = f"{self.base_url}/{path}"
        try:
            response = await self._http.post(url, headers=self._auth_headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("request_transport_error", url=url, error=type(exc).__name__)
            raise NetworkError(f"{error_cls.step} failed: no response from {url} ({exc})") from exc

        if response.status_code == 401:
            logger.warning("request_unauthorized", url=url)
            raise AuthError()

        if response.status_code != 200:
            message = _error_message(response)
            logger.warning(
                "request_failed",
                url=url,
                status_code=response.status_code,
                server_message=message,
            )
            raise error_cls(message, response.status_code)

        try:
            body = response.json()
        except ValueError:
            raise error_cls(MALFORMED_RESPONSE_MESSAGE, response.status_code) from None
        if not isinstance(body, dict):
            raise error_cls(MALFORMED_RESPONSE_MESSAGE, response.status_code)
        return body

    # ── Endpoints ─────────────────────────────────────────────────────────────

    async def upload(self, payload: ArchivePayload) -> str:
        """Upload the zipped bundle. Returns the proxy UUID.

        Raises:
            AuthError, UploadError, NetworkError
        """
        with payload.open() as stream:
            files = {ARCHIVE_FIELD_NAME: (ARCHIVE_FILENAME, stream, ARCHIVE_CONTENT_TYPE)}
            body = await self._post("upload", UploadError, files=files)
        proxy_uuid = _require_str(body, FIELD_PROXY_UUID, UploadError)
        logger.info("upload_complete", proxy_uuid=proxy_uuid, size=payload.size)
        return proxy_uuid

    async def validate(self, proxy_uuid: str) -> str:
        """Start the analysis of an uploaded proxy. Returns the task UUID.

        Raises:
            AuthError, ValidationInitError, NetworkError
        """
        body = await self._post(f"{_segment(proxy_uuid)}/validate", ValidationInitError)
        task_uuid = _require_str(body, FIELD_TASK_UUID, ValidationInitError)
        logger.info("validation_started", proxy_uuid=proxy_uuid, task_uuid=task_uuid)
        return task_uuid

    async def check_status(self, proxy_uuid: str, task_uuid: str) -> str:
        """Return the raw status string of the analysis task.

        Raises:
            AuthError, StatusCheckError, NetworkError
        """
        path = f"{_segment(proxy_uuid)}/{_segment(task_uuid)}/status"
        body = await self._post(path, StatusCheckError)
        return _require_str(body, FIELD_STATUS, StatusCheckError)

    async def get_results(self, proxy_uuid: str, task_uuid: str) -> ScanResult:
        """Fetch the finished analysis. ``online_report`` must be present.

        Raises:
            AuthError, ResultsError, NetworkError
        """
        path = f"{_segment(proxy_uuid)}/{_segment(task_uuid)}/results"
        body = await self._post(path, ResultsError)
        report_url = _require_str(body, FIELD_ONLINE_REPORT, ResultsError)
        logger.info("results_retrieved", proxy_uuid=proxy_uuid, task_uuid=task_uuid)
        return ScanResult(
            online_report=report_url,
            proxy_uuid=proxy_uuid,
            task_uuid=task_uuid,
            raw=body,
        )
