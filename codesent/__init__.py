"""CodeSent scan client.

Packages an Apigee API proxy directory, submits it to the CodeSent SAST
service, waits for the analysis and surfaces the report URL.

    from codesent import Scanner

    outcome = await Scanner(api_key, base_url).run("./apiproxy-root")
    print(outcome.report_url)

Layout:
    archive.py     — zip packaging of the source directory
    client.py      — CodeSentClient (httpx) for the four API endpoints
    workflow.py    — poll_until_complete() + Scanner pipeline
    credentials.py — CredentialProvider implementations
    sinks.py       — ReportSink implementations
    config.py      — YAML config loading
    cli.py         — `codesent` command
"""

from codesent.client import CodeSentClient
from codesent.errors import CodeSentError
from codesent.models import ScanOutcome, ScanResult, ScanState
from codesent.workflow import Scanner, poll_until_complete

__version__ = "0.1.0"

__all__ = [
    "CodeSentClient",
    "CodeSentError",
    "ScanOutcome",
    "ScanResult",
    "ScanState",
    "Scanner",
    "poll_until_complete",
    "__version__",
]
