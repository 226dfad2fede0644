"""Report sinks: where the finished scan's report URL goes.

The workflow does not decide how a report is shown. It hands the ScanResult to
a ``ReportSink``; the CLI picks one from ``report.sink`` in config:

    print    — PrintReportSink: write the URL to stdout (default)
    browser  — BrowserReportSink: open the URL in the system browser
    viewer   — ViewerReportSink: write a local HTML page that embeds the report
               in a full-window iframe, then open that page
    none     — NullReportSink: discard (library use, tests)
"""

from __future__ import annotations

import html
import re
import sys
import tempfile
import webbrowser
from pathlib import Path
from typing import Callable, Optional, Protocol, TextIO, runtime_checkable

from codesent.models import ScanResult
from codesent.utils.logger import get_logger

logger = get_logger(__name__)

VIEWER_TITLE = "SAST Report"

# characters allowed in the viewer page filename; anything else becomes "_"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")

_VIEWER_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{title}</title>
    <style>
        body, html {{
            margin: 0;
            padding: 0;
            height: 100%;
            width: 100%;
        }}
        iframe {{
            border: none;
            width: 100%;
            height: 100%;
        }}
    </style>
</head>
<body>
    <iframe src="{url}"></iframe>
</body>
</html>
"""


# ─── ReportSink Protocol ──────────────────────────────────────────────────────


@runtime_checkable
class ReportSink(Protocol):
    """Receives the final result of a successful scan."""

    def present(self, result: ScanResult) -> None:
        ...


# ─── Implementations ──────────────────────────────────────────────────────────


class PrintReportSink:
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def present(self, result: ScanResult) -> None:
        stream = self._stream or sys.stdout
        print(result.online_report, file=stream)


class BrowserReportSink:
    """Open the report URL with the ``webbrowser`` module."""

    def __init__(self, opener: Callable[[str], bool] = webbrowser.open) -> None:
        self._opener = opener

    def present(self, result: ScanResult) -> None:
        try:
            opened = self._opener(result.online_report)
        except webbrowser.Error:
            opened = False
        if not opened:
            logger.warning("browser_open_failed", report_url=result.online_report)
            print(result.online_report)


def render_viewer_page(report_url: str, title: str = VIEWER_TITLE) -> str:
    """Return the HTML page that embeds ``report_url`` in a full-window iframe."""
    return _VIEWER_TEMPLATE.format(
        title=html.escape(title),
        url=html.escape(report_url, quote=True),
    )


class ViewerReportSink:
    """Embed the report in a local HTML viewer page and open it.

    The page is written to ``output_dir`` (system temp dir by default) as
    ``sast-report-<task_uuid>.html`` with characters outside ``[A-Za-z0-9_-]``
    replaced by ``_``; the path is kept on ``last_path``.
    """

    def __init__(
        self,
        output_dir: Optional[Path] = None,
        opener: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        self._output_dir = output_dir
        self._opener = opener
        self.last_path: Optional[Path] = None

    def present(self, result: ScanResult) -> None:
        directory = self._output_dir or Path(tempfile.gettempdir())
        directory.mkdir(parents=True, exist_ok=True)
        safe_id = _UNSAFE_FILENAME_CHARS.sub("_", result.task_uuid) or "report"
        page = directory / f"sast-report-{safe_id}.html"
        page.write_text(render_viewer_page(result.online_report), encoding="utf-8")
        self.last_path = page
        logger.info("viewer_page_written", path=str(page))
        try:
            opened = self._opener(page.resolve().as_uri())
        except webbrowser.Error:
            opened = False
        if not opened:
            logger.warning("viewer_open_failed", path=str(page))
            print(result.online_report)


class NullReportSink:
    def present(self, result: ScanResult) -> None:
        logger.debug("NullReportSink.present", report_url=result.online_report)


# ─── Factory ──────────────────────────────────────────────────────────────────


def create_report_sink(name: str) -> ReportSink:
    """Return the sink registered under ``name``.

    Raises:
        ValueError: Unknown sink name.
    """
    if name == "print":
        return PrintReportSink()
    if name == "browser":
        return BrowserReportSink()
    if name == "viewer":
        return ViewerReportSink()
    if name == "none":
        return NullReportSink()
    raise ValueError(f"Unknown report sink: {name!r}")
