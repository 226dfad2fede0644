"""ULID generation for scan correlation IDs.

Every ``Scanner.run()`` gets a fresh ULID that is bound to the logging context
and returned in ``ScanOutcome.scan_id``. It is a local tracing key only and is
never sent to the CodeSent API.

Uses the `python-ulid` library; do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: A 26-character ULID string, Crockford Base32 (``[0-9A-HJKMNP-TV-Z]``).
    """
    return str(ULID())
