"""Zip packaging of a proxy bundle directory.

``zip_directory()`` writes every regular file under the source directory into a
zip stream with POSIX paths relative to the source root: no enclosing folder
entry, no directory entries, sorted member order.

``build_archive()`` wraps that in a context manager that owns the ephemeral
archive (temp file or in-memory buffer) and releases it on every exit path,
including when the caller's block raises.
"""

from __future__ import annotations

import io
import os
import tempfile
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from codesent.constants import ARCHIVE_COMPRESS_LEVEL, ARCHIVE_TEMP_PREFIX
from codesent.errors import ArchiveError
from codesent.utils.logger import get_logger

logger = get_logger(__name__)

Destination = Union[str, os.PathLike, BinaryIO]


@dataclass(frozen=True)
class ArchivePayload:
    """The zipped bundle handed to the uploader.

    Exactly one of ``path`` / ``data`` is set depending on the archive mode.
    """

    path: Optional[Path] = None
    data: Optional[bytes] = None
    file_count: int = 0

    @property
    def size(self) -> int:
        if self.data is not None:
            return len(self.data)
        if self.path is not None:
            return self.path.stat().st_size
        return 0

    def open(self) -> BinaryIO:
        """Return a fresh binary stream positioned at the start of the archive."""
        if self.data is not None:
            return io.BytesIO(self.data)
        if self.path is not None:
            return open(self.path, "rb")
        raise ArchiveError("Archive payload is empty")


def iter_source_files(source: Path) -> Iterator[tuple[Path, str]]:
    """Yield ``(absolute_path, archive_name)`` for every file under ``source``.

    Walk order is sorted so the same tree always produces the same member list.
    Directory symlinks are not followed.
    """

    def _raise(exc: OSError) -> None:
        raise exc

    for dirpath, dirnames, filenames in os.walk(source, onerror=_raise):
        dirnames.sort()
        current = Path(dirpath)
        for name in sorted(filenames):
            file_path = current / name
            if not file_path.is_file():
                # dangling symlinks, sockets, fifos
                continue
            yield file_path, file_path.relative_to(source).as_posix()


def zip_directory(source: Union[str, os.PathLike], destination: Destination) -> int:
    """Compress the contents of ``source`` into ``destination``.

    Args:
        source:      Directory to package.
        destination: Output file path, or a writable binary stream.

    Returns:
        Number of files written to the archive.

    Raises:
        ArchiveError: ``source`` is missing, not a directory, unreadable, or
                      compression failed.
    """
    root = Path(source).expanduser()
    if not root.exists():
        raise ArchiveError(f"Source directory does not exist: {root}")
    if not root.is_dir():
        raise ArchiveError(f"Source path is not a directory: {root}")
    root = root.resolve()

    count = 0
    try:
        with zipfile.ZipFile(
            destination,  # type: ignore[arg-type]
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=ARCHIVE_COMPRESS_LEVEL,
        ) as zf:
            for file_path, arcname in iter_source_files(root):
                zf.write(file_path, arcname=arcname)
                count += 1
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as exc:
        raise ArchiveError(f"Failed to archive {root}: {exc}") from exc

    logger.debug("archive_written", source=str(root), file_count=count)
    return count


@contextmanager
def build_archive(
    source: Union[str, os.PathLike],
    mode: str = "file",
) -> Iterator[ArchivePayload]:
    """Zip ``source`` and yield the payload; release it when the block exits.

    mode="file":   archive lives in a NamedTemporaryFile-style path under the
                   system temp dir and is unlinked on exit.
    mode="memory": archive lives in a bytes buffer.

    Raises:
        ArchiveError: On any packaging failure. No partial temp file is left behind.
        ValueError:   Unknown mode.
    """
    if mode == "memory":
        buffer = io.BytesIO()
        count = zip_directory(source, buffer)
        try:
            yield ArchivePayload(data=buffer.getvalue(), file_count=count)
        finally:
            buffer.close()
        return

    if mode != "file":
        raise ValueError(f"Unknown archive mode: {mode!r}")

    try:
        fd, temp_name = tempfile.mkstemp(prefix=ARCHIVE_TEMP_PREFIX, suffix=".zip")
    except OSError as exc:
        raise ArchiveError(f"Failed to archive {source}: {exc}") from exc
    temp_path = Path(temp_name)
    try:
        try:
            with os.fdopen(fd, "wb") as fh:
                count = zip_directory(source, fh)
        except OSError as exc:
            raise ArchiveError(f"Failed to archive {source}: {exc}") from exc
        yield ArchivePayload(path=temp_path, file_count=count)
    finally:
        temp_path.unlink(missing_ok=True)
        logger.debug("archive_released", path=str(temp_path))
