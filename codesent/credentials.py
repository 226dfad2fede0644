"""API key storage.

The key is reached through a ``CredentialProvider`` instead of ambient global
state, so the CLI, an editor integration, or a CI job can each plug in their
own source:

  FileCredentialProvider   — secret store file, default ~/.codesent/credentials,
                             always written with mode 0600
  EnvCredentialProvider    — CODESENT_API_KEY; read-only
  MemoryCredentialProvider — in-process, for tests and embedding
  ChainCredentialProvider  — first provider with a key wins on get(); set() and
                             delete() go to the first writable provider

Selection via create_credential_provider() from ``credentials.store``.

Non-negotiables:
  - The key is NEVER logged, printed, or put in an exception message.
  - The store file is chmod 0600 on every write.
  - Plain-text ``api_key`` in config.yaml is not a provider (see config.py).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol, Sequence, runtime_checkable

from codesent.constants import CREDENTIALS_FILE_MODE, DEFAULT_CREDENTIALS_PATH, ENV_API_KEY
from codesent.errors import CredentialStoreError
from codesent.utils.logger import get_logger

if TYPE_CHECKING:
    from codesent.config import Config

logger = get_logger(__name__)


def _normalize(api_key: str) -> str:
    key = (api_key or "").strip()
    if not key:
        raise CredentialStoreError("API key must not be empty")
    if any(ch.isspace() for ch in key):
        raise CredentialStoreError("API key must not contain whitespace")
    return key


# ─── CredentialProvider Protocol ──────────────────────────────────────────────


@runtime_checkable
class CredentialProvider(Protocol):
    """Pluggable API key source."""

    writable: bool

    def get(self) -> Optional[str]:
        """Return the stored key, or None when nothing is stored."""
        ...

    def set(self, api_key: str) -> None:
        """Store ``api_key``, replacing any previous key."""
        ...

    def delete(self) -> None:
        """Remove the stored key. No-op when nothing is stored."""
        ...


# ─── Implementations ──────────────────────────────────────────────────────────


class MemoryCredentialProvider:
    writable = True

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._key = _normalize(api_key) if api_key is not None else None

    def get(self) -> Optional[str]:
        return self._key

    def set(self, api_key: str) -> None:
        self._key = _normalize(api_key)

    def delete(self) -> None:
        self._key = None


class EnvCredentialProvider:
    """Reads the key from an environment variable. Cannot store or delete."""

    writable = False

    def __init__(self, variable: str = ENV_API_KEY) -> None:
        self.variable = variable

    def get(self) -> Optional[str]:
        value = os.environ.get(self.variable, "").strip()
        return value or None

    def set(self, api_key: str) -> None:
        raise CredentialStoreError(
            f"Cannot store the API key in environment variable {self.variable}; "
            "export it in your shell instead"
        )

    def delete(self) -> None:
        raise CredentialStoreError(
            f"Cannot delete environment variable {self.variable}; unset it in your shell"
        )


class FileCredentialProvider:
    """Single-key secret store file, owner read/write only."""

    writable = True

    def __init__(self, path: str = DEFAULT_CREDENTIALS_PATH) -> None:
        self.path = Path(os.path.expanduser(path))

    def get(self) -> Optional[str]:
        try:
            value = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CredentialStoreError(f"Could not read {self.path}: {exc}") from exc
        return value or None

    def set(self, api_key: str) -> None:
        key = _normalize(api_key)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # create with 0600 so the key is never world-readable, even briefly
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CREDENTIALS_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(key + "\n")
            os.chmod(self.path, CREDENTIALS_FILE_MODE)
        except OSError as exc:
            raise CredentialStoreError(f"Could not write {self.path}: {exc}") from exc
        logger.info("api_key_stored", path=str(self.path))

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise CredentialStoreError(f"Could not delete {self.path}: {exc}") from exc
        logger.info("api_key_deleted", path=str(self.path))


class ChainCredentialProvider:
    def __init__(self, providers: Sequence[CredentialProvider]) -> None:
        if not providers:
            raise ValueError("ChainCredentialProvider needs at least one provider")
        self.providers = list(providers)

    @property
    def writable(self) -> bool:
        return any(p.writable for p in self.providers)

    def get(self) -> Optional[str]:
        for provider in self.providers:
            key = provider.get()
            if key:
                return key
        return None

    def _first_writable(self) -> CredentialProvider:
        for provider in self.providers:
            if provider.writable:
                return provider
        raise CredentialStoreError("No writable credential store configured")

    def set(self, api_key: str) -> None:
        self._first_writable().set(api_key)

    def delete(self) -> None:
        self._first_writable().delete()


# ─── Factory ──────────────────────────────────────────────────────────────────


def create_credential_provider(config: "Config") -> CredentialProvider:
    """Build the provider selected by ``config.credentials``.

      store = "file"  → FileCredentialProvider(credentials.path)
      store = "env"   → EnvCredentialProvider()
      store = "chain" → env first, then file (default); writes go to the file
    """
    credentials = config.credentials
    if credentials.store == "file":
        return FileCredentialProvider(credentials.path)
    if credentials.store == "env":
        return EnvCredentialProvider()
    return ChainCredentialProvider(
        [EnvCredentialProvider(), FileCredentialProvider(credentials.path)]
    )
