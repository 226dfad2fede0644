"""Config loading for the CodeSent scan client.

Reads `.codesent/config.yaml` (or `~/.codesent/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided, for tests or an explicit override)
  2. CODESENT_CONFIG environment variable (if set)
  3. `.codesent/config.yaml` (working directory, per-project settings)
  4. `~/.codesent/config.yaml` (home directory, per-user settings)

Environment variable overrides:
  CODESENT_BASE_URL      — overrides api.base_url
  CODESENT_POLL_INTERVAL — overrides polling.interval_s (float, > 0)
  CODESENT_LOG_LEVEL     — overrides logging.level
  CODESENT_CONFIG        — sets an explicit config file path to try first

A plain-text ``api_key`` in the config file is NOT supported. It is ignored and
a warning is logged; store the key with ``codesent set-key`` instead.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from codesent.constants import (
    ARCHIVE_MODES,
    DEFAULT_BASE_URL,
    DEFAULT_CREDENTIALS_PATH,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_REQUEST_TIMEOUT_S,
)
from codesent.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_ARCHIVE_MODES: frozenset[str] = ARCHIVE_MODES
VALID_REPORT_SINKS: frozenset[str] = frozenset({"print", "browser", "viewer", "none"})
VALID_CREDENTIAL_STORES: frozenset[str] = frozenset({"file", "env", "chain"})
VALID_LOG_LEVELS: frozenset[str] = frozenset(
    {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
)

# Default config search paths (CODESENT_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".codesent/config.yaml",
    os.path.expanduser("~/.codesent/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ApiConfig:
    """Remote API location and per-request timeout."""

    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S


@dataclass
class PollingConfig:
    """Status poll loop settings.

    max_attempts / max_duration_s default to None: poll until the remote job
    reaches a terminal status, however long that takes.
    """

    interval_s: float = DEFAULT_POLL_INTERVAL_S
    max_attempts: Optional[int] = None
    max_duration_s: Optional[float] = None


@dataclass
class ArchiveConfig:
    mode: str = "file"  # "file" | "memory"


@dataclass
class ReportConfig:
    sink: str = "print"  # "print" | "browser" | "viewer" | "none"


@dataclass
class CredentialsConfig:
    """Where the API key lives."""

    store: str = "chain"  # "file" | "env" | "chain"
    path: str = DEFAULT_CREDENTIALS_PATH


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass
class Config:
    """Root configuration object populated from .codesent/config.yaml.

    All fields have safe defaults; the client runs without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    api: ApiConfig = field(default_factory=ApiConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Args:
            raw:  Parsed YAML dict (must already be validated for version field).
            path: Path to the config file (stored in Config.path).

        Raises:
            SystemExit(1): On any invalid section value.
        """
        # ── API ───────────────────────────────────────────────────────────────
        api_raw = _section(raw, "api")
        base_url = api_raw.get("base_url", DEFAULT_BASE_URL)
        if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
            _config_error(f"Invalid api.base_url: '{base_url}'. Must be an http(s) URL.")
        api = ApiConfig(
            base_url=base_url.rstrip("/"),
            timeout_s=_positive_number(
                api_raw.get("timeout_s", DEFAULT_REQUEST_TIMEOUT_S), "api.timeout_s"
            ),
        )

        # ── Polling ───────────────────────────────────────────────────────────
        polling_raw = _section(raw, "polling")
        max_attempts = polling_raw.get("max_attempts")
        if max_attempts is not None and (
            isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts < 1
        ):
            _config_error(
                f"Invalid polling.max_attempts: '{max_attempts}'. Must be a positive integer."
            )
        max_duration = polling_raw.get("max_duration_s")
        polling = PollingConfig(
            interval_s=_positive_number(
                polling_raw.get("interval_s", DEFAULT_POLL_INTERVAL_S), "polling.interval_s"
            ),
            max_attempts=max_attempts,
            max_duration_s=(
                None
                if max_duration is None
                else _positive_number(max_duration, "polling.max_duration_s")
            ),
        )

        # ── Archive / report / credentials ────────────────────────────────────
        archive = ArchiveConfig(
            mode=_choice(_section(raw, "archive").get("mode", "file"), VALID_ARCHIVE_MODES, "archive.mode")
        )
        report = ReportConfig(
            sink=_choice(_section(raw, "report").get("sink", "print"), VALID_REPORT_SINKS, "report.sink")
        )
        credentials_raw = _section(raw, "credentials")
        credentials = CredentialsConfig(
            store=_choice(
                credentials_raw.get("store", "chain"), VALID_CREDENTIAL_STORES, "credentials.store"
            ),
            path=credentials_raw.get("path", DEFAULT_CREDENTIALS_PATH),
        )

        # ── Logging ───────────────────────────────────────────────────────────
        logging_raw = _section(raw, "logging")
        logging_config = LoggingConfig(
            level=_choice(
                str(logging_raw.get("level", "INFO")).upper(), VALID_LOG_LEVELS, "logging.level"
            ),
            json=bool(logging_raw.get("json", False)),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            api=api,
            polling=polling,
            archive=archive,
            report=report,
            credentials=credentials,
            logging=logging_config,
            path=path,
        )


# ─── Validation helpers ──────────────────────────────────────────────────────


def _config_error(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        _config_error(f"'{name}' must be a mapping.")
    return value


def _choice(value: str, allowed: frozenset[str], name: str) -> str:
    if value not in allowed:
        _config_error(f"Invalid {name}: '{value}'. Supported values: {sorted(allowed)}.")
    return value


def _positive_number(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        _config_error(f"Invalid {name}: '{value}'. Must be a positive number.")
    return float(value)  # type: ignore[arg-type]


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate the client configuration.

    Search order:
      1. ``config_path`` argument (if provided)
      2. ``CODESENT_CONFIG`` environment variable (if set)
      3. ``.codesent/config.yaml`` (current working directory)
      4. ``~/.codesent/config.yaml`` (home directory)

    If no file is found at any of these paths, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied afterwards in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid section values, or invalid env overrides.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("CODESENT_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.debug("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.debug("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(
            f"Failed to parse {found_path}: {exc}\n"
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    # Plain-text keys in config are a legacy layout; never read them.
    if "api_key" in raw or "api_key" in _section(raw, "api"):
        logger.warning(
            "Plain-text api_key in config file is not supported and was ignored. "
            "Store the key with 'codesent set-key' or the CODESENT_API_KEY variable.",
            path=found_path,
        )

    logger.debug(
        "Config loaded",
        path=found_path,
        version=config.version,
        base_url=config.api.base_url,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Handles CODESENT_BASE_URL, CODESENT_POLL_INTERVAL and CODESENT_LOG_LEVEL.

    Raises:
        SystemExit(1): If an override is set to an invalid value.
    """
    env_url = os.environ.get("CODESENT_BASE_URL")
    if env_url:
        if not env_url.startswith(("http://", "https://")):
            _config_error(f"CODESENT_BASE_URL is not an http(s) URL: '{env_url}'")
        config.api.base_url = env_url.rstrip("/")

    env_interval = os.environ.get("CODESENT_POLL_INTERVAL")
    if env_interval is not None:
        try:
            interval = float(env_interval)
        except ValueError:
            interval = -1.0
        if interval <= 0:
            _config_error(
                f"CODESENT_POLL_INTERVAL must be a positive number: '{env_interval}'"
            )
        config.polling.interval_s = interval

    env_level = os.environ.get("CODESENT_LOG_LEVEL")
    if env_level:
        config.logging.level = _choice(env_level.upper(), VALID_LOG_LEVELS, "CODESENT_LOG_LEVEL")
