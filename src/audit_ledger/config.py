"""
Settings for the audit ledger.

Values come from three layers, later layers replacing earlier ones:

    built-in dataclass defaults
    config/ledger.ini (or config/ledger.example.ini when no ini exists)
    AUDIT_* environment variables

The merged result is built once on import and exposed as ``config``.

Example:
    from audit_ledger.config import config

    config.database.absolute_path
    config.submission.max_workers

Environment variables:
    AUDIT_HOST                   server.host
    AUDIT_PORT                   server.port
    AUDIT_DB_PATH                database.path
    AUDIT_MAX_DETAILS_LENGTH     ledger.max_details_length
    AUDIT_LOCK_TIMEOUT_SECONDS   ledger.lock_timeout_seconds
    AUDIT_MAX_ATTEMPTS           ledger.max_attempts
    AUDIT_SUBMIT_WORKERS         submission.max_workers
    AUDIT_SUBMIT_QUEUE_CAPACITY  submission.queue_capacity
    AUDIT_FALLBACK_PATH          submission.fallback_path
    AUDIT_LOG_LEVEL              logging.level
"""

import configparser
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# Repository checkout root; relative paths in settings hang off this.
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "ledger.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "ledger.example.ini"


def _resolve(path: str) -> Path:
    p = Path(path)
    if p.is_absolute():
        return p
    return PROJECT_ROOT / p


# -----------------------------------------------------------------------------
# Settings sections
# -----------------------------------------------------------------------------


@dataclass
class ServerSettings:
    """Bind address of the read-only HTTP API."""

    host: str = "0.0.0.0"  # nosec B104 - the API is meant to be reachable
    port: int = 8000


@dataclass
class DatabaseSettings:
    path: str = "data/audit.db"

    @property
    def absolute_path(self) -> Path:
        return _resolve(self.path)


@dataclass
class LedgerSettings:
    """Append and verification tuning.

    Attributes:
        max_details_length: Longest accepted ``details`` text, in characters.
        lock_timeout_seconds: How long ``submit`` waits for the append lock
            before failing with ``ConcurrencyConflict``.
        max_attempts: Full read-tail/compute/persist cycles per submission.
        retry_backoff_seconds: Linear backoff step between attempts.
        verify_batch_size: Rows fetched per page while verifying.
    """

    max_details_length: int = 4096
    lock_timeout_seconds: float = 5.0
    max_attempts: int = 3
    retry_backoff_seconds: float = 0.05
    verify_batch_size: int = 500


@dataclass
class SubmissionSettings:
    """Background submission pool configuration.

    The pool holds ``max_workers`` running submissions plus up to
    ``queue_capacity`` waiting ones.  Anything beyond that is diverted to the
    fallback file after ``enqueue_timeout_seconds``.
    """

    max_workers: int = 5
    queue_capacity: int = 25
    enqueue_timeout_seconds: float = 0.5
    resubmit_attempts: int = 3
    resubmit_backoff_seconds: float = 0.1
    fallback_path: str = "data/audit_fallback.jsonl"

    @property
    def absolute_fallback_path(self) -> Path:
        return _resolve(self.fallback_path)


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: Literal["simple", "detailed"] = "detailed"


@dataclass
class LedgerConfig:
    """All settings sections, keyed the same way as the ini file."""

    server: ServerSettings = field(default_factory=ServerSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    submission: SubmissionSettings = field(default_factory=SubmissionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# -----------------------------------------------------------------------------
# Loading
# -----------------------------------------------------------------------------

# (section, option) -> converter for every ini key that maps straight onto a
# dataclass field of the same name.
_INI_OPTIONS = {
    ("server", "host"): str,
    ("server", "port"): int,
    ("database", "path"): str,
    ("ledger", "max_details_length"): int,
    ("ledger", "lock_timeout_seconds"): float,
    ("ledger", "max_attempts"): int,
    ("ledger", "retry_backoff_seconds"): float,
    ("ledger", "verify_batch_size"): int,
    ("submission", "max_workers"): int,
    ("submission", "queue_capacity"): int,
    ("submission", "enqueue_timeout_seconds"): float,
    ("submission", "resubmit_attempts"): int,
    ("submission", "resubmit_backoff_seconds"): float,
    ("submission", "fallback_path"): str,
}

_ENV_OPTIONS = {
    "AUDIT_HOST": ("server", "host", str),
    "AUDIT_PORT": ("server", "port", int),
    "AUDIT_DB_PATH": ("database", "path", str),
    "AUDIT_MAX_DETAILS_LENGTH": ("ledger", "max_details_length", int),
    "AUDIT_LOCK_TIMEOUT_SECONDS": ("ledger", "lock_timeout_seconds", float),
    "AUDIT_MAX_ATTEMPTS": ("ledger", "max_attempts", int),
    "AUDIT_SUBMIT_WORKERS": ("submission", "max_workers", int),
    "AUDIT_SUBMIT_QUEUE_CAPACITY": ("submission", "queue_capacity", int),
    "AUDIT_FALLBACK_PATH": ("submission", "fallback_path", str),
}


def _load_from_ini(parser: configparser.ConfigParser, cfg: LedgerConfig) -> None:
    """Copy every recognised key found in ``parser`` onto ``cfg``."""
    for (section, option), convert in _INI_OPTIONS.items():
        if parser.has_option(section, option):
            setattr(getattr(cfg, section), option, convert(parser.get(section, option)))

    # Logging values are normalised; unknown formats keep the default.
    if parser.has_option("logging", "level"):
        cfg.logging.level = parser.get("logging", "level").upper()
    if parser.has_option("logging", "format"):
        fmt = parser.get("logging", "format").lower()
        if fmt in ("simple", "detailed"):
            cfg.logging.format = fmt  # type: ignore[assignment]


def _apply_env_overrides(cfg: LedgerConfig) -> None:
    """Let non-empty AUDIT_* variables win over file values."""
    for name, (section, option, convert) in _ENV_OPTIONS.items():
        if raw := os.getenv(name):
            setattr(getattr(cfg, section), option, convert(raw))

    if level := os.getenv("AUDIT_LOG_LEVEL"):
        cfg.logging.level = level.upper()


def load_config() -> LedgerConfig:
    """Build a fresh ``LedgerConfig`` from defaults, ini file and environment.

    ``ledger.ini`` is preferred; a checkout without one falls back to
    ``ledger.example.ini`` so development works out of the box.
    """
    cfg = LedgerConfig()

    source = next((p for p in (CONFIG_FILE, CONFIG_EXAMPLE) if p.exists()), None)
    if source is not None:
        parser = configparser.ConfigParser()
        parser.read(source)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)
    return cfg


def reload_config() -> LedgerConfig:
    """Replace the module-level ``config`` with a freshly loaded one.

    Appenders and pools already constructed hold on to the settings objects
    they were given.
    """
    global config
    config = load_config()
    return config


config = load_config()


# -----------------------------------------------------------------------------
# Logging and diagnostics
# -----------------------------------------------------------------------------

_LOG_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s",
}


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Apply the logging section to the root logger.

    Called by the CLI and server entry points only; library code never
    configures logging on import.
    """
    settings = settings or config.logging
    logging.basicConfig(
        level=getattr(logging, settings.level, logging.INFO),
        format=_LOG_FORMATS[settings.format],
        force=True,
    )


def get_config_status() -> dict:
    """Where the active settings came from, plus the resolved file paths."""
    has_ini = CONFIG_FILE.exists()
    return {
        "config_file": str(CONFIG_FILE),
        "config_file_found": has_ini,
        "example_in_use": not has_ini and CONFIG_EXAMPLE.exists(),
        "database_path": str(config.database.absolute_path),
        "fallback_path": str(config.submission.absolute_fallback_path),
        "max_workers": config.submission.max_workers,
        "queue_capacity": config.submission.queue_capacity,
    }


def print_config_summary() -> None:
    status = get_config_status()
    rule = "=" * 60

    lines = [
        "",
        rule,
        "AUDIT LEDGER CONFIGURATION",
        rule,
        f"Ini file:     {status['config_file']} "
        f"({'found' if status['config_file_found'] else 'missing'})",
    ]
    if status["example_in_use"]:
        lines.append("NOTE: settings read from ledger.example.ini")
    lines += [
        "-" * 60,
        f"Server:       {config.server.host}:{config.server.port}",
        f"Database:     {status['database_path']}",
        f"Fallback:     {status['fallback_path']}",
        f"Max details:  {config.ledger.max_details_length}",
        f"Lock timeout: {config.ledger.lock_timeout_seconds}s",
        f"Workers:      {status['max_workers']} (+{status['queue_capacity']} queued)",
        f"Log level:    {config.logging.level}",
        rule,
        "",
    ]
    print("\n".join(lines))


# -----------------------------------------------------------------------------
# Test support
# -----------------------------------------------------------------------------


class use_test_database:
    """Point ``config.database.path`` at a scratch file for a ``with`` block.

    The previous path is put back on exit, even when the block raises::

        with use_test_database(tmp_path / "audit.db"):
            schema.init_database()
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._saved: str | None = None

    def __enter__(self) -> Path:
        self._saved = config.database.path
        config.database.path = str(self.db_path)
        return self.db_path

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._saved is not None:
            config.database.path = self._saved
