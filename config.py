"""
config.py
---------
Configuration for the pg2lite migrator.

Settings come from CLI flags, ``PGMIGRATE_*`` environment variables and an
optional dotenv file (python-dotenv), in that order of precedence, and are
frozen into dataclasses.  ``load_config`` is the only place that reads the
environment; the migration engine receives the resulting ``AppConfig``
by value and never looks anything up on its own.

Design Decision:
    Frozen dataclasses with plain defaults keep the tool usable without any
    configuration file while making every resolved value explicit at the
    call site that opens the migrator.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

from models.connection import ConnectionDescriptor, HostKeyPolicy, SSHSettings

ENV_PREFIX = "PGMIGRATE_"
DEFAULT_ENV_FILE = Path(".env")

APP_NAME = "pg2lite"
APP_VERSION = "1.0.0"


class ConfigError(ValueError):
    """Raised when a configuration value cannot be parsed."""


@dataclass(frozen=True)
class SourceConfig:
    """PostgreSQL connection settings."""
    connection_string: str = ""
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    user: str = ""
    password: str = ""


@dataclass(frozen=True)
class SSHConfig:
    """SSH tunnel settings; the tunnel is used only when ``key_path`` is set."""
    key_path: str = ""
    user: str = ""
    host: str = ""
    port: int = 22
    host_key_policy: HostKeyPolicy = HostKeyPolicy.WARN
    known_hosts: str | None = None
    key_passphrase: str | None = None


@dataclass(frozen=True)
class MigrationConfig:
    """Migration engine settings."""
    output_file: Path = Path("output.db")
    with_data: bool = False
    create_indexes: bool = False
    batch_size: int = 1000
    log_level: str = "INFO"
    log_file: str | None = None


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    source: SourceConfig = field(default_factory=SourceConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    app_name: str = APP_NAME
    app_version: str = APP_VERSION

    def connection_descriptor(self) -> ConnectionDescriptor:
        """Build the descriptor handed to ``Migrator.open``."""
        ssh = None
        if self.ssh.key_path:
            ssh = SSHSettings(
                key_path=self.ssh.key_path,
                user=self.ssh.user,
                host=self.ssh.host,
                port=self.ssh.port,
                host_key_policy=self.ssh.host_key_policy,
                known_hosts=self.ssh.known_hosts,
                key_passphrase=self.ssh.key_passphrase,
            )
        return ConnectionDescriptor(
            connection_string=self.source.connection_string,
            host=self.source.host,
            port=self.source.port,
            database=self.source.database,
            user=self.source.user,
            password=self.source.password,
            ssh=ssh,
        )


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------

def _lookup(
    name: str,
    overrides: Mapping[str, Any],
    environ: Mapping[str, str],
) -> Any:
    """Return the flag value, else the ``PGMIGRATE_<NAME>`` variable, else None."""
    value = overrides.get(name)
    if value is not None:
        return value
    return environ.get(ENV_PREFIX + name.upper())


def _as_str(value: Any, default: str) -> str:
    return default if value is None else str(value)


def _as_int(name: str, value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid integer for '{name}': {value!r}") from exc


def _as_bool(name: str, value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"Invalid boolean for '{name}': {value!r}")


def _as_policy(value: Any) -> HostKeyPolicy:
    if value is None or value == "":
        return HostKeyPolicy.WARN
    try:
        return HostKeyPolicy(str(value).lower())
    except ValueError as exc:
        choices = ", ".join(p.value for p in HostKeyPolicy)
        raise ConfigError(
            f"Invalid SSH host key policy {value!r}; expected one of: {choices}"
        ) from exc


def load_config(
    overrides: Mapping[str, Any] | None = None,
    env_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """
    Build the application configuration.

    Args:
        overrides: Values from the command line, keyed by setting name
                   (``host``, ``sshkey``, ``with_data`` …).  None means
                   "not given".
        env_file:  Dotenv file (``PGMIGRATE_<NAME>=value`` lines) to load.
                   Defaults to ``./.env`` when present.  YAML config
                   files are not supported.
                   Loaded values never replace real environment variables.
        environ:   Environment mapping, ``os.environ`` by default.

    Returns:
        AppConfig: Fully resolved, frozen configuration.

    Raises:
        ConfigError: If a value cannot be parsed, or ``env_file`` was given
                     explicitly and does not exist.

    Example::

        cfg = load_config({"host": "db.internal", "db": "shop"})
        cfg.connection_descriptor().dsn()
    """
    overrides = overrides or {}
    if env_file is not None:
        path = Path(env_file)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        load_dotenv(dotenv_path=path, override=False)
    elif DEFAULT_ENV_FILE.exists():
        load_dotenv(dotenv_path=DEFAULT_ENV_FILE, override=False)
    env = os.environ if environ is None else environ

    def get(name: str) -> Any:
        return _lookup(name, overrides, env)

    source = SourceConfig(
        connection_string=_as_str(get("pg"), ""),
        host=_as_str(get("host"), "localhost"),
        port=_as_int("port", get("port"), 5432),
        database=_as_str(get("db"), ""),
        user=_as_str(get("user"), ""),
        password=_as_str(get("password"), ""),
    )
    ssh = SSHConfig(
        key_path=_as_str(get("sshkey"), ""),
        user=_as_str(get("sshuser"), ""),
        host=_as_str(get("sshhost"), ""),
        port=_as_int("sshport", get("sshport"), 22),
        host_key_policy=_as_policy(get("ssh_host_key_policy")),
        known_hosts=get("known_hosts") or None,
        key_passphrase=get("ssh_passphrase") or None,
    )
    migration = MigrationConfig(
        output_file=Path(_as_str(get("sqlite"), "output.db")),
        with_data=_as_bool("with_data", get("with_data"), False),
        create_indexes=_as_bool("with_indexes", get("with_indexes"), False),
        batch_size=_as_int("batch_size", get("batch_size"), 1000),
        log_level=_as_str(get("log_level"), "INFO").upper(),
        log_file=get("log_file") or None,
    )
    if migration.batch_size < 1:
        raise ConfigError(f"Batch size must be positive, got {migration.batch_size}")
    return AppConfig(source=source, ssh=ssh, migration=migration)


def get_log_level(config: AppConfig) -> int:
    """Convert the configured level name to a logging module constant."""
    level = getattr(logging, config.migration.log_level, None)
    if not isinstance(level, int):
        return logging.INFO
    return level
