"""
main.py
-------
Command-line entry point for pg2lite.

    pg2lite migrate  --db shop --user app --sqlite shop.db --with-data
    pg2lite validate --pg "host=db dbname=shop user=app"
    pg2lite version

Connection flags may also be given as ``PGMIGRATE_<FLAG>`` environment
variables or in a dotenv file (``./.env`` or ``--config PATH``).
"""
from __future__ import annotations

import argparse
import sys
from typing import Any, Sequence

from config import APP_VERSION, AppConfig, ConfigError, get_log_level, load_config
from logger import configure_logging, get_logger
from models.connection import HostKeyPolicy
from pg2lite.errors import MigrationError
from pg2lite.migrator import Migrator

log = get_logger(__name__)

# Flag destinations handed to load_config; None means "not given".
_SETTING_KEYS = (
    "pg", "host", "port", "db", "user", "password",
    "sshkey", "sshuser", "sshhost", "sshport",
    "ssh_host_key_policy", "known_hosts",
    "sqlite", "with_data", "with_indexes", "batch_size",
    "log_level", "log_file",
)


def _common_flags() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        help=(
            "dotenv file of PGMIGRATE_<NAME>=value lines (default: ./.env); "
            "YAML files such as ~/.pgmigrate.yaml are not read"
        ),
    )

    pg = common.add_argument_group("PostgreSQL connection")
    pg.add_argument("--pg", help="PostgreSQL connection string (overrides the fields below)")
    pg.add_argument("--host", help="PostgreSQL host (default: localhost)")
    pg.add_argument("--port", type=int, help="PostgreSQL port (default: 5432)")
    pg.add_argument("--db", help="PostgreSQL database name")
    pg.add_argument("--user", help="PostgreSQL user")
    pg.add_argument("--password", help="PostgreSQL password")

    ssh = common.add_argument_group("SSH tunnel")
    ssh.add_argument("--sshkey", help="path to SSH private key file (enables the tunnel)")
    ssh.add_argument("--sshuser", help="SSH user")
    ssh.add_argument("--sshhost", help="SSH host")
    ssh.add_argument("--sshport", type=int, help="SSH port (default: 22)")
    ssh.add_argument(
        "--ssh-host-key-policy",
        choices=[p.value for p in HostKeyPolicy],
        help="how to treat SSH host keys missing from known_hosts (default: warn)",
    )
    ssh.add_argument("--known-hosts", help="additional known_hosts file")

    logging_group = common.add_argument_group("logging")
    logging_group.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (default: INFO)")
    logging_group.add_argument("--log-file", help="also write DEBUG logs to this file")
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_flags()
    parser = argparse.ArgumentParser(
        prog="pg2lite",
        description=(
            "A database migration tool that copies the structure and optionally "
            "the data from a PostgreSQL database to a SQLite database."
        ),
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    migrate = sub.add_parser(
        "migrate", parents=[common], help="Migrate PostgreSQL database to SQLite",
    )
    migrate.add_argument("--sqlite", help="SQLite output file (default: output.db)")
    migrate.add_argument(
        "--with-data", action="store_true", default=None, help="include data in migration",
    )
    migrate.add_argument(
        "--with-indexes", action="store_true", default=None,
        help="also recreate secondary indexes",
    )
    migrate.add_argument("--batch-size", type=int, help="rows per transaction (default: 1000)")

    sub.add_parser(
        "validate", parents=[common],
        help="Validate database connection and configuration",
    )
    sub.add_parser("version", help="Print the version number")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {key: getattr(args, key, None) for key in _SETTING_KEYS}


def _open(cfg: AppConfig) -> Migrator:
    return Migrator.open(
        cfg.connection_descriptor(),
        batch_size=cfg.migration.batch_size,
        create_indexes=cfg.migration.create_indexes,
        progress_cb=print,
    )


def run_migrate(cfg: AppConfig) -> None:
    migrator = _open(cfg)
    try:
        summary = migrator.migrate(cfg.migration.output_file, cfg.migration.with_data)
    finally:
        migrator.close()
    print(summary)


def run_validate(cfg: AppConfig) -> None:
    migrator = _open(cfg)
    migrator.close()
    print("Configuration is valid and database is accessible")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "version":
        print(f"PostgreSQL to SQLite migrator v{APP_VERSION}")
        return 0

    try:
        cfg = load_config(_overrides(args), env_file=args.config)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    configure_logging(get_log_level(cfg), cfg.migration.log_file)

    try:
        if args.command == "migrate":
            run_migrate(cfg)
        else:
            run_validate(cfg)
    except MigrationError as exc:
        log.debug("Run aborted", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
