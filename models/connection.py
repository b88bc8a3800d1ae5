"""
models/connection.py
--------------------
Connection descriptor for the PostgreSQL source.

A descriptor is either a raw libpq connection string or the structured
host/port/database/user/password fields, optionally with SSH settings that
route the connection through an intermediate host.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from psycopg2.extensions import make_dsn


class HostKeyPolicy(str, Enum):
    """How unknown SSH host keys are treated when opening a tunnel."""
    REJECT = "reject"
    WARN = "warn"
    ACCEPT = "accept"


@dataclass(frozen=True)
class SSHSettings:
    """
    Intermediate host used to reach the source database.

    Attributes:
        key_path:        Private key file used for public-key authentication.
        user:            Login on the intermediate host.
        host:            Intermediate host name or address.
        port:            SSH port on the intermediate host.
        host_key_policy: Trust decision for keys missing from known_hosts.
        known_hosts:     Extra known_hosts file loaded after the system one.
        key_passphrase:  Passphrase for an encrypted private key.
    """
    key_path: str
    user: str
    host: str
    port: int = 22
    host_key_policy: HostKeyPolicy = HostKeyPolicy.WARN
    known_hosts: str | None = None
    key_passphrase: str | None = None


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Everything needed to open the source connection."""
    connection_string: str = ""
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    user: str = ""
    password: str = ""
    ssh: SSHSettings | None = None

    @property
    def uses_tunnel(self) -> bool:
        return not self.connection_string and bool(self.ssh and self.ssh.key_path)

    def dsn(self) -> str:
        """
        Render the libpq key/value connection string.

        An explicit ``connection_string`` wins over the structured fields.
        Empty fields are left out so libpq applies its own defaults, e.g.
        the user name as the database name.  Values are quoted as needed.
        """
        if self.connection_string:
            return self.connection_string
        return make_dsn(
            host=self.host or None,
            port=self.port or None,
            dbname=self.database or None,
            user=self.user or None,
            password=self.password or None,
        )

    def through_local_port(self, port: int) -> "ConnectionDescriptor":
        """Return a copy aimed at ``localhost:port`` with SSH settings dropped."""
        return replace(self, host="localhost", port=port, ssh=None)

    def describe(self) -> str:
        """Password-free summary for log lines."""
        if self.connection_string:
            return "<connection string>"
        return f"{self.user}@{self.host}:{self.port}/{self.database}"
