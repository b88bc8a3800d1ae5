"""
pg2lite/tunnel.py
-----------------
Local port forwarding through an SSH host, for sources that are only
reachable from behind it.

Design Decisions:
    * paramiko authenticates with the configured private key only; agent
      and default key discovery are off.
    * Host-key trust is explicit (:class:`HostKeyPolicy`): ``reject`` refuses
      unknown hosts, ``warn`` logs and accepts them, ``accept`` skips
      verification entirely.
    * The listener binds ``localhost`` on an OS-chosen port.  An accept
      thread opens one ``direct-tcpip`` channel per local connection and two
      relay threads pump bytes, one per direction.  When either direction
      ends both sockets are closed.
    * A failure on one relayed connection is logged and only drops that
      connection.  ``close()`` sets a stop event and closes the listener
      and the SSH session; relays in flight are left to drain on their own.
"""
from __future__ import annotations

import socket
import threading
from typing import Any

import paramiko
from paramiko.pkey import UnknownKeyType

from pg2lite.errors import TunnelError
from logger import get_logger
from models.connection import HostKeyPolicy, SSHSettings

log = get_logger(__name__)

_RELAY_BUFFER = 32 * 1024
_LISTEN_BACKLOG = 16


class _WarnPolicy(paramiko.MissingHostKeyPolicy):
    """Accept unknown host keys, but say so."""

    def missing_host_key(self, client, hostname, key) -> None:
        log.warning(
            "Accepting unverified %s host key for %s (fingerprint %s). "
            "Use --ssh-host-key-policy reject to refuse unknown hosts.",
            key.get_name(), hostname, key.fingerprint,
        )


_POLICIES = {
    HostKeyPolicy.REJECT: paramiko.RejectPolicy,
    HostKeyPolicy.WARN: _WarnPolicy,
    HostKeyPolicy.ACCEPT: paramiko.AutoAddPolicy,
}


def _close_quietly(sock: Any) -> None:
    if isinstance(sock, socket.socket):
        try:
            # wakes a thread blocked in recv() or accept() on this socket
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
    try:
        sock.close()
    except (OSError, EOFError, paramiko.SSHException):
        pass


def _relay(src: Any, dst: Any, label: str) -> None:
    """Copy bytes from *src* to *dst* until EOF or error, then close both."""
    try:
        while True:
            data = src.recv(_RELAY_BUFFER)
            if not data:
                break
            dst.sendall(data)
    except (OSError, EOFError, paramiko.SSHException) as exc:
        log.warning("Tunnel relay %s ended with error: %s", label, exc)
    finally:
        _close_quietly(src)
        _close_quietly(dst)


class SSHTunnel:
    """
    Forward ``localhost:<local_port>`` to *target_host:target_port* as seen
    from the SSH host.

    Example::

        tunnel = SSHTunnel(settings, "db.internal", 5432)
        port = tunnel.start()
        ...  # connect to localhost:port
        tunnel.close()
    """

    def __init__(self, settings: SSHSettings, target_host: str, target_port: int) -> None:
        self._settings = settings
        self._target = (target_host, target_port)
        self._client: paramiko.SSHClient | None = None
        self._listener: socket.socket | None = None
        self._stop = threading.Event()
        self._accept_thread: threading.Thread | None = None
        self.local_port: int | None = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _load_key(self) -> paramiko.PKey:
        passphrase = self._settings.key_passphrase
        secret = passphrase.encode("utf-8") if passphrase else None
        try:
            # positional: the keyword was renamed between paramiko releases
            return paramiko.PKey.from_path(self._settings.key_path, secret)
        except (OSError, TypeError, ValueError, paramiko.SSHException, UnknownKeyType) as exc:
            raise TunnelError(
                f"Unable to load private key '{self._settings.key_path}': {exc}"
            ) from exc

    def _connect_client(self, pkey: paramiko.PKey) -> paramiko.SSHClient:
        settings = self._settings
        client = paramiko.SSHClient()
        try:
            if settings.host_key_policy != HostKeyPolicy.ACCEPT:
                client.load_system_host_keys()
                if settings.known_hosts:
                    client.load_host_keys(settings.known_hosts)
            client.set_missing_host_key_policy(_POLICIES[settings.host_key_policy]())
            log.info(
                "Opening SSH session to %s@%s:%d",
                settings.user, settings.host, settings.port,
            )
            client.connect(
                hostname=settings.host,
                port=settings.port,
                username=settings.user,
                pkey=pkey,
                allow_agent=False,
                look_for_keys=False,
            )
        except (OSError, paramiko.SSHException) as exc:
            client.close()
            raise TunnelError(
                f"Unable to connect to SSH server {settings.host}:{settings.port}: {exc}"
            ) from exc
        return client

    def start(self) -> int:
        """
        Authenticate, bind the local listener and start accepting.

        Returns:
            The local port to connect to.

        Raises:
            TunnelError: On key, SSH or listener failures.  Nothing is left
                         running when this is raised.
        """
        pkey = self._load_key()
        self._client = self._connect_client(pkey)

        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(("localhost", 0))
            listener.listen(_LISTEN_BACKLOG)
        except OSError as exc:
            self._client.close()
            self._client = None
            raise TunnelError(f"Unable to set up local listener: {exc}") from exc

        self._listener = listener
        self.local_port = listener.getsockname()[1]
        self._accept_thread = threading.Thread(
            target=self._accept_loop,
            name=f"pg2lite-tunnel-{self.local_port}",
            daemon=True,
        )
        self._accept_thread.start()
        log.info(
            "SSH tunnel listening on localhost:%d -> %s:%d",
            self.local_port, *self._target,
        )
        return self.local_port

    # ------------------------------------------------------------------
    # Relaying
    # ------------------------------------------------------------------

    def _open_channel(self, origin: tuple) -> Any:
        transport = self._client.get_transport() if self._client else None
        if transport is None or not transport.is_active():
            raise paramiko.SSHException("SSH session is not active")
        return transport.open_channel("direct-tcpip", self._target, origin)

    def _accept_loop(self) -> None:
        listener = self._listener
        while not self._stop.is_set():
            try:
                local, origin = listener.accept()
            except OSError as exc:
                if not self._stop.is_set():
                    log.error("Tunnel listener stopped accepting: %s", exc)
                return
            if self._stop.is_set():
                _close_quietly(local)
                return

            try:
                channel = self._open_channel(origin)
            except (OSError, paramiko.SSHException) as exc:
                log.error("Error dialing %s:%d through SSH: %s", *self._target, exc)
                _close_quietly(local)
                continue

            label = f"{origin[0]}:{origin[1]}"
            threading.Thread(
                target=_relay, args=(local, channel, f"{label} -> remote"), daemon=True
            ).start()
            threading.Thread(
                target=_relay, args=(channel, local, f"remote -> {label}"), daemon=True
            ).start()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop accepting, close the listener, then close the SSH session."""
        self._stop.set()
        if self._listener is not None:
            _close_quietly(self._listener)
            self._listener = None
        if self._client is not None:
            self._client.close()
            self._client = None
            log.info("SSH tunnel closed.")

    @property
    def is_running(self) -> bool:
        return self._listener is not None and not self._stop.is_set()


def open_tunnel(settings: SSHSettings, target_host: str, target_port: int) -> SSHTunnel:
    """Start a tunnel and return it; ``tunnel.local_port`` is ready to use."""
    tunnel = SSHTunnel(settings, target_host, target_port)
    tunnel.start()
    return tunnel
