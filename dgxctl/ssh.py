"""
Session client: one authenticated SSH transport to the remote GPU host.

Uses paramiko with key authentication only. The transport is opened lazily
on the first command and kept until close(); interactive shells, file copies
and rsync are delegated to the native OpenSSH tools through a ProcessRunner.

Example:
    from dgxctl import ConnectionProfile, SessionClient

    profile = ConnectionProfile(host="spark.local", user="ops")
    with SessionClient(profile) as ssh:
        print(ssh.execute("nvidia-smi -L"))
"""

from __future__ import annotations

import io
import logging
import os
import select
import socket
import socketserver
import threading
import time
from dataclasses import dataclass
from typing import Optional

import paramiko

from dgxctl import config
from dgxctl.errors import (
    AuthenticationError,
    DialTimeoutError,
    KeyParseError,
    KeyReadError,
    RemoteCommandError,
    SessionError,
    TransferError,
    UnknownHostKeyError,
    UntrustedHostError,
)
from dgxctl.process import ProcessRunner, SubprocessRunner
from dgxctl.profile import ConnectionProfile
from dgxctl.trust import ConfirmFn, HostTrustGate, TrustStore

logger = logging.getLogger(__name__)

REMOTE_ALIAS = "dgx:"

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def load_private_key(path: str) -> paramiko.PKey:
    """Read and parse an OpenSSH/PEM private key.

    Raises:
        KeyReadError: If the file cannot be read
        KeyParseError: If no supported key type accepts the contents
    """
    expanded = os.path.expanduser(path)
    try:
        with open(expanded, "r") as f:
            data = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise KeyReadError(path, getattr(e, "strerror", None) or str(e)) from e

    last_error: Optional[Exception] = None
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(io.StringIO(data))
        except paramiko.PasswordRequiredException as e:
            raise KeyParseError(path, "key is passphrase-protected") from e
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise KeyParseError(path, f"unsupported or malformed key ({last_error})")


# ---------------------------------------------------------------------------
# CommandResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    """Result of a remote command: exit status and combined stdout/stderr."""

    command: str
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# ---------------------------------------------------------------------------
# Tunnel (in-process forwarding)
# ---------------------------------------------------------------------------


class _ForwardHandler(socketserver.BaseRequestHandler):
    """One accepted local connection, relayed over a direct-tcpip channel."""

    def handle(self):
        tunnel: Tunnel = self.server.tunnel
        target = (tunnel.remote_host, tunnel.remote_port)
        try:
            chan = tunnel.transport.open_channel("direct-tcpip", target, self.request.getpeername())
        except (paramiko.SSHException, OSError) as e:
            logger.error("Forward to %s:%d failed: %s", target[0], target[1], e)
            return
        try:
            _pump(self.request, chan, tunnel.stopping)
        finally:
            chan.close()


class _ForwardServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, tunnel: "Tunnel"):
        self.tunnel = tunnel
        super().__init__(("127.0.0.1", tunnel.local_port), _ForwardHandler)


class Tunnel:
    """In-process port forward: 127.0.0.1:local_port -> remote_host:remote_port.

    The listener is bound on construction (local_port 0 picks a free port)
    and served from a daemon thread. It lives only as long as this process
    and the owning SessionClient; for forwards that must outlive the program
    use TunnelManager instead.
    """

    def __init__(self, local_port: int, remote_host: str, remote_port: int, transport: paramiko.Transport):
        self.local_port = local_port
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.transport = transport
        self.stopping = threading.Event()

        self._server = _ForwardServer(self)
        self.local_port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever, name=f"dgx-forward-{self.local_port}", daemon=True
        )
        self._thread.start()
        logger.info("Forwarding 127.0.0.1:%d -> %s:%d", self.local_port, remote_host, remote_port)

    @property
    def active(self) -> bool:
        return not self.stopping.is_set()

    def stop(self):
        """Close the listener; open connections end within one poll interval."""
        if self.stopping.is_set():
            return
        self.stopping.set()
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=3.0)
        logger.info("Forward on port %d stopped", self.local_port)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.stop()

    def __repr__(self):
        state = "active" if self.active else "stopped"
        return f"Tunnel(127.0.0.1:{self.local_port} -> {self.remote_host}:{self.remote_port}, {state})"


def _pump(sock: socket.socket, chan: paramiko.Channel, stopping: threading.Event):
    """Relay bytes between a local socket and a channel.

    Ends on the first EOF or error from either side, or when stopping is set.
    The local socket is shut down on exit so the client sees the close even
    while socketserver still holds it.
    """
    peer_of = {sock: chan, chan: sock}
    try:
        while not stopping.is_set():
            readable, _, _ = select.select(list(peer_of), [], [], 1.0)
            for src in readable:
                data = src.recv(16384)
                if not data:
                    return
                peer_of[src].sendall(data)
    except (OSError, paramiko.SSHException) as e:
        logger.debug("Forwarded connection dropped: %s", e)
    finally:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass


# ---------------------------------------------------------------------------
# SessionClient
# ---------------------------------------------------------------------------


class SessionClient:
    """SSH session to one remote host: commands, shell handoff, probes, copies.

    Connection is lazy - established on first execute() (or explicit
    connect()). A single instance runs one command at a time; use one client
    per thread for parallel commands.

    Args:
        profile: Resolved connection profile
        connect_timeout: Dial timeout in seconds (default DGX_CONNECT_TIMEOUT or 10.0)
        trust_store: known_hosts store (default DGX_KNOWN_HOSTS or ~/.ssh/known_hosts)
        confirm: Consent callback for unknown host keys; None declines
        runner: Runs ssh/scp/rsync/ssh-keyscan (default SubprocessRunner)
    """

    def __init__(
        self,
        profile: ConnectionProfile,
        *,
        connect_timeout: Optional[float] = None,
        trust_store: Optional[TrustStore] = None,
        confirm: Optional[ConfirmFn] = None,
        runner: Optional[ProcessRunner] = None,
    ):
        self._profile = profile
        self._connect_timeout = connect_timeout if connect_timeout is not None else config.connect_timeout()
        self._runner = runner or SubprocessRunner()
        self._gate = HostTrustGate(trust_store, confirm=confirm, runner=self._runner)

        self._lock = threading.Lock()
        self._client: Optional[paramiko.SSHClient] = None
        self._tunnels: list[Tunnel] = []

    @property
    def profile(self) -> ConnectionProfile:
        return self._profile

    @property
    def connected(self) -> bool:
        return self._client is not None

    # -- connection --------------------------------------------------------

    def connect(self) -> None:
        """(Re)establish the transport, replacing any existing one.

        Raises:
            KeyReadError, KeyParseError: identity key problems
            DialTimeoutError: dial exceeded connect_timeout
            UntrustedHostError: host key mismatch or unusable scanned key
            ConnectionAbortedError: unknown host key and consent declined
            SessionError: any other transport failure
        """
        with self._lock:
            self._disconnect()
            self._client = self._dial()

    def _ensure_connected(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client
        with self._lock:
            if self._client is None:
                self._client = self._dial()
            return self._client

    def _dial(self) -> paramiko.SSHClient:
        """Open a new authenticated client, running trust-on-first-use at most once."""
        pkey = load_private_key(self._profile.identity_file)
        try:
            return self._open(pkey)
        except UnknownHostKeyError:
            self._gate.trust_on_first_use(self._profile.host, self._profile.port)
        logger.info("Retrying connection to %s with updated trust store", self._profile.host)
        return self._open(pkey)

    def _open(self, pkey: paramiko.PKey) -> paramiko.SSHClient:
        host, port = self._profile.host, self._profile.port
        client = paramiko.SSHClient()
        self._gate.configure(client, host, port)
        try:
            client.connect(
                host,
                port=port,
                username=self._profile.user,
                pkey=pkey,
                timeout=self._connect_timeout,
                banner_timeout=self._connect_timeout,
                auth_timeout=self._connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except UntrustedHostError:
            client.close()
            raise
        except paramiko.BadHostKeyException as e:
            client.close()
            raise UntrustedHostError(
                f"Host key mismatch (got {e.key.get_name()}, trust store has {e.expected_key.get_name()})",
                host=host,
                port=port,
            ) from e
        except paramiko.AuthenticationException as e:
            client.close()
            raise AuthenticationError(f"Authentication failed for {self._profile.user}: {e}", host, port) from e
        except (socket.timeout, TimeoutError) as e:
            client.close()
            raise DialTimeoutError(host, port, self._connect_timeout) from e
        except (paramiko.SSHException, EOFError, OSError) as e:
            client.close()
            raise SessionError(f"Failed to connect: {e}", host=host, port=port) from e

        logger.info("SSH connected to %s", self._profile)
        return client

    def _disconnect(self) -> None:
        for tunnel in self._tunnels:
            try:
                tunnel.stop()
            except Exception:
                pass
        self._tunnels.clear()
        if self._client is not None:
            try:
                self._client.close()
            except Exception:
                pass
            self._client = None

    # -- commands ----------------------------------------------------------

    def _new_channel(self) -> paramiko.Channel:
        client = self._ensure_connected()
        transport = client.get_transport()
        if transport is None or not transport.is_active():
            raise SessionError("Transport is no longer active", self._profile.host, self._profile.port)
        return transport.open_session(timeout=self._connect_timeout)

    def _open_channel(self) -> paramiko.Channel:
        """Open a session channel, reconnecting exactly once if the transport went stale."""
        try:
            return self._new_channel()
        except (SessionError, paramiko.SSHException, EOFError, OSError) as e:
            if self._client is None:
                raise
            logger.warning("Session to %s is stale (%s); reconnecting once", self._profile.host, e)

        self.connect()
        try:
            return self._new_channel()
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise SessionError(
                f"Failed to open session after reconnect: {e}", self._profile.host, self._profile.port
            ) from e

    def run(self, command: str) -> CommandResult:
        """Execute a command and return its exit status and combined output.

        Does not raise for non-zero exit; see execute().

        Raises:
            SessionClientError: connection or channel failure
        """
        chan = self._open_channel()
        try:
            chan.set_combine_stderr(True)
            chan.exec_command(command)
            chan.shutdown_write()

            chunks: list[bytes] = []
            while True:
                data = chan.recv(65536)
                if not data:
                    break
                chunks.append(data)
            exit_code = chan.recv_exit_status()
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise SessionError(f"Command {command!r} failed: {e}", self._profile.host, self._profile.port) from e
        finally:
            chan.close()

        output = b"".join(chunks).decode(errors="replace")
        logger.debug("%r exited with %d (%d bytes)", command, exit_code, len(output))
        return CommandResult(command=command, exit_code=exit_code, output=output)

    def execute(self, command: str) -> str:
        """Execute a command and return combined stdout/stderr.

        Raises:
            RemoteCommandError: If the command exits non-zero (carries the output)
            SessionClientError: connection or channel failure
        """
        result = self.run(command)
        if not result.ok:
            raise RemoteCommandError(command, result.exit_code, result.output, host=self._profile.host)
        return result.output

    # -- native tool handoff -----------------------------------------------

    def _ssh_argv(self) -> list[str]:
        return ["ssh", "-i", self._profile.identity_file, "-p", str(self._profile.port), self._profile.destination]

    def interactive_shell(self) -> int:
        """Hand the terminal to a native ``ssh`` session. Returns its exit status.

        Raises:
            SessionError: If ssh cannot be started
        """
        argv = self._ssh_argv()
        try:
            result = self._runner.run(argv)
        except OSError as e:
            raise SessionError(f"Failed to start ssh: {e}", self._profile.host, self._profile.port) from e
        return result.returncode

    def expand_remote(self, path: str) -> str:
        """Replace the ``dgx:`` shorthand with ``user@host:``."""
        if path.startswith(REMOTE_ALIAS):
            return f"{self._profile.destination}:{path[len(REMOTE_ALIAS):]}"
        return path

    def _transfer(self, tool: str, argv: list[str], source: str, dest: str) -> None:
        try:
            result = self._runner.run(argv)
        except OSError as e:
            raise TransferError(tool, source, dest, str(e)) from e
        if not result.ok:
            raise TransferError(tool, source, dest, f"exit status {result.returncode}")

    def copy_file(self, source: str, dest: str) -> None:
        """Recursive scp. Either side may use the ``dgx:`` shorthand."""
        source, dest = self.expand_remote(source), self.expand_remote(dest)
        argv = ["scp", "-i", self._profile.identity_file, "-P", str(self._profile.port), "-r", source, dest]
        self._transfer("scp", argv, source, dest)

    def rsync(self, source: str, dest: str, delete: bool = False) -> None:
        """rsync over ssh with progress. Either side may use the ``dgx:`` shorthand."""
        source, dest = self.expand_remote(source), self.expand_remote(dest)
        argv = [
            "rsync",
            "-avz",
            "--progress",
            "-e",
            f"ssh -i {self._profile.identity_file} -p {self._profile.port}",
        ]
        if delete:
            argv.append("--delete")
        argv += [source, dest]
        self._transfer("rsync", argv, source, dest)

    # -- probes and forwarding ---------------------------------------------

    def check_connection(self) -> float:
        """Time a full connect+teardown cycle on a throwaway connection.

        Returns:
            Latency in seconds

        Raises:
            SessionClientError: same as connect()
        """
        start = time.monotonic()
        client = self._dial()
        try:
            return time.monotonic() - start
        finally:
            client.close()

    def forward(self, local_port: int, remote_host: str, remote_port: int) -> Tunnel:
        """Forward a local port through this client's transport (in-process).

        Args:
            local_port: Local port to listen on (0 for OS-assigned)
            remote_host: Host as seen from the remote end
            remote_port: Port on remote_host

        Returns:
            Tunnel (use as context manager or call stop())
        """
        client = self._ensure_connected()
        transport = client.get_transport()
        if transport is None or not transport.is_active():
            raise SessionError("Transport is no longer active", self._profile.host, self._profile.port)
        tunnel = Tunnel(local_port, remote_host, remote_port, transport)
        self._tunnels.append(tunnel)
        return tunnel

    def close(self) -> None:
        """Close the transport and all in-process forwards. Safe to call repeatedly."""
        was_connected = self._client is not None
        with self._lock:
            self._disconnect()
        if was_connected:
            logger.info("SSH session to %s closed", self._profile.host)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        state = "connected" if self.connected else "disconnected"
        return f"SessionClient({self._profile}, {state})"


__all__ = [
    "CommandResult",
    "Tunnel",
    "SessionClient",
    "load_private_key",
]
