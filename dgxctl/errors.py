"""
Exceptions raised by dgxctl.

Two families mirror the two independent components: ``SessionClientError``
for everything that goes through the SSH transport (key loading, dialing,
host trust, remote commands) and ``TunnelError`` for everything that goes
through the local process table (spawning, probing, signalling forwards).
Each exception keeps its context (host, port, command, pid) as attributes
so callers can render precise messages without parsing strings.
"""

from typing import Optional


class DGXError(Exception):
    """Base class for all dgxctl errors."""


# ---------------------------------------------------------------------------
# Session client
# ---------------------------------------------------------------------------


class SessionClientError(DGXError):
    """Failure talking to the remote host over SSH."""

    def __init__(self, message: str, host: Optional[str] = None, port: Optional[int] = None):
        self.host = host
        self.port = port
        target = f" ({host}:{port})" if host is not None and port is not None else ""
        super().__init__(f"{message}{target}")


class KeyReadError(SessionClientError):
    """Identity key file could not be read."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read identity key {path}: {reason}")


class KeyParseError(SessionClientError):
    """Identity key file was read but is not a usable private key."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot parse identity key {path}: {reason}")


class DialTimeoutError(SessionClientError):
    """TCP/SSH connection did not complete within the connect timeout."""

    def __init__(self, host: str, port: int, timeout: float):
        self.timeout = timeout
        super().__init__(f"Connection timed out after {timeout}s", host=host, port=port)


class UntrustedHostError(SessionClientError):
    """Remote host key does not match, or could not be added to, the trust store."""


class UnknownHostKeyError(UntrustedHostError):
    """Remote host key is absent from the trust store (first contact)."""

    def __init__(self, host: str, port: int, key_type: str = "", fingerprint: str = ""):
        self.key_type = key_type
        self.fingerprint = fingerprint
        detail = f" ({key_type} {fingerprint})" if key_type else ""
        super().__init__(f"Host key not found in trust store{detail}", host=host, port=port)


class ConnectionAbortedError(SessionClientError):
    """User declined to trust an unknown host key."""

    def __init__(self, host: str, port: int):
        super().__init__("Connection aborted: host key not trusted", host=host, port=port)


class SessionError(SessionClientError):
    """Transport or channel failure (including after the single reconnect attempt)."""


class AuthenticationError(SessionError):
    """Server rejected the identity key."""


class RemoteCommandError(SessionClientError):
    """Remote command exited with a non-zero status.

    Attributes:
        command: The command line that was executed
        exit_code: Remote exit status
        output: Combined stdout/stderr captured before exit
    """

    def __init__(self, command: str, exit_code: int, output: str, host: Optional[str] = None):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        where = f" on {host}" if host else ""
        super().__init__(f"Command {command!r} failed{where} (non-zero exit status {exit_code})")


class TransferError(SessionClientError):
    """scp/rsync exited with a non-zero status or could not be started."""

    def __init__(self, tool: str, source: str, dest: str, reason: str):
        self.tool = tool
        self.source = source
        self.dest = dest
        super().__init__(f"{tool} {source} -> {dest} failed: {reason}")


# ---------------------------------------------------------------------------
# Tunnels
# ---------------------------------------------------------------------------


class TunnelError(DGXError):
    """Failure managing a background forwarding process."""


class TunnelCreateError(TunnelError):
    """Forwarding process could not be spawned, or its local port is taken."""

    def __init__(self, local_port: int, reason: str):
        self.local_port = local_port
        self.reason = reason
        super().__init__(f"Failed to create tunnel on local port {local_port}: {reason}")


class ProcessNotFoundError(TunnelError):
    """PID does not resolve to a live process."""

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"No such process: {pid}")


class SignalError(TunnelError):
    """Termination signal could not be delivered."""

    def __init__(self, pid: int, reason: str):
        self.pid = pid
        self.reason = reason
        super().__init__(f"Failed to signal process {pid}: {reason}")


class PortProbeError(TunnelError):
    """Process or socket table could not be inspected."""

    def __init__(self, reason: str, port: Optional[int] = None):
        self.port = port
        self.reason = reason
        where = f" for port {port}" if port is not None else ""
        super().__init__(f"Process table query failed{where}: {reason}")


__all__ = [
    "DGXError",
    "SessionClientError",
    "KeyReadError",
    "KeyParseError",
    "DialTimeoutError",
    "UntrustedHostError",
    "UnknownHostKeyError",
    "ConnectionAbortedError",
    "SessionError",
    "AuthenticationError",
    "RemoteCommandError",
    "TransferError",
    "TunnelError",
    "TunnelCreateError",
    "ProcessNotFoundError",
    "SignalError",
    "PortProbeError",
]
