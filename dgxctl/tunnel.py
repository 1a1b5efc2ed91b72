"""
Background SSH tunnels, tracked through the OS process table only.

There is no registry of "tunnels we created": every query
re-derives state from live processes via a ProcessInspector. Consequences
callers should know about:

* A descriptor from list() may disagree with the one returned by create()
  for the same local port if the port was released and reused by another
  forward in between.
* list() matches the profile host as a plain substring of the command line,
  so an unrelated ``ssh -L`` whose arguments merely mention the same string
  is reported too.
* kill(pid) signals whatever process currently has that pid. Call list()
  right before killing when the pid may be stale.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterator, Optional, Sequence

from dgxctl import config
from dgxctl.errors import (
    PortProbeError,
    ProcessNotFoundError,
    SignalError,
    TunnelCreateError,
    TunnelError,
)
from dgxctl.process import ProcessEntry, ProcessInspector, ProcessRunner, PsutilInspector, SubprocessRunner
from dgxctl.profile import ConnectionProfile

logger = logging.getLogger(__name__)

# ssh options that take no argument and may be clustered in front of L (e.g. -fNL)
_SSH_NOARG_FLAGS = frozenset("46AaCfGgKkMNnqsTtVvXxYy")


@dataclass(frozen=True)
class TunnelDescriptor:
    """A local_port -> remote_host:remote_port forward.

    remote_host is resolved on the far side of the SSH connection, so the
    default "localhost" means the remote machine itself. pid is only set once
    the OS has confirmed which process owns local_port; created_at is
    informational.
    """

    local_port: int
    remote_port: int
    remote_host: str = "localhost"
    pid: Optional[int] = None
    created_at: Optional[datetime] = field(default=None, compare=False)
    description: str = field(default="", compare=False)

    def __post_init__(self):
        for name in ("local_port", "remote_port"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1 or value > 65535:
                raise ValueError(f"{name} must be 1-65535, got {value}")
        if not self.remote_host:
            raise ValueError("remote_host must be non-empty")

    @property
    def spec(self) -> str:
        """``-L`` argument: local:host:remote."""
        return f"{self.local_port}:{self.remote_host}:{self.remote_port}"

    def __str__(self) -> str:
        pid = self.pid if self.pid is not None else "?"
        text = f"PID {pid}: localhost:{self.local_port} -> {self.remote_host}:{self.remote_port}"
        return f"{text} [{self.description}]" if self.description else text


def _forward_argument(argv: Sequence[str]) -> Optional[str]:
    """Return the value of the first -L option in an ssh argv, or None."""
    for i, arg in enumerate(argv[1:], start=1):
        if not arg.startswith("-") or arg.startswith("--") or len(arg) < 2:
            continue
        flags = arg[1:]
        idx = flags.find("L")
        if idx < 0 or not all(c in _SSH_NOARG_FLAGS for c in flags[:idx]):
            continue
        rest = flags[idx + 1 :]
        if rest:
            return rest
        if i + 1 < len(argv):
            return argv[i + 1]
        return None
    return None


def parse_forward_command(entry: ProcessEntry) -> Optional[TunnelDescriptor]:
    """Parse an ``ssh ... -L local:host:remote ...`` process into a descriptor.

    An optional bind address (``bind:local:host:remote``) is accepted and
    dropped. Returns None for anything that is not a well-formed ssh forward.
    """
    if not entry.cmdline or "ssh" not in os.path.basename(entry.cmdline[0]):
        return None
    spec = _forward_argument(entry.cmdline)
    if spec is None:
        return None
    parts = spec.split(":")
    if len(parts) == 4:
        parts = parts[1:]
    if len(parts) != 3:
        return None
    local, host, remote = parts
    try:
        return TunnelDescriptor(local_port=int(local), remote_port=int(remote), remote_host=host, pid=entry.pid)
    except ValueError:
        return None


@dataclass
class KillReport:
    """Outcome of kill_all(): pids terminated and per-pid failures."""

    killed: list[int] = field(default_factory=list)
    failed: dict[int, TunnelError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class TunnelManager:
    """Create, enumerate and terminate background ``ssh -N -f -L`` tunnels.

    Args:
        profile: Connection profile the tunnels go through
        runner: Spawns ssh (default SubprocessRunner)
        inspector: Process/socket table view (default PsutilInspector)
    """

    def __init__(
        self,
        profile: ConnectionProfile,
        *,
        runner: Optional[ProcessRunner] = None,
        inspector: Optional[ProcessInspector] = None,
    ):
        self._profile = profile
        self._runner = runner or SubprocessRunner()
        self._inspector = inspector or PsutilInspector()

    @property
    def profile(self) -> ConnectionProfile:
        return self._profile

    def is_port_in_use(self, port: int) -> bool:
        """True if any process holds local TCP port.

        Raises:
            PortProbeError: If the socket table cannot be inspected
        """
        return self._inspector.is_bound(port)

    def _forward_argv(self, tunnel: TunnelDescriptor) -> list[str]:
        return [
            "ssh",
            "-N",
            "-f",
            "-o",
            "ExitOnForwardFailure=yes",
            "-i",
            self._profile.identity_file,
            "-p",
            str(self._profile.port),
            "-L",
            tunnel.spec,
            self._profile.destination,
        ]

    def create(self, tunnel: TunnelDescriptor) -> TunnelDescriptor:
        """Spawn a background forward and try to discover its pid.

        ssh runs with ExitOnForwardFailure, so it only forks into the
        background once the local listener is bound; a port taken between the
        pre-check and the bind makes ssh exit non-zero. If the pid cannot be
        discovered the tunnel is still returned, with pid=None.

        Returns:
            Copy of tunnel with pid (if discovered) and created_at set

        Raises:
            TunnelCreateError: local port already taken, ssh missing, or ssh failed
        """
        port = tunnel.local_port
        try:
            if self._inspector.is_bound(port):
                raise TunnelCreateError(port, "local port is already in use")
        except PortProbeError as e:
            raise TunnelCreateError(port, str(e)) from e

        argv = self._forward_argv(tunnel)
        logger.debug("Spawning tunnel: %s", " ".join(argv))
        try:
            result = self._runner.run(argv, detach=True)
        except OSError as e:
            raise TunnelCreateError(port, f"cannot start ssh: {e}") from e
        if not result.ok:
            raise TunnelCreateError(port, f"ssh exited with status {result.returncode} (forward not established)")

        pid: Optional[int] = None
        try:
            pid = self._inspector.port_owner(port)
        except PortProbeError as e:
            logger.warning("Could not find tunnel PID for port %d: %s", port, e)
        else:
            if pid is None:
                logger.warning("Could not find tunnel PID for port %d: nothing bound yet", port)

        created = replace(tunnel, pid=pid, created_at=datetime.now())
        logger.info(
            "Tunnel created: localhost:%d -> %s:%d via %s (PID: %s)",
            port,
            tunnel.remote_host,
            tunnel.remote_port,
            self._profile.host,
            pid if pid is not None else "unknown",
        )
        return created

    def list(self) -> Iterator[TunnelDescriptor]:
        """Yield live forwards through the configured host, as the process table shows them now.

        Order follows the OS process listing and is not meaningful.

        Raises:
            PortProbeError: If the process table cannot be enumerated
        """
        host = self._profile.host
        for entry in self._inspector.list_processes():
            if host not in entry.command_line:
                continue
            tunnel = parse_forward_command(entry)
            if tunnel is not None:
                yield tunnel

    def kill(self, pid: int) -> None:
        """Send SIGTERM to pid.

        Raises:
            ProcessNotFoundError: pid is not a live process
            SignalError: signal could not be delivered
        """
        self._inspector.terminate(pid)
        logger.info("Tunnel (PID %d) terminated", pid)

    def kill_all(self) -> KillReport:
        """Terminate every tunnel list() reports, continuing past per-tunnel failures.

        Raises:
            PortProbeError: Only if enumeration itself fails
        """
        report = KillReport()
        pids = [t.pid for t in self.list() if t.pid is not None]
        for pid in pids:
            try:
                self.kill(pid)
            except (ProcessNotFoundError, SignalError) as e:
                logger.error("Failed to kill tunnel %d: %s", pid, e)
                report.failed[pid] = e
            else:
                report.killed.append(pid)
        return report

    def find_available_port(self, start: int, window: int = config.PORT_SEARCH_WINDOW) -> Optional[int]:
        """First free port in [start, start + window), or None if all are taken.

        Raises:
            ValueError: If start is not a valid port
            PortProbeError: If the socket table cannot be inspected
        """
        if start < 1 or start > 65535:
            raise ValueError(f"start must be 1-65535, got {start}")
        for port in range(start, min(start + window, 65536)):
            if not self.is_port_in_use(port):
                return port
        return None

    def __repr__(self):
        return f"TunnelManager({self._profile})"


__all__ = [
    "TunnelDescriptor",
    "KillReport",
    "TunnelManager",
    "parse_forward_command",
]
