"""
Local process seams: running native tools and inspecting the process table.

Everything OS-specific that the session client and tunnel manager need sits
behind two small interfaces so the matching logic above them can be tested
with in-memory fakes (see dgxctl.testing):

    ProcessRunner     run(argv) -> RunResult         (ssh, scp, rsync, ssh-keyscan)
    ProcessInspector  list_processes / port_owner / terminate
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

import psutil

from dgxctl.errors import PortProbeError, ProcessNotFoundError, SignalError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Process runner
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunResult:
    """Exit status (and captured output, if requested) of a finished process."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner(ABC):
    """Runs an external command to completion."""

    @abstractmethod
    def run(self, argv: Sequence[str], *, capture: bool = False, detach: bool = False) -> RunResult:
        """Run argv and wait for it to exit.

        Args:
            argv: Program and arguments (no shell)
            capture: Pipe stdout/stderr into the result instead of inheriting
                the caller's terminal. stdin is closed when capturing.
            detach: Start the process in its own session so it (and anything
                it forks into the background) survives the caller's terminal.

        Raises:
            OSError: If the program cannot be started
        """


class SubprocessRunner(ProcessRunner):
    """ProcessRunner backed by subprocess.run."""

    def run(self, argv: Sequence[str], *, capture: bool = False, detach: bool = False) -> RunResult:
        argv = tuple(argv)
        logger.debug("Running %s", " ".join(argv))
        if capture:
            proc = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                start_new_session=detach,
            )
            return RunResult(argv, proc.returncode, proc.stdout or "", proc.stderr or "")
        proc = subprocess.run(argv, start_new_session=detach)
        return RunResult(argv, proc.returncode)


# ---------------------------------------------------------------------------
# Process inspector
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessEntry:
    """One row of the process table: pid and full argv."""

    pid: int
    cmdline: tuple[str, ...]

    @property
    def command_line(self) -> str:
        return " ".join(self.cmdline)


class ProcessInspector(ABC):
    """Read-through view of the OS process and socket tables."""

    @abstractmethod
    def list_processes(self) -> Iterator[ProcessEntry]:
        """Yield every visible process with a non-empty command line.

        Raises:
            PortProbeError: If the process table cannot be enumerated
        """

    @abstractmethod
    def port_owner(self, port: int) -> Optional[int]:
        """PID of the process bound to local TCP port, or None if nothing is bound.

        Raises:
            PortProbeError: If the socket table cannot be inspected
        """

    def is_bound(self, port: int) -> bool:
        """True if anything holds the local TCP port, even when its owner is not visible."""
        return self.port_owner(port) is not None

    @abstractmethod
    def terminate(self, pid: int) -> None:
        """Send SIGTERM to pid.

        Raises:
            ProcessNotFoundError: pid does not resolve to a live process
            SignalError: signal could not be delivered
        """


class PsutilInspector(ProcessInspector):
    """ProcessInspector backed by psutil."""

    def list_processes(self) -> Iterator[ProcessEntry]:
        try:
            procs = psutil.process_iter(["pid", "cmdline"])
            for proc in procs:
                cmdline = proc.info.get("cmdline")
                if not cmdline:
                    continue
                yield ProcessEntry(pid=proc.info["pid"], cmdline=tuple(cmdline))
        except psutil.Error as e:
            raise PortProbeError(str(e)) from e

    def _tcp_bindings(self, port: int) -> list[Optional[int]]:
        """PIDs (None when hidden) of all TCP sockets whose local address uses port."""
        try:
            conns = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied:
            # macOS needs root for the system-wide table; walk our own-visible processes instead.
            return self._tcp_bindings_per_process(port)
        except (psutil.Error, OSError) as e:
            raise PortProbeError(str(e), port=port) from e
        return [c.pid for c in conns if c.laddr and c.laddr.port == port]

    def _tcp_bindings_per_process(self, port: int) -> list[Optional[int]]:
        pids: list[Optional[int]] = []
        for proc in psutil.process_iter():
            try:
                conns = proc.net_connections(kind="tcp")
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            pids.extend(proc.pid for c in conns if c.laddr and c.laddr.port == port)
        return pids

    def port_owner(self, port: int) -> Optional[int]:
        pids = self._tcp_bindings(port)
        for pid in pids:
            if pid:
                return pid
        return None

    def is_bound(self, port: int) -> bool:
        return bool(self._tcp_bindings(port))

    def terminate(self, pid: int) -> None:
        if pid <= 0:
            raise ProcessNotFoundError(pid)
        try:
            psutil.Process(pid).terminate()
        except psutil.NoSuchProcess as e:
            raise ProcessNotFoundError(pid) from e
        except psutil.AccessDenied as e:
            raise SignalError(pid, "permission denied") from e
        except OSError as e:
            raise SignalError(pid, str(e)) from e


__all__ = [
    "RunResult",
    "ProcessRunner",
    "SubprocessRunner",
    "ProcessEntry",
    "ProcessInspector",
    "PsutilInspector",
]
