"""
Testing utilities - fakes for the process seams, no real processes spawned.

FakeProcessRunner records every argv it is asked to run and answers from a
script; FakeProcessInspector is an in-memory process table with port
ownership. Wire them together with ``on_run`` to model side effects such as
``ssh -f`` leaving a forwarding process behind.

Example:
    inspector = FakeProcessInspector()
    runner = FakeProcessRunner(on_run=lambda argv: inspector.add_process(argv, port=8000))
    mgr = TunnelManager(profile, runner=runner, inspector=inspector)
"""

from __future__ import annotations

import itertools
import threading
from typing import Callable, Iterator, Optional, Sequence, Union

from dgxctl.errors import PortProbeError, ProcessNotFoundError, SignalError
from dgxctl.process import ProcessEntry, ProcessInspector, ProcessRunner, RunResult

ScriptedResult = Union[RunResult, int, BaseException]


class FakeProcessRunner(ProcessRunner):
    """ProcessRunner that records calls instead of spawning.

    Args:
        results: Mapping of program name (argv[0]) to a RunResult, an exit
            code, or an exception to raise. Unlisted programs exit 0.
        on_run: Called with argv before the scripted result is returned
    """

    def __init__(
        self,
        results: Optional[dict[str, ScriptedResult]] = None,
        on_run: Optional[Callable[[tuple[str, ...]], None]] = None,
    ):
        self.results: dict[str, ScriptedResult] = dict(results or {})
        self.on_run = on_run
        self.calls: list[tuple[str, ...]] = []
        self.options: list[dict[str, bool]] = []

    def run(self, argv: Sequence[str], *, capture: bool = False, detach: bool = False) -> RunResult:
        argv = tuple(argv)
        self.calls.append(argv)
        self.options.append({"capture": capture, "detach": detach})
        scripted = self.results.get(argv[0], 0)
        if isinstance(scripted, BaseException):
            raise scripted
        if self.on_run is not None:
            self.on_run(argv)
        if isinstance(scripted, RunResult):
            return RunResult(argv, scripted.returncode, scripted.stdout, scripted.stderr)
        return RunResult(argv, scripted)

    @property
    def last_call(self) -> tuple[str, ...]:
        if not self.calls:
            raise AssertionError("FakeProcessRunner was never called")
        return self.calls[-1]


class FakeProcessInspector(ProcessInspector):
    """In-memory process and socket table.

    Processes are keyed by pid; each may own one local TCP port. Ports can
    also be marked bound without a visible owner (another user's process).
    terminate() removes the process and frees its port.
    """

    def __init__(self, first_pid: int = 1000):
        self._lock = threading.Lock()
        self._pids = itertools.count(first_pid)
        self._procs: dict[int, tuple[str, ...]] = {}
        self._ports: dict[int, Optional[int]] = {}
        self._protected: set[int] = set()
        self.fail_listing: Optional[str] = None
        self.terminated: list[int] = []

    def add_process(self, cmdline: Sequence[str], port: Optional[int] = None, pid: Optional[int] = None) -> int:
        with self._lock:
            pid = pid if pid is not None else next(self._pids)
            self._procs[pid] = tuple(cmdline)
            if port is not None:
                self._ports[port] = pid
            return pid

    def bind_port(self, port: int, pid: Optional[int] = None) -> None:
        """Mark port as bound; pid None means the owner is not visible."""
        with self._lock:
            self._ports[port] = pid

    def protect(self, pid: int) -> None:
        """Make terminate(pid) fail with SignalError (permission denied)."""
        self._protected.add(pid)

    def list_processes(self) -> Iterator[ProcessEntry]:
        if self.fail_listing is not None:
            raise PortProbeError(self.fail_listing)
        with self._lock:
            snapshot = list(self._procs.items())
        for pid, cmdline in snapshot:
            if cmdline:
                yield ProcessEntry(pid=pid, cmdline=cmdline)

    def port_owner(self, port: int) -> Optional[int]:
        with self._lock:
            return self._ports.get(port)

    def is_bound(self, port: int) -> bool:
        with self._lock:
            return port in self._ports

    def terminate(self, pid: int) -> None:
        with self._lock:
            if pid not in self._procs:
                raise ProcessNotFoundError(pid)
            if pid in self._protected:
                raise SignalError(pid, "permission denied")
            del self._procs[pid]
            for port in [p for p, owner in self._ports.items() if owner == pid]:
                del self._ports[port]
            self.terminated.append(pid)


__all__ = ["FakeProcessRunner", "FakeProcessInspector"]
