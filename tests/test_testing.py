"""Tests for dgxctl.testing fakes."""

import pytest

from dgxctl.errors import PortProbeError, ProcessNotFoundError, SignalError
from dgxctl.process import ProcessEntry, RunResult
from dgxctl.testing import FakeProcessInspector, FakeProcessRunner


class TestFakeProcessRunner:
    def test_default_exit_zero(self):
        runner = FakeProcessRunner()
        assert runner.run(["true"]) == RunResult(("true",), 0)
        assert runner.calls == [("true",)]

    def test_scripted_results(self):
        runner = FakeProcessRunner({"scp": 1, "ssh-keyscan": RunResult((), 0, "key\n")})
        assert runner.run(["scp", "a", "b"]).returncode == 1
        scanned = runner.run(["ssh-keyscan", "h"], capture=True)
        assert scanned.stdout == "key\n"
        assert scanned.argv == ("ssh-keyscan", "h")
        assert runner.options == [{"capture": False, "detach": False}, {"capture": True, "detach": False}]

    def test_scripted_exception_skips_on_run(self):
        seen = []
        runner = FakeProcessRunner({"ssh": FileNotFoundError(2, "missing")}, on_run=seen.append)
        with pytest.raises(FileNotFoundError):
            runner.run(["ssh"])
        assert seen == []
        assert runner.calls == [("ssh",)]

    def test_last_call_without_calls(self):
        with pytest.raises(AssertionError):
            FakeProcessRunner().last_call


class TestFakeProcessInspector:
    def test_add_and_list(self):
        inspector = FakeProcessInspector(first_pid=500)
        pid = inspector.add_process(["ssh", "-L", "1:h:2", "host"], port=1)
        assert pid == 500
        assert list(inspector.list_processes()) == [ProcessEntry(500, ("ssh", "-L", "1:h:2", "host"))]
        assert inspector.port_owner(1) == 500

    def test_empty_cmdline_hidden(self):
        inspector = FakeProcessInspector()
        inspector.add_process([])
        assert list(inspector.list_processes()) == []

    def test_terminate_frees_port(self):
        inspector = FakeProcessInspector()
        pid = inspector.add_process(["ssh"], port=8888)
        inspector.terminate(pid)
        assert not inspector.is_bound(8888)
        assert inspector.terminated == [pid]
        with pytest.raises(ProcessNotFoundError):
            inspector.terminate(pid)

    def test_protected(self):
        inspector = FakeProcessInspector()
        pid = inspector.add_process(["ssh"])
        inspector.protect(pid)
        with pytest.raises(SignalError):
            inspector.terminate(pid)
        assert inspector.terminated == []

    def test_hidden_owner(self):
        inspector = FakeProcessInspector()
        inspector.bind_port(22)
        assert inspector.is_bound(22)
        assert inspector.port_owner(22) is None

    def test_fail_listing(self):
        inspector = FakeProcessInspector()
        inspector.fail_listing = "boom"
        with pytest.raises(PortProbeError, match="boom"):
            list(inspector.list_processes())
