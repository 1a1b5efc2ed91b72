"""Tests for dgxctl.cli.exec and dgxctl.cli.connect - remote command and shell tools."""

import contextlib
import io
from unittest import mock

from dgxctl.errors import DialTimeoutError, RemoteCommandError

ARGV = ["-H", "spark.example.com", "-u", "ops"]


def _run(module, *argv):
    main = __import__(f"dgxctl.cli.{module}", fromlist=["main"]).main
    out, err = io.StringIO(), io.StringIO()
    with mock.patch("sys.argv", [f"dgx-{module}", *ARGV, *argv]):
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            rc = main()
    return rc, out.getvalue(), err.getvalue()


class TestExec:
    @mock.patch("dgxctl.cli.exec.make_client")
    def test_prints_output(self, mock_mc):
        client = mock.MagicMock()
        client.execute.return_value = "GPU 0: NVIDIA GB10\n"
        mock_mc.return_value = client

        rc, out, _ = _run("exec", "--", "nvidia-smi", "-L")

        assert rc == 0
        assert out == "GPU 0: NVIDIA GB10\n"
        client.execute.assert_called_once_with("nvidia-smi -L")
        client.close.assert_called_once()

    @mock.patch("dgxctl.cli.exec.make_client")
    def test_remote_failure_passes_exit_code(self, mock_mc):
        client = mock.MagicMock()
        client.execute.side_effect = RemoteCommandError("ls /nope", 2, "ls: cannot access '/nope'\n")
        mock_mc.return_value = client

        rc, out, err = _run("exec", "ls", "/nope")

        assert rc == 2
        assert "cannot access" in out
        assert "non-zero exit status 2" in err
        client.close.assert_called_once()

    @mock.patch("dgxctl.cli.exec.make_client")
    def test_exit_code_out_of_range(self, mock_mc):
        client = mock.MagicMock()
        client.execute.side_effect = RemoteCommandError("x", -1, "")
        mock_mc.return_value = client

        rc, _, _ = _run("exec", "x")
        assert rc == 1

    @mock.patch("dgxctl.cli.exec.make_client")
    def test_connection_failure(self, mock_mc):
        client = mock.MagicMock()
        client.execute.side_effect = DialTimeoutError("spark.example.com", 22, 10.0)
        mock_mc.return_value = client

        rc, out, err = _run("exec", "uptime")

        assert rc == 1
        assert out == ""
        assert "timed out" in err


class TestConnect:
    @mock.patch("dgxctl.cli.connect.make_client")
    def test_returns_shell_status(self, mock_mc):
        client = mock.MagicMock()
        client.interactive_shell.return_value = 0
        mock_mc.return_value = client

        rc, _, err = _run("connect")

        assert rc == 0
        assert "Connecting to ops@spark.example.com" in err
        client.interactive_shell.assert_called_once()

    @mock.patch("dgxctl.cli.connect.make_client")
    def test_shell_exit_status_propagates(self, mock_mc):
        mock_mc.return_value.interactive_shell.return_value = 255
        rc, _, _ = _run("connect")
        assert rc == 255
