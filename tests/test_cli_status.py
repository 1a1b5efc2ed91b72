"""Tests for dgxctl.cli.status and dgxctl.cli.sync."""

import contextlib
import io
from unittest import mock

from dgxctl.errors import AuthenticationError, PortProbeError, TransferError

ARGV = ["-H", "spark.example.com", "-u", "ops"]


def _run(module, *argv):
    main = __import__(f"dgxctl.cli.{module}", fromlist=["main"]).main
    out, err = io.StringIO(), io.StringIO()
    with mock.patch("sys.argv", [f"dgx-{module}", *ARGV, *argv]):
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            rc = main()
    return rc, out.getvalue(), err.getvalue()


class TestStatus:
    @mock.patch("dgxctl.cli.status.make_manager")
    @mock.patch("dgxctl.cli.status.make_client")
    def test_connected(self, mock_mc, mock_mm):
        mock_mc.return_value.check_connection.return_value = 0.0423
        mock_mm.return_value.list.return_value = iter([mock.sentinel.a, mock.sentinel.b])

        rc, out, _ = _run("status")

        assert rc == 0
        assert "Checking connection to ops@spark.example.com:22..." in out
        assert "Connected (latency: 42 ms)" in out
        assert "Active tunnels: 2" in out

    @mock.patch("dgxctl.cli.status.make_manager")
    @mock.patch("dgxctl.cli.status.make_client")
    def test_connection_failed(self, mock_mc, mock_mm):
        mock_mc.return_value.check_connection.side_effect = AuthenticationError("Authentication failed for ops")

        rc, out, err = _run("status")

        assert rc == 1
        assert "Connection failed: Authentication failed for ops" in err
        assert "Active tunnels" not in out
        mock_mm.assert_not_called()

    @mock.patch("dgxctl.cli.status.make_manager")
    @mock.patch("dgxctl.cli.status.make_client")
    def test_tunnel_count_unavailable(self, mock_mc, mock_mm):
        mock_mc.return_value.check_connection.return_value = 0.01
        mock_mm.return_value.list.side_effect = PortProbeError("access denied")

        rc, out, _ = _run("status")

        assert rc == 0
        assert "Active tunnels: unknown" in out


class TestSync:
    @mock.patch("dgxctl.cli.sync.make_client")
    def test_rsync_default(self, mock_mc):
        rc, _, err = _run("sync", "./code", "dgx:~/projects/")
        assert rc == 0
        mock_mc.return_value.rsync.assert_called_once_with("./code", "dgx:~/projects/", delete=False)
        assert "Sync complete" in err

    @mock.patch("dgxctl.cli.sync.make_client")
    def test_rsync_delete(self, mock_mc):
        rc, _, _ = _run("sync", "--delete", "dgx:~/results", "./")
        assert rc == 0
        mock_mc.return_value.rsync.assert_called_once_with("dgx:~/results", "./", delete=True)

    @mock.patch("dgxctl.cli.sync.make_client")
    def test_scp(self, mock_mc):
        rc, _, _ = _run("sync", "--scp", "model.bin", "dgx:/models/")
        assert rc == 0
        mock_mc.return_value.copy_file.assert_called_once_with("model.bin", "dgx:/models/")
        mock_mc.return_value.rsync.assert_not_called()

    @mock.patch("dgxctl.cli.sync.make_client")
    def test_scp_with_delete_is_usage_error(self, mock_mc):
        rc, _, err = _run("sync", "--scp", "--delete", "a", "dgx:b")
        assert rc == 2
        assert "--delete" in err
        mock_mc.assert_not_called()

    @mock.patch("dgxctl.cli.sync.make_client")
    def test_transfer_failure(self, mock_mc):
        mock_mc.return_value.rsync.side_effect = TransferError("rsync", "a", "b", "exit status 23")
        rc, _, err = _run("sync", "a", "dgx:b")
        assert rc == 1
        assert "exit status 23" in err
