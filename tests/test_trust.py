"""Tests for dgxctl.trust - known_hosts store and trust-on-first-use."""

import logging
import os
import stat
from unittest.mock import MagicMock

import paramiko
import pytest

from dgxctl.errors import ConnectionAbortedError, UnknownHostKeyError, UntrustedHostError
from dgxctl.process import RunResult
from dgxctl.testing import FakeProcessRunner
from dgxctl.trust import HostTrustGate, TrustStore, _RejectUnknownPolicy, keyscan

SCANNED = "|1|salt=|hash= ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl\n"


# ---------------------------------------------------------------------------
# TrustStore
# ---------------------------------------------------------------------------


class TestTrustStore:
    def test_append_creates_file_private(self, tmp_path):
        store = TrustStore(str(tmp_path / "ssh" / "known_hosts"))
        store.append("line1")
        assert store.path.read_text() == "line1\n"
        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600

    def test_append_keeps_existing_entries(self, tmp_path):
        path = tmp_path / "known_hosts"
        path.write_text("existing\n")
        store = TrustStore(str(path))
        store.append("new1\nnew2\n")
        assert path.read_text() == "existing\nnew1\nnew2\n"

    def test_default_path_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DGX_KNOWN_HOSTS", str(tmp_path / "kh"))
        assert TrustStore().path == tmp_path / "kh"

    def test_load_into_missing_file_raises(self, tmp_path):
        store = TrustStore(str(tmp_path / "absent"))
        with pytest.raises(OSError):
            store.load_into(paramiko.SSHClient())


# ---------------------------------------------------------------------------
# keyscan
# ---------------------------------------------------------------------------


class TestKeyscan:
    def test_default_port_argv(self):
        runner = FakeProcessRunner({"ssh-keyscan": RunResult((), 0, SCANNED)})
        assert keyscan("spark", 22, runner) == SCANNED
        assert runner.last_call == ("ssh-keyscan", "-H", "spark")
        assert runner.options[-1]["capture"] is True

    def test_custom_port_argv(self):
        runner = FakeProcessRunner({"ssh-keyscan": RunResult((), 0, SCANNED)})
        keyscan("spark", 2222, runner)
        assert runner.last_call == ("ssh-keyscan", "-H", "-p", "2222", "spark")

    def test_comments_and_blank_lines_dropped(self):
        out = "# spark:22 SSH-2.0-OpenSSH_9.6\n\n" + SCANNED
        runner = FakeProcessRunner({"ssh-keyscan": RunResult((), 0, out)})
        assert keyscan("spark", 22, runner) == SCANNED

    def test_empty_output_is_untrusted(self):
        runner = FakeProcessRunner({"ssh-keyscan": RunResult((), 0, "# only a comment\n")})
        with pytest.raises(UntrustedHostError, match="no host keys"):
            keyscan("spark", 22, runner)

    def test_nonzero_exit_is_untrusted(self):
        runner = FakeProcessRunner({"ssh-keyscan": RunResult((), 1, "", "getaddrinfo failed")})
        with pytest.raises(UntrustedHostError, match="getaddrinfo failed"):
            keyscan("spark", 22, runner)

    def test_missing_tool_is_untrusted(self):
        runner = FakeProcessRunner({"ssh-keyscan": FileNotFoundError(2, "No such file")})
        with pytest.raises(UntrustedHostError, match="ssh-keyscan"):
            keyscan("spark", 22, runner)


# ---------------------------------------------------------------------------
# HostTrustGate
# ---------------------------------------------------------------------------


class TestGateConfigure:
    def test_strict_when_store_loads(self, trust_store):
        client = MagicMock(spec=paramiko.SSHClient)
        gate = HostTrustGate(trust_store)
        assert gate.configure(client, "spark", 22) is True
        client.load_host_keys.assert_called_once_with(str(trust_store.path))
        policy = client.set_missing_host_key_policy.call_args.args[0]
        assert isinstance(policy, _RejectUnknownPolicy)

    def test_insecure_fallback_warns(self, tmp_path, caplog):
        client = MagicMock(spec=paramiko.SSHClient)
        client.load_host_keys.side_effect = FileNotFoundError(2, "No such file or directory")
        gate = HostTrustGate(TrustStore(str(tmp_path / "absent")))

        with caplog.at_level(logging.WARNING, logger="dgxctl.trust"):
            assert gate.configure(client, "spark", 22) is False

        policy = client.set_missing_host_key_policy.call_args.args[0]
        assert isinstance(policy, paramiko.WarningPolicy)
        assert any("NOT be verified" in r.getMessage() and "spark" in r.getMessage() for r in caplog.records)

    def test_reject_policy_raises_unknown_host(self):
        key = MagicMock()
        key.get_name.return_value = "ssh-ed25519"
        key.fingerprint = "SHA256:abc"
        with pytest.raises(UnknownHostKeyError) as exc_info:
            _RejectUnknownPolicy("spark", 22).missing_host_key(MagicMock(), "spark", key)
        assert exc_info.value.host == "spark"
        assert exc_info.value.key_type == "ssh-ed25519"
        assert isinstance(exc_info.value, UntrustedHostError)


class TestTrustOnFirstUse:
    def test_consent_scans_and_appends(self, trust_store):
        runner = FakeProcessRunner({"ssh-keyscan": RunResult((), 0, SCANNED)})
        questions = []
        gate = HostTrustGate(trust_store, confirm=lambda q: questions.append(q) or True, runner=runner)

        gate.trust_on_first_use("spark", 22)

        assert trust_store.path.read_text() == SCANNED
        assert "spark" in questions[0]

    def test_decline_aborts_without_scanning(self, trust_store):
        runner = FakeProcessRunner()
        gate = HostTrustGate(trust_store, confirm=lambda q: False, runner=runner)
        with pytest.raises(ConnectionAbortedError, match="not trusted"):
            gate.trust_on_first_use("spark", 22)
        assert runner.calls == []
        assert trust_store.path.read_text() == ""

    def test_no_confirm_callback_declines(self, trust_store):
        gate = HostTrustGate(trust_store, runner=FakeProcessRunner())
        with pytest.raises(ConnectionAbortedError):
            gate.trust_on_first_use("spark", 22)

    def test_unwritable_store(self, tmp_path):
        runner = FakeProcessRunner({"ssh-keyscan": RunResult((), 0, SCANNED)})
        store = TrustStore(str(tmp_path / "known_hosts"))
        store.append = MagicMock(side_effect=PermissionError(13, "Permission denied"))
        gate = HostTrustGate(store, confirm=lambda q: True, runner=runner)
        with pytest.raises(UntrustedHostError, match="Failed to write"):
            gate.trust_on_first_use("spark", 22)
