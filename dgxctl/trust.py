"""
Host key trust: the local known_hosts store and trust-on-first-use.

The gate configures a paramiko.SSHClient before it dials:

* store readable  -> host keys loaded, unknown keys raise UnknownHostKeyError,
                     mismatches surface as paramiko.BadHostKeyException
* store missing or unreadable -> paramiko.WarningPolicy (insecure), with a
                     logged warning naming the host

On first contact the session client asks the gate to trust the host; the gate
asks the injected ``confirm`` callback, fetches the key out-of-band with
``ssh-keyscan -H`` and appends it to the store.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional

import paramiko

from dgxctl import config
from dgxctl.errors import ConnectionAbortedError, UnknownHostKeyError, UntrustedHostError
from dgxctl.process import ProcessRunner, SubprocessRunner

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[str], bool]


class TrustStore:
    """Append-only view of an OpenSSH known_hosts file."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or config.known_hosts_path()).expanduser()

    def load_into(self, client: paramiko.SSHClient) -> None:
        """Load host keys into client.

        Raises:
            OSError: If the file is absent or unreadable
        """
        client.load_host_keys(str(self.path))

    def append(self, entries: str) -> None:
        """Append known_hosts lines, creating the file (0600) if needed."""
        if not entries.endswith("\n"):
            entries += "\n"
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(entries)

    def __repr__(self):
        return f"TrustStore({str(self.path)!r})"


def keyscan(host: str, port: int, runner: ProcessRunner) -> str:
    """Fetch host keys for host:port as hashed known_hosts lines.

    Raises:
        UntrustedHostError: If ssh-keyscan fails or returns no keys
    """
    argv = ["ssh-keyscan", "-H"]
    if port != 22:
        argv += ["-p", str(port)]
    argv.append(host)
    try:
        result = runner.run(argv, capture=True)
    except OSError as e:
        raise UntrustedHostError(f"Failed to run ssh-keyscan: {e}", host=host, port=port) from e
    if not result.ok:
        raise UntrustedHostError(
            f"ssh-keyscan exited with status {result.returncode}: {result.stderr.strip()}", host=host, port=port
        )
    lines = [ln for ln in result.stdout.splitlines() if ln.strip() and not ln.lstrip().startswith("#")]
    if not lines:
        raise UntrustedHostError("ssh-keyscan returned no host keys", host=host, port=port)
    return "\n".join(lines) + "\n"


class _RejectUnknownPolicy(paramiko.MissingHostKeyPolicy):
    """Raise UnknownHostKeyError so the caller can run trust-on-first-use."""

    def __init__(self, host: str, port: int):
        self._host = host
        self._port = port

    def missing_host_key(self, client, hostname, key):
        raise UnknownHostKeyError(
            self._host,
            self._port,
            key_type=key.get_name(),
            fingerprint=key.fingerprint if hasattr(key, "fingerprint") else key.get_fingerprint().hex(),
        )


class HostTrustGate:
    """Host key verification policy plus the first-contact consent flow.

    Args:
        store: Trust store (default: DGX_KNOWN_HOSTS or ~/.ssh/known_hosts)
        confirm: Called with a question, returns True to trust an unknown host.
            None means unknown hosts are always declined.
        runner: Runs ssh-keyscan
    """

    def __init__(
        self,
        store: Optional[TrustStore] = None,
        confirm: Optional[ConfirmFn] = None,
        runner: Optional[ProcessRunner] = None,
    ):
        self.store = store or TrustStore()
        self._confirm = confirm
        self._runner = runner or SubprocessRunner()

    def configure(self, client: paramiko.SSHClient, host: str, port: int) -> bool:
        """Install host keys and policy on client. Returns False in insecure mode."""
        try:
            self.store.load_into(client)
        except OSError as e:
            logger.warning(
                "WARNING: trust store %s unavailable (%s); host key for %s:%d will NOT be verified",
                self.store.path,
                e.strerror or e,
                host,
                port,
            )
            client.set_missing_host_key_policy(paramiko.WarningPolicy())
            return False
        client.set_missing_host_key_policy(_RejectUnknownPolicy(host, port))
        return True

    def trust_on_first_use(self, host: str, port: int) -> None:
        """Ask for consent, then scan and record the host key.

        Raises:
            ConnectionAbortedError: If consent is declined (or no confirm callback)
            UntrustedHostError: If the key cannot be scanned or recorded
        """
        question = f"Host key for {host} not found in {self.store.path}. Add it?"
        if self._confirm is None or not self._confirm(question):
            logger.info("Host key for %s not trusted by user", host)
            raise ConnectionAbortedError(host, port)

        entries = keyscan(host, port, self._runner)
        try:
            self.store.append(entries)
        except OSError as e:
            raise UntrustedHostError(f"Failed to write {self.store.path}: {e}", host=host, port=port) from e
        logger.info("Host key for %s added to %s", host, self.store.path)


__all__ = ["TrustStore", "HostTrustGate", "keyscan"]
