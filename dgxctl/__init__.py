"""
dgxctl - SSH session and tunnel management for a remote GPU host.

Quick start:
    from dgxctl import ConnectionProfile, SessionClient, TunnelManager, TunnelDescriptor

    profile = ConnectionProfile(host="spark.local", user="ops", identity_file="~/.ssh/id_ed25519")

    with SessionClient(profile) as ssh:
        print(ssh.execute("nvidia-smi"))

    tunnels = TunnelManager(profile)
    tunnels.create(TunnelDescriptor(local_port=8000, remote_port=8000))
    for t in tunnels.list():
        print(t)

Session clients and tunnel managers are independent: tunnels are background
ssh processes found through the OS process table, not state held here.
"""

import logging

from dgxctl.errors import (  # noqa: F401
    DGXError,
    SessionClientError,
    KeyReadError,
    KeyParseError,
    DialTimeoutError,
    UntrustedHostError,
    UnknownHostKeyError,
    ConnectionAbortedError,
    SessionError,
    AuthenticationError,
    RemoteCommandError,
    TransferError,
    TunnelError,
    TunnelCreateError,
    ProcessNotFoundError,
    SignalError,
    PortProbeError,
)
from dgxctl.profile import ConnectionProfile  # noqa: F401
from dgxctl.process import (  # noqa: F401
    RunResult,
    ProcessRunner,
    SubprocessRunner,
    ProcessEntry,
    ProcessInspector,
    PsutilInspector,
)
from dgxctl.trust import TrustStore, HostTrustGate  # noqa: F401
from dgxctl.ssh import SessionClient, CommandResult, Tunnel  # noqa: F401
from dgxctl.tunnel import TunnelManager, TunnelDescriptor, KillReport  # noqa: F401

__version__ = "0.1.0"

logger = logging.getLogger(__name__)
