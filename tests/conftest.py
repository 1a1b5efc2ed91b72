"""
Shared pytest fixtures for dgxctl unit tests.

Nothing here touches the network or spawns processes: SSH transports are
mocked and the process table is a FakeProcessInspector.
"""

import pytest

from dgxctl.profile import ConnectionProfile
from dgxctl.testing import FakeProcessInspector, FakeProcessRunner
from dgxctl.trust import TrustStore


@pytest.fixture
def profile():
    return ConnectionProfile(host="spark.example.com", user="ops", port=22, identity_file="/keys/id_ed25519")


@pytest.fixture
def inspector():
    return FakeProcessInspector()


@pytest.fixture
def runner():
    return FakeProcessRunner()


@pytest.fixture
def trust_store(tmp_path):
    path = tmp_path / "known_hosts"
    path.write_text("")
    return TrustStore(str(path))
