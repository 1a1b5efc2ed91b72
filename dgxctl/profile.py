"""Connection profile: where and as whom to reach the remote host."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dgxctl import config


@dataclass(frozen=True)
class ConnectionProfile:
    """Fully-resolved SSH target.

    Args:
        host: SSH server hostname or address (required, non-empty)
        user: Remote user name (required, non-empty)
        port: SSH port (default 22)
        identity_file: Path to the private key ("~" is expanded on use)

    Invalid values raise ValueError at construction, before any network
    operation can be attempted.
    """

    host: str
    user: str
    port: int = config.DEFAULT_PORT
    identity_file: str = config.DEFAULT_IDENTITY_FILE

    def __post_init__(self):
        if not self.host or not self.host.strip():
            raise ValueError("host must be a non-empty string")
        if not self.user or not self.user.strip():
            raise ValueError("user must be a non-empty string")
        if isinstance(self.port, bool) or not isinstance(self.port, int) or self.port < 1 or self.port > 65535:
            raise ValueError(f"port must be 1-65535, got {self.port}")
        if not self.identity_file:
            raise ValueError("identity_file must be a non-empty path")

    @property
    def destination(self) -> str:
        """``user@host`` as understood by ssh/scp/rsync."""
        return f"{self.user}@{self.host}"

    @property
    def key_path(self) -> Path:
        return Path(self.identity_file).expanduser()

    @classmethod
    def from_env(
        cls,
        host: Optional[str] = None,
        user: Optional[str] = None,
        port: Optional[int] = None,
        identity_file: Optional[str] = None,
    ) -> ConnectionProfile:
        """Build a profile from explicit values, falling back to DGX_* variables.

        Raises:
            ValueError: If host or user is missing from both, or a value is malformed
        """
        return cls(
            host=host or config.get_env_str("DGX_HOST") or "",
            user=user or config.get_env_str("DGX_USER") or "",
            port=port if port is not None else config.get_env_int("DGX_PORT", config.DEFAULT_PORT),
            identity_file=identity_file
            or config.get_env_str("DGX_IDENTITY_FILE", config.DEFAULT_IDENTITY_FILE),
        )

    def __str__(self) -> str:
        return f"{self.destination}:{self.port}"
