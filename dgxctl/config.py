"""
Defaults and environment variable lookup.

Environment variables (all optional):
    DGX_HOST              remote host name or address
    DGX_PORT              SSH port (default 22)
    DGX_USER              remote user name
    DGX_IDENTITY_FILE     private key path (default ~/.ssh/id_ed25519)
    DGX_CONNECT_TIMEOUT   dial timeout in seconds (default 10.0)
    DGX_KNOWN_HOSTS       trust store path (default ~/.ssh/known_hosts)
"""

import os
from typing import Optional

DEFAULT_PORT = 22
DEFAULT_IDENTITY_FILE = "~/.ssh/id_ed25519"
DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"
DEFAULT_CONNECT_TIMEOUT = 10.0
PORT_SEARCH_WINDOW = 100


def get_env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get environment variable as str, treating empty values as unset."""
    val = os.environ.get(name)
    if not val:
        return default
    return val


def get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get environment variable as int."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {val!r}")


def get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get environment variable as float."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {val!r}")


def connect_timeout() -> float:
    return get_env_float("DGX_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)


def known_hosts_path() -> str:
    return get_env_str("DGX_KNOWN_HOSTS", DEFAULT_KNOWN_HOSTS)
