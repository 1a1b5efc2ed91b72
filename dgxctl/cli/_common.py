"""Shared CLI infrastructure for dgx-status/dgx-connect/dgx-exec/dgx-tunnel/dgx-sync."""

import argparse
import logging
import sys
from typing import Optional

from dgxctl import config
from dgxctl.profile import ConnectionProfile
from dgxctl.ssh import SessionClient
from dgxctl.trust import TrustStore
from dgxctl.tunnel import TunnelManager

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE_ERROR = 2
EXIT_INTERRUPTED = 130


def base_parser(description: str) -> argparse.ArgumentParser:
    """Create ArgumentParser with the connection flags shared by all CLI tools."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("-H", "--host", default=None, help="remote host (default: $DGX_HOST)")
    parser.add_argument("-P", "--port", type=int, default=None, help="SSH port (default: $DGX_PORT or 22)")
    parser.add_argument("-u", "--user", default=None, help="remote user (default: $DGX_USER)")
    parser.add_argument(
        "-i", "--identity-file", default=None, help="private key (default: $DGX_IDENTITY_FILE or ~/.ssh/id_ed25519)"
    )
    parser.add_argument(
        "--timeout", type=float, default=None, help="connect timeout in seconds (default: $DGX_CONNECT_TIMEOUT or 10)"
    )
    parser.add_argument(
        "--known-hosts", default=None, help="trust store (default: $DGX_KNOWN_HOSTS or ~/.ssh/known_hosts)"
    )
    parser.add_argument("-y", "--yes", action="store_true", help="trust unknown host keys without asking")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose output")
    return parser


def setup_logging(verbose: bool) -> None:
    """INFO to stderr by default, DEBUG with --verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s" if verbose else "%(message)s",
        stream=sys.stderr,
    )


def make_profile(args) -> ConnectionProfile:
    """Resolve a ConnectionProfile from flags, falling back to DGX_* variables."""
    return ConnectionProfile.from_env(
        host=args.host,
        user=args.user,
        port=args.port,
        identity_file=args.identity_file,
    )


def ask_yes_no(question: str, default: bool = True) -> bool:
    """Prompt on stderr; empty answer takes the default. EOF counts as no."""
    suffix = "[Y/n]" if default else "[y/N]"
    print(f"{question} {suffix}: ", end="", file=sys.stderr, flush=True)
    try:
        answer = input().strip().lower()
    except EOFError:
        return False
    if not answer:
        return default
    return answer in ("y", "yes")


def make_client(args, profile: Optional[ConnectionProfile] = None) -> SessionClient:
    """Create a SessionClient from parsed args."""
    profile = profile or make_profile(args)
    confirm = (lambda question: True) if args.yes else ask_yes_no
    return SessionClient(
        profile,
        connect_timeout=args.timeout if args.timeout is not None else config.connect_timeout(),
        trust_store=TrustStore(args.known_hosts),
        confirm=confirm,
    )


def make_manager(args, profile: Optional[ConnectionProfile] = None) -> TunnelManager:
    """Create a TunnelManager from parsed args."""
    return TunnelManager(profile or make_profile(args))


def parse_port_pair(s: str) -> tuple[int, int]:
    """Parse ``LOCAL:REMOTE`` (or a single ``PORT`` meaning both)."""
    parts = s.split(":")
    if len(parts) == 1:
        parts = [parts[0], parts[0]]
    if len(parts) != 2:
        raise ValueError(f"Invalid format {s!r}. Use <local-port>:<remote-port>")
    try:
        local, remote = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid port in {s!r}")
    for p in (local, remote):
        if p < 1 or p > 65535:
            raise ValueError(f"Port out of range in {s!r}")
    return local, remote
