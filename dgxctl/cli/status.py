"""dgx-status -- Check connectivity to the remote host and count active tunnels."""

import sys

from dgxctl.cli._common import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE_ERROR,
    base_parser,
    make_client,
    make_manager,
    make_profile,
    setup_logging,
)
from dgxctl.errors import DGXError


def main() -> int:
    parser = base_parser("Check connection to the remote host")
    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        profile = make_profile(args)
        client = make_client(args, profile)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    print(f"Checking connection to {profile}...")
    try:
        latency = client.check_connection()
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except DGXError as e:
        print(f"Connection failed: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        client.close()

    print(f"Connected (latency: {latency * 1000:.0f} ms)")

    try:
        count = sum(1 for _ in make_manager(args, profile).list())
    except DGXError as e:
        print(f"Active tunnels: unknown ({e})")
    else:
        print(f"Active tunnels: {count}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
