"""dgx-connect -- Open an interactive SSH shell on the remote host."""

import sys

from dgxctl.cli._common import EXIT_FAILURE, EXIT_USAGE_ERROR, base_parser, make_client, make_profile, setup_logging
from dgxctl.errors import DGXError


def main() -> int:
    parser = base_parser("Open an interactive SSH shell on the remote host")
    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        profile = make_profile(args)
        client = make_client(args, profile)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    print(f"Connecting to {profile.destination}...", file=sys.stderr)
    try:
        return client.interactive_shell()
    except DGXError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
