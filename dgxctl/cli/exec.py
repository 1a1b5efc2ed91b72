"""dgx-exec -- Run a command on the remote host and print its combined output."""

import sys

from dgxctl.cli._common import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE_ERROR,
    base_parser,
    make_client,
    make_profile,
    setup_logging,
)
from dgxctl.errors import DGXError, RemoteCommandError


def main() -> int:
    parser = base_parser("Run a command on the remote host")
    parser.add_argument("command", nargs="+", metavar="ARG", help="command and arguments (joined with spaces)")
    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        profile = make_profile(args)
        client = make_client(args, profile)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    command = " ".join(args.command)
    try:
        output = client.execute(command)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except RemoteCommandError as e:
        sys.stdout.write(e.output)
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code if 0 < e.exit_code < 256 else EXIT_FAILURE
    except DGXError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        client.close()

    sys.stdout.write(output)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
