"""dgx-sync -- Copy files between this machine and the remote host with rsync or scp.

Use the ``dgx:`` prefix for remote paths:

    dgx-sync ./code dgx:~/projects/      # upload
    dgx-sync dgx:~/results ./            # download
"""

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
from dgxctl.errors import DGXError


def main() -> int:
    parser = base_parser("Sync files between local and remote host (dgx:PATH is remote)")
    parser.add_argument("source", help="source path")
    parser.add_argument("dest", help="destination path")
    parser.add_argument("--delete", action="store_true", help="delete extraneous files from destination (rsync)")
    parser.add_argument("--scp", action="store_true", help="use scp -r instead of rsync")
    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.scp and args.delete:
        print("Error: --delete is only supported with rsync", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        profile = make_profile(args)
        client = make_client(args, profile)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    print(f"Syncing {args.source} -> {args.dest}", file=sys.stderr)
    try:
        if args.scp:
            client.copy_file(args.source, args.dest)
        else:
            client.rsync(args.source, args.dest, delete=args.delete)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except DGXError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print("Sync complete", file=sys.stderr)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
