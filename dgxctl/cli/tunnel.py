"""dgx-tunnel -- Create, list and kill background SSH tunnels."""

import json
import sys

from dgxctl.cli._common import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE_ERROR,
    base_parser,
    make_manager,
    make_profile,
    parse_port_pair,
    setup_logging,
)
from dgxctl.errors import DGXError
from dgxctl.tunnel import TunnelDescriptor, TunnelManager


def _build_parser():
    parser = base_parser("Manage background SSH tunnels to the remote host")
    sub = parser.add_subparsers(dest="action", required=True)

    create = sub.add_parser("create", aliases=["add", "new"], help="create a tunnel")
    create.add_argument("ports", metavar="LOCAL:REMOTE", help="local and remote port (or one port for both)")
    create.add_argument("description", nargs="*", help="free-form description")
    create.add_argument("--remote-host", default="localhost", help="target host as seen from the remote end")
    create.add_argument(
        "--auto-port", action="store_true", help="pick the next free local port if LOCAL is taken"
    )
    create.add_argument(
        "--format", dest="output_format", choices=("text", "json"), default="text", help="output format"
    )

    ls = sub.add_parser("list", aliases=["ls"], help="list active tunnels")
    ls.add_argument("--format", dest="output_format", choices=("text", "json"), default="text", help="output format")

    kill = sub.add_parser("kill", aliases=["stop", "rm"], help="kill a tunnel by PID")
    kill.add_argument("pid", type=int, help="process id from 'list'")

    sub.add_parser("kill-all", help="kill all tunnels to the remote host")

    free = sub.add_parser("free-port", help="print the first free local port at or after START")
    free.add_argument("start", type=int, help="first port to probe")
    return parser


def _tunnel_json(t: TunnelDescriptor) -> dict:
    return {
        "pid": t.pid,
        "local_port": t.local_port,
        "remote_host": t.remote_host,
        "remote_port": t.remote_port,
        "description": t.description,
    }


def _create(mgr: TunnelManager, args) -> int:
    try:
        local, remote = parse_port_pair(args.ports)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    if mgr.is_port_in_use(local):
        if not args.auto_port:
            print(f"Error: Local port {local} is already in use", file=sys.stderr)
            return EXIT_FAILURE
        free = mgr.find_available_port(local)
        if free is None:
            print(f"Error: No free local port in {local}-{local + 99}", file=sys.stderr)
            return EXIT_FAILURE
        print(f"Local port {local} is in use, using {free}", file=sys.stderr)
        local = free

    tunnel = TunnelDescriptor(
        local_port=local,
        remote_port=remote,
        remote_host=args.remote_host,
        description=" ".join(args.description),
    )
    created = mgr.create(tunnel)
    if args.output_format == "json":
        print(json.dumps(_tunnel_json(created)))
        return EXIT_OK
    pid = created.pid if created.pid is not None else "unknown"
    line = f"Tunnel created: localhost:{created.local_port} -> {created.remote_host}:{created.remote_port} (PID: {pid})"
    print(f"{line} [{created.description}]" if created.description else line)
    return EXIT_OK


def _list(mgr: TunnelManager, args) -> int:
    tunnels = list(mgr.list())
    if args.output_format == "json":
        print(json.dumps([_tunnel_json(t) for t in tunnels]))
        return EXIT_OK
    if not tunnels:
        print("No active tunnels")
        return EXIT_OK
    print("Active SSH Tunnels:")
    for t in tunnels:
        print(str(t))
    return EXIT_OK


def _kill_all(mgr: TunnelManager, args) -> int:
    report = mgr.kill_all()
    for pid, err in report.failed.items():
        print(f"Failed to kill tunnel {pid}: {err}", file=sys.stderr)
    print(f"Terminated {len(report.killed)} tunnel(s)")
    return EXIT_OK


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        mgr = make_manager(args, make_profile(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        if args.action in ("create", "add", "new"):
            return _create(mgr, args)
        if args.action in ("list", "ls"):
            return _list(mgr, args)
        if args.action in ("kill", "stop", "rm"):
            mgr.kill(args.pid)
            return EXIT_OK
        if args.action == "kill-all":
            return _kill_all(mgr, args)
        if args.action == "free-port":
            try:
                port = mgr.find_available_port(args.start)
            except ValueError as e:
                print(f"Error: {e}", file=sys.stderr)
                return EXIT_USAGE_ERROR
            if port is None:
                print(f"No free port in {args.start}-{args.start + 99}", file=sys.stderr)
                return EXIT_FAILURE
            print(port)
            return EXIT_OK
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except DGXError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    parser.error(f"unknown action {args.action!r}")
    return EXIT_USAGE_ERROR


if __name__ == "__main__":
    sys.exit(main())
