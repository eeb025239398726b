"""Command-line front end: serve, push, version."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from config import (
    API_HOST,
    APP_NAME,
    DEFAULT_DATA_DIR,
    DEFAULT_DISCOVERY_PORT,
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_HTTP_PORT,
    DEVICE_NAME,
    VERSION,
)
from discovery.errors import TransportError
from discovery.models import Peer
from discovery.service import discover_peers
from store.errors import PersistenceError
from transfer.service import push_to_peers

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Distribute HTML files across your local network.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Start the receiver daemon")
    serve.add_argument("--port", type=int, default=DEFAULT_HTTP_PORT, help="HTTP port")
    serve.add_argument("--host", default=API_HOST, help="HTTP bind address")
    serve.add_argument("--discovery-port", type=int, default=DEFAULT_DISCOVERY_PORT, help="UDP discovery port")
    serve.add_argument("--name", default=DEVICE_NAME, help="Machine name (default: hostname)")
    serve.add_argument("--data", type=Path, default=DEFAULT_DATA_DIR, help="Data directory (default: ~/.distrib)")

    push = sub.add_parser("push", help="Push an HTML file to peers")
    push.add_argument("file", type=Path, help="HTML file to send")
    push.add_argument("--target", help="Target address (host:port), skips discovery")
    push.add_argument("--discovery-port", type=int, default=DEFAULT_DISCOVERY_PORT, help="UDP discovery port")
    push.add_argument("--timeout", type=float, default=DEFAULT_DISCOVERY_TIMEOUT, help="Discovery timeout in seconds")

    sub.add_parser("version", help="Print version")
    return p


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from main import create_app

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        app = create_app(
            data_dir=args.data,
            device_name=args.name,
            http_port=args.port,
            discovery_port=args.discovery_port,
        )
    except PersistenceError as e:
        print(f"Error: initialize storage: {e}", file=sys.stderr)
        return 1

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info",
    )
    return 0


def cmd_push(args: argparse.Namespace) -> int:
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)

    try:
        data = args.file.read_bytes()
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        return 1

    if args.target:
        peers = [Peer(name=args.target, address=args.target)]
    else:
        print("Discovering peers...")
        try:
            peers = asyncio.run(discover_peers(args.discovery_port, args.timeout))
        except TransportError as e:
            print(f"Error: discovery failed: {e}", file=sys.stderr)
            return 1

        if not peers:
            print("No peers found.", file=sys.stderr)
            print(f"If broadcast is blocked (e.g. WSL2), try: {APP_NAME} push <file> --target <ip:port>", file=sys.stderr)
            return 1

        print(f"Found {len(peers)} peer(s):")
        for i, peer in enumerate(peers, 1):
            print(f"  {i}. {peer.name} ({peer.address})")

    filename = args.file.name
    results = asyncio.run(push_to_peers(peers, filename, DEVICE_NAME, data))

    for result in results:
        if result.ok:
            print(f"Pushing {filename} to {result.peer.name}... OK (id: {result.entry_id})")
        else:
            print(f"Pushing {filename} to {result.peer.name}... FAILED: {result.error}")

    return 0 if any(r.ok for r in results) else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    if args.command == "push":
        return cmd_push(args)
    print(APP_NAME, VERSION)
    return 0


if __name__ == "__main__":
    sys.exit(main())
