from __future__ import annotations

# Single-entrypoint runner.
#
#     python -m fulfillment_queue.app serve [--snapshot-path queue.json]
#     python -m fulfillment_queue.app client place --order-id A1 --item-count 7
#
# Each subcommand forwards its remaining arguments to the module that owns it.

import argparse
import sys


def main() -> None:
    parser = argparse.ArgumentParser(description="Fulfillment Queue (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="Start the fulfillment service (timing engine + status automation)", add_help=False)
    sub.add_parser("client", help="Place, query or update orders on a running service", add_help=False)

    args, rest = parser.parse_known_args()

    if args.cmd == "serve":
        from .service import main as run
    else:
        from .client import main as run

    _dispatch_to_module_main(run, f"{parser.prog} {args.cmd}", rest)


def _dispatch_to_module_main(module_main, prog: str, argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [prog, *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
