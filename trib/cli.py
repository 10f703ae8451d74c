#!/usr/bin/env python3
"""
kv-cluster-trib Command Line Entry Point

Usage:
    kv-cluster-trib check 127.0.0.1:7000              # Audit the cluster
    kv-cluster-trib check 127.0.0.1:7000 --quiet      # Audit without node listing
    kv-cluster-trib fix 127.0.0.1:7000                # Audit and close open slots
    kv-cluster-trib fix 127.0.0.1:7000 --cover        # ... and assign uncovered slots
    kv-cluster-trib info 127.0.0.1:7000               # Keys/slots per master
    kv-cluster-trib call 127.0.0.1:7000 CLUSTER INFO  # Run a command on every node
    kv-cluster-trib wait 127.0.0.1:7000 --timeout 30  # Wait for gossip to converge
    kv-cluster-trib set-epochs 127.0.0.1:7000         # Progressive config epochs

Exit codes:
    0 - no errors recorded
    1 - the cluster has problems (see the log)
    2 - the run could not start (unreachable seed, not a cluster node, ...)

Environment Variables:
    TRIB_CONNECT_TIMEOUT      - Seconds to wait for a connection
    TRIB_MIGRATE_TIMEOUT      - MIGRATE timeout in milliseconds
    TRIB_CONVERGENCE_TIMEOUT  - Default timeout of the wait command
    TRIB_DEBUG                - Enable debug logging (true/false)
"""

import argparse
import asyncio
import logging
import signal
import sys

from .cluster.manager import ClusterTrib
from .config.settings import settings
from .errors import ConvergenceTimeoutError, TribError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PROBLEMS = 1
EXIT_FATAL = 2


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="kv-cluster-trib",
        description="Inspect and repair the slot configuration of a cluster",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Audit configuration, open slots and coverage")
    check.add_argument("address", help="host:port of any cluster node")
    check.add_argument("--quiet", action="store_true", help="Don't list the nodes")

    fix = sub.add_parser("fix", help="Audit and repair open slots")
    fix.add_argument("address", help="host:port of any cluster node")
    fix.add_argument("--quiet", action="store_true", help="Don't list the nodes")
    fix.add_argument("--cover", action="store_true", help="Also assign uncovered slots")

    info = sub.add_parser("info", help="Show keys and slots per master")
    info.add_argument("address", help="host:port of any cluster node")

    call = sub.add_parser("call", help="Run a command on every node")
    call.add_argument("address", help="host:port of any cluster node")
    call.add_argument("args", nargs=argparse.REMAINDER, help="Command and arguments")

    wait = sub.add_parser("wait", help="Wait until every node agrees about the configuration")
    wait.add_argument("address", help="host:port of any cluster node")
    wait.add_argument(
        "--timeout",
        type=float,
        default=settings.CONVERGENCE_TIMEOUT,
        help="Seconds before giving up",
    )

    epochs = sub.add_parser("set-epochs", help="Assign progressive config epochs")
    epochs.add_argument("address", help="host:port of any cluster node")

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


async def run(args: argparse.Namespace) -> int:
    """Execute one sub-command and return the exit code."""
    fix = args.command == "fix"
    cover = fix and getattr(args, "cover", False)
    async with ClusterTrib(args.address, fix=fix, cover=cover) as trib:
        if args.command in ("check", "fix"):
            report = await trib.check_cluster(quiet=args.quiet)
            return EXIT_OK if report.ok else EXIT_PROBLEMS

        if args.command == "info":
            await trib.show_cluster_info()
            return EXIT_OK

        if args.command == "call":
            if not args.args:
                logger.error("No command given")
                return EXIT_FATAL
            results = await trib.each_call(*args.args)
            return EXIT_OK if all(r.ok for r in results) else EXIT_PROBLEMS

        if args.command == "wait":
            try:
                await trib.wait_cluster_join(timeout=args.timeout)
            except ConvergenceTimeoutError as e:
                logger.error(str(e))
                return EXIT_PROBLEMS
            return EXIT_OK

        if args.command == "set-epochs":
            accepted = await trib.assign_config_epoch()
            return EXIT_OK if accepted == len(trib.graph) else EXIT_PROBLEMS

    return EXIT_FATAL


def main(argv=None) -> int:
    """Main entry point for the tool."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(run(args))

    # Interrupts cancel the run at its next await point
    if sys.platform != 'win32':
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, task.cancel)

    try:
        return loop.run_until_complete(task)
    except asyncio.CancelledError:
        logger.warning("Interrupted, the cluster may still have open slots")
        return EXIT_PROBLEMS
    except TribError as e:
        logger.error(f"[ERR] {e}")
        return EXIT_FATAL
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()


if __name__ == "__main__":
    sys.exit(main())
