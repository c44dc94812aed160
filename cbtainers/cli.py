"""Command line entry point.

    cbtainers -num 3 -prefix cb-dev -image couchbase/server:7.1.1
    cbtainers -delete -prefix cb-dev
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cbtainers.config import ClusterSpec, resolve_spec
from cbtainers.exceptions import CbtainersError, ProvisioningFailed
from cbtainers.fabric.docker import DockerFabric
from cbtainers.logging import LogConfig, setup_logging, teardown_logging
from cbtainers.orchestrator import ClusterResult, run

console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cbtainers",
        description="Provision a Couchbase Server cluster in local Docker containers",
    )
    parser.add_argument(
        "-delete", "--delete", dest="delete_only", action="store_true", default=None,
        help="only delete resources matching the prefix",
    )
    parser.add_argument("-image", "--image", help="couchbase server image to be used")
    parser.add_argument("-num", "--num", dest="size", type=int, help="total number of server nodes")
    parser.add_argument("-username", "--username", help="Couchbase Server username")
    parser.add_argument("-password", "--password", help="Couchbase Server password")
    parser.add_argument("-prefix", "--prefix", help="name prefix for every created resource")
    parser.add_argument(
        "--config-dir", type=Path, default=None,
        help="directory holding cbtainers.toml (default: current directory)",
    )
    parser.add_argument(
        "--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--log-file", default=None)
    return parser


def _node_table(result: ClusterResult) -> Table:
    table = Table(title=result.cluster_name)
    table.add_column("Node")
    table.add_column("Address")
    table.add_column("Id")
    for node in result.nodes:
        table.add_row(node.hostname, node.address or "-", node.id[:12])
    return table


async def _provision(spec: ClusterSpec) -> ClusterResult | None:
    async with await DockerFabric.create() as fabric:
        return await run(spec, fabric)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logger.remove()
    handlers = setup_logging(LogConfig(level=args.log_level, file=args.log_file))
    try:
        spec = resolve_spec(
            {
                "image": args.image,
                "size": args.size,
                "username": args.username,
                "password": args.password,
                "prefix": args.prefix,
                "delete_only": args.delete_only,
            },
            project_dir=args.config_dir,
        )
        result = asyncio.run(_provision(spec))
    except ProvisioningFailed as e:
        console.print(f"[red]error:[/red] {escape(str(e))}")
        if len(e.ledger):
            actions = ", ".join(map(str, e.ledger))
            console.print(f"[yellow]left behind:[/yellow] {escape(actions)} (rerun with -delete to remove)")
        return 1
    except CbtainersError as e:
        console.print(f"[red]error:[/red] {escape(str(e))}")
        return 1
    finally:
        teardown_logging(handlers)

    if result is not None:
        console.print(_node_table(result))
    print("done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
