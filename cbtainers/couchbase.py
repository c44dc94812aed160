"""couchbase-cli administration commands run inside cluster nodes."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from cbtainers.executor import RemoteExecutor
from cbtainers.fabric.base import ComputeUnit
from cbtainers.retry import DEFAULT_POLICY, RetryPolicy, with_retry

CLI = "couchbase-cli"
LOOPBACK = "127.0.0.1"
SERVICES = "data,index,query,fts,analytics"

log = logger.bind(component="couchbase")


def cluster_init_argv(cluster_name: str, username: str, password: str) -> list[str]:
    return [
        CLI,
        "cluster-init",
        "-c", LOOPBACK,
        "--cluster-username", username,
        "--cluster-password", password,
        "--services", SERVICES,
        "--cluster-ramsize", "1024",
        "--cluster-index-ramsize", "512",
        "--cluster-eventing-ramsize", "512",
        "--cluster-fts-ramsize", "512",
        "--cluster-analytics-ramsize", "1024",
        "--cluster-name", cluster_name,
        "--index-storage-setting", "default",
    ]


def server_add_argv(hostnames: Sequence[str], username: str, password: str) -> list[str]:
    return [
        CLI,
        "server-add",
        "--cluster", LOOPBACK,
        "--username", username,
        "--password", password,
        "--server-add", ",".join(hostnames),
        "--server-add-username", username,
        "--server-add-password", password,
    ]


def rebalance_argv(username: str, password: str) -> list[str]:
    return [
        CLI,
        "rebalance",
        "-c", LOOPBACK,
        "--username", username,
        "--password", password,
    ]


def server_list_argv(username: str, password: str) -> list[str]:
    return [
        CLI,
        "server-list",
        "-c", LOOPBACK,
        "--username", username,
        "--password", password,
    ]


class CouchbaseAdmin:
    """Cluster administration through ``couchbase-cli`` on the nodes themselves.

    Every mutating command goes through the retry policy; a node that has
    just answered its readiness probe can still refuse the first attempt.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        username: str,
        password: str,
        *,
        policy: RetryPolicy = DEFAULT_POLICY,
    ) -> None:
        self._executor = executor
        self._username = username
        self._password = password
        self._policy = policy

    async def _run(self, unit: ComputeUnit, argv: list[str], description: str) -> str:
        return await with_retry(
            lambda: self._executor.output(unit.id, argv),
            self._policy,
            description=description,
        )

    async def init_node(self, unit: ComputeUnit, cluster_name: str) -> None:
        log.info("Initialising {name}", name=unit.hostname)
        argv = cluster_init_argv(cluster_name, self._username, self._password)
        await self._run(unit, argv, f"cluster-init on {unit.hostname}")

    async def join(self, first: ComputeUnit, others: Sequence[ComputeUnit]) -> None:
        """Add every node in ``others`` to ``first``'s cluster with one server-add."""
        if not others:
            log.debug("No nodes to join")
            return
        hostnames = [unit.hostname for unit in others]
        log.info("Joining {nodes} to {first}", nodes=", ".join(hostnames), first=first.hostname)
        argv = server_add_argv(hostnames, self._username, self._password)
        await self._run(first, argv, "server-add")

    async def rebalance(self, first: ComputeUnit) -> None:
        log.info("Rebalancing cluster from {first}", first=first.hostname)
        argv = rebalance_argv(self._username, self._password)
        await self._run(first, argv, "rebalance")

    async def server_list(self, unit: ComputeUnit) -> list[str]:
        out = await self._executor.output(unit.id, server_list_argv(self._username, self._password))
        return [line for line in out.strip().splitlines() if line.strip()]
