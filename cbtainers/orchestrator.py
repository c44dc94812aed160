"""Couchbase cluster provisioning.

``ClusterOrchestrator.run`` walks a fixed sequence of steps, each gated on
the previous one:

    pre_clean -> short_circuit -> pull_image -> create_network
    -> create_nodes -> proxy -> readiness -> init_nodes -> join -> rebalance

Every resource confirmed created registers its compensating action in a
``CleanupLedger``. A failing step raises ``ProvisioningFailed`` carrying
the ledger as it stood at that point; nothing is rolled back implicitly.

Example:
    async with await DockerFabric.create() as fabric:
        async with provision(ClusterSpec(prefix="cb-dev"), fabric) as cluster:
            print([node.address for node in cluster.nodes])
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from cbtainers.config import ClusterSpec
from cbtainers.couchbase import CouchbaseAdmin
from cbtainers.exceptions import (
    ConfigurationError,
    ProvisioningFailed,
    ResourceNotFound,
    TeardownFailed,
)
from cbtainers.executor import RemoteExecutor
from cbtainers.fabric.base import ClusterNetwork, ComputeUnit, FabricGateway
from cbtainers.ledger import PROXY_NAME, CleanupAction, CleanupLedger
from cbtainers.probe import SERVICE_PORT, wait_until_ready
from cbtainers.retry import DEFAULT_POLICY, RetryPolicy

type Step = Literal[
    "pending",
    "pre_clean",
    "short_circuit",
    "pull_image",
    "create_network",
    "create_nodes",
    "proxy",
    "readiness",
    "init_nodes",
    "join",
    "rebalance",
    "succeeded",
    "failed",
]

type Prober = Callable[[str], Awaitable[None]]

PROXY_IMAGE = "verb/socat"
PROXY_LISTEN_PORT = 8080

log = logger.bind(component="orchestrator")


@dataclass(frozen=True, slots=True)
class ClusterResult:
    nodes: tuple[ComputeUnit, ...]
    network: ClusterNetwork
    ledger: CleanupLedger
    cluster_name: str

    @property
    def first(self) -> ComputeUnit:
        return self.nodes[0]

    async def cleanup(self) -> None:
        await self.ledger.run_all()


def proxy_command(target_ip: str, target_port: int = SERVICE_PORT) -> list[str]:
    return [
        f"TCP-LISTEN:{PROXY_LISTEN_PORT},fork",
        f"TCP-CONNECT:{target_ip}:{target_port}",
    ]


class ClusterOrchestrator:
    """Provisions one cluster on a fabric.

    An orchestrator instance owns a single run: its ledger accumulates the
    cleanup actions of that run only.
    """

    def __init__(
        self,
        spec: ClusterSpec,
        fabric: FabricGateway,
        *,
        policy: RetryPolicy = DEFAULT_POLICY,
        executor: RemoteExecutor | None = None,
        prober: Prober | None = None,
    ) -> None:
        self._spec = spec
        self._fabric = fabric
        self._policy = policy
        self._network_name = spec.network_name
        self._cluster_name = spec.cluster_name
        self._executor = executor or RemoteExecutor(fabric)
        self._admin = CouchbaseAdmin(
            self._executor, spec.username, spec.password, policy=policy,
        )
        self._prober = prober or self._probe
        self.ledger = CleanupLedger(fabric)
        self.step: Step = "pending"

    async def _probe(self, host: str) -> None:
        await wait_until_ready(host, policy=self._policy)

    def _enter(self, step: Step) -> None:
        self.step = step
        log.debug("[{prefix}] {step}", prefix=self._spec.prefix, step=step)

    async def run(self) -> ClusterResult | None:
        """Provision the cluster.

        Returns:
            The provisioned cluster, or None for a delete-only spec.

        Raises:
            ProvisioningFailed: A step failed. ``ledger`` on the exception
                holds the cleanup actions registered so far.
        """
        try:
            return await self._run()
        except Exception as e:
            failed_at = self.step
            self.step = "failed"
            log.error("Provisioning failed at {step}: {err}", step=failed_at, err=e)
            raise ProvisioningFailed(failed_at, self.ledger, e) from e

    async def _run(self) -> ClusterResult | None:
        spec = self._spec

        self._enter("pre_clean")
        await self._pre_clean()

        self._enter("short_circuit")
        if spec.delete_only:
            log.info("Delete only: resources for {prefix} removed", prefix=spec.prefix)
            self.step = "succeeded"
            return None

        self._enter("pull_image")
        await self._fabric.pull_image(spec.image)

        self._enter("create_network")
        network = await self._fabric.create_network(self._network_name)
        self.ledger.register(CleanupAction.remove_network(self._network_name))

        self._enter("create_nodes")
        nodes = await self._create_nodes(network)

        self._enter("proxy")
        await self._run_proxy(network, nodes[0])

        self._enter("readiness")
        await self._prober(spec.readiness_host)

        self._enter("init_nodes")
        for node in nodes:
            await self._admin.init_node(node, self._cluster_name)

        self._enter("join")
        await self._admin.join(nodes[0], nodes[1:])

        self._enter("rebalance")
        await self._admin.rebalance(nodes[0])

        self.step = "succeeded"
        log.info(
            "Cluster {name} ready with {n} node(s)",
            name=self._cluster_name, n=len(nodes),
        )
        return ClusterResult(
            nodes=tuple(nodes),
            network=network,
            ledger=self.ledger,
            cluster_name=self._cluster_name,
        )

    async def _pre_clean(self) -> None:
        await self._fabric.delete_matching(self._spec.prefix)
        await self._fabric.delete_matching(PROXY_NAME)
        try:
            await self._fabric.remove_network(self._network_name)
        except ResourceNotFound:
            log.debug("No stale network {name}", name=self._network_name)

    async def _create_nodes(self, network: ClusterNetwork) -> list[ComputeUnit]:
        nodes: list[ComputeUnit] = []
        for i in range(self._spec.size):
            name = self._spec.node_name(i)
            unit = await self._fabric.create_unit(self._spec.image, network, name)
            if not nodes:
                self.ledger.register(CleanupAction.delete_units(self._spec.prefix))
            await self._fabric.start_unit(unit.id)
            unit = await self._fabric.inspect_unit(unit.id, network.name)
            log.info("Node {name} up at {ip}", name=unit.hostname, ip=unit.address)
            nodes.append(unit)
        return nodes

    async def _run_proxy(self, network: ClusterNetwork, first: ComputeUnit) -> None:
        if first.address is None:
            raise ResourceNotFound("address on network", f"{network.name} for {first.hostname}")

        await self._fabric.pull_image(PROXY_IMAGE)
        proxy = await self._fabric.create_unit(
            PROXY_IMAGE,
            network,
            PROXY_NAME,
            command=proxy_command(first.address),
            ports={PROXY_LISTEN_PORT: SERVICE_PORT},
        )
        self.ledger.register(CleanupAction.delete_proxy())
        await self._fabric.start_unit(proxy.id)
        log.info(
            "Proxy forwarding host port {port} to {ip}:{port}",
            port=SERVICE_PORT, ip=first.address,
        )


async def run(
    spec: ClusterSpec,
    fabric: FabricGateway,
    *,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> ClusterResult | None:
    """Provision ``spec`` on ``fabric``.

    The fabric stays open: the returned ledger runs against it, so the
    caller closes it after cleanup.
    """
    return await ClusterOrchestrator(spec, fabric, policy=policy).run()


@asynccontextmanager
async def provision(
    spec: ClusterSpec,
    fabric: FabricGateway,
    *,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> AsyncIterator[ClusterResult]:
    """Provision a cluster for the duration of the block.

    The ledger runs on exit, and also when provisioning itself fails.
    """
    if spec.delete_only:
        raise ConfigurationError("provision() needs a spec that is not delete-only")

    orchestrator = ClusterOrchestrator(spec, fabric, policy=policy)
    try:
        result = await orchestrator.run()
    except ProvisioningFailed as e:
        log.info("Rolling back partial cluster ({n} action(s))", n=len(e.ledger))
        try:
            await e.ledger.run_all()
        except TeardownFailed as teardown:
            log.error("Rollback incomplete: {err}", err=teardown)
        raise
    if result is None:
        raise ConfigurationError("delete-only run provisioned no cluster")
    try:
        yield result
    finally:
        await result.cleanup()
