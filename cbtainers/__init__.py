"""cbtainers - disposable Couchbase Server clusters in local containers.

Example:

    import asyncio
    from cbtainers import ClusterSpec, DockerFabric, provision

    async def main():
        spec = ClusterSpec(prefix="cb-dev", size=3)
        async with await DockerFabric.create() as fabric:
            async with provision(spec, fabric) as cluster:
                print(cluster.first.address)

    asyncio.run(main())
"""

# Configuration
from cbtainers.config import ClusterSpec, load_config, resolve_spec

# Errors
from cbtainers.exceptions import (
    CbtainersError,
    ConfigurationError,
    ExecCancelled,
    ExecFailed,
    FabricError,
    ImagePullFailed,
    ProvisioningFailed,
    ResourceConflict,
    ResourceNotFound,
    ServiceNotReady,
    TeardownFailed,
)

# Execution and probing
from cbtainers.executor import ExecResult, RemoteExecutor

# Fabric
from cbtainers.fabric import ClusterNetwork, ComputeUnit, FabricGateway
from cbtainers.fabric.docker import DockerFabric

# Cleanup
from cbtainers.ledger import CleanupAction, CleanupLedger

# Logging
from cbtainers.logging import LogConfig, setup_logging, teardown_logging

# Provisioning
from cbtainers.orchestrator import ClusterOrchestrator, ClusterResult, provision, run
from cbtainers.probe import wait_until_ready
from cbtainers.retry import RetryPolicy, with_retry

__all__ = [
    "CbtainersError",
    "CleanupAction",
    "CleanupLedger",
    "ClusterNetwork",
    "ClusterOrchestrator",
    "ClusterResult",
    "ClusterSpec",
    "ComputeUnit",
    "ConfigurationError",
    "DockerFabric",
    "ExecCancelled",
    "ExecFailed",
    "ExecResult",
    "FabricError",
    "FabricGateway",
    "ImagePullFailed",
    "LogConfig",
    "ProvisioningFailed",
    "RemoteExecutor",
    "ResourceConflict",
    "ResourceNotFound",
    "RetryPolicy",
    "ServiceNotReady",
    "TeardownFailed",
    "load_config",
    "provision",
    "resolve_spec",
    "run",
    "setup_logging",
    "teardown_logging",
    "wait_until_ready",
    "with_retry",
]
