"""Compute fabric boundary: resource models and the gateway protocol."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

type UnitState = Literal["created", "started", "inspected"]
type StreamId = Literal[1, 2]

STDOUT: StreamId = 1
STDERR: StreamId = 2


@dataclass(frozen=True, slots=True)
class ComputeUnit:
    """One container as seen by the orchestrator.

    Identity is the fabric-assigned ``id``. ``name`` is kept without the
    leading slash Docker reports and is only used for prefix matching.
    """

    id: str
    name: str
    state: UnitState = "created"
    address: str | None = None
    image: str = ""

    @property
    def hostname(self) -> str:
        return self.name.lstrip("/")


@dataclass(frozen=True, slots=True)
class ClusterNetwork:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class ExecChunk:
    stream: StreamId
    data: bytes


@runtime_checkable
class ExecSession(Protocol):
    """An attached command execution inside a running unit."""

    async def read(self) -> ExecChunk | None:
        """Return the next output frame, or None once the command closed its streams."""
        ...

    async def exit_code(self) -> int:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class FabricGateway(Protocol):
    """Operations the orchestrator needs from a container fabric.

    Implementations hold the client handle and nothing else; all
    provisioning state lives in the orchestrator and its ledger.
    """

    async def list_by_prefix(self, prefix: str) -> Sequence[ComputeUnit]:
        """List every unit whose name starts with ``prefix``.

        Parameters
        ----------
        prefix
            Name prefix, without the leading slash.

        Returns
        -------
        Sequence[ComputeUnit]
            Matching units in no particular order.
        """
        ...

    async def delete_matching(self, prefix: str) -> None:
        """Stop then remove every unit matching ``prefix``.

        Units that are already stopped or already gone are not an error.
        """
        ...

    async def create_network(self, name: str) -> ClusterNetwork:
        """Create an isolated bridge network.

        Raises
        ------
        ResourceConflict
            A network with the same name already exists.
        """
        ...

    async def remove_network(self, name: str) -> None:
        """Remove a network by name.

        Raises
        ------
        ResourceNotFound
            No network with that name exists.
        """
        ...

    async def create_unit(
        self,
        image: str,
        network: ClusterNetwork,
        name: str,
        *,
        command: Sequence[str] | None = None,
        ports: Mapping[int, int] | None = None,
    ) -> ComputeUnit:
        """Create (but do not start) a unit attached to ``network``.

        Parameters
        ----------
        ports
            Container TCP port to host port bindings.
        """
        ...

    async def start_unit(self, unit_id: str) -> None:
        ...

    async def inspect_unit(self, unit_id: str, network: str | None = None) -> ComputeUnit:
        """Return the unit with its address on ``network`` filled in."""
        ...

    async def pull_image(self, ref: str) -> None:
        """Pull ``ref`` and block until it is fully available locally."""
        ...

    async def open_exec(self, unit_id: str, argv: Sequence[str]) -> ExecSession:
        """Start ``argv`` inside the unit with stdout and stderr attached."""
        ...

    async def close(self) -> None:
        ...
