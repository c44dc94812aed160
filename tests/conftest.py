from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace

import pytest

from cbtainers.exceptions import ResourceConflict, ResourceNotFound
from cbtainers.fabric.base import STDERR, STDOUT, ClusterNetwork, ComputeUnit, ExecChunk
from cbtainers.retry import RetryPolicy

type ExecHandler = Callable[[ComputeUnit, Sequence[str]], tuple[int, str, str]]


class FakeExecSession:
    """Replays canned output frames; ``hang`` keeps the stream open forever."""

    def __init__(self, chunks: Sequence[ExecChunk], exit_code: int, *, hang: bool = False) -> None:
        self._chunks = list(chunks)
        self._exit_code = exit_code
        self._hang = hang
        self.closed = False

    async def read(self) -> ExecChunk | None:
        if self._hang:
            await asyncio.Event().wait()
        await asyncio.sleep(0)
        return self._chunks.pop(0) if self._chunks else None

    async def exit_code(self) -> int:
        return self._exit_code

    async def close(self) -> None:
        self.closed = True


@dataclass
class _Unit:
    unit: ComputeUnit
    network: str
    command: tuple[str, ...] = ()
    ports: dict[int, int] = field(default_factory=dict)


class FakeFabric:
    """In-memory fabric that behaves like a Docker daemon running couchbase-cli.

    Failures are injected per operation, optionally per target, with ``fail``.
    Every call is recorded in ``calls`` as ``(operation, target)``.
    """

    def __init__(self) -> None:
        self.units: dict[str, _Unit] = {}
        self.networks: dict[str, ClusterNetwork] = {}
        self.images: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.execs: list[tuple[str, tuple[str, ...]]] = []
        self.sessions: list[FakeExecSession] = []
        self.members: dict[str, list[str]] = {}
        self.exec_handler: ExecHandler = self._couchbase_cli
        self.hang_exec = False
        self.closed = False
        self._failures: dict[tuple[str, str | None], list[Exception]] = {}
        self._ids = itertools.count(1)

    def fail(self, operation: str, exc: Exception, *, target: str | None = None, times: int = 1) -> None:
        self._failures.setdefault((operation, target), []).extend([exc] * times)

    def _record(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        for key in ((operation, target), (operation, None)):
            pending = self._failures.get(key)
            if pending:
                raise pending.pop(0)

    def ops(self, *operations: str) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in operations]

    def names(self) -> list[str]:
        return sorted(u.unit.name for u in self.units.values())

    async def list_by_prefix(self, prefix: str) -> list[ComputeUnit]:
        return [u.unit for u in self.units.values() if u.unit.name.startswith(prefix)]

    async def delete_matching(self, prefix: str) -> None:
        self._record("delete_matching", prefix)
        for unit in await self.list_by_prefix(prefix):
            self.units.pop(unit.id, None)

    async def create_network(self, name: str) -> ClusterNetwork:
        self._record("create_network", name)
        if name in self.networks:
            raise ResourceConflict("network", name)
        network = ClusterNetwork(id=f"net-{next(self._ids)}", name=name)
        self.networks[name] = network
        return network

    async def remove_network(self, name: str) -> None:
        self._record("remove_network", name)
        if name not in self.networks:
            raise ResourceNotFound("network", name)
        if any(u.network == name for u in self.units.values()):
            raise ResourceConflict("endpoints on network", name)
        del self.networks[name]

    async def create_unit(
        self,
        image: str,
        network: ClusterNetwork,
        name: str,
        *,
        command: Sequence[str] | None = None,
        ports: Mapping[int, int] | None = None,
    ) -> ComputeUnit:
        self._record("create_unit", name)
        if any(u.unit.name == name for u in self.units.values()):
            raise ResourceConflict("container", name)
        unit = ComputeUnit(id=f"c{next(self._ids):011d}", name=name, image=image)
        self.units[unit.id] = _Unit(unit, network.name, tuple(command or ()), dict(ports or {}))
        return unit

    async def start_unit(self, unit_id: str) -> None:
        self._record("start_unit", unit_id)
        entry = self.units[unit_id]
        address = f"172.18.0.{len(self.units) + 1}"
        entry.unit = replace(entry.unit, state="started", address=address)

    async def inspect_unit(self, unit_id: str, network: str | None = None) -> ComputeUnit:
        self._record("inspect_unit", unit_id)
        entry = self.units.get(unit_id)
        if entry is None:
            raise ResourceNotFound("container", unit_id)
        return replace(entry.unit, state="inspected")

    async def pull_image(self, ref: str) -> None:
        self._record("pull_image", ref)
        self.images.append(ref)

    async def open_exec(self, unit_id: str, argv: Sequence[str]) -> FakeExecSession:
        self._record("exec", argv[1] if len(argv) > 1 else argv[0])
        self.execs.append((unit_id, tuple(argv)))
        exit_code, out, err = self.exec_handler(self.units[unit_id].unit, argv)
        chunks = []
        if out:
            chunks.append(ExecChunk(STDOUT, out.encode()))
        if err:
            chunks.append(ExecChunk(STDERR, err.encode()))
        session = FakeExecSession(chunks, exit_code, hang=self.hang_exec)
        self.sessions.append(session)
        return session

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> FakeFabric:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _couchbase_cli(self, unit: ComputeUnit, argv: Sequence[str]) -> tuple[int, str, str]:
        match argv[1]:
            case "cluster-init":
                self.members[unit.id] = [unit.name]
                return 0, "SUCCESS: Cluster initialized\n", ""
            case "server-add":
                added = argv[argv.index("--server-add") + 1].split(",")
                self.members.setdefault(unit.id, [unit.name]).extend(added)
                return 0, "SUCCESS: Server added\n", ""
            case "rebalance":
                return 0, "SUCCESS: Rebalance complete\n", ""
            case "server-list":
                lines = [f"ns_1@{name} {name}:8091 healthy active" for name in self.members.get(unit.id, [])]
                return 0, "\n".join(lines) + "\n", ""
            case _:
                return 1, "", f"ERROR: unknown command {argv[1]}\n"


@pytest.fixture
def fabric() -> FakeFabric:
    return FakeFabric()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def policy(sleeps: list[float]) -> RetryPolicy:
    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryPolicy(attempts=3, delay=5.0, sleep=sleep)


@pytest.fixture
def make_session() -> type[FakeExecSession]:
    return FakeExecSession
