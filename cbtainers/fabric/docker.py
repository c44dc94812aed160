"""Docker Engine implementation of the compute fabric.

Units are containers, networks are bridge networks. Every Docker error
leaving this module is translated into a ``FabricError`` subclass.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Self

import aiodocker
from aiodocker.execs import Exec
from aiodocker.stream import Stream
from loguru import logger

from cbtainers.exceptions import (
    FabricError,
    ImagePullFailed,
    ResourceConflict,
    ResourceNotFound,
)
from cbtainers.fabric.base import ClusterNetwork, ComputeUnit, ExecChunk

log = logger.bind(component="fabric", fabric="docker")

DEFAULT_STOP_TIMEOUT = 60


def _translate(exc: aiodocker.exceptions.DockerError, kind: str, name: str) -> FabricError:
    match exc.status:
        case 404:
            return ResourceNotFound(kind, name)
        case 409:
            return ResourceConflict(kind, name)
        case _:
            return FabricError(f"{kind} {name}: {exc}")


def _unit_from_listing(container: aiodocker.containers.DockerContainer) -> ComputeUnit:
    names = container["Names"] or [""]
    return ComputeUnit(
        id=container.id,
        name=names[0].lstrip("/"),
        state="started" if container["State"] == "running" else "created",
        image=container["Image"] or "",
    )


class DockerExecSession:
    """Attached ``docker exec`` with multiplexed stdout/stderr frames."""

    def __init__(self, exec_: Exec, stream: Stream) -> None:
        self._exec = exec_
        self._stream = stream

    async def read(self) -> ExecChunk | None:
        try:
            msg = await self._stream.read_out()
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "exec", self._exec.id) from e
        if msg is None:
            return None
        return ExecChunk(stream=2 if msg.stream == 2 else 1, data=msg.data)

    async def exit_code(self) -> int:
        try:
            info = await self._exec.inspect()
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "exec", self._exec.id) from e
        return int(info["ExitCode"])

    async def close(self) -> None:
        await self._stream.close()


class DockerFabric:
    """Compute fabric backed by the local Docker Engine API."""

    def __init__(self, client: aiodocker.Docker, *, stop_timeout: int = DEFAULT_STOP_TIMEOUT) -> None:
        self._client = client
        self._stop_timeout = stop_timeout

    @classmethod
    async def create(cls, url: str | None = None) -> DockerFabric:
        return cls(aiodocker.Docker(url=url))

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def list_by_prefix(self, prefix: str) -> Sequence[ComputeUnit]:
        try:
            containers = await self._client.containers.list(all=True)
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "containers", f"{prefix}*") from e
        units = []
        for container in containers:
            names = container["Names"] or [""]
            if names[0].startswith(f"/{prefix}"):
                units.append(_unit_from_listing(container))
        return units

    async def delete_matching(self, prefix: str) -> None:
        for unit in await self.list_by_prefix(prefix):
            log.info("Removing {name} {image}", name=unit.name, image=unit.image)
            container = self._client.containers.container(unit.id)
            try:
                with _IgnoreNotFound():
                    await container.stop(t=self._stop_timeout)
                with _IgnoreNotFound():
                    await container.delete(v=True)
            except aiodocker.exceptions.DockerError as e:
                raise _translate(e, "container", unit.name) from e

    async def create_network(self, name: str) -> ClusterNetwork:
        try:
            network = await self._client.networks.create({
                "Name": name,
                "CheckDuplicate": True,
                "Driver": "bridge",
            })
            info = await network.show()
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "network", name) from e
        log.info("Network {name} created: {id}", name=name, id=network.id[:12])
        return ClusterNetwork(id=info["Id"], name=info["Name"])

    async def remove_network(self, name: str) -> None:
        try:
            network = await self._client.networks.get(name)
            await network.delete()
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "network", name) from e
        log.info("Network {name} removed", name=name)

    async def create_unit(
        self,
        image: str,
        network: ClusterNetwork,
        name: str,
        *,
        command: Sequence[str] | None = None,
        ports: Mapping[int, int] | None = None,
    ) -> ComputeUnit:
        config: dict[str, Any] = {
            "Image": image,
            "HostConfig": _host_config(network, ports),
            "NetworkingConfig": {
                "EndpointsConfig": {network.name: {"NetworkID": network.id}},
            },
        }
        if command:
            config["Cmd"] = list(command)
        if ports:
            config["ExposedPorts"] = {f"{port}/tcp": {} for port in ports}

        try:
            container = await self._client.containers.create(config, name=name)
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "container", name) from e

        log.debug("Container {name} created: {id}", name=name, id=container.id[:12])
        return ComputeUnit(id=container.id, name=name, image=image)

    async def start_unit(self, unit_id: str) -> None:
        try:
            await self._client.containers.container(unit_id).start()
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "container", unit_id) from e

    async def inspect_unit(self, unit_id: str, network: str | None = None) -> ComputeUnit:
        try:
            info = await self._client.containers.container(unit_id).show()
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "container", unit_id) from e

        networks = info["NetworkSettings"]["Networks"] or {}
        if network is not None:
            endpoint = networks.get(network) or {}
        else:
            endpoint = next(iter(networks.values()), {})

        return ComputeUnit(
            id=info["Id"],
            name=info["Name"].lstrip("/"),
            state="inspected",
            address=endpoint.get("IPAddress") or None,
            image=info["Config"]["Image"],
        )

    async def pull_image(self, ref: str) -> None:
        log.info("Pulling {image}", image=ref)
        try:
            async for progress in self._client.images.pull(ref, stream=True):
                if "error" in progress:
                    raise ImagePullFailed(ref, progress["error"])
                log.debug("{image}: {status}", image=ref, status=progress.get("status", ""))
        except aiodocker.exceptions.DockerError as e:
            raise ImagePullFailed(ref, str(e)) from e
        log.info("Image {image} ready", image=ref)

    async def open_exec(self, unit_id: str, argv: Sequence[str]) -> DockerExecSession:
        container = self._client.containers.container(unit_id)
        try:
            exec_ = await container.exec(list(argv), stdout=True, stderr=True, tty=False)
            stream = exec_.start(detach=False)
        except aiodocker.exceptions.DockerError as e:
            raise _translate(e, "container", unit_id) from e
        return DockerExecSession(exec_, stream)


def _host_config(network: ClusterNetwork, ports: Mapping[int, int] | None) -> dict[str, Any]:
    config: dict[str, Any] = {"NetworkMode": network.name}
    if ports:
        config["PortBindings"] = {
            f"{container_port}/tcp": [{"HostPort": str(host_port)}]
            for container_port, host_port in ports.items()
        }
    return config


class _IgnoreNotFound:
    def __enter__(self) -> None:
        pass

    def __exit__(self, exc_type: type | None, exc: BaseException | None, tb: object) -> bool:
        return bool(
            exc_type is not None
            and issubclass(exc_type, aiodocker.exceptions.DockerError)
            and getattr(exc, "status", None) in (304, 404)
        )
