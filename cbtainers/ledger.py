"""Compensating actions for resources created during a provisioning run.

Actions are plain ``{kind, target}`` records appended as soon as the
resource they undo is confirmed created. ``run_all`` interprets them
against the fabric in registration order, attempts every one of them and
reports all failures together.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from cbtainers.exceptions import ResourceNotFound, TeardownFailed
from cbtainers.fabric.base import FabricGateway

type ActionKind = Literal["remove_network", "delete_units", "delete_proxy"]

PROXY_NAME = "cb-server-proxy"

log = logger.bind(component="ledger")


@dataclass(frozen=True, slots=True)
class CleanupAction:
    kind: ActionKind
    target: str

    def __str__(self) -> str:
        return f"{self.kind}({self.target})"

    @classmethod
    def remove_network(cls, name: str) -> CleanupAction:
        return cls("remove_network", name)

    @classmethod
    def delete_units(cls, prefix: str) -> CleanupAction:
        return cls("delete_units", prefix)

    @classmethod
    def delete_proxy(cls) -> CleanupAction:
        return cls("delete_proxy", PROXY_NAME)


class CleanupLedger:
    """Ordered, append-only list of cleanup actions bound to one fabric."""

    def __init__(self, fabric: FabricGateway) -> None:
        self._fabric = fabric
        self._actions: list[CleanupAction] = []
        self._lock = asyncio.Lock()
        self._drained = False

    def register(self, action: CleanupAction) -> None:
        log.debug("Registered cleanup {action}", action=action)
        self._actions.append(action)

    @property
    def actions(self) -> tuple[CleanupAction, ...]:
        return tuple(self._actions)

    @property
    def drained(self) -> bool:
        return self._drained

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[CleanupAction]:
        return iter(tuple(self._actions))

    def __repr__(self) -> str:
        return f"CleanupLedger({', '.join(map(str, self._actions))})"

    async def _execute(self, action: CleanupAction) -> None:
        match action.kind:
            case "remove_network":
                try:
                    await self._fabric.remove_network(action.target)
                except ResourceNotFound:
                    log.debug("Network {name} already gone", name=action.target)
            case "delete_units" | "delete_proxy":
                await self._fabric.delete_matching(action.target)

    async def _sweep(
        self, actions: list[CleanupAction],
    ) -> list[tuple[CleanupAction, BaseException]]:
        failures: list[tuple[CleanupAction, BaseException]] = []
        for action in actions:
            log.info("Cleaning up {action}", action=action)
            try:
                await self._execute(action)
            except Exception as e:
                log.warning("Cleanup {action} failed: {err}", action=action, err=e)
                failures.append((action, e))
        return failures

    async def run_all(self) -> None:
        """Run every registered action in registration order.

        Actions that fail are attempted once more after the first pass.
        A ledger that completed without failures is not run again; a
        ledger with failures may be re-run.

        Raises:
            TeardownFailed: At least one action failed. Every action was
                still attempted.
        """
        async with self._lock:
            if self._drained:
                log.debug("Ledger already drained")
                return
            failures = await self._sweep(self._actions)
            if failures:
                # a network still has endpoints until the units on it are gone
                failures = await self._sweep([action for action, _ in failures])
            self._drained = not failures

        if failures:
            raise TeardownFailed(failures)
