"""Remote command execution inside a running unit.

Output is drained by a background task while a watcher waits for the
caller's cancellation signal or deadline; whichever finishes first wins.
The exit status is only inspected once the drain has completed, so the
captured output is never read from a half-drained stream.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from cbtainers.exceptions import ExecCancelled, ExecFailed
from cbtainers.fabric.base import STDERR, ExecSession, FabricGateway

log = logger.bind(component="executor")


@dataclass(frozen=True, slots=True)
class ExecResult:
    stdout: str
    stderr: str
    exit_code: int


async def _drain(session: ExecSession, out: bytearray, err: bytearray) -> None:
    while (chunk := await session.read()) is not None:
        if chunk.stream == STDERR:
            err.extend(chunk.data)
        else:
            out.extend(chunk.data)


async def _watch(cancel: asyncio.Event | None, timeout: float | None) -> str:
    if cancel is None:
        await asyncio.sleep(timeout if timeout is not None else float("inf"))
        return f"timed out after {timeout}s"
    try:
        await asyncio.wait_for(cancel.wait(), timeout)
    except TimeoutError:
        return f"timed out after {timeout}s"
    return "cancelled"


class RemoteExecutor:
    """Runs argv inside units of a fabric and captures their output."""

    def __init__(self, fabric: FabricGateway) -> None:
        self._fabric = fabric

    async def run(
        self,
        unit_id: str,
        argv: Sequence[str],
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> ExecResult:
        """Execute ``argv`` in ``unit_id`` and wait for it to finish.

        Args:
            unit_id: Fabric id of the target unit.
            argv: Command and arguments, not passed through a shell.
            cancel: Setting this event abandons the command.
            timeout: Seconds before the command is abandoned.

        Returns:
            Captured stdout and stderr of a zero-exit command.

        Raises:
            ExecFailed: The command exited with a non-zero status.
            ExecCancelled: ``cancel`` fired or ``timeout`` elapsed before
                the output was fully drained.
        """
        session = await self._fabric.open_exec(unit_id, argv)
        out, err = bytearray(), bytearray()

        drain = asyncio.create_task(_drain(session, out, err))
        watcher: asyncio.Task[str] | None = None
        if cancel is not None or timeout is not None:
            watcher = asyncio.create_task(_watch(cancel, timeout))

        try:
            if watcher is None:
                await drain
            else:
                done, _ = await asyncio.wait({drain, watcher}, return_when=asyncio.FIRST_COMPLETED)
                if drain not in done:
                    raise ExecCancelled(argv, watcher.result())
                drain.result()

            exit_code = await session.exit_code()
        finally:
            if watcher is not None:
                watcher.cancel()
            if not drain.done():
                # abandoned, not awaited
                drain.cancel()
            await session.close()

        stdout, stderr = out.decode(errors="replace"), err.decode(errors="replace")
        if stdout.strip():
            log.debug("{unit} stdout: {out}", unit=unit_id[:12], out=stdout.strip())
        if stderr.strip():
            log.debug("{unit} stderr: {err}", unit=unit_id[:12], err=stderr.strip())

        if exit_code != 0:
            raise ExecFailed(argv, exit_code, stderr, stdout)
        return ExecResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    async def output(
        self,
        unit_id: str,
        argv: Sequence[str],
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> str:
        result = await self.run(unit_id, argv, cancel=cancel, timeout=timeout)
        return result.stdout
