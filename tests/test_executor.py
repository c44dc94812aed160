from __future__ import annotations

import asyncio

import pytest

from cbtainers.exceptions import ExecCancelled, ExecFailed
from cbtainers.executor import RemoteExecutor
from cbtainers.fabric.base import STDOUT, ClusterNetwork, ExecChunk

pytestmark = [pytest.mark.unit, pytest.mark.timeout(10), pytest.mark.xdist_group("unit")]


@pytest.fixture
async def unit(fabric):
    network = ClusterNetwork(id="net-0", name="cb-test-network")
    created = await fabric.create_unit("couchbase/server:7.1.1", network, "cb-test-0.docker")
    await fabric.start_unit(created.id)
    return created


async def test_zero_exit_returns_stdout(fabric, unit):
    fabric.exec_handler = lambda u, argv: (0, "hello\n", "warning: noisy\n")

    result = await RemoteExecutor(fabric).run(unit.id, ["echo", "hello"])

    assert result.stdout == "hello\n"
    assert result.stderr == "warning: noisy\n"
    assert result.exit_code == 0
    assert fabric.sessions[0].closed


async def test_output_returns_only_stdout(fabric, unit):
    fabric.exec_handler = lambda u, argv: (0, "line-1\nline-2\n", "")
    out = await RemoteExecutor(fabric).output(unit.id, ["cat", "/etc/hosts"])
    assert out == "line-1\nline-2\n"


async def test_nonzero_exit_raises_exec_failed_with_stderr(fabric, unit):
    fabric.exec_handler = lambda u, argv: (1, "", "ERROR: boom\n")

    with pytest.raises(ExecFailed) as info:
        await RemoteExecutor(fabric).run(unit.id, ["couchbase-cli", "rebalance"])

    assert info.value.exit_code == 1
    assert info.value.stderr == "ERROR: boom\n"
    assert info.value.argv == ("couchbase-cli", "rebalance")
    assert "ERROR: boom" in str(info.value)


async def test_exec_failed_message_redacts_passwords(fabric, unit):
    fabric.exec_handler = lambda u, argv: (2, "", "denied")
    argv = ["couchbase-cli", "server-list", "--username", "Administrator", "--password", "s3cret"]

    with pytest.raises(ExecFailed) as info:
        await RemoteExecutor(fabric).run(unit.id, argv)

    assert "s3cret" not in str(info.value)
    assert "Administrator" in str(info.value)
    assert info.value.argv[-1] == "s3cret"


async def test_large_output_is_fully_drained(fabric, unit, make_session, monkeypatch):
    payload = [ExecChunk(STDOUT, b"x" * 65536) for _ in range(16)]

    async def open_exec(unit_id, argv):
        return make_session(payload, 0)

    monkeypatch.setattr(fabric, "open_exec", open_exec)
    result = await RemoteExecutor(fabric).run(unit.id, ["cat", "big"])
    assert len(result.stdout) == 16 * 65536


async def test_cancel_event_abandons_command(fabric, unit):
    fabric.hang_exec = True
    cancel = asyncio.Event()

    async def fire() -> None:
        await asyncio.sleep(0.05)
        cancel.set()

    trigger = asyncio.create_task(fire())
    with pytest.raises(ExecCancelled, match="cancelled"):
        await RemoteExecutor(fabric).run(unit.id, ["sleep", "infinity"], cancel=cancel)
    await trigger
    assert fabric.sessions[0].closed


async def test_timeout_abandons_command(fabric, unit):
    fabric.hang_exec = True
    with pytest.raises(ExecCancelled, match="timed out"):
        await RemoteExecutor(fabric).run(unit.id, ["sleep", "infinity"], timeout=0.05)
    assert fabric.sessions[0].closed


async def test_cancel_after_completion_keeps_result(fabric, unit):
    fabric.exec_handler = lambda u, argv: (0, "done\n", "")
    cancel = asyncio.Event()
    result = await RemoteExecutor(fabric).run(unit.id, ["true"], cancel=cancel, timeout=5)
    assert result.stdout == "done\n"


async def test_caller_cancellation_closes_session(fabric, unit):
    fabric.hang_exec = True
    task = asyncio.create_task(RemoteExecutor(fabric).run(unit.id, ["sleep", "infinity"]))
    await asyncio.sleep(0.05)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert fabric.sessions[0].closed
