from __future__ import annotations

import asyncio
import contextlib
import logging

import pytest

from peerlink.utils.tasks import SafeTaskExitError
from peerlink.utils.tasks import spawn_guarded_background_task
from peerlink.utils.tasks import TaskScope
from peerlink.utils.tasks import TaskScopeClosedError
from peerlink.utils.tasks import wait_for_condition


def test_background_task_exits_on_error() -> None:
    async def okay_task() -> None:
        return

    async def safe_task() -> None:
        raise SafeTaskExitError()

    async def bad_task() -> None:
        raise RuntimeError()

    async def run(task) -> None:
        await spawn_guarded_background_task(task)

    with contextlib.redirect_stdout(
        None,
    ), contextlib.redirect_stderr(None):
        asyncio.run(run(okay_task))
        with pytest.raises(SafeTaskExitError):
            asyncio.run(run(safe_task))
        with pytest.raises(SystemExit):
            asyncio.run(run(bad_task))


def test_background_task_error_is_logged(caplog) -> None:
    caplog.set_level(logging.ERROR)

    async def bad_task() -> None:
        raise RuntimeError('Oh no!')

    async def run(task) -> None:
        await spawn_guarded_background_task(task)

    with contextlib.redirect_stdout(
        None,
    ), contextlib.redirect_stderr(None):
        with pytest.raises(SystemExit):
            asyncio.run(run(bad_task))

    assert any(['Traceback' in record.message for record in caplog.records])
    assert any(['Oh no!' in record.message for record in caplog.records])


@pytest.mark.asyncio()
async def test_scope_run_returns_result() -> None:
    async def double(x: int) -> int:
        await asyncio.sleep(0)
        return 2 * x

    scope = TaskScope('test')
    assert await scope.run(double, 21) == 42
    assert len(scope) == 0
    await scope.close()


@pytest.mark.asyncio()
async def test_scope_run_propagates_exception() -> None:
    async def fail() -> None:
        raise ValueError('bad')

    scope = TaskScope('test')
    with pytest.raises(ValueError, match='bad'):
        await scope.run(fail)
    await scope.close()


@pytest.mark.asyncio()
async def test_scope_close_cancels_run() -> None:
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.sleep(1000)

    scope = TaskScope('test')
    runner = asyncio.create_task(scope.run(forever))
    await started.wait()
    assert len(scope) == 1

    await scope.close()
    with pytest.raises(TaskScopeClosedError):
        await runner
    assert len(scope) == 0


@pytest.mark.asyncio()
async def test_scope_close_cancels_spawned() -> None:
    async def forever() -> None:
        await asyncio.sleep(1000)

    scope = TaskScope('test')
    task = scope.spawn(forever, name='forever')
    assert task.get_name() == 'test-forever'
    await asyncio.sleep(0)

    await scope.close()
    assert task.cancelled()
    assert scope.closed


@pytest.mark.asyncio()
async def test_scope_spawn_logs_exception(caplog) -> None:
    caplog.set_level(logging.ERROR)

    async def fail() -> None:
        raise RuntimeError('Oh no!')

    scope = TaskScope('test')
    task = scope.spawn(fail)
    await asyncio.wait({task})

    assert any(['Oh no!' in record.message for record in caplog.records])
    await scope.close()


@pytest.mark.asyncio()
async def test_scope_refuses_tasks_after_close() -> None:
    async def noop() -> None:
        pass

    scope = TaskScope('test')
    await scope.close()

    with pytest.raises(TaskScopeClosedError):
        scope.spawn(noop)
    with pytest.raises(TaskScopeClosedError):
        await scope.run(noop)


@pytest.mark.asyncio()
async def test_scope_cancelled_caller_cancels_task() -> None:
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.sleep(1000)

    scope = TaskScope('test')
    runner = asyncio.create_task(scope.run(forever))
    await started.wait()
    (inner,) = scope._tasks

    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner
    await asyncio.wait({inner})
    assert inner.cancelled()
    await scope.close()


@pytest.mark.asyncio()
async def test_wait_for_condition_already_true() -> None:
    await wait_for_condition(lambda: True, timeout=0.01, interval=1)


@pytest.mark.asyncio()
async def test_wait_for_condition_polls_until_true() -> None:
    checks = 0

    def condition() -> bool:
        nonlocal checks
        checks += 1
        return checks >= 3

    await wait_for_condition(condition, timeout=1, interval=0.001)
    assert checks == 3


@pytest.mark.asyncio()
async def test_wait_for_condition_timeout() -> None:
    checks = 0

    def condition() -> bool:
        nonlocal checks
        checks += 1
        return False

    with pytest.raises(asyncio.TimeoutError):
        await wait_for_condition(condition, timeout=0.05, interval=0.005)

    # The wait polls repeatedly rather than checking once per timeout
    assert checks > 1
