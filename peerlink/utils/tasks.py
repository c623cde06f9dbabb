"""Spawn, scope and bound asyncio tasks with error handling."""
from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Any
from typing import Callable
from typing import Coroutine
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SafeTaskExitError(Exception):
    """Exception that can be raised inside a task to safely exit it."""

    pass


class TaskScopeClosedError(Exception):
    """Task was cancelled, or refused, because its scope was closed."""

    pass


async def _execute_and_log_traceback(
    coro: Callable[..., Coroutine[Any, Any, Any]],
    *args: Any,
    **kwargs: Any,
) -> Any:
    """Execute a coroutine and log any tracebacks.

    Catches any exceptions raised by the coroutine, logs the traceback,
    and re-raises the exception.
    """
    try:
        return await coro(*args, **kwargs)
    except Exception:
        logger.error(traceback.format_exc())
        raise


def exit_on_error(task: asyncio.Task[Any]) -> None:
    """Task callback that raises SystemExit on task exception."""
    if (
        not task.cancelled()
        and task.exception() is not None
        and not isinstance(task.exception(), SafeTaskExitError)
    ):
        logger.error(
            f'Exception in background task (name="{task.get_name()}"): '
            f'{task.exception()!r}',
        )
        raise SystemExit(1)


def spawn_guarded_background_task(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Task[Any]:
    """Run a long-lived coroutine safely in the background.

    Launches the coroutine as an asyncio task and sets the done
    callback to [`exit_on_error()`][peerlink.utils.tasks.exit_on_error].
    Exceptions inside the task get logged and cause the program to exit
    rather than leaving a listener silently dead.

    Tasks can raise
    [`SafeTaskExitError`][peerlink.utils.tasks.SafeTaskExitError] to
    signal the task is finished but should not cause a system exit.

    Args:
        coro: Coroutine to run as task.
        args: Positional arguments for the coroutine.
        kwargs: Keyword arguments for the coroutine.

    Returns:
        Asyncio task handle.
    """
    task = asyncio.create_task(
        _execute_and_log_traceback(coro, *args, **kwargs),
    )
    task.add_done_callback(exit_on_error)
    return task


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # Already logged by _execute_and_log_traceback.
    if not task.cancelled():
        task.exception()


class TaskScope:
    """Group of tasks whose lifetime is bounded by an owning object.

    Every task started through the scope is cancelled by
    [`close()`][peerlink.utils.tasks.TaskScope.close], so waits and
    RPC calls started on behalf of an object cannot outlive it.

    Example:
        ```python
        scope = TaskScope('peer-a')
        scope.spawn(push_candidate, candidate)
        result = await scope.run(wait_then_apply, candidate)
        await scope.close()
        ```

    Args:
        name: Name used in task names and log messages.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        """Scope has been closed and accepts no new tasks."""
        return self._closed

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def spawn(
        self,
        coro: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        name: str | None = None,
        **kwargs: Any,
    ) -> asyncio.Task[Any]:
        """Run a coroutine in the background within this scope.

        Exceptions raised by the coroutine are logged with their traceback.

        Raises:
            TaskScopeClosedError: If the scope is closed.
        """
        if self._closed:
            raise TaskScopeClosedError(f'Task scope {self._name} is closed.')
        task = asyncio.create_task(
            _execute_and_log_traceback(coro, *args, **kwargs),
            name=f'{self._name}-{name or coro.__name__}',
        )
        task.add_done_callback(_retrieve_exception)
        return self._track(task)

    async def run(
        self,
        coro: Callable[..., Coroutine[Any, Any, T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Run a coroutine within this scope and wait on its result.

        Exceptions raised by the coroutine propagate to the caller.

        Raises:
            TaskScopeClosedError: If the scope is closed before or while the
                coroutine runs.
        """
        if self._closed:
            raise TaskScopeClosedError(f'Task scope {self._name} is closed.')
        task = self._track(
            asyncio.create_task(
                coro(*args, **kwargs),
                name=f'{self._name}-{coro.__name__}',
            ),
        )
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            raise TaskScopeClosedError(
                f'Task scope {self._name} was closed while '
                f'{coro.__name__} was running.',
            )
        return task.result()

    async def close(self) -> None:
        """Cancel all running tasks and refuse new ones."""
        self._closed = True
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.debug(
                f'Task scope {self._name} cancelled {len(tasks)} task(s)',
            )


async def wait_for_condition(
    condition: Callable[[], bool],
    *,
    timeout: float,
    interval: float,
) -> None:
    """Poll until a condition holds or a deadline passes.

    The condition is checked immediately and then every `interval` seconds
    until it returns `True` or `timeout` seconds have elapsed.

    Args:
        condition: Callable returning `True` once the wait is satisfied.
        timeout: Deadline in seconds for the whole wait.
        interval: Seconds between checks of the condition.

    Raises:
        asyncio.TimeoutError: If the condition does not hold within
            `timeout` seconds.
    """

    async def _poll() -> None:
        while not condition():
            await asyncio.sleep(interval)

    await asyncio.wait_for(_poll(), timeout)
