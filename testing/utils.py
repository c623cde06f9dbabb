"""Fixtures and utilities for testing."""
from __future__ import annotations

import asyncio
import contextlib
import socket
from typing import Callable


def open_port(host: str = 'localhost') -> int:
    """Return a port on `host` that was free when checked."""
    with contextlib.closing(
        socket.socket(socket.AF_INET, socket.SOCK_STREAM),
    ) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


async def wait_until(
    condition: Callable[[], bool],
    timeout: float = 5,
) -> None:
    """Yield to the event loop until `condition()` is `True`.

    Raises:
        asyncio.TimeoutError: If the condition is not met in time.
    """

    async def _wait() -> None:
        while not condition():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_wait(), timeout)
