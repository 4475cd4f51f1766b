"""
Process shutdown hooks.

Async cleanup callables registered here run once, either when the host calls
run_shutdown_hooks() during a graceful shutdown or from an atexit handler.
Each hook is capped by its own timeout and failures are logged, never raised:
these hooks are best-effort maintenance and must not block or crash process
exit.
"""

from __future__ import annotations

import asyncio
import atexit
import itertools
from typing import Awaitable, Callable, Dict, Tuple

from logstore.logging_utils import get_logger

logger = get_logger(__name__)

HookFn = Callable[[], Awaitable[None]]

_hooks: Dict[int, Tuple[str, HookFn, float]] = {}
_ids = itertools.count(1)
_atexit_installed = False


def register_shutdown_hook(name: str, fn: HookFn, timeout: float = 30.0) -> int:
    """
    Register an async hook. Returns a handle for unregister_shutdown_hook().

    Registering a name that is already pending replaces the earlier hook.
    Hooks that run from atexit cannot start threads, so they must not use
    executors or anything built on them.
    """
    global _atexit_installed
    if not _atexit_installed:
        atexit.register(_run_at_exit)
        _atexit_installed = True
    for handle, (existing, _, _) in list(_hooks.items()):
        if existing == name:
            _hooks[handle] = (name, fn, timeout)
            return handle
    handle = next(_ids)
    _hooks[handle] = (name, fn, timeout)
    return handle


def unregister_shutdown_hook(handle: int) -> None:
    _hooks.pop(handle, None)


def pending_hooks() -> int:
    return len(_hooks)


async def run_shutdown_hooks() -> None:
    """Run and clear every registered hook, in registration order."""
    while _hooks:
        handle = min(_hooks)
        name, fn, timeout = _hooks.pop(handle)
        try:
            await asyncio.wait_for(fn(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Shutdown hook '{name}' timed out after {timeout}s")
        except Exception as e:
            logger.error(f"Shutdown hook '{name}' failed: {e}")


def _run_at_exit() -> None:
    if not _hooks:
        return
    try:
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(run_shutdown_hooks())
        finally:
            loop.close()
    except Exception as e:
        logger.warning(f"Error running shutdown hooks: {e}")
