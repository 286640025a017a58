"""Helpers for calling collaborators that may be sync or async."""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await ``func(*args)`` whether it is a coroutine function or a plain callable.

    Plain callables run in the default thread pool so blocking I/O or
    pandas work does not stall the event loop.
    """

    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    result = await asyncio.to_thread(func, *args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


__all__ = ["call_maybe_async"]
