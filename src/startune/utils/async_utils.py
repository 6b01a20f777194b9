"""Bridge for running blocking collaborator calls off the event loop.

Catalog and favorites clients built on synchronous HTTP libraries are driven
through `run_blocking` so retries, backoff sleeps and debounce timers keep
running while a request is in flight.
"""

from __future__ import annotations

import asyncio
import atexit
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_IO_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="startune-io")


@atexit.register
def _shutdown_io_executor() -> None:
    _IO_EXECUTOR.shutdown(wait=False, cancel_futures=True)


async def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run blocking callable on the shared IO executor and await its result."""
    if not callable(func):
        raise TypeError("func must be callable")
    loop = asyncio.get_running_loop()
    call = partial(func, *args, **kwargs) if kwargs else partial(func, *args)
    future = loop.run_in_executor(_IO_EXECUTOR, call)
    # Poll with a short timeout: some loops miss thread->loop wakeups on completion.
    while True:
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=0.1)
        except asyncio.TimeoutError:
            continue
