"""Dedicated worker threads for blocking backend calls."""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Iterator


@contextmanager
def worker_pool(workers: int, name: str) -> Iterator[ThreadPoolExecutor]:
    """
    Executor with one thread per concurrent call, owned by a single fan-out.

    On exit the pool is shut down without waiting, so a call that already
    timed out cannot hold up the caller or ``asyncio.run``. Its thread
    finishes in the background once the blocking request returns.

    Args:
        workers: Number of calls that must run at the same time
        name: Thread name prefix
    """
    executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix=name)
    try:
        yield executor
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


async def call_with_timeout(
    executor: ThreadPoolExecutor,
    timeout: float,
    func: Callable[..., Any],
    *args: Any,
) -> Any:
    """Run ``func(*args)`` on ``executor``; raises asyncio.TimeoutError after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(loop.run_in_executor(executor, func, *args), timeout=timeout)
