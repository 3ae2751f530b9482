"""
Async utility functions and helpers.

This module provides utilities for async operations including concurrency control,
retry with backoff, timing, and the per-key locks used to serialize access to
vector stores and chat sessions.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, TypeVar, Union
from contextlib import asynccontextmanager
import functools

from docchat.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')
L = TypeVar('L')


async def run_async(func: Callable[..., T], *args, **kwargs) -> T:
    """
    Run a synchronous function in a thread pool to avoid blocking the event loop.

    Args:
        func: Synchronous function to run
        *args: Positional arguments for the function
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function execution

    Examples:
        >>> result = await run_async(write_json_atomic, path, payload)
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


async def gather_with_concurrency(
    coroutines: List[Awaitable[T]],
    max_concurrency: int = 10,
    return_exceptions: bool = False
) -> List[Union[T, Exception]]:
    """
    Execute coroutines with controlled concurrency using semaphore.

    Results are returned in the order of the input coroutines.

    Args:
        coroutines: List of coroutines to execute
        max_concurrency: Maximum number of concurrent executions
        return_exceptions: Whether to return exceptions or raise them

    Returns:
        List of results from coroutine execution
    """
    semaphore = asyncio.Semaphore(max_concurrency)

    async def controlled_coroutine(coro: Awaitable[T]) -> T:
        async with semaphore:
            return await coro

    tasks = [asyncio.ensure_future(controlled_coroutine(coro)) for coro in coroutines]
    try:
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
    except BaseException:
        # gather leaves siblings running when one fails
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@asynccontextmanager
async def async_timer(operation_name: str = "Operation", **context: Any):
    """
    Async context manager for timing operations.

    Args:
        operation_name: Name of the operation being timed
        **context: Extra fields attached to both log events

    Examples:
        >>> async with async_timer("Vector store persist", store="combined"):
        ...     await persist()
    """
    start_time = time.time()
    logger.debug(f"{operation_name} started", **context)

    try:
        yield
    finally:
        execution_time = time.time() - start_time
        logger.info(
            f"{operation_name} completed",
            execution_time=execution_time,
            **context
        )


class AsyncRetry:
    """
    Async retry mechanism with exponential backoff.

    Only exceptions listed in ``exceptions`` are retried; anything else
    propagates on the first failure.

    Examples:
        >>> retry = AsyncRetry(max_attempts=3, base_delay=1.0,
        ...                    exceptions=(ProviderTimeout, ProviderRateLimited))
        >>>
        >>> @retry
        ... async def embed(text: str) -> List[float]:
        ...     return await provider.embed(text)
    """

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_factor: float = 2.0,
                 exceptions: tuple = (Exception,)):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_factor = exponential_factor
        self.exceptions = exceptions

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        return min(
            self.base_delay * (self.exponential_factor ** (attempt - 1)),
            self.max_delay
        )

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Decorator for adding retry logic to async functions."""
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except self.exceptions as e:
                    if attempt >= self.max_attempts:
                        logger.error(
                            "Function failed after all retry attempts",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e)
                        )
                        raise

                    delay = self.delay_for(attempt)
                    logger.warning(
                        "Function attempt failed, retrying",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        delay=delay,
                        error=str(e)
                    )

                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper


class AsyncRWLock:
    """
    Reader/writer lock for asyncio.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so a steady read load cannot
    starve an upsert.

    Examples:
        >>> lock = AsyncRWLock()
        >>> async with lock.read():
        ...     hits = index.search(query, k)
        >>> async with lock.write():
        ...     await commit()
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def locked(self) -> bool:
        return self._writer or self._readers > 0

    @asynccontextmanager
    async def read(self):
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self):
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class KeyedLock(Generic[L]):
    """
    Lazily created lock per key.

    Entries are dropped once no task holds or waits on them, so the table
    only grows with the number of keys in active use.

    Examples:
        >>> session_locks = KeyedLock(asyncio.Lock)
        >>> async with session_locks.hold(("alice", "combined", "c1")) as lock:
        ...     async with lock:
        ...         ...
    """

    def __init__(self, factory: Callable[[], L]):
        self._factory = factory
        self._locks: Dict[Hashable, L] = {}
        self._users: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Yield the lock for ``key`` while keeping its entry alive."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._factory()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            yield lock
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


async def run_async_to_completion(func: Callable[..., T], *args, **kwargs) -> T:
    """
    Run blocking ``func`` in a worker thread and wait for it even if cancelled.

    Used for durable writes performed under a lock: the lock must not be
    released while the write is still running. If the caller is cancelled
    meanwhile, the worker's exception propagates when it failed, otherwise
    ``CancelledError`` is re-raised once the write is complete.
    """
    task = asyncio.ensure_future(run_async(func, *args, **kwargs))
    cancelled = False
    while True:
        try:
            result = await asyncio.shield(task)
            break
        except asyncio.CancelledError:
            cancelled = True
            if task.done():
                result = task.result()
                break
    if cancelled:
        raise asyncio.CancelledError()
    return result
