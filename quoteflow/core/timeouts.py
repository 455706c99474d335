"""Bounded execution for calls into slow collaborators.

Line-item extraction and rate lookups may block on network services. They run
on worker pools so the caller can stop waiting after a deadline. An abandoned
call keeps its worker until it returns on its own, so each collaborator gets
a pool of its own and stuck extractions never hold rate-lookup workers.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TypeVar

T = TypeVar("T")

EXTRACTION_POOL = "extraction"
RATE_LOOKUP_POOL = "rates"

POOL_SIZES = {
    EXTRACTION_POOL: 8,
    RATE_LOOKUP_POOL: 16,
}

_executors: dict[str, ThreadPoolExecutor] = {}
_executors_lock = threading.Lock()


class CallTimedOut(TimeoutError):
    """Raised when a bounded call does not finish before its deadline."""


def get_executor(pool: str) -> ThreadPoolExecutor:
    """Return the worker pool named ``pool``, creating it on first use."""

    if pool not in POOL_SIZES:
        raise ValueError(f"Unknown worker pool: {pool}")
    with _executors_lock:
        executor = _executors.get(pool)
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=POOL_SIZES[pool], thread_name_prefix=f"quoteflow-{pool}"
            )
            _executors[pool] = executor
        return executor


def call_with_timeout(
    func: Callable[..., T], *args: object, timeout: float | None, pool: str
) -> T:
    """Run ``func(*args)`` on ``pool`` and return its result within ``timeout`` seconds.

    ``timeout=None`` or a non-positive value runs the call inline.
    """

    if timeout is None or timeout <= 0:
        return func(*args)
    future = get_executor(pool).submit(func, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as exc:
        future.cancel()
        raise CallTimedOut(
            f"{getattr(func, '__qualname__', func)!s} exceeded {timeout:.1f}s"
        ) from exc


__all__ = [
    "EXTRACTION_POOL",
    "POOL_SIZES",
    "RATE_LOOKUP_POOL",
    "CallTimedOut",
    "call_with_timeout",
    "get_executor",
]
