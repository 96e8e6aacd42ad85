"""Bounded calls into the external cryptographic service.

Every call runs on a small worker pool and is abandoned after a fixed
timeout. A timed-out call keeps running on its worker thread, but its
result is never used.
"""

from __future__ import annotations

import concurrent.futures
from typing import Any, Callable, TypeVar

T = TypeVar("T")


class BoundedExecutor:
    """Runs crypto calls with a per-call timeout.

    Usage:
        calls = BoundedExecutor(timeout_seconds=10.0)
        handle = calls.run(crypto.ingest, ciphertext, input_proof)
        calls.close()

    run() raises concurrent.futures.TimeoutError on timeout and
    re-raises whatever the call itself raised.
    """

    def __init__(self, timeout_seconds: float = 10.0, max_workers: int = 4) -> None:
        if timeout_seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout_seconds}")
        self._timeout = timeout_seconds
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sealedtask-crypto",
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def run(self, fn: Callable[..., T], *args: Any) -> T:
        future = self._pool.submit(fn, *args)
        try:
            return future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
