"""
Throttler - keyed single-flight gate.

Deduplicates concurrent creation attempts for the same key (function UID).
The first caller runs `fn(True)`; callers arriving while it is in flight share
its outcome. Callers arriving after a successful completion (within `expiry`)
run `fn(False)` and are expected to read the published result from a cache.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("common.throttler")


class Throttler:
    def __init__(self, expiry: float = 60.0):
        self.expiry = expiry
        self._inflight: Dict[str, asyncio.Future] = {}
        self._completed: Dict[str, float] = {}

    async def run_once(self, key: str, fn: Callable[[bool], Awaitable[Any]]) -> Any:
        inflight = self._inflight.get(key)
        if inflight is not None:
            logger.debug(f"Waiting for in-flight attempt: {key}")
            # shield: a cancelled waiter must not cancel the shared attempt
            return await asyncio.shield(inflight)

        completed_at = self._completed.get(key)
        if completed_at is not None:
            if time.monotonic() - completed_at < self.expiry:
                return await fn(False)
            del self._completed[key]

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await fn(True)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved; there may be no waiters.
            future.exception()
            raise
        else:
            future.set_result(result)
            self._completed[key] = time.monotonic()
            return result
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    def forget(self, key: str) -> None:
        """Drop the completion marker so the next call creates again."""
        self._completed.pop(key, None)

    def is_in_flight(self, key: str) -> bool:
        return key in self._inflight
