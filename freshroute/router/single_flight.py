"""FRESHROUTE — In-process single-flight.

Coalesces concurrent calls for the same key so only the first caller runs
the work and the rest await its result. Scoped to one event loop in one
process; it does not coordinate across workers.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple

from freshroute.core.errors import UpstreamError
from freshroute.core.logging import get_logger

logger = get_logger("router.single_flight")


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: Dict[Hashable, asyncio.Future] = {}

    async def do(
        self, key: Hashable, fn: Callable[[], Awaitable[Any]]
    ) -> Tuple[Any, bool]:
        """Run ``fn`` once per key at a time.

        Returns ``(result, shared)`` where ``shared`` is True for callers
        that joined an in-flight call instead of running ``fn`` themselves.
        Exceptions from ``fn`` propagate to every caller. If the leader is
        cancelled, followers receive an UpstreamError instead.
        """
        existing = self._inflight.get(key)
        if existing is not None:
            logger.info(f"Joining in-flight call for {key}")
            return await asyncio.shield(existing), True

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            # Followers belong to other requests; fail them through the taxonomy
            future.set_exception(
                UpstreamError(f"In-flight fetch for {key} was cancelled", kind="transport")
            )
            future.exception()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a leader without followers does not warn
            future.exception()
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            self._inflight.pop(key, None)
