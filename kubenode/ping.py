"""Periodic health checks of a node provider.

The controller pings the provider at a fixed interval and keeps the latest
outcome available to other controllers. At most one ping is in flight at a
time: if the provider is stuck, later checks wait on the same ping instead of
stacking new ones up.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PingResult:
    """Outcome of a ping: when it started and the error it produced, if any.

    A ping that exceeds the configured timeout carries a ``TimeoutError``.
    """

    time: Optional[datetime] = None
    error: Optional[BaseException] = None


class NodePingController:
    """Pings a node provider periodically and publishes the latest result.

    ``node_provider.ping()`` may be a plain function or a coroutine function;
    an exception it raises marks the node as unhealthy.
    """

    def __init__(
        self,
        node_provider: Any,
        ping_interval: float,
        ping_timeout: Optional[float] = None,
    ) -> None:
        if ping_interval == 0:
            raise ValueError("Node ping interval is 0")
        if ping_timeout is not None and ping_timeout == 0:
            raise ValueError("Node ping timeout is 0")
        self.node_provider = node_provider
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._result: Optional[PingResult] = None
        self._ready = asyncio.Event()
        self._inflight: Optional[asyncio.Task] = None

    async def _ping(self) -> tuple[datetime, Optional[BaseException]]:
        started = datetime.now(timezone.utc)
        try:
            outcome = self.node_provider.ping()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as err:
            return started, err
        return started, None

    def _publish(self, result: PingResult) -> None:
        self._result = result
        self._ready.set()

    async def _check(self) -> None:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._ping())
        waiter = asyncio.shield(self._inflight)
        try:
            if self.ping_timeout is not None:
                started, error = await asyncio.wait_for(waiter, self.ping_timeout)
            else:
                started, error = await waiter
            result = PingResult(time=started, error=error)
        except asyncio.TimeoutError:
            result = PingResult(error=TimeoutError("context deadline exceeded"))
            _log.warning("Failed to ping node due to context cancellation: %s", result.error)
        except asyncio.CancelledError as err:
            self._publish(PingResult(error=err))
            raise
        self._publish(result)

    async def run(self) -> None:
        """Ping the provider until the task running this is cancelled."""
        try:
            await self._check()
            while True:
                await self._check()
                await asyncio.sleep(self.ping_interval)
        finally:
            if self._inflight is not None and not self._inflight.done():
                self._inflight.cancel()

    async def get_result(self) -> PingResult:
        """Return the latest ping result, waiting for the first one if needed."""
        await self._ready.wait()
        assert self._result is not None
        return self._result