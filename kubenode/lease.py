"""Node lease maintenance.

While the node is healthy, the lease controller keeps a coordination lease in
the ``kube-node-lease`` namespace renewed. Leases are plain dictionaries in
the API server's JSON shape.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from kubenode.errors import is_conflict, is_not_found
from kubenode.ping import PingResult

_log = logging.getLogger(__name__)

DEFAULT_RENEW_INTERVAL_FRACTION = 0.25
MAX_UPDATE_RETRIES = 5
MAX_BACKOFF = 7.0
DEFAULT_LEASE_DURATION = 40
NAMESPACE_NODE_LEASE = "kube-node-lease"

_INITIAL_BACKOFF = 0.1


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _format_duration(seconds: float) -> str:
    return f"{seconds:g}s"


def _format_micro_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class RealClock:
    """Wall clock used outside tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class NodeNotReadyError(Exception):
    """The node is not ready because its ping is failing."""

    def __init__(self, ping_result: PingResult) -> None:
        super().__init__(f"New node not ready error: {ping_result.error}")
        self.ping_result = ping_result
        self.__cause__ = ping_result.error


class LeaseController:
    """Keeps the node's lease renewed as long as the node is healthy.

    ``client`` offers ``get(name)``, ``create(lease)`` and ``update(lease)``
    (plain or coroutine functions) raising NotFoundError / ConflictError.
    ``get_ping_result()`` returns the latest :class:`PingResult` and
    ``get_server_node()`` a copy of the node as known to the API server.
    """

    def __init__(
        self,
        clock: Any,
        client: Any,
        lease_duration_seconds: int,
        renew_interval: float,
        get_ping_result: Callable[[], Awaitable[PingResult]],
        get_server_node: Callable[[], Any],
    ) -> None:
        if lease_duration_seconds <= 0:
            raise ValueError(
                f"Lease duration seconds {lease_duration_seconds} is invalid, it must be > 0"
            )
        if renew_interval == 0:
            raise ValueError(
                f"Lease renew interval {_format_duration(renew_interval)} is invalid, "
                "it must be > 0"
            )
        if lease_duration_seconds <= renew_interval:
            raise ValueError(
                f"Lease renew interval {_format_duration(renew_interval)} is invalid, "
                f"it must be less than lease duration seconds {lease_duration_seconds}"
            )
        self._clock = clock
        self._client = client
        self.lease_duration_seconds = lease_duration_seconds
        self.renew_interval = renew_interval
        self._get_ping_result = get_ping_result
        self._get_server_node = get_server_node
        self.latest_lease: Optional[dict] = None

    async def run(self) -> None:
        """Renew the lease every renew interval until cancelled."""
        await self.sync()
        while True:
            await self.sync()
            await asyncio.sleep(self.renew_interval)

    async def sync(self) -> None:
        """Renew (or create) the lease once; failures are logged, not raised."""
        try:
            ping = await _resolve(self._get_ping_result())
        except Exception as err:
            _log.error("Could not get ping status: %s", err)
            return
        if ping.error is not None:
            _log.error("Ping result is not clean, not updating lease: %s", ping.error)
            return

        try:
            node = await _resolve(self._get_server_node())
        except Exception as err:
            _log.error("Could not get server node: %s", err)
            return
        if node is None:
            _log.error("servernode is null")
            return

        if self.latest_lease is not None:
            # Optimistically assume nobody else changed the lease since our
            # last update; this saves a GET on every renewal.
            try:
                await self._retry_update_lease(node, self.new_lease(node, self.latest_lease))
                return
            except Exception as err:
                _log.info("failed to update lease using latest lease, fallback to ensure lease: %s", err)

        lease, created = await self._backoff_ensure_lease(node)
        self.latest_lease = lease
        if not created and lease is not None:
            try:
                await self._retry_update_lease(node, lease)
            except Exception as err:
                _log.error("%s; will retry after %s", err, _format_duration(self.renew_interval))

    async def _backoff_ensure_lease(self, node: dict) -> tuple[Optional[dict], bool]:
        sleep = _INITIAL_BACKOFF
        while True:
            try:
                return await self._ensure_lease(node)
            except Exception as err:
                sleep = min(2 * sleep, MAX_BACKOFF)
                _log.error("failed to ensure node lease exists, will retry in %s: %s",
                           _format_duration(sleep), err)
                await self._clock.sleep(sleep)

    async def _ensure_lease(self, node: dict) -> tuple[Optional[dict], bool]:
        name = node["metadata"]["name"]
        try:
            lease = await _resolve(self._client.get(name))
        except Exception as err:
            if not is_not_found(err):
                _log.error("Unexpected error getting lease: %s", err)
                raise
            to_create = self.new_lease(node, None)
            if not to_create["metadata"].get("ownerReferences"):
                # A lease must always carry owner references; try next time.
                return None, False
            created = await _resolve(self._client.create(to_create))
            _log.debug("Successfully created lease")
            return created, True
        _log.debug("Successfully recovered existing lease")
        return lease, False

    async def _retry_update_lease(self, node: dict, base: Optional[dict]) -> None:
        for attempt in range(MAX_UPDATE_RETRIES):
            try:
                lease = await _resolve(self._client.update(self.new_lease(node, base)))
            except Exception as err:
                _log.error("failed to update node lease: %s", err)
                if isinstance(err, (TimeoutError, asyncio.TimeoutError)):
                    raise RuntimeError(
                        f"failed after {MAX_UPDATE_RETRIES} attempts to update node lease: {err}"
                    ) from err
                if is_conflict(err):
                    base, _ = await self._backoff_ensure_lease(node)
                continue
            _log.debug("Successfully updated lease after %d retries", attempt)
            self.latest_lease = lease
            return
        raise RuntimeError(f"failed after {MAX_UPDATE_RETRIES} attempts to update node lease")

    def new_lease(self, node: dict, base: Optional[dict]) -> dict:
        """Build a fresh lease for ``node``, or a renewed copy of ``base``."""
        metadata = node.get("metadata", {})
        name = metadata.get("name", "")
        if base is None:
            lease: dict = {
                "metadata": {"name": name, "namespace": NAMESPACE_NODE_LEASE},
                "spec": {
                    "holderIdentity": name,
                    "leaseDurationSeconds": self.lease_duration_seconds,
                },
            }
        else:
            lease = copy.deepcopy(base)
            lease.setdefault("metadata", {})
            lease.setdefault("spec", {})
        lease["spec"]["renewTime"] = _format_micro_time(self._clock.now())

        # The owner reference needs the node's UID, which may not be known on
        # the first attempts; keep trying on every renewal until it is set.
        if not lease["metadata"].get("ownerReferences"):
            lease["metadata"]["ownerReferences"] = [
                {
                    "apiVersion": "v1",
                    "kind": "Node",
                    "name": name,
                    "uid": metadata.get("uid", ""),
                }
            ]
        _log.debug("Generated lease: %s", lease)
        return lease