import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

import aiohttp
from pydantic import ValidationError

from .models import HostConfig, HostStatus, HostTelemetry
from .registry import NodeRegistry

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 5.0
DEFAULT_FETCH_TIMEOUT_SEC = 5.0

TickCallback = Callable[[list[HostStatus]], Awaitable[None] | None]


class NodeFetchError(Exception):
    """A collector could not be reached or returned something unusable."""


class Poller:
    """Polls every configured collector on a fixed period and records the outcome.

    Each tick fans out one request per node and waits for all of them before the
    next period starts, so two ticks never race for the same node. A failed node
    is simply tried again on the next tick.

    Args:
        registry: Where each node's status is written.
        nodes: The nodes to poll. Copied, so later changes to the list are ignored.
        interval_sec: Pause between the end of one tick and the start of the next.
        fetch_timeout_sec: Upper bound for a single node's request, independent of the interval.
        on_tick: Optional sync/async callback receiving the statuses of each completed tick.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        nodes: list[HostConfig],
        interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        fetch_timeout_sec: float = DEFAULT_FETCH_TIMEOUT_SEC,
        on_tick: TickCallback | None = None,
    ) -> None:
        self._registry = registry
        self._nodes = tuple(nodes)
        self._interval_sec = interval_sec
        self._fetch_timeout_sec = fetch_timeout_sec
        self._on_tick = on_tick
        self._timeout = aiohttp.ClientTimeout(total=fetch_timeout_sec)
        self._session: aiohttp.ClientSession | None = None

    async def run(self) -> None:
        """Poll forever. Cancel the task to stop."""
        logger.info(
            "Starting poller for %d node(s): interval %ss, fetch timeout %ss.",
            len(self._nodes),
            self._interval_sec,
            self._fetch_timeout_sec,
        )
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            self._session = session
            try:
                while True:
                    statuses = await self.tick()
                    await self._notify(statuses)
                    await asyncio.sleep(self._interval_sec)
            finally:
                self._session = None
                logger.info("Poller stopped.")

    async def tick(self) -> list[HostStatus]:
        """Poll every node once. Returns only after every node's fetch has resolved."""
        if self._session is None or self._session.closed:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._poll_all(session)
        return await self._poll_all(self._session)

    async def _poll_all(self, session: aiohttp.ClientSession) -> list[HostStatus]:
        if not self._nodes:
            logger.debug("No nodes configured, nothing to poll.")
            return []

        results = await asyncio.gather(
            *(self.poll_node(session, node) for node in self._nodes), return_exceptions=True
        )

        statuses = []
        for node, result in zip(self._nodes, results, strict=True):
            if isinstance(result, HostStatus):
                statuses.append(result)
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                # poll_node classifies its own failures, so this is a bug rather than a node problem
                logger.error("Unexpected result polling node %s: %r", node.name, result)
        online = sum(1 for s in statuses if s.data is not None)
        logger.debug("Tick complete: %d/%d node(s) online.", online, len(self._nodes))
        return statuses

    async def poll_node(self, session: aiohttp.ClientSession, node: HostConfig) -> HostStatus:
        """Fetch one node's telemetry and write the classified outcome to the registry."""
        try:
            telemetry = await self.fetch_telemetry(session, node)
        except NodeFetchError as e:
            logger.warning("Node %s is offline: %s", node.name, e)
            status = HostStatus.offline(node, str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected error polling node %s", node.name)
            status = HostStatus.offline(node, f"Unexpected error: {e!r}")
        else:
            status = HostStatus.online(node, telemetry)

        self._registry.upsert_status(node.name, status)
        return status

    async def fetch_telemetry(self, session: aiohttp.ClientSession, node: HostConfig) -> HostTelemetry:
        """GET the node's collector endpoint and decode the body.

        Raises:
            NodeFetchError: on transport failure, timeout, non-200 status or an undecodable body.
        """
        try:
            async with session.get(node.url, timeout=self._timeout) as response:
                if response.status != 200:
                    msg = f"HTTP error: {response.status}"
                    raise NodeFetchError(msg)
                body = await response.read()
        except TimeoutError as e:
            msg = f"Failed to connect: request timed out after {self._fetch_timeout_sec}s"
            raise NodeFetchError(msg) from e
        except aiohttp.ClientError as e:
            msg = f"Failed to connect: {str(e) or type(e).__name__}"
            raise NodeFetchError(msg) from e

        try:
            return HostTelemetry.model_validate_json(body)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"]) or "body"
            msg = f"Failed to parse response: {location}: {first['msg']}"
            raise NodeFetchError(msg) from e

    async def _notify(self, statuses: list[HostStatus]) -> None:
        if not self._on_tick:
            return
        try:
            res = self._on_tick(statuses)
            if inspect.isawaitable(res):
                await res
        except Exception:
            logger.exception("Tick callback failed.")
