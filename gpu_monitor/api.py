import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException, Request
from pydantic import TypeAdapter
from sse_starlette.sse import EventSourceResponse

from . import models
from .registry import NodeNotFoundError, NodeRegistry

logger = logging.getLogger(__name__)
router = APIRouter()

_status_list_adapter = TypeAdapter(list[models.HostStatus])


def render_statuses(statuses: list[models.HostStatus]) -> str:
    return _status_list_adapter.dump_json(statuses, exclude_none=True).decode()


class StatusStream:
    """Fans the node list out to connected SSE clients after every tick.

    Messages are always rendered from the registry at send time, never cached.
    """

    def __init__(self, registry: NodeRegistry):
        self._registry = registry
        self.connected_clients: set[asyncio.Queue] = set()

    def add_client(self, queue: asyncio.Queue):
        self.connected_clients.add(queue)
        logger.info("Client connected to SSE. Total clients: %d", len(self.connected_clients))

    def remove_client(self, queue: asyncio.Queue):
        if queue in self.connected_clients:
            self.connected_clients.remove(queue)
            logger.info("Client disconnected from SSE. Total clients: %d", len(self.connected_clients))

    def current_message(self) -> str:
        return render_statuses(self._registry.get_all())

    async def publish(self, _statuses: list[models.HostStatus] | None = None):
        """Push the registry's current contents; the tick's own result list is ignored."""
        message = self.current_message()
        # Iterate over a copy of the set in case it's modified during iteration
        for client_queue in list(self.connected_clients):
            await client_queue.put(message)


def get_registry(request: Request) -> NodeRegistry:
    return request.app.state.registry


@router.get("/api/nodes", response_model=list[models.HostStatus], response_model_exclude_none=True)
async def list_nodes(request: Request) -> list[models.HostStatus]:
    """Current status of every configured node."""
    return get_registry(request).get_all()


@router.get("/api/nodes/{name}", response_model=models.HostStatus, response_model_exclude_none=True)
async def get_node(name: str, request: Request) -> models.HostStatus:
    """Current status of a single node."""
    try:
        return get_registry(request).get(name)
    except NodeNotFoundError:
        raise HTTPException(status_code=404, detail="Node not found") from None


@router.get("/api/status_sse")
async def get_status_sse(request: Request) -> EventSourceResponse:
    """SSE endpoint streaming the node list after every poll."""
    stream: StatusStream = request.app.state.status_stream
    client_queue: asyncio.Queue = asyncio.Queue()
    stream.add_client(client_queue)

    # Send the current state first so the client does not wait a whole tick
    await client_queue.put(stream.current_message())

    async def event_publisher() -> AsyncGenerator[dict, None]:
        try:
            while True:
                message = await client_queue.get()
                client_queue.task_done()
                yield {"event": "nodes", "data": message}
        except asyncio.CancelledError:
            logger.info("Client %s cancelled.", id(client_queue))
            raise
        finally:
            stream.remove_client(client_queue)

    return EventSourceResponse(event_publisher(), ping=15)
