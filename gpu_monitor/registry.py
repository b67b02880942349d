import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .models import HostConfig, HostStatus

logger = logging.getLogger(__name__)


class NodeNotFoundError(KeyError):
    """Raised when a node name is not in the registry."""


class ReadWriteLock:
    """Shared/exclusive lock: any number of readers, or a single writer.

    Writers that are waiting block new readers, so a steady stream of reads cannot
    starve the poller.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class NodeRegistry:
    """Holds the latest HostStatus of every configured node.

    Records are frozen and only ever replaced whole. Readers get a fresh list of
    the records themselves; the nested gpu and process lists are shared with the
    registry and must be treated as read-only.
    """

    def __init__(self, nodes: list[HostConfig]):
        self._lock = ReadWriteLock()
        self._statuses: dict[str, HostStatus] = {node.name: HostStatus.unknown(node) for node in nodes}

    def upsert_status(self, name: str, status: HostStatus) -> None:
        with self._lock.write_locked():
            previous = self._statuses.get(name)
            self._statuses[name] = status
        if previous is None or previous.status != status.status:
            logger.info("Node %s is now %s.", name, status.status.value)

    def get_all(self) -> list[HostStatus]:
        with self._lock.read_locked():
            return list(self._statuses.values())

    def get(self, name: str) -> HostStatus:
        with self._lock.read_locked():
            status = self._statuses.get(name)
        if status is None:
            raise NodeNotFoundError(name)
        return status

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._statuses)
