"""A bounded pool of cached etcd clients with health checking and endpoint refresh."""

from __future__ import annotations

import logging
import queue
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)

RETRIES = 3
# linear back-off between attempts: LINEAR_RETRY_BASE_SLEEP * attempt
LINEAR_RETRY_BASE_SLEEP = 2.0
# how many unused clients are kept around for reuse
MAX_NUM_CACHED_CLIENTS = 5
# how many clients may be open at once; protects etcd from too many connections
MAX_NUM_OPEN_CLIENTS = 10
MAX_ACQUIRE_TIME = 5.0


class PoolError(RuntimeError):
    """A client could not be handed out by the pool."""


class EtcdClientPool:
    """Caches clients and hands each one out to a single caller at a time.

    Clients are expected to expose a mutable ``endpoints`` list. ``new_func``
    creates a client, ``endpoints_func`` returns the desired endpoints,
    ``health_func`` raises if a client is unhealthy and ``close_func`` closes one.
    """

    def __init__(
        self,
        new_func: Callable[[], Any],
        endpoints_func: Callable[[], list[str]],
        health_func: Callable[[Any], None],
        close_func: Callable[[Any], None],
        acquire_timeout: float = MAX_ACQUIRE_TIME,
        retry_sleep: float = LINEAR_RETRY_BASE_SLEEP,
    ) -> None:
        self._new_func = new_func
        self._endpoints_func = endpoints_func
        self._health_func = health_func
        self._close_func = close_func
        self._acquire_timeout = acquire_timeout
        self._retry_sleep = retry_sleep
        self._pool: queue.Queue[Any] = queue.Queue(maxsize=MAX_NUM_CACHED_CLIENTS)
        self._open_slots: queue.Queue[int] = queue.Queue(maxsize=MAX_NUM_OPEN_CLIENTS)
        for slot in range(MAX_NUM_OPEN_CLIENTS):
            self._open_slots.put_nowait(slot)

    def open_slots(self) -> int:
        """Number of clients that may still be created."""
        return self._open_slots.qsize()

    def _release_slot(self) -> None:
        try:
            self._open_slots.put_nowait(1)
        except queue.Full:
            pass

    def get(self) -> Any:
        """Return a healthy client for exclusive use; give it back with put_back.

        Blocks up to the acquire timeout when too many clients are open.
        """
        try:
            desired = sorted(self._endpoints_func())
        except Exception as exc:
            raise PoolError(f"getting cache client could not retrieve endpoints: {exc}") from exc

        for attempt in range(RETRIES):
            if attempt:
                time.sleep(self._retry_sleep * attempt)

            try:
                client = self._pool.get_nowait()
            except queue.Empty:
                try:
                    self._open_slots.get(timeout=self._acquire_timeout)
                except queue.Empty:
                    raise PoolError(
                        "too many active cache clients, rejecting to create new one"
                    ) from None
                logger.info("creating a new cached client")
                try:
                    client = self._new_func()
                except Exception as exc:
                    logger.warning(
                        "could not create a new cached client after %d tries, trying again. Err: %s",
                        attempt,
                        exc,
                    )
                    self._release_slot()
                    continue

            current = sorted(client.endpoints)
            if current != desired:
                logger.warning(
                    "cached client detected change in endpoints %s vs. %s", current, desired
                )
                client.endpoints = list(desired)

            try:
                self._health_func(client)
            except Exception as exc:
                logger.warning(
                    "cached client considered unhealthy after %d tries, trying again. Err: %s",
                    attempt,
                    exc,
                )
                self._release_slot()
                try:
                    self._close_func(client)
                except Exception as close_exc:
                    logger.error("could not close unhealthy cache client: %s", close_exc)
                continue

            return client

        raise PoolError(f"giving up getting a cached client after {RETRIES} tries")

    def put_back(self, client: Any) -> None:
        """Make a client available again, closing it if the pool is full."""
        if client is None:
            return
        try:
            self._pool.put_nowait(client)
        except queue.Full:
            self._release_slot()
            try:
                self._close_func(client)
            except Exception as exc:
                logger.error(
                    "failed to close extra etcd client which is not being re-added in the client pool: %s",
                    exc,
                )


def new_default_pool(
    new_func: Callable[[], Any], endpoints_func: Callable[[], list[str]]
) -> EtcdClientPool:
    """Pool whose health check lists members and whose close calls ``close()``."""

    def health_func(client: Any) -> None:
        if client is None:
            raise PoolError("cached client was nil")
        try:
            client.member_list()
        except ConnectionAbortedError as exc:
            raise PoolError(f"cache client health connection was canceled: {exc}") from exc
        except Exception as exc:
            raise PoolError(
                f"error during cache client health connection check: {exc}"
            ) from exc

    def close_func(client: Any) -> None:
        if client is None:
            return
        logger.info("closing cached client")
        client.close()

    return EtcdClientPool(new_func, endpoints_func, health_func, close_func)