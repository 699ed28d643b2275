"""Controller that keeps the etcd env vars current and notifies listeners."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .envvars import EnvVarContext, Enqueueable, get_etcd_env_vars
from .resources import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    EventRecorder,
    Network,
    Node,
    ObjectStore,
    OperatorCondition,
    StaticPodOperatorClient,
)

logger = logging.getLogger(__name__)

WORK_QUEUE_KEY = "key"
RESYNC_INTERVAL = 60.0
_POLL_INTERVAL = 0.1
_RETRY_BASE_DELAY = 0.005
_RETRY_MAX_DELAY = 1000.0


class EnvVarController:
    """Recomputes the etcd env vars and records the EnvVarControllerDegraded condition."""

    def __init__(
        self,
        target_image_pull_spec: str,
        operator_client: StaticPodOperatorClient,
        store: ObjectStore,
        recorder: EventRecorder,
        resolve_internal_ip: Callable[[Network, Node], str] | None = None,
    ) -> None:
        self._target_image_pull_spec = target_image_pull_spec
        self._operator_client = operator_client
        self._store = store
        self._recorder = recorder
        self._resolve_internal_ip = resolve_internal_ip
        self._env_vars: dict[str, str] = {}
        self._lock = threading.Lock()
        self._listeners: list[Enqueueable] = []
        self._wake = threading.Event()

    def enqueue(self) -> None:
        """Ask the running controller to sync soon."""
        self._wake.set()

    def add_listener(self, listener: Enqueueable) -> None:
        self._listeners.append(listener)

    def get_env_vars(self) -> dict[str, str]:
        """A copy of the current env vars."""
        with self._lock:
            return dict(self._env_vars)

    def check_env_vars(self) -> None:
        spec, status = self._operator_client.get_static_pod_operator_state()
        current = get_etcd_env_vars(
            EnvVarContext(
                spec=spec,
                status=status,
                store=self._store,
                target_image_pull_spec=self._target_image_pull_spec,
                resolve_internal_ip=self._resolve_internal_ip,
            )
        )
        with self._lock:
            if current != self._env_vars:
                self._env_vars = current
        # outside the lock: listeners may call get_env_vars synchronously
        for listener in list(self._listeners):
            listener.enqueue()

    def sync(self) -> None:
        try:
            self.check_env_vars()
        except Exception as exc:
            try:
                self._operator_client.update_condition(
                    OperatorCondition(
                        type="EnvVarControllerDegraded",
                        status=CONDITION_TRUE,
                        reason="Error",
                        message=str(exc),
                    )
                )
            except Exception as update_exc:
                self._recorder.warning("EnvVarControllerUpdatingStatus", str(update_exc))
            raise
        self._operator_client.update_condition(
            OperatorCondition(type="EnvVarControllerDegraded", status=CONDITION_FALSE, reason="AsExpected")
        )

    def run(self, stop_event: threading.Event) -> None:
        """Sync at start, on enqueue and every minute until ``stop_event`` is set."""
        logger.info("Starting EnvVarController")
        pending = True
        failures = 0
        retry_at: float | None = None
        next_resync = time.monotonic() + RESYNC_INTERVAL
        try:
            while not stop_event.is_set():
                now = time.monotonic()
                if self._wake.is_set():
                    self._wake.clear()
                    pending = True
                if now >= next_resync:
                    pending = True
                    next_resync = now + RESYNC_INTERVAL
                if retry_at is not None and now >= retry_at:
                    pending = True
                    retry_at = None
                if pending:
                    pending = False
                    try:
                        self.sync()
                    except Exception as exc:
                        logger.error("%s failed with : %s", WORK_QUEUE_KEY, exc)
                        delay = min(_RETRY_BASE_DELAY * 2**failures, _RETRY_MAX_DELAY)
                        failures += 1
                        retry_at = time.monotonic() + delay
                    else:
                        failures = 0
                        retry_at = None
                    continue
                self._wake.wait(_POLL_INTERVAL)
        finally:
            logger.info("Shutting down EnvVarController")