"""Object model shared by the package: etcd members and the cluster resources the operator reads."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Iterable, Iterator, Mapping

TARGET_NAMESPACE = "openshift-etcd"

ETCD_MEMBER_STATUS_AVAILABLE = "EtcdMemberAvailable"
ETCD_MEMBER_STATUS_NOT_STARTED = "EtcdMemberNotStarted"
ETCD_MEMBER_STATUS_UNHEALTHY = "EtcdMemberUnhealthy"
ETCD_MEMBER_STATUS_UNKNOWN = "EtcdMemberUnknown"

NODE_INTERNAL_IP = "InternalIP"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


def join_host_port(host: str, port: int | str) -> str:
    """Combine host and port into ``host:port``, bracketing IPv6 hosts."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class Member:
    """An etcd cluster member as reported by the member list API."""

    name: str = ""
    id: int = 0
    peer_urls: list[str] = field(default_factory=list)
    client_urls: list[str] = field(default_factory=list)
    is_learner: bool = False


@dataclass
class StatusResponse:
    """Endpoint status of a single etcd member."""

    member_id: int = 0
    leader: int = 0
    raft_term: int = 0
    db_size: int = 0
    db_size_in_use: int = 0
    version: str = ""


class NotFoundError(LookupError):
    """A named object does not exist."""

    def __init__(self, resource: str, name: str, group: str = "") -> None:
        self.resource = resource
        self.group = group
        self.name = name
        qualified = f"{resource}.{group}" if group else resource
        super().__init__(f'{qualified} "{name}" not found')


@dataclass
class _Object:
    RESOURCE: ClassVar[str] = "objects"

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class ConfigMap(_Object):
    RESOURCE: ClassVar[str] = "configmaps"

    data: dict[str, str] = field(default_factory=dict)


@dataclass
class Node(_Object):
    RESOURCE: ClassVar[str] = "nodes"

    # (address type, address) pairs, e.g. ("InternalIP", "10.0.0.1")
    addresses: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class Namespace(_Object):
    RESOURCE: ClassVar[str] = "namespaces"


@dataclass
class Network(_Object):
    RESOURCE: ClassVar[str] = "networks"

    service_network: list[str] = field(default_factory=list)
    cluster_network: list[str] = field(default_factory=list)


@dataclass
class Infrastructure(_Object):
    RESOURCE: ClassVar[str] = "infrastructures"

    control_plane_topology: str = ""
    platform: str | None = None
    ibm_cloud_provider_type: str = ""


@dataclass
class Machine(_Object):
    RESOURCE: ClassVar[str] = "machines"

    phase: str | None = None
    addresses: list[tuple[str, str]] = field(default_factory=list)
    # (hook name, hook owner) pairs of the pre-drain lifecycle hooks
    pre_drain_hooks: list[tuple[str, str]] = field(default_factory=list)
    deletion_timestamp: datetime | None = None


@dataclass
class NodeStatus:
    node_name: str
    current_revision: int = 0


@dataclass
class OperatorCondition:
    type: str
    status: str
    reason: str = ""
    message: str = ""


@dataclass
class StaticPodOperatorSpec:
    observed_config: bytes | str | None = None
    unsupported_config_overrides: bytes | str | None = None
    management_state: str = "Managed"


@dataclass
class StaticPodOperatorStatus:
    latest_available_revision: int = 0
    node_statuses: list[NodeStatus] = field(default_factory=list)
    conditions: list[OperatorCondition] = field(default_factory=list)


class StaticPodOperatorClient:
    """In-memory holder of the static pod operator's spec and status."""

    def __init__(
        self,
        spec: StaticPodOperatorSpec | None = None,
        status: StaticPodOperatorStatus | None = None,
    ) -> None:
        self.spec = spec if spec is not None else StaticPodOperatorSpec()
        self.status = status if status is not None else StaticPodOperatorStatus()
        self._lock = threading.Lock()

    def get_static_pod_operator_state(
        self,
    ) -> tuple[StaticPodOperatorSpec, StaticPodOperatorStatus]:
        """Return copies of the current spec and status."""
        with self._lock:
            return copy.deepcopy(self.spec), copy.deepcopy(self.status)

    def update_condition(self, condition: OperatorCondition) -> StaticPodOperatorStatus:
        """Set a condition, replacing any existing one of the same type."""
        with self._lock:
            conditions = [c for c in self.status.conditions if c.type != condition.type]
            conditions.append(copy.copy(condition))
            self.status.conditions = conditions
            return copy.deepcopy(self.status)


class EventRecorder:
    """Collects emitted events as (type, reason, message) tuples."""

    NORMAL = "Normal"
    WARNING = "Warning"

    def __init__(self, component: str = "") -> None:
        self.component = component
        self.events: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def event(self, reason: str, message: str) -> None:
        with self._lock:
            self.events.append((self.NORMAL, reason, message))

    def warning(self, reason: str, message: str) -> None:
        with self._lock:
            self.events.append((self.WARNING, reason, message))


class ObjectStore:
    """A keyed cache of cluster objects, looked up by kind, namespace and name."""

    def __init__(self, objects: Iterable[_Object] = ()) -> None:
        self._objects: dict[tuple[type, str, str], _Object] = {}
        self._lock = threading.RLock()
        for obj in objects:
            self.add(obj)

    def add(self, obj: _Object) -> None:
        """Insert or replace an object."""
        with self._lock:
            self._objects[(type(obj), obj.namespace, obj.name)] = obj

    def get(self, kind: type, name: str, namespace: str = "") -> _Object:
        """Return the object, raising NotFoundError when absent."""
        with self._lock:
            try:
                return self._objects[(kind, namespace, name)]
            except KeyError:
                raise NotFoundError(getattr(kind, "RESOURCE", kind.__name__.lower()), name) from None

    def list(self, kind: type, labels: Mapping[str, str] | None = None) -> list:
        """Return objects of the kind whose labels include every given label."""
        selector = dict(labels or {})
        with self._lock:
            matches = [
                obj
                for (obj_kind, _, _), obj in self._objects.items()
                if obj_kind is kind
                and all(obj.labels.get(key) == value for key, value in selector.items())
            ]
        return sorted(matches, key=lambda o: (o.namespace, o.name))

    def __iter__(self) -> Iterator[_Object]:
        with self._lock:
            return iter(list(self._objects.values()))