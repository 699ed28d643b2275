"""Cluster-aware etcd client: endpoint discovery, member management and health queries."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from .health import (
    DEFRAG_DIAL_TIMEOUT,
    ClientOptions,
    MemberHealth,
    filter_voting_members,
    get_member_health,
    get_unhealthy_member_names,
    get_unstarted_member_names,
    new_client_options,
    with_dial_timeout,
)
from .pool import EtcdClientPool, new_default_pool
from .resources import (
    ETCD_MEMBER_STATUS_AVAILABLE,
    ETCD_MEMBER_STATUS_NOT_STARTED,
    ETCD_MEMBER_STATUS_UNHEALTHY,
    ETCD_MEMBER_STATUS_UNKNOWN,
    NODE_INTERNAL_IP,
    TARGET_NAMESPACE,
    ConfigMap,
    EventRecorder,
    Member,
    Network,
    Node,
    NotFoundError,
    join_host_port,
)

logger = logging.getLogger(__name__)

BOOTSTRAP_IP_ANNOTATION_KEY = "alpha.installer.openshift.io/etcd-bootstrap"
ETCD_ENDPOINTS_CONFIGMAP = "etcd-endpoints"
MASTER_NODE_LABEL = "node-role.kubernetes.io/master"
ETCD_CLIENT_PORT = "2379"

# connect(endpoints, options) opens a raw client exposing ``endpoints``,
# member_list(), member_add_as_learner(peer_urls), member_promote(id),
# member_update(id, peer_urls), member_remove(id), status(url),
# get(key, serializable) -> raft term or None, defragment(url) and close().
Connect = Callable[[list, ClientOptions], Any]
ResolveInternalIP = Callable[[Network, Node], str]


class LearnerNotReadyError(RuntimeError):
    """The learner's log has not yet caught up with the leader."""

    MESSAGE = "etcdserver: can only promote a learner member which is in sync with leader"

    def __init__(self, message: str = MESSAGE) -> None:
        super().__init__(message)


def _first_internal_ip(network: Network, node: Node) -> str:
    for address_type, address in node.addresses:
        if address_type == NODE_INTERNAL_IP:
            return address
    raise LookupError(f"node {node.name} has no internal IP address")


def _https_endpoint(host: str) -> str:
    return f"https://{join_host_port(host, ETCD_CLIENT_PORT)}"


def endpoints(store, resolve_internal_ip: ResolveInternalIP | None = None) -> list[str]:
    """Return the sorted etcd client URLs of the voting members.

    Reads the etcd-endpoints config map and falls back to the control plane
    nodes' internal addresses when it is missing.
    """
    resolve = resolve_internal_ip or _first_internal_ip
    urls: list[str] = []
    try:
        configmap = store.get(ConfigMap, ETCD_ENDPOINTS_CONFIGMAP, TARGET_NAMESPACE)
    except NotFoundError as exc:
        logger.error(
            "failed to list endpoints from %s/%s, falling back to listing nodes: %s",
            TARGET_NAMESPACE,
            ETCD_ENDPOINTS_CONFIGMAP,
            exc,
        )
        try:
            network = store.get(Network, "cluster")
        except NotFoundError as err:
            raise RuntimeError(f"failed to list cluster network: {err}") from err
        for node in store.list(Node, {MASTER_NODE_LABEL: ""}):
            try:
                internal_ip = resolve(network, node)
            except Exception as err:
                raise RuntimeError(f"failed to get internal IP for node: {err}") from err
            urls.append(_https_endpoint(internal_ip))
    else:
        bootstrap_ip = configmap.annotations.get(BOOTSTRAP_IP_ANNOTATION_KEY, "")
        if bootstrap_ip:
            urls.append(_https_endpoint(bootstrap_ip))
        urls.extend(_https_endpoint(ip) for ip in configmap.data.values())

    if not urls:
        raise RuntimeError("endpoints func found no etcd endpoints")
    return sorted(urls)


def _open_client(connect: Connect, endpoint_list: list[str], skip_connection_test: bool, *opts) -> Any:
    """Open a client; unless skipped, verify it by listing members. The caller closes it."""
    options = new_client_options(*opts)
    try:
        client = connect(list(endpoint_list), options)
    except Exception as exc:
        raise RuntimeError(f"failed to make etcd client for endpoints {endpoint_list}: {exc}") from exc

    # learner members do not support member list
    if skip_connection_test:
        return client

    try:
        client.member_list()
    except ConnectionAbortedError as exc:
        _close_quietly(client)
        raise RuntimeError(f"client connection was canceled: {exc}") from exc
    except Exception as exc:
        _close_quietly(client)
        raise RuntimeError(f"error during client connection check: {exc}") from exc
    return client


def _close_quietly(client: Any) -> None:
    try:
        client.close()
    except Exception as exc:
        logger.error("error closing etcd client: %s", exc)


class EtcdClientGetter:
    """Runs member operations through pooled clients and records events."""

    def __init__(self, pool: EtcdClientPool, recorder: EventRecorder, connect: Connect) -> None:
        self._pool = pool
        self._recorder = recorder
        self._connect = connect

    @contextmanager
    def _client(self) -> Iterator[Any]:
        client = self._pool.get()
        try:
            yield client
        finally:
            self._pool.put_back(client)

    def _check_member(self, member: Member) -> int | None:
        # learners only support serializable reads and cannot list members
        try:
            client = _open_client(self._connect, [member.client_urls[0]], member.is_learner)
        except Exception as exc:
            raise RuntimeError(f"create client failure: {exc}") from exc
        try:
            return client.get("health", serializable=member.is_learner)
        finally:
            try:
                client.close()
            except Exception as exc:
                logger.error("error closing etcd client for getMemberHealth: %s", exc)

    def _health_of(self, members: list[Member]) -> MemberHealth:
        return get_member_health(members, self._check_member)

    def member_add_as_learner(self, peer_url: str) -> None:
        with self._client() as client:
            for member in client.member_list():
                if peer_url in member.peer_urls:
                    self._recorder.warning(
                        "MemberAlreadyAdded",
                        f"member with peerURL {peer_url} already part of the cluster",
                    )
                    return
            try:
                client.member_add_as_learner([peer_url])
            except Exception as exc:
                self._recorder.warning(
                    "MemberAddAsLearner", f"failed to add new member {peer_url}: {exc}"
                )
                raise
            self._recorder.event("MemberAddAsLearner", f"successfully added new member {peer_url}")

    def member_promote(self, member: Member) -> None:
        with self._client() as client:
            try:
                client.member_promote(member.id)
            except Exception as exc:
                # a learner not yet in sync is common, so no event for it
                if not isinstance(exc, LearnerNotReadyError) and str(exc) != LearnerNotReadyError.MESSAGE:
                    self._recorder.warning(
                        "MemberPromote",
                        f"failed to promote learner member {member.peer_urls[0]}: {exc}",
                    )
                raise
            self._recorder.event(
                "MemberPromote", f"successfully promoted learner member {member.peer_urls[0]}"
            )

    def member_update_peer_url(self, member_id: int, peer_urls: list[str]) -> None:
        peers = ",".join(peer_urls)
        try:
            members = self.member_list()
        except Exception:
            self._recorder.event("MemberUpdate", f"updating member {member_id} with peers {peers}")
        else:
            name = next((m.name for m in members if m.id == member_id), str(member_id))
            self._recorder.event("MemberUpdate", f'updating member "{name}" with peers {peers}')

        with self._client() as client:
            client.member_update(member_id, list(peer_urls))

    def member_remove(self, member_id: int) -> None:
        with self._client() as client:
            client.member_remove(member_id)
        self._recorder.event("MemberRemove", f"removed member with ID: {member_id}")

    def member_list(self) -> list[Member]:
        with self._client() as client:
            return list(client.member_list())

    def voting_member_list(self) -> list[Member]:
        return filter_voting_members(self.member_list())

    def status(self, client_url: str) -> Any:
        """Endpoint status of the member at ``client_url``."""
        with self._client() as client:
            return client.status(client_url)

    def get_member(self, name: str) -> Member:
        for member in self.member_list():
            if member.name == name:
                return member
        raise NotFoundError("etcdmembers", name, group="etcd.operator.openshift.io")

    def unhealthy_members(self) -> list[Member]:
        with self._client() as client:
            try:
                members = list(client.member_list())
            except Exception as exc:
                raise RuntimeError(f"could not get member list {exc}") from exc

        health = self._health_of(members)
        unstarted = get_unstarted_member_names(health)
        if unstarted:
            self._recorder.warning("UnstartedEtcdMember", f"unstarted members: {','.join(unstarted)}")
        unhealthy = get_unhealthy_member_names(health)
        if unhealthy:
            self._recorder.warning("UnhealthyEtcdMember", f"unhealthy members: {','.join(unhealthy)}")
        return health.unhealthy_members()

    def unhealthy_voting_members(self) -> list[Member]:
        return filter_voting_members(self.unhealthy_members())

    def healthy_members(self) -> list[Member]:
        """Healthy members; raises when there are none."""
        with self._client() as client:
            members = list(client.member_list())
        healthy = self._health_of(members).healthy_members()
        if not healthy:
            raise RuntimeError("no healthy etcd members found")
        return healthy

    def healthy_voting_members(self) -> list[Member]:
        return filter_voting_members(self.healthy_members())

    def member_health(self) -> MemberHealth:
        with self._client() as client:
            members = list(client.member_list())
        return self._health_of(members)

    def is_member_healthy(self, member: Member | None) -> bool:
        if member is None:
            raise ValueError("member can not be nil")
        health = self._health_of([member])
        if not health:
            raise RuntimeError("member health check failed")
        return health[0].healthy

    def member_status(self, member: Member) -> str:
        try:
            client = self._pool.get()
        except Exception as exc:
            logger.error("error getting etcd client: %r", exc)
            return ETCD_MEMBER_STATUS_UNKNOWN
        try:
            if not member.client_urls and not member.name:
                return ETCD_MEMBER_STATUS_NOT_STARTED
            try:
                client.status(member.client_urls[0])
            except Exception as exc:
                logger.error("error getting etcd member %s status: %r", member.name, exc)
                return ETCD_MEMBER_STATUS_UNHEALTHY
            return ETCD_MEMBER_STATUS_AVAILABLE
        finally:
            self._pool.put_back(client)

    def defragment(self, member: Member) -> Any:
        """Defragment one member through a fresh, uncached client."""
        url = member.client_urls[0]
        try:
            client = _open_client(self._connect, [url], False, with_dial_timeout(DEFRAG_DIAL_TIMEOUT))
        except Exception as exc:
            raise RuntimeError(f"failed to get etcd client for defragment: {exc}") from exc
        try:
            return client.defragment(url)
        except Exception as exc:
            raise RuntimeError(f"error while running defragment: {exc}") from exc
        finally:
            try:
                client.close()
            except Exception as exc:
                logger.error("error closing etcd client for defrag: %s", exc)


def new_etcd_client(
    store,
    recorder: EventRecorder,
    connect: Connect,
    resolve_internal_ip: ResolveInternalIP | None = None,
) -> EtcdClientGetter:
    """Build a client getter whose pooled clients follow the discovered endpoints."""

    def endpoint_func() -> list[str]:
        return endpoints(store, resolve_internal_ip)

    def new_func() -> Any:
        try:
            endpoint_list = endpoint_func()
        except Exception as exc:
            raise RuntimeError(f"error retrieving endpoints for new cached client: {exc}") from exc
        return _open_client(connect, endpoint_list, True)

    pool = new_default_pool(new_func, endpoint_func)
    return EtcdClientGetter(pool, recorder, connect)