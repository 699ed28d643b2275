"""Health checking of etcd members, quorum arithmetic and client options."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator
from urllib.parse import urlsplit

from .resources import Member

logger = logging.getLogger(__name__)

DEFAULT_DIAL_TIMEOUT = 15.0
DEFRAG_DIAL_TIMEOUT = 60.0
DEFAULT_HEALTH_TIMEOUT = 30.0

RAFT_TERMS_METRIC_NAME = "etcd_debugging_raft_terms_total"


class QuorumError(ValueError):
    """The cluster's quorum cannot be determined or is not fault tolerant."""


def _member_text(member: Member) -> str:
    parts: list[str] = []
    if member.id:
        parts.append(f"ID:{member.id}")
    if member.name:
        parts.append(f'name:"{member.name}"')
    parts.extend(f'peerURLs:"{url}"' for url in member.peer_urls)
    parts.extend(f'clientURLs:"{url}"' for url in member.client_urls)
    if member.is_learner:
        parts.append("isLearner:true")
    return " ".join(parts) + " " if parts else ""


@dataclass
class HealthCheck:
    """Outcome of checking a single member."""

    member: Member
    healthy: bool = False
    took: str = ""
    error: Exception | None = None

    def __str__(self) -> str:
        error = str(self.error) if self.error is not None else "<nil>"
        healthy = "true" if self.healthy else "false"
        return f"{{Member:{_member_text(self.member)} Healthy:{healthy} Took:{self.took} Error:{error}}}"


class MemberHealth(list):
    """A list of HealthCheck results."""

    def status(self) -> str:
        """Summarise how many members are available and why others are not."""
        healthy = self.healthy_members()
        if len(healthy) == len(self):
            return f"{len(self)} members are available"
        parts = [f"{len(healthy)} of {len(self)} members are available"]
        for check in self:
            if not has_started(check.member):
                parts.append(f"{get_member_name_or_host(check.member)} has not started")
            elif not check.healthy:
                parts.append(f"{check.member.name} is unhealthy")
        return ", ".join(parts)

    def healthy_members(self) -> list[Member]:
        return [c.member for c in self if c.healthy]

    def unhealthy_members(self) -> list[Member]:
        return [c.member for c in self if not c.healthy]

    def unstarted_members(self) -> list[Member]:
        return [c.member for c in self if not has_started(c.member)]

    def __str__(self) -> str:
        return "[" + " ".join(str(c) for c in self) + "]"


class RaftTermsCollector:
    """Thread-safe store of the raft term observed for each member."""

    def __init__(
        self,
        name: str = RAFT_TERMS_METRIC_NAME,
        description: str = "Number of etcd raft terms as observed by each member.",
    ) -> None:
        self.name = name
        self.description = description
        self._terms: dict[str, int] = {}
        self._lock = threading.Lock()

    def set(self, member: str, value: int) -> None:
        with self._lock:
            self._terms[member] = value

    def forget(self, member: str) -> None:
        with self._lock:
            self._terms.pop(member, None)

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._terms)

    def collect(self) -> Iterator[tuple[str, float]]:
        """Yield (member, term) samples as counter values."""
        with self._lock:
            samples = [(member, float(value)) for member, value in self._terms.items()]
        yield from samples


RAFT_TERMS = RaftTermsCollector()


@dataclass
class ClientOptions:
    dial_timeout: float = DEFAULT_DIAL_TIMEOUT


def with_dial_timeout(timeout: float) -> Callable[[ClientOptions], None]:
    def apply(options: ClientOptions) -> None:
        options.dial_timeout = timeout

    return apply


def new_client_options(*args: Callable[[ClientOptions], None]) -> ClientOptions:
    """Build client options from defaults and the given option functions."""
    options = ClientOptions()
    for option in args:
        option(options)
    return options


def has_started(member: Member) -> bool:
    """A member has started once it advertises client URLs."""
    return bool(member.client_urls)


def get_member_name_or_host(member: Member) -> str:
    """Return the member's name, or a placeholder built from its peer URL host."""
    if member.name:
        return member.name
    if not member.peer_urls:
        return "NAME-PENDING-BAD-PEER-URL"
    try:
        hostname = urlsplit(member.peer_urls[0]).hostname or ""
    except ValueError as exc:
        logger.error("unstarted member has invalid peerURL: %r", exc)
        return "NAME-PENDING-BAD-PEER-URL"
    return f"NAME-PENDING-{hostname}"


def filter_voting_members(members: Iterable[Member]) -> list[Member]:
    """Drop learner members."""
    return [m for m in members if not m.is_learner]


def _run_check(member: Member, checker: Callable[[Member], int | None]) -> HealthCheck:
    start = time.monotonic()
    try:
        raft_term = checker(member)
    except Exception as exc:  # any failure of the probe marks the member unhealthy
        took = f"{(time.monotonic() - start) * 1000:.3f}ms"
        logger.error("health check for member (%s) failed: err(%s)", member.name, exc)
        error = RuntimeError(f"health check failed: {exc}")
        error.__cause__ = exc
        return HealthCheck(member=member, healthy=False, took=took, error=error)
    took = f"{(time.monotonic() - start) * 1000:.3f}ms"
    if raft_term is not None:
        RAFT_TERMS.set(member.name, raft_term)
    return HealthCheck(member=member, healthy=True, took=took)


def get_member_health(
    members: Iterable[Member],
    checker: Callable[[Member], int | None],
    timeout: float = DEFAULT_HEALTH_TIMEOUT,
) -> MemberHealth:
    """Check each started member with ``checker``.

    ``checker`` probes one member and returns its raft term (or None); raising
    marks the member unhealthy. A check taking longer than ``timeout`` seconds
    is reported as failed.
    """
    members = list(members)
    result = MemberHealth()
    for member in members:
        if not has_started(member):
            result.append(HealthCheck(member=member, healthy=False))
            continue
        outcome: queue.Queue[HealthCheck] = queue.Queue(maxsize=1)
        worker = threading.Thread(
            target=lambda m=member: outcome.put(_run_check(m, checker)), daemon=True
        )
        worker.start()
        try:
            result.append(outcome.get(timeout=timeout))
        except queue.Empty:
            result.append(
                HealthCheck(
                    member=member,
                    healthy=False,
                    error=TimeoutError(
                        f"{timeout:g}s timeout waiting for member {member.name} to respond to health check"
                    ),
                )
            )

    known = {m.name for m in members}
    for cached in RAFT_TERMS.list():
        if cached not in known:
            RAFT_TERMS.forget(cached)
    return result


def get_unhealthy_member_names(member_health: Iterable[HealthCheck]) -> list[str]:
    return [get_member_name_or_host(c.member) for c in member_health if not c.healthy]


def get_healthy_member_names(member_health: Iterable[HealthCheck]) -> list[str]:
    return [c.member.name for c in member_health if c.healthy]


def get_unstarted_member_names(member_health: Iterable[HealthCheck]) -> list[str]:
    return [get_member_name_or_host(c.member) for c in member_health if not has_started(c.member)]


def minimum_tolerable_quorum(members: int) -> int:
    """Return the quorum size for a cluster of the given member count."""
    if members <= 0:
        raise QuorumError(f"invalid etcd member length: {members}")
    return members // 2 + 1


def is_quorum_fault_tolerant_err(member_health: Iterable[HealthCheck]) -> None:
    """Raise QuorumError unless the cluster can lose one member and keep quorum."""
    checks = MemberHealth(member_health)
    total = len(checks)
    try:
        quorum = minimum_tolerable_quorum(total)
    except QuorumError as exc:
        raise QuorumError(
            "etcd cluster could not determine minimum quorum required. "
            f"total number of members is {total}. minimum quorum required is 0: {exc}"
        ) from exc
    healthy = len(get_healthy_member_names(checks))
    if total - quorum < 1:
        raise QuorumError(f"etcd cluster has quorum of {quorum} which is not fault tolerant: {checks}")
    if healthy - quorum < 1:
        raise QuorumError(
            f"etcd cluster has quorum of {quorum} and {healthy} healthy members "
            f"which is not fault tolerant: {checks}"
        )


def is_quorum_fault_tolerant(member_health: Iterable[HealthCheck]) -> bool:
    """Return True if the cluster can tolerate the loss of a single member."""
    try:
        is_quorum_fault_tolerant_err(member_health)
    except QuorumError as exc:
        logger.error("%s", exc)
        return False
    return True


def is_cluster_healthy(member_health: MemberHealth) -> bool:
    return not MemberHealth(member_health).unhealthy_members()