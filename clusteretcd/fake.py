"""An in-memory etcd client used to exercise code that manages cluster members."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from .health import HealthCheck, MemberHealth, filter_voting_members
from .resources import Member, NotFoundError, StatusResponse


class MemberNotLearnerError(ValueError):
    """Only learner members can be promoted."""

    def __init__(self) -> None:
        super().__init__("membership: can only promote a learner member")


@dataclass
class FakeMemberHealth:
    healthy: int = 0
    unhealthy: int = 0


@dataclass
class FakeClientOptions:
    client: object | None = None
    unhealthy_member: int = 0
    healthy_member: int = 0
    status: list[StatusResponse] = field(default_factory=list)
    db_size: int = 0
    db_size_in_use: int = 0
    defrag_errors: list[Exception] = field(default_factory=list)


FakeClientOption = Callable[[FakeClientOptions], None]


def with_fake_cluster_health(members: FakeMemberHealth) -> FakeClientOption:
    def apply(options: FakeClientOptions) -> None:
        options.unhealthy_member = members.unhealthy
        options.healthy_member = members.healthy

    return apply


def with_fake_status(status: list[StatusResponse]) -> FakeClientOption:
    def apply(options: FakeClientOptions) -> None:
        options.status = list(status)

    return apply


def with_fake_defrag_errors(errors: list[Exception]) -> FakeClientOption:
    """Each defragment call raises the next error from ``errors``."""

    def apply(options: FakeClientOptions) -> None:
        options.defrag_errors = list(errors)

    return apply


class FakeEtcdClient:
    """Keeps members in memory and answers health queries from its options."""

    def __init__(self, members: list[Member], options: FakeClientOptions | None = None) -> None:
        self.members = list(members)
        self.opts = options if options is not None else FakeClientOptions()

    def defragment(self, member: Member) -> None:
        if self.opts.defrag_errors:
            raise self.opts.defrag_errors.pop(0)
        self.opts.db_size = self.opts.db_size_in_use
        return None

    def status(self, target: str) -> StatusResponse:
        for member in self.members:
            if member.client_urls and member.client_urls[0] == target:
                for status in self.opts.status:
                    if status.member_id == member.id:
                        return status
                raise LookupError(
                    f"no status found for member {member.id} matching target {target!r}."
                )
        raise LookupError(f"status failed no match for target: {target!r}")

    def member_add_as_learner(self, peer_url: str) -> None:
        count = len(self.members)
        self.members.append(
            Member(name=f"m-{count + 1}", id=count + 1, peer_urls=[peer_url], is_learner=True)
        )

    def member_promote(self, member: Member) -> None:
        target = next((m for m in self.members if m.id == member.id), None)
        if target is None:
            raise LookupError(
                f"member with the given (ID: {member.id}) and (name: {member.name}) doesn't exist"
            )
        if not target.is_learner:
            raise MemberNotLearnerError()
        target.is_learner = False

    def member_list(self) -> list[Member]:
        return self.members

    def voting_member_list(self) -> list[Member]:
        return filter_voting_members(self.member_list())

    def member_remove(self, member_id: int) -> None:
        if not any(m.id == member_id for m in self.members):
            raise LookupError(f"member with the given ID: {member_id} doesn't exist")
        self.members = [m for m in self.members if m.id != member_id]

    def member_health(self) -> MemberHealth:
        healthy = unhealthy = 0
        result = MemberHealth()
        for member in self.members:
            check = HealthCheck(member=member)
            if self.opts.healthy_member == 0 and self.opts.unhealthy_member == 0:
                check.healthy = True
            elif self.opts.healthy_member > 0 and healthy < self.opts.healthy_member:
                check.healthy = True
                healthy += 1
            elif self.opts.unhealthy_member > 0 and unhealthy < self.opts.unhealthy_member:
                check.healthy = False
                unhealthy += 1
            result.append(check)
        return result

    def is_member_healthy(self, member: Member) -> bool:
        """True when every member is configured healthy."""
        return len(self.members) == self.opts.healthy_member

    def unhealthy_members(self) -> list[Member]:
        if self.opts.unhealthy_member > 0:
            return self.members[: self.opts.unhealthy_member]
        return []

    def unhealthy_voting_members(self) -> list[Member]:
        return filter_voting_members(self.unhealthy_members())

    def healthy_members(self) -> list[Member]:
        if self.opts.healthy_member > 0:
            return self.members[self.opts.unhealthy_member :]
        return []

    def healthy_voting_members(self) -> list[Member]:
        return filter_voting_members(self.healthy_members())

    def get_member(self, name: str) -> Member:
        for member in self.members:
            if member.name == name:
                return member
        raise NotFoundError("etcdmembers", name, group="etcd.operator.openshift.io")


def new_fake_etcd_client(members: list[Member], *args: FakeClientOption) -> FakeEtcdClient:
    """Build a fake client; cluster-health counts must add up to the member count."""
    client = FakeEtcdClient(members)
    if args:
        options = FakeClientOptions()
        for option in args:
            option(options)
        if options.healthy_member > 0 or options.unhealthy_member > 0:
            total = options.healthy_member + options.unhealthy_member
            if total != len(members):
                raise ValueError(
                    "WithClusterHealth count must equal the numer of members: "
                    f"have {total}, want {len(members)} "
                )
        client.opts = options
    return client