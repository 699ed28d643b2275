import pytest

from clusteretcd.fake import (
    FakeMemberHealth,
    MemberNotLearnerError,
    new_fake_etcd_client,
    with_fake_cluster_health,
    with_fake_defrag_errors,
    with_fake_status,
)
from clusteretcd.resources import Member, NotFoundError, StatusResponse


def make_member(i, learner=False):
    return Member(
        name=f"etcd-{i}",
        id=i,
        peer_urls=[f"https://10.0.0.{i}:2380"],
        client_urls=[f"https://10.0.0.{i}:2379"],
        is_learner=learner,
    )


def three_members():
    return [make_member(1), make_member(2), make_member(3)]


def test_add_learner_then_promote():
    client = new_fake_etcd_client(three_members())
    client.member_add_as_learner("https://10.0.0.9:2380")
    added = client.member_list()[-1]
    assert added.name == "m-4"
    assert added.peer_urls == ["https://10.0.0.9:2380"]
    assert added.is_learner
    assert added not in client.voting_member_list()

    client.member_promote(added)
    assert not added.is_learner
    assert added in client.voting_member_list()


def test_promote_voting_member_raises():
    members = three_members()
    client = new_fake_etcd_client(members)
    with pytest.raises(MemberNotLearnerError):
        client.member_promote(members[0])


def test_promote_unknown_member_raises():
    client = new_fake_etcd_client(three_members())
    with pytest.raises(LookupError):
        client.member_promote(make_member(42, learner=True))


def test_member_remove():
    members = three_members()
    client = new_fake_etcd_client(members)
    client.member_remove(2)
    assert [m.id for m in client.member_list()] == [1, 3]
    with pytest.raises(LookupError):
        client.member_remove(2)


def test_default_member_health_all_healthy():
    client = new_fake_etcd_client(three_members())
    health = client.member_health()
    assert [c.healthy for c in health] == [True, True, True]
    assert health.status() == "3 members are available"


def test_cluster_health_option():
    members = three_members()
    client = new_fake_etcd_client(
        members, with_fake_cluster_health(FakeMemberHealth(healthy=2, unhealthy=1))
    )
    health = client.member_health()
    assert [c.healthy for c in health] == [True, True, False]
    assert client.unhealthy_members() == members[:1]
    assert client.healthy_members() == members[1:]
    assert client.is_member_healthy(members[0]) is False


def test_cluster_health_all_healthy_is_member_healthy():
    client = new_fake_etcd_client(
        three_members(), with_fake_cluster_health(FakeMemberHealth(healthy=3))
    )
    assert client.is_member_healthy(make_member(1)) is True
    assert client.unhealthy_members() == []


def test_cluster_health_count_mismatch_raises():
    with pytest.raises(ValueError, match="WithClusterHealth"):
        new_fake_etcd_client(
            three_members(), with_fake_cluster_health(FakeMemberHealth(healthy=1, unhealthy=1))
        )


def test_voting_filters_on_health_lists():
    members = [make_member(1, learner=True), make_member(2), make_member(3)]
    client = new_fake_etcd_client(
        members, with_fake_cluster_health(FakeMemberHealth(healthy=1, unhealthy=2))
    )
    assert client.unhealthy_voting_members() == [members[1]]
    assert client.healthy_voting_members() == [members[2]]


def test_defragment_consumes_errors_in_order():
    first, second = RuntimeError("first"), RuntimeError("second")
    client = new_fake_etcd_client(three_members(), with_fake_defrag_errors([first, second]))
    client.opts.db_size = 100
    client.opts.db_size_in_use = 40
    member = client.member_list()[0]
    with pytest.raises(RuntimeError) as exc1:
        client.defragment(member)
    assert exc1.value is first
    with pytest.raises(RuntimeError) as exc2:
        client.defragment(member)
    assert exc2.value is second
    assert client.defragment(member) is None
    assert client.opts.db_size == 40


def test_status_lookup():
    status = StatusResponse(member_id=2, raft_term=7)
    client = new_fake_etcd_client(three_members(), with_fake_status([status]))
    assert client.status("https://10.0.0.2:2379") is status
    with pytest.raises(LookupError, match="no status found"):
        client.status("https://10.0.0.1:2379")
    with pytest.raises(LookupError, match="no match for target"):
        client.status("https://10.9.9.9:2379")


def test_get_member():
    members = three_members()
    client = new_fake_etcd_client(members)
    assert client.get_member("etcd-3") is members[2]
    with pytest.raises(NotFoundError) as exc:
        client.get_member("missing")
    assert exc.value.resource == "etcdmembers"
    assert exc.value.group == "etcd.operator.openshift.io"
    assert exc.value.name == "missing"