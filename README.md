# clusteretcd

Logic for running an etcd cluster on a set of control-plane nodes. It finds
the cluster's endpoints, checks member health, and decides whether quorum
can survive the loss of a member. It also chooses a bootstrap scaling
strategy, removes the temporary bootstrap member, and renders the
environment variables for the etcd static pods.

Cluster objects (config maps, nodes, namespaces, networks, infrastructure,
machines) are kept in an in-memory `ObjectStore`. Operator spec, status and
conditions are held by a `StaticPodOperatorClient`. Events go to an
`EventRecorder`. Talking to etcd is left to callables you pass in.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

| Module | Contents |
| --- | --- |
| `clusteretcd.resources` | `Member`, `StatusResponse`, `NotFoundError`, `ConfigMap`, `Node`, `Namespace`, `Network`, `Infrastructure`, `Machine`, `NodeStatus`, `OperatorCondition`, `StaticPodOperatorSpec`, `StaticPodOperatorStatus`, `StaticPodOperatorClient`, `EventRecorder`, `ObjectStore`, `join_host_port` |
| `clusteretcd.health` | `HealthCheck`, `MemberHealth`, `RaftTermsCollector`, `QuorumError`, `ClientOptions`, `get_member_health`, `minimum_tolerable_quorum`, `is_quorum_fault_tolerant`, `is_quorum_fault_tolerant_err`, `is_cluster_healthy`, `filter_voting_members`, `has_started`, `get_member_name_or_host`, `with_dial_timeout`, `new_client_options` |
| `clusteretcd.pool` | `EtcdClientPool`, `PoolError`, `new_default_pool` |
| `clusteretcd.client` | `EtcdClientGetter`, `LearnerNotReadyError`, `endpoints`, `new_etcd_client` |
| `clusteretcd.fake` | `FakeEtcdClient`, `new_fake_etcd_client`, `with_fake_cluster_health`, `with_fake_status`, `with_fake_defrag_errors`, `FakeMemberHealth`, `MemberNotLearnerError` |
| `clusteretcd.bootstrap` | `BootstrapScalingStrategy`, `ScalingError`, `get_bootstrap_scaling_strategy`, `is_bootstrap_complete`, `check_safe_to_scale_cluster` |
| `clusteretcd.quorum` | `QuorumCheck` |
| `clusteretcd.topology` | `get_control_plane_topology`, `is_single_node_topology` |
| `clusteretcd.override` | `is_unsupported_unsafe_etcd` |
| `clusteretcd.machine_api` | `MachineAPI` |
| `clusteretcd.common` | Machine deletion-hook filters, `index_machines_by_node_internal_ip`, `find_machine_by_node_internal_ip`, `member_to_node_internal_ip`, `voting_member_ip_list_set`, `read_desired_control_plane_replicas_count` |
| `clusteretcd.teardown` | `BootstrapTeardownController` |
| `clusteretcd.waitforceo` | `WatchEvent`, `wait_for_etcd_bootstrap`, `done` |
| `clusteretcd.envvars` | `EnvVarContext`, `get_etcd_env_vars`, `get_etcd_endpoints`, `env_var_safe`, `FakeEnvVar` |
| `clusteretcd.envvar_controller` | `EnvVarController` |

## Examples

Quorum arithmetic:

```python
from clusteretcd.health import minimum_tolerable_quorum

minimum_tolerable_quorum(3)   # 2
minimum_tolerable_quorum(5)   # 3
minimum_tolerable_quorum(0)   # raises QuorumError
```

Summarising member health:

```python
from clusteretcd.health import HealthCheck, MemberHealth, is_quorum_fault_tolerant
from clusteretcd.resources import Member

def member(n):
    return Member(
        name=f"etcd-{n}",
        peer_urls=[f"https://10.0.0.{n}:2380"],
        client_urls=[f"https://10.0.0.{n}:2379"],
    )

health = MemberHealth([
    HealthCheck(member(1), healthy=True),
    HealthCheck(member(2), healthy=True),
    HealthCheck(member(3), healthy=False),
])
health.status()                   # "2 of 3 members are available, etcd-3 is unhealthy"
is_quorum_fault_tolerant(health)  # False
```

An in-memory client for tests of code that manages members:

```python
from clusteretcd.fake import FakeMemberHealth, new_fake_etcd_client, with_fake_cluster_health

client = new_fake_etcd_client(
    [member(1), member(2), member(3)],
    with_fake_cluster_health(FakeMemberHealth(healthy=2, unhealthy=1)),
)
[m.name for m in client.unhealthy_members()]   # ["etcd-1"]
```

Host/port joining and env var keys:

```python
from clusteretcd.resources import join_host_port
from clusteretcd.envvars import env_var_safe

join_host_port("10.0.0.1", "2379")   # "10.0.0.1:2379"
join_host_port("fd00::1", "2379")    # "[fd00::1]:2379"
env_var_safe("master-0.example")     # "master_0_example"
```

## Behaviour worth knowing

- A cluster is quorum fault tolerant only when both the total member count
  and the healthy member count exceed the quorum by at least one. A
  two-member or empty cluster never is.
- `EtcdClientPool` keeps at most five idle clients and allows at most ten
  open ones. `get` retries up to three times with a linearly growing pause.
  It raises `PoolError` when no open slot frees up within the acquire
  timeout. `put_back` closes a client when the idle cache is full.
- `endpoints` reads the `etcd-endpoints` config map, including the
  bootstrap IP annotation. When the map is missing, it falls back to the
  internal IPs of nodes labelled as masters. The result is sorted.
- While bootstrap is in progress, `check_safe_to_scale_cluster` always
  allows scaling. Once bootstrap is complete, the HA and delayed-HA
  strategies need at least three nodes and a fault-tolerant quorum. The
  unsafe strategy skips those checks. It is chosen when the unsupported
  override is set or the topology is single-node.
- `get_etcd_env_vars` raises if two sources produce the same key.
- `EnvVarController.run` syncs at start, whenever `enqueue` is called, and
  every minute. Failed syncs are retried with exponential back-off until the
  stop event is set.

## What it does not do

The package has no command-line program and no server. It does not watch
or write to a cluster API. The `ObjectStore` and `StaticPodOperatorClient`
are only as current as the code that fills them.

It does not open network connections to etcd, and it does not set up TLS.
`EtcdClientGetter` and `new_etcd_client` expect a `connect(endpoints,
options)` callable that returns an object providing the etcd operations.

The helper for supported cipher suites is not included. `EnvVarContext`
takes an optional `supported_ciphers` callable for that filtering, and
without it the observed cipher suites are used as they are.