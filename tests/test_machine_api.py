import pytest

from clusteretcd.machine_api import MachineAPI
from clusteretcd.resources import Machine, ObjectStore

MASTER_SELECTOR = {"machine.openshift.io/cluster-api-machine-role": "master"}


def master_machine(name, phase):
    return Machine(name=name, labels=dict(MASTER_SELECTOR), phase=phase)


def non_master_machine(name, phase):
    return Machine(name=name, labels={}, phase=phase)


@pytest.mark.parametrize(
    "machines, expected",
    [
        ([master_machine("m-0", "Running")], True),
        ([master_machine("m-0", "Running"), master_machine("m-1", "Provisioning")], True),
        ([master_machine("m-0", "Running"), master_machine("m-1", "Running")], True),
        ([master_machine("m-0", "Unknown"), master_machine("m-1", "Provisioning")], False),
        ([non_master_machine("m-0", "Running"), non_master_machine("m-1", "Running")], False),
        ([], False),
    ],
    ids=[
        "single running master",
        "running master among other phases",
        "all running masters",
        "no running machines",
        "non-master running machines",
        "no machines",
    ],
)
def test_is_functional(machines, expected):
    api = MachineAPI(lambda: True, ObjectStore(machines), MASTER_SELECTOR)
    assert api.is_functional() is expected


def test_not_synced_is_not_functional():
    api = MachineAPI(lambda: False, ObjectStore([master_machine("m-0", "Running")]), MASTER_SELECTOR)
    assert api.is_functional() is False


def test_machine_without_phase_is_not_running():
    api = MachineAPI(lambda: True, ObjectStore([master_machine("m-0", None)]), MASTER_SELECTOR)
    assert api.is_functional() is False