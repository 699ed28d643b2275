"""Control plane topology as recorded on the cluster infrastructure object."""

from __future__ import annotations

import logging

from .resources import Infrastructure, NotFoundError

logger = logging.getLogger(__name__)

INFRASTRUCTURE_CLUSTER_NAME = "cluster"

HIGHLY_AVAILABLE_TOPOLOGY_MODE = "HighlyAvailable"
SINGLE_REPLICA_TOPOLOGY_MODE = "SingleReplica"


def get_control_plane_topology(store) -> str:
    """Return the control plane topology of the cluster infrastructure.

    Raises NotFoundError when the infrastructure object is missing and
    ValueError when it records no topology.
    """
    try:
        infra = store.get(Infrastructure, INFRASTRUCTURE_CLUSTER_NAME)
    except NotFoundError:
        logger.warning("Failed to get infrastructure resource %s", INFRASTRUCTURE_CLUSTER_NAME)
        raise
    if not infra.control_plane_topology:
        raise ValueError("ControlPlaneTopology was not set")
    return infra.control_plane_topology


def is_single_node_topology(store) -> bool:
    """True when the control plane runs on a single replica."""
    return get_control_plane_topology(store) == SINGLE_REPLICA_TOPOLOGY_MODE