"""Quorum check used before rolling out a new static pod revision."""

from __future__ import annotations

from .bootstrap import check_safe_to_scale_cluster


class QuorumCheck:
    """Decides whether the cluster can tolerate losing one member for a revision update."""

    def __init__(self, store, operator_client, etcd_client) -> None:
        self._store = store
        self._operator_client = operator_client
        self._etcd_client = etcd_client

    def is_safe_to_update_revision(self) -> bool:
        """Return True when it is safe; raise with the reason otherwise."""
        check_safe_to_scale_cluster(self._store, self._operator_client, self._etcd_client)
        return True