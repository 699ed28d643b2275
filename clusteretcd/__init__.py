"""Membership, health, quorum, bootstrap and env var logic for an etcd cluster."""

__version__ = "0.1.0"