"""Helpers for reading the operator config and relating etcd members to machines."""

from __future__ import annotations

from typing import Any, Iterable, Mapping
from urllib.parse import urlsplit

import yaml

from .resources import NODE_INTERNAL_IP, Machine, Member

# Name and owner of the machine deletion hook that protects etcd quorum.
MACHINE_DELETION_HOOK_NAME = "EtcdQuorumOperator"
MACHINE_DELETION_HOOK_OWNER = "clusteroperator/etcd"

CONTROL_PLANE_REPLICAS_PATH = ("controlPlane", "replicas")


def _load_config(raw: bytes | str | None) -> dict[str, Any]:
    if raw is None:
        return {}
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    try:
        config = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to unmarshal operator's config: {exc}") from exc
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(
            f"failed to unmarshal operator's config: expected a mapping, got {type(config).__name__}"
        )
    return config


def _merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge(current, value)
        else:
            target[key] = value
    return target


def _nested_number(config: Mapping[str, Any], path: tuple[str, ...]) -> float:
    value: Any = config
    for depth, key in enumerate(path):
        if not isinstance(value, Mapping):
            walked = ".".join(path[:depth])
            raise ValueError(f"{walked} accessor error: {value!r} is of the type {type(value).__name__}, expected map")
        if key not in value:
            return 0.0
        value = value[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(
            f"{'.'.join(path)} accessor error: {value!r} is of the type {type(value).__name__}, expected float64"
        )
    return float(value)


def read_desired_control_plane_replicas_count(operator_client) -> int:
    """Read the control plane replica count from the merged operator config.

    Unsupported overrides take precedence over the observed config. A missing
    value counts as 0.
    """
    spec, _ = operator_client.get_static_pod_operator_state()
    merged: dict[str, Any] = {}
    _merge(merged, _load_config(spec.observed_config))
    _merge(merged, _load_config(spec.unsupported_config_overrides))
    try:
        replicas = _nested_number(merged, CONTROL_PLANE_REPLICAS_PATH)
    except ValueError as exc:
        quoted = " ".join(f'"{part}"' for part in CONTROL_PLANE_REPLICAS_PATH)
        raise ValueError(f"unable to extract [{quoted}] from the existing config: {exc}") from exc
    return int(replicas)


def _member_to_url(member: Member) -> str:
    if not member.peer_urls:
        raise ValueError(
            "unable to extract member's URL address, it has an empty PeerURLs field, "
            f"member name: {member.name}, id: {member.id}"
        )
    return member.peer_urls[0]


def member_to_node_internal_ip(member: Member) -> str:
    """Return the host part of the member's first peer URL."""
    parts = urlsplit(_member_to_url(member))
    try:
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"invalid port in address {parts.netloc}: {exc}") from exc
    if port is None:
        raise ValueError(f"address {parts.netloc}: missing port in address")
    return parts.hostname or ""


def has_machine_deletion_hook(machine: Machine) -> bool:
    """True if the machine carries the etcd pre-drain deletion hook."""
    return (MACHINE_DELETION_HOOK_NAME, MACHINE_DELETION_HOOK_OWNER) in machine.pre_drain_hooks


def filter_machines_with_machine_deletion_hook(machines: Iterable[Machine]) -> list[Machine]:
    return [m for m in machines if has_machine_deletion_hook(m)]


def filter_machines_without_machine_deletion_hook(machines: Iterable[Machine]) -> list[Machine]:
    return [m for m in machines if not has_machine_deletion_hook(m)]


def filter_machines_pending_deletion(machines: Iterable[Machine]) -> list[Machine]:
    return [m for m in machines if m.deletion_timestamp is not None]


def index_machines_by_node_internal_ip(machines: Iterable[Machine]) -> dict[str, Machine]:
    """Map every internal IP of every machine to that machine."""
    return {
        address: machine
        for machine in machines
        for address_type, address in machine.addresses
        if address_type == NODE_INTERNAL_IP
    }


def current_member_machines_with_deletion_hooks(selector: Mapping[str, str], store) -> list[Machine]:
    return filter_machines_with_machine_deletion_hook(store.list(Machine, selector))


def find_machine_by_node_internal_ip(node_internal_ip: str, selector: Mapping[str, str], store) -> Machine | None:
    """Return the selected machine with the given internal IP, or None."""
    for machine in store.list(Machine, selector):
        if (NODE_INTERNAL_IP, node_internal_ip) in machine.addresses:
            return machine
    return None


def _ip_from_address(address: str) -> str:
    host = urlsplit(address).hostname
    if not host:
        raise ValueError(f"failed to parse IP from address {address!r}")
    return host


def voting_member_ip_list_set(cli) -> set[str]:
    """IP addresses of the voting members, taken from their peer URLs."""
    return {_ip_from_address(member.peer_urls[0]) for member in cli.voting_member_list()}