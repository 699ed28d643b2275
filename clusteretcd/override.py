"""Detection of the unsupported, unsafe etcd configuration override."""

from __future__ import annotations

import logging
from typing import Any

import yaml

from .resources import StaticPodOperatorSpec

logger = logging.getLogger(__name__)

UNSUPPORTED_UNSAFE_ETCD_KEY = "useUnsupportedUnsafeNonHANonProductionUnstableEtcd"

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f'parsing "{text}": invalid syntax')


def _decode(raw: bytes | str) -> dict[str, Any]:
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    try:
        config = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        logger.debug("decode of unsupported config failed with error: %s", exc)
        raise ValueError(f"decode of unsupported config failed: {exc}") from exc
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(
            f"decode of unsupported config failed: expected a mapping, got {type(config).__name__}"
        )
    return config


def is_unsupported_unsafe_etcd(spec: StaticPodOperatorSpec) -> bool:
    """True if the unsafe non-HA override key is set to a true value.

    The overrides may be YAML or JSON. A string value must parse as a boolean;
    values of any other type count as False.
    """
    raw = spec.unsupported_config_overrides
    if raw is None:
        return False
    config = _decode(raw)
    if UNSUPPORTED_UNSAFE_ETCD_KEY not in config:
        return False
    value = config[UNSUPPORTED_UNSAFE_ETCD_KEY]
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _parse_bool(value)
    return False