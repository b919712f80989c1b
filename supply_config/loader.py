"""
Configuration Loader (``supply_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into the typed dataclasses
of ``supply_config.schema``.  Runtime callers use
``supply_config.get_active_config()``; this module is the tooling behind it.

Invariants enforced
-------------------
* Only known top-level sections are accepted; unknown sections raise
  ``ValueError`` instead of being silently ignored.
* ``compute_checksum`` is a deterministic SHA-256 over the parsed data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema dataclasses.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from supply_config.schema import (
    CreditSettings,
    InventorySettings,
    PayablesSettings,
    ProcurementSettings,
    SupplyConfig,
)

_SECTIONS = ("inventory", "procurement", "payables", "credit")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Returns an empty dict for an empty file.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the configuration data."""
    canonical = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def merge_config_data(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base`` one section at a time."""
    merged = {section: dict(values or {}) for section, values in base.items()}
    for section, values in override.items():
        merged.setdefault(section, {}).update(values or {})
    return merged


def parse_config(data: dict[str, Any]) -> SupplyConfig:
    """
    Parse a configuration mapping into a ``SupplyConfig``.

    Raises:
        ValueError: unknown section or invalid setting value.
    """
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
    return SupplyConfig(
        inventory=InventorySettings.from_dict(data.get("inventory") or {}),
        procurement=ProcurementSettings.from_dict(data.get("procurement") or {}),
        payables=PayablesSettings.from_dict(data.get("payables") or {}),
        credit=CreditSettings.from_dict(data.get("credit") or {}),
        checksum=compute_checksum(data),
    )
