"""
supply_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned settings by
    injection; they never read configuration files or environment
    variables themselves.

Architecture position:
    Configuration -- YAML-driven policy knobs.
    This package sits above ``supply_kernel`` and below ``supply_modules``.
    The kernel MUST NEVER import from ``supply_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``ValueError`` -- unknown section or invalid setting value.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SUPPLY_CONFIG_TRACE`` log entry carrying the source path and the
    checksum of the loaded data.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from supply_config.loader import load_yaml_file, merge_config_data, parse_config
from supply_config.schema import (
    CreditSettings,
    InventorySettings,
    PayablesSettings,
    ProcurementSettings,
    SupplyConfig,
)

_logger = logging.getLogger("supply_kernel.config")

CONFIG_PATH_ENV = "SUPPLY_CONFIG_PATH"

_DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> SupplyConfig:
    """The ONLY public configuration entrypoint.

    The packaged ``defaults.yaml`` is always loaded first.  An override
    file, taken from ``path`` or else from the ``SUPPLY_CONFIG_PATH``
    environment variable, is merged over it section by section.

    Raises:
        FileNotFoundError: If the override file does not exist.
        ValueError: If configuration validation fails.
    """
    data = load_yaml_file(_DEFAULTS_FILE)

    override_path = path if path is not None else os.environ.get(CONFIG_PATH_ENV)
    if override_path:
        data = merge_config_data(data, load_yaml_file(Path(override_path)))

    config = parse_config(data)

    _logger.info(
        "SUPPLY_CONFIG_TRACE",
        extra={
            "trace_type": "SUPPLY_CONFIG_TRACE",
            "source": str(override_path or _DEFAULTS_FILE),
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "CreditSettings",
    "InventorySettings",
    "PayablesSettings",
    "ProcurementSettings",
    "SupplyConfig",
    "get_active_config",
]
