"""
program_config -- single public entrypoint for program finance settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  Services receive sections of the returned
    ``FinancialSettings`` at construction; no other component reads YAML or
    environment variables.

Architecture position:
    Configuration.  Sits beside ``program_kernel`` and below
    ``program_services``.  The kernel and the engines never import from
    ``program_config``; engines take tunables as arguments.

Audit relevance:
    Every successful ``get_active_settings()`` call emits a
    ``PROGRAM_CONFIG_TRACE`` log entry carrying the config_id, version and
    checksum of the settings that governed the run.
"""

from __future__ import annotations

import logging
from pathlib import Path

from program_config.loader import compute_checksum, load_yaml_file, parse_settings
from program_config.schema import (
    AllocationSettings,
    FinancialSettings,
    ForecastSettings,
    ReconciliationSettings,
    SnapshotSettings,
)

_logger = logging.getLogger("program_kernel.config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_settings(config_path: Path | None = None) -> FinancialSettings:
    """The ONLY public settings entrypoint.

    Args:
        config_path: YAML settings file.  Defaults to the packaged
            ``defaults.yaml``.

    Returns:
        Frozen FinancialSettings with ``checksum`` populated.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        KeyError: If ``config_id`` or ``version`` is missing.
        ValueError: If a tunable is malformed.
    """
    path = config_path or DEFAULT_SETTINGS_PATH
    raw = load_yaml_file(path)
    settings = parse_settings(raw, checksum=compute_checksum(raw))

    _logger.info(
        "PROGRAM_CONFIG_TRACE",
        extra={
            "trace_type": "PROGRAM_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "source": str(path),
        },
    )
    return settings


__all__ = [
    "AllocationSettings",
    "FinancialSettings",
    "ForecastSettings",
    "ReconciliationSettings",
    "SnapshotSettings",
    "get_active_settings",
]
