"""
Settings loader (``program_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the frozen dataclasses of
``program_config.schema``.  Runtime callers go through
``program_config.get_active_settings()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Money and ratio values are parsed as ``Decimal`` from their string form.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  mapping for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError`` propagates.
* Non-numeric or negative tunables  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from program_config.schema import (
    AllocationSettings,
    FinancialSettings,
    ForecastSettings,
    ReconciliationSettings,
    SnapshotSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str) -> Decimal:
    """Parse a non-negative Decimal; floats are read through ``str``."""
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Setting {key!r} is not a number: {value!r}") from exc
    if result < 0:
        raise ValueError(f"Setting {key!r} must be non-negative, got {value!r}")
    return result


def parse_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Setting {key!r} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"Setting {key!r} must be non-negative, got {value!r}")
    return value


def _section(cls: type, data: dict[str, Any] | None, section: str) -> Any:
    """Build a settings section, overriding dataclass defaults with YAML values."""
    if not data:
        return cls()

    defaults = cls()
    known = set(cls.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in {section!r}: {sorted(unknown)}")

    kwargs: dict[str, Any] = {}
    for key, raw in data.items():
        current = getattr(defaults, key)
        qualified = f"{section}.{key}"
        if isinstance(current, Decimal):
            kwargs[key] = parse_decimal(raw, qualified)
        elif isinstance(current, int):
            kwargs[key] = parse_int(raw, qualified)
        else:
            kwargs[key] = str(raw)
    return cls(**kwargs)


def parse_settings(data: dict[str, Any], checksum: str = "") -> FinancialSettings:
    """
    Parse a ``FinancialSettings`` from a dict.

    Preconditions:
        - ``data`` carries ``config_id`` and ``version``.
    Postconditions:
        - Sections missing from ``data`` take their dataclass defaults.
    Raises:
        KeyError: if ``config_id`` or ``version`` is missing.
        ValueError: on unknown keys or invalid values.
    """
    return FinancialSettings(
        config_id=str(data["config_id"]),
        version=parse_int(data["version"], "version"),
        reconciliation=_section(ReconciliationSettings, data.get("reconciliation"), "reconciliation"),
        allocation=_section(AllocationSettings, data.get("allocation"), "allocation"),
        forecast=_section(ForecastSettings, data.get("forecast"), "forecast"),
        snapshots=_section(SnapshotSettings, data.get("snapshots"), "snapshots"),
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw settings mapping (sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
