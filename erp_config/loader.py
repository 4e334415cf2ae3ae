"""
Configuration Loader (``erp_config.loader``).

Responsibility
--------------
Reads ``defaults.yaml``, overlays an optional YAML file and environment
overrides, and parses the merged mapping into ``erp_config.schema``
dataclasses.  Runtime callers go through ``erp_config.get_active_settings()``.

Architecture position
---------------------
**Config layer**.  Depends on ``erp_engines.pricing`` for the policy type
only; no dependency on kernel services or modules.

Invariants enforced
-------------------
* Overlays merge key-by-key; nested sections are merged, scalars replaced.
* Unknown keys raise ``ValueError``; no silent defaults for typos.
* ``compute_checksum`` is deterministic over the merged mapping.

Failure modes
-------------
* Missing overlay file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from erp_config.schema import (
    ErpSettings,
    InventoryDefaults,
    LockSettings,
    NumberingSettings,
    PricingSettings,
    SalesSettings,
)
from erp_engines.pricing import PricingPolicy

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_FILE_ENV = "ERP_CONFIG_FILE"
DATABASE_URL_ENV = "ERP_DATABASE_URL"

_SECTIONS = frozenset({"database_url", "pricing", "locks", "numbering", "inventory", "sales"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive merge; ``overlay`` wins on scalars."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _decimal(section: str, key: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{section}.{key}: not a number: {value!r}") from exc


def _only(section: str, data: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"{section}: unknown keys {sorted(unknown)}")


def parse_policy(name: str, data: Mapping[str, Any]) -> PricingPolicy:
    section = f"pricing.{name}"
    _only(section, data, {"tax_rate", "free_shipping_threshold", "shipping_fee"})
    return PricingPolicy(
        name=name,
        tax_rate=_decimal(section, "tax_rate", data["tax_rate"]),
        free_shipping_threshold=_decimal(
            section, "free_shipping_threshold", data["free_shipping_threshold"]
        ),
        shipping_fee=_decimal(section, "shipping_fee", data["shipping_fee"]),
    )


def parse_settings(data: Mapping[str, Any]) -> ErpSettings:
    """Parse a merged mapping into ``ErpSettings``."""
    _only("settings", data, set(_SECTIONS))

    pricing = data.get("pricing", {})
    _only("pricing", pricing, {"sales", "purchase"})
    locks = data.get("locks", {})
    _only("locks", locks, {"timeout_seconds", "max_attempts", "backoff_seconds"})
    numbering = data.get("numbering", {})
    _only("numbering", numbering, {"order_prefix", "purchase_prefix", "width"})
    inventory = data.get("inventory", {})
    _only("inventory", inventory, {"minimum_stock", "maximum_stock"})
    sales = data.get("sales", {})
    _only("sales", sales, {"expected_delivery_days"})

    return ErpSettings(
        database_url=str(data.get("database_url", "sqlite://")),
        pricing=PricingSettings(
            sales=parse_policy("sales", pricing["sales"]),
            purchase=parse_policy("purchase", pricing["purchase"]),
        ),
        locks=LockSettings(
            timeout_seconds=float(locks.get("timeout_seconds", 5.0)),
            max_attempts=int(locks.get("max_attempts", 3)),
            backoff_seconds=float(locks.get("backoff_seconds", 0.05)),
        ),
        numbering=NumberingSettings(
            order_prefix=str(numbering.get("order_prefix", "ORD")),
            purchase_prefix=str(numbering.get("purchase_prefix", "PO")),
            width=int(numbering.get("width", 4)),
        ),
        inventory=InventoryDefaults(
            minimum_stock=int(inventory.get("minimum_stock", 10)),
            maximum_stock=int(inventory.get("maximum_stock", 1000)),
        ),
        sales=SalesSettings(
            expected_delivery_days=int(sales.get("expected_delivery_days", 7)),
        ),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ErpSettings:
    """
    Build settings from defaults, an overlay file and the environment.

    Precedence (lowest first): ``defaults.yaml``; ``path`` or, when it is
    None, the file named by ``ERP_CONFIG_FILE``; ``ERP_DATABASE_URL``.
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)

    overlay_path = path or (Path(env[CONFIG_FILE_ENV]) if env.get(CONFIG_FILE_ENV) else None)
    if overlay_path is not None:
        data = merge(data, load_yaml_file(overlay_path))

    if env.get(DATABASE_URL_ENV):
        data = merge(data, {"database_url": env[DATABASE_URL_ENV]})

    return parse_settings(data)
