"""
erp_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_settings()`` is the only way components obtain settings.
    No other module reads configuration files or environment variables.

Architecture position:
    Configuration.  Sits above ``erp_kernel``; the kernel MUST NEVER import
    from ``erp_config``.  ``erp_config.bridges`` turns settings into kernel
    objects, and module configs take settings via ``from_settings``.

Failure modes:
    - ``FileNotFoundError`` -- the overlay file does not exist.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    Every call emits an ``ERP_CONFIG_TRACE`` log entry with the checksum
    of the merged configuration.
"""

from __future__ import annotations

from pathlib import Path

from erp_config.loader import load_settings
from erp_config.schema import (
    ErpSettings,
    InventoryDefaults,
    LockSettings,
    NumberingSettings,
    PricingSettings,
    SalesSettings,
)
from erp_kernel.logging_config import get_logger

_logger = get_logger("config")


def get_active_settings(path: Path | None = None) -> ErpSettings:
    """
    Load, merge and validate the active settings.

    Args:
        path: Overlay YAML file.  Defaults to ``$ERP_CONFIG_FILE`` if set.
    """
    settings = load_settings(path)
    _logger.info(
        "ERP_CONFIG_TRACE",
        extra={
            "trace_type": "ERP_CONFIG_TRACE",
            "checksum": settings.checksum,
            "overlay": str(path) if path else None,
            "database_backend": settings.database_url.split(":", 1)[0],
        },
    )
    return settings


__all__ = [
    "ErpSettings",
    "InventoryDefaults",
    "LockSettings",
    "NumberingSettings",
    "PricingSettings",
    "SalesSettings",
    "get_active_settings",
]
