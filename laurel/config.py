"""
laurel.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for soft settings.  Secrets and infrastructure
(``DATABASE_URL``) come from the environment / ``.env`` instead.

Usage::

    from laurel.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.page_size)         # 20
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LaurelConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default, so an empty file is a valid config.
    """

    # Tenant used by CLI commands when none is given
    tenant_id: str | None = None

    # Hide templates outside their [starts_at, ends_at] window
    enforce_schedule: bool = True

    page_size: int = 20

    # Threads serving the fire-and-forget side-effect queue
    side_effect_workers: int = 4

    voucher_prefix: str = "RV"

    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> LaurelConfig:
    """Read *path* and return a :class:`LaurelConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If ``log_level`` is not a standard logging level name.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    log_level = str(raw.get("log_level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"Invalid log_level {raw.get('log_level')!r} in {config_path}")

    return LaurelConfig(
        tenant_id=str(raw["tenant_id"]) if raw.get("tenant_id") else None,
        enforce_schedule=bool(raw.get("enforce_schedule", True)),
        page_size=int(raw.get("page_size", 20)),
        side_effect_workers=int(raw.get("side_effect_workers", 4)),
        voucher_prefix=str(raw.get("voucher_prefix", "RV")),
        log_level=log_level,
    )
