"""
laurel.services.seed — Reward Catalogue Seeder
===============================================

Seeds default reward templates from YAML fixture files in the package's
``seeds/`` directory.

Idempotent: a template whose name already exists for the tenant (or
globally, when seeding without a tenant) is skipped.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from sqlalchemy import select
from sqlalchemy.orm import Session

from laurel.database.models import RewardTemplate
from laurel.services.template_service import create_reward_template

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Resolve the seeds directory relative to the package
_SEEDS_DIR = Path(__file__).resolve().parent.parent / "seeds"


def _load_yaml(filename: str, seeds_dir: Path | None = None) -> Any:
    """Load a YAML file from the seeds directory."""
    path = (seeds_dir or _SEEDS_DIR) / filename
    if not path.exists():
        logger.warning("Seed file not found: %s", path)
        return {}
    with open(path, encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _task_payload(raw: dict) -> dict[str, Any]:
    task = {k: v for k, v in raw.items() if k != "metadata"}
    task["metadata_"] = raw.get("metadata") or {}
    return task


def seed_rewards(
    engine: Engine,
    tenant_id: str | None = None,
    *,
    seeds_dir: Path | None = None,
) -> int:
    """Create the templates listed in ``rewards.yaml``.  Returns how many
    were created."""
    data = _load_yaml("rewards.yaml", seeds_dir)
    if not data or "rewards" not in data:
        return 0

    with Session(engine) as session:
        stmt = select(RewardTemplate.name)
        if tenant_id is None:
            stmt = stmt.where(RewardTemplate.tenant_id.is_(None))
        else:
            stmt = stmt.where(RewardTemplate.tenant_id == tenant_id)
        existing = set(session.scalars(stmt).all())

    count = 0
    for raw in data["rewards"]:
        if raw["name"] in existing:
            logger.info("Reward %r already seeded — skipping.", raw["name"])
            continue
        fields = {k: v for k, v in raw.items() if k not in ("name", "tasks", "metadata")}
        if raw.get("metadata"):
            fields["metadata_"] = raw["metadata"]
        create_reward_template(
            engine,
            name=raw["name"],
            tenant_id=tenant_id,
            tasks=[_task_payload(t) for t in raw.get("tasks") or []],
            **fields,
        )
        count += 1

    logger.info("Seeded %d reward templates (tenant=%s).", count, tenant_id or "global")
    return count
