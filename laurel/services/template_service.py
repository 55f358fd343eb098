"""
laurel.services.template_service — Reward Template Store
=========================================================

Tenant-scoped CRUD for reward templates and their tasks.  A template with
``tenant_id = NULL`` is global and visible to every tenant.  Badge
references arriving in a payload are normalized to plain id strings here,
once, so nothing downstream has to re-inspect their shape.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from laurel.database.models import (
    ActivityHistory,
    RewardActivity,
    RewardTask,
    RewardTemplate,
)
from laurel.engine.badges import normalize_badge_ref
from laurel.errors import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.sql import Select

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns a caller may set directly on a template
TEMPLATE_FIELDS = frozenset({
    "name", "description", "category", "reward_type", "points", "badge_id",
    "voucher_template", "tags", "is_featured", "is_active", "starts_at",
    "ends_at", "metadata_", "created_by",
})
TASK_FIELDS = frozenset({
    "id", "title", "description", "action_type", "metric", "target_value",
    "points", "badge_id", "is_automated", "metadata_",
})


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a paginated listing."""

    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def paginate(session: Session, stmt: Select, *, page: int, limit: int) -> Page:
    """Run *stmt* for one page and count the full result set."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    items = list(session.scalars(stmt.offset((page - 1) * limit).limit(limit)).unique().all())
    return Page(items=items, page=page, limit=limit, total=total or 0)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------
def _clean_template_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - TEMPLATE_FIELDS
    if unknown:
        raise ValueError(f"Unknown reward template fields: {sorted(unknown)}")
    if "badge_id" in fields:
        fields = {**fields, "badge_id": normalize_badge_ref(fields["badge_id"])}
    return fields


def _build_tasks(tasks: Iterable[dict[str, Any]]) -> list[RewardTask]:
    built = []
    for position, payload in enumerate(tasks):
        unknown = set(payload) - TASK_FIELDS
        if unknown:
            raise ValueError(f"Unknown reward task fields: {sorted(unknown)}")
        values = dict(payload)
        if values.get("id") is None:
            values.pop("id", None)
        else:
            values["id"] = str(values["id"])
        values["badge_id"] = normalize_badge_ref(values.get("badge_id"))
        built.append(RewardTask(position=position, **values))
    return built


def _tenant_clause(tenant_id: str | None):
    return or_(RewardTemplate.tenant_id == tenant_id, RewardTemplate.tenant_id.is_(None))


def _load(session: Session, reward_id: int, tenant_id: str | None) -> RewardTemplate:
    stmt = (
        select(RewardTemplate)
        .where(RewardTemplate.id == reward_id)
        .options(selectinload(RewardTemplate.tasks))
    )
    if tenant_id is not None:
        stmt = stmt.where(_tenant_clause(tenant_id))
    reward = session.scalar(stmt)
    if reward is None:
        raise NotFoundError(f"Reward {reward_id} not found")
    return reward


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def create_reward_template(
    engine: Engine,
    *,
    name: str,
    tasks: Sequence[dict[str, Any]] = (),
    tenant_id: str | None = None,
    **fields: Any,
) -> RewardTemplate:
    """Insert a template and its tasks.  Tasks keep the order given."""
    fields = _clean_template_fields(fields)
    with Session(engine, expire_on_commit=False) as session:
        reward = RewardTemplate(name=name, tenant_id=tenant_id, **fields)
        reward.tasks = _build_tasks(tasks)
        session.add(reward)
        session.commit()
        session.refresh(reward)
        _ = reward.tasks
        logger.info(
            "Created reward template %d %r (%d tasks, tenant=%s)",
            reward.id, name, len(reward.tasks), tenant_id or "global",
        )
        return reward


def get_reward_template(
    engine: Engine, reward_id: int, tenant_id: str | None = None
) -> RewardTemplate:
    with Session(engine) as session:
        return _load(session, reward_id, tenant_id)


def update_reward_template(
    engine: Engine,
    reward_id: int,
    *,
    tenant_id: str | None = None,
    tasks: Sequence[dict[str, Any]] | None = None,
    **fields: Any,
) -> RewardTemplate:
    """Patch *fields* on a template; ``tasks`` replaces the whole task list.

    Task dicts carrying an existing ``id`` update that task in place so
    user progress keyed on it survives the edit.
    """
    fields = _clean_template_fields(fields)
    with Session(engine, expire_on_commit=False) as session:
        reward = _load(session, reward_id, tenant_id)
        for key, value in fields.items():
            setattr(reward, key, value)

        if tasks is not None:
            existing = {task.id: task for task in reward.tasks}
            replacement = []
            for position, payload in enumerate(tasks):
                task_id = payload.get("id")
                current = existing.get(str(task_id)) if task_id is not None else None
                if current is None:
                    replacement.extend(_build_tasks([payload]))
                    replacement[-1].position = position
                    continue
                for key, value in payload.items():
                    if key not in TASK_FIELDS:
                        raise ValueError(f"Unknown reward task field: {key}")
                    if key == "id":
                        continue
                    if key == "badge_id":
                        value = normalize_badge_ref(value)
                    setattr(current, key, value)
                current.position = position
                replacement.append(current)
            reward.tasks = replacement

        reward.updated_at = datetime.now(UTC)
        session.commit()
        session.refresh(reward)
        _ = reward.tasks
        logger.info("Updated reward template %d (%s)", reward_id, ", ".join(sorted(fields)) or "tasks")
        return reward


def delete_reward_template(
    engine: Engine, reward_id: int, tenant_id: str | None = None
) -> int:
    """Delete a template, its tasks, every activity on it and their history.

    Returns the number of activities removed.
    """
    with Session(engine) as session:
        reward = _load(session, reward_id, tenant_id)
        activity_ids = select(RewardActivity.id).where(RewardActivity.reward_id == reward_id)
        session.execute(
            delete(ActivityHistory).where(ActivityHistory.activity_id.in_(activity_ids))
        )
        removed = session.execute(
            delete(RewardActivity).where(RewardActivity.reward_id == reward_id)
        ).rowcount
        session.delete(reward)
        session.commit()
    logger.info("Deleted reward template %d and %d activities", reward_id, removed)
    return removed


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------
def _schedule_clause(now: datetime):
    return (
        or_(RewardTemplate.starts_at.is_(None), RewardTemplate.starts_at <= now),
        or_(RewardTemplate.ends_at.is_(None), RewardTemplate.ends_at >= now),
    )


def list_reward_templates(
    engine: Engine,
    *,
    tenant_id: str | None = None,
    is_active: bool | None = True,
    categories: Sequence[str] | None = None,
    reward_type: str | None = None,
    featured: bool | None = None,
    enforce_schedule: bool = True,
    page: int = 1,
    limit: int = 20,
    now: datetime | None = None,
) -> Page[RewardTemplate]:
    """Filtered, paginated template listing, featured first then newest."""
    stmt = select(RewardTemplate).options(selectinload(RewardTemplate.tasks))
    if tenant_id is not None:
        stmt = stmt.where(_tenant_clause(tenant_id))
    if is_active is not None:
        stmt = stmt.where(RewardTemplate.is_active.is_(is_active))
    if categories:
        stmt = stmt.where(RewardTemplate.category.in_(list(categories)))
    if reward_type:
        stmt = stmt.where(RewardTemplate.reward_type == reward_type)
    if featured is not None:
        stmt = stmt.where(RewardTemplate.is_featured.is_(featured))
    if enforce_schedule:
        stmt = stmt.where(*_schedule_clause(now or datetime.now(UTC)))
    stmt = stmt.order_by(
        RewardTemplate.is_featured.desc(),
        RewardTemplate.created_at.desc(),
        RewardTemplate.id.desc(),
    )
    with Session(engine) as session:
        return paginate(session, stmt, page=page, limit=limit)


def list_active_templates(
    engine: Engine,
    *,
    action_types: Iterable[str] | None = None,
    tenant_id: str | None = None,
    enforce_schedule: bool = True,
    now: datetime | None = None,
) -> list[RewardTemplate]:
    """Active templates (tasks loaded) having a task of one of *action_types*."""
    stmt = (
        select(RewardTemplate)
        .where(RewardTemplate.is_active.is_(True))
        .options(selectinload(RewardTemplate.tasks))
        .order_by(RewardTemplate.id)
    )
    if tenant_id is not None:
        stmt = stmt.where(_tenant_clause(tenant_id))
    if enforce_schedule:
        stmt = stmt.where(*_schedule_clause(now or datetime.now(UTC)))
    if action_types is not None:
        stmt = stmt.where(
            RewardTemplate.tasks.any(RewardTask.action_type.in_(list(action_types)))
        )
    with Session(engine) as session:
        return list(session.scalars(stmt).all())
