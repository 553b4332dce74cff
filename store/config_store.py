"""ConfigStore — persistence for the one-per-user SchedulerConfig rows."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.errors import AlreadyExistsError, NotFoundError, ValidationError
from scheduler.expression import is_valid_expression, next_fire_time
from scheduler.models import SchedulerConfig, as_utc
from store.schema import metadata, scheduler_configs

logger = logging.getLogger(__name__)

_t = scheduler_configs


def _to_config(row) -> SchedulerConfig:
    return SchedulerConfig.model_validate(dict(row._mapping))


def _owner(tenant_id: int, is_live: bool, user_id: int):
    return sa.and_(
        _t.c.tenant_id == tenant_id,
        _t.c.is_live == is_live,
        _t.c.user_id == user_id,
    )


class ConfigStore:
    """CRUD for scheduler configurations, unique per (tenant, user, environment)."""

    def __init__(
        self,
        db_url: str = "sqlite+aiosqlite:///scheduler.db",
        default_webhook_target: str | None = None,
        engine: AsyncEngine | None = None,
    ):
        self._engine = engine or create_async_engine(db_url, echo=False)
        self._default_webhook_target = default_webhook_target

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def init(self) -> None:
        """Create tables if they don't exist. Call once at startup."""
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    # ── CRUD ─────────────────────────────────────────────────────────────────

    async def save(self, config: SchedulerConfig, now: datetime | None = None) -> SchedulerConfig:
        """Create (no id) or update (with id) a configuration.

        Raises:
            ValidationError:    schedule_expression is malformed.
            NotFoundError:      update target does not exist for this owner.
            AlreadyExistsError: create for an owner that already has a config.
        """
        if not is_valid_expression(config.schedule_expression):
            raise ValidationError(f"Invalid schedule expression: {config.schedule_expression!r}")

        now = now or datetime.now(timezone.utc)
        stamp = as_utc(now)
        values = {
            "schedule_type":       config.schedule_type.value,
            "schedule_expression": config.schedule_expression,
            "time_of_day":         config.time_of_day,
            "is_enabled":          config.is_enabled,
            "webhook_target":      config.webhook_target or self._default_webhook_target,
            "next_execution_at":   as_utc(next_fire_time(config.schedule_expression, now)),
            "updated_at":          stamp,
        }

        async with self._engine.begin() as conn:
            if config.id is not None:
                result = await conn.execute(
                    sa.update(_t)
                    .where(_t.c.id == config.id)
                    .where(_owner(config.tenant_id, config.is_live, config.user_id))
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Scheduler configuration {config.id} not found")
                config_id = config.id
            else:
                existing = (await conn.execute(
                    sa.select(_t.c.id).where(_owner(config.tenant_id, config.is_live, config.user_id))
                )).first()
                if existing is not None:
                    raise AlreadyExistsError(
                        "User already has a scheduler configuration. Use update instead."
                    )
                try:
                    result = await conn.execute(
                        sa.insert(_t).values(
                            tenant_id=config.tenant_id,
                            user_id=config.user_id,
                            is_live=config.is_live,
                            execution_count=0,
                            failure_count=0,
                            created_at=stamp,
                            **values,
                        )
                    )
                except IntegrityError as e:
                    raise AlreadyExistsError(
                        "User already has a scheduler configuration. Use update instead."
                    ) from e
                config_id = result.inserted_primary_key[0]

            row = (await conn.execute(sa.select(_t).where(_t.c.id == config_id))).one()

        saved = _to_config(row)
        logger.info(
            "Scheduler configuration saved",
            extra={"config_id": saved.id, "tenant_id": saved.tenant_id,
                   "user_id": saved.user_id, "is_enabled": saved.is_enabled},
        )
        return saved

    async def get(self, tenant_id: int, is_live: bool, user_id: int) -> SchedulerConfig | None:
        async with self._engine.connect() as conn:
            row = (await conn.execute(
                sa.select(_t).where(_owner(tenant_id, is_live, user_id))
            )).first()
        return _to_config(row) if row is not None else None

    async def get_by_id(self, config_id: int) -> SchedulerConfig | None:
        async with self._engine.connect() as conn:
            row = (await conn.execute(sa.select(_t).where(_t.c.id == config_id))).first()
        return _to_config(row) if row is not None else None

    async def delete(self, tenant_id: int, is_live: bool, user_id: int) -> None:
        """Delete the owner's configuration. Raises NotFoundError if there is none."""
        async with self._engine.begin() as conn:
            result = await conn.execute(sa.delete(_t).where(_owner(tenant_id, is_live, user_id)))
        if result.rowcount == 0:
            raise NotFoundError("Scheduler configuration not found")
        logger.info(
            "Scheduler configuration deleted",
            extra={"tenant_id": tenant_id, "user_id": user_id, "is_live": is_live},
        )

    async def list_enabled(self) -> list[SchedulerConfig]:
        async with self._engine.connect() as conn:
            rows = (await conn.execute(
                sa.select(_t).where(_t.c.is_enabled.is_(True)).order_by(_t.c.id)
            )).fetchall()
        return [_to_config(r) for r in rows]

    async def mark_executed(
        self,
        config_id: int,
        executed_at: datetime,
        next_execution_at: datetime,
    ) -> None:
        """Record that a firing began and when the next one is due."""
        async with self._engine.begin() as conn:
            await conn.execute(
                sa.update(_t)
                .where(_t.c.id == config_id)
                .values(
                    last_executed_at=as_utc(executed_at),
                    next_execution_at=as_utc(next_execution_at),
                    updated_at=as_utc(executed_at),
                )
            )
