"""ExecutionLedger — append-only record of firing attempts, plus config counters."""

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine

from core.errors import NotFoundError, ValidationError
from scheduler.models import (
    TERMINAL_STATUSES,
    ExecutionStatus,
    ScheduleExecution,
    TriggerSource,
    as_utc,
)
from store.schema import schedule_executions, scheduler_configs

_ex = schedule_executions
_cfg = scheduler_configs


def _to_execution(row) -> ScheduleExecution:
    return ScheduleExecution.model_validate(dict(row._mapping))


class ExecutionLedger:
    """Persist and query ScheduleExecution rows.

    Shares the ConfigStore's engine, so counters and ledger rows live in
    the same database and ConfigStore.init() creates both tables.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    # ── Ledger rows ──────────────────────────────────────────────────────────

    async def create_running(
        self,
        config_id: int,
        trigger_source: TriggerSource = TriggerSource.SCHEDULED,
        now: datetime | None = None,
    ) -> ScheduleExecution:
        """Insert a new attempt in status ``running``."""
        started = as_utc(now or datetime.now(timezone.utc))
        async with self._engine.begin() as conn:
            result = await conn.execute(
                sa.insert(_ex).values(
                    scheduler_config_id=config_id,
                    execution_time=started,
                    status=ExecutionStatus.RUNNING.value,
                    trigger_source=TriggerSource(trigger_source).value,
                )
            )
            execution_id = result.inserted_primary_key[0]
            row = (await conn.execute(sa.select(_ex).where(_ex.c.id == execution_id))).one()
        return _to_execution(row)

    async def complete(
        self,
        execution_id: int,
        status: ExecutionStatus,
        external_execution_id: str | None = None,
        error_message: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Move a running attempt to its terminal status.

        Fields left as None are not written. Only a ``running`` row can be
        completed, so each attempt gets exactly one terminal update.
        """
        status = ExecutionStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValidationError(f"'{status.value}' is not a terminal execution status")

        updates: dict = {"status": status.value}
        optional = {
            "external_execution_id": external_execution_id,
            "error_message": error_message,
            "execution_duration_ms": duration_ms,
        }
        updates.update({k: v for k, v in optional.items() if v is not None})

        async with self._engine.begin() as conn:
            result = await conn.execute(
                sa.update(_ex)
                .where(_ex.c.id == execution_id)
                .where(_ex.c.status == ExecutionStatus.RUNNING.value)
                .values(**updates)
            )
            if result.rowcount == 0:
                exists = (await conn.execute(
                    sa.select(_ex.c.status).where(_ex.c.id == execution_id)
                )).first()
                if exists is None:
                    raise NotFoundError(f"Execution {execution_id} not found")
                raise ValidationError(
                    f"Execution {execution_id} is already '{exists.status}'"
                )

    async def get(self, execution_id: int) -> ScheduleExecution:
        async with self._engine.connect() as conn:
            row = (await conn.execute(sa.select(_ex).where(_ex.c.id == execution_id))).first()
        if row is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        return _to_execution(row)

    async def recent_executions(self, config_id: int, limit: int = 10) -> list[ScheduleExecution]:
        """Most recent attempts for a config, newest first."""
        async with self._engine.connect() as conn:
            rows = (await conn.execute(
                sa.select(_ex)
                .where(_ex.c.scheduler_config_id == config_id)
                .order_by(_ex.c.execution_time.desc(), _ex.c.id.desc())
                .limit(limit)
            )).fetchall()
        return [_to_execution(r) for r in rows]

    # ── Counters on the owning config ────────────────────────────────────────

    async def increment_execution_count(self, config_id: int) -> None:
        await self._bump(config_id, _cfg.c.execution_count)

    async def increment_failure_count(self, config_id: int) -> None:
        await self._bump(config_id, _cfg.c.failure_count)

    async def _bump(self, config_id: int, column: sa.Column) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                sa.update(_cfg)
                .where(_cfg.c.id == config_id)
                .values({column: column + 1})
            )
