"""Scheduler data models."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, field_validator

TIME_OF_DAY_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


class ScheduleType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED,
})


class TriggerSource(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


def job_key_for(tenant_id: int, is_live: bool, user_id: int) -> str:
    """Stable timer key for one (tenant, environment, user) triple."""
    return f"download_scheduler_{tenant_id}_{'live' if is_live else 'test'}_{user_id}"


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timestamps back naive; everything we write is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SchedulerConfig(BaseModel):
    id: int | None = None
    tenant_id: int
    user_id: int
    is_live: bool
    schedule_type: ScheduleType
    schedule_expression: str
    # HH:MM, display only; schedule_expression is authoritative
    time_of_day: str
    is_enabled: bool = True
    webhook_target: str | None = None
    last_executed_at: datetime | None = None
    next_execution_at: datetime | None = None
    execution_count: int = 0
    failure_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("time_of_day")
    @classmethod
    def check_time_of_day(cls, value: str) -> str:
        if not TIME_OF_DAY_RE.match(value):
            raise ValueError("time_of_day must be HH:MM (24-hour)")
        return value

    @field_validator(
        "last_executed_at", "next_execution_at", "created_at", "updated_at",
    )
    @classmethod
    def normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def job_key(self) -> str:
        return job_key_for(self.tenant_id, self.is_live, self.user_id)


class ScheduleExecution(BaseModel):
    id: int
    scheduler_config_id: int
    execution_time: datetime
    status: ExecutionStatus
    trigger_source: TriggerSource = TriggerSource.SCHEDULED
    external_execution_id: str | None = None
    error_message: str | None = None
    execution_duration_ms: int | None = None

    @field_validator("execution_time")
    @classmethod
    def normalize_execution_time(cls, value: datetime) -> datetime:
        return as_utc(value)


class WorkflowPayload(BaseModel):
    """Body POSTed to the workflow webhook."""
    tenant_id: int
    user_id: int
    is_live: bool
    schedule_type: str
    trigger_source: TriggerSource
    callback_url: str
    scheduler_config_id: int


class TriggerResult(BaseModel):
    success: bool
    external_execution_id: str | None = None
    # True when the webhook returned no id and one was generated locally
    id_synthesized: bool = False
    error: str | None = None
    status_code: int | None = None


class SchedulerStatus(BaseModel):
    config: SchedulerConfig
    is_running: bool
    next_run: datetime | None = None
    last_run: datetime | None = None
    recent_executions: list[ScheduleExecution] = []


class ActiveJob(BaseModel):
    job_key: str
    config: SchedulerConfig
    is_armed: bool
