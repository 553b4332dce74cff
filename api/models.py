"""API request and response models."""

from pydantic import BaseModel

from scheduler.models import ActiveJob, ScheduleType


class SaveConfigRequest(BaseModel):
    schedule_type: ScheduleType
    # HH:MM, checked by build_expression so a bad value maps to 400
    time_of_day: str
    is_enabled: bool
    # Derived from schedule_type + time_of_day when omitted
    schedule_expression: str | None = None
    webhook_target: str | None = None


class UpdateConfigRequest(BaseModel):
    schedule_type: ScheduleType | None = None
    time_of_day: str | None = None
    is_enabled: bool | None = None
    schedule_expression: str | None = None
    webhook_target: str | None = None


class AllActiveResponse(BaseModel):
    active_schedulers: list[ActiveJob]
    total_active: int
    # Enabled but no armed timer: a missed start, worth alerting on
    unarmed: int
