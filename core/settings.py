"""Runtime configuration, read from the environment."""

from __future__ import annotations

import os
from zoneinfo import ZoneInfo

from pydantic import BaseModel, field_validator

# Fixed upper bound on a single webhook call, in seconds
TRIGGER_TIMEOUT = 30.0


class SchedulerSettings(BaseModel):
    db_url: str = "sqlite+aiosqlite:///scheduler.db"
    n8n_base_url: str = "http://localhost:5678"
    n8n_webhook_name: str = "nav-download-trigger"
    api_base_url: str = "http://localhost:8080"
    callback_path: str = "/api/nav/download/daily"
    timezone: str = "UTC"
    recent_executions_limit: int = 10
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        ZoneInfo(value)   # raises ZoneInfoNotFoundError for unknown names
        return value

    @property
    def default_webhook_target(self) -> str:
        return f"{self.n8n_base_url.rstrip('/')}/webhook/{self.n8n_webhook_name}"

    @property
    def callback_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}{self.callback_path}"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> SchedulerSettings:
        """Build settings from environment variables, keeping defaults for unset keys."""
        env_map = {
            "db_url": "SCHEDULER_DB_URL",
            "n8n_base_url": "N8N_BASE_URL",
            "n8n_webhook_name": "N8N_NAV_WEBHOOK_NAME",
            "api_base_url": "API_BASE_URL",
            "callback_path": "SCHEDULER_CALLBACK_PATH",
            "timezone": "SCHEDULER_TIMEZONE",
            "recent_executions_limit": "SCHEDULER_RECENT_LIMIT",
            "log_level": "LOG_LEVEL",
            "log_json": "LOG_JSON",
        }
        values = {
            field: os.environ[var]
            for field, var in env_map.items()
            if os.environ.get(var)
        }
        return cls(**values)
