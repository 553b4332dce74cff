"""DownloadScheduler — per-user recurring download jobs.

Each (tenant, environment, user) owns at most one config and one armed
timer.  A firing records a ledger row, calls the workflow webhook, and
re-arms itself from the freshly re-read config, so the persisted
``is_enabled`` flag is always what decides whether the chain continues.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from core.errors import NotFoundError, ValidationError
from core.logging_config import job_context
from core.settings import SchedulerSettings
from scheduler.expression import is_valid_expression, next_fire_time
from scheduler.models import (
    ActiveJob,
    ExecutionStatus,
    SchedulerConfig,
    SchedulerStatus,
    TriggerResult,
    TriggerSource,
    WorkflowPayload,
    job_key_for,
)
from scheduler.timers import TimerRegistry
from scheduler.trigger import Trigger
from store.config_store import ConfigStore
from store.execution_ledger import ExecutionLedger

logger = logging.getLogger(__name__)


class DownloadScheduler:
    """The only entry point callers use: config lifecycle, timers and firings."""

    def __init__(
        self,
        config_store: ConfigStore,
        ledger: ExecutionLedger,
        trigger: Trigger,
        timers: TimerRegistry | None = None,
        settings: SchedulerSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._configs = config_store
        self._ledger = ledger
        self._trigger = trigger
        self._timers = timers or TimerRegistry()
        self._settings = settings or SchedulerSettings()
        self._clock = clock or (lambda: datetime.now(self._settings.tzinfo))

    @property
    def timers(self) -> TimerRegistry:
        return self._timers

    # ── Configuration ────────────────────────────────────────────────────────

    async def save_config(self, config: SchedulerConfig) -> SchedulerConfig:
        """Create or update a config, then arm or disarm its timer to match."""
        if not config.webhook_target:
            config = config.model_copy(update={"webhook_target": self._settings.default_webhook_target})
        saved = await self._configs.save(config, now=self._clock())
        if saved.is_enabled:
            self.start_job(saved)
        else:
            self.stop_job(saved)
        return saved

    async def get_config(self, tenant_id: int, is_live: bool, user_id: int) -> SchedulerConfig | None:
        return await self._configs.get(tenant_id, is_live, user_id)

    async def delete_config(self, tenant_id: int, is_live: bool, user_id: int) -> None:
        """Disarm the job, then delete the config. NotFoundError if absent."""
        self._timers.disarm(job_key_for(tenant_id, is_live, user_id))
        await self._configs.delete(tenant_id, is_live, user_id)

    # ── Job control ──────────────────────────────────────────────────────────

    def start_job(self, config: SchedulerConfig) -> datetime:
        """(Re)arm the timer for *config*. Returns the fire time."""
        if not is_valid_expression(config.schedule_expression):
            raise ValidationError(
                f"Cannot arm {config.job_key}: invalid expression {config.schedule_expression!r}"
            )
        now = self._clock()
        fire_at = config.next_execution_at
        if fire_at is None or fire_at <= now:
            # stale after a restart or a long execution
            fire_at = next_fire_time(config.schedule_expression, now)

        self._timers.arm(
            config.job_key,
            fire_at,
            lambda: self.execute_and_reschedule(config),
            config=config,
        )
        logger.info(
            "Scheduler started",
            extra={"job_key": config.job_key, "config_id": config.id,
                   "expression": config.schedule_expression,
                   "next_run": fire_at.isoformat()},
        )
        return fire_at

    def stop_job(self, config: SchedulerConfig) -> bool:
        stopped = self._timers.disarm(config.job_key)
        if stopped:
            logger.info("Scheduler stopped", extra={"job_key": config.job_key})
        return stopped

    async def execute_and_reschedule(self, config: SchedulerConfig) -> None:
        """Timer callback: run one firing, then re-arm from the fresh config."""
        with job_context(config.job_key, config_id=config.id):
            try:
                await self._execute(config)
            except Exception:
                logger.exception("Scheduled download crashed")
            finally:
                await self._reschedule(config)

    async def _execute(self, config: SchedulerConfig) -> None:
        started = time.monotonic()
        now = self._clock()
        execution = await self._ledger.create_running(config.id, TriggerSource.SCHEDULED, now=now)
        try:
            await self._configs.mark_executed(
                config.id, now, next_fire_time(config.schedule_expression, now),
            )
        except Exception as e:
            result = TriggerResult(success=False, error=str(e))
            logger.exception("Failed to record execution progress",
                             extra={"config_id": config.id})
        else:
            result = await self._fire_workflow(config, TriggerSource.SCHEDULED)

        duration_ms = int((time.monotonic() - started) * 1000)
        if result.success:
            await self._ledger.complete(
                execution.id,
                ExecutionStatus.SUCCESS,
                external_execution_id=result.external_execution_id,
                duration_ms=duration_ms,
            )
            await self._ledger.increment_execution_count(config.id)
            logger.info(
                "Scheduled download executed successfully",
                extra={"config_id": config.id, "execution_id": execution.id,
                       "external_execution_id": result.external_execution_id,
                       "duration_ms": duration_ms},
            )
        else:
            await self._ledger.complete(
                execution.id,
                ExecutionStatus.FAILED,
                error_message=f"Workflow failed: {result.error}",
                duration_ms=duration_ms,
            )
            await self._ledger.increment_execution_count(config.id)
            await self._ledger.increment_failure_count(config.id)
            logger.error(
                "Scheduled download failed",
                extra={"config_id": config.id, "execution_id": execution.id,
                       "error": result.error, "duration_ms": duration_ms},
            )

    async def _reschedule(self, config: SchedulerConfig) -> None:
        try:
            fresh = await self._configs.get_by_id(config.id)
            if fresh is None or not fresh.is_enabled:
                logger.info("Scheduler lapsed: config disabled or deleted",
                            extra={"config_id": config.id})
                return
            self.start_job(fresh)
        except Exception:
            logger.exception("Failed to schedule next execution", extra={"config_id": config.id})

    async def manual_trigger(self, tenant_id: int, is_live: bool, user_id: int) -> TriggerResult:
        """Fire the workflow once, outside the schedule. Timers are untouched."""
        config = await self._configs.get(tenant_id, is_live, user_id)
        if config is None:
            raise NotFoundError("No scheduler configuration found")

        with job_context(config.job_key, config_id=config.id):
            started = time.monotonic()
            execution = await self._ledger.create_running(
                config.id, TriggerSource.MANUAL, now=self._clock(),
            )
            result = await self._fire_workflow(config, TriggerSource.MANUAL)
            await self._ledger.complete(
                execution.id,
                ExecutionStatus.SUCCESS if result.success else ExecutionStatus.FAILED,
                external_execution_id=result.external_execution_id,
                error_message=result.error,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            logger.info(
                "Manual download trigger completed",
                extra={"config_id": config.id, "success": result.success,
                       "external_execution_id": result.external_execution_id},
            )
            return result

    # ── Process lifecycle ────────────────────────────────────────────────────

    async def initialize_all(self) -> int:
        """Arm every enabled config. Returns how many were armed.

        A config that fails to arm is logged and skipped.
        """
        self._timers.start()
        configs = await self._configs.list_enabled()
        logger.info("Initializing schedulers on startup", extra={"total_configs": len(configs)})

        armed = 0
        for config in configs:
            try:
                self.start_job(config)
                armed += 1
            except Exception:
                logger.exception(
                    "Failed to initialize scheduler for config",
                    extra={"config_id": config.id, "tenant_id": config.tenant_id,
                           "user_id": config.user_id},
                )
        logger.info("Scheduler initialization completed",
                    extra={"total_configs": len(configs), "active_timers": armed})
        return armed

    async def shutdown_all(self) -> None:
        cleared = self._timers.clear()
        logger.info("All schedulers stopped", extra={"active_timers": cleared})

    # ── Reporting ────────────────────────────────────────────────────────────

    async def get_status(self, tenant_id: int, is_live: bool, user_id: int) -> SchedulerStatus:
        config = await self._configs.get(tenant_id, is_live, user_id)
        if config is None:
            raise NotFoundError("Scheduler configuration not found")

        timer = self._timers.get(config.job_key)
        recent = await self._ledger.recent_executions(
            config.id, limit=self._settings.recent_executions_limit,
        )
        return SchedulerStatus(
            config=config,
            is_running=timer is not None,
            next_run=timer.fire_at if timer else config.next_execution_at,
            last_run=config.last_executed_at,
            recent_executions=recent,
        )

    async def list_all_active(self) -> list[ActiveJob]:
        """Every enabled config with whether its timer is armed."""
        jobs = [
            ActiveJob(job_key=c.job_key, config=c, is_armed=self._timers.is_armed(c.job_key))
            for c in await self._configs.list_enabled()
        ]
        unarmed = [j.job_key for j in jobs if not j.is_armed]
        if unarmed:
            logger.warning("Enabled schedulers without an armed timer",
                           extra={"job_keys": unarmed})
        return jobs

    # ── Internal ──────────────────────────────────────────────────────────────

    async def _fire_workflow(self, config: SchedulerConfig, source: TriggerSource) -> TriggerResult:
        """Call the webhook; an exception becomes a failed result so the ledger row still closes."""
        try:
            return await self._trigger.trigger(
                config.webhook_target or self._settings.default_webhook_target,
                self._payload(config, source),
            )
        except Exception as e:
            logger.exception("Workflow trigger raised",
                             extra={"config_id": config.id, "trigger_source": source.value})
            return TriggerResult(success=False, error=str(e))

    def _payload(self, config: SchedulerConfig, source: TriggerSource) -> WorkflowPayload:
        return WorkflowPayload(
            tenant_id=config.tenant_id,
            user_id=config.user_id,
            is_live=config.is_live,
            schedule_type=config.schedule_type.value,
            trigger_source=source,
            callback_url=self._settings.callback_url,
            scheduler_config_id=config.id,
        )
