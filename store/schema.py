"""SQLAlchemy table definitions shared by ConfigStore and ExecutionLedger."""

import sqlalchemy as sa

metadata = sa.MetaData()

scheduler_configs = sa.Table(
    "scheduler_configs",
    metadata,
    sa.Column("id",                  sa.Integer,  primary_key=True, autoincrement=True),
    sa.Column("tenant_id",           sa.Integer,  nullable=False),
    sa.Column("user_id",             sa.Integer,  nullable=False),
    sa.Column("is_live",             sa.Boolean,  nullable=False),
    sa.Column("schedule_type",       sa.String,   nullable=False),
    sa.Column("schedule_expression", sa.String,   nullable=False),
    sa.Column("time_of_day",         sa.String,   nullable=False),
    sa.Column("is_enabled",          sa.Boolean,  nullable=False, default=True, index=True),
    sa.Column("webhook_target",      sa.String,   nullable=True),
    sa.Column("last_executed_at",    sa.DateTime(timezone=True), nullable=True),
    sa.Column("next_execution_at",   sa.DateTime(timezone=True), nullable=True),
    sa.Column("execution_count",     sa.Integer,  nullable=False, default=0),
    sa.Column("failure_count",       sa.Integer,  nullable=False, default=0),
    sa.Column("created_at",          sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at",          sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("tenant_id", "user_id", "is_live", name="uq_scheduler_owner"),
)

schedule_executions = sa.Table(
    "schedule_executions",
    metadata,
    sa.Column("id",                    sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("scheduler_config_id",   sa.Integer, nullable=False, index=True),
    sa.Column("execution_time",        sa.DateTime(timezone=True), nullable=False),
    sa.Column("status",                sa.String,  nullable=False),
    sa.Column("trigger_source",        sa.String,  nullable=False),
    sa.Column("external_execution_id", sa.String,  nullable=True),
    sa.Column("error_message",         sa.Text,    nullable=True),
    sa.Column("execution_duration_ms", sa.Integer, nullable=True),
)
