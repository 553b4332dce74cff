"""Tests for the download-scheduler CLI."""

import json
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from cli.main import cli

OWNER = ["--tenant", "1", "--user", "42"]

CONFIG = {
    "id": 7,
    "tenant_id": 1,
    "user_id": 42,
    "is_live": True,
    "schedule_type": "daily",
    "schedule_expression": "0 23 * * *",
    "time_of_day": "23:00",
    "is_enabled": True,
    "webhook_target": "http://n8n.local/webhook/nav-download-trigger",
    "last_executed_at": None,
    "next_execution_at": "2025-01-15T23:00:00Z",
    "execution_count": 3,
    "failure_count": 1,
}


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_yaml(tmp_path):
    p = tmp_path / "schedule.yaml"
    p.write_text(yaml.dump({"schedule_type": "weekly", "time_of_day": "09:30",
                            "is_enabled": True}))
    return str(p)


def _resp(status=200, data=None):
    return MagicMock(status_code=status, is_error=status >= 400,
                     json=lambda: data if data is not None else {}, text=json.dumps(data))


def _mock_client():
    mc = MagicMock()
    mc.__enter__ = MagicMock(return_value=mc)
    mc.__exit__ = MagicMock(return_value=False)
    return mc


# ── help / identity ───────────────────────────────────────────────────────────


def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for cmd in ("config", "status", "trigger", "active"):
        assert cmd in result.output


def test_config_help(runner):
    result = runner.invoke(cli, ["config", "--help"])
    assert result.exit_code == 0
    for cmd in ("show", "set", "update", "delete"):
        assert cmd in result.output


def test_owner_required(runner):
    with patch("cli.main._client") as mock_factory:
        mock_factory.return_value = _mock_client()
        result = runner.invoke(cli, ["config", "show"])
    assert result.exit_code == 1
    assert "--tenant and --user" in result.output


def test_headers_carry_owner_and_env(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(200, CONFIG)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["--env", "test", "config", "show"])
        assert result.exit_code == 0
        headers = mc.get.call_args.kwargs["headers"]
        assert headers == {"X-Tenant-ID": "1", "X-User-ID": "42", "X-Environment": "test"}


# ── config show ───────────────────────────────────────────────────────────────


def test_config_show(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(200, CONFIG)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["config", "show"])
        assert result.exit_code == 0
        assert "0 23 * * *" in result.output
        assert "enabled" in result.output


def test_config_show_json(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(200, CONFIG)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["--json", "config", "show"])
        assert result.exit_code == 0
        assert json.loads(result.output)["id"] == 7


def test_config_show_not_found(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(404, {"detail": "Scheduler configuration not found"})
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["config", "show"])
        assert result.exit_code == 1
        assert "not found" in result.output


# ── config set / update / delete ──────────────────────────────────────────────


def test_config_set_from_flags(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.post.return_value = _resp(201, CONFIG)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["config", "set", "--type", "daily", "--time", "23:00"])
        assert result.exit_code == 0
        assert "Saved" in result.output
        body = mc.post.call_args.kwargs["json"]
        assert body == {"schedule_type": "daily", "time_of_day": "23:00", "is_enabled": True}


def test_config_set_disabled_with_webhook(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.post.return_value = _resp(201, CONFIG)
        mock_factory.return_value = mc

        runner.invoke(cli, OWNER + ["config", "set", "--type", "daily", "--time", "23:00",
                                    "--disabled", "--webhook", "http://hook"])
        body = mc.post.call_args.kwargs["json"]
        assert body["is_enabled"] is False
        assert body["webhook_target"] == "http://hook"


def test_config_set_from_file(runner, config_yaml):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.post.return_value = _resp(201, CONFIG)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["config", "set", "--file", config_yaml])
        assert result.exit_code == 0
        assert mc.post.call_args.kwargs["json"]["schedule_type"] == "weekly"


def test_config_set_requires_type_and_time(runner):
    result = runner.invoke(cli, OWNER + ["config", "set", "--type", "daily"])
    assert result.exit_code == 1
    assert "--type and --time" in result.output


def test_config_set_conflict(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.post.return_value = _resp(409, {"detail": "User already has a scheduler configuration."})
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["config", "set", "--type", "daily", "--time", "23:00"])
        assert result.exit_code == 1
        assert "already has" in result.output


def test_config_update(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.put.return_value = _resp(200, CONFIG)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["config", "update", "7", "--time", "07:45",
                                             "--expression", "45 7 * * *"])
        assert result.exit_code == 0
        assert mc.put.call_args.args[0] == "/scheduler/config/7"
        assert mc.put.call_args.kwargs["json"] == {"time_of_day": "07:45",
                                                   "schedule_expression": "45 7 * * *"}


def test_config_update_nothing(runner):
    result = runner.invoke(cli, OWNER + ["config", "update", "7"])
    assert result.exit_code == 1
    assert "Nothing to update" in result.output


def test_config_delete(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.delete.return_value = _resp(204)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["config", "delete"])
        assert result.exit_code == 0
        assert "Deleted" in result.output


# ── status ────────────────────────────────────────────────────────────────────


def test_status_table(runner):
    data = {
        "config": CONFIG,
        "is_running": True,
        "next_run": "2025-01-15T23:00:00Z",
        "last_run": None,
        "recent_executions": [
            {"id": 5, "execution_time": "2025-01-14T23:00:00Z", "trigger_source": "scheduled",
             "status": "failed", "execution_duration_ms": 120,
             "error_message": "Workflow failed: boom"},
        ],
    }
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(200, data)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["status"])
        assert result.exit_code == 0
        assert "armed" in result.output
        assert "failed" in result.output
        assert "120ms" in result.output


def test_status_no_executions(runner):
    data = {"config": CONFIG, "is_running": False, "next_run": None, "last_run": None,
            "recent_executions": []}
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(200, data)
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["status"])
        assert result.exit_code == 0
        assert "unarmed" in result.output
        assert "No executions yet" in result.output


# ── trigger ───────────────────────────────────────────────────────────────────


def test_trigger_success(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.post.return_value = _resp(200, {"success": True, "external_execution_id": "exec-9"})
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["trigger"])
        assert result.exit_code == 0
        assert "exec-9" in result.output


def test_trigger_failure_exits_nonzero(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.post.return_value = _resp(200, {"success": False, "error": "HTTP 500: boom"})
        mock_factory.return_value = mc

        result = runner.invoke(cli, OWNER + ["trigger"])
        assert result.exit_code == 1
        assert "HTTP 500" in result.output


# ── active ────────────────────────────────────────────────────────────────────


def test_active_lists_jobs_without_owner(runner):
    unscheduled = {**CONFIG, "next_execution_at": None}
    data = {
        "active_schedulers": [
            {"job_key": "download_scheduler_1_live_42", "config": unscheduled, "is_armed": True},
            {"job_key": "download_scheduler_1_live_43", "config": unscheduled, "is_armed": False},
        ],
        "total_active": 2,
        "unarmed": 1,
    }
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(200, data)
        mock_factory.return_value = mc

        result = runner.invoke(cli, ["active"])
        assert result.exit_code == 0
        assert "download_scheduler_1_live_42" in result.output
        assert "no armed timer" in result.output


def test_active_empty(runner):
    with patch("cli.main._client") as mock_factory:
        mc = _mock_client()
        mc.get.return_value = _resp(200, {"active_schedulers": [], "total_active": 0,
                                          "unarmed": 0})
        mock_factory.return_value = mc

        result = runner.invoke(cli, ["active"])
        assert result.exit_code == 0
        assert "No enabled schedulers" in result.output
