"""Download Scheduler CLI — interact with a running scheduler API server."""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import httpx
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

_STATUS_COLOR: dict[str, str] = {
    "success": "green",
    "failed": "red",
    "running": "yellow",
    "skipped": "dim",
    "armed": "green",
    "unarmed": "red",
    "enabled": "green",
    "disabled": "yellow",
}


# ── Internal helpers ──────────────────────────────────────────────────────────


def _color(status: str) -> str:
    return _STATUS_COLOR.get(status, "white")


def _client(url: str) -> httpx.Client:
    return httpx.Client(base_url=url.rstrip("/"), timeout=30)


def _headers(obj: dict) -> dict[str, str]:
    if obj.get("tenant") is None or obj.get("user") is None:
        _die("--tenant and --user are required for this command")
    return {
        "X-Tenant-ID": str(obj["tenant"]),
        "X-User-ID": str(obj["user"]),
        "X-Environment": obj["env"],
    }


def _load_file(path: str) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) if path.endswith((".yaml", ".yml")) else json.load(f)


def _die(msg: str, code: int = 1) -> None:
    err_console.print(f"[red]Error:[/] {msg}")
    sys.exit(code)


def _check(resp: httpx.Response) -> None:
    if resp.status_code in (400, 404, 409):
        _die(resp.json().get("detail", "Request rejected"))
    if resp.is_error:
        _die(f"HTTP {resp.status_code}: {resp.text}")


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.option(
    "--url", "-u",
    default="http://localhost:8080",
    envvar="SCHEDULER_URL",
    show_default=True,
    help="Scheduler API base URL.",
)
@click.option("--tenant", "-t", type=int, envvar="SCHEDULER_TENANT_ID",
              help="Tenant ID.")
@click.option("--user", "-U", "user", type=int, envvar="SCHEDULER_USER_ID",
              help="User ID.")
@click.option("--env", "env", type=click.Choice(["live", "test"]), default="live",
              show_default=True, help="Environment.")
@click.option("--json", "json_output", is_flag=True, help="Output raw JSON.")
@click.pass_context
def cli(
    ctx: click.Context,
    url: str,
    tenant: int | None,
    user: int | None,
    env: str,
    json_output: bool,
) -> None:
    """Download Scheduler — manage recurring download jobs."""
    ctx.ensure_object(dict)
    ctx.obj.update(url=url, tenant=tenant, user=user, env=env, json_output=json_output)


# ── scheduler config ──────────────────────────────────────────────────────────


@cli.group("config")
def config() -> None:
    """Manage the scheduler configuration."""


@config.command("show")
@click.pass_obj
def config_show(obj: dict) -> None:
    """Show the current configuration."""
    with _client(obj["url"]) as c:
        resp = c.get("/scheduler/config", headers=_headers(obj))
    _check(resp)
    data = resp.json()
    if obj["json_output"]:
        _echo_json(data)
        return
    _print_config(data)


@config.command("set")
@click.option("--file", "file", type=click.Path(exists=True), help="YAML or JSON config file.")
@click.option("--type", "schedule_type", type=click.Choice(["daily", "weekly", "custom"]))
@click.option("--time", "time_of_day", metavar="HH:MM", help="Time of day (24-hour).")
@click.option("--expression", help="Explicit schedule expression (5 fields).")
@click.option("--webhook", "webhook_target", help="Workflow webhook URL.")
@click.option("--enabled/--disabled", "is_enabled", default=True, show_default=True)
@click.pass_obj
def config_set(
    obj: dict,
    file: str | None,
    schedule_type: str | None,
    time_of_day: str | None,
    expression: str | None,
    webhook_target: str | None,
    is_enabled: bool,
) -> None:
    """Create the configuration from flags or a file.

    \b
    File format (YAML example):
      schedule_type: daily
      time_of_day: "23:00"
      is_enabled: true
    """
    if file:
        payload = _load_file(file)
    else:
        if not schedule_type or not time_of_day:
            _die("--type and --time are required unless --file is given")
        payload = {"schedule_type": schedule_type, "time_of_day": time_of_day,
                   "is_enabled": is_enabled}
        if expression:
            payload["schedule_expression"] = expression
        if webhook_target:
            payload["webhook_target"] = webhook_target

    with _client(obj["url"]) as c:
        resp = c.post("/scheduler/config", json=payload, headers=_headers(obj))
    _check(resp)
    data = resp.json()
    if obj["json_output"]:
        _echo_json(data)
        return
    click.echo(f"Saved  config {data['id']}  next: {data.get('next_execution_at') or '-'}")


@config.command("update")
@click.argument("config_id", type=int)
@click.option("--type", "schedule_type", type=click.Choice(["daily", "weekly", "custom"]))
@click.option("--time", "time_of_day", metavar="HH:MM")
@click.option("--expression")
@click.option("--webhook", "webhook_target")
@click.option("--enabled/--disabled", "is_enabled", default=None)
@click.pass_obj
def config_update(obj: dict, config_id: int, **fields: Any) -> None:
    """Change fields of an existing configuration."""
    payload = {k: v for k, v in fields.items() if v is not None}
    if "expression" in payload:
        payload["schedule_expression"] = payload.pop("expression")
    if not payload:
        _die("Nothing to update")
    with _client(obj["url"]) as c:
        resp = c.put(f"/scheduler/config/{config_id}", json=payload, headers=_headers(obj))
    _check(resp)
    data = resp.json()
    if obj["json_output"]:
        _echo_json(data)
        return
    click.echo(f"Updated  config {data['id']}  next: {data.get('next_execution_at') or '-'}")


@config.command("delete")
@click.pass_obj
def config_delete(obj: dict) -> None:
    """Stop the job and delete the configuration."""
    with _client(obj["url"]) as c:
        resp = c.delete("/scheduler/config", headers=_headers(obj))
    _check(resp)
    click.echo("Deleted")


def _print_config(cfg: dict) -> None:
    state = "enabled" if cfg.get("is_enabled") else "disabled"
    console.print(f"Config {cfg['id']}: [{_color(state)}]{state}[/]")
    console.print(f"  type       : {cfg['schedule_type']} at {cfg['time_of_day']}")
    console.print(f"  expression : {cfg['schedule_expression']}")
    console.print(f"  webhook    : {cfg.get('webhook_target') or '-'}")
    console.print(f"  next run   : {cfg.get('next_execution_at') or '-'}")
    console.print(f"  last run   : {cfg.get('last_executed_at') or '-'}")
    console.print(f"  runs       : {cfg.get('execution_count', 0)}"
                  f"  (failures: {cfg.get('failure_count', 0)})")


# ── scheduler status ──────────────────────────────────────────────────────────


@cli.command("status")
@click.pass_obj
def status(obj: dict) -> None:
    """Show timer state and recent executions."""
    with _client(obj["url"]) as c:
        resp = c.get("/scheduler/status", headers=_headers(obj))
    _check(resp)
    data = resp.json()
    if obj["json_output"]:
        _echo_json(data)
        return

    timer = "armed" if data["is_running"] else "unarmed"
    console.print(f"Timer: [{_color(timer)}]{timer}[/]  next: {data.get('next_run') or '-'}"
                  f"  last: {data.get('last_run') or '-'}\n")

    executions = data.get("recent_executions", [])
    if not executions:
        click.echo("No executions yet.")
        return
    table = Table(box=box.SIMPLE)
    table.add_column("ID", style="cyan")
    table.add_column("Time")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for ex in executions:
        s = ex.get("status", "?")
        dur = f"{ex['execution_duration_ms']}ms" if ex.get("execution_duration_ms") is not None else "-"
        err = (ex.get("error_message") or "")[:60]
        table.add_row(
            str(ex["id"]),
            ex.get("execution_time", ""),
            ex.get("trigger_source", ""),
            f"[{_color(s)}]{s}[/]",
            dur,
            f"[red]{err}[/]" if err else "",
        )
    console.print(table)


# ── scheduler trigger ─────────────────────────────────────────────────────────


@cli.command("trigger")
@click.pass_obj
def trigger(obj: dict) -> None:
    """Fire the download workflow now."""
    with _client(obj["url"]) as c:
        resp = c.post("/scheduler/trigger", headers=_headers(obj))
    _check(resp)
    data = resp.json()
    if obj["json_output"]:
        _echo_json(data)
        return
    if data.get("success"):
        click.echo(f"Triggered  execution {data.get('external_execution_id')}")
    else:
        _die(f"Trigger failed: {data.get('error')}")


# ── scheduler active ──────────────────────────────────────────────────────────


@cli.command("active")
@click.pass_obj
def active(obj: dict) -> None:
    """List every enabled scheduler and whether its timer is armed."""
    with _client(obj["url"]) as c:
        resp = c.get("/scheduler/all-active")
    _check(resp)
    data = resp.json()
    if obj["json_output"]:
        _echo_json(data)
        return

    jobs = data.get("active_schedulers", [])
    if not jobs:
        click.echo("No enabled schedulers.")
        return
    table = Table(box=box.SIMPLE)
    table.add_column("Job Key", style="cyan")
    table.add_column("Expression")
    table.add_column("Timer")
    table.add_column("Next Run")
    for job in jobs:
        timer = "armed" if job["is_armed"] else "unarmed"
        table.add_row(
            job["job_key"],
            job["config"]["schedule_expression"],
            f"[{_color(timer)}]{timer}[/]",
            job["config"].get("next_execution_at") or "-",
        )
    console.print(table)
    if data.get("unarmed"):
        err_console.print(f"[red]{data['unarmed']} enabled scheduler(s) have no armed timer[/]")
