"""Typer CLI for replaying events and inspecting jobs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import typer

from ..config import apply_overrides, dump_config, load_config, load_config_from_env
from ..config.schema import OrchestratorConfig
from ..core.exceptions import OrchestrationError
from ..core.logging import configure_logging
from ..handlers.results import HandlerResult, Outcome
from ..orchestration import EVENT_KINDS, Orchestrator

app = typer.Typer(help="SageFlow pipeline/training controller")
jobs_app = typer.Typer(help="Job record operations")
config_app = typer.Typer(help="Configuration helpers")

app.add_typer(jobs_app, name="jobs")
app.add_typer(config_app, name="config")


@dataclass
class CliState:
    config_path: Optional[Path] = None
    overrides: List[str] = field(default_factory=list)
    _config: Optional[OrchestratorConfig] = None
    _orchestrator: Optional[Orchestrator] = None

    @property
    def config(self) -> OrchestratorConfig:
        if self._config is None:
            if self.config_path is not None:
                self._config = load_config(self.config_path, overrides=self.overrides)
            else:
                self._config = apply_overrides(load_config_from_env(), self.overrides)
            settings = self._config.logging
            configure_logging(
                level=settings.level,
                log_dir=Path(settings.log_dir) if settings.log_dir else None,
                json_logs=settings.json_logs,
            )
        return self._config

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            self._orchestrator = Orchestrator(self.config)
        return self._orchestrator


def _state(ctx: typer.Context) -> CliState:
    return ctx.ensure_object(CliState)


def _echo_result(result: HandlerResult) -> None:
    typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    if result.outcome is Outcome.FAILURE:
        raise typer.Exit(code=1)


def _fail(exc: OrchestrationError) -> None:
    typer.echo(json.dumps({"error": exc.to_dict()}, indent=2, default=str), err=True)
    raise typer.Exit(code=2)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", exists=True, dir_okay=False, help="YAML config file"),
    overrides: Optional[List[str]] = typer.Option(None, "--set", help="Dotted key=value override, repeatable"),
) -> None:
    """Without --config, settings come from SAGEFLOW_CONFIG and the Lambda environment variables."""
    state = _state(ctx)
    state.config_path = config
    state.overrides = list(overrides or [])


@app.command()
def handle(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help=f"One of: {', '.join(EVENT_KINDS)}"),
    event_file: Path = typer.Argument(..., exists=True, dir_okay=False),
) -> None:
    """Replay a raw event document through the orchestrator."""
    if kind not in EVENT_KINDS:
        raise typer.BadParameter(f"Unknown event kind '{kind}'. Expected one of: {', '.join(EVENT_KINDS)}")
    try:
        payload: Any = json.loads(event_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{event_file} is not valid JSON: {exc}") from exc
    try:
        result = _state(ctx).orchestrator.dispatch(kind, payload)
    except OrchestrationError as exc:
        _fail(exc)
        return
    _echo_result(result)


@jobs_app.command("show")
def jobs_show(ctx: typer.Context, job_name: str) -> None:
    """Print the stored record for JOB_NAME."""
    try:
        record = _state(ctx).orchestrator.store.require(job_name)
    except OrchestrationError as exc:
        _fail(exc)
        return
    typer.echo(json.dumps(record.to_item(), indent=2))


@jobs_app.command("sync")
def jobs_sync(ctx: typer.Context, job_name: str) -> None:
    """Reconcile JOB_NAME with the training backend."""
    try:
        result = _state(ctx).orchestrator.dispatch("sync", job_name)
    except OrchestrationError as exc:
        _fail(exc)
        return
    _echo_result(result)


@app.command()
def deploy(ctx: typer.Context, job_name: str) -> None:
    """Deploy a succeeded job and request production promotion."""
    try:
        result = _state(ctx).orchestrator.dispatch("deploy", job_name)
    except OrchestrationError as exc:
        _fail(exc)
        return
    _echo_result(result)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the effective configuration as YAML."""
    try:
        config = _state(ctx).config
    except OrchestrationError as exc:
        _fail(exc)
        return
    typer.echo(dump_config(config))


if __name__ == "__main__":  # pragma: no cover
    app()
