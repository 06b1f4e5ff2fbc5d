"""
hostprov — CLI entrypoint.

Usage:
    hostprov --help
    hostprov plan
    hostprov apply --mock
    hostprov status
    hostprov config check

Exit codes: 0 success, 1 failed or aborted run, 2 invalid configuration,
plan or pre-flight refusal.
"""

from __future__ import annotations

import json
import signal
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from hostprov import __version__
from hostprov.core.observability.logging_config import resolve_level, setup_logging

_OUTCOME_STYLE = {
    "applied": ("✓", "green"),
    "skipped": ("⊘", "yellow"),
    "failed": ("✗", "red"),
}
_STATUS_STYLE = {
    "satisfied": ("✓", "green"),
    "not_satisfied": ("•", "yellow"),
    "unknown": ("?", "magenta"),
}


@click.group()
@click.version_option(version=__version__, prog_name="hostprov")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to hostprov.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """hostprov — declarative, idempotent application server provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    setup_logging(level=resolve_level(verbose=verbose, quiet=quiet, debug=debug))


def _print_errors(title: str, errors: list[str]) -> None:
    click.secho(f"❌ {title}:", fg="red", bold=True)
    for err in errors:
        click.echo(f"   • {err}")


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool) -> None:
    """Show the ordered steps apply would run (dry run)."""
    from hostprov.core.use_cases.plan import show_plan

    result = show_plan(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if not result.ok:
        _print_errors("Cannot build plan", result.errors)
        sys.exit(result.exit_code)

    assert result.plan is not None and result.config is not None
    config = result.config
    click.secho(f"\n📋 Plan — {config.instance_name} ({config.edition.value} {config.app_version})", fg="cyan", bold=True)
    click.echo(f"   Steps: {len(result.plan)}")
    click.echo()

    for number, step in enumerate(result.plan, start=1):
        click.echo(f"   {number:>2}. ", nl=False)
        click.secho(step.name, bold=True, nl=False)
        click.echo(f"  [{step.kind}]", nl=False)
        if step.policy.value == "continue":
            click.secho("  (continue on failure)", fg="yellow", nl=False)
        click.echo()
        if ctx.obj.get("verbose") and step.requires:
            click.echo(f"       requires: {', '.join(step.requires)}")

    if result.plan.inactive and not ctx.obj.get("quiet"):
        click.echo()
        click.secho(f"   Inactive: {', '.join(result.plan.inactive)}", dim=True)
    click.echo()


# ── apply ───────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@click.option(
    "--root",
    type=click.Path(file_okay=False),
    default=None,
    help="Filesystem prefix for every host path (default: / or a scratch dir with --mock).",
)
@click.option("--retries", type=click.IntRange(0, 10), default=None, help="Retries per failed step.")
@click.option("--audit-log", type=click.Path(dir_okay=False), default=None, help="Append a run summary (NDJSON).")
@click.pass_context
def apply(
    ctx: click.Context,
    as_json: bool,
    mock: bool,
    root: str | None,
    retries: int | None,
    audit_log: str | None,
) -> None:
    """Provision the host.

    Real runs must be root on a supported Debian or Ubuntu release;
    this is checked before anything changes.

    Examples:

        hostprov apply --mock

        hostprov apply --retries 2 --audit-log /var/log/hostprov.ndjson
    """
    from hostprov.core.use_cases.apply import apply_config

    with _cancel_on_signals() as on_engine:
        result = apply_config(
            config_path=ctx.obj.get("config_path"),
            mock=mock,
            root=root,
            retries=retries,
            audit_log=audit_log,
            on_engine=on_engine,
        )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.errors:
        _print_errors("Cannot apply", result.errors)
        sys.exit(result.exit_code)

    report = result.report
    assert report is not None and result.config is not None

    mode_label = "[mock] " if result.mock else ""
    click.secho(f"\n⚡ {mode_label}apply — {result.config.instance_name}", fg="cyan", bold=True)
    click.echo(f"   Run: {report.run_id} | Root: {result.root}")
    click.echo()

    for step_result in report.results:
        marker, color = _OUTCOME_STYLE[step_result.outcome]
        click.secho(f"   {marker} {step_result.step}", fg=color, nl=False)
        timing = f" ({step_result.duration_ms}ms)" if step_result.duration_ms else ""
        click.echo(timing)
        if step_result.failed:
            click.echo(f"     │ {step_result.error}")
            for line in step_result.stderr_tail.splitlines()[-5:]:
                click.echo(f"     │ {line}")
        elif ctx.obj.get("verbose") and step_result.detail:
            click.echo(f"     │ {step_result.detail}")

    if report.not_run:
        click.echo()
        click.secho(f"   Not run: {', '.join(report.not_run)}", fg="yellow")

    click.echo()
    color = "green" if report.ok else "red"
    label = "cancelled" if report.cancelled else report.state.value
    click.secho(
        f"   Result: {label} — {report.applied} applied, {report.skipped} skipped, {report.failed} failed",
        fg=color,
        bold=True,
    )
    click.echo()
    sys.exit(result.exit_code)


@contextmanager
def _cancel_on_signals() -> Iterator[Callable]:
    """SIGINT/SIGTERM stop the run at the next step boundary.

    Yields the ``on_engine`` hook; previous handlers are restored on exit.
    """
    engines: list = []

    def _handler(signum, frame):
        click.secho(
            f"\n⚠️  {signal.Signals(signum).name} received, stopping after the current step",
            fg="yellow",
            err=True,
        )
        for engine in engines:
            engine.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield engines.append
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


# ── status ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Check against mock adapters.")
@click.option("--root", type=click.Path(file_okay=False), default=None, help="Filesystem prefix.")
@click.pass_context
def status(ctx: click.Context, as_json: bool, mock: bool, root: str | None) -> None:
    """Evaluate every check without changing anything."""
    from hostprov.core.models.result import CheckStatus
    from hostprov.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"), mock=mock, root=root)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.errors:
        _print_errors("Cannot evaluate status", result.errors)
        sys.exit(result.exit_code)

    assert result.config is not None
    click.secho(f"\n🔍 Status — {result.config.instance_name}", fg="cyan", bold=True)
    click.echo()
    for st in result.statuses:
        marker, color = _STATUS_STYLE[st.status.value]
        click.secho(f"   {marker} {st.step}", fg=color, nl=False)
        click.echo(f"  [{st.kind}]" + (f"  {st.detail}" if st.detail else ""))

    if ctx.obj.get("verbose"):
        click.echo()
        click.secho("   Adapters:", bold=True)
        for name, info in result.adapters.items():
            icon = "✅" if info["available"] else "❌"
            click.echo(f"     {icon} {name} ({info['type']})")

    click.echo()
    if result.converged:
        click.secho("   Host is converged", fg="green", bold=True)
    else:
        pending = len(result.statuses) - result.count(CheckStatus.SATISFIED)
        click.secho(f"   {pending} step(s) not satisfied", fg="yellow", bold=True)
    click.echo()


# ── config ──────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate hostprov.yml (reports every problem at once)."""
    from hostprov.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.valid:
        assert result.config is not None
        summary = result.config.summary()
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        if result.config_path:
            click.echo(f"   File: {result.config_path}")
        click.echo(f"   Instance: {summary['instance']} ({summary['edition']} {summary['version']})")
        click.echo(f"   Domain: {summary['domain']} | TLS: {'on' if summary['tls'] else 'off'}")
    else:
        _print_errors("Configuration errors", result.errors)

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(result.exit_code)


if __name__ == "__main__":
    cli()
