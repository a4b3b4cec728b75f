#!/usr/bin/env python3
"""
scaledpool CLI - Reserve Accounting Tools

Commands:
- simulate: replay a YAML scenario and show balances, rewards and dust
- math: evaluate the ray fixed-point primitives
- config: show the resolved environment configuration
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from scaledpool import __version__
from scaledpool.core.accounting_exceptions import AccountingError, is_recoverable_error
from scaledpool.core.config import get_config
from scaledpool.core.defi.simulation import ScenarioReport, ScenarioRunner, from_base_units
from scaledpool.core.defi.wad_ray_math import percent_mul, ray_div, ray_mul
from scaledpool.core.logging_config import setup_logging

logger = logging.getLogger(__name__)
console = Console()


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    if is_recoverable_error(exc):
        console.print("[yellow]Adjust the amount and retry.[/]")
    sys.exit(exit_code)


def _fmt(value: int, decimals: int) -> str:
    return f"{from_base_units(value, decimals):f}"


def _fmt_ray(value: int) -> str:
    return f"{from_base_units(value, 27):f}"


@click.group()
@click.option('--json-output', is_flag=True, help='Output raw JSON')
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    default='WARNING',
    show_default=True,
    help='Log level for structured logs on stderr',
)
@click.version_option(__version__, prog_name="scaledpool")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, log_level: str):
    """
    scaledpool - interest-bearing reserve accounting

    Replays lending-pool scenarios against the scaled-balance ledger,
    the rebase-reconciling wrapper and the reward index tracker.
    """
    ctx.ensure_object(dict)
    setup_logging(name="scaledpool", level=log_level)
    ctx.obj['json_output'] = json_output


# ==================== Simulation ====================


@cli.command("simulate")
@click.argument("scenario", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def simulate(ctx: click.Context, scenario: Path):
    """
    Replay a scenario file.

    Example:
        scaledpool simulate examples/scenarios/steth_rebase.yaml
    """
    try:
        report = ScenarioRunner.from_file(scenario).run()
    except AccountingError as exc:
        _handle_cli_error(exc)
        return

    if ctx.obj.get("json_output"):
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    _print_report(report)


def _print_report(report: ScenarioReport) -> None:
    decimals = report.decimals

    summary = Table(show_header=False, box=box.ROUNDED)
    summary.add_row("[bold cyan]Token", report.token)
    summary.add_row("[bold cyan]Liquidity Index", _fmt_ray(report.liquidity_index))
    if report.exchange_rate is not None:
        summary.add_row("[bold cyan]Exchange Rate", _fmt_ray(report.exchange_rate))
    summary.add_row("[bold green]Total Supply", _fmt(report.total_supply, decimals))
    summary.add_row("[bold green]Scaled Supply", _fmt(report.scaled_total_supply, decimals))
    summary.add_row("[bold yellow]Backing", _fmt(report.backing, decimals))
    if report.dust is not None:
        style = "red" if report.dust.is_deficit else "magenta"
        summary.add_row(f"[bold {style}]Dust Surplus", str(report.dust.surplus))
    console.print(Panel(summary, title=f"[bold green]{report.name}", border_style="green"))

    if report.balances:
        table = Table(title="Balances", box=box.ROUNDED)
        table.add_column("Holder", style="cyan")
        table.add_column("Balance", style="green", justify="right")
        table.add_column("Scaled", style="yellow", justify="right")
        show_internal = report.exchange_rate is not None
        if show_internal:
            table.add_column("Reserve Shares", style="magenta", justify="right")
        for holder, entry in report.balances.items():
            row = [holder, _fmt(entry["balance"], decimals), _fmt(entry["scaled"], decimals)]
            if show_internal:
                row.append(_fmt(entry.get("internal", 0), decimals))
            table.add_row(*row)
        console.print(table)

    for token, state in report.rewards.items():
        table = Table(title=f"Rewards: {token}", box=box.SIMPLE)
        table.add_column("Holder", style="cyan")
        table.add_column("Accrued", justify="right")
        table.add_column("Claimed", justify="right")
        table.add_column("Claimable", style="green", justify="right")
        for holder, entry in state["holders"].items():
            table.add_row(
                holder,
                _fmt(entry["accrued"], decimals),
                _fmt(entry["claimed"], decimals),
                _fmt(entry["claimable"], decimals),
            )
        console.print(table)
        if state["undistributed"]:
            console.print(f"[yellow]Undistributed {token}:[/] {_fmt(state['undistributed'], decimals)}")
        if state.get("treasury_claimed"):
            console.print(f"[magenta]Treasury cut {token}:[/] {_fmt(state['treasury_claimed'], decimals)}")

    if report.static:
        static = report.static
        table = Table(title=f"Static wrapper: {static['symbol']}", box=box.ROUNDED)
        table.add_column("Holder", style="cyan")
        table.add_column("Static", style="yellow", justify="right")
        table.add_column("Dynamic", style="green", justify="right")
        for holder, entry in static["balances"].items():
            table.add_row(holder, _fmt(entry["static"], decimals), _fmt(entry["dynamic"], decimals))
        console.print(table)
        console.print(f"[cyan]Static rate:[/] {_fmt_ray(static['rate'])}")

    failed = [step for step in report.steps if not step.ok]
    console.print(f"[dim]{len(report.steps)} steps, {len(failed)} rejected as expected[/]")


# ==================== Math ====================


@cli.group("math")
def math_group():
    """Evaluate fixed-point primitives on raw integers."""
    pass


def _echo_result(ctx: click.Context, op: str, a: int, b: int, result: int) -> None:
    if ctx.obj.get("json_output"):
        click.echo(json.dumps({"op": op, "a": a, "b": b, "result": result}))
        return
    console.print(f"[cyan]{op}[/]({a}, {b}) = [bold green]{result}[/]")


@math_group.command("ray-mul")
@click.argument("a", type=int)
@click.argument("b", type=int)
@click.pass_context
def math_ray_mul(ctx: click.Context, a: int, b: int):
    """Multiply two rays, rounding half up."""
    try:
        _echo_result(ctx, "ray_mul", a, b, ray_mul(a, b))
    except AccountingError as exc:
        _handle_cli_error(exc)


@math_group.command("ray-div")
@click.argument("a", type=int)
@click.argument("b", type=int)
@click.pass_context
def math_ray_div(ctx: click.Context, a: int, b: int):
    """Divide two rays, rounding half up."""
    try:
        _echo_result(ctx, "ray_div", a, b, ray_div(a, b))
    except AccountingError as exc:
        _handle_cli_error(exc)


@math_group.command("percent-mul")
@click.argument("value", type=int)
@click.argument("bps", type=int)
@click.pass_context
def math_percent_mul(ctx: click.Context, value: int, bps: int):
    """Apply a basis-point percentage."""
    try:
        _echo_result(ctx, "percent_mul", value, bps, percent_mul(value, bps))
    except AccountingError as exc:
        _handle_cli_error(exc)


# ==================== Config ====================


@cli.command("config")
@click.pass_context
def show_config(ctx: click.Context):
    """Show the configuration resolved from SCALEDPOOL_* variables."""
    data = asdict(get_config())
    if ctx.obj.get("json_output"):
        click.echo(json.dumps(data, indent=2))
        return
    table = Table(title="Configuration", box=box.SIMPLE)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in data.items():
        table.add_row(key, str(value))
    console.print(table)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == '__main__':
    main()
