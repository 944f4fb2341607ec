#!/usr/bin/env python3
"""
Command-line interface for vm-manager.

This module provides the ``vm-manager`` command: listing disk images,
resolving launch plans and starting VMs.
"""

import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import click
import yaml

from vm_manager import __version__
from vm_manager.client import VMManager
from vm_manager.config import config_loader
from vm_manager.exceptions import VMManagerError
from vm_manager.logging import logger
from vm_manager.models import LaunchPlan, LaunchResult, ResolutionReport
from vm_manager.runner import format_command


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_level: str = "INFO"
) -> None:
    """Setup logging configuration."""
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    logger.set_level(level)


def fail(error: VMManagerError) -> None:
    click.echo(f"✗ Error: {error}", err=True)
    sys.exit(error.error_code % 256)


def emit(ctx: Any, data: Any) -> None:
    """Print ``data`` in the json or yaml output format."""
    if ctx.obj["output_format"] == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)


def get_manager(ctx: Any, strict_nic: bool = False) -> VMManager:
    if strict_nic:
        return VMManager(config_path=ctx.obj["config_path"], fallback_nic=None)
    return VMManager(config_path=ctx.obj["config_path"])


def plan_to_dict(plan: LaunchPlan) -> Dict[str, Any]:
    return {
        "image_name": plan.image_name,
        "daemonize": plan.daemonize,
        "options": plan.option_strings(),
        "port_mappings": [
            {
                "host_port": mapping.host_port_actual,
                "vm_port": mapping.vm_port,
                "requested_host_port": mapping.requested_host_port,
                "explicit": mapping.explicit,
            }
            for mapping in plan.resolved_port_mappings
        ],
    }


def report_to_dict(report: ResolutionReport) -> Dict[str, Any]:
    return {
        "plans": [plan_to_dict(plan) for plan in report.plans],
        "failures": [
            {
                "image_name": failure.image_name,
                "error": failure.message,
                "error_code": failure.error.error_code,
            }
            for failure in report.failures
        ],
    }


def echo_plan(plan: LaunchPlan) -> None:
    mode = "daemonized" if plan.daemonize else "foreground"
    click.echo(f"✓ {plan.image_name} ({mode})")
    for option in plan.option_strings():
        click.echo(f"    {option}")
    for mapping in plan.resolved_port_mappings:
        click.echo(f"  Forwarding {mapping.describe()}")


@click.group()
@click.option("--config", "-c", default=None, help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json", "yaml"]),
    default="text",
    help="Output format",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR"], case_sensitive=False),
    default="INFO",
    envvar="VM_MANAGER_LOG_LEVEL",
    help="Log level",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: Any,
    config: Optional[str],
    verbose: bool,
    quiet: bool,
    output: str,
    log_level: str,
) -> None:
    """Launch QEMU virtual machines from YAML launch profiles."""
    setup_logging(verbose, quiet, log_level)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["output_format"] = output
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


@cli.command()
@click.option("--backups", is_flag=True, help="List backup images instead")
@click.pass_context
def images(ctx: Any, backups: bool) -> None:
    """List available disk images."""
    try:
        manager = get_manager(ctx)
        names = manager.list_backup_images() if backups else manager.list_images()
    except VMManagerError as e:
        fail(e)
        return

    if ctx.obj["output_format"] != "text":
        emit(ctx, names)
        return

    if not names:
        click.echo("No backup images found" if backups else "No images found")
    for name in names:
        click.echo(name)


@cli.command()
@click.argument("image", required=False)
@click.option(
    "--workers", "-w", type=int, default=1, help="Number of VMs resolved concurrently"
)
@click.option(
    "--strict-nic", is_flag=True, help="Fail VMs that have ports but no -nic option"
)
@click.pass_context
def plan(ctx: Any, image: Optional[str], workers: int, strict_nic: bool) -> None:
    """Resolve launch plans for configured VMs (all, or those matching IMAGE)."""
    try:
        report = get_manager(ctx, strict_nic).plan(image_filter=image, max_workers=workers)
    except VMManagerError as e:
        fail(e)
        return

    if ctx.obj["output_format"] != "text":
        emit(ctx, report_to_dict(report))
    else:
        for launch_plan in report.plans:
            echo_plan(launch_plan)
        for failure in report.failures:
            click.echo(f"✗ {failure.image_name}: {failure.message}", err=True)
        if not report.plans and not report.failures:
            click.echo("No VMs configured")

    if not report.success:
        sys.exit(1)


@cli.command()
@click.argument("image")
@click.option("--foreground", is_flag=True, help="Run attached with -nographic")
@click.option(
    "--ssh-port", type=click.IntRange(1, 65535), help="Host port for guest SSH (22)"
)
@click.option(
    "--https-port", type=click.IntRange(1, 65535), help="Host port for guest HTTPS (443)"
)
@click.option("--dry-run", is_flag=True, help="Show the command without running it")
@click.option(
    "--strict-nic", is_flag=True, help="Fail if ports exist but no -nic option does"
)
@click.pass_context
def start(
    ctx: Any,
    image: str,
    foreground: bool,
    ssh_port: Optional[int],
    https_port: Optional[int],
    dry_run: bool,
    strict_nic: bool,
) -> None:
    """Start the VM whose image name contains IMAGE."""
    try:
        result = get_manager(ctx, strict_nic).start(
            image,
            ssh_port=ssh_port,
            https_port=https_port,
            foreground=foreground,
            dry_run=dry_run,
        )
    except VMManagerError as e:
        fail(e)
        return

    if ctx.obj["output_format"] != "text":
        data = plan_to_dict(result.plan)
        data.update(
            {
                "image_path": str(result.image_path),
                "command": result.command,
                "dry_run": result.dry_run,
            }
        )
        emit(ctx, data)
        return

    echo_launch(ctx, result)


def echo_launch(ctx: Any, result: LaunchResult) -> None:
    if result.dry_run:
        click.echo(format_command(result.command))
        return
    if ctx.obj["quiet"]:
        return

    click.echo(f"✓ Started VM '{result.plan.image_name}' from {result.image_path}")
    for mapping in result.plan.resolved_port_mappings:
        click.echo(f"  Forwarding {mapping.describe()}")


@cli.group()
def config() -> None:
    """Inspect the configuration file."""
    pass


@config.command("path")
@click.pass_context
def config_path(ctx: Any) -> None:
    """Show the configuration file path being used."""
    path = os.path.expanduser(ctx.obj["config_path"] or config_loader.default_config_path())
    exists = "✓" if os.path.exists(path) else "✗"
    click.echo(f"{exists} {path}")


@config.command("show")
@click.pass_context
def config_show(ctx: Any) -> None:
    """Display the configuration after environment overrides."""
    try:
        config_file = config_loader.load_config(ctx.obj["config_path"])
    except VMManagerError as e:
        fail(e)
        return

    emit(ctx, config_file.model_dump(mode="json"))


@config.command("validate")
@click.pass_context
def config_validate(ctx: Any) -> None:
    """Check the configuration file and every VM entry in it."""
    try:
        run_config = config_loader.load_run_config(ctx.obj["config_path"])
    except VMManagerError as e:
        fail(e)
        return

    problems: List[str] = [
        f"{failure.image_name}: {failure.message}" for failure in run_config.rejected
    ]
    for problem in problems:
        click.echo(f"✗ {problem}", err=True)

    if problems:
        sys.exit(1)
    click.echo(f"✓ Configuration is valid ({len(run_config.vms)} VM(s))")


if __name__ == "__main__":
    cli()
