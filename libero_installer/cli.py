# libero_installer/cli.py

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from libero_installer import core
from libero_installer.config.settings import InstallerSettings
from libero_installer.disk.inventory import list_disks
from libero_installer.disk.planner import build_plan, render_plan
from libero_installer.disk.release import release_disk
from libero_installer.disk.workflow import DiskWorkflow
from libero_installer.state import BootMode, InstallerState, detect_boot_mode
from libero_installer.ui import WizardUI, theme
from libero_installer.utils.exceptions import DiskInventoryError, InsufficientSpaceError
from libero_installer.utils.executor import Executor
from libero_installer.utils.logger import RichAppLogger, initialize_app_logger

APP_NAME = "libero_installer"

app = typer.Typer(help="Libero Gentoo installer: interactive disk preparation.", add_completion=False)
console = Console(theme=theme)

CONFIG_OPTION = typer.Option(None, "--config", "-c", exists=True, dir_okay=False, help="TOML file with installer settings.")
DRY_RUN_OPTION = typer.Option(False, "--dry-run", help="Log the commands that would change the disk instead of running them.")


def _load_settings(config: Optional[Path]) -> InstallerSettings:
    if config is None:
        return InstallerSettings()
    try:
        return InstallerSettings.load_config_from_file(config)
    except ValueError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


def _init_logging(settings: InstallerSettings) -> RichAppLogger:
    """Opens the installer log, falling back to the cache directory when the log directory is unusable."""
    for directory in (settings.log_directory, settings.cache_dir, "logs"):
        try:
            core.app_logger = initialize_app_logger(
                app_name=APP_NAME, log_directory=directory, log_file_name=settings.log_file_name
            )
            return core.app_logger
        except OSError as e:
            typer.secho(f"Cannot write the log to {directory}: {e}", fg=typer.colors.YELLOW, err=True)
    typer.secho("No writable log location; giving up.", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _require_root(dry_run: bool):
    if not dry_run and os.geteuid() != 0:
        typer.secho("This command changes disks and must be run as root (or use --dry-run).", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def run_main_menu(workflow: DiskWorkflow, state: InstallerState, ui: WizardUI, logger: RichAppLogger):
    """Top-level loop. Only 'Exit' (or a cancelled menu) leaves it."""
    items = ["Disk preparation", "Show installer log path", "Exit installer"]
    selected = 0
    while True:
        index = ui.menu("Libero installer", state.selection_summary(), items, selected)
        if index is None or index == 2:
            logger.info("Installer exited by user")
            return
        selected = index
        if index == 0:
            workflow.run(state)
        elif index == 1:
            ui.message("Installer log", logger.log_file_path or "(not available)")


@app.command()
def install(config: Optional[Path] = CONFIG_OPTION, dry_run: bool = DRY_RUN_OPTION):
    """Start the interactive installer."""
    _require_root(dry_run)
    settings = _load_settings(config)
    logger = _init_logging(settings)

    executor = Executor(logger_instance=logger, dry_run=dry_run)
    ui = WizardUI(console)
    state = InstallerState.from_settings(settings)

    logger.section("Libero installer started")
    logger.info(f"Log file: {logger.log_file_path}")
    logger.info(state.selection_summary())
    if dry_run:
        logger.warning("Running in DRY-RUN mode: no disk will be modified.")

    run_main_menu(DiskWorkflow(executor, ui, settings), state, ui, logger)


@app.command()
def disks(sys_block: str = typer.Option("/sys/block", hidden=True)):
    """List the disks the installer can use."""
    try:
        found = list_disks(sys_block)
    except DiskInventoryError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    table = Table(title="Available Disks")
    table.add_column("Index", justify="right", style="cyan", no_wrap=True)
    table.add_column("Device", style="success")
    table.add_column("Size", justify="right")
    table.add_column("Model")
    for i, disk in enumerate(found):
        table.add_row(str(i + 1), disk.path, disk.human_size, disk.model)
    console.print(table)


@app.command()
def plan(
    size_mb: int = typer.Option(..., "--size-mb", min=1, help="Disk size in MB."),
    boot_mode: Optional[BootMode] = typer.Option(None, "--boot-mode", help="Defaults to the mode this machine booted in."),
    swap_mb: int = typer.Option(1024, "--swap-mb", min=0),
    lvm: bool = typer.Option(False, "--lvm", help="Put root (and swap) in an LVM volume group."),
    disk: str = typer.Option("/dev/sdX", "--disk", help="Device name shown in the table title."),
):
    """Preview the partition layout for a disk size. Nothing is written."""
    mode = boot_mode or detect_boot_mode()
    try:
        layout = build_plan(mode, lvm, swap_mb, size_mb)
    except InsufficientSpaceError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    console.print(render_plan(disk, size_mb, layout))


@app.command()
def release(device: str = typer.Argument(..., help="Disk to release, e.g. /dev/sda."),
            config: Optional[Path] = CONFIG_OPTION, dry_run: bool = DRY_RUN_OPTION):
    """Unmount, close and deactivate everything that uses DEVICE."""
    _require_root(dry_run)
    settings = _load_settings(config)
    logger = _init_logging(settings)
    report = release_disk(Executor(logger_instance=logger, dry_run=dry_run), device)

    table = Table(title=f"Release of {device}")
    table.add_column("Action", style="cyan")
    table.add_column("Target")
    table.add_column("Result")
    for step in report.steps:
        table.add_row(step.action, step.target, "[green]ok[/]" if step.ok else "[bold red]failed[/]")
    console.print(table)
    console.print(report.summary())
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("show-config")
def show_config(config: Optional[Path] = CONFIG_OPTION):
    """Print the effective settings."""
    typer.echo(_load_settings(config).display_summary())
