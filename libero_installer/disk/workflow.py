# libero_installer/disk/workflow.py

import functools
from typing import Callable, List, Optional

from pydantic import BaseModel

from libero_installer.config.settings import FilesystemType, InstallerSettings
from libero_installer.devices import RawPartition
from libero_installer.disk.applier import apply_plan
from libero_installer.disk.encryption import apply_encryption, read_passphrase, wipe
from libero_installer.disk.filesystem import PROC_MOUNTS, PROC_SWAPS, format_and_mount
from libero_installer.disk.inventory import SYS_BLOCK, list_disks, query_disk_size_mb
from libero_installer.disk.lvm import apply_volume_manager
from libero_installer.disk.planner import build_plan, describe_plan, render_plan
from libero_installer.disk.release import release_disk
from libero_installer.state import BootMode, DiskStage, InstallerState, PartitionRole
from libero_installer.ui import WizardUI
from libero_installer.utils.executor import Executor
from libero_installer.utils.exceptions import (
    CommandStepError, InstallerError, PartitioningError, PreconditionError,
    ShellCommandError, UserCancelledError, UserInputError
)


class StepResult(BaseModel):
    """What a workflow step reports back to the menu. Steps never raise."""
    ok: bool
    message: str = ""
    cancelled: bool = False


def workflow_step(method: Callable[..., StepResult]) -> Callable[..., StepResult]:
    """Turns installer errors raised inside a step into a failed StepResult."""
    @functools.wraps(method)
    def wrapper(self: "DiskWorkflow", state: InstallerState) -> StepResult:
        try:
            return method(self, state)
        except (InstallerError, ShellCommandError) as e:
            if isinstance(e, UserCancelledError):
                self.logger.info(f"{method.__name__}: cancelled by user")
            else:
                self.logger.error(f"{method.__name__} failed: {e}")
            return self._failure(e)
    return wrapper


class DiskWorkflow:
    """
    The disk preparation menu and the steps behind each entry.

    The state is owned by the caller and passed into every step; a failing
    step leaves it describing exactly what was completed.
    """

    def __init__(self, executor: Executor, ui: WizardUI, settings: InstallerSettings,
                 sys_block: str = SYS_BLOCK, mounts_path: str = PROC_MOUNTS, swaps_path: str = PROC_SWAPS):
        self.executor = executor
        self.logger = executor.logger
        self.ui = ui
        self.settings = settings
        self.sys_block = sys_block
        self.mounts_path = mounts_path
        self.swaps_path = swaps_path

    # --- Error translation ---

    def _failure(self, error: Exception) -> StepResult:
        if isinstance(error, UserCancelledError):
            return StepResult(ok=False, cancelled=True, message="Cancelled. Nothing was changed.")
        if isinstance(error, UserInputError):
            return StepResult(ok=False, message=f"{error} Nothing was changed; you can try again.")
        if isinstance(error, PreconditionError):
            return StepResult(ok=False, message=str(error))
        log_path = getattr(self.logger, "log_file_path", "") or "the installer log"
        if isinstance(error, (CommandStepError, ShellCommandError)):
            return StepResult(ok=False, message=f"{error}\nSee {log_path} for the failing command and its output.")
        return StepResult(ok=False, message=f"{error}\nSee {log_path} for details.")

    # --- Selection steps ---

    @workflow_step
    def select_disk(self, state: InstallerState) -> StepResult:
        disks = list_disks(self.sys_block)
        if not disks:
            raise PreconditionError("No usable disks were found.")

        items = [f"{d.path:<16} {d.human_size:>10}  {d.model}" for d in disks]
        current = next((i for i, d in enumerate(disks) if d.path == state.target_disk), 0)
        index = self.ui.menu("Select target disk", "All data on the selected disk will be erased later.", items, current)
        if index is None:
            raise UserCancelledError()

        disk = disks[index]
        state.invalidate_plan()
        state.target_disk = disk.path
        state.disk_model = disk.model
        state.disk_size_mb = disk.size_mb
        self.logger.info(f"Target disk set to {disk.path} ({disk.human_size}, {disk.model})")
        return StepResult(ok=True, message=f"Selected {disk.path} ({disk.human_size}, {disk.model}).")

    @workflow_step
    def choose_boot_mode(self, state: InstallerState) -> StepResult:
        modes = [BootMode.UEFI, BootMode.LEGACY]
        index = self.ui.menu("Select boot mode", f"Current: {state.boot_mode.display_name}",
                             [m.display_name for m in modes], modes.index(state.boot_mode))
        if index is None:
            raise UserCancelledError()
        self._change(state, "boot_mode", modes[index])
        return StepResult(ok=True, message=f"Boot mode: {state.boot_mode.display_name}.")

    @workflow_step
    def choose_root_filesystem(self, state: InstallerState) -> StepResult:
        types = list(FilesystemType)
        index = self.ui.menu("Select root filesystem", f"Current: {state.root_fs.value}",
                             [t.value for t in types], types.index(state.root_fs))
        if index is None:
            raise UserCancelledError()
        self._change(state, "root_fs", types[index])
        return StepResult(ok=True, message=f"Root filesystem: {state.root_fs.value}.")

    @workflow_step
    def configure_swap(self, state: InstallerState) -> StepResult:
        answer = self.ui.prompt_input("Swap size", "Swap size in MB (0 disables swap)", default=str(state.swap_size_mb))
        if answer is None:
            raise UserCancelledError()
        try:
            size = int(answer.strip())
        except ValueError:
            size = -1
        if size < 0:
            raise UserInputError(f"'{answer}' is not a valid swap size.")
        self._change(state, "swap_size_mb", size)
        return StepResult(ok=True, message=f"Swap size: {size} MB.")

    @workflow_step
    def toggle_luks(self, state: InstallerState) -> StepResult:
        self._change(state, "use_luks", not state.use_luks)
        return StepResult(ok=True, message=f"LUKS encryption {'enabled' if state.use_luks else 'disabled'}.")

    @workflow_step
    def toggle_lvm(self, state: InstallerState) -> StepResult:
        self._change(state, "use_lvm", not state.use_lvm)
        return StepResult(ok=True, message=f"LVM {'enabled' if state.use_lvm else 'disabled'}.")

    def _change(self, state: InstallerState, field: str, value):
        if getattr(state, field) == value:
            return
        setattr(state, field, value)
        if state.stage > DiskStage.UNPREPARED:
            self.logger.info(f"{field} changed; the partition plan must be rebuilt")
        state.invalidate_plan()

    # --- Planning ---

    def _require_disk(self, state: InstallerState):
        if not state.target_disk:
            raise PreconditionError("No target disk selected; choose one first.")
        if state.disk_size_mb <= 0:
            state.disk_size_mb = query_disk_size_mb(self.executor, state.target_disk)
        if state.disk_size_mb <= 0:
            raise PreconditionError(f"Unable to determine the size of {state.target_disk}.")

    def _plan(self, state: InstallerState):
        self._require_disk(state)
        plan = build_plan(state.boot_mode, state.use_lvm, state.swap_size_mb, state.disk_size_mb, self.settings.labels)
        self.ui.show(render_plan(state.target_disk, state.disk_size_mb, plan))
        self.logger.info("Partition plan:\n" + describe_plan(state.target_disk, state.disk_size_mb, plan))
        return plan

    @workflow_step
    def show_plan(self, state: InstallerState) -> StepResult:
        plan = self._plan(state)
        if state.stage <= DiskStage.PLANNED:
            state.plan = plan
            state.stage = DiskStage.PLANNED
        return StepResult(ok=True, message=f"{len(plan)} partitions planned on {state.target_disk}.")

    # --- Destructive steps ---

    @workflow_step
    def partition_disk(self, state: InstallerState) -> StepResult:
        """Plan, confirm, release, partition, then add the optional LUKS and LVM layers."""
        plan = self._plan(state)

        passphrase: Optional[bytearray] = None
        try:
            if state.use_luks:
                passphrase = read_passphrase(self.ui)

            layers = " + ".join(name for name, on in (("LUKS", state.use_luks), ("LVM", state.use_lvm)) if on)
            if not self.ui.confirm("Partition disk",
                                   f"ALL DATA on {state.target_disk} ({state.disk_model}) will be destroyed.\n"
                                   f"Boot mode: {state.boot_mode.display_name}"
                                   + (f"\nLayers: {layers}" if layers else "")):
                raise UserCancelledError()

            state.invalidate_plan()
            state.plan = plan
            state.stage = DiskStage.PLANNED
            self.logger.section(f"Preparing {state.target_disk}")

            report = release_disk(self.executor, state.target_disk, self.swaps_path)
            if not report.ok:
                raise PartitioningError(report.summary())

            resolved = apply_plan(self.executor, state.target_disk, plan, state.boot_mode)
            self._record_partitions(state, resolved)
            state.stage = DiskStage.PARTITIONED

            mapped = apply_encryption(self.executor, state.root_partition, passphrase, state.luks_name,
                                      enabled=state.use_luks, luks_type=self.settings.luks_type)
            layered = apply_volume_manager(self.executor, mapped, state.swap_size_mb, state.vg_name,
                                           enabled=state.use_lvm)
            state.root_device = layered.root
            if layered.swap is not None:
                state.swap_device = layered.swap
            state.stage = DiskStage.LAYERED
        finally:
            wipe(passphrase)

        self.logger.info(f"Root device: {state.root_mapper}; swap: {state.swap_mapper or 'none'}")
        return StepResult(ok=True, message=f"{state.target_disk} partitioned. Root device: {state.root_mapper}.")

    def _record_partitions(self, state: InstallerState, resolved):
        state.plan = resolved
        for spec in resolved:
            partition = RawPartition(path=spec.device, number=spec.number)
            if spec.role is PartitionRole.EFI:
                state.efi_partition = partition
            elif spec.role is PartitionRole.BOOT:
                state.boot_partition = partition
            elif spec.role is PartitionRole.SWAP:
                state.swap_partition = partition
            elif spec.role is PartitionRole.ROOT:
                state.root_partition = partition

    @workflow_step
    def format_and_mount_step(self, state: InstallerState) -> StepResult:
        format_and_mount(self.executor, state, self.settings, mounts_path=self.mounts_path, swaps_path=self.swaps_path)
        return StepResult(ok=True, message=f"Target filesystems mounted under {state.install_root}.")

    # --- Menu ---

    def menu_items(self, state: InstallerState) -> List[str]:
        return [
            f"Select target disk [{state.target_disk or 'none'}]",
            f"Select boot mode [{state.boot_mode.display_name}]",
            f"Select root filesystem [{state.root_fs.value}]",
            f"Configure swap size [{state.swap_size_mb} MB]",
            f"Toggle LUKS encryption [{'on' if state.use_luks else 'off'}]",
            f"Toggle LVM [{'on' if state.use_lvm else 'off'}]",
            "Show partition plan",
            "Partition disk",
            "Format and mount target",
            "Back",
        ]

    def run(self, state: InstallerState):
        """Shows the disk menu until the user goes back. Failures return to the menu."""
        steps = [
            self.select_disk, self.choose_boot_mode, self.choose_root_filesystem, self.configure_swap,
            self.toggle_luks, self.toggle_lvm, self.show_plan, self.partition_disk, self.format_and_mount_step,
        ]
        destructive = (self.partition_disk, self.format_and_mount_step)
        selected = 0
        while True:
            index = self.ui.menu("Disk preparation", state.selection_summary(), self.menu_items(state), selected)
            if index is None or index == len(steps):
                return
            selected = index
            result = steps[index](state)
            if result.cancelled:
                self.ui.message("Cancelled", result.message)
            elif not result.ok:
                self.ui.error("Disk preparation failed", result.message)
            elif steps[index] in destructive:
                self.ui.message("Disk preparation", result.message, style="success")
                selected = index + 1
