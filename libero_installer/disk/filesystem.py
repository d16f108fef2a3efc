# libero_installer/disk/filesystem.py

import errno
import os
import re
import shutil
from typing import Dict, List, Optional, Tuple

from libero_installer.config.settings import FilesystemType, InstallerSettings, Labels
from libero_installer.state import BootMode, CachedArtifacts, DiskStage, InstallerState, cache_directory
from libero_installer.utils.executor import Executor
from libero_installer.utils.exceptions import (
    FilesystemError, MountError, PreconditionError, ShellCommandError
)
from libero_installer.utils.logger import RichAppLogger

PROC_MOUNTS = "/proc/mounts"
PROC_SWAPS = "/proc/swaps"

ROOT_MKFS: Dict[FilesystemType, List[str]] = {
    FilesystemType.EXT4: ["mkfs.ext4", "-F", "-L"],
    FilesystemType.XFS: ["mkfs.xfs", "-f", "-L"],
    FilesystemType.BTRFS: ["mkfs.btrfs", "-f", "-L"],
}
BOOT_FS = "ext2"
EFI_FS = "vfat"

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


# --- Kernel tables ---

def _proc_fields(path: str, column: int, skip_header: bool = False) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError:
        return []
    if skip_header:
        lines = lines[1:]
    fields = [line.split() for line in lines]
    return [_OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), f[column]) for f in fields if len(f) > column]


def is_path_mounted(path: str, mounts_path: str = PROC_MOUNTS) -> bool:
    target = os.path.normpath(path)
    return any(os.path.normpath(mountpoint) == target for mountpoint in _proc_fields(mounts_path, 1))


def is_swap_active(device: str, swaps_path: str = PROC_SWAPS) -> bool:
    target = os.path.realpath(device)
    return any(os.path.realpath(entry) == target for entry in _proc_fields(swaps_path, 0, skip_header=True))


# --- Formatting ---

def _require_layered(state: InstallerState):
    if not state.root_mapper or state.stage < DiskStage.PARTITIONED:
        raise PreconditionError("The disk has not been partitioned yet; run 'Partition disk' first.")
    # A failed cryptsetup or lvcreate leaves the raw partition as root_mapper.
    if state.stage < DiskStage.LAYERED:
        raise PreconditionError(f"The encryption or LVM setup of {state.target_disk} did not complete; "
                                "run 'Partition disk' again.")


def _mkfs(executor: Executor, description: str, command: List[str]):
    try:
        executor.run(description=description, command=command)
    except ShellCommandError as e:
        raise FilesystemError(f"{description} failed", cause=e) from e


def format_targets(executor: Executor, state: InstallerState, labels: Optional[Labels] = None,
                   swaps_path: str = PROC_SWAPS):
    """
    Creates the filesystems: ext2 on boot, FAT32 on EFI, swap (activated) and the
    selected root filesystem on the final root device.

    Raises:
        PreconditionError: If partitioning or the LUKS/LVM layering has not completed.
        FilesystemError: If a mkfs, mkswap or swapon call fails.
    """
    labels = labels or Labels()
    _require_layered(state)
    root = state.root_mapper

    executor.logger.section(f"Creating filesystems on {state.target_disk}")

    if state.boot_partition is not None:
        _mkfs(executor, f"Formatting boot partition {state.boot_partition.path} ({BOOT_FS})",
              ["mkfs.ext2", "-F", "-L", labels.boot, state.boot_partition.path])

    if state.efi_partition is not None:
        _mkfs(executor, f"Formatting EFI partition {state.efi_partition.path} (FAT32)",
              ["mkfs.vfat", "-F32", "-n", labels.efi, state.efi_partition.path])

    swap = state.swap_mapper
    if swap:
        _mkfs(executor, f"Creating swap on {swap}", ["mkswap", "-L", labels.swap, swap])
        if is_swap_active(swap, swaps_path):
            executor.logger.info(f"Swap {swap} already active")
        else:
            _mkfs(executor, f"Activating swap on {swap}", ["swapon", swap])

    _mkfs(executor, f"Formatting root device {root} ({state.root_fs.value})",
          ROOT_MKFS[state.root_fs] + [labels.root, root])

    state.stage = DiskStage.FORMATTED


# --- Cache migration ---

def migrate_cache_file(source: str, destination: str, logger: RichAppLogger) -> str:
    """
    Moves one cached download to `destination` and returns where the file now lives.

    Uses a rename when both paths share a filesystem and copy-then-delete otherwise.
    Failures are logged and leave the file where it was.
    """
    if not source or os.path.abspath(source) == os.path.abspath(destination):
        return source
    if not os.path.isfile(source):
        return destination if os.path.isfile(destination) else source

    try:
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        os.rename(source, destination)
    except OSError as e:
        if e.errno != errno.EXDEV:
            logger.error(f"Could not move cached file {source} to {destination}: {e}")
            return source
        try:
            shutil.copy2(source, destination)
        except OSError as copy_error:
            logger.error(f"Could not copy cached file {source} to {destination}: {copy_error}")
            return source
        try:
            os.unlink(source)
        except OSError as unlink_error:
            logger.warning(f"Copied {source} but could not remove the original: {unlink_error}")

    logger.info(f"Cached file moved: {source} -> {destination}")
    return destination


def migrate_cached_artifacts(artifacts: CachedArtifacts, directory: str, logger: RichAppLogger) -> CachedArtifacts:
    """Relocates every known artifact into `directory`, keeping its file name."""
    def move(path: str) -> str:
        if not path:
            return path
        return migrate_cache_file(path, os.path.join(directory, os.path.basename(path)), logger)

    return CachedArtifacts(stage3=move(artifacts.stage3), digest=move(artifacts.digest), portage=move(artifacts.portage))


# --- Mounting ---

def _mount_sequence(state: InstallerState) -> List[Tuple[str, str, str]]:
    """(device, mountpoint, fstype) in dependency order: root, /boot, /boot/efi."""
    root_dir = state.install_root
    sequence = [(state.root_mapper, root_dir, state.root_fs.value)]
    if state.boot_partition is not None:
        sequence.append((state.boot_partition.path, os.path.join(root_dir, "boot"), BOOT_FS))
    if state.boot_mode is BootMode.UEFI and state.efi_partition is not None:
        sequence.append((state.efi_partition.path, os.path.join(root_dir, "boot", "efi"), EFI_FS))
    return sequence


def _log_filesystem_probe(executor: Executor, device: str):
    try:
        _, stdout, _ = executor.execute_command(["blkid", "-o", "export", device], check=False)
    except ShellCommandError as e:
        executor.logger.warning(f"blkid probe of {device} failed: {e}")
        return
    executor.logger.info(f"Filesystem probe for {device}:\n{stdout.strip() or '(no signature found)'}")


def mount_targets(executor: Executor, state: InstallerState, settings: InstallerSettings,
                  mounts_path: str = PROC_MOUNTS):
    """
    Mounts root, then /boot, then /boot/efi (UEFI) under the install root,
    creating each mountpoint right before mounting it. Targets that are
    already mounted are left alone.

    Once root is mounted the cached downloads are moved to the target's
    cache directory (best effort). In dry-run mode neither the mountpoints
    nor the cache are touched.

    Raises:
        PreconditionError: If the disk has not been partitioned and layered.
        MountError: If a mountpoint cannot be created or a mount fails.
    """
    _require_layered(state)
    dry_run = executor.dry_run

    executor.logger.section(f"Mounting target filesystems under {state.install_root}")

    for index, (device, mountpoint, fstype) in enumerate(_mount_sequence(state)):
        if dry_run:
            executor.logger.info(f"DRY RUN: mountpoint {mountpoint} not created")
        else:
            try:
                os.makedirs(mountpoint, exist_ok=True)
            except OSError as e:
                raise MountError(f"Could not create mountpoint {mountpoint}: {e}") from e

        if is_path_mounted(mountpoint, mounts_path):
            executor.logger.info(f"{mountpoint} is already mounted")
        else:
            if index == 0:
                _log_filesystem_probe(executor, device)
            try:
                executor.run(description=f"Mounting {device} on {mountpoint}",
                             command=["mount", "-t", fstype, device, mountpoint])
            except ShellCommandError as e:
                raise MountError(f"Could not mount {device} on {mountpoint}", cause=e) from e

        if index == 0:
            target_cache = cache_directory(settings, state.install_root, prefer_install_root=True)
            if dry_run:
                executor.logger.info(f"DRY RUN: cached downloads not moved to {target_cache}")
            else:
                state.disk_prepared = True
                state.artifacts = migrate_cached_artifacts(state.artifacts, target_cache, executor.logger)

    state.stage = DiskStage.MOUNTED


def format_and_mount(executor: Executor, state: InstallerState, settings: InstallerSettings,
                     mounts_path: str = PROC_MOUNTS, swaps_path: str = PROC_SWAPS):
    """
    Formats the prepared devices (unless that already happened) and mounts them.
    Running it again after success only re-checks the mounts.
    """
    if state.stage < DiskStage.FORMATTED:
        format_targets(executor, state, settings.labels, swaps_path=swaps_path)
    else:
        executor.logger.info("Filesystems already created; skipping formatting")
    mount_targets(executor, state, settings, mounts_path=mounts_path)
