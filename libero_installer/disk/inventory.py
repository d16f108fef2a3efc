# libero_installer/disk/inventory.py

import logging
import os
from typing import List, Optional

from libero_installer.state import DiskInfo
from libero_installer.utils.executor import Executor
from libero_installer.utils.exceptions import DiskInventoryError, ShellCommandError

logger = logging.getLogger(__name__)

SYS_BLOCK = "/sys/block"
SECTOR_SIZE = 512
MIB = 1024 * 1024
IGNORED_PREFIXES = ("loop", "ram", "fd")


def _read_text(path: str) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read().strip()
    except OSError:
        return None


def _disk_size_mb(device_dir: str) -> int:
    """Size in MiB from the sector count; 0 when unreadable."""
    raw = _read_text(os.path.join(device_dir, "size"))
    try:
        sectors = int(raw) if raw else 0
    except ValueError:
        return 0
    return sectors * SECTOR_SIZE // MIB


def list_disks(sys_block: str = SYS_BLOCK) -> List[DiskInfo]:
    """
    Enumerates usable block devices from sysfs.

    Loop, ram and floppy devices are ignored. A device whose size cannot be read
    (or is zero) is left out silently.

    Raises:
        DiskInventoryError: If the block device directory itself cannot be read.
    """
    try:
        names = sorted(os.listdir(sys_block))
    except OSError as e:
        logger.error(f"Unable to read {sys_block}: {e}")
        raise DiskInventoryError(f"Unable to read block devices from {sys_block}: {e.strerror or e}")

    disks: List[DiskInfo] = []
    for name in names:
        if name.startswith(".") or name.startswith(IGNORED_PREFIXES):
            continue

        device_dir = os.path.join(sys_block, name)
        size_mb = _disk_size_mb(device_dir)
        if size_mb <= 0:
            logger.debug(f"Skipping {name}: no usable size")
            continue

        model = _read_text(os.path.join(device_dir, "device", "model")) or "Generic"
        disks.append(DiskInfo(name=name, path=f"/dev/{name}", model=model, size_mb=size_mb))

    logger.info(f"Disk inventory found {len(disks)} device(s): {', '.join(d.name for d in disks) or 'none'}")
    return disks


def query_disk_size_mb(executor: Executor, device: str) -> int:
    """Asks the kernel for the size of `device` in MiB; 0 if it cannot be determined."""
    try:
        _, stdout, _ = executor.execute_command(["blockdev", "--getsize64", device])
        return int(stdout.strip()) // MIB
    except (ShellCommandError, ValueError) as e:
        logger.warning(f"Could not determine size of {device}: {e}")
        return 0
