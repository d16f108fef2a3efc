# libero_installer/disk/release.py

import os
import re
from typing import List, Tuple

from pydantic import BaseModel

from libero_installer.utils.executor import Executor
from libero_installer.utils.exceptions import ShellCommandError

PROC_SWAPS = "/proc/swaps"
_LSBLK_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")


class ReleaseStep(BaseModel):
    """Outcome of one deactivation attempted while releasing a disk."""
    action: str
    target: str
    ok: bool
    detail: str = ""


class ReleaseReport(BaseModel):
    """
    Every step attempted by release_disk, in order.

    A failed step does not stop the ones after it, so the report may hold
    several failures. A disk that was not in use produces an empty report.
    """
    device: str
    steps: List[ReleaseStep] = []

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    @property
    def failures(self) -> List[ReleaseStep]:
        return [step for step in self.steps if not step.ok]

    def summary(self) -> str:
        if not self.steps:
            return f"{self.device} was not in use."
        if self.ok:
            return f"Released {self.device} ({len(self.steps)} step(s))."
        failed = ", ".join(f"{s.action} {s.target}" for s in self.failures)
        return f"Could not fully release {self.device}; failed: {failed}."


def _unescape_lsblk(value: str) -> str:
    """lsblk -r encodes spaces and other unsafe characters as \\xNN."""
    return _LSBLK_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)


def _list_block_nodes(executor: Executor, device: str) -> List[Tuple[str, str, str]]:
    """(name, type, mountpoint) for the disk's children, in lsblk tree order."""
    _, stdout, _ = executor.execute_command(["lsblk", "-nrpo", "NAME,TYPE,MOUNTPOINT", device])
    nodes = []
    for line in stdout.splitlines():
        fields = line.split(" ", 2)
        if len(fields) < 2:
            continue
        name, node_type = fields[0], fields[1]
        mountpoint = _unescape_lsblk(fields[2]) if len(fields) > 2 else ""
        if node_type == "disk":
            continue
        nodes.append((name, node_type, mountpoint))
    return nodes


def _active_swaps_on(device: str, swaps_path: str) -> List[str]:
    try:
        with open(swaps_path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()[1:]
    except OSError:
        return []
    entries = [line.split()[0] for line in lines if line.strip()]
    return [entry for entry in entries if entry.startswith(device)]


def _attempt(executor: Executor, report: ReleaseReport, action: str, target: str, command: List[str]):
    try:
        executor.run(description=f"{action.capitalize()} {target}", command=command)
        report.steps.append(ReleaseStep(action=action, target=target, ok=True))
    except ShellCommandError as e:
        executor.logger.warning(f"Release step '{action} {target}' failed: {e}")
        report.steps.append(ReleaseStep(action=action, target=target, ok=False, detail=str(e)))


def _mount_depth(mountpoint: str) -> int:
    return len([part for part in mountpoint.split("/") if part])


def release_disk(executor: Executor, device: str, swaps_path: str = PROC_SWAPS) -> ReleaseReport:
    """
    Deactivates everything that holds `device` busy: mounts, swap, LUKS mappings and LVM volumes.

    Mountpoints are unmounted deepest path first, so /mnt/gentoo/boot/efi goes before
    /mnt/gentoo/boot and /mnt/gentoo. Swap is turned off next. Block layers are then
    handled deepest node first, so logical volumes are deactivated before the
    encryption mapping under them is closed. Safe to call on a disk that is not in use.
    """
    report = ReleaseReport(device=device)
    executor.logger.info(f"Releasing {device} before partitioning")

    try:
        nodes = _list_block_nodes(executor, device)
    except ShellCommandError as e:
        executor.logger.warning(f"Could not enumerate the children of {device}: {e}")
        report.steps.append(ReleaseStep(action="enumerate", target=device, ok=False, detail=str(e)))
        nodes = []

    innermost_first = list(reversed(nodes))
    mountpoints = [m for _, _, m in innermost_first if m and m != "[SWAP]"]
    for mountpoint in sorted(mountpoints, key=_mount_depth, reverse=True):
        _attempt(executor, report, "unmount", mountpoint, ["umount", "-f", mountpoint])

    for name, _, mountpoint in innermost_first:
        if mountpoint == "[SWAP]":
            _attempt(executor, report, "swapoff", name, ["swapoff", name])

    for name, node_type, _ in innermost_first:
        if node_type == "crypt":
            _attempt(executor, report, "close", name, ["cryptsetup", "close", os.path.basename(name)])
        elif node_type == "lvm":
            _attempt(executor, report, "deactivate", name, ["lvchange", "-an", name])

    for swap in _active_swaps_on(device, swaps_path):
        _attempt(executor, report, "swapoff", swap, ["swapoff", swap])

    if report.ok:
        executor.logger.info(report.summary())
    else:
        executor.logger.error(report.summary())
    return report
