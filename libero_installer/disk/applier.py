# libero_installer/disk/applier.py

from typing import List

from libero_installer.disk.planner import GPT_LVM
from libero_installer.state import BootMode, PartitionRole, PartitionSpec
from libero_installer.utils.executor import Executor
from libero_installer.utils.exceptions import PartitioningError, ShellCommandError


def partition_device_path(disk: str, number: int) -> str:
    """
    Kernel name of partition `number` on `disk`.

    Disks whose name ends in a digit (nvme0n1, mmcblk0, loop0) separate the
    partition number with a 'p'.
    """
    separator = "p" if disk[-1:].isdigit() else ""
    return f"{disk}{separator}{number}"


def _flags_for(spec: PartitionSpec, boot_mode: BootMode) -> List[str]:
    if spec.role is PartitionRole.EFI and boot_mode is BootMode.UEFI:
        return ["esp"]
    if spec.role is PartitionRole.BOOT and boot_mode is BootMode.LEGACY:
        return ["boot"]
    if spec.role is PartitionRole.ROOT and spec.gpt_type == GPT_LVM:
        return ["lvm"]
    return []


def _run_step(executor: Executor, description: str, command: List[str], failure: str):
    try:
        executor.run(description=description, command=command)
    except ShellCommandError as e:
        raise PartitioningError(failure, cause=e) from e


def apply_plan(executor: Executor, device: str, plan: List[PartitionSpec], boot_mode: BootMode) -> List[PartitionSpec]:
    """
    Writes `plan` to `device`: a fresh GPT (UEFI) or MBR (legacy) table, every
    partition in plan order, their type ids and flags, then a kernel re-read.

    The first failing command aborts the whole operation.

    Returns:
        A copy of the plan with each spec's `device` set to its partition path.

    Raises:
        PartitioningError: If any partitioning command fails.
    """
    if not plan:
        raise PartitioningError("Refusing to partition with an empty plan.")

    executor.logger.info(f"Partitioning {device} with a {boot_mode.table_label} table ({len(plan)} partitions)")

    # 1. Partition table
    _run_step(executor, f"Wiping signatures on {device}", ["wipefs", "-a", device],
              f"Could not wipe existing signatures on {device}")
    _run_step(executor, f"Writing {boot_mode.table_label} partition table to {device}",
              ["parted", "-s", device, "mklabel", boot_mode.table_label],
              f"Could not write a partition table to {device}")

    # 2. Partitions, in order
    for spec in plan:
        name = spec.label if boot_mode is BootMode.UEFI else "primary"
        _run_step(executor, f"Creating partition {spec.number} ({spec.role.value}, {spec.display_size})",
                  ["parted", "-s", "-a", "optimal", device, "unit", "MiB",
                   "mkpart", name, str(spec.start_mb), str(spec.end_mb)],
                  f"Could not create the {spec.role.value} partition on {device}")

    # 3. Types and flags
    for spec in plan:
        type_id = spec.type_id(boot_mode)
        if type_id:
            _run_step(executor, f"Setting type of partition {spec.number} to {type_id}",
                      ["sfdisk", "--part-type", device, str(spec.number), type_id],
                      f"Could not set the type of partition {spec.number}")
        for flag in _flags_for(spec, boot_mode):
            _run_step(executor, f"Setting '{flag}' flag on partition {spec.number}",
                      ["parted", "-s", device, "set", str(spec.number), flag, "on"],
                      f"Could not set the {flag} flag on partition {spec.number}")

    # 4. Kernel re-read
    _run_step(executor, f"Re-reading partition table of {device}", ["partprobe", device],
              f"The kernel did not accept the new partition table on {device}")
    try:
        executor.run(description="Waiting for device nodes", command=["udevadm", "settle"])
    except ShellCommandError as e:
        executor.logger.warning(f"udevadm settle failed, continuing: {e}")

    resolved = [spec.model_copy(update={"device": partition_device_path(device, spec.number)}) for spec in plan]
    for spec in resolved:
        executor.logger.info(f"{spec.role.value} -> {spec.device}")
    return resolved
