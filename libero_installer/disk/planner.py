# libero_installer/disk/planner.py

from typing import List, Optional

from rich.table import Table

from libero_installer.config.settings import Labels
from libero_installer.state import BootMode, PartitionRole, PartitionSpec
from libero_installer.utils.exceptions import InsufficientSpaceError

# --- Partition type identifiers ---
GPT_EFI = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"
GPT_LINUX = "0FC63DAF-8483-4772-8E79-3D69D8477DE4"
GPT_SWAP = "0657FD6D-A4AB-43C4-84E5-0933C84B4F4F"
GPT_LVM = "E6D6D379-F507-44C2-A23C-238F2A3DF928"

MBR_LINUX = "83"
MBR_SWAP = "82"
MBR_LVM = "8e"

# --- Layout constants (MiB) ---
ALIGNMENT_MB = 1
EFI_SIZE_MB = 512
BOOT_SIZE_MB = 512
ROOT_MIN_MB = 128
TRAILER_MB = 8  # GPT backup header and table at the end of the disk


def reserved_overhead_mb(boot_mode: BootMode, use_lvm: bool, swap_size_mb: int) -> int:
    """Space taken by everything except root."""
    overhead = ALIGNMENT_MB + BOOT_SIZE_MB
    if boot_mode is BootMode.UEFI:
        overhead += EFI_SIZE_MB
    if swap_size_mb > 0 and not use_lvm:
        overhead += swap_size_mb
    return overhead


def minimum_disk_size_mb(boot_mode: BootMode, use_lvm: bool, swap_size_mb: int) -> int:
    """Largest disk size that is still rejected; any disk must be bigger than this."""
    return reserved_overhead_mb(boot_mode, use_lvm, swap_size_mb) + ROOT_MIN_MB + TRAILER_MB


def build_plan(boot_mode: BootMode, use_lvm: bool, swap_size_mb: int, disk_size_mb: int,
               labels: Optional[Labels] = None) -> List[PartitionSpec]:
    """
    Computes the partition layout for the target disk without touching it.

    The order is fixed: EFI (UEFI only), boot, swap (only as a partition when
    LVM is off), root. Partitions are numbered from 1 in that order and root
    takes the rest of the disk minus the trailer.

    Raises:
        InsufficientSpaceError: If root would get 128 MiB or less.
    """
    labels = labels or Labels()
    overhead = reserved_overhead_mb(boot_mode, use_lvm, swap_size_mb)
    root_end = disk_size_mb - TRAILER_MB
    if root_end <= overhead + ROOT_MIN_MB:
        raise InsufficientSpaceError(
            required_mb=minimum_disk_size_mb(boot_mode, use_lvm, swap_size_mb),
            available_mb=disk_size_mb,
        )

    plan: List[PartitionSpec] = []
    cursor = ALIGNMENT_MB

    def add_fixed(role: PartitionRole, label: str, gpt_type: str, mbr_type, size_mb: int):
        nonlocal cursor
        plan.append(PartitionSpec(
            role=role, number=len(plan) + 1, label=label,
            gpt_type=gpt_type, mbr_type=mbr_type,
            size_spec=f"+{size_mb}M", size_mb=size_mb,
            start_mb=cursor, end_mb=cursor + size_mb,
        ))
        cursor += size_mb

    if boot_mode is BootMode.UEFI:
        add_fixed(PartitionRole.EFI, labels.efi, GPT_EFI, None, EFI_SIZE_MB)
    add_fixed(PartitionRole.BOOT, labels.boot, GPT_LINUX, MBR_LINUX, BOOT_SIZE_MB)
    if swap_size_mb > 0 and not use_lvm:
        add_fixed(PartitionRole.SWAP, labels.swap, GPT_SWAP, MBR_SWAP, swap_size_mb)

    plan.append(PartitionSpec(
        role=PartitionRole.ROOT, number=len(plan) + 1, label=labels.root,
        gpt_type=GPT_LVM if use_lvm else GPT_LINUX,
        mbr_type=MBR_LVM if use_lvm else MBR_LINUX,
        size_spec=f"-{TRAILER_MB}M", size_mb=None,
        start_mb=cursor, end_mb=root_end,
    ))
    return plan


def render_plan(disk: str, disk_size_mb: int, plan: List[PartitionSpec]) -> Table:
    """Table shown to the user before anything is written to the disk."""
    table = Table(title=f"Target: {disk} ({disk_size_mb} MB)")
    table.add_column("Role", style="cyan", no_wrap=True)
    table.add_column("Part#", justify="right")
    table.add_column("Size")
    table.add_column("Mount")
    table.add_column("Label", style="green")

    for spec in plan:
        table.add_row(spec.role.value, str(spec.number), spec.display_size, spec.mountpoint, spec.label)
    return table


def describe_plan(disk: str, disk_size_mb: int, plan: List[PartitionSpec]) -> str:
    """Plain-text version of render_plan, for the log file."""
    lines = [f"Target: {disk} ({disk_size_mb} MB)"]
    lines.append(f"{'Role':<6} {'Part#':>5}  {'Size':<14} {'Mount':<10} Label")
    for spec in plan:
        lines.append(f"{spec.role.value:<6} {spec.number:>5}  {spec.display_size:<14} {spec.mountpoint:<10} {spec.label}")
    return "\n".join(lines)
