# libero_installer/state.py

import os
from enum import Enum, IntEnum
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from libero_installer.config.settings import FilesystemType, InstallerSettings
from libero_installer.devices import BlockDevice, RawPartition

EFI_VARS_PATH = "/sys/firmware/efi/efivars"

STAGE3_FALLBACK_NAME = "stage3.tar.xz"
DIGEST_FALLBACK_NAME = "stage3.tar.xz.DIGESTS"
PORTAGE_FALLBACK_NAME = "portage-latest.tar.xz"


# --- 1. Enumerations ---

class BootMode(str, Enum):
    UEFI = "uefi"
    LEGACY = "legacy"

    @property
    def display_name(self) -> str:
        return "UEFI (GPT)" if self is BootMode.UEFI else "Legacy BIOS (MBR)"

    @property
    def table_label(self) -> str:
        """Partition table label as understood by parted."""
        return "gpt" if self is BootMode.UEFI else "msdos"


class DiskStage(IntEnum):
    """Progress of the disk preparation flow, in the order it is reached."""
    UNPREPARED = 0
    PLANNED = 1
    PARTITIONED = 2
    LAYERED = 3
    FORMATTED = 4
    MOUNTED = 5


class PartitionRole(str, Enum):
    EFI = "efi"
    BOOT = "boot"
    SWAP = "swap"
    ROOT = "root"


MOUNTPOINTS: Dict[PartitionRole, str] = {
    PartitionRole.EFI: "/boot/efi",
    PartitionRole.BOOT: "/boot",
    PartitionRole.ROOT: "/",
    PartitionRole.SWAP: "swap",
}


def detect_boot_mode(efivars_path: str = EFI_VARS_PATH) -> BootMode:
    """UEFI when the firmware exposes EFI variables, legacy otherwise."""
    return BootMode.UEFI if os.path.isdir(efivars_path) else BootMode.LEGACY


# --- 2. Disk and partition descriptions ---

class DiskInfo(BaseModel):
    """A block device found by the inventory. Rebuilt on every scan."""
    name: str
    path: str
    model: str = "Generic"
    size_mb: int = Field(gt=0)

    @property
    def human_size(self) -> str:
        if self.size_mb > 4096:
            return f"{self.size_mb / 1024.0:.1f} GB"
        return f"{self.size_mb} MB"


class PartitionSpec(BaseModel):
    """One entry of a partition plan. `device` stays empty until the plan is applied."""
    role: PartitionRole
    number: int = Field(ge=1)
    label: str
    gpt_type: str
    mbr_type: Optional[str] = None
    size_spec: str
    size_mb: Optional[int] = Field(None, description="None means the rest of the disk.")
    start_mb: int
    end_mb: int
    device: str = ""

    @property
    def mountpoint(self) -> str:
        return MOUNTPOINTS[self.role]

    @property
    def display_size(self) -> str:
        return "rest-of-disk" if self.size_mb is None else self.size_spec

    def type_id(self, boot_mode: BootMode) -> Optional[str]:
        return self.gpt_type if boot_mode is BootMode.UEFI else self.mbr_type


# --- 3. Cached bootstrap artifacts ---

def artifact_name_from_url(url: str, fallback: str) -> str:
    """Local file name for a downloaded artifact: the URL's basename, or `fallback`."""
    name = os.path.basename(urlparse(url).path) if url else ""
    return name or fallback


def cache_directory(settings: InstallerSettings, install_root: str = "", prefer_install_root: bool = False) -> str:
    """The live-environment cache directory, or its counterpart under the mounted target root."""
    if prefer_install_root and install_root:
        return os.path.join(install_root.rstrip("/"), settings.cache_dir.lstrip("/"))
    return settings.cache_dir


class CachedArtifacts(BaseModel):
    """Absolute paths of the bootstrap downloads, wherever they currently live."""
    stage3: str = ""
    digest: str = ""
    portage: str = ""

    @classmethod
    def in_directory(cls, settings: InstallerSettings, directory: str) -> 'CachedArtifacts':
        sources = settings.sources
        return cls(
            stage3=os.path.join(directory, artifact_name_from_url(sources.stage3_url, STAGE3_FALLBACK_NAME)),
            digest=os.path.join(directory, artifact_name_from_url(sources.stage3_digest_url, DIGEST_FALLBACK_NAME)),
            portage=os.path.join(directory, artifact_name_from_url(sources.portage_url, PORTAGE_FALLBACK_NAME)),
        )


# --- 4. The installer state ---

class InstallerState(BaseModel):
    """
    Everything the disk preparation flow has chosen or produced so far.

    A single instance is created when the wizard starts and handed to every step.
    """
    model_config = ConfigDict(validate_assignment=True)

    # User selections
    boot_mode: BootMode = Field(default_factory=detect_boot_mode)
    root_fs: FilesystemType = FilesystemType.EXT4
    swap_size_mb: int = Field(1024, ge=0)
    use_luks: bool = False
    use_lvm: bool = False

    # Naming
    install_root: str = "/mnt/gentoo"
    vg_name: str = "libero"
    luks_name: str = "cryptroot"

    # Target disk
    target_disk: str = ""
    disk_model: str = ""
    disk_size_mb: int = Field(0, ge=0)

    # Results of the stages
    plan: List[PartitionSpec] = Field(default_factory=list)
    efi_partition: Optional[RawPartition] = None
    boot_partition: Optional[RawPartition] = None
    swap_partition: Optional[RawPartition] = None
    root_partition: Optional[RawPartition] = None
    root_device: Optional[BlockDevice] = None
    swap_device: Optional[BlockDevice] = None

    stage: DiskStage = DiskStage.UNPREPARED
    disk_prepared: bool = False
    artifacts: CachedArtifacts = Field(default_factory=CachedArtifacts)

    @classmethod
    def from_settings(cls, settings: InstallerSettings, **overrides) -> 'InstallerState':
        values = dict(
            root_fs=settings.root_fs,
            swap_size_mb=settings.swap_size_mb,
            install_root=settings.install_root,
            vg_name=settings.vg_name,
            luks_name=settings.luks_name,
            artifacts=CachedArtifacts.in_directory(settings, cache_directory(settings)),
        )
        values.update(overrides)
        return cls(**values)

    @property
    def root_mapper(self) -> str:
        """Final root device path; the partition itself when no layer was applied."""
        if self.root_device is not None:
            return self.root_device.path
        return self.root_partition.path if self.root_partition else ""

    @property
    def swap_mapper(self) -> str:
        if self.swap_device is not None:
            return self.swap_device.path
        return self.swap_partition.path if self.swap_partition else ""

    def invalidate_plan(self):
        """Forget every result derived from the current selections."""
        self.plan = []
        self.efi_partition = None
        self.boot_partition = None
        self.swap_partition = None
        self.root_partition = None
        self.root_device = None
        self.swap_device = None
        self.stage = DiskStage.UNPREPARED
        self.disk_prepared = False

    def selection_summary(self) -> str:
        disk = f"{self.target_disk} ({self.disk_size_mb} MB)" if self.target_disk else "none"
        return (
            f"Disk: {disk} | Boot: {self.boot_mode.display_name} | Root FS: {self.root_fs.value} | "
            f"Swap: {self.swap_size_mb} MB | LUKS: {'on' if self.use_luks else 'off'} | "
            f"LVM: {'on' if self.use_lvm else 'off'} | Stage: {self.stage.name.lower()}"
        )
