# libero_installer/config/settings.py

from enum import Enum
from pathlib import Path
from typing import Literal

import tomlkit
import typer
from pydantic import BaseModel, Field, ValidationError


class FilesystemType(str, Enum):
    """Root filesystems the formatter knows how to create."""
    EXT4 = "ext4"
    XFS = "xfs"
    BTRFS = "btrfs"


class Labels(BaseModel):
    """Filesystem and partition labels written to the target disk."""
    efi: str = Field("LIBERO_EFI", max_length=11, description="FAT volume labels are limited to 11 characters.")
    boot: str = "LIBERO_BOOT"
    swap: str = "LIBERO_SWAP"
    root: str = "LIBERO_ROOT"


class Sources(BaseModel):
    """Download locations of the bootstrap artifacts; only their file names matter here."""
    stage3_url: str = ""
    stage3_digest_url: str = ""
    portage_url: str = "https://distfiles.gentoo.org/snapshots/portage-latest.tar.xz"


class InstallerSettings(BaseModel):
    """Defaults for a run of the installer, optionally read from a TOML file."""

    install_root: str = "/mnt/gentoo"
    cache_dir: str = "/var/cache/libero-installer"
    log_directory: str = "/var/log/libero-installer"
    log_file_name: str = "installer.log"

    vg_name: str = Field("libero", pattern=r"^[A-Za-z0-9+_.][A-Za-z0-9+_.-]*$")
    luks_name: str = Field("cryptroot", pattern=r"^[A-Za-z0-9_.-]+$")
    luks_type: Literal["luks1", "luks2"] = "luks1"

    root_fs: FilesystemType = FilesystemType.EXT4
    swap_size_mb: int = Field(1024, ge=0)

    labels: Labels = Field(default_factory=Labels)
    sources: Sources = Field(default_factory=Sources)

    @classmethod
    def load_config_from_file(cls, path: Path) -> 'InstallerSettings':
        """Loads and validates a TOML file against the Pydantic schema."""
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ValueError(f"Error reading configuration file: {e}")

        try:
            data = tomlkit.parse(content).unwrap()
        except Exception as e:
            raise ValueError(f"Invalid TOML format in file: {e}")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration in {path}: {e}")

    def display_summary(self) -> str:
        """Generates a short, styled summary of the effective settings."""
        s = typer.style("\nINSTALLER SETTINGS", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        s += f"  Install root:       {self.install_root}\n"
        s += f"  Cache directory:    {self.cache_dir}\n"
        s += f"  Log file:           {Path(self.log_directory) / self.log_file_name}\n"
        s += f"  Root filesystem:    {self.root_fs.value}\n"
        s += f"  Swap size:          {self.swap_size_mb} MB\n"
        s += f"  Volume group:       {self.vg_name}\n"
        s += f"  LUKS mapping:       {self.luks_name} ({self.luks_type})\n"
        return s
