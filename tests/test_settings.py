import os

import pytest

from libero_installer.config.settings import FilesystemType, InstallerSettings
from libero_installer.devices import EncryptedMapping, LogicalVolume, RawPartition
from libero_installer.state import (
    BootMode, CachedArtifacts, DiskStage, InstallerState, PartitionSpec, PartitionRole,
    artifact_name_from_url, cache_directory, detect_boot_mode
)

# ======= Execute with: pytest tests/test_settings.py ========


# ----------------------------------------------------------------------
# --- Configuration file ---
# ----------------------------------------------------------------------

def test_defaults():
    settings = InstallerSettings()

    assert settings.install_root == "/mnt/gentoo"
    assert settings.cache_dir == "/var/cache/libero-installer"
    assert settings.vg_name == "libero"
    assert settings.luks_name == "cryptroot"
    assert settings.luks_type == "luks1"
    assert settings.root_fs is FilesystemType.EXT4
    assert settings.labels.efi == "LIBERO_EFI"


def test_load_config_from_file(tmp_path):
    config = tmp_path / "installer.toml"
    config.write_text(
        'install_root = "/mnt/target"\n'
        'root_fs = "xfs"\n'
        "swap_size_mb = 4096\n"
        "\n"
        "[labels]\n"
        'root = "GENTOO"\n'
        "\n"
        "[sources]\n"
        'stage3_url = "https://distfiles.gentoo.org/releases/amd64/autobuilds/current-stage3-amd64-openrc/'
        'stage3-amd64-openrc-20240101T000000Z.tar.xz"\n'
    )

    settings = InstallerSettings.load_config_from_file(config)

    assert settings.install_root == "/mnt/target"
    assert settings.root_fs is FilesystemType.XFS
    assert settings.swap_size_mb == 4096
    assert settings.labels.root == "GENTOO"
    assert settings.labels.boot == "LIBERO_BOOT"


@pytest.mark.parametrize("content,match", [
    ("root_fs = [broken", "Invalid TOML"),
    ('root_fs = "zfs"', "Invalid configuration"),
    ("swap_size_mb = -5", "Invalid configuration"),
    ('vg_name = "bad name"', "Invalid configuration"),
    ('[labels]\nefi = "MUCH_TOO_LONG_LABEL"', "Invalid configuration"),
])
def test_load_config_rejects_bad_files(tmp_path, content, match):
    config = tmp_path / "bad.toml"
    config.write_text(content)

    with pytest.raises(ValueError, match=match):
        InstallerSettings.load_config_from_file(config)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ValueError, match="Error reading"):
        InstallerSettings.load_config_from_file(tmp_path / "missing.toml")


def test_display_summary():
    summary = InstallerSettings(root_fs="btrfs").display_summary()

    assert "Root filesystem:    btrfs" in summary
    assert "/var/log/libero-installer/installer.log" in summary


# ----------------------------------------------------------------------
# --- Installer state ---
# ----------------------------------------------------------------------

def test_state_from_settings(settings):
    state = InstallerState.from_settings(settings, boot_mode=BootMode.LEGACY, use_lvm=True)

    assert state.boot_mode is BootMode.LEGACY
    assert state.use_lvm is True
    assert state.use_luks is False
    assert state.install_root == settings.install_root
    assert state.stage == DiskStage.UNPREPARED
    assert state.artifacts.portage == "/var/cache/libero-installer/portage-latest.tar.xz"
    assert state.artifacts.stage3 == "/var/cache/libero-installer/stage3.tar.xz"


def test_state_rejects_negative_swap(state):
    with pytest.raises(ValueError):
        state.swap_size_mb = -1


def test_detect_boot_mode(tmp_path):
    assert detect_boot_mode(str(tmp_path)) is BootMode.UEFI
    assert detect_boot_mode(str(tmp_path / "efivars")) is BootMode.LEGACY


def test_boot_mode_labels():
    assert BootMode.UEFI.table_label == "gpt"
    assert BootMode.LEGACY.table_label == "msdos"
    assert BootMode("legacy").display_name == "Legacy BIOS (MBR)"


def test_mappers_fall_back_to_partitions(state):
    assert state.root_mapper == ""
    state.root_partition = RawPartition(path="/dev/sda4", number=4)
    state.swap_partition = RawPartition(path="/dev/sda3", number=3)

    assert state.root_mapper == "/dev/sda4"
    assert state.swap_mapper == "/dev/sda3"

    state.root_device = EncryptedMapping(name="cryptroot", upstream=state.root_partition)
    assert state.root_mapper == "/dev/mapper/cryptroot"


def test_invalidate_plan_keeps_selections(state):
    state.target_disk = "/dev/sda"
    state.use_luks = True
    state.root_partition = RawPartition(path="/dev/sda4", number=4)
    state.root_device = LogicalVolume(vg_name="libero", lv_name="root", physical_volume=state.root_partition)
    state.stage = DiskStage.LAYERED
    state.disk_prepared = True

    state.invalidate_plan()

    assert state.target_disk == "/dev/sda"
    assert state.use_luks is True
    assert state.root_partition is None
    assert state.root_device is None
    assert state.stage == DiskStage.UNPREPARED
    assert state.disk_prepared is False


def test_selection_summary(state):
    state.target_disk = "/dev/vda"
    state.disk_size_mb = 8192

    summary = state.selection_summary()

    assert "Disk: /dev/vda (8192 MB)" in summary
    assert "Boot: UEFI (GPT)" in summary
    assert "Stage: unprepared" in summary


def test_partition_spec_properties():
    spec = PartitionSpec(role=PartitionRole.ROOT, number=4, label="LIBERO_ROOT", gpt_type="gpt", mbr_type="83",
                         size_spec="-8M", start_mb=3073, end_mb=19992)

    assert spec.mountpoint == "/"
    assert spec.display_size == "rest-of-disk"
    assert spec.type_id(BootMode.LEGACY) == "83"


# ----------------------------------------------------------------------
# --- Cached artifacts ---
# ----------------------------------------------------------------------

@pytest.mark.parametrize("url,expected", [
    ("https://example.org/releases/stage3-amd64-openrc.tar.xz", "stage3-amd64-openrc.tar.xz"),
    ("https://example.org/file.tar.xz?mirror=1", "file.tar.xz"),
    ("https://example.org/", "fallback.tar.xz"),
    ("", "fallback.tar.xz"),
])
def test_artifact_name_from_url(url, expected):
    assert artifact_name_from_url(url, "fallback.tar.xz") == expected


def test_cache_directory(settings):
    assert cache_directory(settings) == "/var/cache/libero-installer"
    assert cache_directory(settings, "/mnt/gentoo/") == "/var/cache/libero-installer"
    assert cache_directory(settings, "/mnt/gentoo/", prefer_install_root=True) == \
        os.path.join("/mnt/gentoo", "var/cache/libero-installer")


def test_cached_artifacts_in_directory():
    settings = InstallerSettings(sources={"stage3_url": "https://example.org/stage3-amd64-systemd.tar.xz",
                                          "stage3_digest_url": "https://example.org/stage3-amd64-systemd.tar.xz.DIGESTS"})

    artifacts = CachedArtifacts.in_directory(settings, "/tmp/cache")

    assert artifacts.stage3 == "/tmp/cache/stage3-amd64-systemd.tar.xz"
    assert artifacts.digest == "/tmp/cache/stage3-amd64-systemd.tar.xz.DIGESTS"
    assert artifacts.portage == "/tmp/cache/portage-latest.tar.xz"
