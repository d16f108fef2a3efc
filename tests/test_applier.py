import pytest

from libero_installer.disk.applier import apply_plan, partition_device_path
from libero_installer.disk.planner import GPT_EFI, GPT_LINUX, GPT_LVM, GPT_SWAP, build_plan
from libero_installer.state import BootMode, PartitionRole
from libero_installer.utils.exceptions import PartitioningError, ShellCommandError

# ======= Execute with: pytest tests/test_applier.py ========


def commands(executor):
    return [c.kwargs["command"] for c in executor.run.call_args_list]


@pytest.mark.parametrize("disk,number,expected", [
    ("/dev/sda", 1, "/dev/sda1"),
    ("/dev/vdb", 3, "/dev/vdb3"),
    ("/dev/nvme0n1", 2, "/dev/nvme0n1p2"),
    ("/dev/mmcblk0", 1, "/dev/mmcblk0p1"),
])
def test_partition_device_path(disk, number, expected):
    assert partition_device_path(disk, number) == expected


# ----------------------------------------------------------------------
# --- Command sequence ---
# ----------------------------------------------------------------------

def test_apply_uefi_plan_command_sequence(mock_executor):
    plan = build_plan(BootMode.UEFI, False, 2048, 20000)

    apply_plan(mock_executor, "/dev/sda", plan, BootMode.UEFI)

    assert commands(mock_executor) == [
        ["wipefs", "-a", "/dev/sda"],
        ["parted", "-s", "/dev/sda", "mklabel", "gpt"],
        ["parted", "-s", "-a", "optimal", "/dev/sda", "unit", "MiB", "mkpart", "LIBERO_EFI", "1", "513"],
        ["parted", "-s", "-a", "optimal", "/dev/sda", "unit", "MiB", "mkpart", "LIBERO_BOOT", "513", "1025"],
        ["parted", "-s", "-a", "optimal", "/dev/sda", "unit", "MiB", "mkpart", "LIBERO_SWAP", "1025", "3073"],
        ["parted", "-s", "-a", "optimal", "/dev/sda", "unit", "MiB", "mkpart", "LIBERO_ROOT", "3073", "19992"],
        ["sfdisk", "--part-type", "/dev/sda", "1", GPT_EFI],
        ["parted", "-s", "/dev/sda", "set", "1", "esp", "on"],
        ["sfdisk", "--part-type", "/dev/sda", "2", GPT_LINUX],
        ["sfdisk", "--part-type", "/dev/sda", "3", GPT_SWAP],
        ["sfdisk", "--part-type", "/dev/sda", "4", GPT_LINUX],
        ["partprobe", "/dev/sda"],
        ["udevadm", "settle"],
    ]


def test_apply_legacy_plan_uses_msdos_table_and_boot_flag(mock_executor):
    plan = build_plan(BootMode.LEGACY, False, 1024, 20000)

    apply_plan(mock_executor, "/dev/vda", plan, BootMode.LEGACY)
    issued = commands(mock_executor)

    assert ["parted", "-s", "/dev/vda", "mklabel", "msdos"] in issued
    assert all(c[8] == "primary" for c in issued if "mkpart" in c)
    assert ["sfdisk", "--part-type", "/dev/vda", "1", "83"] in issued
    assert ["sfdisk", "--part-type", "/dev/vda", "2", "82"] in issued
    assert ["parted", "-s", "/dev/vda", "set", "1", "boot", "on"] in issued
    assert not any("esp" in c for c in issued)


def test_apply_lvm_plan_flags_root(mock_executor):
    plan = build_plan(BootMode.UEFI, True, 2048, 20000)

    apply_plan(mock_executor, "/dev/sda", plan, BootMode.UEFI)
    issued = commands(mock_executor)

    assert ["sfdisk", "--part-type", "/dev/sda", "3", GPT_LVM] in issued
    assert ["parted", "-s", "/dev/sda", "set", "3", "lvm", "on"] in issued


def test_apply_plan_returns_resolved_devices(mock_executor):
    plan = build_plan(BootMode.UEFI, False, 0, 20000)

    resolved = apply_plan(mock_executor, "/dev/nvme0n1", plan, BootMode.UEFI)

    assert {s.role: s.device for s in resolved} == {
        PartitionRole.EFI: "/dev/nvme0n1p1",
        PartitionRole.BOOT: "/dev/nvme0n1p2",
        PartitionRole.ROOT: "/dev/nvme0n1p3",
    }
    # the input plan is left untouched
    assert all(s.device == "" for s in plan)


# ----------------------------------------------------------------------
# --- Failure handling ---
# ----------------------------------------------------------------------

def test_apply_plan_aborts_on_first_failure(mock_executor):
    plan = build_plan(BootMode.UEFI, False, 0, 20000)

    def fail_second_mkpart(description, command, **kwargs):
        if "mkpart" in command and command[-2] == "513":
            raise ShellCommandError(" ".join(command), exit_code=1, stderr="Error: overlapping")
        return 0, "", ""

    mock_executor.run.side_effect = fail_second_mkpart

    with pytest.raises(PartitioningError) as excinfo:
        apply_plan(mock_executor, "/dev/sda", plan, BootMode.UEFI)

    assert "boot partition" in str(excinfo.value)
    assert isinstance(excinfo.value.cause, ShellCommandError)
    issued = commands(mock_executor)
    assert issued[-1][-3:] == ["LIBERO_BOOT", "513", "1025"]
    assert not any(c[0] in ("sfdisk", "partprobe") for c in issued)


def test_apply_plan_tolerates_udev_settle_failure(mock_executor):
    plan = build_plan(BootMode.LEGACY, False, 0, 8000)

    def fail_settle(description, command, **kwargs):
        if command[0] == "udevadm":
            raise ShellCommandError("udevadm settle", exit_code=1)
        return 0, "", ""

    mock_executor.run.side_effect = fail_settle

    resolved = apply_plan(mock_executor, "/dev/sdb", plan, BootMode.LEGACY)

    assert [s.device for s in resolved] == ["/dev/sdb1", "/dev/sdb2"]
    mock_executor.logger.warning.assert_called_once()


def test_apply_empty_plan_is_refused(mock_executor):
    with pytest.raises(PartitioningError):
        apply_plan(mock_executor, "/dev/sda", [], BootMode.UEFI)
    mock_executor.run.assert_not_called()
