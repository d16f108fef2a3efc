import pytest

from libero_installer.disk.release import ReleaseReport, release_disk
from libero_installer.utils.exceptions import ShellCommandError

# ======= Execute with: pytest tests/test_release.py ========


def commands(executor):
    return [c.kwargs["command"] for c in executor.run.call_args_list]


class FakeBlockLayer:
    """
    A tiny model of /dev/sda in use: mounted partitions, swap, an open LUKS
    mapping with an LVM volume on top. Deactivation commands change it, so
    lsblk output reflects what has already been released. Like the kernel,
    umount refuses a mountpoint that still has a mount nested below it.
    """

    def __init__(self, swaps_file):
        self.swaps_file = swaps_file
        self.nodes = [
            # name, type, mountpoint
            ["/dev/sda1", "part", "/mnt/gentoo/boot/efi"],
            ["/dev/sda2", "part", "/mnt/gentoo/boot"],
            ["/dev/sda3", "part", "[SWAP]"],
            ["/dev/sda4", "part", ""],
            ["/dev/mapper/cryptroot", "crypt", ""],
            ["/dev/mapper/libero-root", "lvm", "/mnt/gentoo"],
        ]
        self.write_swaps()

    def write_swaps(self):
        lines = ["Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority"]
        lines += [f"{n[0]}\tpartition\t1048572\t0\t-2" for n in self.nodes if n[2] == "[SWAP]"]
        self.swaps_file.write_text("\n".join(lines) + "\n")

    def lsblk(self, command, **kwargs):
        rows = ["/dev/sda disk "] + [f"{n} {t} {m.replace(' ', chr(92) + 'x20')}" for n, t, m in self.nodes]
        return 0, "\n".join(rows) + "\n", ""

    def run(self, description, command, **kwargs):
        tool, target = command[0], command[-1]
        if tool == "umount" and any(n[2].startswith(target + "/") for n in self.nodes):
            raise ShellCommandError(" ".join(command), exit_code=32, stderr=f"umount: {target}: target is busy.")
        for node in self.nodes:
            if tool == "umount" and node[2] == target:
                node[2] = ""
            elif tool == "swapoff" and node[0] == target:
                node[2] = ""
        if tool == "cryptsetup":
            self.nodes = [n for n in self.nodes if n[1] != "crypt"]
        if tool == "lvchange":
            self.nodes = [n for n in self.nodes if n[1] != "lvm"]
        self.write_swaps()
        return 0, "", ""


@pytest.fixture
def busy_disk(mock_executor, tmp_path):
    layer = FakeBlockLayer(tmp_path / "swaps")
    mock_executor.execute_command.side_effect = layer.lsblk
    mock_executor.run.side_effect = layer.run
    return layer


# ----------------------------------------------------------------------
# --- Release of an unused disk ---
# ----------------------------------------------------------------------

def test_release_unused_disk_is_a_no_op(mock_executor, tmp_path):
    swaps = tmp_path / "swaps"
    swaps.write_text("Filename\tType\tSize\tUsed\tPriority\n")
    mock_executor.execute_command.return_value = (0, "/dev/sdb disk \n/dev/sdb1 part \n", "")

    report = release_disk(mock_executor, "/dev/sdb", swaps_path=str(swaps))

    assert isinstance(report, ReleaseReport)
    assert report.ok
    assert report.steps == []
    mock_executor.run.assert_not_called()
    mock_executor.execute_command.assert_called_once_with(["lsblk", "-nrpo", "NAME,TYPE,MOUNTPOINT", "/dev/sdb"])


def test_release_twice_succeeds_both_times(mock_executor, busy_disk, tmp_path):
    first = release_disk(mock_executor, "/dev/sda", swaps_path=str(tmp_path / "swaps"))
    mock_executor.run.reset_mock()
    second = release_disk(mock_executor, "/dev/sda", swaps_path=str(tmp_path / "swaps"))

    assert first.ok and first.steps
    assert second.ok
    assert second.steps == []
    mock_executor.run.assert_not_called()


# ----------------------------------------------------------------------
# --- Ordering and actions ---
# ----------------------------------------------------------------------

def test_release_unmounts_children_before_parents(mock_executor, busy_disk, tmp_path):
    report = release_disk(mock_executor, "/dev/sda", swaps_path=str(tmp_path / "swaps"))

    assert report.ok, report.summary()
    assert commands(mock_executor) == [
        ["umount", "-f", "/mnt/gentoo/boot/efi"],
        ["umount", "-f", "/mnt/gentoo/boot"],
        ["umount", "-f", "/mnt/gentoo"],
        ["swapoff", "/dev/sda3"],
        ["lvchange", "-an", "/dev/mapper/libero-root"],
        ["cryptsetup", "close", "cryptroot"],
    ]


def test_release_nested_mounts_outside_install_root(mock_executor, tmp_path):
    layer = FakeBlockLayer(tmp_path / "swaps")
    layer.nodes = [
        ["/dev/sdb1", "part", "/boot/efi"],
        ["/dev/sdb2", "part", "/boot"],
        ["/dev/sdb3", "part", "/srv/data/archive"],
        ["/dev/sdb4", "part", "/srv/data"],
    ]
    mock_executor.execute_command.side_effect = layer.lsblk
    mock_executor.run.side_effect = layer.run

    report = release_disk(mock_executor, "/dev/sdb", swaps_path=str(tmp_path / "swaps"))

    assert report.ok, report.summary()
    unmounted = [c[-1] for c in commands(mock_executor)]
    assert unmounted.index("/boot/efi") < unmounted.index("/boot")
    assert unmounted.index("/srv/data/archive") < unmounted.index("/srv/data")
    assert all(n[2] == "" for n in layer.nodes)


def test_release_turns_off_swap_listed_only_in_proc_swaps(mock_executor, tmp_path):
    swaps = tmp_path / "swaps"
    swaps.write_text(
        "Filename\tType\tSize\tUsed\tPriority\n"
        "/dev/nvme0n1p2\tpartition\t2097148\t0\t-2\n"
        "/swapfile\tfile\t1048572\t0\t-3\n"
    )
    mock_executor.execute_command.return_value = (0, "/dev/nvme0n1 disk \n/dev/nvme0n1p2 part \n", "")

    report = release_disk(mock_executor, "/dev/nvme0n1", swaps_path=str(swaps))

    assert report.ok
    assert commands(mock_executor) == [["swapoff", "/dev/nvme0n1p2"]]


def test_release_unescapes_mountpoints(mock_executor, tmp_path):
    (tmp_path / "swaps").write_text("Filename\tType\tSize\tUsed\tPriority\n")
    mock_executor.execute_command.return_value = (0, "/dev/sdc disk \n/dev/sdc1 part /media/usb\\x20stick\n", "")

    release_disk(mock_executor, "/dev/sdc", swaps_path=str(tmp_path / "swaps"))

    assert commands(mock_executor) == [["umount", "-f", "/media/usb stick"]]


# ----------------------------------------------------------------------
# --- Best-effort continuation ---
# ----------------------------------------------------------------------

def test_release_continues_after_a_failed_step(mock_executor, busy_disk, tmp_path):
    def fail_lvchange(description, command, **kwargs):
        if command[0] == "lvchange":
            raise ShellCommandError(" ".join(command), exit_code=5, stderr="Logical volume in use")
        return busy_disk.run(description, command, **kwargs)

    mock_executor.run.side_effect = fail_lvchange

    report = release_disk(mock_executor, "/dev/sda", swaps_path=str(tmp_path / "swaps"))

    assert not report.ok
    assert [(s.action, s.target) for s in report.failures] == [("deactivate", "/dev/mapper/libero-root")]
    assert len(report.steps) == 6
    assert ["umount", "-f", "/mnt/gentoo/boot/efi"] in commands(mock_executor)
    assert "failed: deactivate /dev/mapper/libero-root" in report.summary()
    mock_executor.logger.error.assert_called()


def test_release_records_enumeration_failure(mock_executor, tmp_path):
    (tmp_path / "swaps").write_text("Filename\tType\tSize\tUsed\tPriority\n/dev/sdd1\tpartition\t1\t0\t-2\n")
    mock_executor.execute_command.side_effect = ShellCommandError("lsblk /dev/sdd", exit_code=32)

    report = release_disk(mock_executor, "/dev/sdd", swaps_path=str(tmp_path / "swaps"))

    assert not report.ok
    assert report.failures[0].action == "enumerate"
    # the swap scan still runs
    assert commands(mock_executor) == [["swapoff", "/dev/sdd1"]]
