# libero_installer/disk/lvm.py

from typing import List, Optional, Union

from pydantic import BaseModel

from libero_installer.devices import BlockDevice, EncryptedMapping, LogicalVolume, RawPartition
from libero_installer.utils.executor import Executor
from libero_installer.utils.exceptions import ShellCommandError, VolumeManagerError

ROOT_LV_NAME = "root"
SWAP_LV_NAME = "swap"


class LayeredDevices(BaseModel):
    """The final root device and, when swap lives in LVM, the swap volume."""
    root: BlockDevice
    swap: Optional[LogicalVolume] = None


def _lvm(executor: Executor, description: str, command: List[str]):
    try:
        executor.run(description=description, command=command)
    except ShellCommandError as e:
        raise VolumeManagerError(f"{description} failed", cause=e) from e


def apply_volume_manager(executor: Executor,
                         device: Union[RawPartition, EncryptedMapping],
                         swap_size_mb: int,
                         vg_name: str,
                         enabled: bool = True) -> LayeredDevices:
    """
    Turns `device` into the only physical volume of `vg_name` and carves the
    swap (optional) and root logical volumes out of it.

    Swap is created first with its exact size; root then takes 100% of the
    remaining free extents. With LVM disabled `device` is returned as root
    and no swap volume is reported.

    Raises:
        VolumeManagerError: If any LVM command fails.
    """
    if not enabled:
        return LayeredDevices(root=device)

    executor.logger.info(f"Creating volume group {vg_name} on {device.path}")
    _lvm(executor, f"Initializing physical volume {device.path}", ["pvcreate", "-ff", "-y", device.path])
    _lvm(executor, f"Creating volume group {vg_name}", ["vgcreate", vg_name, device.path])

    swap = None
    if swap_size_mb > 0:
        _lvm(executor, f"Creating {swap_size_mb}M swap volume",
             ["lvcreate", "-y", "-n", SWAP_LV_NAME, "-L", f"{swap_size_mb}M", vg_name])
        swap = LogicalVolume(vg_name=vg_name, lv_name=SWAP_LV_NAME, physical_volume=device)

    _lvm(executor, "Creating root volume",
         ["lvcreate", "-y", "-n", ROOT_LV_NAME, "-l", "100%FREE", vg_name])
    root = LogicalVolume(vg_name=vg_name, lv_name=ROOT_LV_NAME, physical_volume=device)

    return LayeredDevices(root=root, swap=swap)
