# libero_installer/devices.py
"""
Typed references to the block devices produced while layering the root disk.

Each layer points at exactly one upstream device, so the final root device can
always be traced back to the raw partition it was built on:

    RawPartition <- EncryptedMapping <- LogicalVolume
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, computed_field

MAPPER_ROOT = "/dev/mapper"


class RawPartition(BaseModel):
    """A partition created directly on the target disk."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["partition"] = "partition"
    path: str
    number: int


class EncryptedMapping(BaseModel):
    """An opened LUKS container wrapping a partition."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["crypt"] = "crypt"
    name: str
    upstream: RawPartition

    @computed_field
    @property
    def path(self) -> str:
        return f"{MAPPER_ROOT}/{self.name}"


class LogicalVolume(BaseModel):
    """A logical volume in a group whose only physical volume is `physical_volume`."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["lvm"] = "lvm"
    vg_name: str
    lv_name: str
    physical_volume: Union[RawPartition, EncryptedMapping]

    @computed_field
    @property
    def path(self) -> str:
        return f"/dev/{self.vg_name}/{self.lv_name}"

    @property
    def upstream(self) -> Union[RawPartition, EncryptedMapping]:
        return self.physical_volume


BlockDevice = Union[RawPartition, EncryptedMapping, LogicalVolume]


def trace_chain(device: BlockDevice) -> List[BlockDevice]:
    """Returns the device followed by every upstream device, ending at the raw partition."""
    chain: List[BlockDevice] = [device]
    current: Optional[BlockDevice] = device
    while not isinstance(current, RawPartition):
        current = current.upstream
        chain.append(current)
    return chain


def raw_partition_of(device: BlockDevice) -> RawPartition:
    return trace_chain(device)[-1]
