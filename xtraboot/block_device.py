"""Locating the boot drive in the device tree and reading sectors from its image."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional, Union

from xtraboot.console import Console
from xtraboot.device_tree import DeviceTree
from xtraboot.partition_table import LegacyPartition, MasterBootRecord

SECTOR_SIZE = 512

_DEVICE_NAME = "virtio_mmio"
_COMPATIBLE = "virtio,mmio"


class BlockDeviceError(Exception):
    """Raised for malformed device properties or failed sector reads."""


@dataclass(frozen=True)
class Registers:
    """The register window of a memory-mapped device."""

    base: int = 0
    size: int = 0


@dataclass(frozen=True)
class DriveInfo:
    """What the device tree says about a block device."""

    registers: Registers
    interrupts: int = 0
    interrupt_parent: int = 0


def property_to_u32(value: bytes) -> int:
    """Decode a 4-byte big-endian property value."""
    if len(value) != 4:
        raise BlockDeviceError("Invalid property length for u32 property value.")
    return struct.unpack(">I", value)[0]


def property_to_u64(value: bytes) -> int:
    """Decode an 8-byte big-endian property value."""
    if len(value) != 8:
        raise BlockDeviceError("Invalid property length for u64 property value.")
    return struct.unpack(">Q", value)[0]


def is_compatible(value: bytes, target: str) -> bool:
    """True if ``target`` is one of the null-separated strings in a compatible list."""
    for part in bytes(value).split(b"\0"):
        if not part:
            continue
        try:
            if part.decode("utf-8") == target:
                return True
        except UnicodeDecodeError:
            continue
    return False


def _probe(device_tree: DeviceTree, offset: int) -> Optional[DriveInfo]:
    interrupts = 0
    interrupt_parent = 0
    registers = Registers()
    compatible = False

    for name, value in device_tree.properties(offset):
        if name == "interrupts":
            interrupts = property_to_u32(value)
        elif name == "interrupt-parent":
            interrupt_parent = property_to_u32(value)
        elif name == "reg":
            if len(value) != 16:
                raise BlockDeviceError("Invalid 'reg' property length.")
            registers = Registers(property_to_u64(value[:8]), property_to_u64(value[8:]))
        elif name == "compatible":
            compatible = is_compatible(value, _COMPATIBLE)

    if not compatible:
        return None
    return DriveInfo(registers, interrupts, interrupt_parent)


def find_first_drive(device_tree: DeviceTree) -> Optional[DriveInfo]:
    """Return the first VirtIO MMIO device node in the tree, or None."""
    for offset, name in device_tree.blocks():
        if name.split("@", 1)[0] != _DEVICE_NAME:
            continue
        drive = _probe(device_tree, offset)
        if drive is not None:
            return drive
    return None


class BlockDevice:
    """A block device backed by a disk image held in memory."""

    def __init__(self, image: Union[bytes, bytearray, memoryview], drive: Optional[DriveInfo]) -> None:
        self.image = bytes(image)
        self.drive = drive

    @property
    def sector_count(self) -> int:
        return len(self.image) // SECTOR_SIZE

    def read_sector(self, sector: int) -> bytes:
        """Return one 512-byte sector."""
        if sector < 0 or sector >= self.sector_count:
            raise BlockDeviceError("VirtIO block device error: IO error.")
        start = sector * SECTOR_SIZE
        return self.image[start:start + SECTOR_SIZE]

    def find_bootable_partition(self, console: Console) -> Optional[LegacyPartition]:
        """Return the first active FAT32 partition in the MBR, or None."""
        try:
            sector = self.read_sector(0)
        except BlockDeviceError as error:
            console.put_str("Failed to read sector 0 from block device.\n")
            console.put_str("Error: ")
            console.put_str(str(error))
            console.put_str("\n")
            return None

        console.put_str("Read sector 0 from block device.\n")

        mbr = MasterBootRecord.from_bytes(sector)
        if not mbr.is_valid():
            console.put_str("Invalid MBR found on block device.\n")
            return None
        console.put_str("Valid MBR found on block device.\n")

        for partition in mbr.partitions:
            if partition.is_bootable():
                console.put_str("Found bootable partition.\n")
                return partition
        return None