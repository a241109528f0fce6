"""FAT32 volume access: the boot sector fields and the file allocation table."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from xtraboot.block_device import SECTOR_SIZE, BlockDevice, BlockDeviceError
from xtraboot.partition_table import LegacyPartition

FAT_CLUSTER_MASK = 0x0FFF_FFFF
FAT_CLUSTER_EOC = 0x0FFF_FFFF
FAT_CLUSTER_EOC_START = 0x0FFF_FFF8
FAT_CLUSTER_BAD = 0x0FFF_FFF7
FAT_CLUSTER_FREE = 0x0000_0000

MAX_FAT_ENTRIES = 65536

BYTES_PER_SECTOR_OFF = 0x000B
SECTORS_PER_CLUSTER_OFF = 0x000D
RESERVED_SECTORS_OFF = 0x000E
NUM_FATS_OFF = 0x0010
FAT_SIZE_32_OFF = 0x0024
ROOT_CLUSTER_OFF = 0x002C
FAT_SIGNATURE_OFF = 0x01FE

BOOT_SIGNATURE = 0xAA55

_ENTRIES_PER_SECTOR = SECTOR_SIZE // 4
_SECTOR_ENTRIES = struct.Struct(f"<{_ENTRIES_PER_SECTOR}I")


class FatError(Exception):
    """Raised when a FAT32 volume is invalid or cannot be read."""


def _read_sector(block_device: BlockDevice, lba: int) -> bytes:
    try:
        return block_device.read_sector(lba)
    except BlockDeviceError as error:
        raise FatError(str(error)) from error


class FatTable:
    """The file allocation table: for each cluster, the next cluster of its chain."""

    def __init__(self, entries: Tuple[int, ...]) -> None:
        if len(entries) > MAX_FAT_ENTRIES:
            raise FatError("FAT too large for buffer.")
        self.entries = tuple(entries)

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def load(
        cls,
        block_device: BlockDevice,
        partition: LegacyPartition,
        start_sector: int,
        size_in_sectors: int,
    ) -> "FatTable":
        """Read ``size_in_sectors`` FAT sectors starting at ``start_sector`` of the partition."""
        first_lba = partition.start_lba + start_sector
        entries: list[int] = []
        for lba in range(first_lba, first_lba + size_in_sectors):
            sector = _read_sector(block_device, lba)
            if len(entries) + _ENTRIES_PER_SECTOR > MAX_FAT_ENTRIES:
                raise FatError("FAT too large for buffer.")
            entries.extend(_SECTOR_ENTRIES.unpack(sector))
        return cls(tuple(entries))

    def next_cluster(self, cluster: int) -> Optional[int]:
        """Return the cluster following ``cluster``, or None at the end of the chain.

        None is also returned for clusters outside the table, bad clusters and
        free clusters.
        """
        cluster &= FAT_CLUSTER_MASK
        if cluster >= len(self.entries):
            return None
        entry = self.entries[cluster] & FAT_CLUSTER_MASK
        if FAT_CLUSTER_EOC_START <= entry <= FAT_CLUSTER_EOC:
            return None
        if entry in (FAT_CLUSTER_BAD, FAT_CLUSTER_FREE):
            return None
        return entry

    def is_end_of_chain(self, cluster: int) -> bool:
        return self.next_cluster(cluster) is None


@dataclass
class Fat32Volume:
    """A FAT32 filesystem on one partition of a block device."""

    block_device: BlockDevice
    partition: LegacyPartition
    fat: FatTable
    bytes_per_sector: int
    sectors_per_cluster: int
    reserved_sectors: int
    num_fats: int
    fat_size_sectors: int
    root_cluster: int

    @classmethod
    def open(cls, block_device: BlockDevice, partition: LegacyPartition) -> "Fat32Volume":
        """Read the boot sector of ``partition`` and load its allocation table."""
        sector = _read_sector(block_device, partition.start_lba)

        (signature,) = struct.unpack_from("<H", sector, FAT_SIGNATURE_OFF)
        if signature != BOOT_SIGNATURE:
            raise FatError("Invalid boot signature in FAT32 header.")

        (bytes_per_sector,) = struct.unpack_from("<H", sector, BYTES_PER_SECTOR_OFF)
        sectors_per_cluster = sector[SECTORS_PER_CLUSTER_OFF]
        (reserved_sectors,) = struct.unpack_from("<H", sector, RESERVED_SECTORS_OFF)
        num_fats = sector[NUM_FATS_OFF]
        (root_cluster,) = struct.unpack_from("<I", sector, ROOT_CLUSTER_OFF)
        (fat_size_sectors,) = struct.unpack_from("<I", sector, FAT_SIZE_32_OFF)

        if bytes_per_sector != SECTOR_SIZE:
            raise FatError("Invalid bytes per sector in FAT32 header.")

        fat = FatTable.load(block_device, partition, reserved_sectors, fat_size_sectors)

        return cls(
            block_device=block_device,
            partition=partition,
            fat=fat,
            bytes_per_sector=bytes_per_sector,
            sectors_per_cluster=sectors_per_cluster,
            reserved_sectors=reserved_sectors,
            num_fats=num_fats,
            fat_size_sectors=fat_size_sectors,
            root_cluster=root_cluster,
        )

    @property
    def first_data_sector(self) -> int:
        return self.reserved_sectors + self.num_fats * self.fat_size_sectors

    @property
    def cluster_size(self) -> int:
        return self.sectors_per_cluster * SECTOR_SIZE

    def load_sector(self, cluster: int, sector: int) -> bytes:
        """Return sector ``sector`` of data cluster ``cluster``."""
        if cluster < 2:
            raise FatError("Attempt to read outside of the partition.")
        cluster_lba = self.first_data_sector + (cluster - 2) * self.sectors_per_cluster + sector
        return _read_sector(self.block_device, self.partition.start_lba + cluster_lba)