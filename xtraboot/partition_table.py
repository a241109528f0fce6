"""Master boot record and legacy partition table decoding."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Tuple, Union

BOOT_SIGNATURE = 0xAA55

MBR_SIZE = 512
MBR_CODE_SIZE = 446
MBR_PARTITION_COUNT = 4
MBR_PARTITION_SIZE = 16

_ENTRY = struct.Struct("<B3sB3sII")


class PartitionStatus(enum.IntEnum):
    """Known values of a partition entry's status byte."""

    INACTIVE = 0x00
    BOOTABLE = 0x80


class PartitionType(enum.IntEnum):
    """Known values of a partition entry's type byte."""

    EMPTY = 0x00
    EXTENDED = 0x05
    FAT32 = 0x0C


def _decode_status(value: int) -> Union[PartitionStatus, int]:
    try:
        return PartitionStatus(value)
    except ValueError:
        return value


def _decode_type(value: int) -> Union[PartitionType, int]:
    try:
        return PartitionType(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class LegacyPartition:
    """One 16-byte partition entry. Unknown status or type bytes stay plain ints."""

    status: Union[PartitionStatus, int]
    start_chs: Tuple[int, int, int]
    partition_type: Union[PartitionType, int]
    end_chs: Tuple[int, int, int]
    start_lba: int
    size_in_sectors: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "LegacyPartition":
        if len(data) != MBR_PARTITION_SIZE:
            raise ValueError(
                f"partition entry must be {MBR_PARTITION_SIZE} bytes, got {len(data)}"
            )
        status, start_chs, ptype, end_chs, start_lba, size = _ENTRY.unpack(bytes(data))
        return cls(
            status=_decode_status(status),
            start_chs=tuple(start_chs),
            partition_type=_decode_type(ptype),
            end_chs=tuple(end_chs),
            start_lba=start_lba,
            size_in_sectors=size,
        )

    def is_bootable(self) -> bool:
        """True for an active FAT32 partition."""
        return self.status is PartitionStatus.BOOTABLE and self.is_fat()

    def is_fat(self) -> bool:
        return self.partition_type is PartitionType.FAT32


@dataclass(frozen=True)
class MasterBootRecord:
    """The first sector of a disk: boot code, four partitions and a signature."""

    boot_code: bytes
    partitions: Tuple[LegacyPartition, ...]
    boot_signature: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "MasterBootRecord":
        if len(data) != MBR_SIZE:
            raise ValueError(f"MBR must be {MBR_SIZE} bytes, got {len(data)}")
        data = bytes(data)
        table = data[MBR_CODE_SIZE:MBR_CODE_SIZE + MBR_PARTITION_COUNT * MBR_PARTITION_SIZE]
        partitions = tuple(
            LegacyPartition.from_bytes(table[start:start + MBR_PARTITION_SIZE])
            for start in range(0, len(table), MBR_PARTITION_SIZE)
        )
        (signature,) = struct.unpack_from("<H", data, MBR_SIZE - 2)
        return cls(
            boot_code=data[:MBR_CODE_SIZE],
            partitions=partitions,
            boot_signature=signature,
        )

    def is_valid(self) -> bool:
        return self.boot_signature == BOOT_SIGNATURE