import struct

import pytest

from xtraboot.partition_table import (
    BOOT_SIGNATURE,
    MBR_SIZE,
    LegacyPartition,
    MasterBootRecord,
    PartitionStatus,
    PartitionType,
)


def _entry(status, ptype, start_lba, size, start_chs=b"\x01\x02\x03", end_chs=b"\x04\x05\x06"):
    return struct.pack("<B3sB3sII", status, start_chs, ptype, end_chs, start_lba, size)


def _mbr(entries, signature=b"\x55\xaa"):
    code = bytes(range(256)) + bytes(446 - 256)
    table = b"".join(entries) + bytes(16 * (4 - len(entries)))
    return code + table + signature


def test_partition_fields_round_trip():
    part = LegacyPartition.from_bytes(_entry(0x80, 0x0C, 2048, 65536))
    assert part.status is PartitionStatus.BOOTABLE
    assert part.partition_type is PartitionType.FAT32
    assert part.start_chs == (1, 2, 3)
    assert part.end_chs == (4, 5, 6)
    assert part.start_lba == 2048
    assert part.size_in_sectors == 65536


def test_bootable_requires_active_fat32():
    assert LegacyPartition.from_bytes(_entry(0x80, 0x0C, 1, 1)).is_bootable()
    assert not LegacyPartition.from_bytes(_entry(0x00, 0x0C, 1, 1)).is_bootable()
    assert not LegacyPartition.from_bytes(_entry(0x80, 0x05, 1, 1)).is_bootable()


def test_is_fat():
    assert LegacyPartition.from_bytes(_entry(0x00, 0x0C, 1, 1)).is_fat()
    assert not LegacyPartition.from_bytes(_entry(0x00, 0x00, 1, 1)).is_fat()


def test_known_types_decoded():
    assert LegacyPartition.from_bytes(_entry(0, 0x00, 0, 0)).partition_type is PartitionType.EMPTY
    assert LegacyPartition.from_bytes(_entry(0, 0x05, 0, 0)).partition_type is PartitionType.EXTENDED
    assert LegacyPartition.from_bytes(_entry(0, 0, 0, 0)).status is PartitionStatus.INACTIVE


def test_unknown_values_kept_raw():
    part = LegacyPartition.from_bytes(_entry(0x42, 0x83, 0, 0))
    assert part.status == 0x42
    assert not isinstance(part.status, PartitionStatus)
    assert part.partition_type == 0x83
    assert not isinstance(part.partition_type, PartitionType)
    assert not part.is_bootable()
    assert not part.is_fat()


def test_partition_wrong_length():
    with pytest.raises(ValueError):
        LegacyPartition.from_bytes(bytes(15))


def test_mbr_parses_partitions_in_order():
    entries = [_entry(0, 0x0C, 100 * (i + 1), 10 * (i + 1)) for i in range(4)]
    data = _mbr(entries)
    mbr = MasterBootRecord.from_bytes(data)
    assert mbr.is_valid()
    assert mbr.boot_signature == BOOT_SIGNATURE
    assert len(mbr.partitions) == 4
    assert [p.start_lba for p in mbr.partitions] == [100, 200, 300, 400]
    assert mbr.boot_code == data[:446]


def test_mbr_first_bootable_partition():
    entries = [_entry(0, 0x0C, 10, 1), _entry(0x80, 0x0C, 20, 1)]
    mbr = MasterBootRecord.from_bytes(_mbr(entries))
    bootable = [p for p in mbr.partitions if p.is_bootable()]
    assert [p.start_lba for p in bootable] == [20]


def test_mbr_invalid_signature():
    mbr = MasterBootRecord.from_bytes(_mbr([], signature=b"\xaa\x55"))
    assert not mbr.is_valid()


def test_mbr_wrong_length():
    with pytest.raises(ValueError):
        MasterBootRecord.from_bytes(bytes(MBR_SIZE - 1))