"""Flattened device tree (DTB) reading: header, nodes and properties."""

from __future__ import annotations

import struct
from typing import Iterator, Tuple

from xtraboot.console import Console

DTB_MAGIC = 0xD00DFEED

BEGIN_NODE = 0x0000_0001
END_NODE = 0x0000_0002
PROPERTY = 0x0000_0003
NOP = 0x0000_0004
END = 0x0000_0009

_HEADER = struct.Struct(">10I")
_WORD = struct.Struct(">I")
_MAX_NAME = 255


class DeviceTreeError(Exception):
    """Raised when the device tree blob is malformed or read past its end."""


def validate_dtb(data: bytes) -> bool:
    """True when the blob starts with the device tree magic number."""
    if len(data) < _WORD.size:
        return False
    (magic,) = _WORD.unpack_from(data, 0)
    return magic == DTB_MAGIC


def _aligned(size: int) -> int:
    return (size + 3) & ~3


class DeviceTree:
    """A device tree blob held in memory, read in place.

    The magic number is expected to have been checked with :func:`validate_dtb`.
    """

    def __init__(self, data: bytes) -> None:
        data = bytes(data)
        if len(data) < _HEADER.size:
            raise DeviceTreeError("device tree blob is shorter than its header")
        self.data = data
        (
            _magic,
            self.total_size,
            self.off_dt_struct,
            self.off_dt_strings,
            self.off_mem_res_map,
            self.version,
            self.last_comp_version,
            self.boot_cpu_id_phys,
            self.size_dt_strings,
            self.size_dt_struct,
        ) = _HEADER.unpack_from(data, 0)

    def _word(self, offset: int) -> int:
        position = self.off_dt_struct + offset
        if position + _WORD.size > len(self.data):
            raise DeviceTreeError("read past the end of the device tree blob")
        (value,) = _WORD.unpack_from(self.data, position)
        return value

    def _advance(self, offset: int, size: int) -> int:
        offset += _aligned(size)
        if offset >= self.size_dt_struct:
            raise DeviceTreeError(
                "attempted to read past the end of the device tree structure block"
            )
        return offset

    def _string_at(self, position: int) -> Tuple[str, int]:
        """Return a null-terminated string and its size including the terminator."""
        if position >= len(self.data):
            raise DeviceTreeError("string lies outside the device tree blob")
        chunk = self.data[position:position + _MAX_NAME]
        end = chunk.find(0)
        if end < 0:
            if len(chunk) < _MAX_NAME:
                raise DeviceTreeError("unterminated string in device tree blob")
            end = len(chunk)
        return chunk[:end].decode("utf-8", errors="replace"), end + 1

    def blocks(self) -> Iterator[Tuple[int, str]]:
        """Yield ``(offset, name)`` for every node, the offset being that of its properties."""
        offset = 0
        while True:
            word = self._word(offset)
            if word == BEGIN_NODE:
                offset = self._advance(offset, 4)
                name, size = self._string_at(self.off_dt_struct + offset)
                offset = self._advance(offset, size)
                yield offset, name
            elif word == PROPERTY:
                offset = self._advance(offset, 4)
                prop_size = self._word(offset)
                offset = self._advance(offset, 8)
                offset = self._advance(offset, prop_size)
            elif word == END:
                return
            else:
                # END_NODE, NOP and unknown markers are all one word long.
                offset = self._advance(offset, 4)

    def properties(self, offset: int) -> Iterator[Tuple[str, bytes]]:
        """Yield ``(name, value)`` for the properties starting at a node's offset."""
        while True:
            word = self._word(offset)
            if word in (BEGIN_NODE, END_NODE, END):
                return
            if word == PROPERTY:
                offset = self._advance(offset, 4)
                prop_size = self._word(offset)
                offset = self._advance(offset, 4)
                name_offset = self._word(offset)
                offset = self._advance(offset, 4)

                start = self.off_dt_struct + offset
                if start + prop_size > len(self.data):
                    raise DeviceTreeError("property value lies outside the device tree blob")
                value = self.data[start:start + prop_size]
                offset = self._advance(offset, prop_size)

                name, _ = self._string_at(self.off_dt_strings + name_offset)
                yield name, value
            else:
                offset = self._advance(offset, 4)

    def print_tree(self, console: Console) -> None:
        """Write the header fields and every node with its properties."""
        console.put_str("Device Tree Header:\n")

        def write_int(label: str, value: int) -> None:
            console.put_str(label)
            console.put_str(": ")
            console.put_int(value)
            console.put_str("\n")

        def write_hex(label: str, value: int) -> None:
            console.put_str(label)
            console.put_str(": ")
            console.put_hex(value, True)
            console.put_str("\n")

        write_int("  Version                            ", self.version)
        write_int("  Last Compatible Version            ", self.last_comp_version)
        write_int("  Total Size                         ", self.total_size)
        write_hex("  Offset to Structure Block          ", self.off_dt_struct)
        write_hex("  Offset to Strings Block            ", self.off_dt_strings)
        write_hex("  Offset to Memory Reservation Block ", self.off_mem_res_map)
        write_int("  Boot CPU ID (Physical)             ", self.boot_cpu_id_phys)
        write_int("  Size of Strings Block              ", self.size_dt_strings)
        write_int("  Size of Structure Block            ", self.size_dt_struct)

        for offset, name in self.blocks():
            console.put_str("    Block: ")
            console.put_str(name)
            console.put_str("\n")

            for prop_name, value in self.properties(offset):
                console.put_str("      Property: ")
                console.put_str(prop_name)
                console.put_str(", value: ")
                if not value:
                    console.put_str("N/A")
                else:
                    console.put_char("[")
                    console.put_int(len(value))
                    console.put_str("] = ")
                    console.put_hex_bytes(value, 16)
                console.put_str("\n")