"""ELF64 header parsing, validation and loading of kernel segments into memory."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Protocol

from xtraboot.console import Console

ELF_MAGIC = b"\x7fELF"
ELF_VERSION = 1
EM_RISCV = 0xF3
ET_EXEC = 2
EI_CLASS_64 = 2
EI_DATA = 1

PT_NULL = 0
PT_LOAD = 1
PT_DYNAMIC = 2
PT_INTERP = 3
PT_NOTE = 4

PF_X = 0x1
PF_W = 0x2
PF_R = 0x4

MAX_PROGRAM_HEADERS = 8

_HEADER = struct.Struct("<16sHHIQQQIHHHHHH")
_PROGRAM_HEADER = struct.Struct("<IIQQQQQQ")


class ElfError(Exception):
    """Raised when an ELF file is malformed, unsupported or truncated."""


class _Stream(Protocol):
    def read(self, count: int) -> bytes: ...

    def tell(self) -> int: ...

    def seek(self, offset: int) -> object: ...


@dataclass(frozen=True)
class Elf64Header:
    """The 64-byte ELF64 file header."""

    e_ident: bytes
    e_type: int
    e_machine: int
    e_version: int
    e_entry: int
    e_phoff: int
    e_shoff: int
    e_flags: int
    e_ehsize: int
    e_phentsize: int
    e_phnum: int
    e_shentsize: int
    e_shnum: int
    e_shstrndx: int

    SIZE = _HEADER.size

    @classmethod
    def from_bytes(cls, data: bytes) -> "Elf64Header":
        if len(data) != _HEADER.size:
            raise ElfError("End of file reached before filling buffer.")
        return cls(*_HEADER.unpack(bytes(data)))

    @classmethod
    def read_from(cls, stream: _Stream) -> "Elf64Header":
        return cls.from_bytes(stream.read(_HEADER.size))

    def is_valid(self) -> bool:
        return self.e_ident[:4] == ELF_MAGIC

    def version_supported(self) -> bool:
        return self.e_version == ELF_VERSION

    def is_executable(self) -> bool:
        return self.e_type == ET_EXEC

    def is_riscv(self) -> bool:
        return self.e_machine == EM_RISCV

    def is_64_bit(self) -> bool:
        return self.e_ident[4] == EI_CLASS_64

    def is_little_endian(self) -> bool:
        return self.e_ident[5] == EI_DATA


@dataclass(frozen=True)
class Elf64ProgramHeader:
    """One 56-byte ELF64 program header."""

    p_type: int
    p_flags: int
    p_offset: int
    p_vaddr: int
    p_paddr: int
    p_filesz: int
    p_memsz: int
    p_align: int

    SIZE = _PROGRAM_HEADER.size

    @classmethod
    def from_bytes(cls, data: bytes) -> "Elf64ProgramHeader":
        if len(data) != _PROGRAM_HEADER.size:
            raise ElfError("End of file reached before filling buffer.")
        return cls(*_PROGRAM_HEADER.unpack(bytes(data)))

    @classmethod
    def read_from(cls, stream: _Stream) -> "Elf64ProgramHeader":
        return cls.from_bytes(stream.read(_PROGRAM_HEADER.size))

    def is_loadable(self) -> bool:
        return self.p_type == PT_LOAD


def validate_elf_header(header: Elf64Header) -> None:
    """Raise ElfError unless the header describes a 64-bit little-endian RISC-V executable."""
    checks = (
        (header.is_valid, "Invalid ELF header magic value."),
        (header.version_supported, "Unsupported ELF version."),
        (header.is_executable, "ELF file is not an executable."),
        (header.is_riscv, "ELF file is not compiled for RISC-V architecture."),
        (header.is_64_bit, "ELF file is not a 64-bit executable."),
        (header.is_little_endian, "ELF file is not in little-endian format."),
    )
    for check, message in checks:
        if not check():
            raise ElfError(message)


class Memory:
    """Sparse byte-addressable memory; bytes never written read as zero."""

    PAGE_SIZE = 4096

    def __init__(self) -> None:
        self._pages: dict[int, bytearray] = {}

    def write(self, address: int, data: bytes) -> None:
        if address < 0:
            raise ValueError("address must be non-negative")
        view = memoryview(bytes(data))
        while view:
            page, offset = divmod(address, self.PAGE_SIZE)
            count = min(len(view), self.PAGE_SIZE - offset)
            buffer = self._pages.setdefault(page, bytearray(self.PAGE_SIZE))
            buffer[offset:offset + count] = view[:count]
            address += count
            view = view[count:]

    def read(self, address: int, size: int) -> bytes:
        if address < 0 or size < 0:
            raise ValueError("address and size must be non-negative")
        out = bytearray()
        while size > 0:
            page, offset = divmod(address, self.PAGE_SIZE)
            count = min(size, self.PAGE_SIZE - offset)
            buffer = self._pages.get(page)
            out += buffer[offset:offset + count] if buffer is not None else bytes(count)
            address += count
            size -= count
        return bytes(out)


def _line(console: Console, label: str, value: int, hexadecimal: bool) -> None:
    console.put_str(label)
    if hexadecimal:
        console.put_hex(value, True)
    else:
        console.put_int(value)
    console.put_str("\n")


def _load_segment(header: Elf64ProgramHeader, stream: _Stream, memory: Memory) -> None:
    position = stream.tell()
    stream.seek(header.p_offset)

    data = stream.read(header.p_filesz)
    if len(data) != header.p_filesz:
        raise ElfError("End of file reached before filling buffer.")
    memory.write(header.p_vaddr, data)

    if header.p_memsz > header.p_filesz:
        memory.write(header.p_vaddr + header.p_filesz, bytes(header.p_memsz - header.p_filesz))

    stream.seek(position)


def _stream_segments(console: Console, header: Elf64Header, stream: _Stream, memory: Memory) -> None:
    stream.seek(header.e_phoff)

    if header.e_phnum > MAX_PROGRAM_HEADERS:
        raise ElfError("Too many program headers in ELF file.")

    _line(console, "Loading kernel header segments from offset: ", header.e_phoff, True)

    program_headers = []
    for index in range(header.e_phnum):
        position = stream.tell()
        ph = Elf64ProgramHeader.read_from(stream)
        program_headers.append(ph)

        console.put_str("  Processing program header: ")
        console.put_int(index)
        console.put_str(" @ ")
        console.put_hex(position, True)
        console.put_str("\n")
        _line(console, "    Type:             ", ph.p_type, True)
        _line(console, "    Flags:            ", ph.p_flags, True)
        _line(console, "    Offset:           ", ph.p_offset, True)
        _line(console, "    Virtual Address:  ", ph.p_vaddr, True)
        _line(console, "    Physical Address: ", ph.p_paddr, True)
        _line(console, "    File Size:        ", ph.p_filesz, False)
        _line(console, "    Memory Size:      ", ph.p_memsz, False)
        _line(console, "    Alignment:        ", ph.p_align, True)

    for ph in program_headers:
        if ph.is_loadable():
            _load_segment(ph, stream, memory)


def load_kernel(console: Console, load_address: int, stream: _Stream, memory: Memory) -> int:
    """Validate the ELF image in ``stream``, load its segments into ``memory``, return the entry point."""
    header = Elf64Header.read_from(stream)
    validate_elf_header(header)

    _line(console, "Loading kernel to memory address: ", load_address, True)
    _line(console, "  Kernel entry point: ", header.e_entry, True)
    _line(console, "  Program header offset: ", header.e_phoff, True)
    _line(console, "  Program header count: ", header.e_phnum, False)

    _stream_segments(console, header, stream, memory)
    return header.e_entry