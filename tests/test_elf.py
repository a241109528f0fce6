import dataclasses
import io
import struct

import pytest

from xtraboot.console import Console
from xtraboot.elf import (
    EM_RISCV,
    Elf64Header,
    Elf64ProgramHeader,
    ElfError,
    Memory,
    load_kernel,
    validate_elf_header,
)

ENTRY = 0x80200000


def header_bytes(entry=ENTRY, phoff=64, phnum=0, ident=None, e_type=2, machine=0xF3, version=1):
    if ident is None:
        ident = b"\x7fELF" + bytes([2, 1, 1]) + bytes(9)
    return struct.pack(
        "<16sHHIQQQIHHHHHH", ident, e_type, machine, version, entry, phoff, 0, 0, 64, 56, phnum, 0, 0, 0
    )


def program_header_bytes(p_type, offset, vaddr, filesz, memsz):
    return struct.pack("<IIQQQQQQ", p_type, 5, offset, vaddr, vaddr, filesz, memsz, 0x1000)


def valid_header():
    return Elf64Header.from_bytes(header_bytes())


def test_header_from_bytes_fields():
    header = valid_header()
    assert header.e_entry == ENTRY
    assert header.e_machine == EM_RISCV
    assert header.e_phoff == 64
    assert header.is_valid()
    assert header.is_64_bit()
    assert header.is_little_endian()
    assert header.is_executable()
    assert header.is_riscv()
    assert header.version_supported()


def test_header_wrong_length():
    with pytest.raises(ElfError):
        Elf64Header.from_bytes(b"\x7fELF")


def test_header_read_from_stream_advances():
    stream = io.BytesIO(header_bytes() + b"extra")
    header = Elf64Header.read_from(stream)
    assert header.e_entry == ENTRY
    assert stream.tell() == Elf64Header.SIZE


def test_program_header_round_trip():
    ph = Elf64ProgramHeader.from_bytes(program_header_bytes(1, 0x1000, 0x80200000, 10, 20))
    assert ph.p_offset == 0x1000
    assert ph.p_vaddr == 0x80200000
    assert ph.p_filesz == 10
    assert ph.p_memsz == 20
    assert ph.is_loadable()
    assert not Elf64ProgramHeader.from_bytes(program_header_bytes(4, 0, 0, 0, 0)).is_loadable()


def test_program_header_short_read():
    with pytest.raises(ElfError):
        Elf64ProgramHeader.read_from(io.BytesIO(b"\x01\x00"))


def test_validate_accepts_valid_header():
    validate_elf_header(valid_header())
    assert valid_header().is_valid()


@pytest.mark.parametrize(
    "changes, message",
    [
        ({"e_ident": b"\x7fELG" + bytes([2, 1]) + bytes(10)}, "Invalid ELF header magic value."),
        ({"e_version": 2}, "Unsupported ELF version."),
        ({"e_type": 3}, "ELF file is not an executable."),
        ({"e_machine": 0x3E}, "ELF file is not compiled for RISC-V architecture."),
        ({"e_ident": b"\x7fELF" + bytes([1, 1]) + bytes(10)}, "ELF file is not a 64-bit executable."),
        ({"e_ident": b"\x7fELF" + bytes([2, 2]) + bytes(10)}, "ELF file is not in little-endian format."),
    ],
)
def test_validate_rejects(changes, message):
    header = dataclasses.replace(valid_header(), **changes)
    with pytest.raises(ElfError, match=message):
        validate_elf_header(header)


def test_memory_round_trip_across_pages():
    memory = Memory()
    data = bytes(range(200)) * 30
    memory.write(4000, data)
    assert memory.read(4000, len(data)) == data
    assert memory.read(0, 16) == bytes(16)


def test_memory_rejects_negative_address():
    with pytest.raises(ValueError):
        Memory().write(-1, b"x")


def build_image(segments, phnum=None):
    headers = b""
    payload = b""
    data_start = 64 + 56 * len(segments)
    for p_type, vaddr, data, memsz in segments:
        headers += program_header_bytes(p_type, data_start + len(payload), vaddr, len(data), memsz)
        payload += data
    count = len(segments) if phnum is None else phnum
    return header_bytes(phnum=count) + headers + payload


def test_load_kernel_loads_segments_and_zeroes_bss():
    code = b"\x13\x00\x00\x00" * 4
    image = build_image([(1, ENTRY, code, len(code) + 32), (4, 0x90000000, b"note", 4)])
    memory = Memory()
    memory.write(ENTRY, b"\xff" * 64)
    memory.write(0x90000000, b"\xee" * 4)
    out = io.StringIO()

    entry = load_kernel(Console(out), 0x80500000, io.BytesIO(image), memory)

    assert entry == ENTRY
    assert memory.read(ENTRY, len(code)) == code
    assert memory.read(ENTRY + len(code), 32) == bytes(32)
    assert memory.read(ENTRY + len(code) + 32, 16) == b"\xff" * 16
    assert memory.read(0x90000000, 4) == b"\xee" * 4
    text = out.getvalue()
    assert "  Kernel entry point: 0x80200000\r\n" in text
    assert "  Processing program header: 1 @ " in text


def test_load_kernel_rejects_invalid_header():
    image = header_bytes(machine=0x3E)
    with pytest.raises(ElfError, match="RISC-V"):
        load_kernel(Console(io.StringIO()), 0x80500000, io.BytesIO(image), Memory())


def test_load_kernel_too_many_program_headers():
    image = build_image([], phnum=9) + bytes(56 * 9)
    with pytest.raises(ElfError, match="Too many program headers"):
        load_kernel(Console(io.StringIO()), 0x80500000, io.BytesIO(image), Memory())


def test_load_kernel_truncated_segment():
    image = build_image([(1, ENTRY, b"abcdefgh", 8)])[:-4]
    with pytest.raises(ElfError):
        load_kernel(Console(io.StringIO()), 0x80500000, io.BytesIO(image), Memory())