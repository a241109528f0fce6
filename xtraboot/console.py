"""Text console used for boot-time diagnostics."""

from __future__ import annotations

import string
from typing import Optional, Protocol, Union

_PRINTABLE = frozenset(
    (string.ascii_letters + string.digits + string.punctuation + " ").encode("ascii")
)

_DUMP_HEADER = (
    "          "
    "00 01 02 03 04 05 06 07  08 09 0a 0b 0c 0d 0e 0f  | 01234567 89abcdef |\n"
)


class _Writable(Protocol):
    def write(self, text: str) -> object: ...


class Console:
    """Writes characters, numbers and hex dumps to a text stream.

    Newlines written through :meth:`put_str` are sent as carriage return plus
    newline, the way a serial terminal expects them.
    """

    def __init__(self, stream: _Writable) -> None:
        self.stream = stream

    def put_char(self, c: Union[int, str]) -> None:
        """Write a single character, given as a byte value or a one-character string."""
        if isinstance(c, int):
            if not 0 <= c <= 0xFF:
                raise ValueError(f"byte value out of range: {c}")
            c = chr(c)
        elif len(c) != 1:
            raise ValueError("put_char expects exactly one character")
        self.stream.write(c)

    def put_str(self, s: str) -> None:
        """Write a string, turning each newline into carriage return plus newline."""
        self.stream.write(s.replace("\n", "\r\n"))

    def put_int(self, n: int) -> None:
        """Write a non-negative integer in decimal."""
        if n < 0:
            raise ValueError("put_int expects a non-negative integer")
        self.stream.write(str(n))

    def put_hex(self, n: int, prefix: bool = True) -> None:
        """Write a non-negative integer in lower-case hex, optionally prefixed by 0x."""
        if n < 0:
            raise ValueError("put_hex expects a non-negative integer")
        self.stream.write(("0x" if prefix else "") + format(n, "x"))

    def put_hex_byte(self, byte: int) -> None:
        """Write one byte as two hex digits."""
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"byte value out of range: {byte}")
        self.stream.write(format(byte, "02x"))

    def put_hex_bytes(self, data: bytes, max_bytes: Optional[int] = None) -> None:
        """Write bytes as space separated hex pairs, eliding after ``max_bytes``."""
        last = len(data) - 1
        for i, byte in enumerate(data):
            self.put_hex_byte(byte)
            if max_bytes is not None and i + 1 >= max_bytes and i < last:
                self.put_str("...")
                break
            if i < last:
                self.put_char(" ")

    def put_hex_address(self, address: int) -> None:
        """Write the low 32 bits of an address as eight zero-padded hex digits."""
        self.stream.write(format(address & 0xFFFF_FFFF, "08x"))

    def put_hex_dump(self, data: bytes) -> None:
        """Write a classic 16-bytes-per-line hex and ASCII dump."""
        self.put_str(_DUMP_HEADER)
        for offset in range(0, len(data), 16):
            chunk = data[offset:offset + 16]
            self.put_hex_address(offset)
            self.put_str("  ")

            for index in range(16):
                if index == 8:
                    self.put_char(" ")
                if index < len(chunk):
                    self.put_hex_byte(chunk[index])
                    self.put_char(" ")
                else:
                    self.put_str("  ")

            self.put_str(" | ")

            for index in range(16):
                if index == 8:
                    self.put_char(" ")
                if index < len(chunk):
                    byte = chunk[index]
                    self.put_char(byte if byte in _PRINTABLE else ".")
                else:
                    self.put_char(".")

            self.put_str(" |\n")