"""
Address Resolution
===================

The parser never touches a raw file buffer directly.  Every read goes
through an :class:`AddressResolver`, which translates RVAs to file offsets
and performs bounds-checked reads.  Any failure raises
:class:`AddressResolutionError`.

Two resolvers ship with the package:

    - :class:`FlatImageResolver` -- identity mapping (RVA == file offset),
      for memory dumps and synthetic images.
    - :class:`impscope.parsers.pe_file.PEFile` -- section-table mapping for
      on-disk PE files.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

# Longest C string read through a resolver
MAX_STRING_LENGTH: int = 0x200


class AddressResolutionError(ValueError):
    """An RVA or file range does not map into the available bytes."""


@runtime_checkable
class AddressResolver(Protocol):
    """RVA translation and bounds-checked byte access."""

    @property
    def size(self) -> int:
        """Total number of addressable file bytes."""
        ...

    def offset_of(self, rva: int) -> int:
        """Translate *rva* to a file offset."""
        ...

    def read_bytes(self, offset: int, length: int) -> bytes:
        """Return exactly *length* bytes at file *offset*."""
        ...

    def read_c_string_at_rva(
        self, rva: int, max_length: int = MAX_STRING_LENGTH
    ) -> str:
        """Read a NUL-terminated string of at most *max_length* characters."""
        ...


def read_c_string(data: bytes, offset: int, max_length: int) -> str:
    """Read a NUL-terminated string from *data* at *offset*.

    Bytes are decoded as Latin-1 so every byte value round-trips; callers
    decide which characters are acceptable.

    Raises:
        AddressResolutionError: If *offset* is out of range or no terminator
            appears within *max_length* bytes.
    """
    if offset < 0 or offset >= len(data):
        raise AddressResolutionError(
            f"String offset 0x{offset:x} outside file of {len(data)} bytes"
        )
    end = data.find(b"\x00", offset, offset + max_length + 1)
    if end == -1:
        raise AddressResolutionError(
            f"Unterminated string at offset 0x{offset:x} "
            f"(limit {max_length} bytes)"
        )
    return data[offset:end].decode("latin-1")


class FlatImageResolver:
    """Resolver for buffers whose RVAs equal their file offsets.

    Usage::

        resolver = FlatImageResolver(dump_bytes)
        name = resolver.read_c_string_at_rva(0x2040)
    """

    def __init__(self, data: bytes) -> None:
        self._data: bytes = bytes(data)

    @property
    def size(self) -> int:
        return len(self._data)

    def offset_of(self, rva: int) -> int:
        if rva < 0 or rva >= len(self._data):
            raise AddressResolutionError(
                f"RVA 0x{rva:x} outside image of {len(self._data)} bytes"
            )
        return rva

    def read_bytes(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0 or offset + length > len(self._data):
            raise AddressResolutionError(
                f"Read of {length} bytes at offset 0x{offset:x} exceeds "
                f"image of {len(self._data)} bytes"
            )
        return self._data[offset:offset + length]

    def read_c_string_at_rva(
        self, rva: int, max_length: int = MAX_STRING_LENGTH
    ) -> str:
        return read_c_string(self._data, self.offset_of(rva), max_length)
