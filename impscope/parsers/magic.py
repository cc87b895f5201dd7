"""
Magic Number Format Identification
===================================

Identifies the executable and document formats the sample pipeline routes
on by their leading bytes: PE, ELF, Mach-O (thin and fat) and PDF.

A bare ``MZ`` stub is not enough to be routed as PE: the ``PE\\0\\0``
signature must sit at ``e_lfanew``, otherwise the sample is a plain DOS
executable and falls through to ``unknown``.

References:
    - Gary Kessler's File Signatures Table.
      https://www.garykessler.net/library/file_sigs.html
    - ``file(1)`` command magic database. https://github.com/file/file
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from impscope.core.models import BinaryFormat


@dataclass(frozen=True, slots=True)
class _Signature:
    """A single magic signature entry.

    Attributes:
        magic: Byte pattern to match.
        offset: Byte offset within the file where *magic* is expected.
        description: Human-readable type description.
        format: Routing format the signature maps to.
    """
    magic: bytes
    offset: int
    description: str
    format: BinaryFormat


# ---------------------------------------------------------------------------
# Signature table -- checked in order
# ---------------------------------------------------------------------------

_SIGNATURES: list[_Signature] = [
    _Signature(b"\x7fELF", 0, "ELF executable", BinaryFormat.ELF),
    _Signature(b"\xfe\xed\xfa\xce", 0, "Mach-O 32-bit", BinaryFormat.MACHO),
    _Signature(b"\xfe\xed\xfa\xcf", 0, "Mach-O 64-bit", BinaryFormat.MACHO),
    _Signature(b"\xce\xfa\xed\xfe", 0, "Mach-O 32-bit (reversed)", BinaryFormat.MACHO),
    _Signature(b"\xcf\xfa\xed\xfe", 0, "Mach-O 64-bit (reversed)", BinaryFormat.MACHO),
    _Signature(b"\xbe\xba\xfe\xca", 0, "Mach-O Fat Binary (reversed)", BinaryFormat.MACHO),
    _Signature(b"%PDF", 0, "PDF document", BinaryFormat.PDF),
]

_FAT_MAGIC: bytes = b"\xca\xfe\xba\xbe"
# Java class files share the fat magic; their major version is always >= 45
_MAX_FAT_ARCHS: int = 30

_MIME_TYPES: dict[BinaryFormat, str] = {
    BinaryFormat.PE: "application/vnd.microsoft.portable-executable",
    BinaryFormat.ELF: "application/x-elf",
    BinaryFormat.MACHO: "application/x-mach-binary",
    BinaryFormat.PDF: "application/pdf",
    BinaryFormat.UNKNOWN: "application/octet-stream",
}


class MagicIdentifier:
    """Identify routing formats by magic byte signatures.

    Usage::

        identifier = MagicIdentifier()
        identifier.identify_format(raw_bytes)
        # => BinaryFormat.PE
    """

    def __init__(self) -> None:
        self._signatures: list[_Signature] = list(_SIGNATURES)

    def identify(self, data: bytes) -> str:
        """Return a human-readable description of *data*'s format."""
        if not data:
            return "Empty file"
        if self._is_pe(data):
            return "PE executable"
        if data[:2] == b"MZ":
            return "MS-DOS executable"
        if self._is_fat_macho(data):
            return "Mach-O Fat Binary"
        sig = self._match(data)
        return sig.description if sig is not None else "Unknown binary"

    def identify_format(self, data: bytes) -> BinaryFormat:
        """Return the routing format of *data*.

        Args:
            data: Raw file bytes; the first few kilobytes are enough except
                  for PE images with an unusually large DOS stub.

        Returns:
            The matching :class:`BinaryFormat`, ``UNKNOWN`` otherwise.
        """
        if not data:
            return BinaryFormat.UNKNOWN
        if self._is_pe(data):
            return BinaryFormat.PE
        if self._is_fat_macho(data):
            return BinaryFormat.MACHO
        sig = self._match(data)
        return sig.format if sig is not None else BinaryFormat.UNKNOWN

    def mime_type(self, data: bytes) -> str:
        """Return the MIME type string for *data*'s routing format."""
        return _MIME_TYPES[self.identify_format(data)]

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    def _match(self, data: bytes) -> _Signature | None:
        for sig in self._signatures:
            end = sig.offset + len(sig.magic)
            if end <= len(data) and data[sig.offset:end] == sig.magic:
                return sig
        return None

    @staticmethod
    def _is_pe(data: bytes) -> bool:
        if len(data) < 64 or data[:2] != b"MZ":
            return False
        e_lfanew = struct.unpack_from("<I", data, 60)[0]
        return data[e_lfanew:e_lfanew + 4] == b"PE\x00\x00"

    @staticmethod
    def _is_fat_macho(data: bytes) -> bool:
        if len(data) < 8 or data[:4] != _FAT_MAGIC:
            return False
        nfat_arch = struct.unpack_from(">I", data, 4)[0]
        return 0 < nfat_arch < _MAX_FAT_ARCHS
