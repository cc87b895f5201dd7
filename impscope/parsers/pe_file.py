"""
PE/COFF Container Parser
=========================

Struct-based parser for the headers of a Portable Executable image: DOS
stub, PE signature, COFF file header, PE32 / PE32+ optional header, data
directories and section table.

:class:`PEFile` is also the on-disk :class:`AddressResolver` for the import
directory walker: RVAs are mapped to file offsets through the section
table, and every read is bounds-checked against the file contents.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
      https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
    - Pietrek, M. (1994). Peering Inside the PE: A Tour of the Win32
      Portable Executable File Format. Microsoft Systems Journal.
"""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING, NamedTuple, Optional

from impscope.core.models import BinaryFormat, BinaryInfo, Import
from impscope.parsers.imports import parse_import_directory
from impscope.parsers.resolver import (
    MAX_STRING_LENGTH,
    AddressResolutionError,
    read_c_string,
)
from impscope.parsers.thunks import ImportLimits

if TYPE_CHECKING:
    from shared.logger import ScopeLogger


# ---------------------------------------------------------------------------
# PE Constants
# ---------------------------------------------------------------------------

MZ_MAGIC: bytes = b"MZ"
PE_MAGIC: bytes = b"PE\x00\x00"

PE32_MAGIC: int = 0x10B
PE32PLUS_MAGIC: int = 0x20B

DOS_HEADER_SIZE: int = 64
COFF_HEADER_SIZE: int = 20
SECTION_HEADER_SIZE: int = 40
MAX_DATA_DIRECTORIES: int = 16
# Loaders ignore anything past 96 sections; so do we
MAX_SECTIONS: int = 96

IMAGE_FILE_MACHINE_I386: int = 0x14C
IMAGE_FILE_MACHINE_ARM: int = 0x1C0
IMAGE_FILE_MACHINE_ARMNT: int = 0x1C4
IMAGE_FILE_MACHINE_AMD64: int = 0x8664
IMAGE_FILE_MACHINE_ARM64: int = 0xAA64
IMAGE_FILE_MACHINE_IA64: int = 0x200

_MACHINE_NAMES: dict[int, str] = {
    IMAGE_FILE_MACHINE_I386: "x86",
    IMAGE_FILE_MACHINE_ARM: "ARM",
    IMAGE_FILE_MACHINE_ARMNT: "ARM Thumb-2",
    IMAGE_FILE_MACHINE_AMD64: "x86_64",
    IMAGE_FILE_MACHINE_ARM64: "AArch64",
    IMAGE_FILE_MACHINE_IA64: "IA-64",
}

IMAGE_FILE_DLL: int = 0x2000

IMAGE_DIRECTORY_ENTRY_IMPORT: int = 1

_COFF_FORMAT = "<HHIIIHH"


# ---------------------------------------------------------------------------
# Header records
# ---------------------------------------------------------------------------

class CoffHeader(NamedTuple):
    """IMAGE_FILE_HEADER, in on-disk field order."""
    machine: int
    number_of_sections: int
    time_date_stamp: int
    pointer_to_symbol_table: int
    number_of_symbols: int
    size_of_optional_header: int
    characteristics: int


class OptionalHeaderLayout(NamedTuple):
    """Field offsets that differ between PE32 and PE32+."""
    image_base_format: str
    image_base_offset: int
    directory_count_offset: int


# PE32+ drops BaseOfData and widens ImageBase to 8 bytes
_OPTIONAL_LAYOUTS: dict[int, OptionalHeaderLayout] = {
    PE32_MAGIC: OptionalHeaderLayout("<I", 28, 92),
    PE32PLUS_MAGIC: OptionalHeaderLayout("<Q", 24, 108),
}


class OptionalHeader(NamedTuple):
    """The optional-header fields the import walk depends on."""
    magic: int
    entry_point: int
    image_base: int
    data_directories: tuple[tuple[int, int], ...]


class Section(NamedTuple):
    """Section header fields used for RVA mapping."""
    name: str
    virtual_size: int
    virtual_address: int
    raw_size: int
    raw_offset: int

    def contains(self, rva: int) -> bool:
        span = max(self.virtual_size, self.raw_size)
        return self.virtual_address <= rva < self.virtual_address + span


_EMPTY_COFF = CoffHeader(0, 0, 0, 0, 0, 0, 0)
_EMPTY_OPTIONAL = OptionalHeader(0, 0, 0, ())


# ---------------------------------------------------------------------------
# PE File
# ---------------------------------------------------------------------------

class PEFile:
    """PE/COFF header parser and section-mapped address resolver.

    Usage::

        pe = PEFile(raw_bytes)
        if pe.parse():
            info = pe.get_binary_info()
            imports = pe.parse_imports()
    """

    def __init__(self, data: bytes) -> None:
        self._data: bytes = bytes(data)
        self._e_lfanew: int = 0
        self._coff: CoffHeader = _EMPTY_COFF
        self._optional: OptionalHeader = _EMPTY_OPTIONAL
        self._sections: list[Section] = []
        self._parsed: bool = False

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    def parse(self) -> bool:
        """Parse the PE headers and section table.

        Returns:
            ``True`` on success, ``False`` when the data is not a PE image
            with a PE32 or PE32+ optional header.
        """
        if len(self._data) < DOS_HEADER_SIZE or self._data[:2] != MZ_MAGIC:
            return False

        try:
            self._e_lfanew = struct.unpack_from("<I", self._data, 60)[0]
            signature = self._data[self._e_lfanew:self._e_lfanew + 4]
            if signature != PE_MAGIC:
                return False
            self._coff = CoffHeader._make(
                struct.unpack_from(_COFF_FORMAT, self._data, self._e_lfanew + 4)
            )
            optional = self._read_optional_header()
            if optional is None:
                return False
            self._optional = optional
            self._sections = self._read_sections()
        except (struct.error, IndexError, ValueError):
            return False

        self._parsed = True
        return True

    @property
    def parsed(self) -> bool:
        return self._parsed

    @property
    def is_64bit(self) -> bool:
        return self._optional.magic == PE32PLUS_MAGIC

    @property
    def image_base(self) -> int:
        return self._optional.image_base

    @property
    def is_dll(self) -> bool:
        return bool(self._coff.characteristics & IMAGE_FILE_DLL)

    @property
    def import_directory(self) -> tuple[int, int]:
        """``(rva, size)`` of data directory 1, ``(0, 0)`` when absent."""
        dirs = self._optional.data_directories
        if len(dirs) <= IMAGE_DIRECTORY_ENTRY_IMPORT:
            return (0, 0)
        return dirs[IMAGE_DIRECTORY_ENTRY_IMPORT]

    @property
    def section_names(self) -> list[str]:
        return [sec.name for sec in self._sections]

    def get_binary_info(self) -> BinaryInfo:
        machine = self._coff.machine
        import_rva, import_size = self.import_directory
        return BinaryInfo(
            size=len(self._data),
            format=BinaryFormat.PE,
            arch=_MACHINE_NAMES.get(machine, f"unknown(0x{machine:x})"),
            bits=64 if self.is_64bit else 32,
            image_base=self.image_base,
            entry_point=self._optional.entry_point,
            import_directory_rva=import_rva,
            import_directory_size=import_size,
        )

    def parse_imports(
        self,
        limits: ImportLimits | None = None,
        logger: ScopeLogger | None = None,
    ) -> list[Import]:
        """Walk the import directory of the parsed image.

        Returns:
            Imports in descriptor order; empty when the image has no
            import directory.

        Raises:
            RuntimeError: :meth:`parse` has not succeeded.
            ImportParseError: The import directory is malformed.
        """
        if not self._parsed:
            raise RuntimeError("PE headers have not been parsed")

        import_rva, import_size = self.import_directory
        if import_rva == 0:
            return []

        return parse_import_directory(
            self,
            directory_rva=import_rva,
            directory_size=import_size,
            is_64bit=self.is_64bit,
            image_base=self.image_base,
            limits=limits,
            logger=logger,
        )

    # ------------------------------------------------------------------ #
    #  AddressResolver
    # ------------------------------------------------------------------ #

    @property
    def size(self) -> int:
        return len(self._data)

    def offset_of(self, rva: int) -> int:
        """Map *rva* to a file offset through the section table.

        RVAs below the first section map one-to-one into the headers.

        Raises:
            AddressResolutionError: The RVA has no backing file bytes.
        """
        offset = self._file_offset(rva)
        if offset is None:
            raise AddressResolutionError(
                f"RVA 0x{rva:x} does not map into the file"
            )
        return offset

    def read_bytes(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0 or offset + length > len(self._data):
            raise AddressResolutionError(
                f"Read of {length} bytes at offset 0x{offset:x} exceeds "
                f"file of {len(self._data)} bytes"
            )
        return self._data[offset:offset + length]

    def read_c_string_at_rva(
        self, rva: int, max_length: int = MAX_STRING_LENGTH
    ) -> str:
        return read_c_string(self._data, self.offset_of(rva), max_length)

    # ------------------------------------------------------------------ #
    #  Header parsing
    # ------------------------------------------------------------------ #

    def _read_optional_header(self) -> Optional[OptionalHeader]:
        """Decode a PE32 or PE32+ optional header; ``None`` for other magics."""
        if self._coff.size_of_optional_header == 0:
            return None

        start = self._e_lfanew + 4 + COFF_HEADER_SIZE
        magic = struct.unpack_from("<H", self._data, start)[0]
        layout = _OPTIONAL_LAYOUTS.get(magic)
        if layout is None:
            return None

        entry_point = struct.unpack_from("<I", self._data, start + 16)[0]
        image_base = struct.unpack_from(
            layout.image_base_format, self._data, start + layout.image_base_offset
        )[0]
        count = struct.unpack_from(
            "<I", self._data, start + layout.directory_count_offset
        )[0]
        directories = self._read_data_directories(
            start + layout.directory_count_offset + 4, count
        )
        return OptionalHeader(magic, entry_point, image_base, directories)

    def _read_data_directories(
        self, start: int, count: int
    ) -> tuple[tuple[int, int], ...]:
        """At most 16 ``(rva, size)`` pairs; pairs past EOF read as ``(0, 0)``."""
        pairs = []
        for index in range(min(count, MAX_DATA_DIRECTORIES)):
            at = start + index * 8
            if at + 8 > len(self._data):
                pairs.append((0, 0))
            else:
                pairs.append(struct.unpack_from("<II", self._data, at))
        return tuple(pairs)

    def _read_sections(self) -> list[Section]:
        table = (
            self._e_lfanew + 4 + COFF_HEADER_SIZE
            + self._coff.size_of_optional_header
        )
        sections = []
        for index in range(min(self._coff.number_of_sections, MAX_SECTIONS)):
            at = table + index * SECTION_HEADER_SIZE
            if at + SECTION_HEADER_SIZE > len(self._data):
                break
            name = self._data[at:at + 8].split(b"\x00", 1)[0]
            sections.append(Section(
                name.decode("ascii", errors="replace"),
                *struct.unpack_from("<IIII", self._data, at + 8),
            ))
        return sections

    def _file_offset(self, rva: int) -> Optional[int]:
        """File offset of *rva*, or ``None`` when no file byte backs it.

        The virtual-only tail of a section (past its raw data) exists only
        in memory.
        """
        for sec in self._sections:
            if sec.contains(rva):
                delta = rva - sec.virtual_address
                if delta >= sec.raw_size:
                    return None
                offset = sec.raw_offset + delta
                return offset if offset < len(self._data) else None

        if not self._sections or rva < self._sections[0].virtual_address:
            return rva if 0 <= rva < len(self._data) else None
        return None
