"""
ImpScope Data Models
=====================

Pydantic-based data models for the PE import directory and for the
analysis results built on top of it.

The import-table models (:class:`ImportDescriptor`, :class:`ImportedFunction`,
:class:`Import`) are frozen: the parser builds them bottom-up once per
invocation and nothing mutates them afterwards.

References:
    - Microsoft. (2024). PE Format -- Import Directory Table. Microsoft Learn.
    - Pietrek, M. (2002). An In-Depth Look into the Win32 Portable
      Executable File Format, Part 2. MSDN Magazine.
"""

from __future__ import annotations

import enum
import struct
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field

from impscope.core.errors import ParseErrorKind


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class BinaryFormat(str, enum.Enum):
    """File formats recognised by the sample router."""
    PE = "pe"
    ELF = "elf"
    MACHO = "macho"
    PDF = "pdf"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Import directory structures
# ---------------------------------------------------------------------------

class ImportDescriptor(BaseModel):
    """IMAGE_IMPORT_DESCRIPTOR -- one entry per imported module.

    Five little-endian 32-bit fields.  An all-zero descriptor terminates
    the descriptor array.

    Attributes:
        lookup_table_rva: RVA of the Import Lookup Table (OriginalFirstThunk).
        timestamp: Zero until the image is bound, then the bound DLL's stamp.
        forwarder_chain_index: Index of the first forwarder reference.
        name_rva: RVA of the ASCII module name.
        address_table_rva: RVA of the Import Address Table (FirstThunk).
    """
    model_config = ConfigDict(frozen=True)

    STRUCT_FMT: ClassVar[str] = "<IIIII"
    SIZE: ClassVar[int] = 20

    lookup_table_rva: int = 0
    timestamp: int = 0
    forwarder_chain_index: int = 0
    name_rva: int = 0
    address_table_rva: int = 0

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> ImportDescriptor:
        """Unpack a descriptor from *data* at *offset*.

        Raises:
            struct.error: If fewer than :attr:`SIZE` bytes are available.
        """
        fields = struct.unpack_from(cls.STRUCT_FMT, data, offset)
        return cls(
            lookup_table_rva=fields[0],
            timestamp=fields[1],
            forwarder_chain_index=fields[2],
            name_rva=fields[3],
            address_table_rva=fields[4],
        )

    def to_bytes(self) -> bytes:
        return struct.pack(
            self.STRUCT_FMT,
            self.lookup_table_rva,
            self.timestamp,
            self.forwarder_chain_index,
            self.name_rva,
            self.address_table_rva,
        )

    @property
    def is_null(self) -> bool:
        """``True`` for the all-zero end-of-array sentinel."""
        return not (
            self.lookup_table_rva
            or self.timestamp
            or self.forwarder_chain_index
            or self.name_rva
            or self.address_table_rva
        )


class ImportedFunction(BaseModel):
    """One resolved import from a module.

    Exactly one of ``by_ordinal`` or a non-empty ``name`` determines how the
    entry is interpreted.

    Attributes:
        name: Function name, ``None`` for imports by ordinal.
        hint: Export name table hint.
        name_table_offset: RVA of the hint/name entry (0 for ordinals).
        by_ordinal: Imported by ordinal rather than by name.
        ordinal: Ordinal number (0 for imports by name).
        estimated_loaded_address: IAT slot address once the image is loaded.
        bound_address: Pre-resolved IAT value for bound images, else ``None``.
    """
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    hint: int = 0
    name_table_offset: int = 0
    by_ordinal: bool = False
    ordinal: int = 0
    estimated_loaded_address: int = 0
    bound_address: Optional[int] = None

    @property
    def is_bound(self) -> bool:
        return self.bound_address is not None

    @property
    def display_name(self) -> str:
        """Name for presentation; ordinal imports render as ``ordinal_N``."""
        if self.by_ordinal:
            return f"ordinal_{self.ordinal}"
        return self.name or ""


class Import(BaseModel):
    """One imported module with its resolved functions.

    Attributes:
        file_offset: File offset of the module's descriptor.
        module_name: Validated DLL name.
        functions: Resolved functions in table-index order.
        descriptor: The raw descriptor the module was read from.
    """
    model_config = ConfigDict(frozen=True)

    file_offset: int = 0
    module_name: str
    functions: tuple[ImportedFunction, ...] = ()
    descriptor: ImportDescriptor = Field(default_factory=ImportDescriptor)

    @property
    def is_bound(self) -> bool:
        return any(fn.is_bound for fn in self.functions)

    @property
    def ordinal_count(self) -> int:
        return sum(1 for fn in self.functions if fn.by_ordinal)


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------

class BinaryInfo(BaseModel):
    """Top-level metadata about an analysed sample.

    Attributes:
        path: Filesystem path (or ``<memory>``).
        size: File size in bytes.
        format: Detected format.
        arch: Machine name (x86, x86_64, ...).
        bits: 32 for PE32, 64 for PE32+.
        image_base: Preferred load address.
        entry_point: Entry point RVA.
        import_directory_rva: RVA of data directory 1.
        import_directory_size: Size of data directory 1.
        md5: MD5 of the file contents.
        sha256: SHA-256 of the file contents.
    """
    path: str = ""
    size: int = 0
    format: BinaryFormat = BinaryFormat.UNKNOWN
    arch: str = "unknown"
    bits: int = 0
    image_base: int = 0
    entry_point: int = 0
    import_directory_rva: int = 0
    import_directory_size: int = 0
    md5: str = ""
    sha256: str = ""


class ImportFailure(BaseModel):
    """A fatal import directory error, kept instead of a partial list."""
    kind: ParseErrorKind
    message: str
    rva: Optional[int] = None


class ImportAnalysisResult(BaseModel):
    """Complete import analysis for a single sample.

    Either ``imports`` holds the full import list or ``failure`` describes
    why the directory was rejected -- never both.
    """
    info: BinaryInfo = Field(default_factory=BinaryInfo)
    imports: list[Import] = Field(default_factory=list)
    failure: Optional[ImportFailure] = None
    headers_parsed: bool = False

    @property
    def function_count(self) -> int:
        return sum(len(imp.functions) for imp in self.imports)
