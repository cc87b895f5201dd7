"""
Thunk Table Reader
===================

Reads one Import Lookup Table or Import Address Table as a sequence of
IMAGE_THUNK_DATA entries.  The entry width depends on image bitness
(4 bytes for PE32, 8 bytes for PE32+); everything else is width-generic and
driven by a :class:`WordWidth` value object.

Thunk tables in malware samples are attacker-controlled integers, so the
reader applies four checks to every entry before accepting it:

    1. Self-overlap   -- a name RVA pointing back into the table being read
                         ends the table.
    2. Bogus ordinal  -- an ordinal above 0xFFFF aborts with
                         :class:`BogusOrdinalError`.
    3. Repeat flood   -- the same name RVA recurring too often aborts with
                         :class:`BogusDataError`.
    4. Address spread -- name RVAs scattered too far apart abort with
                         :class:`AddressSpreadTooLargeError`.

References:
    - Microsoft. (2024). PE Format -- Import Lookup Table. Microsoft Learn.
    - Carrera, E. pefile -- ``PE.get_import_table``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from impscope.core.errors import (
    AddressSpreadTooLargeError,
    BogusDataError,
    BogusOrdinalError,
    TruncatedReadError,
)
from impscope.parsers.resolver import AddressResolutionError, AddressResolver
from impscope.parsers.validation import MAX_IMPORT_NAME_LENGTH

if TYPE_CHECKING:
    from shared.logger import ScopeLogger


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

IMAGE_ORDINAL_FLAG32: int = 0x80000000
IMAGE_ORDINAL_FLAG64: int = 0x8000000000000000
ADDRESS_MASK32: int = 0x7FFFFFFF
ADDRESS_MASK64: int = 0x7FFFFFFFFFFFFFFF

MAX_ORDINAL: int = 0xFFFF
MAX_REPEATED_ADDRESSES: int = 16
MAX_ADDRESS_SPREAD: int = 64 * 1024 * 1024  # 64 MiB
MAX_INVALID_NAMES: int = 1000


# ---------------------------------------------------------------------------
# Word width / limits
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class WordWidth:
    """Entry width and masks of one image bitness.

    Attributes:
        size: Entry size in bytes.
        struct_fmt: :mod:`struct` format of one entry.
        ordinal_flag: Top bit marking an import by ordinal.
        address_mask: Mask selecting the ordinal / hint-name RVA bits.
    """
    size: int
    struct_fmt: str
    ordinal_flag: int
    address_mask: int

    @classmethod
    def for_image(cls, is_64bit: bool) -> WordWidth:
        return PE32PLUS_WORD if is_64bit else PE32_WORD

    @property
    def bits(self) -> int:
        return self.size * 8

    def unpack(self, data: bytes) -> int:
        return struct.unpack(self.struct_fmt, data)[0]

    def pack(self, value: int) -> bytes:
        return struct.pack(self.struct_fmt, value)

    def is_ordinal(self, value: int) -> bool:
        return bool(value & self.ordinal_flag)

    def data_address(self, value: int) -> int:
        return value & self.address_mask


PE32_WORD = WordWidth(
    size=4,
    struct_fmt="<I",
    ordinal_flag=IMAGE_ORDINAL_FLAG32,
    address_mask=ADDRESS_MASK32,
)
PE32PLUS_WORD = WordWidth(
    size=8,
    struct_fmt="<Q",
    ordinal_flag=IMAGE_ORDINAL_FLAG64,
    address_mask=ADDRESS_MASK64,
)


@dataclass(frozen=True, slots=True)
class ImportLimits:
    """Hard caps bounding the work done on hostile import tables."""
    max_repeated_addresses: int = MAX_REPEATED_ADDRESSES
    max_address_spread: int = MAX_ADDRESS_SPREAD
    max_invalid_names: int = MAX_INVALID_NAMES
    max_name_length: int = MAX_IMPORT_NAME_LENGTH


# ---------------------------------------------------------------------------
# Thunk entry
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ThunkEntry:
    """One non-zero slot of a lookup or address table.

    Attributes:
        rva: RVA the entry was read from.
        value: Raw entry value.
        width: Width the entry was decoded with.
    """
    rva: int
    value: int
    width: WordWidth

    @property
    def is_ordinal(self) -> bool:
        return self.width.is_ordinal(self.value)

    @property
    def ordinal(self) -> int:
        """Low 16 bits of an ordinal entry."""
        return self.value & MAX_ORDINAL

    @property
    def data_address(self) -> int:
        """RVA of the hint/name entry (meaningful when not an ordinal)."""
        return self.width.data_address(self.value)


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class ThunkTableReader:
    """Read a zero-terminated thunk table under anti-abuse limits.

    Usage::

        reader = ThunkTableReader(resolver)
        entries = reader.read(descriptor.lookup_table_rva, max_length, PE32_WORD)
    """

    def __init__(
        self,
        resolver: AddressResolver,
        limits: ImportLimits | None = None,
        logger: ScopeLogger | None = None,
    ) -> None:
        self._resolver = resolver
        self._limits: ImportLimits = limits or ImportLimits()
        self._logger = logger

    def read(
        self, start_rva: int, max_length: int, width: WordWidth
    ) -> list[ThunkEntry]:
        """Read the table starting at *start_rva*.

        Reading stops at the first zero entry, or once the table has
        consumed *max_length* bytes.  A zero *start_rva* denotes an absent
        table.

        Args:
            start_rva: RVA of the first entry.
            max_length: Byte bound within which the table must lie.
            width: Entry width for the image bitness.

        Returns:
            Accepted entries in file order, terminator excluded.

        Raises:
            TruncatedReadError: An entry could not be read.
            BogusOrdinalError: An ordinal entry exceeds 16 bits.
            BogusDataError: Too many entries share one name RVA.
            AddressSpreadTooLargeError: Name RVAs are spread too far.
        """
        entries: list[ThunkEntry] = []
        if not start_rva:
            return entries

        limits = self._limits
        seen_addresses: set[int] = set()
        repeated = 0
        min_address: Optional[int] = None
        max_address: Optional[int] = None

        rva = start_rva
        while True:
            if rva - start_rva >= max_length:
                self._warn(
                    "Import table at RVA 0x%x exceeds its %d-byte bound; "
                    "keeping %d entries",
                    start_rva, max_length, len(entries),
                )
                break

            value = self._read_word(rva, width)
            if value == 0:
                break

            if width.is_ordinal(value):
                if width.data_address(value) > MAX_ORDINAL:
                    raise BogusOrdinalError(
                        f"Ordinal entry 0x{value:x} is beyond 16 bits", rva
                    )
            else:
                address = width.data_address(value)

                # Seen in PE with SHA256
                # 5945bb6f0ac879ddf61b1c284f3b8d20c06b228e75ae4f571fa87f5b9512902c
                if start_rva <= address <= rva:
                    self._warn(
                        "Hint/name RVA 0x%x overlaps the thunk table at "
                        "RVA 0x%x; ending table",
                        address, rva,
                    )
                    break

                if address in seen_addresses:
                    repeated += 1
                    if repeated >= limits.max_repeated_addresses:
                        raise BogusDataError(
                            f"Hint/name RVA 0x{address:x} repeated "
                            f"{repeated} times",
                            rva,
                        )
                else:
                    seen_addresses.add(address)

                min_address = address if min_address is None else min(min_address, address)
                max_address = address if max_address is None else max(max_address, address)
                if max_address - min_address > limits.max_address_spread:
                    raise AddressSpreadTooLargeError(
                        f"Hint/name RVAs span 0x{min_address:x}-0x{max_address:x}",
                        rva,
                    )

            entries.append(ThunkEntry(rva=rva, value=value, width=width))
            rva += width.size

        return entries

    def _read_word(self, rva: int, width: WordWidth) -> int:
        try:
            offset = self._resolver.offset_of(rva)
            data = self._resolver.read_bytes(offset, width.size)
        except AddressResolutionError as exc:
            raise TruncatedReadError(
                f"Invalid import table data: {exc}", rva
            ) from exc
        return width.unpack(data)

    def _warn(self, msg: str, *args: object) -> None:
        if self._logger is not None:
            self._logger.warning(msg, *args)
