"""
Import Directory Parser
========================

Walks the IMAGE_IMPORT_DESCRIPTOR array of a PE image and resolves, for
every imported module, the functions it imports by name or by ordinal.

Control flow per descriptor::

    ImportDirectoryWalker
        -> ThunkTableReader  (lookup table)
        -> ThunkTableReader  (address table)
        -> ImportEntryResolver
        -> module name check -> Import

Structural and heuristic failures inside one module's tables abort the
whole walk; a module whose name fails validation is skipped, and a function
whose name fails validation is dropped from its module.

References:
    - Microsoft. (2024). PE Format -- The .idata Section. Microsoft Learn.
    - Carrera, E. pefile -- ``PE.parse_import_directory``.
"""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING, Optional, Sequence

from impscope.core.errors import (
    DamagedImportTableError,
    InvalidDescriptorError,
    MissingNameOrOrdinalError,
    TooManyInvalidNamesError,
    TruncatedReadError,
)
from impscope.core.models import Import, ImportDescriptor, ImportedFunction
from impscope.parsers.resolver import AddressResolutionError, AddressResolver
from impscope.parsers.thunks import (
    ImportLimits,
    ThunkEntry,
    ThunkTableReader,
    WordWidth,
)
from impscope.parsers.validation import (
    MAX_DLL_NAME_LENGTH,
    is_valid_dos_filename,
    is_valid_function_name,
)

if TYPE_CHECKING:
    from shared.logger import ScopeLogger


# ---------------------------------------------------------------------------
# Entry resolution
# ---------------------------------------------------------------------------

class ImportEntryResolver:
    """Reconcile one module's lookup and address tables into functions.

    The lookup table is the table of record when present; the address table
    may already hold loader-resolved addresses if the image is bound.
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

    def resolve(
        self,
        lookup_table: Sequence[ThunkEntry],
        address_table: Sequence[ThunkEntry],
        descriptor: ImportDescriptor,
        image_base: int,
        width: WordWidth,
    ) -> list[ImportedFunction]:
        """Resolve the functions of one module.

        Args:
            lookup_table: Entries of the Import Lookup Table.
            address_table: Entries of the Import Address Table.
            descriptor: The module's import descriptor.
            image_base: Preferred load address of the image.
            width: Entry width for the image bitness.

        Returns:
            Accepted functions in table-index order.

        Raises:
            DamagedImportTableError: Both tables are empty.
            TruncatedReadError: A hint could not be read.
            MissingNameOrOrdinalError: An entry has neither name nor ordinal.
            TooManyInvalidNamesError: The table opens with a runaway streak
                of invalid names.
        """
        if not lookup_table and not address_table:
            raise DamagedImportTableError(
                "Damaged import table: lookup and address tables are both empty",
                descriptor.name_rva or None,
            )

        table = lookup_table if lookup_table else address_table
        both_present = bool(lookup_table) and bool(address_table)

        functions: list[ImportedFunction] = []
        num_invalid = 0
        for idx, entry in enumerate(table):
            name: Optional[str] = None
            name_invalid = False
            hint = 0
            name_table_offset = 0
            ordinal = 0

            if entry.is_ordinal:
                ordinal = entry.ordinal
            else:
                name_table_offset = entry.data_address
                hint = self._read_hint(name_table_offset)
                name = self._read_function_name(name_table_offset + 2)
                name_invalid = name is None

            bound_address: Optional[int] = None
            if (
                both_present
                and idx < len(address_table)
                and address_table[idx].value != entry.value
            ):
                bound_address = address_table[idx].value

            if ordinal == 0 and name is None and not name_invalid:
                raise MissingNameOrOrdinalError(
                    "Import entry has neither a name nor an ordinal", entry.rva
                )

            # Some samples interleave valid and invalid entries; skip the
            # invalid ones unless the table opens with a runaway streak.
            # SHA256 3d22f8b001423cb460811ab4f4789f277b35838d45c62ec0454c877e7c82c7f5
            if name_invalid:
                num_invalid += 1
                if (
                    num_invalid > self._limits.max_invalid_names
                    and num_invalid == idx + 1
                ):
                    raise TooManyInvalidNamesError(
                        f"{num_invalid} invalid import names and no valid "
                        "ones, aborting",
                        entry.rva,
                    )
                continue

            functions.append(ImportedFunction(
                name=name,
                hint=hint,
                name_table_offset=name_table_offset,
                by_ordinal=entry.is_ordinal,
                ordinal=ordinal,
                estimated_loaded_address=(
                    descriptor.address_table_rva + image_base + idx * width.size
                ),
                bound_address=bound_address,
            ))

        if num_invalid and self._logger is not None:
            self._logger.debug(
                "Skipped %d import(s) with invalid names", num_invalid
            )
        return functions

    def _read_hint(self, rva: int) -> int:
        try:
            offset = self._resolver.offset_of(rva)
            data = self._resolver.read_bytes(offset, 2)
        except AddressResolutionError as exc:
            raise TruncatedReadError(f"Unreadable hint: {exc}", rva) from exc
        return struct.unpack("<H", data)[0]

    def _read_function_name(self, rva: int) -> Optional[str]:
        """Return the name at *rva*, or ``None`` if it fails validation."""
        max_length = self._limits.max_name_length
        try:
            name = self._resolver.read_c_string_at_rva(rva, max_length)
        except AddressResolutionError:
            return None
        if not is_valid_function_name(name, max_length):
            return None
        return name


# ---------------------------------------------------------------------------
# Directory walk
# ---------------------------------------------------------------------------

class ImportDirectoryWalker:
    """Iterate the descriptor array of one image.

    The walker is configured once per image with its bitness, which selects
    the thunk width and masks used by every nested read.

    Usage::

        walker = ImportDirectoryWalker(pe, is_64bit=True, image_base=0x140000000)
        imports = walker.walk(import_rva, import_size)
    """

    def __init__(
        self,
        resolver: AddressResolver,
        is_64bit: bool,
        image_base: int,
        limits: ImportLimits | None = None,
        logger: ScopeLogger | None = None,
    ) -> None:
        self._resolver = resolver
        self._width: WordWidth = WordWidth.for_image(is_64bit)
        self._image_base = image_base
        self._logger = logger
        self._reader = ThunkTableReader(resolver, limits, logger)
        self._entry_resolver = ImportEntryResolver(resolver, limits, logger)

    @property
    def width(self) -> WordWidth:
        return self._width

    def walk(self, directory_rva: int, directory_size: int) -> list[Import]:
        """Parse every module of the import directory.

        Args:
            directory_rva: RVA of the first descriptor.
            directory_size: Declared size of the directory.

        Returns:
            Imports in descriptor order.

        Raises:
            InvalidDescriptorError: A descriptor could not be read.
            ImportParseError: Any fatal error from a module's tables.
        """
        imports: list[Import] = []
        directory_end = directory_rva + directory_size
        overrun_reported = False

        rva = directory_rva
        while True:
            file_offset, descriptor = self._read_descriptor(rva)
            if descriptor.is_null:
                break

            rva += ImportDescriptor.SIZE
            if directory_size and rva > directory_end and not overrun_reported:
                self._debug(
                    "Descriptor array runs past the declared directory size "
                    "(0x%x bytes)",
                    directory_size,
                )
                overrun_reported = True

            lookup_table = self._read_table(
                rva, file_offset, descriptor.lookup_table_rva
            )
            address_table = self._read_table(
                rva, file_offset, descriptor.address_table_rva
            )
            functions = self._entry_resolver.resolve(
                lookup_table,
                address_table,
                descriptor,
                self._image_base,
                self._width,
            )

            module_name = self._read_module_name(descriptor.name_rva)
            if module_name is None:
                if self._logger is not None:
                    self._logger.warning(
                        "Skipping module with invalid name at RVA 0x%x "
                        "(%d functions discarded)",
                        descriptor.name_rva, len(functions),
                    )
                continue

            imports.append(Import(
                file_offset=file_offset,
                module_name=module_name,
                functions=tuple(functions),
                descriptor=descriptor,
            ))

        return imports

    def _read_descriptor(self, rva: int) -> tuple[int, ImportDescriptor]:
        try:
            offset = self._resolver.offset_of(rva)
            data = self._resolver.read_bytes(offset, ImportDescriptor.SIZE)
        except AddressResolutionError as exc:
            raise InvalidDescriptorError(
                f"Error parsing the import directory: {exc}", rva
            ) from exc
        return offset, ImportDescriptor.from_bytes(data)

    def _read_table(
        self, cursor: int, file_offset: int, table_rva: int
    ) -> list[ThunkEntry]:
        max_length = self._table_length_bound(cursor, file_offset, table_rva)
        return self._reader.read(table_rva, max_length, self._width)

    def _table_length_bound(
        self, cursor: int, file_offset: int, table_rva: int
    ) -> int:
        """Byte bound for the thunk table at *table_rva*.

        A table laid out before the descriptor cursor is bounded by its
        distance back to the cursor.  A table after the cursor, or an absent
        one (RVA 0), may run to the end of the file.
        """
        rest_of_file = self._resolver.size - file_offset
        if table_rva == 0 or table_rva >= cursor:
            return rest_of_file
        bound = cursor - table_rva
        # TODO: collect samples where this bound cuts a table short and
        # compare against the rest-of-file bound before trusting it.
        self._debug(
            "Thunk table 0x%x precedes descriptor cursor 0x%x: bound %d bytes "
            "(rest of file %d bytes)",
            table_rva, cursor, bound, rest_of_file,
        )
        return bound

    def _read_module_name(self, rva: int) -> Optional[str]:
        """Return the module name at *rva*, or ``None`` if it is invalid."""
        try:
            name = self._resolver.read_c_string_at_rva(rva, MAX_DLL_NAME_LENGTH)
        except AddressResolutionError:
            return None
        if not is_valid_dos_filename(name):
            return None
        return name

    def _debug(self, msg: str, *args: object) -> None:
        if self._logger is not None:
            self._logger.debug(msg, *args)


def parse_import_directory(
    resolver: AddressResolver,
    directory_rva: int,
    directory_size: int,
    is_64bit: bool,
    image_base: int,
    limits: ImportLimits | None = None,
    logger: ScopeLogger | None = None,
) -> list[Import]:
    """Parse the import directory reachable through *resolver*.

    Convenience wrapper around :class:`ImportDirectoryWalker`.

    Returns:
        Imports in descriptor order, each with functions in table order.

    Raises:
        ImportParseError: The directory is malformed; no partial list is
            returned.
    """
    walker = ImportDirectoryWalker(
        resolver,
        is_64bit=is_64bit,
        image_base=image_base,
        limits=limits,
        logger=logger,
    )
    return walker.walk(directory_rva, directory_size)
