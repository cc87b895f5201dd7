"""
Import Parsing Errors
======================

Typed failures raised while walking a PE import directory.

Every error carries a :class:`ParseErrorKind` so callers can branch on the
failure class without string matching, and an optional RVA pointing at the
structure that triggered it.  Structural and heuristic failures abort the
whole directory walk; per-entry and per-module name problems are recovered
inside the parser and never surface here.

References:
    - Microsoft. (2024). PE Format -- The .idata Section. Microsoft Learn.
"""

from __future__ import annotations

import enum
from typing import Optional


class ParseErrorKind(str, enum.Enum):
    """Failure classes for import directory parsing."""
    TRUNCATED_READ = "truncated_read"
    INVALID_DESCRIPTOR = "invalid_descriptor"
    BOGUS_ORDINAL = "bogus_ordinal"
    BOGUS_DATA = "bogus_data"
    ADDRESS_SPREAD_TOO_LARGE = "address_spread_too_large"
    DAMAGED_IMPORT_TABLE = "damaged_import_table"
    MISSING_NAME_OR_ORDINAL = "missing_name_or_ordinal"
    TOO_MANY_INVALID_NAMES = "too_many_invalid_names"


class ImportParseError(Exception):
    """Base class for fatal import directory errors.

    Attributes:
        kind: Failure class.
        rva: RVA of the offending structure, when known.
    """

    kind: ParseErrorKind = ParseErrorKind.TRUNCATED_READ

    def __init__(self, message: str, rva: Optional[int] = None) -> None:
        super().__init__(message)
        self.rva = rva

    def __str__(self) -> str:
        base = super().__str__()
        if self.rva is None:
            return base
        return f"{base} (RVA 0x{self.rva:x})"


class TruncatedReadError(ImportParseError):
    """An address could not be dereferenced within the file bounds."""
    kind = ParseErrorKind.TRUNCATED_READ


class InvalidDescriptorError(ImportParseError):
    """The import descriptor array could not be read."""
    kind = ParseErrorKind.INVALID_DESCRIPTOR


class BogusOrdinalError(ImportParseError):
    """An ordinal thunk carries a value beyond 16 bits."""
    kind = ParseErrorKind.BOGUS_ORDINAL


class BogusDataError(ImportParseError):
    """A thunk table references the same name entry too many times."""
    kind = ParseErrorKind.BOGUS_DATA


class AddressSpreadTooLargeError(ImportParseError):
    """Name entries of one table are scattered implausibly far apart."""
    kind = ParseErrorKind.ADDRESS_SPREAD_TOO_LARGE


class DamagedImportTableError(ImportParseError):
    """Both the lookup table and the address table are empty."""
    kind = ParseErrorKind.DAMAGED_IMPORT_TABLE


class MissingNameOrOrdinalError(ImportParseError):
    """A thunk decodes to neither a name nor a non-zero ordinal."""
    kind = ParseErrorKind.MISSING_NAME_OR_ORDINAL


class TooManyInvalidNamesError(ImportParseError):
    """A table starts with a runaway streak of invalid function names."""
    kind = ParseErrorKind.TOO_MANY_INVALID_NAMES
