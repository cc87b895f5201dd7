"""
ImpScope Parsers
=================

PE header parsing, file type identification and the import directory
walker with its thunk table reader.
"""

from impscope.parsers.imports import ImportDirectoryWalker, parse_import_directory
from impscope.parsers.magic import MagicIdentifier
from impscope.parsers.pe_file import PEFile
from impscope.parsers.resolver import FlatImageResolver
from impscope.parsers.thunks import ImportLimits, ThunkTableReader

__all__ = [
    "FlatImageResolver",
    "ImportDirectoryWalker",
    "ImportLimits",
    "MagicIdentifier",
    "PEFile",
    "ThunkTableReader",
    "parse_import_directory",
]
