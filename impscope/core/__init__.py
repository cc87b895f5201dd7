"""
ImpScope Core Module
=====================

Data models and parse errors for the ImpScope import analyser.  The
engine lives in :mod:`impscope.core.engine`.
"""

from impscope.core.errors import (
    BogusDataError,
    ImportParseError,
    ParseErrorKind,
)
from impscope.core.models import (
    BinaryFormat,
    BinaryInfo,
    Import,
    ImportAnalysisResult,
    ImportDescriptor,
    ImportedFunction,
    ImportFailure,
)

__all__ = [
    "BinaryFormat",
    "BinaryInfo",
    "BogusDataError",
    "Import",
    "ImportAnalysisResult",
    "ImportDescriptor",
    "ImportedFunction",
    "ImportFailure",
    "ImportParseError",
    "ParseErrorKind",
]
