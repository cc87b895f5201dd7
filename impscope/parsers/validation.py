"""
Name validity checks for import tables.

Malformed and hostile samples routinely point name RVAs at arbitrary data,
so every module and function name is checked against the characters a
linker would actually emit before it is trusted.
"""

from __future__ import annotations

import string
from typing import Optional

MAX_DLL_NAME_LENGTH: int = 0x200
MAX_IMPORT_NAME_LENGTH: int = 0x200

_FUNCTION_NAME_CHARS: frozenset[str] = frozenset(
    string.ascii_letters + string.digits + "._?@$()<>"
)

_DOS_FILENAME_CHARS: frozenset[str] = frozenset(
    string.ascii_letters
    + string.digits
    + "!#$%&'()-@^_`{}~+,.;=[]"
    + "".join(chr(i) for i in range(0x80, 0x100))
)


def is_valid_function_name(
    name: Optional[str], max_length: int = MAX_IMPORT_NAME_LENGTH
) -> bool:
    """Return ``True`` if *name* looks like a linker-emitted symbol name."""
    if not name or len(name) > max_length:
        return False
    return all(c in _FUNCTION_NAME_CHARS for c in name)


def is_valid_dos_filename(
    name: Optional[str], max_length: int = MAX_DLL_NAME_LENGTH
) -> bool:
    """Return ``True`` if *name* is a syntactically valid module file name."""
    if not name or len(name) > max_length:
        return False
    return all(c in _DOS_FILENAME_CHARS for c in name)
