"""
ImpScope -- PE Import Table Analysis
=====================================

ImpScope parses the import directory of PE32 and PE32+ executables into a
list of imported modules and functions, and rejects import tables crafted
to exhaust a scanner.

Capabilities:
    - PE32 / PE32+ header and section table parsing
    - Import descriptor, ILT and IAT walking, by name and by ordinal
    - Bound import detection
    - Anti-abuse limits on thunk tables and import names
    - Magic-number file type identification
    - Findings, console display and JSON reports
    - Sample routing for a scanning pipeline

References:
    - Microsoft. (2024). PE Format, "The .idata Section".
    - Pietrek, M. (2002). An In-Depth Look into the Win32 Portable
      Executable File Format. MSDN Magazine.
"""

__version__ = "1.0.0"
__tool_name__ = "impscope"
