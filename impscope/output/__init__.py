"""
ImpScope Output Module
=======================

Console display and report generation for import analysis results.
"""

from impscope.output.console import ImportConsoleOutput
from impscope.output.report import ImportReportGenerator

__all__ = [
    "ImportConsoleOutput",
    "ImportReportGenerator",
]
