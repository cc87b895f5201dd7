"""
ImpScope Report Generator
==========================

Builds the structured JSON report of an import analysis.  Each module is
emitted as::

    {
      "module_name": "KERNEL32.dll",
      "functions": [
        {"name": ..., "hint": ..., "offset": ..., "by_ordinal": ...,
         "ordinal": ..., "address": ..., "bound": ...}
      ]
    }

``bound`` is the pre-resolved IAT value of a bound import and ``null``
otherwise.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from shared.models import ScanResult

from impscope.core.models import Import, ImportAnalysisResult

REPORT_VERSION = "1.0.0"


class ImportReportGenerator:
    """Render :class:`ImportAnalysisResult` objects as JSON reports.

    Usage::

        gen = ImportReportGenerator()
        path = gen.generate_json(result, "out/report.json", scan=scan)
    """

    @staticmethod
    def module_entry(imp: Import) -> dict[str, Any]:
        return {
            "module_name": imp.module_name,
            "functions": [
                {
                    "name": fn.name,
                    "hint": fn.hint,
                    "offset": fn.name_table_offset,
                    "by_ordinal": fn.by_ordinal,
                    "ordinal": fn.ordinal,
                    "address": fn.estimated_loaded_address,
                    "bound": fn.bound_address,
                }
                for fn in imp.functions
            ],
        }

    def build(
        self,
        result: ImportAnalysisResult,
        scan: Optional[ScanResult] = None,
    ) -> dict[str, Any]:
        """Build the report as a plain dictionary.

        Args:
            result: The analysis to report.
            scan: Scan carrying findings and timing, if available.
        """
        info = result.info
        report: dict[str, Any] = {
            "report_type": "impscope_import_analysis",
            "version": REPORT_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "binary_info": info.model_dump(mode="json"),
            "headers_parsed": result.headers_parsed,
            "imports": [self.module_entry(imp) for imp in result.imports],
            "error": (
                result.failure.model_dump(mode="json")
                if result.failure is not None
                else None
            ),
        }
        if scan is not None:
            report["findings"] = [f.model_dump(mode="json") for f in scan.findings]
            report["summary"] = scan.summary
            report["duration_seconds"] = scan.duration_seconds
        return report

    def to_json(
        self,
        result: ImportAnalysisResult,
        scan: Optional[ScanResult] = None,
    ) -> str:
        return json.dumps(
            self.build(result, scan), indent=2, ensure_ascii=False, default=str
        )

    def generate_json(
        self,
        result: ImportAnalysisResult,
        output_path: str,
        scan: Optional[ScanResult] = None,
    ) -> str:
        """Write the report to *output_path*.

        Returns:
            The absolute path of the generated report.
        """
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_json(result, scan))
        return str(path.resolve())

    def generate_batch_json(
        self,
        items: list[tuple[ImportAnalysisResult, Optional[ScanResult]]],
        output_path: str,
    ) -> str:
        """Write one report per analysed sample as a single JSON document."""
        document = {
            "report_type": "impscope_batch",
            "version": REPORT_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "reports": [self.build(result, scan) for result, scan in items],
        }
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False, default=str)
        return str(path.resolve())
