"""
ImpScope Analysis Engine
=========================

Runs the import analysis pipeline for one sample and turns the outcome
into findings.

Analysis Pipeline:
    1. Read file and compute hashes (MD5, SHA-256)
    2. Detect format via magic bytes
    3. Parse PE headers and section table
    4. Walk the import directory under the configured abuse limits
    5. Generate findings

A rejected import directory is recorded as an :class:`ImportFailure` on
the result; the engine never reports a partial import list.

References:
    - Sikorski, M., & Honig, A. (2012). Practical Malware Analysis,
      ch. 1 "Linked Functions". No Starch Press.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import hashlib
from datetime import datetime, timezone
from pathlib import Path

from shared.config import ImpScopeConfig
from shared.logger import ScopeLogger
from shared.models import Finding, ScanResult, Severity

from impscope.core.errors import ImportParseError
from impscope.core.models import (
    BinaryFormat,
    BinaryInfo,
    ImportAnalysisResult,
    ImportFailure,
)
from impscope.parsers.magic import MagicIdentifier
from impscope.parsers.pe_file import PEFile


# ---------------------------------------------------------------------------
# Import sets typical of packed or self-resolving samples
# ---------------------------------------------------------------------------

_LOADER_APIS: frozenset[str] = frozenset({
    "LoadLibraryA",
    "LoadLibraryW",
    "LoadLibraryExA",
    "LoadLibraryExW",
    "GetProcAddress",
    "GetModuleHandleA",
    "GetModuleHandleW",
    "VirtualAlloc",
    "VirtualProtect",
    "VirtualFree",
    "ExitProcess",
})

_RESOLVER_APIS: frozenset[str] = frozenset({
    "GetProcAddress",
    "LoadLibraryA",
    "LoadLibraryW",
    "LoadLibraryExA",
    "LoadLibraryExW",
})


# ---------------------------------------------------------------------------
# ImportScanEngine
# ---------------------------------------------------------------------------

class ImportScanEngine:
    """Orchestrates import analysis for a single sample.

    Usage::

        engine = ImportScanEngine()
        scan = await engine.analyze("/path/to/sample.exe")

    Or synchronously::

        scan = engine.analyze_sync("/path/to/sample.exe")
    """

    def __init__(
        self,
        config: ImpScopeConfig | None = None,
        logger: ScopeLogger | None = None,
    ) -> None:
        """Initialise the engine.

        Args:
            config: ImpScope configuration.  Defaults are used if not provided.
            logger: Logger instance.  A new one is created if not provided.
        """
        self._config: ImpScopeConfig = config or ImpScopeConfig()
        self._logger: ScopeLogger = logger or ScopeLogger("engine")
        self._magic: MagicIdentifier = MagicIdentifier()
        self._limits = self._config.parser.to_limits()

    # ------------------------------------------------------------------ #
    #  Entry points
    # ------------------------------------------------------------------ #

    async def analyze(self, file_path: str) -> ScanResult:
        """Analyse the file at *file_path*.

        The CPU-bound pipeline runs in the default executor.  The detailed
        :class:`ImportAnalysisResult` is stored under
        ``metadata["import_analysis"]``.

        Returns:
            ScanResult with findings; on a read failure the summary says
            why and no findings are produced.
        """
        scan = ScanResult(
            tool_name="impscope",
            target=file_path,
            start_time=datetime.now(timezone.utc),
        )

        path = Path(file_path)
        if not path.is_file():
            scan.summary = f"File not found: {file_path}"
            self._logger.error(scan.summary)
            return scan

        file_size = path.stat().st_size
        max_size = self._config.parser.max_file_size
        if file_size > max_size:
            scan.summary = (
                f"File too large: {file_size:,} bytes (max: {max_size:,} bytes)"
            )
            self._logger.error(scan.summary)
            return scan

        try:
            data = path.read_bytes()
        except OSError as exc:
            scan.summary = f"Could not read {file_path}: {exc}"
            self._logger.error(scan.summary)
            return scan

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None, self._run_pipeline, data, str(path.resolve())
        )

        for finding in self._generate_findings(result):
            scan.add_finding(finding)
        scan.metadata = {"import_analysis": result.model_dump(mode="json")}
        scan.finalize(self._summarize(result, scan))
        self._logger.info(scan.summary)
        return scan

    def analyze_sync(self, file_path: str) -> ScanResult:
        """Synchronous wrapper around :meth:`analyze`."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None and loop.is_running():
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, self.analyze(file_path)).result()
        return asyncio.run(self.analyze(file_path))

    def analyze_data(
        self, data: bytes, file_path: str = "<memory>"
    ) -> ImportAnalysisResult:
        """Analyse bytes already in memory."""
        return self._run_pipeline(data, file_path)

    def findings_for(self, result: ImportAnalysisResult) -> list[Finding]:
        """Findings for an already computed *result*."""
        return self._generate_findings(result)

    # ------------------------------------------------------------------ #
    #  Pipeline implementation
    # ------------------------------------------------------------------ #

    def _run_pipeline(self, data: bytes, file_path: str) -> ImportAnalysisResult:
        info = BinaryInfo(
            path=file_path,
            size=len(data),
            format=self._magic.identify_format(data),
            md5=hashlib.md5(data).hexdigest(),
            sha256=hashlib.sha256(data).hexdigest(),
        )
        result = ImportAnalysisResult(info=info)

        with self._logger.sample(info.sha256 or file_path):
            self._logger.debug("Detected format: %s", info.format.value)
            if info.format is BinaryFormat.PE:
                self._analyze_pe(data, result)
            else:
                self._logger.info(
                    "Skipping import analysis for %s sample", info.format.value
                )
        return result

    def _analyze_pe(self, data: bytes, result: ImportAnalysisResult) -> None:
        pe = PEFile(data)
        if not pe.parse():
            self._logger.error("PE header parsing failed")
            return

        result.headers_parsed = True
        result.info = pe.get_binary_info().model_copy(update={
            "path": result.info.path,
            "md5": result.info.md5,
            "sha256": result.info.sha256,
        })

        with self._logger.operation("import_directory"), \
                self._logger.timed("import directory walk"):
            try:
                result.imports = pe.parse_imports(self._limits, self._logger)
            except ImportParseError as exc:
                result.failure = ImportFailure(
                    kind=exc.kind,
                    message=str(exc),
                    rva=exc.rva,
                )
                self._logger.warning("Import directory rejected: %s", exc)
                return

        self._logger.info(
            "PE: %s %d-bit, %d modules, %d functions",
            result.info.arch, result.info.bits,
            len(result.imports), result.function_count,
        )

    @staticmethod
    def _summarize(result: ImportAnalysisResult, scan: ScanResult) -> str:
        parts = [f"Format: {result.info.format.value.upper()}"]
        if result.headers_parsed:
            parts.append(f"{result.info.arch} {result.info.bits}-bit")
            if result.failure is not None:
                parts.append(f"Imports rejected ({result.failure.kind.value})")
            else:
                parts.append(
                    f"Modules: {len(result.imports)} "
                    f"Functions: {result.function_count}"
                )
        parts.append(f"Findings: {scan.finding_count}")
        return " | ".join(parts)

    # ------------------------------------------------------------------ #
    #  Finding generation
    # ------------------------------------------------------------------ #

    def _generate_findings(self, result: ImportAnalysisResult) -> list[Finding]:
        findings: list[Finding] = []

        if result.info.format is BinaryFormat.PE and not result.headers_parsed:
            findings.append(Finding(
                title="Malformed PE headers",
                description=(
                    "The sample carries a PE signature but its COFF or "
                    "optional header could not be parsed."
                ),
                severity=Severity.HIGH,
                evidence={"size": result.info.size},
                recommendation="Inspect the headers manually; loaders may "
                "still accept the image.",
            ))
            return findings

        if not result.headers_parsed:
            return findings

        if result.failure is not None:
            findings.append(Finding(
                title="Import table rejected",
                description=(
                    "The import directory is malformed or adversarial and was "
                    f"rejected as a whole: {result.failure.message}"
                ),
                severity=Severity.HIGH,
                evidence=result.failure.model_dump(mode="json"),
                recommendation=(
                    "Treat the import picture of this sample as unknown and "
                    "fall back to dynamic analysis."
                ),
            ))
            return findings

        if not result.imports:
            findings.append(Finding(
                title="No imports",
                description=(
                    "The image imports nothing. Packed and shellcode-style "
                    "samples resolve their APIs at run time."
                ),
                severity=Severity.MEDIUM,
                evidence={
                    "import_directory_rva": result.info.import_directory_rva,
                    "import_directory_size": result.info.import_directory_size,
                },
                recommendation="Check for a packer stub or manual API resolution.",
            ))
            return findings

        names = {
            fn.name
            for imp in result.imports
            for fn in imp.functions
            if fn.name is not None
        }
        ordinal_only = all(fn.by_ordinal for imp in result.imports for fn in imp.functions)
        if names and names <= _LOADER_APIS and names & _RESOLVER_APIS:
            findings.append(Finding(
                title="Loader-only import set",
                description=(
                    "Every named import is a loader or memory API, the "
                    "import profile of packers that rebuild their real "
                    "import table at run time."
                ),
                severity=Severity.MEDIUM,
                evidence={"functions": sorted(names)},
                recommendation="Unpack the sample and re-run import analysis.",
                references=[
                    "Sikorski, M., & Honig, A. (2012). Practical Malware "
                    "Analysis, ch. 18 \"Packers and Unpacking\".",
                ],
            ))

        ordinal_modules = [
            imp.module_name for imp in result.imports if imp.ordinal_count
        ]
        if ordinal_modules:
            total = sum(imp.ordinal_count for imp in result.imports)
            findings.append(Finding(
                title="Imports by ordinal",
                description=(
                    f"{total} function(s) are imported by ordinal only"
                    + (", and no function is imported by name" if ordinal_only else "")
                    + ". Ordinal imports hide which APIs are used."
                ),
                severity=Severity.LOW,
                evidence={"modules": ordinal_modules},
            ))

        bound_modules = [imp.module_name for imp in result.imports if imp.is_bound]
        if bound_modules:
            findings.append(Finding(
                title="Bound imports",
                description=(
                    "The import address table already holds resolved "
                    "addresses for some modules."
                ),
                severity=Severity.INFO,
                evidence={"modules": bound_modules},
            ))

        return findings
