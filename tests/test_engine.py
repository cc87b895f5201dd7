"""Tests for the import scan engine and its findings."""

import asyncio
import pathlib

from shared.config import ImpScopeConfig
from shared.models import Severity

from impscope.core.engine import ImportScanEngine
from impscope.core.errors import ParseErrorKind
from impscope.core.models import BinaryFormat, ImportAnalysisResult
from image_builder import ModuleSpec, build_pe, sample_modules


def titles(engine, result):
    return [f.title for f in engine.findings_for(result)]


class TestAnalyzeData:
    """Tests for ImportScanEngine.analyze_data."""

    def test_pe_sample(self, engine):
        data = build_pe(sample_modules())
        result = engine.analyze_data(data)

        assert result.headers_parsed
        assert result.failure is None
        assert result.info.format is BinaryFormat.PE
        assert result.info.path == "<memory>"
        assert result.info.size == len(data)
        assert len(result.info.sha256) == 64
        assert len(result.info.md5) == 32
        assert [imp.module_name for imp in result.imports] == [
            "KERNEL32.dll", "USER32.dll",
        ]
        assert result.function_count == 8

    def test_rejected_table_keeps_no_imports(self, engine):
        data = build_pe([ModuleSpec("a.dll", ["Fine", 0])])
        result = engine.analyze_data(data)

        assert result.headers_parsed
        assert result.imports == []
        assert result.failure is not None
        assert result.failure.kind is ParseErrorKind.MISSING_NAME_OR_ORDINAL
        assert result.failure.rva is not None

    def test_malformed_headers(self, engine):
        result = engine.analyze_data(build_pe(sample_modules(), optional_magic=0x107))
        assert result.info.format is BinaryFormat.PE
        assert not result.headers_parsed
        assert engine.findings_for(result)[0].severity is Severity.HIGH

    def test_non_pe_sample(self, engine):
        result = engine.analyze_data(b"\x7fELF" + b"\x00" * 60)
        assert result.info.format is BinaryFormat.ELF
        assert not result.headers_parsed
        assert engine.findings_for(result) == []

    def test_configured_limits_apply(self, quiet_logger):
        config = ImpScopeConfig()
        config.parser.max_invalid_names = 1
        engine = ImportScanEngine(config=config, logger=quiet_logger)
        data = build_pe([ModuleSpec("a.dll", ["bad name", "bad name 2"])])
        result = engine.analyze_data(data)
        assert result.failure is not None
        assert result.failure.kind is ParseErrorKind.TOO_MANY_INVALID_NAMES


class TestFindings:
    """Finding generation."""

    def test_ordinal_imports(self, engine):
        result = engine.analyze_data(build_pe(sample_modules()))
        findings = engine.findings_for(result)
        assert [f.title for f in findings] == ["Imports by ordinal"]
        assert findings[0].severity is Severity.LOW
        assert "KERNEL32.dll" in findings[0].evidence

    def test_import_table_rejected(self, engine):
        result = engine.analyze_data(build_pe([ModuleSpec("a.dll", ["Fine", 0])]))
        findings = engine.findings_for(result)
        assert [f.title for f in findings] == ["Import table rejected"]
        assert findings[0].severity is Severity.HIGH
        assert "missing_name_or_ordinal" in findings[0].evidence

    def test_no_imports(self, engine):
        result = engine.analyze_data(build_pe(None))
        findings = engine.findings_for(result)
        assert [f.title for f in findings] == ["No imports"]
        assert findings[0].severity is Severity.MEDIUM

    def test_loader_only_imports(self, engine):
        modules = [ModuleSpec(
            "KERNEL32.dll", ["LoadLibraryA", "GetProcAddress", "VirtualAlloc"],
        )]
        result = engine.analyze_data(build_pe(modules))
        findings = engine.findings_for(result)
        assert [f.title for f in findings] == ["Loader-only import set"]
        assert findings[0].severity is Severity.MEDIUM

    def test_memory_apis_alone_are_not_loader_only(self, engine):
        modules = [ModuleSpec("KERNEL32.dll", ["VirtualAlloc", "ExitProcess"])]
        result = engine.analyze_data(build_pe(modules))
        assert titles(engine, result) == []

    def test_bound_imports(self, engine):
        modules = [ModuleSpec(
            "KERNEL32.dll", ["CreateFileA", "CloseHandle"],
            bound={0: 0x7C801A28, 1: 0x7C809BD7},
        )]
        result = engine.analyze_data(build_pe(modules))
        findings = engine.findings_for(result)
        assert [f.title for f in findings] == ["Bound imports"]
        assert findings[0].severity is Severity.INFO


class TestAnalyze:
    """Tests for the async file entry point."""

    def test_analyze_file(self, engine, sample_pe_path: pathlib.Path):
        scan = asyncio.run(engine.analyze(str(sample_pe_path)))

        assert scan.tool_name == "impscope"
        assert scan.end_time is not None
        assert scan.duration_seconds is not None
        assert "Modules: 2" in scan.summary
        assert [f.title for f in scan.findings] == ["Imports by ordinal"]

        result = ImportAnalysisResult.model_validate(scan.metadata["import_analysis"])
        assert result.info.path == str(sample_pe_path.resolve())
        assert [imp.module_name for imp in result.imports] == [
            "KERNEL32.dll", "USER32.dll",
        ]
        assert result.imports[0].functions[2].ordinal == 42

    def test_analyze_sync(self, engine, sample_pe_path: pathlib.Path):
        scan = engine.analyze_sync(str(sample_pe_path))
        assert "import_analysis" in scan.metadata

    def test_missing_file(self, engine, tmp_path: pathlib.Path):
        scan = asyncio.run(engine.analyze(str(tmp_path / "absent.exe")))
        assert scan.summary.startswith("File not found")
        assert scan.metadata == {}
        assert scan.findings == []

    def test_file_too_large(self, quiet_logger, sample_pe_path: pathlib.Path):
        config = ImpScopeConfig()
        config.parser.max_file_size = 16
        engine = ImportScanEngine(config=config, logger=quiet_logger)
        scan = asyncio.run(engine.analyze(str(sample_pe_path)))
        assert scan.summary.startswith("File too large")
        assert scan.metadata == {}

    def test_rejected_summary(self, engine, tmp_path: pathlib.Path):
        path = tmp_path / "rejected.exe"
        path.write_bytes(build_pe([ModuleSpec("a.dll", ["Fine", 0])]))
        scan = asyncio.run(engine.analyze(str(path)))
        assert "Imports rejected (missing_name_or_ordinal)" in scan.summary
        assert scan.high_count == 1
