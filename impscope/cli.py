"""
ImpScope CLI -- PE Import Table Analysis
=========================================

Click-based command-line interface for the ImpScope import analyser.
PATH may be a single file or a directory; directories are walked
recursively and every regular file in them is analysed.

Usage::

    # Analyse one sample
    impscope sample.exe

    # Analyse every file below a directory
    impscope ./bin

    # JSON to stdout
    impscope sample.exe --json

    # Write a JSON report
    impscope sample.exe --output report.json

    # Debug logging and an explicit configuration file
    impscope sample.exe --verbose --config impscope.toml

References:
    - Click documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click

from shared.config import ImpScopeConfig
from shared.console import ScopeConsole
from shared.logger import ScopeLogger
from shared.models import ScanResult

from impscope import __version__
from impscope.core.engine import ImportScanEngine
from impscope.core.models import ImportAnalysisResult
from impscope.output.console import ImportConsoleOutput
from impscope.output.report import ImportReportGenerator


def collect_targets(path: Path) -> list[Path]:
    """Files to analyse for *path*, sorted for stable output."""
    if path.is_dir():
        return sorted(p for p in path.rglob("*") if p.is_file())
    return [path]


def _analysis_of(scan: ScanResult) -> Optional[ImportAnalysisResult]:
    raw = scan.metadata.get("import_analysis")
    if not raw:
        return None
    return ImportAnalysisResult.model_validate(raw)


# ---------------------------------------------------------------------------
# CLI command
# ---------------------------------------------------------------------------

@click.command("impscope")
@click.version_option(__version__, prog_name="impscope")
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write a JSON report to this path.",
)
@click.option(
    "--json", "json_output",
    is_flag=True,
    default=False,
    help="Output results as JSON to stdout.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable verbose/debug output.",
)
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="TOML configuration file.  Default: ./impscope.toml if present.",
)
def impscope_cli(
    path: Path,
    output_path: str | None,
    json_output: bool,
    verbose: bool,
    config_path: str | None,
) -> None:
    """ImpScope -- PE Import Table Analysis.

    Parse the import directory of PE executables, list imported modules
    and functions, and flag import tables built to abuse parsers.

    PATH is a file or a directory to analyse.

    Examples:

    \b
        impscope sample.exe
        impscope ./bin --output imports.json
    """
    console = ScopeConsole(quiet=json_output)

    try:
        config = ImpScopeConfig.load(config_path)
    except (OSError, ValueError) as exc:
        console.error(f"Could not load configuration: {exc}")
        sys.exit(2)

    logger = ScopeLogger.from_config(
        "cli",
        config.global_settings,
        verbose=verbose,
        console_output=not json_output,
    )
    engine = ImportScanEngine(config=config, logger=logger)
    targets = collect_targets(path)
    logger.info("Processing %d file(s) under %s", len(targets), path)

    items: list[tuple[ImportAnalysisResult, ScanResult]] = []
    display = ImportConsoleOutput(console=console)

    for target in targets:
        try:
            scan = asyncio.run(engine.analyze(str(target)))
        except KeyboardInterrupt:
            console.warning("Analysis interrupted by user.")
            sys.exit(130)

        analysis = _analysis_of(scan)
        if analysis is None:
            console.error(scan.summary or f"Could not analyse {target}")
            continue
        items.append((analysis, scan))

        if json_output:
            continue

        display.display(analysis)
        if scan.findings:
            console.section("Findings")
            console.findings_table(scan.findings)
        console.blank()
        console.info(f"Scan Duration: {scan.duration_seconds or 0.0:.2f}s")
        console.info(f"Findings: {scan.finding_count}")

    report_gen = ImportReportGenerator()

    if json_output:
        reports = [report_gen.build(result, scan) for result, scan in items]
        payload = reports[0] if path.is_file() and reports else reports
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))

    if output_path:
        if path.is_file() and items:
            result, scan = items[0]
            report_path = report_gen.generate_json(result, output_path, scan=scan)
        else:
            report_path = report_gen.generate_batch_json(items, output_path)
        console.success(f"JSON report saved: {report_path}")

    if not items:
        sys.exit(1)


# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Entry point for ``python -m impscope`` and the ``impscope`` script."""
    impscope_cli()


if __name__ == "__main__":
    main()
