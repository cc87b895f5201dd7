"""
ImpScope Console Output
========================

Rich terminal display for import analysis results: a sample header panel,
one table per imported module, and a panel explaining a rejected import
directory.

Module and function names come straight from the sample, so every name is
markup-escaped before it reaches Rich.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from rich.markup import escape
from rich.panel import Panel

from shared.console import ScopeConsole

from impscope.core.models import (
    BinaryInfo,
    Import,
    ImportAnalysisResult,
    ImportFailure,
)

_FUNCTION_COLUMNS = [
    ("#", {"style": "dim", "width": 4, "justify": "right"}),
    ("Function", {"min_width": 24}),
    ("Hint", {"justify": "right"}),
    ("Name RVA", {"justify": "right"}),
    ("IAT Address", {"justify": "right"}),
    ("Bound To", {"justify": "right"}),
]


class ImportConsoleOutput:
    """Rich terminal display for :class:`ImportAnalysisResult`.

    Usage::

        output = ImportConsoleOutput()
        output.display(analysis_result)
    """

    def __init__(self, console: ScopeConsole | None = None) -> None:
        self._console: ScopeConsole = console or ScopeConsole()

    def display(self, result: ImportAnalysisResult) -> None:
        """Display the complete analysis result."""
        self._console.section("ImpScope -- Import Analysis")
        self.display_header(result.info)

        if not result.headers_parsed:
            self._console.warning("No PE headers parsed; nothing to show.")
            return

        if result.failure is not None:
            self.display_failure(result.failure)
            return

        if not result.imports:
            self._console.warning("The import directory is empty.")
            return

        self.display_imports(result.imports)

    def display_header(self, info: BinaryInfo) -> None:
        lines: list[str] = [
            f"[bold]File:[/bold]         {escape(info.path)}",
            f"[bold]Size:[/bold]         {info.size:,} bytes",
            f"[bold]Format:[/bold]       {info.format.value.upper()}",
        ]
        if info.bits:
            lines += [
                f"[bold]Arch:[/bold]         {escape(info.arch)} ({info.bits}-bit)",
                f"[bold]Image Base:[/bold]   0x{info.image_base:x}",
                f"[bold]Entry Point:[/bold]  0x{info.entry_point:x}",
                f"[bold]Import Dir:[/bold]   RVA 0x{info.import_directory_rva:x}, "
                f"{info.import_directory_size} bytes",
            ]
        if info.md5:
            lines.append(f"[bold]MD5:[/bold]          {info.md5}")
        if info.sha256:
            lines.append(f"[bold]SHA-256:[/bold]      {info.sha256}")

        self._console.rich.print(Panel(
            "\n".join(lines),
            title="[bold bright_cyan]Sample[/bold bright_cyan]",
            border_style="bright_cyan",
            padding=(1, 2),
        ))
        self._console.blank()

    def display_failure(self, failure: ImportFailure) -> None:
        lines = [
            f"[bold]Kind:[/bold]    {failure.kind.value}",
            f"[bold]Reason:[/bold]  {escape(failure.message)}",
        ]
        if failure.rva is not None:
            lines.append(f"[bold]RVA:[/bold]     0x{failure.rva:x}")
        self._console.rich.print(Panel(
            "\n".join(lines),
            title="[bold red]Import Directory Rejected[/bold red]",
            border_style="red",
            padding=(0, 2),
        ))
        self._console.blank()

    def display_imports(self, imports: list[Import]) -> None:
        """One table per module, functions in table order."""
        self._console.section(f"Imports ({len(imports)} modules)")

        for imp in imports:
            tbl = self._console.new_table(
                f"[bold]{escape(imp.module_name)}[/bold]",
                _FUNCTION_COLUMNS,
                caption=f"descriptor at file offset 0x{imp.file_offset:x}",
            )

            for idx, fn in enumerate(imp.functions, 1):
                if fn.by_ordinal:
                    name_cell = f"[yellow]#{fn.ordinal}[/yellow]"
                else:
                    name_cell = escape(fn.display_name)
                tbl.add_row(
                    str(idx),
                    name_cell,
                    "-" if fn.by_ordinal else f"0x{fn.hint:x}",
                    "-" if fn.by_ordinal else f"0x{fn.name_table_offset:x}",
                    f"0x{fn.estimated_loaded_address:x}",
                    f"0x{fn.bound_address:x}" if fn.is_bound else "",
                )

            self._console.rich.print(tbl)
            self._console.blank()
