"""
ImpScope Console Interface
===========================

Thin wrapper around :class:`rich.console.Console` used by the CLI and the
import renderers.  It owns the colour theme, so every table and message
printed by ImpScope looks the same whether it comes from the CLI loop or
from :mod:`impscope.output.console`.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import Any, Sequence

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

_SCOPE_THEME = Theme(
    {
        "scope.section": "bold bright_magenta",
        "scope.ok": "bold green",
        "scope.warn": "bold yellow",
        "scope.fail": "bold red",
        "scope.note": "bold bright_blue",
        "sev.critical": "bold white on red",
        "sev.high": "bold red",
        "sev.medium": "bold yellow",
        "sev.low": "bold bright_cyan",
        "sev.info": "bold bright_blue",
    }
)

# (style, label) per message kind
_MESSAGE_PREFIX: dict[str, tuple[str, str]] = {
    "success": ("scope.ok", "OK"),
    "warning": ("scope.warn", "WARN"),
    "error": ("scope.fail", "ERROR"),
    "info": ("scope.note", "INFO"),
}


def severity_markup(severity: Any) -> str:
    """Rich markup for a :class:`shared.models.Severity` (or its name)."""
    name = getattr(severity, "value", None) or str(severity).upper()
    style = f"sev.{name.lower()}"
    if style not in _SCOPE_THEME.styles:
        return name
    return f"[{style}]{name}[/{style}]"


class ScopeConsole:
    """Themed console shared by all ImpScope output.

    Args:
        quiet:  Print nothing; used for ``--json`` runs and tests.
        record: Keep a transcript readable through :meth:`export_text`.
        width:  Fixed width, autodetected when ``None``.
    """

    def __init__(
        self,
        *,
        quiet: bool = False,
        record: bool = False,
        width: int | None = None,
    ) -> None:
        self._console = Console(
            theme=_SCOPE_THEME,
            quiet=quiet,
            record=record,
            highlight=False,
            width=width,
        )

    @property
    def rich(self) -> Console:
        return self._console

    def section(self, title: str) -> None:
        self._console.rule(f"  {title}  ", style="scope.section", characters="─")
        self._console.print()

    def _message(self, kind: str, message: str) -> None:
        style, label = _MESSAGE_PREFIX[kind]
        self._console.print(f"[{style}]{label}:[/{style}] {message}")

    def success(self, message: str) -> None:
        self._message("success", message)

    def warning(self, message: str) -> None:
        self._message("warning", message)

    def error(self, message: str) -> None:
        self._message("error", message)

    def info(self, message: str) -> None:
        self._message("info", message)

    @staticmethod
    def new_table(
        title: str,
        columns: Sequence[tuple[str, dict[str, Any]]],
        *,
        caption: str | None = None,
        show_lines: bool = False,
    ) -> Table:
        """Empty table in the ImpScope style.

        *columns* holds ``(header, add_column kwargs)`` pairs.
        """
        tbl = Table(
            title=title,
            caption=caption,
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            show_lines=show_lines,
            padding=(0, 1),
        )
        for header, options in columns:
            tbl.add_column(header, **options)
        return tbl

    def findings_table(self, findings: Sequence[Any]) -> None:
        """Numbered table of findings, severity coloured."""
        tbl = self.new_table(
            "Findings",
            [
                ("#", {"style": "dim", "width": 4, "justify": "right"}),
                ("Severity", {"width": 10}),
                ("Title", {}),
                ("Description", {"ratio": 2}),
            ],
            show_lines=True,
        )
        for idx, finding in enumerate(findings, start=1):
            tbl.add_row(
                str(idx),
                severity_markup(finding.severity),
                finding.title,
                finding.description,
            )
        self._console.print(tbl)

    def blank(self, count: int = 1) -> None:
        for _ in range(count):
            self._console.print()

    def export_text(self) -> str:
        """Recorded output as plain text; needs ``record=True``."""
        return self._console.export_text()
