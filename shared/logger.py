"""
ImpScope Structured Logger
===========================

:class:`ScopeLogger` is a small facade over :mod:`logging` bound to one
ImpScope component.  Records go to a Rich handler on stderr and, when a
log file is configured, to a rotating file as plain text or JSON lines.

While a sample is being processed the logger carries a ``sample`` and an
``operation`` field, so a single JSON log can be filtered down to one
sample's parse.  Parser classes take the logger as an optional argument
and use it for the anomalies they tolerate: overlapping tables, a table
cut at its length bound, a module dropped for an invalid name.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

if TYPE_CHECKING:
    from shared.config import GlobalConfig

LOGGER_NAMESPACE = "impscope"

# Record attributes copied into every JSON line when set
_CONTEXT_FIELDS = ("component", "operation", "sample")

_RESERVED_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_LOG_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
    }
)


class JSONLineFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp``, ``level``, ``logger``, ``message``, then whichever
    of ``component``/``operation``/``sample`` are bound, ``extra`` for
    keyword fields passed to the log call, and ``exc_info`` when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        fields = getattr(record, "fields", None)
        if fields:
            entry["extra"] = fields
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _console_handler(level: int) -> logging.Handler:
    return RichHandler(
        level=level,
        console=Console(theme=_LOG_THEME, stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )


def _file_handler(
    path: Path, level: int, json_logs: bool, max_bytes: int, backup_count: int
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    if json_logs:
        handler.setFormatter(JSONLineFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
        )
    return handler


@dataclass
class Stopwatch:
    """Elapsed wall time of a :meth:`ScopeLogger.timed` block."""

    started: float

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started


class ScopeLogger:
    """Logger bound to one component, with per-sample context.

    Usage::

        log = ScopeLogger("engine", log_file="impscope.log", json_logs=True)
        with log.sample(sha256), log.operation("import_directory"):
            log.warning("Skipping module with invalid name")

    Keyword arguments other than ``exc_info``/``stack_info``/``stacklevel``
    given to a log call are kept as structured fields (``extra`` in JSON).

    Args:
        component:      Appended to ``impscope.`` to name the stdlib logger.
        log_level:      Minimum level name.
        log_file:       Rotating log file; ``None`` disables file output.
        json_logs:      Write JSON lines instead of text to the file.
        max_bytes:      Rotation size of the log file.
        backup_count:   Rotated files to keep.
        console_output: Attach the Rich stderr handler.
    """

    def __init__(
        self,
        component: str,
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
        console_output: bool = True,
    ) -> None:
        self._component = component
        self._context: dict[str, str | None] = {"operation": None, "sample": None}

        level = getattr(logging, log_level.upper(), logging.INFO)
        self._logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{component}")
        self._logger.setLevel(level)
        self._logger.propagate = False
        # Loggers are process-wide; a second ScopeLogger replaces the handlers
        self._logger.handlers.clear()

        if console_output:
            self._logger.addHandler(_console_handler(level))
        if log_file is not None:
            self._logger.addHandler(
                _file_handler(Path(log_file), level, json_logs, max_bytes, backup_count)
            )

    @classmethod
    def from_config(
        cls,
        component: str,
        config: GlobalConfig,
        *,
        verbose: bool = False,
        console_output: bool = True,
    ) -> ScopeLogger:
        """Build a logger from the ``[global]`` configuration section."""
        return cls(
            component,
            log_level="DEBUG" if verbose else config.log_level,
            log_file=config.log_file or None,
            json_logs=config.json_logs,
            console_output=console_output,
        )

    @property
    def component(self) -> str:
        return self._component

    @property
    def underlying(self) -> logging.Logger:
        return self._logger

    # ------------------------------------------------------------------ #
    #  Context
    # ------------------------------------------------------------------ #

    @contextmanager
    def _bind(self, key: str, value: str) -> Iterator[ScopeLogger]:
        previous = self._context[key]
        self._context[key] = value
        try:
            yield self
        finally:
            self._context[key] = previous

    def operation(self, name: str):
        """Tag records logged inside the block with ``operation=name``."""
        return self._bind("operation", name)

    def sample(self, identifier: str):
        """Tag records logged inside the block with the sample path or hash."""
        return self._bind("sample", identifier)

    @contextmanager
    def timed(self, label: str) -> Iterator[Stopwatch]:
        """Log ``Started``/``Completed`` at DEBUG around the block."""
        watch = Stopwatch(time.perf_counter())
        self.debug("Started: %s", label)
        try:
            yield watch
        finally:
            self.debug("Completed: %s (%.3f sec)", label, watch.elapsed)

    # ------------------------------------------------------------------ #
    #  Emit
    # ------------------------------------------------------------------ #

    def _log(self, level: int, msg: str, args: tuple, kwargs: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in list(kwargs) if k in _RESERVED_KWARGS}
        extra = {"component": self._component, **self._context}
        if kwargs:
            extra["fields"] = kwargs
        self._logger.log(level, msg, *args, extra=extra, **passthrough)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)
