import pathlib

import pytest

from shared.config import ImpScopeConfig
from shared.logger import ScopeLogger

from impscope.core.engine import ImportScanEngine
from image_builder import build_pe, sample_modules


class RecordingLogger:
    """Stand-in logger that keeps every message for assertions."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str]] = []

    def _log(self, level: str, msg: str, *args: object) -> None:
        self.records.append((level, msg % args if args else msg))

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log("debug", msg, *args)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log("info", msg, *args)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log("warning", msg, *args)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log("error", msg, *args)

    def messages(self, level: str) -> list[str]:
        return [text for lvl, text in self.records if lvl == level]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def quiet_logger() -> ScopeLogger:
    """ScopeLogger without console or file handlers."""
    return ScopeLogger("tests", log_level="DEBUG", console_output=False)


@pytest.fixture
def engine(quiet_logger: ScopeLogger) -> ImportScanEngine:
    return ImportScanEngine(config=ImpScopeConfig(), logger=quiet_logger)


@pytest.fixture
def sample_pe_path(tmp_path: pathlib.Path) -> pathlib.Path:
    """A PE32 executable importing from KERNEL32.dll and USER32.dll."""
    path = tmp_path / "sample.exe"
    path.write_bytes(build_pe(sample_modules()))
    return path
