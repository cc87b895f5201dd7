"""
ImpScope Configuration Management
==================================

Dataclass configuration loaded from TOML.  Three sections are recognised:

    [global]        logging and output settings
    [parser]        input size cap and the import-table abuse ceilings
    [orchestrator]  sample pipeline: shared volume, download timeout,
                    and the producer / consumer / storage subsections

Missing keys fall back to dataclass defaults and unknown keys are ignored,
so older binaries keep reading newer config files.

References:
    - Wiggins, A. (2011). The Twelve-Factor App. https://12factor.net/
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

from impscope.parsers.thunks import (
    MAX_ADDRESS_SPREAD,
    MAX_INVALID_NAMES,
    MAX_REPEATED_ADDRESSES,
    ImportLimits,
)
from impscope.parsers.validation import MAX_IMPORT_NAME_LENGTH


# ---------------------------------------------------------------------------
# Default configuration file path relative to the project root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "impscope.toml"


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Logging verbosity, log destination and report output settings."""

    log_level: str = "INFO"
    log_file: str = ""
    json_logs: bool = False
    output_dir: str = "output"
    version: str = "1.0.0"


# =========================== Parser Settings ===============================


@dataclass(frozen=False, slots=True)
class ParserConfig:
    """Input size cap and ceilings applied to hostile import tables."""

    max_file_size: int = 104_857_600  # 100 MiB
    max_repeated_addresses: int = MAX_REPEATED_ADDRESSES
    max_address_spread: int = MAX_ADDRESS_SPREAD
    max_invalid_names: int = MAX_INVALID_NAMES
    max_name_length: int = MAX_IMPORT_NAME_LENGTH

    def to_limits(self) -> ImportLimits:
        """Return the ceilings as an :class:`ImportLimits` value."""
        return ImportLimits(
            max_repeated_addresses=self.max_repeated_addresses,
            max_address_spread=self.max_address_spread,
            max_invalid_names=self.max_invalid_names,
            max_name_length=self.max_name_length,
        )


# ======================== Orchestrator Settings ============================


@dataclass(frozen=False, slots=True)
class ProducerConfig:
    """Message-bus endpoint events are published to."""

    nsqd: str = "127.0.0.1:4150"
    topic: str = "topic-filescan"


@dataclass(frozen=False, slots=True)
class ConsumerConfig:
    """Subscription the orchestrator reads sample hashes from."""

    lookupds: list[str] = field(default_factory=lambda: ["127.0.0.1:4161"])
    topic: str = "topic-orchestrator"
    channel: str = "orchestrator"
    concurrency: int = 1


@dataclass(frozen=False, slots=True)
class StorageConfig:
    """Object storage holding submitted samples.

    Only the ``local`` deployment kind is served in-tree; the remaining
    kinds are accepted so that shared config files stay loadable.
    """

    deployment_kind: str = "local"
    bucket: str = "samples"
    root_dir: str = "storage"


@dataclass(frozen=False, slots=True)
class OrchestratorConfig:
    """Sample pipeline settings."""

    shared_volume: str = "samples"
    download_timeout: float = 30.0
    producer: ProducerConfig = field(default_factory=ProducerConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class ImpScopeConfig:
    """Master configuration aggregating every section.

    Usage:
        >>> config = ImpScopeConfig.load()                 # from default path
        >>> config = ImpScopeConfig.load("custom.toml")    # from custom path
        >>> config.parser.max_repeated_addresses
        16
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> ImpScopeConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``impscope.toml`` in the
        project root and returns pure defaults when it is absent.

        Args:
            path: Filesystem path to a TOML configuration file.

        Returns:
            A fully-populated :class:`ImpScopeConfig` instance.

        Raises:
            FileNotFoundError: If *path* was given explicitly and does not
                exist.
            tomllib.TOMLDecodeError: If the file is not valid TOML.
        """
        config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            if path is not None:
                raise FileNotFoundError(
                    f"Configuration file not found: {config_path}"
                )
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            parser=cls._build_section(ParserConfig, raw.get("parser", {})),
            orchestrator=cls._build_orchestrator(raw.get("orchestrator", {})),
        )

    # ------------------------------------------------------------------ #
    #  Serialisation helpers
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    @classmethod
    def _build_orchestrator(cls, data: dict[str, Any]) -> OrchestratorConfig:
        nested = {
            "producer": ProducerConfig,
            "consumer": ConsumerConfig,
            "storage": StorageConfig,
        }
        flat = {k: v for k, v in data.items() if k not in nested}
        section: OrchestratorConfig = cls._build_section(OrchestratorConfig, flat)
        for key, section_cls in nested.items():
            sub = data.get(key)
            if isinstance(sub, dict):
                setattr(section, key, cls._build_section(section_cls, sub))
        return section

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares."""
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> ImpScopeConfig:
    """Cached wrapper around :meth:`ImpScopeConfig.load`.

    Passing an explicit *path* always reloads.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = ImpScopeConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
