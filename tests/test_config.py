"""Tests for TOML configuration loading."""

import pathlib

import pytest

from shared.config import (
    ImpScopeConfig,
    OrchestratorConfig,
    ParserConfig,
    get_config,
)
from impscope.parsers.thunks import ImportLimits


class TestDefaults:
    """Built-in defaults."""

    def test_parser_defaults_match_limits(self):
        assert ParserConfig().to_limits() == ImportLimits()

    def test_orchestrator_defaults(self):
        cfg = OrchestratorConfig()
        assert cfg.storage.deployment_kind == "local"
        assert cfg.consumer.topic == "topic-orchestrator"
        assert cfg.download_timeout > 0

    def test_to_dict(self):
        data = ImpScopeConfig().to_dict()
        assert data["parser"]["max_repeated_addresses"] == 16
        assert data["orchestrator"]["storage"]["bucket"] == "samples"


class TestLoad:
    """Tests for ImpScopeConfig.load."""

    def test_load_sections(self, tmp_path: pathlib.Path):
        path = tmp_path / "impscope.toml"
        path.write_text(
            "[global]\n"
            'log_level = "DEBUG"\n'
            "json_logs = true\n"
            "\n"
            "[parser]\n"
            "max_invalid_names = 10\n"
            "max_address_spread = 4096\n"
            "\n"
            "[orchestrator]\n"
            'shared_volume = "/samples"\n'
            "download_timeout = 5.5\n"
            "\n"
            "[orchestrator.storage]\n"
            'bucket = "incoming"\n'
            'root_dir = "/srv/objects"\n'
            "\n"
            "[orchestrator.consumer]\n"
            'lookupds = ["nsqlookupd:4161"]\n'
            "concurrency = 4\n"
        )
        cfg = ImpScopeConfig.load(path)

        assert cfg.global_settings.log_level == "DEBUG"
        assert cfg.global_settings.json_logs is True
        limits = cfg.parser.to_limits()
        assert limits.max_invalid_names == 10
        assert limits.max_address_spread == 4096
        assert limits.max_repeated_addresses == 16
        assert cfg.orchestrator.shared_volume == "/samples"
        assert cfg.orchestrator.download_timeout == 5.5
        assert cfg.orchestrator.storage.bucket == "incoming"
        assert cfg.orchestrator.storage.deployment_kind == "local"
        assert cfg.orchestrator.consumer.lookupds == ["nsqlookupd:4161"]
        assert cfg.orchestrator.consumer.concurrency == 4
        assert cfg.orchestrator.producer.topic == "topic-filescan"

    def test_unknown_keys_ignored(self, tmp_path: pathlib.Path):
        path = tmp_path / "impscope.toml"
        path.write_text(
            "[parser]\nmax_repeated_addresses = 8\nfuture_option = 1\n"
            "[unknown]\nkey = 1\n"
        )
        cfg = ImpScopeConfig.load(path)
        assert cfg.parser.max_repeated_addresses == 8

    def test_explicit_missing_path(self, tmp_path: pathlib.Path):
        with pytest.raises(FileNotFoundError):
            ImpScopeConfig.load(tmp_path / "absent.toml")

    def test_invalid_toml(self, tmp_path: pathlib.Path):
        path = tmp_path / "broken.toml"
        path.write_text("[parser\n")
        with pytest.raises(ValueError):
            ImpScopeConfig.load(path)

    def test_get_config_reloads_explicit_path(self, tmp_path: pathlib.Path):
        path = tmp_path / "impscope.toml"
        path.write_text("[global]\nlog_level = \"WARNING\"\n")
        assert get_config(path).global_settings.log_level == "WARNING"
        assert get_config().global_settings.log_level == "WARNING"
