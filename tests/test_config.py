"""
Tests for configuration loading, resolution and typed settings.
"""

import pytest

from bimsync.config.loader import Config, _merge_dict, load_config
from bimsync.config.resolver import resolve_config
from bimsync.config.settings import (
    DEFAULT_BASE_URLS,
    WASM_MAGIC,
    RuntimeSettings,
    Settings,
    TranslationSettings,
    load_settings,
)
from bimsync.config.singleton import GlobalConfig, config, get_config
from bimsync.core.initialization import initialize
from bimsync.exceptions import ConfigurationError
from bimsync.sources.types import SourceKind


class TestConfig:
    """Tests for Config class."""

    def test_dot_notation(self):
        cfg = Config({"translation": {"max_attempts": 10}})
        assert cfg.get("translation.max_attempts") == 10

    def test_dot_notation_missing_returns_default(self):
        cfg = Config({"a": 1})
        assert cfg.get("a.b.c", "fallback") == "fallback"

    def test_contains(self):
        cfg = Config({"runtime": {"url": "x"}})
        assert "runtime" in cfg
        assert "runtime.url" in cfg
        assert "runtime.magic" not in cfg

    def test_getitem_nested_returns_config(self):
        cfg = Config({"sources": {"acc": {"base_url": "https://a"}}})
        nested = cfg["sources"]
        assert isinstance(nested, Config)
        assert nested["acc.base_url"] == "https://a"

    def test_getitem_missing_raises(self):
        with pytest.raises(KeyError):
            _ = Config({})["missing"]

    def test_iter_keys_items(self):
        cfg = Config({"a": 1, "b": 2})
        assert list(cfg) == ["a", "b"]
        assert set(cfg.keys()) == {"a", "b"}
        assert set(cfg.items()) == {("a", 1), ("b", 2)}

    def test_validate_valid(self):
        Config({"sources": {"acc": {}, "collab": {}}, "translation": {}}).validate()

    def test_validate_section_must_be_dict(self):
        with pytest.raises(ValueError, match="'translation' must be a dictionary"):
            Config({"translation": "fast"}).validate()

    def test_validate_unknown_source_kind(self):
        with pytest.raises(ValueError, match="Unknown source kind"):
            Config({"sources": {"dropbox": {}}}).validate()


class TestLoadConfig:
    """Tests for load_config function."""

    def test_missing_config_is_empty(self, tmp_path):
        assert load_config(tmp_path).data == {}

    def test_load_basic_config(self, tmp_path):
        (tmp_path / "config.yaml").write_text("translation:\n  max_attempts: 5\n")
        cfg = load_config(tmp_path)
        assert cfg.get("translation.max_attempts") == 5

    def test_env_overlay(self, tmp_path):
        (tmp_path / "config.yaml").write_text("translation:\n  max_attempts: 5\n  max_backoff_ms: 30000\n")
        (tmp_path / "config.prod.yaml").write_text("translation:\n  max_attempts: 120\n")
        cfg = load_config(tmp_path, env="prod")
        assert cfg.get("translation.max_attempts") == 120
        assert cfg.get("translation.max_backoff_ms") == 30000

    def test_invalid_yaml_raises(self, tmp_path):
        (tmp_path / "config.yaml").write_text("translation: [unclosed\n")
        with pytest.raises(ValueError, match="Error parsing config.yaml"):
            load_config(tmp_path)

    def test_non_mapping_raises(self, tmp_path):
        (tmp_path / "config.yaml").write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must be a dictionary"):
            load_config(tmp_path)

    def test_env_var_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BIMSYNC_RUNTIME_URL", "https://cdn.example.com/web-ifc.wasm")
        (tmp_path / "config.yaml").write_text("runtime:\n  url: ${BIMSYNC_RUNTIME_URL}\n")
        assert load_config(tmp_path).get("runtime.url") == "https://cdn.example.com/web-ifc.wasm"


class TestResolver:
    """Tests for placeholder resolution."""

    def test_unset_variable_left_verbatim(self, monkeypatch):
        monkeypatch.delenv("BIMSYNC_UNSET_VAR", raising=False)
        assert resolve_config({"a": "${BIMSYNC_UNSET_VAR}"}) == {"a": "${BIMSYNC_UNSET_VAR}"}

    def test_set_variable_substituted(self, monkeypatch):
        monkeypatch.setenv("BIMSYNC_TEST_URL", "https://aps.example.com")
        assert resolve_config({"base_url": "${BIMSYNC_TEST_URL}/v2"}) == {"base_url": "https://aps.example.com/v2"}

    def test_fallback_when_unset_or_empty(self, monkeypatch):
        monkeypatch.delenv("BIMSYNC_UNSET_VAR", raising=False)
        monkeypatch.setenv("BIMSYNC_EMPTY_VAR", "")
        resolved = resolve_config({"a": "${BIMSYNC_UNSET_VAR:-acc}", "b": "${BIMSYNC_EMPTY_VAR:-10}"})
        assert resolved == {"a": "acc", "b": "10"}

    def test_env_placeholder_in_lists(self):
        resolved = resolve_config({"paths": ["logs/{env}.log", 3]}, env="staging")
        assert resolved == {"paths": ["logs/staging.log", 3]}


class TestMergeDict:
    """Tests for overlay merging."""

    def test_nested_merge(self):
        base = {"sources": {"acc": {"base_url": "a", "timeout_s": 5}}}
        _merge_dict(base, {"sources": {"acc": {"base_url": "b"}}})
        assert base == {"sources": {"acc": {"base_url": "b", "timeout_s": 5}}}

    def test_replace_scalar(self):
        base = {"a": 1}
        _merge_dict(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 2}}


class TestSettings:
    """Tests for typed settings."""

    def test_defaults(self):
        settings = load_settings()
        assert settings.translation == TranslationSettings()
        assert settings.translation.initial_backoff_ms == 2000
        assert settings.translation.max_backoff_ms == 30000
        assert settings.translation.max_attempts == 60
        assert settings.runtime.magic == WASM_MAGIC
        assert settings.source(SourceKind.ACC).base_url == DEFAULT_BASE_URLS[SourceKind.ACC]
        assert settings.source("collab").base_url == DEFAULT_BASE_URLS[SourceKind.COLLAB]

    def test_overrides_from_config(self):
        cfg = Config(
            {
                "sources": {"collab": {"base_url": "https://speckle.internal.example", "timeout_s": 5}},
                "translation": {"max_attempts": 3, "unknown_key": True},
                "subscriptions": {"use_websocket": False},
            }
        )
        settings = load_settings(cfg)
        assert settings.source("collab").base_url == "https://speckle.internal.example"
        assert settings.source("collab").timeout_s == 5
        assert settings.source("acc").base_url == DEFAULT_BASE_URLS[SourceKind.ACC]
        assert settings.translation.max_attempts == 3
        assert settings.subscriptions.use_websocket is False

    def test_raw_dict_accepted(self):
        settings = load_settings({"runtime": {"url": "http://localhost:8080/web-ifc.wasm", "magic": "\x00asm"}})
        assert settings.runtime.url == "http://localhost:8080/web-ifc.wasm"
        assert settings.runtime.magic == b"\x00asm"

    @pytest.mark.parametrize(
        "data",
        [
            {"translation": {"max_backoff_ms": 10, "initial_backoff_ms": 100}},
            {"translation": {"max_attempts": 0}},
            {"translation": {"jitter": 1.5}},
            {"runtime": {"max_attempts": 0}},
            {"sources": {"acc": {"base_url": "ftp://example.com"}}},
            {"subscriptions": {"poll_interval_s": 0}},
        ],
    )
    def test_invalid_values_raise(self, data):
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_settings(data)

    def test_runtime_settings_validation(self):
        with pytest.raises(ValueError, match="retry_delay_s"):
            RuntimeSettings(retry_delay_s=-1)

    def test_settings_default_factory(self):
        assert Settings().source(SourceKind.ACC).timeout_s == 30.0


class TestGlobalConfig:
    """Tests for the global config singleton."""

    def test_unset(self):
        assert get_config() is None
        assert config.get("translation.max_attempts", 7) == 7
        assert "translation" not in config
        with pytest.raises(RuntimeError, match="Config not initialized"):
            _ = config["translation"]

    def test_set_and_reset(self):
        GlobalConfig.set_config(Config({"translation": {"max_attempts": 9}}))
        assert config.get("translation.max_attempts") == 9
        assert "translation.max_attempts" in config
        GlobalConfig.reset_config()
        assert get_config() is None


class TestInitialize:
    """Tests for project initialization."""

    def test_initialize_without_config_file(self, tmp_path):
        cfg, settings = initialize(tmp_path, env="dev")
        assert cfg.data["_env"] == "dev"
        assert cfg.data["_project_dir"] == str(tmp_path)
        assert get_config() is cfg
        assert settings.translation.max_attempts == 60

    def test_env_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BIMSYNC_ENV", "staging")
        (tmp_path / "config.staging.yaml").write_text("translation:\n  max_attempts: 4\n")
        cfg, settings = initialize(tmp_path)
        assert cfg.data["_env"] == "staging"
        assert settings.translation.max_attempts == 4

    def test_invalid_config_raises_configuration_error(self, tmp_path):
        (tmp_path / "config.yaml").write_text("sources:\n  dropbox: {}\n")
        with pytest.raises(ConfigurationError, match="Unknown source kind"):
            initialize(tmp_path, env="dev")

    def test_verbose_forces_debug(self, tmp_path):
        import logging

        initialize(tmp_path, env="dev", verbose=True)
        assert logging.getLogger("bimsync").level == logging.DEBUG
