"""
Unit tests for configuration loading and validation.

Tests strict validation of the orchestrator YAML file and API credentials.
"""

import os
import tempfile

import pytest
import yaml

from ai_request_guard.config.loader import (
    DEFAULT_FALLBACK_TARGETS,
    ApiSettings,
    OrchestratorConfig,
    RetryConfig,
    load_orchestrator_config,
    parse_orchestrator_config,
)

VALID_KEY = "sk-" + "a" * 48


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config({
            "retry": {"max_retries": 4, "base_delay": 0.5, "max_delay": 8, "max_jitter": 0.25},
            "rate_limit": {"per_window": 10, "window": 30},
            "usage": {"log_capacity": 50, "anomaly_window": 10},
            "fallback_targets": ["gpt-4o-mini"],
            "models": {"diagnosis": "gpt-4o"},
        })

        config = load_orchestrator_config(config_path)

        assert config.retry.max_retries == 4
        assert config.retry.base_delay == 0.5
        assert config.retry.max_delay == 8.0
        assert isinstance(config.retry.max_delay, float)
        assert config.retry.rate_limit_penalty == 5.0
        assert config.rate_limit.per_window == 10
        assert config.rate_limit.window == 30.0
        assert config.usage.log_capacity == 50
        assert config.fallback_targets == ("gpt-4o-mini",)
        assert config.model_for("diagnosis") == "gpt-4o"
        assert config.model_for("transcription") == "whisper-1"

    def test_partial_config_keeps_defaults(self):
        """Test omitted sections fall back to defaults."""
        config_path = self._write_config({"rate_limit": {"per_window": 5}})

        config = load_orchestrator_config(config_path)

        assert config.rate_limit.per_window == 5
        assert config.rate_limit.window == 60.0
        assert config.retry == RetryConfig()
        assert config.fallback_targets == DEFAULT_FALLBACK_TARGETS

    def test_empty_fallback_list_disables_fallbacks(self):
        """Test an explicit empty list means no fallback targets."""
        config = parse_orchestrator_config({"fallback_targets": []})

        assert config.fallback_targets == ()

    def test_missing_file(self):
        """Test missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Orchestrator config file not found"):
            load_orchestrator_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file(self):
        """Test empty config file raises ValueError."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_orchestrator_config(config_path)

    def test_invalid_yaml(self):
        """Test invalid YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("retry: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_orchestrator_config(config_path)

    def test_non_dictionary_root(self):
        """Test a list at the top level is rejected."""
        config_path = self._write_config(["retry"])

        with pytest.raises(ValueError, match="Configuration must be a dictionary"):
            load_orchestrator_config(config_path)

    def test_unknown_top_level_keys(self):
        """Test unknown top-level keys are rejected."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            parse_orchestrator_config({"budget": {"daily": 10}})

    def test_unknown_section_keys(self):
        """Test unknown keys inside a section are rejected."""
        with pytest.raises(ValueError, match="Unknown keys in retry"):
            parse_orchestrator_config({"retry": {"max_retry": 3}})

    def test_section_must_be_dictionary(self):
        """Test sections must be mappings."""
        with pytest.raises(ValueError, match="'usage' must be a dictionary"):
            parse_orchestrator_config({"usage": 5})

    def test_non_numeric_values(self):
        """Test strings and booleans are rejected for numeric fields."""
        with pytest.raises(ValueError, match="'retry.base_delay' must be a number"):
            parse_orchestrator_config({"retry": {"base_delay": "fast"}})
        with pytest.raises(ValueError, match="'rate_limit.per_window' must be a number"):
            parse_orchestrator_config({"rate_limit": {"per_window": True}})

    def test_integer_fields_reject_floats(self):
        """Test count fields must be integers."""
        with pytest.raises(ValueError, match="'retry.max_retries' must be an integer"):
            parse_orchestrator_config({"retry": {"max_retries": 2.5}})

    def test_value_ranges(self):
        """Test out-of-range values are rejected by the section dataclasses."""
        with pytest.raises(ValueError, match="max_retries"):
            parse_orchestrator_config({"retry": {"max_retries": 0}})
        with pytest.raises(ValueError, match="max_delay"):
            parse_orchestrator_config({"retry": {"base_delay": 5, "max_delay": 1}})
        with pytest.raises(ValueError, match="window"):
            parse_orchestrator_config({"rate_limit": {"window": 0}})

    def test_fallback_targets_must_be_list(self):
        """Test fallback_targets must be a list of strings."""
        with pytest.raises(ValueError, match="'fallback_targets' must be a list"):
            parse_orchestrator_config({"fallback_targets": "gpt-4o"})
        with pytest.raises(ValueError, match="non-empty strings"):
            parse_orchestrator_config({"fallback_targets": ["gpt-4o", ""]})

    def test_unknown_model_role(self):
        """Test model overrides only accept known roles."""
        with pytest.raises(ValueError, match="Unknown keys in models"):
            parse_orchestrator_config({"models": {"poetry": "gpt-5"}})
        with pytest.raises(ValueError, match="'models.summary' must be a non-empty string"):
            parse_orchestrator_config({"models": {"summary": ""}})

    def test_config_is_immutable(self):
        """Test configuration objects are frozen."""
        config = OrchestratorConfig()

        with pytest.raises(AttributeError):
            config.retry = RetryConfig(max_retries=9)


class TestApiSettings:
    """Test API credential handling."""

    def test_from_env(self, monkeypatch):
        """Test settings are read from the environment."""
        monkeypatch.setenv("OPENAI_API_KEY", VALID_KEY)
        monkeypatch.setenv("OPENAI_BASE_URL", "https://proxy.example.com/v1")

        settings = ApiSettings.from_env()

        assert settings.api_key == VALID_KEY
        assert settings.base_url == "https://proxy.example.com/v1"

    def test_from_env_default_base_url(self, monkeypatch):
        """Test the public endpoint is used when no base URL is set."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_BASE_URL", raising=False)

        settings = ApiSettings.from_env()

        assert settings.api_key is None
        assert settings.base_url == "https://api.openai.com/v1"

    def test_valid_key(self):
        """Test a plausible key is returned stripped."""
        assert ApiSettings(api_key=f"  {VALID_KEY}\n").validate_api_key() == VALID_KEY

    def test_missing_key(self):
        """Test a missing key is rejected."""
        with pytest.raises(ValueError, match="missing"):
            ApiSettings(api_key=None).validate_api_key()

    def test_placeholder_key(self):
        """Test placeholder values are rejected."""
        with pytest.raises(ValueError, match="placeholder"):
            ApiSettings(api_key="your-api-key-here").validate_api_key()

    def test_short_key(self):
        """Test implausibly short keys are rejected."""
        with pytest.raises(ValueError, match="appears to be invalid"):
            ApiSettings(api_key="sk-short").validate_api_key()
