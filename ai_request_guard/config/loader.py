"""
Configuration management and loading.

Handles orchestrator settings, model selection and API credentials.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


DEFAULT_FALLBACK_TARGETS = ("gpt-4o-mini", "gpt-4o", "gpt-3.5-turbo")

DEFAULT_MODELS = {
    "diagnosis": "gpt-5",
    "follow_up": "gpt-5-mini",
    "summary": "gpt-5-mini",
    "report": "gpt-4o-mini",
    "transcription": "whisper-1",
}

DEFAULT_BASE_URL = "https://api.openai.com/v1"
API_KEY_PLACEHOLDERS = {"your-api-key-here", "INSERT_API_KEY"}
MIN_API_KEY_LENGTH = 40


@dataclass(frozen=True)
class RetryConfig:
    """Retry budget and backoff settings. Durations are in seconds."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    max_jitter: float = 1.0
    rate_limit_penalty: float = 5.0

    def __post_init__(self):
        """Validate retry values."""
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.max_jitter < 0:
            raise ValueError("max_jitter must be >= 0")
        if self.rate_limit_penalty < 0:
            raise ValueError("rate_limit_penalty must be >= 0")


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding-window admission budget."""
    per_window: int = 20
    window: float = 60.0

    def __post_init__(self):
        """Validate rate-limit values."""
        if self.per_window < 1:
            raise ValueError("per_window must be >= 1")
        if self.window <= 0:
            raise ValueError("window must be > 0")


@dataclass(frozen=True)
class UsageConfig:
    """Usage log sizing."""
    log_capacity: int = 100
    anomaly_window: int = 20

    def __post_init__(self):
        """Validate usage log values."""
        if self.log_capacity < 1:
            raise ValueError("log_capacity must be >= 1")
        if self.anomaly_window < 1:
            raise ValueError("anomaly_window must be >= 1")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Complete orchestrator configuration."""
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)
    fallback_targets: Tuple[str, ...] = DEFAULT_FALLBACK_TARGETS
    models: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MODELS))

    def __post_init__(self):
        """Validate fallback targets and model mapping."""
        if not isinstance(self.fallback_targets, tuple):
            object.__setattr__(self, "fallback_targets", tuple(self.fallback_targets))
        for target in self.fallback_targets:
            if not isinstance(target, str) or not target.strip():
                raise ValueError("fallback_targets must be non-empty strings")
        unknown_roles = set(self.models) - set(DEFAULT_MODELS)
        if unknown_roles:
            raise ValueError(f"Unknown model roles: {unknown_roles}")

    def model_for(self, role: str) -> str:
        """Model identifier configured for a completion role."""
        return self.models.get(role, DEFAULT_MODELS[role])


@dataclass(frozen=True)
class ApiSettings:
    """Static credential and endpoint attached to every call."""
    api_key: Optional[str]
    base_url: str = DEFAULT_BASE_URL

    @classmethod
    def from_env(cls) -> "ApiSettings":
        """Read OPENAI_API_KEY and OPENAI_BASE_URL from the environment."""
        return cls(
            api_key=os.environ.get("OPENAI_API_KEY"),
            base_url=os.environ.get("OPENAI_BASE_URL") or DEFAULT_BASE_URL,
        )

    def validate_api_key(self) -> str:
        """Return the API key if it looks usable.

        Raises:
            ValueError: If the key is missing, a placeholder, or too short
        """
        key = (self.api_key or "").strip()
        if not key:
            raise ValueError("API key is missing. Set OPENAI_API_KEY.")
        if key in API_KEY_PLACEHOLDERS:
            raise ValueError("API key is still set to a placeholder value")
        if len(key) < MIN_API_KEY_LENGTH:
            raise ValueError(
                f"API key appears to be invalid: expected at least {MIN_API_KEY_LENGTH} characters"
            )
        return key


def load_orchestrator_config(path: str) -> OrchestratorConfig:
    """Load and validate orchestrator configuration from a YAML file.

    Every section is optional; omitted values keep their defaults. Unknown
    keys are rejected at every level so typos never go unnoticed.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated OrchestratorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Orchestrator config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    return parse_orchestrator_config(raw_config)


def parse_orchestrator_config(raw_config: Dict[str, Any]) -> OrchestratorConfig:
    """Build an OrchestratorConfig from already-parsed YAML data."""
    allowed_top_keys = {'retry', 'rate_limit', 'usage', 'fallback_targets', 'models'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    retry = RetryConfig(**_parse_section(
        raw_config, 'retry',
        {'max_retries': int, 'base_delay': float, 'max_delay': float,
         'max_jitter': float, 'rate_limit_penalty': float},
    ))
    rate_limit = RateLimitConfig(**_parse_section(
        raw_config, 'rate_limit', {'per_window': int, 'window': float},
    ))
    usage = UsageConfig(**_parse_section(
        raw_config, 'usage', {'log_capacity': int, 'anomaly_window': int},
    ))

    fallback_targets = raw_config.get('fallback_targets', list(DEFAULT_FALLBACK_TARGETS))
    if not isinstance(fallback_targets, list):
        raise ValueError("'fallback_targets' must be a list")

    models = dict(DEFAULT_MODELS)
    models_data = raw_config.get('models', {})
    if not isinstance(models_data, dict):
        raise ValueError("'models' must be a dictionary")
    for role, model in models_data.items():
        if role not in DEFAULT_MODELS:
            raise ValueError(f"Unknown keys in models: {{'{role}'}}")
        if not isinstance(model, str) or not model.strip():
            raise ValueError(f"'models.{role}' must be a non-empty string")
        models[role] = model

    return OrchestratorConfig(
        retry=retry,
        rate_limit=rate_limit,
        usage=usage,
        fallback_targets=tuple(fallback_targets),
        models=models,
    )


def _parse_section(raw_config: Dict, name: str, fields: Dict[str, type]) -> Dict[str, Any]:
    """Parse and type-check one optional config section.

    Args:
        raw_config: Top-level configuration data
        name: Section name
        fields: Allowed keys mapped to their expected type

    Returns:
        Keyword arguments for the section's dataclass

    Raises:
        ValueError: If the section is malformed
    """
    data = raw_config.get(name, {})
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - set(fields)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    parsed = {}
    for key, expected in fields.items():
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{name}.{key}' must be a number")
        if expected is int and not isinstance(value, int):
            raise ValueError(f"'{name}.{key}' must be an integer")
        parsed[key] = expected(value)
    return parsed
