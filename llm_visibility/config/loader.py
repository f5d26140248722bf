"""
Configuration loader for LLM Visibility.

Loads YAML configuration, validates it with Pydantic models, and resolves API
keys from environment variables to create a RuntimeConfig.

Two entry points:
    load_watcher_config: validate only; used by commands that never call the
        model (report, export, onboard, query management)
    load_config: validate and resolve API keys; used by the pipeline
"""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from llm_visibility.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
)

from .schema import ModelConfig, RuntimeConfig, RuntimeModel, WatcherConfig

# Pattern to match ${ENV_VAR_NAME}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def load_watcher_config(config_path: str | Path) -> WatcherConfig:
    """
    Load and validate a config file without touching API keys.

    ${VAR} references anywhere in the YAML are expanded from the environment
    before validation.

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist
        ConfigValidationError: If YAML is invalid or validation fails
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}, "
            f"got {type(raw_config).__name__}"
        )

    raw_config = _resolve_env_vars_recursive(raw_config)

    try:
        return WatcherConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e


def load_config(config_path: str | Path) -> RuntimeConfig:
    """
    Load visibility.config.yaml and resolve API keys from the environment.

    Args:
        config_path: Path to the YAML file (relative or absolute)

    Returns:
        RuntimeConfig with resolved API keys

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist at the specified path
        ConfigValidationError: If YAML is invalid or config validation fails
        APIKeyMissingError: If required API keys are missing from environment

    Security:
        - API keys are loaded from environment variables only
        - API keys are NEVER logged or written to disk
        - Uses yaml.safe_load() to prevent code injection
    """
    watcher_config = load_watcher_config(config_path)

    return RuntimeConfig(
        storage=watcher_config.storage,
        answer_engine=resolve_model(watcher_config.answer_engine),
        extraction=resolve_model(watcher_config.extraction),
        reasoning_language=watcher_config.extraction.reasoning_language,
        run_settings=watcher_config.run_settings,
    )


def resolve_model(model_config: ModelConfig) -> RuntimeModel:
    """
    Resolve a model's env_api_key reference to the actual key.

    Raises:
        APIKeyMissingError: If the environment variable is unset or blank

    Security:
        - NEVER logs API keys (not even partial values)
    """
    env_var_name = model_config.env_api_key
    api_key = os.environ.get(env_var_name)

    if not api_key or api_key.isspace():
        raise APIKeyMissingError(
            f"Environment variable ${env_var_name} not set "
            f"(required for {model_config.provider}/{model_config.model_name}). "
            f"Please set it in your environment or .env file."
        )

    return RuntimeModel(
        provider=model_config.provider,
        model_name=model_config.model_name,
        api_key=api_key,
        system_prompt=model_config.system_prompt,
        tools=model_config.tools,
    )


def _resolve_env_vars_recursive(obj):
    """
    Recursively resolve ${ENV_VAR} references in nested dicts/lists.

    Raises:
        ConfigValidationError: If a referenced env var is not set
    """
    if isinstance(obj, dict):
        return {key: _resolve_env_vars_recursive(value) for key, value in obj.items()}

    if isinstance(obj, list):
        return [_resolve_env_vars_recursive(item) for item in obj]

    if isinstance(obj, str):

        def replace(match: re.Match) -> str:
            env_var_name = match.group(1)
            env_value = os.environ.get(env_var_name)
            if env_value is None:
                raise ConfigValidationError(
                    f"Environment variable ${{{env_var_name}}} not set. "
                    f"Please set it in your environment or .env file."
                )
            return env_value

        return ENV_VAR_PATTERN.sub(replace, obj)

    return obj
