"""
Review desk settings: archive location, scoring mode and AI providers.

Settings live in one JSON file under ~/.dragon-faith unless DRAGON_FAITH_CONFIG_PATH points elsewhere.
"""

import json
import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from .models import AIProviderConfig, AppConfig

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "DRAGON_FAITH_CONFIG_PATH"
ENV_DATA_DIR = "DRAGON_FAITH_DATA_DIR"
ENV_STORAGE_KEY = "DRAGON_FAITH_STORAGE_KEY"
ENV_API_KEY = "DRAGON_FAITH_API_KEY"

APP_HOME = Path.home() / ".dragon-faith"


class ConfigValidationError(Exception):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.code = "CONFIG_INVALID"
        self.message = "; ".join(errors)
        self.errors = errors


class ConfigManager:
    """
    Owns the AppConfig of the running desk.

    The file is read lazily on first access. Environment
    variables override the data directory and storage key at load time.
    """

    DEFAULT_CONFIG_PATH = APP_HOME / "config.json"

    def __init__(self, config_path: Path | None = None):
        """
        Bind the manager to a settings file.

        Args:
            config_path: Path to config file (defaults to ~/.dragon-faith/config.json)
        """
        env_path = os.getenv(ENV_CONFIG_PATH, "").strip()
        self.config_path = config_path or (Path(env_path) if env_path else self.DEFAULT_CONFIG_PATH)
        self._config: AppConfig | None = None

    def get_config(self) -> AppConfig:
        """
        Current settings, read from disk on first call.

        Returns:
            Current AppConfig
        """
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def set_config(self, config: AppConfig) -> AppConfig:
        """
        Validate, update and persist configuration.

        Raises:
            ConfigValidationError: config has invalid provider entries
        """
        errors = ConfigValidator.validate_app_config(config)
        if errors:
            raise ConfigValidationError(errors)
        self._config = config
        self._save_config(config)
        return config

    def get_active_ai_provider(self) -> AIProviderConfig | None:
        """
        Get the provider selected by ai_provider, if it is enabled.

        Returns:
            Active AIProviderConfig or None
        """
        config = self.get_config()
        for provider in config.ai_providers:
            if provider.id == config.ai_provider and provider.enabled:
                return provider
        return None

    def _load_config(self) -> AppConfig:
        """Read the settings file over the defaults; a broken file yields defaults."""
        default_config = self._default_config()
        if not self.config_path.exists():
            logger.info(f"Config file not found at {self.config_path}, using defaults")
            return self._apply_env_overrides(default_config)

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")
            merged = {**default_config.model_dump(), **data}
            return self._apply_env_overrides(AppConfig(**merged))
        except Exception as e:
            logger.error(f"Failed to load config from {self.config_path}: {e}")
            return self._apply_env_overrides(default_config)

    @staticmethod
    def _apply_env_overrides(config: AppConfig) -> AppConfig:
        update: dict[str, str] = {}
        data_dir = os.getenv(ENV_DATA_DIR, "").strip()
        if data_dir:
            update["data_dir"] = data_dir
        storage_key = os.getenv(ENV_STORAGE_KEY, "").strip()
        if storage_key:
            update["storage_key"] = storage_key
        return config.model_copy(update=update) if update else config

    def _save_config(self, config: AppConfig) -> None:
        """
        Write settings as pretty JSON.

        Args:
            config: Configuration to save
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(config.model_dump(), f, indent=2, ensure_ascii=False)
            logger.info(f"Saved config to {self.config_path}")
        except Exception as e:
            logger.error(f"Failed to save config to {self.config_path}: {e}")
            # runtime keeps the in-memory settings

    @staticmethod
    def _default_config() -> AppConfig:
        """Built-in settings with the known OpenAI-compatible endpoints."""
        return AppConfig(
            data_dir=str(APP_HOME / "data"),
            storage_key="dragon_faith_system_v27_5",
            score_mode="derived",
            strict_store_load=False,
            persistence_lookback=5,
            persistence_min_count=2,
            max_attachments=10,
            ai_provider="gemini",
            ai_timeout_sec=120,
            api_key="",
            api_key_path="",
            ai_providers=[
                AIProviderConfig(
                    id="gemini",
                    label="Gemini",
                    base_url="https://generativelanguage.googleapis.com/v1beta/openai",
                    model="gemini-2.5-pro",
                    api_key="",
                    api_key_path=str(APP_HOME / "gemini.key"),
                    enabled=True,
                ),
                AIProviderConfig(
                    id="openai",
                    label="OpenAI",
                    base_url="https://api.openai.com/v1",
                    model="gpt-4o-mini",
                    api_key="",
                    api_key_path=str(APP_HOME / "openai.key"),
                    enabled=True,
                ),
                AIProviderConfig(
                    id="qwen",
                    label="Qwen",
                    base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
                    model="qwen-vl-plus",
                    api_key="",
                    api_key_path=str(APP_HOME / "qwen.key"),
                    enabled=True,
                ),
                AIProviderConfig(
                    id="deepseek",
                    label="DeepSeek",
                    base_url="https://api.deepseek.com/v1",
                    model="deepseek-chat",
                    api_key="",
                    api_key_path=str(APP_HOME / "deepseek.key"),
                    enabled=True,
                ),
                AIProviderConfig(
                    id="custom-1",
                    label="自定义Provider",
                    base_url="https://your-provider.example.com/v1",
                    model="custom-model",
                    api_key="",
                    api_key_path=str(APP_HOME / "custom.key"),
                    enabled=False,
                ),
            ],
        )


class ConfigValidator:
    """Checks provider entries and paths before they are accepted."""

    @staticmethod
    def validate_ai_provider_config(config: AIProviderConfig) -> list[str]:
        """
        Check one provider entry.

        Args:
            config: Config to validate

        Returns:
            Error messages, empty when the entry is usable
        """
        errors = []

        if not config.id.strip():
            errors.append("provider id cannot be empty")

        if not config.base_url.strip():
            errors.append("base_url cannot be empty")

        if not config.model.strip():
            errors.append("model cannot be empty")

        # Validate URL format
        if config.base_url.strip():
            result = urlparse(config.base_url)
            if not all([result.scheme, result.netloc]):
                errors.append("base_url must be a valid URL")

        return errors

    @staticmethod
    def validate_app_config(config: AppConfig) -> list[str]:
        """
        Check the whole settings object, provider ids included.

        Args:
            config: Config to validate

        Returns:
            Error messages, empty when the entry is usable
        """
        errors = []

        if not config.data_dir.strip():
            errors.append("data_dir cannot be empty")

        seen_ids: set[str] = set()
        for idx, provider in enumerate(config.ai_providers):
            for error in ConfigValidator.validate_ai_provider_config(provider):
                errors.append(f"ai_providers[{idx}]: {error}")
            if provider.id in seen_ids:
                errors.append(f"ai_providers[{idx}]: duplicate id {provider.id}")
            seen_ids.add(provider.id)

        return errors


def create_config_manager(config_path: str | None = None) -> ConfigManager:
    """
    Build a ConfigManager, honouring DRAGON_FAITH_CONFIG_PATH when no path is given.

    Args:
        config_path: Optional path to config file

    Returns:
        ConfigManager instance
    """
    path = Path(config_path) if config_path else None
    return ConfigManager(config_path=path)
