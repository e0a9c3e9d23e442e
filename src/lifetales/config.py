"""Central Configuration System for LifeTales.

This module is the single source of truth for application configuration.
Every other module that needs settings imports from here.

The configuration system supports:
- Multi-source configuration (environment variables > config file > defaults)
- Secure API key management (env > keyring)
- Named default-policy constants for the degrade paths of the pipeline

Example:
    >>> from lifetales.config import get_config, get_api_key
    >>>
    >>> cfg = get_config()
    >>> print(cfg.ai.text_model)
    >>> print(cfg.pipeline.fallback_mood)

Config File Format (YAML):
    ```yaml
    ai:
      mode: enabled  # enabled | disabled
      text_model: gemini-2.5-flash
      image_model: gemini-2.5-flash-image
      synthesis_temperature: 0.7

    pipeline:
      context_window: 3
      context_separator: " "
      fallback_mood: Reflective
      fallback_tags: [Life]
      transcription_timeout_seconds: 60
      completed_display_seconds: 2
      error_display_seconds: 3

    logging:
      level: INFO
      log_file: null
    ```
"""

from __future__ import annotations

import functools
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import keyring
import keyring.errors
import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from lifetales.core.models import AnalysisDefaults

# Configure module logger - never log secrets
logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigFileError(ConfigError):
    """Config file exists but cannot be read or parsed."""

    pass


class APIKeyError(ConfigError):
    """Base exception for API key related issues."""

    pass


class APIKeyNotFoundError(APIKeyError):
    """Raised when no API key is found in the environment or the keyring."""

    pass


class APIKeyInvalidError(APIKeyError):
    """Raised when an API key fails basic format checks.

    This does NOT indicate the key was rejected by the API.
    """

    pass


# =============================================================================
# Enums
# =============================================================================


class AIMode(str, Enum):
    """AI feature activation modes.

    Attributes:
        ENABLED: Stages call Gemini.
        DISABLED: No network calls. Constructing a client fails, which the
                  session treats as "no AI available".
    """

    ENABLED = "enabled"
    DISABLED = "disabled"


class KeySource(str, Enum):
    """Sources from which API keys can be retrieved."""

    ENVIRONMENT = "environment"
    KEYRING = "keyring"
    NONE = "none"


# =============================================================================
# Configuration Models
# =============================================================================


class AIConfig(BaseModel):
    """Configuration for Gemini integration.

    Attributes:
        mode: AI activation mode.
        text_model: Model used for transcription, analysis and synthesis.
        image_model: Model used for chapter illustrations.
        synthesis_temperature: Creativity control for narrative synthesis.
        analysis_temperature: Temperature for the structured mood/tags call.
        max_output_tokens: Maximum tokens in a text response.
    """

    mode: AIMode = Field(default=AIMode.ENABLED, description="AI activation mode.")
    text_model: str = Field(
        default="gemini-2.5-flash",
        description="Model for transcription, semantic analysis and narrative synthesis.",
    )
    image_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Model for illustration generation.",
    )
    synthesis_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for narrative synthesis (slightly creative).",
    )
    analysis_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1024, ge=16, le=32000)

    def is_enabled(self) -> bool:
        """Check if AI features are enabled."""
        return self.mode != AIMode.DISABLED


class PipelineSettings(BaseModel):
    """Behaviour of the memory pipeline and the session around it.

    The fallback values are the degrade policy for the semantic analysis
    stage. They are named here so they can be overridden and tested on
    their own.

    Attributes:
        context_window: Number of recent chapters fed to synthesis.
        context_separator: Joiner between the narratives in the context.
        default_style: Style hint passed to narrative synthesis.
        fallback_mood: Mood used when semantic analysis fails.
        fallback_tags: Tags used when semantic analysis fails.
        default_audio_mime_type: MIME type assumed for audio without one.
        *_timeout_seconds: Per-stage timeouts. A timeout follows the same
            policy as a stage error.
        completed_display_seconds: How long COMPLETED stays visible before
            the session returns to IDLE.
        error_display_seconds: Same, for ERROR.
    """

    context_window: int = Field(default=3, ge=1, le=20)
    context_separator: str = Field(default=" ")
    default_style: str = Field(default="narrative")
    default_theme: str = Field(default="Personal")
    fallback_mood: str = Field(default=AnalysisDefaults.FALLBACK_MOOD, min_length=1)
    fallback_tags: list[str] = Field(default_factory=lambda: list(AnalysisDefaults.FALLBACK_TAGS))
    default_audio_mime_type: str = Field(default="audio/mp3")
    transcription_timeout_seconds: float = Field(default=60.0, gt=0)
    analysis_timeout_seconds: float = Field(default=30.0, gt=0)
    synthesis_timeout_seconds: float = Field(default=45.0, gt=0)
    illustration_timeout_seconds: float = Field(default=60.0, gt=0)
    completed_display_seconds: float = Field(default=2.0, ge=0)
    error_display_seconds: float = Field(default=3.0, ge=0)

    @field_validator("fallback_mood")
    @classmethod
    def strip_mood(cls, v: str) -> str:
        """Reject whitespace-only fallback moods."""
        v = v.strip()
        if not v:
            raise ValueError("fallback_mood must not be blank")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration consumed by ``setup_logging``."""

    level: str = Field(default="INFO")
    log_file: Path | None = Field(default=None)
    quiet_third_party: bool = Field(default=True)

    @field_validator("log_file", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path | None:
        """Expand ~ in the log file path."""
        if v is None or v == "":
            return None
        return Path(v).expanduser()


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Configuration priority (highest wins):
    1. Environment variables (LIFETALES_*, nested with ``__``)
    2. Config file (YAML)
    3. In-code defaults

    Example:
        >>> import os
        >>> os.environ["LIFETALES_PIPELINE__CONTEXT_WINDOW"] = "5"
        >>> AppConfig().pipeline.context_window
        5
    """

    ai: AIConfig = Field(default_factory=AIConfig)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    debug: bool = Field(default=False, description="Enable debug mode.")

    model_config = {
        "env_prefix": "LIFETALES_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Let environment variables win over values loaded from the YAML file."""
        return env_settings, init_settings, file_secret_settings

    def to_display_dict(self) -> dict[str, Any]:
        """Return the configuration as plain data for display."""
        return self.model_dump(mode="json")


# =============================================================================
# API Key Management
# =============================================================================


class APIKeyManager:
    """Retrieval and storage of the Gemini API key.

    Sources are tried in priority order:
    1. Environment variable (GEMINI_API_KEY)
    2. System keyring

    Keys are wrapped in SecretStr to prevent accidental logging.

    Example:
        >>> manager = APIKeyManager()
        >>> key = manager.get_key()
        >>> if key:
        ...     print(f"Key source: {manager.get_key_source()}")
    """

    KEYRING_SERVICE = "lifetales"
    KEYRING_USERNAME = "gemini"
    ENV_VAR_NAME = "GEMINI_API_KEY"

    def __init__(self) -> None:
        self._cached_key: SecretStr | None = None
        self._key_source: KeySource = KeySource.NONE

    def get_key(self) -> SecretStr | None:
        """Retrieve the API key, trying sources in priority order.

        Returns:
            SecretStr wrapper around the key, or None if not found.
        """
        if self._cached_key is not None:
            return self._cached_key

        key = self._read_from_environment()
        if key and self.validate_key_format(key):
            self._cached_key = SecretStr(key)
            self._key_source = KeySource.ENVIRONMENT
            logger.debug("API key loaded from environment variable")
            return self._cached_key

        key = self._read_from_keyring()
        if key and self.validate_key_format(key):
            self._cached_key = SecretStr(key)
            self._key_source = KeySource.KEYRING
            logger.debug("API key loaded from system keyring")
            return self._cached_key

        self._key_source = KeySource.NONE
        logger.debug("No API key found in any source")
        return None

    def get_key_source(self) -> KeySource:
        """Get the source where the key was found."""
        return self._key_source

    def store_key(self, key: str) -> None:
        """Store the API key in the system keyring.

        Raises:
            APIKeyInvalidError: If the key fails format validation.
            ConfigError: If the keyring rejects the write.
        """
        key = key.strip()
        if not self.validate_key_format(key):
            raise APIKeyInvalidError(
                "API key format validation failed. "
                "Key must be 20-100 characters with no whitespace."
            )

        try:
            keyring.set_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME, key)
        except keyring.errors.KeyringError as e:
            raise ConfigError(f"Failed to store key in keyring: {type(e).__name__}") from e

        self._cached_key = None
        self._key_source = KeySource.NONE
        logger.info("API key stored in system keyring")

    def validate_key_format(self, key: str) -> bool:
        """Validate API key format without making an API call.

        Checks for a non-empty string of 20-100 characters with no
        whitespace.
        """
        if not key:
            return False
        key = key.strip()
        if len(key) < 20 or len(key) > 100:
            return False
        return not any(c.isspace() for c in key)

    def _read_from_environment(self) -> str | None:
        key = os.environ.get(self.ENV_VAR_NAME)
        if key:
            return key.strip()
        return None

    def _read_from_keyring(self) -> str | None:
        try:
            return keyring.get_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME)
        except keyring.errors.KeyringError as e:
            # Headless machines often have no keyring backend at all
            logger.debug(f"Keyring access failed: {type(e).__name__}")
            return None


# =============================================================================
# Module-Level Functions
# =============================================================================


DEFAULT_SEARCH_PATHS: tuple[Path, ...] = (
    Path("./lifetales.yaml"),
    Path("./lifetales.yml"),
    Path.home() / ".lifetales" / "config.yaml",
)


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file, environment, and defaults.

    If no config file is found, uses defaults only (not an error).
    If the config file is malformed, logs a warning and uses defaults.

    Args:
        path: Optional path to a config file. If None, searches default locations.

    Returns:
        Fully-populated AppConfig instance.

    Raises:
        ConfigFileError: If ``path`` was given explicitly and does not exist.
    """
    if path is not None and not path.exists():
        raise ConfigFileError(f"Config file not found: {path}")

    search_paths = [path] if path is not None else list(DEFAULT_SEARCH_PATHS)
    config_file = next((p for p in search_paths if p.exists()), None)

    config_data: dict[str, Any] = {}
    if config_file is not None:
        try:
            loaded = yaml.safe_load(config_file.read_text(encoding="utf-8"))
            if isinstance(loaded, dict):
                config_data = loaded
            elif loaded is not None:
                logger.warning(f"Config file {config_file} has unexpected format. Using defaults.")
        except yaml.YAMLError as e:
            logger.warning(f"Failed to parse config file {config_file}: {e}. Using defaults.")
        except OSError as e:
            logger.warning(
                f"Failed to read config file {config_file}: {type(e).__name__}. Using defaults."
            )

    try:
        return AppConfig(**config_data)
    except ValueError as e:
        logger.warning(f"Error parsing config values: {e}. Using defaults.")
        return AppConfig()


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the cached configuration singleton."""
    return load_config()


def get_api_key() -> SecretStr:
    """Convenience function to get the Gemini API key.

    Raises:
        APIKeyNotFoundError: If no API key is configured in any source.
    """
    key = APIKeyManager().get_key()
    if key is None:
        raise APIKeyNotFoundError(
            "No API key found. Set the GEMINI_API_KEY environment variable "
            "or run 'lifetales config set-key'."
        )
    return key


def reset_config() -> None:
    """Clear the configuration cache (used by tests)."""
    get_config.cache_clear()
