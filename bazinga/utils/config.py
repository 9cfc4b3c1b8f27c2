"""Configuration loading with YAML file and environment overrides."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from bazinga.errors import ConfigError
from bazinga.utils.logging import LogConfig, get_logger

logger = get_logger(__name__)

CONFIG_FILE_NAME = "config.yaml"


class LLMConfig(BaseModel):
    """Default model selection and sampling parameters."""

    default_provider: str = "anthropic"
    default_model: str = ""
    max_tokens: int = 4096
    temperature: float = 0.7
    context_window: int = 100_000


class AnthropicProviderConfig(BaseModel):
    enabled: bool = False
    api_key: str = ""
    base_url: str | None = None
    default_model: str = "claude-sonnet-4-20250514"


class OpenAIProviderConfig(BaseModel):
    enabled: bool = False
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o"


class OllamaProviderConfig(BaseModel):
    enabled: bool = False
    base_url: str = "http://localhost:11434"
    model: str = "qwen2.5-coder:latest"


class BedrockProviderConfig(BaseModel):
    enabled: bool = False
    region: str = "us-east-1"
    profile: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str = ""
    model: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"


class ProvidersConfig(BaseModel):
    anthropic: AnthropicProviderConfig = Field(default_factory=AnthropicProviderConfig)
    openai: OpenAIProviderConfig = Field(default_factory=OpenAIProviderConfig)
    ollama: OllamaProviderConfig = Field(default_factory=OllamaProviderConfig)
    bedrock: BedrockProviderConfig = Field(default_factory=BedrockProviderConfig)


class GitConfig(BaseModel):
    """Author override for commits made by the assistant."""

    author_name: str = ""
    author_email: str = ""


class SecurityConfig(BaseModel):
    """Permission behaviour. Terminator mode allows every tool call without prompting."""

    terminator: bool = False


class Config(BaseModel):
    """Top-level application configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LogConfig = Field(default_factory=LogConfig)


def get_config_dir() -> Path:
    """Return the configuration directory (``$BAZINGA_HOME`` or ``~/.bazinga``)."""
    override = os.getenv("BAZINGA_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".bazinga"


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILE_NAME


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env_overrides(config: Config) -> Config:
    """Override credentials and endpoints from environment variables."""
    bedrock = config.providers.bedrock
    if region := os.getenv("AWS_REGION"):
        bedrock.region = region
    if access_key := os.getenv("AWS_ACCESS_KEY_ID"):
        bedrock.access_key_id = access_key
    if secret_key := os.getenv("AWS_SECRET_ACCESS_KEY"):
        bedrock.secret_access_key = secret_key
    if session_token := os.getenv("AWS_SESSION_TOKEN"):
        bedrock.session_token = session_token
    if profile := os.getenv("AWS_PROFILE"):
        bedrock.profile = profile

    if openai_key := os.getenv("OPENAI_API_KEY"):
        config.providers.openai.api_key = openai_key
        config.providers.openai.enabled = True

    if anthropic_key := os.getenv("ANTHROPIC_API_KEY"):
        config.providers.anthropic.api_key = anthropic_key
        config.providers.anthropic.enabled = True

    if ollama_url := os.getenv("OLLAMA_BASE_URL"):
        config.providers.ollama.base_url = ollama_url
    if ollama_enabled := os.getenv("OLLAMA_ENABLED"):
        config.providers.ollama.enabled = _is_truthy(ollama_enabled)

    return config


def load_config(path: Path | str | None = None) -> Config:
    """Load configuration from YAML, falling back to defaults when the file is absent.

    Args:
        path: Config file path (defaults to ``<config-dir>/config.yaml``)

    Returns:
        Parsed configuration with environment overrides applied

    Raises:
        ConfigError: If the file exists but cannot be parsed
    """
    config_path = Path(path) if path else get_config_path()

    data: dict = {}
    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"failed to read config file {config_path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"config file {config_path} must contain a mapping")
        data = loaded
    else:
        logger.debug(f"No config file at {config_path}, using defaults")

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {config_path}: {e}") from e

    return apply_env_overrides(config)


def save_config(config: Config, path: Path | str | None = None) -> Path:
    """Write configuration to YAML, creating the directory if needed."""
    config_path = Path(path) if path else get_config_path()
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(yaml.safe_dump(config.model_dump(), sort_keys=False), encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to write config file {config_path}: {e}") from e
    return config_path


_config: Config | None = None


def get_config() -> Config:
    """Get or load the process-wide configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
