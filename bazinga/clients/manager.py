"""Registry of configured LLM providers."""

from bazinga.clients.anthropic import AnthropicConfig, AnthropicProvider, BedrockProvider
from bazinga.clients.base import LLMProvider
from bazinga.clients.ollama import OllamaProvider
from bazinga.clients.openai import OpenAIProvider
from bazinga.errors import ProviderError, ProviderNotFoundError
from bazinga.models.llm import ModelInfo
from bazinga.utils.config import Config
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)


class ProviderManager:
    """Keeps providers in registration order; the first registered is the default."""

    def __init__(self):
        self._providers: dict[str, LLMProvider] = {}
        self.default_provider = ""

    def register_provider(self, name: str, provider: LLMProvider) -> None:
        if name in self._providers:
            raise ProviderError(f"provider {name} already registered")
        self._providers[name] = provider
        if not self.default_provider:
            self.default_provider = name
        logger.info(f"Registered LLM provider: {name}")

    def set_default_provider(self, name: str) -> None:
        if name not in self._providers:
            raise ProviderNotFoundError(f"provider {name} not found")
        self.default_provider = name

    def get_provider(self, name: str = "") -> LLMProvider:
        """Look up a provider; an empty name means the default.

        Raises:
            ProviderNotFoundError: If nothing is registered under the name
        """
        name = name or self.default_provider
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFoundError(f"provider {name} not found")
        return provider

    def list_providers(self) -> list[str]:
        return list(self._providers)

    def get_available_models(self) -> dict[str, list[ModelInfo]]:
        return {name: provider.get_available_models() for name, provider in self._providers.items()}

    async def close(self) -> None:
        for name, provider in self._providers.items():
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Failed to close provider {name}: {e}")


def build_provider_manager(config: Config) -> ProviderManager:
    """Register every enabled provider from config, in a fixed order."""
    manager = ProviderManager()
    providers = config.providers

    if providers.anthropic.enabled:
        manager.register_provider(
            "anthropic",
            AnthropicProvider(
                api_key=providers.anthropic.api_key,
                base_url=providers.anthropic.base_url,
                config=AnthropicConfig(
                    model=providers.anthropic.default_model,
                    max_tokens=config.llm.max_tokens,
                    temperature=config.llm.temperature,
                ),
            ),
        )
    if providers.bedrock.enabled:
        bedrock = providers.bedrock
        manager.register_provider(
            "bedrock",
            BedrockProvider(
                region=bedrock.region,
                profile=bedrock.profile,
                access_key_id=bedrock.access_key_id,
                secret_access_key=bedrock.secret_access_key,
                session_token=bedrock.session_token,
                model=bedrock.model,
            ),
        )
    if providers.openai.enabled:
        if not providers.openai.api_key:
            logger.warning("OpenAI provider enabled without an API key, skipping")
        else:
            manager.register_provider(
                "openai",
                OpenAIProvider(
                    api_key=providers.openai.api_key,
                    base_url=providers.openai.base_url,
                    default_model=providers.openai.default_model,
                ),
            )
    if providers.ollama.enabled:
        manager.register_provider(
            "ollama", OllamaProvider(base_url=providers.ollama.base_url, model=providers.ollama.model)
        )

    if config.llm.default_provider in manager.list_providers():
        manager.set_default_provider(config.llm.default_provider)
    elif manager.list_providers():
        logger.warning(
            f"Default provider {config.llm.default_provider} is not enabled, using {manager.default_provider}"
        )
    return manager
