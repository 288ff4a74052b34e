"""Unified LLM client factory and manager.

Provides one interface over the supported providers (OpenRouter, Gemini)
with optional fallback, plus factories that build the primary client and
the consensus client set from settings.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

import httpx

from takeoff.core.exceptions import APIClientError, ConfigurationError
from takeoff.core.gemini_client import GeminiClient
from takeoff.core.openrouter_client import OpenRouterClient
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


class UnifiedLLMClient:
    """Unified LLM client that wraps different providers.

    Provides a consistent interface regardless of the underlying provider.
    """

    def __init__(
        self,
        provider: Union[str, LLMProvider],
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: int = 60,
        max_retries: int = 3,
        fallback_to_gemini: bool = False,
        gemini_api_key: Optional[str] = None,
        gemini_model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize unified LLM client.

        Args:
            provider: LLM provider to use ("gemini" or "openrouter")
            api_key: API key for the primary provider
            model: Model name to use
            base_url: Optional base URL (OpenRouter)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            fallback_to_gemini: If True, fall back to Gemini on primary failure
            gemini_api_key: Gemini API key (required if fallback_to_gemini=True)
            gemini_model: Gemini model name (for fallback)
            http_client: Optional shared httpx client for HTTP providers
        """
        self.provider = LLMProvider(provider)
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.fallback_client: Optional[GeminiClient] = None

        if self.provider == LLMProvider.GEMINI:
            self.client = GeminiClient(
                api_key=api_key,
                model=model,
                timeout=timeout,
                max_retries=max_retries
            )
            LOGGER.info(f"Initialized unified LLM with Gemini provider (model: {model})")

        else:
            self.client = OpenRouterClient(
                api_key=api_key,
                model=model,
                base_url=base_url or "https://openrouter.ai/api/v1/chat/completions",
                timeout=timeout,
                max_retries=max_retries,
                http_client=http_client,
            )

            if fallback_to_gemini:
                if not gemini_api_key:
                    raise ConfigurationError("gemini_api_key required when fallback_to_gemini=True")
                self.fallback_client = GeminiClient(
                    api_key=gemini_api_key,
                    model=gemini_model or "gemini-2.0-flash",
                    timeout=timeout,
                    max_retries=max_retries
                )
                LOGGER.info(
                    f"Initialized unified LLM with OpenRouter provider (model: {model}) "
                    f"and Gemini fallback (model: {gemini_model})"
                )
            else:
                LOGGER.info(f"Initialized unified LLM with OpenRouter provider (model: {model})")

    @property
    def name(self) -> str:
        """Provider label used in batch outputs and run logs."""
        return f"{self.provider.value}:{self.model}"

    @property
    def model_family(self) -> str:
        """Model family used for cost lookup (openai, anthropic, google, gemini)."""
        if self.provider == LLMProvider.GEMINI:
            return "gemini"
        return self.model.split("/", 1)[0] if "/" in self.model else self.model

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using the configured LLM provider.

        Args:
            contents: Input content (string or list of parts)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature, etc.)

        Returns:
            Generated text response

        Raises:
            APIClientError: If generation fails
        """
        try:
            return await self.client.generate_content(
                contents=contents,
                system_instruction=system_instruction,
                generation_config=generation_config
            )
        except APIClientError as e:
            if not self.fallback_client:
                raise
            LOGGER.warning(
                f"Primary provider ({self.provider.value}) failed, attempting Gemini fallback: {e}"
            )
            try:
                return await self.fallback_client.generate_content(
                    contents=contents,
                    system_instruction=system_instruction,
                    generation_config=generation_config
                )
            except APIClientError as fallback_error:
                LOGGER.error(f"Fallback to Gemini also failed: {fallback_error}")
                raise APIClientError(
                    f"Both primary ({self.provider.value}) and fallback (Gemini) failed",
                    original_error=fallback_error,
                ) from fallback_error


def create_llm_client_from_settings(
    settings,
    provider: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> UnifiedLLMClient:
    """Create a unified LLM client from application settings.

    Args:
        settings: Application settings instance
        provider: Optional provider override; defaults to settings.llm.provider
        http_client: Optional shared httpx client

    Returns:
        UnifiedLLMClient instance
    """
    llm = settings.llm
    provider = provider or llm.provider

    if provider == LLMProvider.GEMINI.value:
        return UnifiedLLMClient(
            provider=LLMProvider.GEMINI,
            api_key=llm.gemini_api_key,
            model=llm.gemini_model,
            timeout=settings.http_timeout,
            max_retries=settings.max_retries,
        )

    if provider == LLMProvider.OPENROUTER.value:
        return UnifiedLLMClient(
            provider=LLMProvider.OPENROUTER,
            api_key=llm.openrouter_api_key,
            model=llm.openrouter_model,
            base_url=llm.openrouter_api_url,
            timeout=settings.http_timeout,
            max_retries=settings.max_retries,
            fallback_to_gemini=llm.enable_fallback,
            gemini_api_key=llm.gemini_api_key,
            gemini_model=llm.gemini_model,
            http_client=http_client,
        )

    raise ConfigurationError(f"Unsupported LLM provider: {provider}")


def create_consensus_clients(
    settings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> List[UnifiedLLMClient]:
    """Create one client per configured consensus provider.

    Falls back to the single primary provider when consensus is not configured.
    """
    providers = settings.llm.consensus_providers or [settings.llm.provider]
    clients = [
        create_llm_client_from_settings(settings, provider=provider, http_client=http_client)
        for provider in dict.fromkeys(providers)
    ]
    LOGGER.info(
        f"Created {len(clients)} inference client(s)",
        extra={"providers": [c.name for c in clients]}
    )
    return clients
