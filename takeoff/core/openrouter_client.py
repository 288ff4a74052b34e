"""OpenRouter LLM client implementation."""

import base64
from typing import Any, Dict, List, Optional, Union

import httpx

from takeoff.core.base_llm_client import BaseLLMClient
from takeoff.core.exceptions import APIClientError
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class OpenRouterClient:
    """Wrapper for the OpenRouter chat completions API.

    Content parts may be plain strings, ``{"text": ...}``,
    ``{"image_url": ...}`` or ``{"image_bytes": ..., "mime_type": ...}``.
    Image parts are sent as OpenAI-style ``image_url`` message parts.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "openai/gpt-4o-mini",
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        timeout: int = 60,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize OpenRouter client.

        Args:
            api_key: OpenRouter API key
            model: Model name to use (e.g., "openai/gpt-4o-mini")
            base_url: OpenRouter API base URL
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            http_client: Optional shared httpx client
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries

        self.client = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            http_client=http_client,
        )

        LOGGER.info(f"Initialized OpenRouter client with model {self.model}")

    @staticmethod
    def _build_user_content(
        contents: Union[str, List[Union[str, Dict[str, Any]]]]
    ) -> Union[str, List[Dict[str, Any]]]:
        if isinstance(contents, str):
            return contents

        parts: List[Dict[str, Any]] = []
        for part in contents:
            if isinstance(part, str):
                parts.append({"type": "text", "text": part})
            elif "text" in part:
                parts.append({"type": "text", "text": part["text"]})
            elif "image_url" in part:
                parts.append({"type": "image_url", "image_url": {"url": part["image_url"]}})
            elif "image_bytes" in part:
                encoded = base64.b64encode(part["image_bytes"]).decode("ascii")
                mime_type = part.get("mime_type", "image/png")
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                })

        if all(p["type"] == "text" for p in parts):
            return "".join(p["text"] for p in parts)
        return parts

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using an OpenRouter model.

        Args:
            contents: Input content (string or list of parts)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature, etc.)

        Returns:
            Generated text response

        Raises:
            APIClientError: If generation fails
        """
        messages = []

        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})

        messages.append({"role": "user", "content": self._build_user_content(contents)})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
        }

        if generation_config:
            if "temperature" in generation_config:
                payload["temperature"] = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                payload["max_tokens"] = generation_config["max_output_tokens"]
            if generation_config.get("response_mime_type") == "application/json":
                payload["response_format"] = {"type": "json_object"}
        else:
            payload["temperature"] = 0.0

        response = await self.client.call_api(
            endpoint="",
            method="POST",
            payload=payload
        )

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {str(response)[:500]}")
            raise APIClientError("Invalid response format from OpenRouter")

        content = choices[0].get("message", {}).get("content") or ""
        if not content:
            LOGGER.warning("Empty response from OpenRouter")
        return content
