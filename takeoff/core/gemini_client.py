import asyncio
import base64
from typing import Any, Dict, List, Optional, Union

from google import genai
from google.genai import types

from takeoff.core.exceptions import APIClientError
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class GeminiClient:
    """Wrapper for Google Gemini API client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: int = 60,
        max_retries: int = 3,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Model name to use
            timeout: Request timeout in seconds (kept for interface consistency)
            max_retries: Maximum retry attempts
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries

        try:
            self.client = genai.Client(api_key=self.api_key)
            LOGGER.info(f"Initialized Gemini client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", original_error=e)

    @staticmethod
    def _to_parts(contents: Union[str, List[Union[str, Dict[str, Any]]]]) -> Union[str, List[Any]]:
        if isinstance(contents, str):
            return contents

        parts: List[Any] = []
        for part in contents:
            if isinstance(part, str):
                parts.append(part)
            elif "text" in part:
                parts.append(part["text"])
            elif "image_bytes" in part:
                parts.append(types.Part.from_bytes(
                    data=part["image_bytes"],
                    mime_type=part.get("mime_type", "image/png"),
                ))
            elif "image_url" in part:
                url = part["image_url"]
                if url.startswith("data:"):
                    header, encoded = url.split(",", 1)
                    mime_type = header[5:].split(";")[0] or "image/png"
                    parts.append(types.Part.from_bytes(data=base64.b64decode(encoded), mime_type=mime_type))
                else:
                    parts.append(types.Part.from_uri(file_uri=url, mime_type=part.get("mime_type", "image/png")))
        return parts

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using a Gemini model.

        Args:
            contents: Input content (string or list of parts)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature, etc.)

        Returns:
            Generated text response

        Raises:
            APIClientError: If generation fails
        """
        config = types.GenerateContentConfig(temperature=0.0)

        if generation_config:
            if "temperature" in generation_config:
                config.temperature = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                config.max_output_tokens = generation_config["max_output_tokens"]
            if "response_mime_type" in generation_config:
                config.response_mime_type = generation_config["response_mime_type"]

        if system_instruction:
            config.system_instruction = system_instruction

        parts = self._to_parts(contents)

        for attempt in range(self.max_retries):
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model,
                    contents=parts,
                    config=config
                )

                if not response.text:
                    LOGGER.warning("Empty response from Gemini")
                    return ""

                return response.text

            except Exception as e:
                LOGGER.warning(
                    f"Gemini API error (Attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(2 ** attempt)
                else:
                    LOGGER.error(f"Gemini generation failed after retries: {e}", exc_info=True)
                    raise APIClientError(f"Gemini generation failed: {e}", original_error=e)

        raise APIClientError("Gemini generation failed")
