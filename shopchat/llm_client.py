import logging
from typing import Optional

from openai import AsyncOpenAI

from .config import Settings


logger = logging.getLogger(__name__)


INTENT_PROMPT = (
    "Classify the following message into one of these categories: "
    "recommendation, order_status, product_search, general_question, other.\n\n"
    "Message: \"{message}\"\n\n"
    "Respond with only the category name."
)

EXTRACTION_PROMPT = (
    "Extract product name and attributes from this message: \"{message}\"\n\n"
    "Respond in JSON format:\n"
    "{{\n"
    "  \"productName\": \"extracted product name\",\n"
    "  \"attributes\": [\"color\", \"size\", \"style\"]\n"
    "}}"
)


class ProviderError(Exception):
    """The text-generation provider could not produce a completion."""


class TextGenerationClient:
    """Thin async wrapper over an OpenAI-compatible chat completions API.

    Together and OpenRouter both speak the OpenAI protocol, so the
    provider only changes the base URL, key and default model.
    One instance is created per app and shared by the classifier and
    the extractor.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[AsyncOpenAI] = None

    @property
    def configured(self) -> bool:
        return bool(self.settings.llm_api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            kwargs = {
                "api_key": self.settings.llm_api_key,
                "timeout": self.settings.llm_timeout_seconds,
                "max_retries": 0,
            }
            if self.settings.llm_base_url:
                kwargs["base_url"] = self.settings.llm_base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        if not self.configured:
            raise ProviderError(f"{self.settings.llm_provider} API key is not configured")
        try:
            resp = await self._get_client().chat.completions.create(
                model=model or self.settings.llm_model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens or self.settings.llm_max_tokens,
                temperature=self.settings.llm_temperature if temperature is None else temperature,
            )
            text = resp.choices[0].message.content or ""
        except Exception as e:
            # Any SDK failure surfaces as ProviderError
            raise ProviderError(f"{self.settings.llm_provider} request failed: {e}") from e
        if not text.strip():
            raise ProviderError(f"{self.settings.llm_provider} returned an empty completion")
        return text
