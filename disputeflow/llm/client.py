"""LLM client using LangChain"""

from typing import Any
from functools import lru_cache

from langchain.chat_models import init_chat_model
from langchain_core.messages import (
    HumanMessage,
    AIMessage,
    SystemMessage,
)
from langchain_core.language_models import BaseChatModel

from disputeflow.config import settings
from disputeflow.core.logging import log
from disputeflow.llm.types import LLMResponse


class LLMClient:
    """Unified LLM client using LangChain."""

    def __init__(self, model: str | None = None, provider: str | None = None):
        self.model_name = model or settings.DEFAULT_LLM_MODEL
        self.provider = provider or settings.DEFAULT_LLM_PROVIDER
        self._client: BaseChatModel | None = None

    @property
    def client(self) -> BaseChatModel:
        """Lazy load the LLM client."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self) -> BaseChatModel:
        """Create LangChain chat model."""
        log.debug(f"Creating LLM client: provider={self.provider}, model={self.model_name}")

        if self.provider == "deepseek":
            return init_chat_model(
                model=self.model_name,
                model_provider="openai",
                api_key=settings.get("DEEPSEEK_API_KEY", ""),
                base_url=settings.get("DEEPSEEK_BASE_URL", "https://api.deepseek.com"),
            )
        elif self.provider == "openai":
            return init_chat_model(
                model=self.model_name,
                model_provider="openai",
                api_key=settings.get("OPENAI_API_KEY", ""),
            )
        else:
            raise ValueError(f"Unknown provider: {self.provider}")

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list:
        """Convert dict messages to LangChain message objects."""
        lc_messages = []
        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")
            if role == "system":
                lc_messages.append(SystemMessage(content=content))
            elif role == "assistant":
                lc_messages.append(AIMessage(content=content))
            else:
                lc_messages.append(HumanMessage(content=content))
        return lc_messages

    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send a chat completion request."""
        lc_messages = self._convert_messages(messages)

        kwargs: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.ainvoke(lc_messages, **kwargs)
        except Exception as e:
            log.error(f"LLM request failed: {e}")
            raise

        usage = {}
        if getattr(response, "usage_metadata", None):
            usage = {
                "input_tokens": response.usage_metadata.get("input_tokens", 0),
                "output_tokens": response.usage_metadata.get("output_tokens", 0),
            }

        return LLMResponse(
            content=response.content if isinstance(response.content, str) else None,
            usage=usage,
            model=self.model_name,
        )


@lru_cache()
def get_llm_client(
    model: str | None = None,
    provider: str | None = None,
) -> LLMClient:
    """Get a cached LLM client instance."""
    return LLMClient(model=model, provider=provider)
