"""
Groq chat-completions provider (OpenAI-compatible API).

Used as the optional language-understanding backend of the query
classifier. Without an API key every call raises ProviderNotAvailableError
and the classifier stays rule-based.
"""

from typing import Dict, List, Optional

from chatmap.providers.base import (
    LLMProvider,
    ProviderError,
    ProviderMetadata,
    ProviderNotAvailableError,
)
from chatmap.providers.utils import request_json


GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"
GROQ_MODEL = "llama-3.1-8b-instant"


class GroqLLMProvider(LLMProvider):

    name = "groq"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = GROQ_MODEL,
        url: str = GROQ_CHAT_URL,
        timeout: float = 30.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self.url = url
        self.timeout = timeout

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.1,
        max_tokens: int = 512,
    ) -> str:
        if not self.api_key:
            raise ProviderNotAvailableError("GROQ_API_KEY is not configured", provider_name=self.name)
        session = await self._get_session()
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        resp = await self._call(
            lambda: request_json(
                session, "POST", self.url, self.name,
                json_data=payload, headers=headers, timeout=self.timeout,
            )
        )
        try:
            return resp["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise ProviderError("Groq response had no message content", self.name, {"response": resp})

    async def probe(self) -> None:
        await self.chat([{"role": "user", "content": "ping"}], max_tokens=1)

    async def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            version=self.model,
            description="Groq hosted chat completions",
            capabilities=["chat"],
        )
