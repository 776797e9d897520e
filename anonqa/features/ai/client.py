"""
anonqa/features/ai/client.py
Thin wrapper around the Groq chat completions API.

The client is built lazily so a missing GROQ_API_KEY only fails AI requests
(503 ai_not_configured), never app startup.
"""

import logging
from typing import AsyncIterator, Optional

import groq

from anonqa.core.config import settings
from anonqa.core.errors import AINotConfiguredError

logger = logging.getLogger("anonqa")

SYSTEM_PROMPT = (
    "You are a helpful assistant for an anonymous question and answer board. "
    "Answer in the same language as the user's input and return only the requested text."
)


class CompletionClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        client: Optional[groq.AsyncGroq] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.model = model or settings.AI_MODEL
        self.temperature = settings.AI_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.AI_MAX_TOKENS
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def ensure_configured(self) -> None:
        if not self.configured:
            raise AINotConfiguredError("AI features are not configured on this server")

    def _get_client(self) -> groq.AsyncGroq:
        self.ensure_configured()
        if self._client is None:
            self._client = groq.AsyncGroq(api_key=self.api_key)
        return self._client

    def _messages(self, prompt: str) -> list:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    async def stream_text(self, prompt: str) -> AsyncIterator[str]:
        """Yield text deltas as they arrive. Closing the generator closes the upstream stream."""
        client = self._get_client()
        logger.debug(f"[AI] streaming from Groq for prompt: {prompt[:50]}...")
        stream = await client.chat.completions.create(
            messages=self._messages(prompt),
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                token = chunk.choices[0].delta.content
                if token:
                    yield token
        finally:
            await stream.close()

    async def complete(self, prompt: str) -> str:
        client = self._get_client()
        logger.debug(f"[AI] completion from Groq for prompt: {prompt[:50]}...")
        response = await client.chat.completions.create(
            messages=self._messages(prompt),
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
