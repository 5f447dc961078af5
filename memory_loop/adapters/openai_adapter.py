"""
OpenAI adapter for the speech model capability.

Transcription uses the audio transcriptions endpoint; structuring uses chat
completions in JSON mode. Errors are not caught here: the processing
pipeline classifies them.
"""

import logging
from typing import Optional

import logfire
from openai import AsyncOpenAI

from memory_loop.interfaces.providers.llm import SpeechModelProvider

# Setup logger for this module
logger = logging.getLogger(__name__)

MAX_COMPLETION_TOKENS = 1024


class OpenAIAdapter(SpeechModelProvider):
    """OpenAI implementation of SpeechModelProvider.

    A client is opened per call: async views may run each request on its
    own event loop, and a pooled connection must not outlive its loop.
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        logfire_api_key: Optional[str] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url

        self.logfire = False
        if logfire_api_key:
            try:
                logfire.configure(token=logfire_api_key)
                self.logfire = True
                logger.info("Logfire configured successfully.")
            except Exception as e:
                logger.error(f"Failed to configure Logfire: {e}")
                self.logfire = False

    def _client(self) -> AsyncOpenAI:
        client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        if self.logfire:
            logfire.instrument_openai(client)
        return client

    async def transcribe(self, audio_bytes: bytes, filename: str, model: str) -> str:
        """Transcribe an audio file.

        Args:
            audio_bytes: Audio file bytes in a compatible format
            filename: Upload name; its extension tells the API the format
            model: Transcription model identifier

        Returns:
            The transcript text
        """
        async with self._client() as client:
            transcription = await client.audio.transcriptions.create(
                model=model,
                file=(filename, audio_bytes),
            )
        return transcription.text or ""

    async def complete_json(
        self, system_prompt: str, user_content: str, model: str
    ) -> str:
        """Request a JSON object from a chat model and return its raw content."""
        async with self._client() as client:
            completion = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                response_format={"type": "json_object"},
                max_completion_tokens=MAX_COMPLETION_TOKENS,
            )
        if not completion.choices:
            return "{}"
        return completion.choices[0].message.content or "{}"
