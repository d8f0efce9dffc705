from __future__ import annotations

import json
from typing import Any, Callable, Optional

import aiohttp
from loguru import logger

from hotmic.config import Config
from hotmic.data.settings_store import PromptSettings


WARNING_MESSAGE = "Post-processing failed, using raw transcript"


class PostProcessor:
    """Optional LLM rewrite of a raw transcript.

    Never fails the session: any error is logged, reported through
    ``on_warning`` and the input text is returned unchanged.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        url: str = Config.CHAT_COMPLETIONS_URL,
        model: str = Config.POST_PROCESS_MODEL,
        temperature: float = Config.POST_PROCESS_TEMPERATURE,
        max_tokens: int = Config.POST_PROCESS_MAX_TOKENS,
        timeout_secs: float = Config.POST_PROCESS_TIMEOUT_SECS,
    ):
        self._session = session
        self.url = url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_secs = timeout_secs

    def build_payload(self, text: str, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": text},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def rewrite(
        self,
        text: str,
        prompt_settings: PromptSettings,
        api_key: str,
        *,
        on_warning: Optional[Callable[[str], None]] = None,
    ) -> str:
        if not prompt_settings.enabled:
            return text
        if not api_key or not text or not text.strip():
            return text

        try:
            if self._session is not None:
                result = await self._complete(self._session, text, prompt_settings.prompt, api_key)
            else:
                async with aiohttp.ClientSession() as session:
                    result = await self._complete(session, text, prompt_settings.prompt, api_key)
        except Exception as e:
            logger.warning(f"Post-processing failed: {e}")
            if on_warning is not None:
                on_warning(WARNING_MESSAGE)
            return text
        return result

    async def _complete(self, session: Any, text: str, prompt: str, api_key: str) -> str:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        async with session.post(
            self.url,
            json=self.build_payload(text, prompt),
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout_secs),
        ) as resp:
            raw = await resp.text()
            if resp.status >= 400:
                raise RuntimeError(f"Chat completion failed ({resp.status}): {raw[:500]}")

        payload = json.loads(raw)
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise RuntimeError("Chat completion response has no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise RuntimeError("Chat completion returned empty content")
        return content.strip()
