from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp  # type: ignore[reportMissingImports]

from .models import RouteStep

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly driving companion. Rewrite the navigation instruction "
    "you are given as one short, natural sentence suitable for reading aloud "
    "to a driver. Keep street names and distances. Reply with the sentence only."
)


class DeepSeekInstructionFormatter:
    """Humanizes step instructions through an OpenAI-compatible chat API.

    Never raises: any failure hands back the step unchanged.
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = "https://api.deepseek.com/v1/chat/completions",
        model: str = "deepseek-chat",
        session: Optional[aiohttp.ClientSession] = None,
        timeout_s: float = 8.0,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._model = model
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def format_navigation_instruction(self, step: RouteStep) -> Dict[str, Any]:
        original = step.to_dict()
        if not self._api_key:
            return original
        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"{step.instruction} ({step.distance or 'unknown distance'})"},
            ],
            "max_tokens": 60,
            "temperature": 0.3,
        }
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        try:
            session = await self._get_session()
            async with session.post(self._api_url, json=body, headers=headers) as resp:
                resp.raise_for_status()
                data = await resp.json()
            text = data["choices"][0]["message"]["content"].strip()
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Instruction humanizer failed: %s", exc)
            return original
        if not text:
            return original
        return {**original, "instruction": text, "raw_instruction": step.instruction}
