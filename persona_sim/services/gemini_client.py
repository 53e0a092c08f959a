from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any

import aiohttp

from ..errors import UpstreamUnavailable

logger = logging.getLogger("persona_sim.services")

RETRIABLE_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        base_url: str = "https://generativelanguage.googleapis.com",
        retries: int = 3,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.max_output_tokens: int | None = int(max_output_tokens) if int(max_output_tokens) > 0 else None
        self.retries = max(1, int(retries))
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers={"x-goog-api-key": self.api_key})

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    @staticmethod
    def build_payload(system_prompt: str, turns: list[tuple[str, str]]) -> dict[str, Any]:
        """Map ``(role, text)`` turns onto Gemini ``contents``.

        ``trainee`` turns become ``user``; the customer persona speaks as ``model``.
        """
        contents: list[dict[str, Any]] = []
        for role, text in turns:
            text = str(text or "").strip()
            if not text:
                continue
            mapped_role = "model" if role == "customer" else "user"
            contents.append({"role": mapped_role, "parts": [{"text": text}]})

        payload: dict[str, Any] = {"contents": contents}
        if system_prompt.strip():
            payload["systemInstruction"] = {"parts": [{"text": system_prompt.strip()}]}
        return payload

    async def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = self._endpoint()
        last_error: Exception | None = None

        for attempt in range(1, self.retries + 1):
            try:
                async with self._session.post(url, json=payload) as response:
                    text = await response.text()
                    if response.status == 200:
                        return json.loads(text)

                    if response.status not in RETRIABLE_STATUSES:
                        raise UpstreamUnavailable(f"Gemini error {response.status}: {text[:300]}")
                    last_error = RuntimeError(f"Gemini retriable error {response.status}: {text[:300]}")
            except asyncio.CancelledError:
                raise
            except UpstreamUnavailable:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
                last_error = exc

            if attempt < self.retries:
                logger.warning("Gemini attempt %s/%s failed: %s", attempt, self.retries, last_error)
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        raise UpstreamUnavailable(f"Gemini request failed after retries: {last_error}")

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            prompt_feedback = data.get("promptFeedback") or {}
            block_reason = prompt_feedback.get("blockReason")
            if block_reason:
                raise UpstreamUnavailable(f"Gemini blocked response: {block_reason}")
            raise UpstreamUnavailable("Gemini returned no candidates")

        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        chunks = [part["text"].strip() for part in parts if isinstance(part.get("text"), str) and part["text"].strip()]

        joined = "\n".join(chunks).strip()
        if joined:
            return joined

        finish_reason = first.get("finishReason")
        if finish_reason:
            raise UpstreamUnavailable(f"Gemini empty response (finishReason={finish_reason})")
        raise UpstreamUnavailable("Gemini empty response")

    async def generate(
        self,
        system_prompt: str,
        turns: list[tuple[str, str]],
        temperature: float | None = None,
    ) -> str:
        payload = self.build_payload(system_prompt, turns)
        generation_config: dict[str, Any] = {
            "temperature": self.temperature if temperature is None else temperature,
        }
        if self.max_output_tokens is not None:
            generation_config["maxOutputTokens"] = self.max_output_tokens
        payload["generationConfig"] = generation_config
        data = await self._request(payload)
        return self._extract_text(data)
