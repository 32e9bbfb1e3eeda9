"""
Chat completions client for the generative backend.
Uses an OpenAI-compatible endpoint with bearer auth.
"""
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

from .config import ConfigurationError
from .types import Usage

LOG = logging.getLogger("lve360.llm_client")


class BackendError(RuntimeError):
    """The generative backend was unreachable or returned an unusable response."""


@dataclass
class ChatResult:
    text: str
    model: str
    usage: Usage


class ChatBackend:
    """
    Generative backend: ``generate(messages, model) -> ChatResult``.

    Credentials are read lazily so that constructing the backend never
    requires OPENAI_API_KEY; ``ensure_configured`` is the fail-fast check.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 120.0,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self.timeout_s = timeout_s
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key or os.getenv("OPENAI_API_KEY")

    @property
    def base_url(self) -> str:
        return (self._base_url or os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1").rstrip("/")

    def ensure_configured(self) -> None:
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError("Generative backend not configured: missing OPENAI_API_KEY")

    def generate(self, messages: List[Dict[str, str]], model: str) -> ChatResult:
        """
        Run one chat completion.

        Raises:
            ConfigurationError: credentials missing
            BackendError: transport errors, non-2xx responses, malformed payloads
        """
        self.ensure_configured()

        url = f"{self.base_url}/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key.strip()}",
        }
        payload = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                response = client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            LOG.error(f"Chat error: {e.response.status_code} - {e.response.text[:200]}")
            raise BackendError(f"Chat completion failed: {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            LOG.error(f"Chat error: {str(e)[:200]}")
            raise BackendError(f"Chat completion failed: {e}") from e

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise BackendError("Chat completion returned no choices") from e

        raw_usage = data.get("usage") or {}
        usage = Usage(
            prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
            completion_tokens=int(raw_usage.get("completion_tokens") or 0),
            total_tokens=int(raw_usage.get("total_tokens") or 0),
        )
        return ChatResult(text=text.strip(), model=data.get("model") or model, usage=usage)
