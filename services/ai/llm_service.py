# services/ai/llm_service.py
"""
Thin JSON-mode chat client used by the market analyst.

Providers differ only in endpoint, auth header, request body and where the
text sits in the response, so each one is a small `ProviderClient`
subclass over a shared httpx POST. Missing credentials raise ValueError at
construction; the analyst maps that to AnalysisUnavailable.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    async def generate_json(self, *, system: str, user: str) -> str:
        """Raw model text, expected to hold one JSON object."""


@dataclass(frozen=True)
class LLMConfig:
    provider: str = "openai"  # openai | anthropic
    api_key: str = ""
    model: str = ""
    temperature: float = 0.2
    max_tokens: int = 1500
    timeout_s: float = 40.0

    @staticmethod
    def from_env() -> "LLMConfig":
        provider = (os.getenv("AI_PROVIDER") or "openai").strip().lower()
        prefix = provider.upper()
        return LLMConfig(
            provider=provider,
            api_key=os.getenv(f"{prefix}_API_KEY", ""),
            model=os.getenv(f"{prefix}_MODEL", ""),
            temperature=float(os.getenv("AI_TEMPERATURE", "0.2")),
            max_tokens=int(os.getenv("AI_MAX_TOKENS", "1500")),
            timeout_s=float(os.getenv("AI_TIMEOUT_S", "40")),
        )


# ============================================================================
# PROVIDERS
# ============================================================================

class ProviderClient:
    key_env: str = ""
    default_model: str = ""
    url: str = ""

    def __init__(self, cfg: LLMConfig):
        if not cfg.api_key:
            raise ValueError(f"Missing {self.key_env}")
        self.cfg = cfg
        self.model = cfg.model or self.default_model

    def headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def body(self, system: str, user: str) -> Dict[str, Any]:
        raise NotImplementedError

    def extract(self, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def generate_json(self, *, system: str, user: str) -> str:
        timeout = httpx.Timeout(self.cfg.timeout_s, connect=min(self.cfg.timeout_s, 5.0))
        async with httpx.AsyncClient(timeout=timeout) as client:
            r = await client.post(
                self.url,
                headers={"Content-Type": "application/json", **self.headers()},
                json=self.body(system, user),
            )
            r.raise_for_status()
            return self.extract(r.json())


class OpenAIClient(ProviderClient):
    key_env = "OPENAI_API_KEY"
    default_model = "gpt-4o-mini"
    url = "https://api.openai.com/v1/chat/completions"

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.cfg.api_key}"}

    def body(self, system: str, user: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.cfg.temperature,
            "max_tokens": self.cfg.max_tokens,
            "response_format": {"type": "json_object"},
        }

    def extract(self, data: Dict[str, Any]) -> str:
        return data["choices"][0]["message"]["content"]


class AnthropicClient(ProviderClient):
    key_env = "ANTHROPIC_API_KEY"
    default_model = "claude-3-5-sonnet-latest"
    url = "https://api.anthropic.com/v1/messages"

    def headers(self) -> Dict[str, str]:
        return {"x-api-key": self.cfg.api_key, "anthropic-version": "2023-06-01"}

    def body(self, system: str, user: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "system": system,
            "messages": [{"role": "user", "content": user}],
            "temperature": self.cfg.temperature,
            "max_tokens": self.cfg.max_tokens,
        }

    def extract(self, data: Dict[str, Any]) -> str:
        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


PROVIDERS = {
    "openai": OpenAIClient,
    "anthropic": AnthropicClient,
}


# ============================================================================
# SERVICE
# ============================================================================

def strip_code_fences(text: str) -> str:
    t = (text or "").strip()
    if not t.startswith("```"):
        return t
    lines = t.split("\n")[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


class LLMService:
    def __init__(self, cfg: Optional[LLMConfig] = None, client: Optional[LLMClient] = None):
        self.cfg = cfg or LLMConfig.from_env()
        if client is None:
            cls = PROVIDERS.get(self.cfg.provider)
            if cls is None:
                raise ValueError(f"Unknown AI_PROVIDER: {self.cfg.provider}")
            client = cls(self.cfg)
        self.client: LLMClient = client

    @staticmethod
    def parse_json(text: str) -> Dict[str, Any]:
        data = json.loads(strip_code_fences(text))
        if not isinstance(data, dict):
            raise ValueError("LLM response is not a JSON object")
        return data

    async def generate_json(self, *, system: str, user: str) -> Dict[str, Any]:
        raw = await self.client.generate_json(system=system, user=user)
        return self.parse_json(raw)


_llm_singleton: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    global _llm_singleton
    if _llm_singleton is None:
        _llm_singleton = LLMService()
        logger.info("llm_service_ready provider=%s", _llm_singleton.cfg.provider)
    return _llm_singleton
