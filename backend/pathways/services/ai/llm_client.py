"""
Async client for the generative-language oracle.

Design constraints:
- No vendor SDKs: plain httpx against an OpenAI-compatible /chat/completions API
- Every call goes through a circuit breaker
- Errors propagate; each agent owns its fallback
"""
import time
from typing import Any, Dict, List, Optional

import httpx

from pathways.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from pathways.core.config import LLMSettings
from pathways.core.errors import PathwayError
from pathways.core.logging import get_logger
from pathways.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_tokens_and_cost,
)

logger = get_logger(__name__)


class LLMUnavailableError(PathwayError, RuntimeError):
    """Raised when no API key is configured."""


class LLMClient:
    """Async HTTP client for oracle calls."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 20.0,
        cost_per_1k_tokens: float = 0.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="llm")

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "LLMClient":
        return cls(
            api_base=settings.api_base,
            api_key=settings.api_key,
            model=settings.model,
            timeout_seconds=settings.timeout_seconds,
            cost_per_1k_tokens=settings.cost_per_1k_tokens,
        )

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(f"{self.api_base}{path}", headers=headers, json=json_payload)
            response.raise_for_status()
            return response

    async def chat(
        self,
        agent: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 512,
        temperature: float = 0.0,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Call the chat completion endpoint.

        Args:
            agent: Logical agent name ("classifier", "verifier", ...) for metrics and logs
            messages: OpenAI-style chat messages
            max_tokens: Max tokens for the completion
            temperature: Sampling temperature
            response_format: Optional response_format, e.g. {"type": "json_object"}

        Returns:
            Raw JSON response from the API.
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise LLMUnavailableError("LLM API key not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        start = time.time()
        try:
            response: httpx.Response = await self.circuit_breaker.call_async(
                self._post,
                "/chat/completions",
                json_payload=payload,
            )
        except CircuitBreakerOpenError:
            record_llm_error(agent, "circuit_open")
            logger.warning("llm_circuit_open", agent=agent)
            raise
        except httpx.TimeoutException as exc:
            record_llm_error(agent, "timeout")
            logger.warning("llm_timeout", agent=agent, error=str(exc), error_type=type(exc).__name__)
            raise
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning("llm_http_error", agent=agent, error=str(exc), error_type=type(exc).__name__)
            raise
        finally:
            record_llm_request(agent, self.model, (time.time() - start) * 1000.0)

        data = response.json()

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = input_tokens + output_tokens
        cost_usd = (total_tokens / 1000.0) * self.cost_per_1k_tokens if self.cost_per_1k_tokens > 0 else 0.0

        record_llm_tokens_and_cost(
            agent=agent,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
        )
        return data

    async def complete(
        self,
        agent: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        """Single-turn completion; returns the assistant message text."""
        data = await self.chat(
            agent=agent,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
            response_format={"type": "json_object"} if json_mode else None,
        )
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""
