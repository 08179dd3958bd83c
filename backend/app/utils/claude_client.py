"""
Claude client used by the pipeline

Two roles share one AsyncAnthropic connection:
- "generation": streamed project output on the large model
- "summary": short completions for conversation and project summaries

Transient failures (overload, rate limits, network) are retried with
exponential backoff and jitter. A stream is only retried while nothing has
been yielded to the caller.
"""
from anthropic import AsyncAnthropic, APIStatusError, APIConnectionError, APITimeoutError
from dataclasses import dataclass
from typing import Optional, Dict, List, Any, AsyncGenerator
import asyncio
import random
import httpx
from app.core.config import settings
from app.core.exceptions import AIServiceError
from app.core.logging_config import logger

RETRYABLE_ERROR_TYPES = {"overloaded_error", "rate_limit_error", "api_error"}
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 529}
RETRYABLE_MESSAGE_HINTS = ("overload", "rate_limit", "capacity", "connection", "timeout", "network")


@dataclass(frozen=True)
class ModelRole:
    name: str
    max_tokens: int


class ClaudeClient:
    """Streams project generations and produces summaries"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        client_kwargs: Dict[str, Any] = {
            "api_key": api_key or settings.ANTHROPIC_API_KEY,
            "timeout": httpx.Timeout(
                float(settings.CLAUDE_REQUEST_TIMEOUT),
                connect=float(settings.CLAUDE_CONNECT_TIMEOUT),
            ),
            # Retries are handled here so they show up in our logs
            "max_retries": 0,
        }
        base_url = (base_url or settings.ANTHROPIC_BASE_URL).strip()
        if base_url:
            client_kwargs["base_url"] = base_url
            logger.info(f"Claude requests routed to {base_url}")

        self.async_client = AsyncAnthropic(**client_kwargs)
        self.roles = {
            "generation": ModelRole(settings.CLAUDE_GENERATION_MODEL, settings.CLAUDE_MAX_TOKENS),
            "summary": ModelRole(settings.CLAUDE_SUMMARY_MODEL, settings.CLAUDE_SUMMARY_MAX_TOKENS),
        }
        self.max_retries = settings.CLAUDE_MAX_RETRIES

    @property
    def generation_model(self) -> str:
        return self.roles["generation"].name

    @property
    def summary_model(self) -> str:
        return self.roles["summary"].name

    # ==================== Retry policy ====================

    def _is_retryable_error(self, error: Exception) -> bool:
        if isinstance(error, (APIConnectionError, APITimeoutError, httpx.TransportError)):
            return True

        if isinstance(error, APIStatusError):
            body = error.body if isinstance(error.body, dict) else {}
            error_type = (body.get("error") or {}).get("type")
            if error_type:
                return error_type in RETRYABLE_ERROR_TYPES
            return error.status_code in RETRYABLE_STATUS_CODES

        message = str(error).lower()
        return any(hint in message for hint in RETRYABLE_MESSAGE_HINTS)

    def _retry_delay(self, attempt: int) -> float:
        delay = min(settings.CLAUDE_RETRY_BASE_DELAY * (2 ** attempt), settings.CLAUDE_RETRY_MAX_DELAY)
        return delay + delay * random.uniform(0, 0.25)

    async def _backoff_or_raise(self, error: Exception, attempt: int, operation: str) -> None:
        """Sleep before the next attempt, or raise AIServiceError when out of attempts"""
        error_type = type(error).__name__
        if attempt < self.max_retries and self._is_retryable_error(error):
            delay = self._retry_delay(attempt)
            logger.warning(
                f"Claude {operation} failed [{error_type}] (attempt {attempt + 1}/{self.max_retries + 1}), "
                f"retrying in {delay:.1f}s",
                extra={"event_type": "claude_retry", "error_type": error_type, "retry_delay": delay},
            )
            await asyncio.sleep(delay)
            return

        logger.error(
            f"Claude {operation} failed: {error_type}: {error}",
            extra={"event_type": "claude_error", "error_type": error_type, "attempt": attempt + 1},
        )
        raise AIServiceError(f"Claude {operation} failed: {error}") from error

    def _request(
        self,
        role: str,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: Optional[int],
        messages: Optional[List[Dict[str, str]]],
    ) -> Dict[str, Any]:
        model = self.roles[role]
        return {
            "model": model.name,
            "max_tokens": max_tokens or model.max_tokens,
            "temperature": settings.CLAUDE_TEMPERATURE,
            "system": system_prompt or "",
            "messages": list(messages or []) + [{"role": "user", "content": prompt}],
        }

    # ==================== Requests ====================

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: str = "summary",
        max_tokens: Optional[int] = None,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """
        Single non-streaming completion

        Returns:
            Dict with the text content, model, token usage and stop reason
        """
        params = self._request(model, prompt, system_prompt, max_tokens, messages)

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.async_client.messages.create(**params)
            except Exception as e:
                await self._backoff_or_raise(e, attempt, "completion")
                continue

            usage = response.usage
            logger.log_agent_event(
                model, f"completion {response.id} (stop={response.stop_reason})",
                tokens_used=usage.input_tokens + usage.output_tokens,
            )
            return {
                "content": "".join(b.text for b in response.content if getattr(b, "type", "text") == "text"),
                "model": params["model"],
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "stop_reason": response.stop_reason,
                "id": response.id,
            }

        raise AIServiceError("Claude completion failed after retries")

    async def generate_stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: str = "generation",
        max_tokens: Optional[int] = None,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> AsyncGenerator[str, None]:
        """Yield text chunks as the model produces them"""
        params = self._request(model, prompt, system_prompt, max_tokens, messages)
        logger.info(f"Claude stream: model={params['model']}, prompt_len={len(prompt)}")

        for attempt in range(self.max_retries + 1):
            yielded = False
            try:
                async with self.async_client.messages.stream(**params) as stream:
                    async for text in stream.text_stream:
                        yielded = True
                        yield text
                    final_message = await stream.get_final_message()
            except Exception as e:
                if yielded:
                    logger.error(f"Claude stream broke after output started: {type(e).__name__}: {e}")
                    raise AIServiceError(f"Claude stream interrupted: {e}") from e
                await self._backoff_or_raise(e, attempt, "stream")
                continue

            usage = final_message.usage
            logger.log_agent_event(
                model, f"stream finished (stop={final_message.stop_reason})",
                tokens_used=usage.input_tokens + usage.output_tokens,
            )
            return

    async def summarize(self, prompt: str, system_prompt: str) -> str:
        result = await self.generate(prompt=prompt, system_prompt=system_prompt, model="summary")
        return result["content"].strip()
