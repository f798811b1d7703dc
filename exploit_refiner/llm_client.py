"""
LLM Client for the refinement engine - Venice (OpenAI-compatible) integration
"""

import asyncio
import aiohttp
import time
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass

from .config import Config


class GenerationServiceError(Exception):
    """The generation service was unreachable, refused the request or returned nothing usable"""


@dataclass
class LLMUsage:
    """Token usage tracking"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMClient:
    """
    Minimal chat-completions client

    Tracks usage, spaces requests by a minimum interval and enforces a request
    budget so a runaway parallel run cannot hammer the service.
    """

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.base_url = config.generation_base_url.rstrip("/")
        self.api_key = config.generation_api_key

        # Usage tracking
        self.request_count = 0
        self.total_tokens = 0
        self.last_usage = LLMUsage()

        # Rate limiting, shared by all sessions using this client
        self.last_request_time = 0.0
        self.min_request_interval = config.min_request_interval
        self._rate_lock = asyncio.Lock()

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> str:
        """
        Generate text using specified model

        Args:
            system_prompt: System instruction for the model
            user_prompt: User query/request
            model: Model to use (defaults to config.default_model)
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Maximum tokens to generate

        Returns:
            Generated text response

        Raises:
            GenerationServiceError: on transport, HTTP, budget or empty-content failures
        """

        model = model or self.config.default_model
        max_tokens = max_tokens or self.config.max_tokens
        temperature = self.config.temperature if temperature is None else temperature

        if not self.api_key:
            raise GenerationServiceError("Generation service API key is not configured. Set VENICE_API_KEY.")

        if self.request_count >= self.config.max_requests_per_run:
            raise GenerationServiceError(f"Request budget exhausted: {self.request_count} requests")

        await self._rate_limit()

        start_time = time.time()

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
            "venice_parameters": {"include_venice_system_prompt": False}
        }
        payload.update(kwargs)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
                ) as response:

                    if response.status != 200:
                        error_text = await response.text()
                        raise GenerationServiceError(f"Generation API error {response.status}: {error_text[:500]}")

                    result = await response.json()

        except GenerationServiceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"LLM request failed: {type(e).__name__}: {str(e)}")
            raise GenerationServiceError(f"Generation service unreachable: {type(e).__name__}: {e}") from e

        self.request_count += 1
        content = self._extract_content(result, model)
        self._track_usage(result)

        self.logger.info(
            f"LLM request completed: {model}, "
            f"tokens: {self.last_usage.total_tokens}, "
            f"time: {time.time() - start_time:.1f}s"
        )

        return content

    def _extract_content(self, result: Dict[str, Any], model: str) -> str:
        """Pull message content out of a completion, refusing empty answers"""
        self.logger.debug(f"Full API response: {result}")

        choices = result.get("choices") if isinstance(result, dict) else None
        if not choices:
            raise GenerationServiceError(f"No response choices returned from API. Response: {str(result)[:500]}")

        message = choices[0].get("message") or {}
        content = message.get("content") or ""

        if not content.strip():
            self.logger.warning(f"Empty response from model {model}")
            raise GenerationServiceError("Model returned empty response")

        return content

    def _track_usage(self, result: Dict[str, Any]):
        usage_data = result.get("usage") or {}
        self.last_usage = LLMUsage(
            prompt_tokens=usage_data.get("prompt_tokens", 0),
            completion_tokens=usage_data.get("completion_tokens", 0),
            total_tokens=usage_data.get("total_tokens", 0)
        )
        self.total_tokens += self.last_usage.total_tokens

    async def _rate_limit(self):
        """Simple rate limiting to avoid hitting API limits"""
        async with self._rate_lock:
            current_time = time.time()
            time_since_last = current_time - self.last_request_time

            if time_since_last < self.min_request_interval:
                await asyncio.sleep(self.min_request_interval - time_since_last)

            self.last_request_time = time.time()

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get usage statistics"""
        return {
            "total_requests": self.request_count,
            "total_tokens": self.total_tokens,
            "last_request_tokens": self.last_usage.total_tokens
        }
