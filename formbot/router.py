"""
FORMBOT Router — AI completion through LiteLLM

Sends a system/user prompt pair to the configured Azure OpenAI
deployment and returns the parsed JSON object. Handles retries,
usage tracking and structured logging.

An unconfigured router is a normal state: `available` is False and
callers go straight to their deterministic fallback.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

import litellm
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from formbot.config_loader import AIConfig


SYSTEM_PROMPT = """You are an expert web performance engineer specializing in AEM Forms.
Generate ONLY valid JSON responses. Be concise and actionable.
Focus on performance impact and Core Web Vitals (FCP, LCP, TBT, INP)."""


class RouterError(Exception):
    """The AI call failed or returned something unusable."""


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    call_count: int = 0
    failures: int = 0

    def record(self, response: Any) -> None:
        usage = getattr(response, "usage", None)
        if usage:
            self.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
            self.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
            self.total_tokens += getattr(usage, "total_tokens", 0) or 0
        self.call_count += 1

    def summary(self) -> dict:
        return {
            "total_tokens": self.total_tokens,
            "call_count": self.call_count,
            "failures": self.failures,
        }


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = [l for l in cleaned.split("\n") if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned


class Router:
    """
    Azure OpenAI router.

    Callers use `router.complete_json(system_prompt, user_prompt)` and get
    a dict back, or a RouterError.
    """

    def __init__(self, config: AIConfig):
        self.config = config
        self.usage = UsageRecord()
        litellm.suppress_debug_info = True

    @property
    def available(self) -> bool:
        return bool(self.config.api_key)

    @property
    def model(self) -> str:
        return f"azure/{self.config.deployment}"

    def complete_json(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        """Run one completion and parse it as a JSON object.

        Raises:
            RouterError: Not configured, transport failure after retries,
                or a response that is not a JSON object.
        """
        if not self.available:
            raise RouterError("AI endpoint is not configured")

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        try:
            content = self._complete(messages)
        except RouterError:
            self.usage.failures += 1
            raise
        except Exception as e:
            self.usage.failures += 1
            raise RouterError(f"AI call failed: {e}") from e

        try:
            parsed = json.loads(_strip_fences(content))
        except json.JSONDecodeError as e:
            self.usage.failures += 1
            logger.warning(f"[ROUTER] Response was not valid JSON: {content[:200]}")
            raise RouterError("AI response was not valid JSON") from e

        if not isinstance(parsed, dict):
            self.usage.failures += 1
            raise RouterError("AI response was not a JSON object")

        return parsed

    @retry(
        retry=retry_if_exception_type((litellm.exceptions.APIConnectionError, litellm.exceptions.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    def _complete(self, messages: list[dict[str, str]]) -> str:
        start = time.monotonic()
        logger.debug(f"[ROUTER] → {self.model} ({len(messages)} messages)")

        response = litellm.completion(
            model=self.model,
            messages=messages,
            api_base=self.config.endpoint.rstrip("/"),
            api_version=self.config.api_version,
            api_key=self.config.api_key,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            response_format={"type": "json_object"},
        )
        elapsed_ms = int((time.monotonic() - start) * 1000)

        self.usage.record(response)
        content = response.choices[0].message.content or ""

        logger.debug(
            f"[ROUTER] complete — {self.usage.total_tokens} tokens, "
            f"{elapsed_ms}ms"
        )
        if not content.strip():
            raise RouterError("AI response was empty")
        return content
