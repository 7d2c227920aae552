"""Client for the external reasoning service (OpenAI-compatible, Groq by default)."""
from __future__ import annotations

import json
from typing import Any

from jobscan.config import Settings
from jobscan.log import get_logger
from jobscan.retry import retry

log = get_logger(__name__)


class ReasoningError(RuntimeError):
    """The reasoning service was unavailable or returned something unusable."""


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the first balanced ``{...}`` region in ``text``.

    Models like to wrap their JSON in prose or code fences, and the prose can
    itself contain stray braces, so this walks the string tracking depth and
    string literals instead of slicing between the first ``{`` and last ``}``.
    """
    if not text:
        raise ReasoningError("empty response")
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start:i + 1]
                    try:
                        value = json.loads(candidate)
                    except json.JSONDecodeError:
                        break
                    if isinstance(value, dict):
                        return value
                    break
        start = text.find("{", start + 1)
    raise ReasoningError("no JSON object found in response")


class ReasoningClient:
    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.reasoning_api_key
        self.base_url = settings.reasoning_base_url
        self.model = settings.reasoning_model
        self.timeout = settings.reasoning_timeout
        self._client = None

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            # Retries are ours; the SDK's own would multiply the wait.
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    @retry(max_attempts=2, base_delay=2.0, give_up_after=10.0)
    def _call(self, prompt: str, max_tokens: int, temperature: float) -> str:
        resp = self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return (resp.choices[0].message.content or "").strip()

    def complete(self, prompt: str, *, max_tokens: int = 1024, temperature: float = 0.2) -> str:
        if not self.available:
            raise ReasoningError("no reasoning-service credential configured")
        try:
            text = self._call(prompt, max_tokens, temperature)
        except Exception as exc:
            raise ReasoningError(f"reasoning call failed: {exc}") from exc
        if not text:
            raise ReasoningError("empty response")
        return text

    def complete_json(self, prompt: str, **kwargs: Any) -> dict[str, Any]:
        return extract_json_object(self.complete(prompt, **kwargs))
