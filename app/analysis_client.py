from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

import httpx

from .config import Settings
from .prompts import SYSTEM_PROMPT, build_user_prompt


class AnalysisClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class CompletionResult:
    content: str
    model: str
    total_tokens: Optional[int] = None


def _normalize_base_url(raw: str) -> str:
    return raw.rstrip("/")


def _extract_total_tokens(body: Mapping[str, Any]) -> Optional[int]:
    usage = body.get("usage")
    if not isinstance(usage, dict):
        return None
    value = usage.get("total_tokens")
    if isinstance(value, int) and value >= 0:
        return value
    return None


class AnalysisClient:
    """Thin client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_s: float = 180.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = _normalize_base_url(base_url)
        self.model = model
        self._api_key = api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=httpx.Timeout(timeout_s))

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalysisClient":
        return cls(
            base_url=settings.analysis_base_url,
            api_key=settings.analysis_api_key,
            model=settings.analysis_model,
            timeout_s=settings.analysis_timeout_s,
        )

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def analyze(self, batch_payload: Sequence[Mapping[str, Any]]) -> CompletionResult:
        if not self.base_url:
            raise AnalysisClientError("ANALYSIS_BASE_URL is not configured")
        if not batch_payload:
            raise AnalysisClientError("analysis request requires at least one row")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(batch_payload)},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        url = f"{self.base_url}/chat/completions"

        try:
            response = self._http.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise AnalysisClientError(f"analysis HTTP request failed: {exc}") from exc

        if response.status_code != 200:
            detail = response.text.strip()
            if len(detail) > 400:
                detail = detail[:400]
            raise AnalysisClientError(
                f"analysis service returned {response.status_code}: {detail}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise AnalysisClientError("analysis response is not JSON") from exc
        if not isinstance(body, dict):
            raise AnalysisClientError("analysis response is not a JSON object")

        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            raise AnalysisClientError("analysis response missing 'choices'")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise AnalysisClientError("analysis response missing message content")

        return CompletionResult(
            content=content,
            model=str(body.get("model") or self.model),
            total_tokens=_extract_total_tokens(body),
        )
