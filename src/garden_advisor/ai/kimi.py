"""Fallback provider adapter over Moonshot's OpenAI-compatible chat completions API."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from garden_advisor.ai.errors import ProviderEmptyResponse
from garden_advisor.ai.models import (
    AnalysisContext,
    ChatChunk,
    ChatMessage,
    ChatResult,
    ImageAttachment,
    ProviderName,
    TokenUsage,
)
from garden_advisor.ai.prompt import ANALYSIS_USER_INSTRUCTION, build_analysis_system_prompt
from garden_advisor.ai.provider import parse_analysis_text, post_json, stream_sse
from garden_advisor.ai.schemas import AnalysisResult


class KimiProvider:
    name: ProviderName = "kimi"

    def __init__(
        self,
        *,
        model: str = "moonshot-v1-8k",
        base_url: str = "https://api.moonshot.ai/v1",
        timeout_s: float = 60.0,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def analyze(
        self, context: AnalysisContext, credential: str
    ) -> tuple[AnalysisResult, TokenUsage]:
        parts: list[dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": photo.data_url}} for photo in context.photos
        ]
        parts.append({"type": "text", "text": ANALYSIS_USER_INSTRUCTION})
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": build_analysis_system_prompt(context)},
                {"role": "user", "content": parts},
            ],
            "response_format": {"type": "json_object"},
        }
        response_json = self._post_json(payload, credential)
        result = parse_analysis_text(self._extract_content(response_json), provider=self.name)
        return result, self._extract_usage(response_json.get("usage"))

    def chat(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> ChatResult:
        payload = {"model": self.model, "messages": _wire_messages(messages, system_prompt, image)}
        response_json = self._post_json(payload, credential)
        content = self._extract_content(response_json)
        if not content:
            raise ProviderEmptyResponse("kimi returned no content", provider=self.name)
        return ChatResult(content=content, usage=self._extract_usage(response_json.get("usage")))

    def chat_stream(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> Iterator[ChatChunk]:
        payload = {
            "model": self.model,
            "messages": _wire_messages(messages, system_prompt, image),
            "stream": True,
        }
        usage = TokenUsage()
        for event in self._stream_events(payload, credential):
            choices = event.get("choices") or []
            choice = choices[0] if choices else {}
            delta = (choice.get("delta") or {}).get("content")
            if delta:
                yield ChatChunk(text=delta)
            # Moonshot reports usage on the final choice rather than the chunk root.
            raw_usage = event.get("usage") or choice.get("usage")
            if raw_usage:
                usage = self._extract_usage(raw_usage)
        yield ChatChunk(done=True, usage=usage)

    def _headers(self, credential: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential}"}

    def _post_json(self, payload: dict[str, Any], credential: str) -> dict[str, Any]:
        return post_json(
            f"{self.base_url}/chat/completions",
            payload,
            headers=self._headers(credential),
            timeout_s=self.timeout_s,
            provider=self.name,
        )

    def _stream_events(self, payload: dict[str, Any], credential: str) -> Iterator[dict[str, Any]]:
        return stream_sse(
            f"{self.base_url}/chat/completions",
            payload,
            headers=self._headers(credential),
            timeout_s=self.timeout_s,
            provider=self.name,
        )

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str | None:
        choices = response_json.get("choices") or []
        if not choices:
            return None
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                item.get("text", "") for item in content if isinstance(item, dict)
            ) or None
        return None

    @staticmethod
    def _extract_usage(raw: Any) -> TokenUsage:
        if not isinstance(raw, dict):
            return TokenUsage()
        return TokenUsage(
            input=int(raw.get("prompt_tokens", 0) or 0),
            output=int(raw.get("completion_tokens", 0) or 0),
        )


def _wire_messages(
    messages: Sequence[ChatMessage],
    system_prompt: str,
    image: ImageAttachment | None,
) -> list[dict[str, Any]]:
    wire: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    last_index = len(messages) - 1
    for index, message in enumerate(messages):
        if image is not None and message.role == "user" and index == last_index:
            data_url = f"data:{image.media_type};base64,{image.data_base64}"
            wire.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": data_url}},
                        {"type": "text", "text": message.content},
                    ],
                }
            )
        else:
            wire.append({"role": message.role, "content": message.content})
    return wire
