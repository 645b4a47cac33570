"""Primary provider adapter over the Anthropic Messages REST API."""

from __future__ import annotations

import logging
import re
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

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
_DATA_URL_RE = re.compile(r"^data:(image/[a-z+]+);base64,(.+)$", re.DOTALL)


class ClaudeProvider:
    name: ProviderName = "claude"

    def __init__(
        self,
        *,
        model: str = "claude-sonnet-4-20250514",
        base_url: str = "https://api.anthropic.com/v1",
        analysis_max_tokens: int = 4096,
        chat_max_tokens: int = 2048,
        timeout_s: float = 60.0,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.analysis_max_tokens = analysis_max_tokens
        self.chat_max_tokens = chat_max_tokens
        self.timeout_s = timeout_s

    def analyze(
        self, context: AnalysisContext, credential: str
    ) -> tuple[AnalysisResult, TokenUsage]:
        content: list[dict[str, Any]] = []
        for photo in context.photos:
            match = _DATA_URL_RE.match(photo.data_url)
            if match is None:
                logger.warning("claude_analyze event=photo_skipped reason=not_base64_data_url")
                continue
            content.append(_image_block(match.group(1), match.group(2)))
        content.append({"type": "text", "text": ANALYSIS_USER_INSTRUCTION})

        payload = {
            "model": self.model,
            "max_tokens": self.analysis_max_tokens,
            "system": build_analysis_system_prompt(context),
            "messages": [{"role": "user", "content": content}],
        }
        response_json = self._post_json(payload, credential)
        text = self._extract_text(response_json)
        result = parse_analysis_text(text, provider=self.name)
        return result, self._extract_usage(response_json)

    def chat(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> ChatResult:
        payload = self._chat_payload(messages, system_prompt, image)
        response_json = self._post_json(payload, credential)
        text = self._extract_text(response_json)
        if text is None:
            raise ProviderEmptyResponse("claude returned no text content", provider=self.name)
        return ChatResult(content=text, usage=self._extract_usage(response_json))

    def chat_stream(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> Iterator[ChatChunk]:
        payload = self._chat_payload(messages, system_prompt, image)
        payload["stream"] = True
        input_tokens = 0
        output_tokens = 0
        for event in self._stream_events(payload, credential):
            kind = event.get("type")
            if kind == "message_start":
                usage = event.get("message", {}).get("usage", {})
                input_tokens = int(usage.get("input_tokens", 0) or 0)
                output_tokens = int(usage.get("output_tokens", 0) or 0)
            elif kind == "content_block_delta":
                delta = event.get("delta", {})
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield ChatChunk(text=delta["text"])
            elif kind == "message_delta":
                usage = event.get("usage", {})
                output_tokens = int(usage.get("output_tokens", output_tokens) or 0)
        yield ChatChunk(done=True, usage=TokenUsage(input=input_tokens, output=output_tokens))

    def _chat_payload(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        image: ImageAttachment | None,
    ) -> dict[str, Any]:
        wire_messages: list[dict[str, Any]] = []
        last_index = len(messages) - 1
        for index, message in enumerate(messages):
            # The image rides on the final user turn only.
            if image is not None and message.role == "user" and index == last_index:
                wire_messages.append(
                    {
                        "role": "user",
                        "content": [
                            _image_block(image.media_type, image.data_base64),
                            {"type": "text", "text": message.content},
                        ],
                    }
                )
            else:
                wire_messages.append({"role": message.role, "content": message.content})
        return {
            "model": self.model,
            "max_tokens": self.chat_max_tokens,
            "system": system_prompt,
            "messages": wire_messages,
        }

    def _headers(self, credential: str) -> dict[str, str]:
        return {"x-api-key": credential, "anthropic-version": ANTHROPIC_VERSION}

    def _post_json(self, payload: dict[str, Any], credential: str) -> dict[str, Any]:
        return post_json(
            f"{self.base_url}/messages",
            payload,
            headers=self._headers(credential),
            timeout_s=self.timeout_s,
            provider=self.name,
        )

    def _stream_events(self, payload: dict[str, Any], credential: str) -> Iterator[dict[str, Any]]:
        return stream_sse(
            f"{self.base_url}/messages",
            payload,
            headers=self._headers(credential),
            timeout_s=self.timeout_s,
            provider=self.name,
        )

    @staticmethod
    def _extract_text(response_json: dict[str, Any]) -> str | None:
        for block in response_json.get("content", []) or []:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str):
                    return text
        return None

    @staticmethod
    def _extract_usage(response_json: dict[str, Any]) -> TokenUsage:
        usage = response_json.get("usage") or {}
        return TokenUsage(
            input=int(usage.get("input_tokens", 0) or 0),
            output=int(usage.get("output_tokens", 0) or 0),
        )


def _image_block(media_type: str, data: str) -> dict[str, Any]:
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }
