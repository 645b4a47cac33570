"""Provider contract plus the transport and parsing helpers both adapters share."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator, Sequence
from typing import Any, Protocol
from urllib import error, request

from garden_advisor.ai.errors import InvalidOutputJSON, ProviderEmptyResponse, ProviderRequestFailed
from garden_advisor.ai.models import (
    AnalysisContext,
    ChatChunk,
    ChatMessage,
    ChatResult,
    ImageAttachment,
    ProviderName,
    TokenUsage,
)
from garden_advisor.ai.schemas import AnalysisResult, validate_analysis_payload

logger = logging.getLogger(__name__)

ERROR_BODY_MAX_CHARS = 400
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class AIProvider(Protocol):
    """Uniform call contract implemented by every provider adapter."""

    name: ProviderName
    model: str

    def analyze(
        self, context: AnalysisContext, credential: str
    ) -> tuple[AnalysisResult, TokenUsage]: ...

    def chat(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> ChatResult: ...

    def chat_stream(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> Iterator[ChatChunk]: ...


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_analysis_text(text: str | None, *, provider: str) -> AnalysisResult:
    """Turn the raw model text into a validated AnalysisResult."""
    if not text or not text.strip():
        raise ProviderEmptyResponse(f"{provider} returned no text content", provider=provider)
    candidate = strip_code_fences(text)
    if not candidate:
        raise ProviderEmptyResponse(f"{provider} returned an empty code block", provider=provider)
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise InvalidOutputJSON(candidate, provider=provider) from exc
    return validate_analysis_payload(payload, provider=provider)


def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout_s: float,
    provider: str,
) -> dict[str, Any]:
    req = request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        method="POST",
        headers={"Content-Type": "application/json", **headers},
    )
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            body = response.read().decode("utf-8")
    except error.HTTPError as exc:
        raise _http_failure(exc, provider=provider) from exc
    except (TimeoutError, error.URLError) as exc:
        raise ProviderRequestFailed(f"{provider} request failed: {exc}", provider=provider) from exc
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ProviderRequestFailed(
            f"{provider} returned a non-JSON body: {body[:ERROR_BODY_MAX_CHARS]}",
            provider=provider,
        ) from exc
    if not isinstance(parsed, dict):
        raise ProviderRequestFailed(f"{provider} returned a non-object body", provider=provider)
    return parsed


def stream_sse(
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout_s: float,
    provider: str,
) -> Iterator[dict[str, Any]]:
    """Yield decoded ``data:`` events from a server-sent-events response."""
    req = request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "text/event-stream", **headers},
    )
    try:
        response = request.urlopen(req, timeout=timeout_s)
    except error.HTTPError as exc:
        raise _http_failure(exc, provider=provider) from exc
    except (TimeoutError, error.URLError) as exc:
        raise ProviderRequestFailed(f"{provider} stream failed: {exc}", provider=provider) from exc
    with response:
        for raw_line in response:
            line = raw_line.decode("utf-8").strip()
            if not line.startswith("data:"):
                continue
            data = line[len("data:") :].strip()
            if data == "[DONE]":
                return
            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("provider_stream event=bad_chunk provider=%s", provider)
                continue
            if isinstance(event, dict):
                yield event


def _http_failure(exc: error.HTTPError, *, provider: str) -> ProviderRequestFailed:
    raw_error = exc.read().decode("utf-8", errors="replace")[:ERROR_BODY_MAX_CHARS]
    return ProviderRequestFailed(
        f"{provider} API request failed status={exc.code}: {raw_error}",
        provider=provider,
        status_code=exc.code,
    )
