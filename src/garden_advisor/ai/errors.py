"""Error taxonomy shared by every AI provider adapter.

All of these propagate out of the per-zone job so the queue's retry policy
decides what happens next; adapters never retry on their own.
"""

from __future__ import annotations

from typing import Any

SNIPPET_MAX_CHARS = 200


class AnalysisError(Exception):
    """Base class for provider and output-contract failures."""

    def __init__(self, message: str, *, provider: str) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderRequestFailed(AnalysisError):
    """Upstream call failed at the transport or HTTP level."""

    def __init__(self, message: str, *, provider: str, status_code: int | None = None) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderEmptyResponse(AnalysisError):
    """Upstream answered without any text payload."""


class InvalidOutputJSON(AnalysisError):
    """Extracted text did not parse as JSON."""

    def __init__(self, text: str, *, provider: str) -> None:
        self.snippet = text[:SNIPPET_MAX_CHARS]
        super().__init__(f"{provider} returned invalid JSON: {self.snippet}", provider=provider)


class SchemaViolation(AnalysisError):
    """Parsed JSON does not satisfy the analysis output contract."""

    def __init__(self, message: str, *, provider: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, provider=provider)
        self.errors = list(errors or [])
