"""AI provider adapters and the structured output contract."""

from garden_advisor.ai.claude import ClaudeProvider
from garden_advisor.ai.kimi import KimiProvider
from garden_advisor.ai.provider import AIProvider
from garden_advisor.ai.selection import ProviderSelection, select_provider

__all__ = ["AIProvider", "ClaudeProvider", "KimiProvider", "ProviderSelection", "select_provider"]
