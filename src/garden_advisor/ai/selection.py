"""Provider selection: primary credential first, fallback second, otherwise skip."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from garden_advisor.ai.models import ProviderName
from garden_advisor.ai.provider import AIProvider

logger = logging.getLogger(__name__)

PROVIDER_ORDER: tuple[ProviderName, ...] = ("claude", "kimi")

CredentialLookup = Callable[[ProviderName], str | None]


@dataclass(frozen=True)
class ProviderSelection:
    provider: AIProvider | None
    credential: str | None
    model_used: ProviderName | None

    @property
    def skipped(self) -> bool:
        return self.provider is None


SKIPPED = ProviderSelection(provider=None, credential=None, model_used=None)


def select_provider(
    lookup: CredentialLookup,
    providers: Mapping[ProviderName, AIProvider],
) -> ProviderSelection:
    """Walk PROVIDER_ORDER and return the first provider the user holds a credential for."""
    for name in PROVIDER_ORDER:
        provider = providers.get(name)
        if provider is None:
            continue
        credential = lookup(name)
        if credential:
            return ProviderSelection(provider=provider, credential=credential, model_used=name)
        logger.debug("provider_selection event=no_credential provider=%s", name)
    return SKIPPED
