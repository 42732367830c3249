"""
Adapter selection -- maps an agent's brand to a wire-protocol adapter.

The brand table lives in configuration (``providers``); each entry names the
API root, the environment variable holding the gateway's credential and the
protocol family.  An agent may override the family explicitly.
"""

from __future__ import annotations

import logging

import httpx

from agentgate.agent import AgentConfig
from agentgate.config import ProviderConfig
from agentgate.llm.providers.base import ProviderAdapter
from agentgate.llm.providers.chat_completions import ChatCompletionsAdapter
from agentgate.llm.providers.dual import DualModeAdapter
from agentgate.llm.providers.messages import MessagesAdapter
from agentgate.llm.providers.responses import ResponsesAdapter
from agentgate.types import ConfigurationError

logger = logging.getLogger(__name__)

_FAMILY_ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "chat": ChatCompletionsAdapter,
    "responses": ResponsesAdapter,
    "messages": MessagesAdapter,
}


def provider_for(brand: str, providers: dict[str, ProviderConfig]) -> ProviderConfig:
    """Raises ``ConfigurationError`` if *brand* has no provider entry."""
    try:
        return providers[brand.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported brand {brand!r}. Configured: {sorted(providers)}"
        ) from None


def select_adapter(
    agent: AgentConfig,
    provider: ProviderConfig,
    api_key: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> ProviderAdapter:
    """
    Build the adapter for *agent*.

    Pure with respect to its inputs: the same agent and provider entry always
    yield the same family.
    """
    family = agent.family or provider.family
    if family == "dual":
        adapter: ProviderAdapter = DualModeAdapter(
            provider.base_url,
            api_key,
            builtin=agent.builtin,
            timeout=provider.timeout_seconds,
            client=client,
        )
    elif family in _FAMILY_ADAPTERS:
        adapter = _FAMILY_ADAPTERS[family](
            provider.base_url, api_key, timeout=provider.timeout_seconds, client=client
        )
    else:
        raise ConfigurationError(f"Unsupported protocol family {family!r} for brand {agent.brand!r}")

    logger.debug("Selected %s adapter for %s/%s", adapter.family, agent.brand, agent.model)
    return adapter
