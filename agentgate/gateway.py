"""
Gateway facade -- wires configuration, collaborators and the per-request
pipeline together.

Usage::

    async with Gateway.open(load_config("gateway.yaml")) as gw:
        async for event in gw.stream(request, agent):
            print(event.to_json())
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping

import httpx

from agentgate.agent import AgentConfig, InboundRequest
from agentgate.config import GatewayConfig
from agentgate.orchestrator.core import TurnOrchestrator
from agentgate.session.builder import ClientFactory, SessionBuilder
from agentgate.session.events import ClientEvent
from agentgate.session.store import SqliteThreadStore, ThreadStore
from agentgate.tools.directory import StaticToolDirectory, ToolDirectory
from agentgate.tools.executor import ToolExecutor
from agentgate.usage.ledger import UsageLedger
from agentgate.usage.pricing import PricingTable

logger = logging.getLogger(__name__)


class Gateway:
    """
    Parameters
    ----------
    config : GatewayConfig
        Loaded configuration.
    store : ThreadStore, optional
        Thread persistence.  Exchanges are not persisted without one.
    directory : ToolDirectory, optional
        Defaults to a ``StaticToolDirectory`` built from ``config.tools``.
    http_client : httpx.AsyncClient, optional
        Shared by adapters and HTTP tools.
    client_factory : callable, optional
        Remote tool client factory passed to the ``SessionBuilder``.
    env : mapping, optional
        Environment used for credential lookup.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        store: ThreadStore | None = None,
        directory: ToolDirectory | None = None,
        http_client: httpx.AsyncClient | None = None,
        client_factory: ClientFactory | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.ledger = UsageLedger(PricingTable.from_dict(config.pricing))
        self.directory = directory or StaticToolDirectory.from_config(config.tools.directory)
        self.executor = ToolExecutor(
            self.directory,
            timeout=config.orchestrator.tool_timeout_seconds,
            http_client=http_client,
        )
        self.builder = SessionBuilder(
            config,
            store,
            client_factory=client_factory,
            http_client=http_client,
            env=env,
        )

    @classmethod
    @asynccontextmanager
    async def open(cls, config: GatewayConfig, **kwargs) -> AsyncIterator[Gateway]:
        """Gateway backed by the configured SQLite thread store."""
        store = SqliteThreadStore(config.store.threads_db)
        await store.init()
        try:
            yield cls(config, store=store, **kwargs)
        finally:
            await store.close()

    async def prepare(self, request: InboundRequest, agent: AgentConfig) -> TurnOrchestrator:
        """
        Build the session and its orchestrator.

        Raises ``ConfigurationError`` (or ``ThreadNotFoundError``) before any
        upstream call is made.
        """
        session, adapter = await self.builder.build(request, agent)
        opts = self.config.orchestrator
        return TurnOrchestrator(
            session,
            adapter,
            self.executor,
            self.ledger,
            self.store,
            max_tool_rounds=opts.max_tool_rounds,
            keep_text_with_tool_calls=opts.keep_text_with_tool_calls,
        )

    async def stream(self, request: InboundRequest, agent: AgentConfig) -> AsyncIterator[ClientEvent]:
        orchestrator = await self.prepare(request, agent)
        async for event in orchestrator.run():
            yield event

    async def respond(self, request: InboundRequest, agent: AgentConfig) -> dict:
        orchestrator = await self.prepare(request, agent)
        return await orchestrator.respond()
