"""
Session builder -- turns an inbound request plus an agent into a ready
``Session`` and the adapter that will drive it.

Building a session:
1. Resolves the upstream credential (the agent's own key, else the
   gateway's key from the provider's environment variable)
2. Selects the adapter, fixing the protocol family for the session
3. Loads the thread history when an existing thread is resumed
4. Appends the user message (with any attachments)
5. Hands remote tool servers to the upstream, or connects them locally

Remote servers are connected concurrently and all-settled: a server that
fails to connect or list its tools is logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, Mapping

import httpx

from agentgate.agent import AgentConfig, InboundRequest
from agentgate.config import GatewayConfig, ProviderConfig
from agentgate.llm.providers.base import ProviderAdapter
from agentgate.llm.router import provider_for, select_adapter
from agentgate.llm.types import Message
from agentgate.session.session import Session
from agentgate.session.store import ThreadStore
from agentgate.tools.catalog import AgentTool, check_schema, merge_tools
from agentgate.tools.remote import MCPToolClient, RemoteServerSpec, RemoteToolClient
from agentgate.types import ConfigurationError, UserIdentity

logger = logging.getLogger(__name__)

ClientFactory = Callable[[RemoteServerSpec, UserIdentity], Awaitable[RemoteToolClient]]


def resolve_credentials(
    agent: AgentConfig,
    provider: ProviderConfig,
    env: Mapping[str, str] | None = None,
) -> tuple[str, bool]:
    """
    Return ``(api_key, own_credentials)``.

    Raises ``ConfigurationError`` when neither the agent nor the gateway has
    a key for the brand.
    """
    if agent.api_key:
        return agent.api_key, True
    env = os.environ if env is None else env
    key = env.get(provider.api_key_env, "") if provider.api_key_env else ""
    if not key:
        raise ConfigurationError(
            f"No API key for brand {agent.brand!r}: set {provider.api_key_env or 'an api_key'}"
        )
    return key, False


class SessionBuilder:
    """
    Parameters
    ----------
    config : GatewayConfig
        Provider table used to select adapters.
    store : ThreadStore, optional
        Required only when requests resume existing threads.
    client_factory : callable, optional
        ``async (spec, identity) -> RemoteToolClient``.  Defaults to
        ``MCPToolClient.connect``.
    http_client : httpx.AsyncClient, optional
        Shared client handed to every adapter.
    env : mapping, optional
        Environment used for credential lookup (defaults to ``os.environ``).
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: ThreadStore | None = None,
        *,
        client_factory: ClientFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self._client_factory = client_factory or MCPToolClient.connect
        self._http_client = http_client
        self._env = env

    async def build(self, request: InboundRequest, agent: AgentConfig) -> tuple[Session, ProviderAdapter]:
        provider = provider_for(agent.brand, self.config.providers)
        api_key, own = resolve_credentials(agent, provider, self._env)
        adapter = select_adapter(agent, provider, api_key, client=self._http_client)

        for tool in agent.tools:
            problem = check_schema(tool.parameters)
            if problem:
                logger.warning("Tool %s has an invalid parameter schema: %s", tool.name, problem)

        session = Session(
            agent,
            request.identity,
            api_key=api_key,
            family=adapter.family,
            own_credentials=own,
            stream=agent.stream if request.stream is None else request.stream,
            thread_id=request.thread_id,
            prompt=request.prompt,
        )

        if request.thread_id:
            if self.store is None:
                raise ConfigurationError("Cannot resume a thread without a thread store")
            raw = await self.store.load(request.thread_id, request.identity.user_id)
            session.load_history([Message.from_dict(m) for m in raw])
        else:
            session.instructions = agent.instructions

        session.append(Message(role="user", content=request.prompt, attachments=list(request.files)))

        if agent.remote_servers:
            if adapter.hosts_remote_servers:
                session.hosted_servers = list(agent.remote_servers)
            else:
                await self._connect_remote_servers(session, agent.remote_servers)

        logger.info(
            "Session built: agent=%s family=%s thread=%s history=%d tools=%d",
            agent.name,
            adapter.family,
            request.thread_id,
            len(session.history),
            len(session.tools),
        )
        return session, adapter

    # ------------------------------------------------------------------
    # Remote tool servers
    # ------------------------------------------------------------------

    async def _connect_one(
        self,
        spec: RemoteServerSpec,
        identity: UserIdentity,
    ) -> tuple[RemoteToolClient, list[AgentTool]]:
        client = await self._client_factory(spec, identity)
        try:
            tools = await client.list_tools()
        except BaseException:
            await client.aclose()
            raise
        return client, tools

    async def _connect_remote_servers(self, session: Session, servers: list[RemoteServerSpec]) -> None:
        outcomes = await asyncio.gather(
            *(self._connect_one(spec, session.identity) for spec in servers),
            return_exceptions=True,
        )
        for spec, outcome in zip(servers, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Failed to connect remote tool server %s (%s): %s", spec.name, spec.url, outcome)
                continue
            client, tools = outcome
            session.attach_client(client)
            added = merge_tools(session.tools, tools)
            logger.info("Remote tool server %s: %d tool(s) added", spec.name, len(added))
