"""
Per-request conversation state.

A ``Session`` is owned by exactly one in-flight request.  It holds the
conversation history (append-only), the working outbound payload, the
accumulated usage and the remote tool clients attached for this request.
Nothing in it is shared with other sessions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agentgate.agent import AgentConfig
from agentgate.llm.types import Message
from agentgate.tools.catalog import AgentTool
from agentgate.types import UserIdentity
from agentgate.usage.ledger import UsageRecord

if TYPE_CHECKING:
    from agentgate.tools.remote import RemoteServerSpec, RemoteToolClient

logger = logging.getLogger(__name__)


class Session:
    """
    Conversation state for one request.

    Parameters
    ----------
    agent:
        Resolved agent configuration.
    identity:
        The authenticated caller.  Passed explicitly to every collaborator
        that needs it.
    api_key:
        Upstream credential used for this request.
    own_credentials:
        ``True`` when *api_key* was supplied by the caller; usage is then
        reported without cost.
    family:
        Protocol family chosen for this session.  Fixed for its lifetime.
    """

    def __init__(
        self,
        agent: AgentConfig,
        identity: UserIdentity,
        *,
        api_key: str,
        family: str,
        own_credentials: bool = False,
        stream: bool = True,
        thread_id: str | None = None,
        prompt: str = "",
    ) -> None:
        self.agent = agent
        self.identity = identity
        self.api_key = api_key
        self.family = family
        self.own_credentials = own_credentials
        self.stream = stream
        self.thread_id = thread_id
        self.prompt = prompt
        # system instructions, rendered on new threads only
        self.instructions = ""

        self.history: list[Message] = []
        self.exchange_start = 0
        self.payload: dict = {}
        self.usage: list[UsageRecord] = []
        self.turn_count = 0
        self.response_id: str | None = None

        self.tools: list[AgentTool] = list(agent.tools)
        self.remote_clients: dict[str, RemoteToolClient] = {}
        # servers the upstream connects to itself
        self.hosted_servers: list[RemoteServerSpec] = []

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def load_history(self, messages: list[Message]) -> None:
        """Seed prior thread messages; the current exchange starts after them."""
        self.history.extend(messages)
        self.exchange_start = len(self.history)

    def append(self, message: Message) -> None:
        self.history.append(message)

    def exchange_messages(self) -> list[Message]:
        """Messages produced by this request (the part that gets persisted)."""
        return self.history[self.exchange_start:]

    # ------------------------------------------------------------------
    # Remote tool clients
    # ------------------------------------------------------------------

    def attach_client(self, client: RemoteToolClient) -> None:
        self.remote_clients[client.name] = client

    async def aclose(self) -> None:
        """Release remote tool clients.  Safe to call more than once."""
        clients, self.remote_clients = self.remote_clients, {}
        for name, client in clients.items():
            try:
                await client.aclose()
            except Exception:
                logger.warning("Failed to close remote tool client %s", name, exc_info=True)
