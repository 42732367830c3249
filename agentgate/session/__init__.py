"""Session management: per-request state, client events, thread persistence."""

from agentgate.session.events import (
    EVENT_CONNECTION,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_TEXT,
    EVENT_UPDATES,
    ClientEvent,
    connection_event,
    done_event,
    error_event,
    text_event,
    updates_event,
)
from agentgate.session.session import Session
from agentgate.session.store import SqliteThreadStore, ThreadStore
from agentgate.session.builder import SessionBuilder, resolve_credentials

__all__ = [
    "ClientEvent",
    "Session",
    "SessionBuilder",
    "SqliteThreadStore",
    "ThreadStore",
    "resolve_credentials",
    # Event type constants
    "EVENT_CONNECTION",
    "EVENT_DONE",
    "EVENT_ERROR",
    "EVENT_TEXT",
    "EVENT_UPDATES",
    # Factory functions
    "connection_event",
    "done_event",
    "error_event",
    "text_event",
    "updates_event",
]
