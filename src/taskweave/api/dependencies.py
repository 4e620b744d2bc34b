"""Request-scoped access to the objects the app owns."""

from fastapi import Request

from taskweave.core.domain.engine import AgentEngine
from taskweave.infrastructure.streaming.broadcaster import EventBroadcaster


def get_engine(request: Request) -> AgentEngine:
    return request.app.state.engine


def get_broadcaster(request: Request) -> EventBroadcaster:
    return request.app.state.broadcaster
