"""Event sink protocol used to publish execution events."""

from typing import Protocol

from taskweave.core.domain.events import AgentEvent


class EventSinkProtocol(Protocol):
    async def emit(self, event: AgentEvent) -> None:
        ...
