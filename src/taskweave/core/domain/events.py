"""
Domain Events for Agent Execution

Every state-changing step of an execution is published as an ``AgentEvent``.
Events of one run carry a strictly increasing ``sequence`` so consumers can
verify they observe them in the order they were produced.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from taskweave.core.domain.models import utc_now


class AgentEventType(str, Enum):
    EXECUTION_STARTED = "execution_started"
    MODEL_CALL_STARTED = "model_call_started"
    TEXT_DELTA = "text_delta"
    TOOL_CALL_STARTED = "tool_call_started"
    TOOL_CALL_FINISHED = "tool_call_finished"
    APPROVAL_REQUESTED = "approval_requested"
    AGENT_HANDOVER = "agent_handover"
    REFLECTION_STARTED = "reflection_started"
    REFLECTION_VERDICT = "reflection_verdict"
    EXECUTION_PAUSED = "execution_paused"
    WARNING = "warning"
    EXECUTION_FINISHED = "execution_finished"
    EXECUTION_ERRORED = "execution_errored"


@dataclass
class AgentEvent:
    type: AgentEventType
    thread_id: str | None
    task_id: str
    run_id: str
    agent_id: str
    sequence: int
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "thread_id": self.thread_id,
            "task_id": self.task_id,
            "run_id": self.run_id,
            "agent_id": self.agent_id,
            "sequence": self.sequence,
            "data": self.data,
            "timestamp": self.timestamp,
        }
