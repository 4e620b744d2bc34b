"""
Agent Registry API Schemas
==========================

Agent definitions travel as ``AgentDefinition`` itself; these wrappers add
list pagination.
"""

from pydantic import BaseModel

from taskweave.core.domain.definitions import AgentDefinition


class AgentListResponse(BaseModel):
    agents: list[AgentDefinition]
    next_cursor: str | None = None
