"""
Agent Registry API Routes
==========================

HTTP endpoints for managing agent definitions.

Endpoints:
- POST   /api/v1/agents          - Register agent
- GET    /api/v1/agents          - List agents (cursor pagination)
- GET    /api/v1/agents/{name}   - Get agent by name
- PUT    /api/v1/agents/{name}   - Replace agent definition
- DELETE /api/v1/agents/{name}   - Delete agent
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response

from taskweave.api.dependencies import get_engine
from taskweave.api.schemas.agent_schemas import AgentListResponse
from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.engine import AgentEngine

router = APIRouter()


@router.post(
    "/agents",
    response_model=AgentDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Register agent",
)
async def create_agent(
    definition: AgentDefinition, engine: AgentEngine = Depends(get_engine)
) -> AgentDefinition:
    """
    Raises:
        HTTPException 409: If an agent with this name already exists
    """
    if await engine.stores.agents.get(definition.name) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Agent '{definition.name}' already exists",
        )
    await engine.register_agent(definition)
    return definition


@router.get("/agents", response_model=AgentListResponse, summary="List agents")
async def list_agents(
    cursor: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    engine: AgentEngine = Depends(get_engine),
) -> AgentListResponse:
    """Agents sorted by name. Corrupt YAML definitions are skipped."""
    agents, next_cursor = await engine.list_agents(cursor=cursor, limit=limit)
    return AgentListResponse(agents=agents, next_cursor=next_cursor)


@router.get("/agents/{name}", response_model=AgentDefinition, summary="Get agent")
async def get_agent(name: str, engine: AgentEngine = Depends(get_engine)) -> AgentDefinition:
    return await engine.get_agent(name)


@router.put("/agents/{name}", response_model=AgentDefinition, summary="Replace agent")
async def update_agent(
    name: str, definition: AgentDefinition, engine: AgentEngine = Depends(get_engine)
) -> AgentDefinition:
    """
    Running executions keep the definition they started with.

    Raises:
        HTTPException 404: If the agent is not registered
        HTTPException 422: If the body names a different agent
    """
    if definition.name != name:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Body names agent '{definition.name}', path names '{name}'",
        )
    await engine.update_agent(definition)
    return definition


@router.delete("/agents/{name}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete agent")
async def delete_agent(name: str, engine: AgentEngine = Depends(get_engine)) -> Response:
    await engine.get_agent(name)
    await engine.stores.agents.delete(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
