"""
Agent Definitions

Validated, immutable descriptions of registered agents. Definitions are
shared read-only across concurrent executions and replaced wholesale on
update.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

EXTERNAL_WILDCARD = "*"

# Names double as file names in the YAML registry
AGENT_NAME_PATTERN = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]*")


def is_valid_agent_name(name: str) -> bool:
    return bool(AGENT_NAME_PATTERN.fullmatch(name))


class ModelSettings(BaseModel):
    """Model parameters for an agent."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model: str = "main"
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    max_iterations: int = Field(default=10, ge=1)

    def completion_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"model": self.model, "temperature": self.temperature}
        if self.max_tokens is not None:
            params["max_tokens"] = self.max_tokens
        return params


class ApprovalPolicy(BaseModel):
    """Which tool calls need an explicit approval before they run."""

    model_config = ConfigDict(frozen=True)

    required: bool = False
    tools: list[str] = Field(default_factory=list)

    def requires_approval(self, tool_name: str) -> bool:
        return self.required or tool_name in self.tools


class AgentDefinition(BaseModel):
    """
    Registered agent.

    Attributes:
        name: Unique agent name
        description: Short description (used by handover tool descriptions)
        system_prompt: Prompt template; {agent_name} and {user_id} are rendered
        model_settings: Model id, temperature, max tokens and iteration budget
        tools: Built-in tool names enabled for this agent
        external_tools: Tool names resolved outside the engine ("*" = any non built-in)
        sub_agents: Agents this agent may transfer control to
        approval: Approval policy for tool calls
        enable_reflection: Run a reflection pass after the final answer
        history_size: Keep only the last N thread messages in the model context
            (None keeps the whole thread)
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str = "You are {agent_name}, a helpful assistant."
    model_settings: ModelSettings = Field(default_factory=ModelSettings)
    tools: list[str] = Field(default_factory=list)
    external_tools: list[str] = Field(default_factory=list)
    sub_agents: list[str] = Field(default_factory=list)
    approval: ApprovalPolicy = Field(default_factory=ApprovalPolicy)
    enable_reflection: bool = False
    history_size: int | None = Field(default=None, ge=1)

    @field_validator("name")
    @classmethod
    def _name_is_file_safe(cls, value: str) -> str:
        if not is_valid_agent_name(value):
            raise ValueError(
                "agent name may only contain letters, digits, '_', '-' and '.' "
                "and must not start with '.' or '-'"
            )
        return value

    @property
    def max_iterations(self) -> int:
        return self.model_settings.max_iterations

    def is_external(self, tool_name: str) -> bool:
        return tool_name in self.external_tools

    def accepts_any_external(self) -> bool:
        return EXTERNAL_WILDCARD in self.external_tools

    def render_system_prompt(self, user_id: str | None = None) -> str:
        # str.replace keeps literal braces in prompts intact
        return self.system_prompt.replace("{agent_name}", self.name).replace(
            "{user_id}", user_id or "anonymous"
        )
