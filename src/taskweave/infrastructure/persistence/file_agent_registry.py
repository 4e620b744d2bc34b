"""
File-Based Agent Registry
==========================

Agent store backed by YAML files, one definition per file.

Responsibilities:
- Persist agent definitions to `{agents_dir}/{name}.yaml`
- Validate every file through the `AgentDefinition` model
- Atomic writes for Windows compatibility
- Graceful handling of corrupt YAML files
"""

import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from taskweave.core.domain.definitions import AgentDefinition, is_valid_agent_name
from taskweave.core.domain.errors import StoreError
from taskweave.infrastructure.persistence.memory_stores import page_definitions

logger = structlog.get_logger()


class FileAgentRegistry:
    """
    File-based agent registry with YAML persistence.

    Directory structure:
        {agents_dir}/{name}.yaml - One agent definition per file

    Definitions are read from disk on every lookup, so files edited by hand
    are picked up without a restart.

    Example:
        >>> registry = FileAgentRegistry("configs/agents")
        >>> await registry.register(AgentDefinition(name="assistant"))
        >>> (await registry.get("assistant")).name
        'assistant'
    """

    def __init__(self, agents_dir: str | Path = "configs/agents"):
        self.agents_dir = Path(agents_dir)
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(component="file_agent_registry")

    def _get_agent_path(self, name: str) -> Path:
        """
        Raises:
            StoreError: If the name could resolve outside ``agents_dir``
        """
        if not is_valid_agent_name(name):
            raise StoreError(f"Invalid agent name: {name!r}", agent_name=name)
        return self.agents_dir / f"{name}.yaml"

    def _atomic_write_yaml(self, path: Path, data: dict[str, Any]) -> None:
        """
        Write YAML atomically using temp file + rename.

        Windows-safe implementation:
        1. Write to temp file in same directory
        2. If target exists, delete it first (Windows requirement)
        3. Rename temp to target

        Raises:
            OSError: If file operations fail
        """
        # Same directory keeps the rename on one filesystem
        temp_fd, temp_path = tempfile.mkstemp(
            dir=path.parent, suffix=".tmp", prefix=".agent_"
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    data,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                )

            # Windows: must delete target before rename
            if path.exists():
                path.unlink()

            Path(temp_path).rename(path)

            self.logger.debug("agent_yaml_written", agent_file=str(path), atomic=True)

        except Exception:
            if Path(temp_path).exists():
                Path(temp_path).unlink()
            raise

    def load_definition(self, path: Path) -> AgentDefinition | None:
        """
        Load one agent definition from YAML.

        The file name is the default agent name. Returns None for corrupt
        or invalid files.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            data.setdefault("name", path.stem)
            return AgentDefinition.model_validate(data)

        except (OSError, yaml.YAMLError, ValidationError, AttributeError) as e:
            self.logger.warning(
                "agent_yaml_corrupt",
                path=str(path),
                error=str(e),
            )
            return None

    def _write(self, definition: AgentDefinition) -> None:
        self._atomic_write_yaml(
            self._get_agent_path(definition.name),
            definition.model_dump(mode="json", exclude_defaults=True) | {"name": definition.name},
        )

    async def register(self, definition: AgentDefinition) -> None:
        """
        Raises:
            StoreError: If an agent with the same name already exists
        """
        path = self._get_agent_path(definition.name)
        if path.exists():
            raise StoreError(
                f"Agent already registered: {definition.name}", agent_name=definition.name
            )
        self._write(definition)
        self.logger.info("agent_created", agent=definition.name, path=str(path))

    async def update(self, definition: AgentDefinition) -> None:
        """
        Raises:
            StoreError: If the agent does not exist
        """
        path = self._get_agent_path(definition.name)
        if not path.exists():
            raise StoreError(
                f"Agent not registered: {definition.name}", agent_name=definition.name
            )
        self._write(definition)
        self.logger.info("agent_updated", agent=definition.name, path=str(path))

    async def get(self, name: str) -> AgentDefinition | None:
        if not is_valid_agent_name(name):
            return None
        path = self._get_agent_path(name)
        if not path.exists():
            return None
        return self.load_definition(path)

    async def list(
        self, cursor: str | None = None, limit: int | None = None
    ) -> tuple[list[AgentDefinition], str | None]:
        """
        List agents sorted by name.

        Corrupt YAML files are skipped with a warning logged.
        """
        definitions = []
        for yaml_file in sorted(self.agents_dir.glob("*.yaml")):
            definition = self.load_definition(yaml_file)
            if definition is not None:
                definitions.append(definition)

        definitions.sort(key=lambda d: d.name)
        self.logger.debug("agents_listed", count=len(definitions))
        return page_definitions(definitions, cursor, limit)

    async def delete(self, name: str) -> None:
        if not is_valid_agent_name(name):
            return
        path = self._get_agent_path(name)
        if path.exists():
            path.unlink()
            self.logger.info("agent_deleted", agent=name, path=str(path))
