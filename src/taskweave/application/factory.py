"""
Application Layer - Engine Factory

Builds a fully wired ``AgentEngine`` from a YAML configuration profile.

Key Responsibilities:
- Load configuration profiles (dev/file/...) from the config directory
- Instantiate the store bundle (in-memory or file-backed)
- Instantiate the LiteLLM provider with its retry policy
- Load agent definitions from YAML files
- Register process-wide external tools
"""

import importlib
import os
from pathlib import Path
from typing import Any

import structlog
import yaml

from taskweave.core.domain.context import StoreBundle
from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.engine import AgentEngine
from taskweave.core.interfaces.events import EventSinkProtocol
from taskweave.core.interfaces.llm import LLMProviderProtocol
from taskweave.infrastructure.llm.litellm_provider import LiteLLMProvider
from taskweave.infrastructure.persistence.file_agent_registry import FileAgentRegistry
from taskweave.infrastructure.persistence.file_stores import file_stores
from taskweave.infrastructure.persistence.memory_stores import in_memory_stores
from taskweave.infrastructure.tools.external import ExternalToolRegistry

CONFIG_DIR_ENV = "TASKWEAVE_CONFIG_DIR"
DEFAULT_WORK_DIR = ".taskweave"


def default_config_dir() -> Path:
    return Path(os.getenv(CONFIG_DIR_ENV, "configs"))


class EngineFactory:
    """
    Factory for creating engines with dependency injection.

    Profile layout::

        persistence:
          type: memory | file
          work_dir: .taskweave
        llm:
          default_model: main
          models: {main: gpt-4o-mini}
          retry: {max_attempts: 3, backoff_multiplier: 2.0}
        agents_dir: agents          # relative to the config directory
        external_tools:
          - name: lookup_order
            agent: "*"
            description: Look up an order
            handler: my_package.handlers:lookup_order   # optional

    Example:
        >>> factory = EngineFactory()
        >>> engine = await factory.create_engine(profile="dev")
    """

    def __init__(self, config_dir: str | Path | None = None):
        """
        Args:
            config_dir: Directory holding profile YAML files. Defaults to
                ``$TASKWEAVE_CONFIG_DIR`` or ``configs``.
        """
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.logger = structlog.get_logger().bind(component="engine_factory")

    async def create_engine(
        self,
        profile: str = "dev",
        work_dir: str | None = None,
        llm_provider: LLMProviderProtocol | None = None,
        event_sink: EventSinkProtocol | None = None,
    ) -> AgentEngine:
        """
        Create an engine for ``profile``.

        Args:
            profile: Configuration profile name
            work_dir: Optional override for the persistence work directory
            llm_provider: Optional provider replacing the configured one
            event_sink: Optional process-wide sink (e.g. an EventBroadcaster)

        Raises:
            FileNotFoundError: If the profile YAML is not found
            ValueError: If the configuration is invalid
        """
        config = self.load_profile(profile)
        if work_dir:
            config.setdefault("persistence", {})["work_dir"] = work_dir

        self.logger.info(
            "creating_engine",
            profile=profile,
            persistence=config.get("persistence", {}).get("type", "memory"),
        )

        stores = self._create_stores(config)
        engine = AgentEngine(
            llm_provider=llm_provider or self._create_llm_provider(config),
            stores=stores,
            external_tools=self._create_external_tools(config),
            event_sink=event_sink,
        )

        agents, _ = await engine.list_agents()
        self.logger.info(
            "engine_created", profile=profile, agents=[a.name for a in agents]
        )
        return engine

    def load_profile(self, profile: str) -> dict[str, Any]:
        """
        Load configuration profile from YAML file.

        Raises:
            FileNotFoundError: If profile YAML not found
            ValueError: If the file does not hold a mapping
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError(f"Profile must be a mapping: {profile_path}")

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    def _agents_dir(self, config: dict[str, Any]) -> Path:
        agents_dir = Path(config.get("agents_dir", "agents"))
        if not agents_dir.is_absolute():
            agents_dir = self.config_dir / agents_dir
        return agents_dir

    def load_agent_definitions(self, config: dict[str, Any]) -> list[AgentDefinition]:
        """Read every valid ``*.yaml`` definition in the profile's agents directory."""
        agents_dir = self._agents_dir(config)
        if not agents_dir.exists():
            self.logger.warning("agents_dir_missing", path=str(agents_dir))
            return []
        registry = FileAgentRegistry(agents_dir)
        definitions = []
        for path in sorted(agents_dir.glob("*.yaml")):
            definition = registry.load_definition(path)
            if definition is not None:
                definitions.append(definition)
        return definitions

    def _create_stores(self, config: dict[str, Any]) -> StoreBundle:
        """
        Raises:
            ValueError: For an unknown persistence type
        """
        persistence_config = config.get("persistence", {})
        persistence_type = persistence_config.get("type", "memory")

        if persistence_type == "memory":
            return in_memory_stores(self.load_agent_definitions(config))

        elif persistence_type == "file":
            work_dir = persistence_config.get("work_dir", DEFAULT_WORK_DIR)
            return file_stores(work_dir, agents_dir=self._agents_dir(config))

        else:
            raise ValueError(f"Unknown persistence type: {persistence_type}")

    def _create_llm_provider(self, config: dict[str, Any]) -> LLMProviderProtocol:
        return LiteLLMProvider(config.get("llm", {}))

    def _create_external_tools(self, config: dict[str, Any]) -> ExternalToolRegistry:
        registry = ExternalToolRegistry()
        for tool_config in config.get("external_tools") or []:
            handler = None
            if tool_config.get("handler"):
                handler = self._import_handler(tool_config["handler"])
            registry.register(
                tool_config["name"],
                handler=handler,
                agent=tool_config.get("agent", "*"),
                description=tool_config.get("description", ""),
                parameters=tool_config.get("parameters"),
            )
        return registry

    def _import_handler(self, path: str) -> Any:
        """
        Resolve ``module.path:attribute`` to a callable.

        Raises:
            ValueError: If the path is malformed or does not resolve
        """
        module_name, _, attribute = path.partition(":")
        if not module_name or not attribute:
            raise ValueError(f"Handler must look like 'module:callable', got '{path}'")
        try:
            module = importlib.import_module(module_name)
            return getattr(module, attribute)
        except (ImportError, AttributeError) as e:
            self.logger.error("handler_import_failed", handler=path, error=str(e))
            raise ValueError(f"Cannot import handler '{path}': {e}") from e
