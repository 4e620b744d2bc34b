"""Unit Tests for EngineFactory."""

import json

import pytest
import yaml
from conftest import ScriptedLLM, text

from taskweave.application.factory import EngineFactory
from taskweave.core.domain.context import ExecutionContext, ToolContext
from taskweave.core.domain.definitions import AgentDefinition
from taskweave.infrastructure.llm.litellm_provider import LiteLLMProvider
from taskweave.infrastructure.persistence.file_agent_registry import FileAgentRegistry


def write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


@pytest.fixture
def config_dir(tmp_path):
    config_dir = tmp_path / "configs"
    write_yaml(
        config_dir / "dev.yaml",
        {
            "persistence": {"type": "memory"},
            "llm": {"default_model": "main", "models": {"main": "gpt-4o-mini"}},
            "agents_dir": "agents",
            "external_tools": [
                {"name": "lookup_ticket", "description": "Look up a ticket"},
                {"name": "encode", "agent": "coder", "handler": "json:dumps"},
            ],
        },
    )
    write_yaml(
        config_dir / "agents" / "assistant.yaml",
        {"name": "assistant", "tools": ["search_memories"], "sub_agents": ["researcher"]},
    )
    write_yaml(config_dir / "agents" / "researcher.yaml", {"description": "Digs deeper"})
    (config_dir / "agents" / "broken.yaml").write_text("name: [", encoding="utf-8")
    return config_dir


class TestEngineFactory:
    @pytest.mark.asyncio
    async def test_memory_profile_loads_agents(self, config_dir):
        engine = await EngineFactory(config_dir).create_engine(
            "dev", llm_provider=ScriptedLLM()
        )

        agents, _ = await engine.list_agents()
        assert [a.name for a in agents] == ["assistant", "researcher"]
        assert (await engine.get_agent("assistant")).sub_agents == ["researcher"]

    @pytest.mark.asyncio
    async def test_configured_provider_is_litellm(self, config_dir):
        engine = await EngineFactory(config_dir).create_engine("dev")

        assert isinstance(engine.llm_provider, LiteLLMProvider)
        assert engine.llm_provider.models == {"main": "gpt-4o-mini"}

    @pytest.mark.asyncio
    async def test_external_tools_are_registered(self, config_dir):
        engine = await EngineFactory(config_dir).create_engine(
            "dev", llm_provider=ScriptedLLM()
        )

        external = engine.external_tools
        assert external.has_tool("assistant", "lookup_ticket")
        assert not external.has_tool("assistant", "encode")

        context = ToolContext(
            agent=AgentDefinition(name="coder"),
            execution=ExecutionContext(task_id="task-1", thread_id=None, agent_id="coder"),
            stores=engine.stores,
        )
        encoded = await external.resolve("encode", {"a": 1}, context)
        assert json.loads(encoded) == {"a": 1}

    @pytest.mark.asyncio
    async def test_file_profile_persists_under_work_dir(self, config_dir, tmp_path):
        profile = yaml.safe_load((config_dir / "dev.yaml").read_text(encoding="utf-8"))
        profile["persistence"] = {"type": "file"}
        write_yaml(config_dir / "file.yaml", profile)
        work_dir = tmp_path / "work"
        llm = ScriptedLLM([text("Hi")])

        engine = await EngineFactory(config_dir).create_engine(
            "file", work_dir=str(work_dir), llm_provider=llm
        )
        await engine.execute("assistant", "hello", context_id="t1")

        assert isinstance(engine.stores.agents, FileAgentRegistry)
        assert (work_dir / "threads" / "t1.json").exists()
        assert (work_dir / "sessions" / "t1.jsonl").exists()

    @pytest.mark.asyncio
    async def test_missing_profile(self, config_dir):
        with pytest.raises(FileNotFoundError):
            await EngineFactory(config_dir).create_engine("prod")

    @pytest.mark.asyncio
    async def test_unknown_persistence_type(self, config_dir):
        write_yaml(config_dir / "odd.yaml", {"persistence": {"type": "redis"}})
        with pytest.raises(ValueError, match="Unknown persistence type"):
            await EngineFactory(config_dir).create_engine("odd", llm_provider=ScriptedLLM())

    def test_profile_must_be_mapping(self, config_dir):
        (config_dir / "list.yaml").write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            EngineFactory(config_dir).load_profile("list")

    @pytest.mark.parametrize("path", ["json", "json:missing", "no_such_module_x:run"])
    def test_bad_handler_paths(self, config_dir, path):
        with pytest.raises(ValueError):
            EngineFactory(config_dir)._import_handler(path)

    def test_missing_agents_dir_gives_no_agents(self, tmp_path):
        factory = EngineFactory(tmp_path)
        assert factory.load_agent_definitions({"agents_dir": "nowhere"}) == []
