"""Unit Tests for FileAgentRegistry."""

import pytest
import yaml

from taskweave.core.domain.definitions import AgentDefinition, ApprovalPolicy, ModelSettings
from taskweave.core.domain.errors import StoreError
from taskweave.infrastructure.persistence.file_agent_registry import FileAgentRegistry


@pytest.fixture
def registry(tmp_path):
    return FileAgentRegistry(tmp_path / "agents")


class TestFileAgentRegistry:
    @pytest.mark.asyncio
    async def test_register_writes_yaml(self, registry):
        definition = AgentDefinition(
            name="reviewer",
            description="Reviews code",
            model_settings=ModelSettings(model="powerful", max_iterations=5),
            approval=ApprovalPolicy(tools=["delete_file"]),
        )

        await registry.register(definition)

        path = registry.agents_dir / "reviewer.yaml"
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert data["name"] == "reviewer"
        assert data["model_settings"] == {"model": "powerful", "max_iterations": 5}
        assert "enable_reflection" not in data
        assert await registry.get("reviewer") == definition

    @pytest.mark.asyncio
    async def test_register_duplicate_raises(self, registry):
        await registry.register(AgentDefinition(name="a"))
        with pytest.raises(StoreError):
            await registry.register(AgentDefinition(name="a"))

    @pytest.mark.asyncio
    async def test_update_replaces_definition(self, registry):
        await registry.register(AgentDefinition(name="a", description="old"))

        await registry.update(AgentDefinition(name="a", description="new"))

        assert (await registry.get("a")).description == "new"
        with pytest.raises(StoreError):
            await registry.update(AgentDefinition(name="missing"))

    @pytest.mark.asyncio
    async def test_atomic_write_leaves_no_temp_files(self, registry):
        await registry.register(AgentDefinition(name="a"))
        await registry.update(AgentDefinition(name="a", description="v2"))

        assert [p.name for p in registry.agents_dir.iterdir()] == ["a.yaml"]

    @pytest.mark.asyncio
    async def test_name_defaults_to_file_stem(self, registry):
        (registry.agents_dir / "planner.yaml").write_text(
            "description: Plans things\ntools: [search_memories]\n", encoding="utf-8"
        )

        definition = await registry.get("planner")

        assert definition.name == "planner"
        assert definition.tools == ["search_memories"]

    @pytest.mark.asyncio
    async def test_corrupt_files_are_skipped(self, registry):
        await registry.register(AgentDefinition(name="good"))
        (registry.agents_dir / "broken.yaml").write_text("name: [unclosed", encoding="utf-8")
        (registry.agents_dir / "invalid.yaml").write_text(
            "model_settings:\n  max_iterations: 0\n", encoding="utf-8"
        )
        (registry.agents_dir / "listy.yaml").write_text("- just\n- a list\n", encoding="utf-8")

        agents, cursor = await registry.list()

        assert [a.name for a in agents] == ["good"]
        assert cursor is None
        assert await registry.get("broken") is None

    @pytest.mark.asyncio
    async def test_cursor_pagination(self, registry):
        for name in ["delta", "alpha", "charlie", "bravo"]:
            await registry.register(AgentDefinition(name=name))

        first, cursor = await registry.list(limit=3)
        assert [a.name for a in first] == ["alpha", "bravo", "charlie"]
        assert cursor == "charlie"

        rest, cursor = await registry.list(cursor=cursor, limit=3)
        assert [a.name for a in rest] == ["delta"]
        assert cursor is None

    @pytest.mark.asyncio
    async def test_delete(self, registry):
        await registry.register(AgentDefinition(name="a"))
        await registry.delete("a")
        await registry.delete("a")
        assert await registry.get("a") is None

    @pytest.mark.asyncio
    async def test_names_cannot_leave_agents_dir(self, registry, tmp_path):
        outside = tmp_path / "escaped.yaml"
        outside.write_text("description: outside\n", encoding="utf-8")
        unchecked = AgentDefinition.model_construct(name="../escaped")

        with pytest.raises(StoreError):
            await registry.register(unchecked)
        with pytest.raises(StoreError):
            await registry.update(unchecked)
        assert await registry.get("../escaped") is None
        await registry.delete("../escaped")

        assert outside.read_text(encoding="utf-8") == "description: outside\n"
        assert list(registry.agents_dir.iterdir()) == []
