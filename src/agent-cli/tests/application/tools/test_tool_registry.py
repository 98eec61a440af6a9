"""Tests for ToolRegistry and the Tool base class.

Tests cover:
- Lookup, ordering and immutability of the registry
- Duplicate name rejection
- The default tool set and its confirmation flags
- Schema generation and argument parsing
"""

from typing import Any

import pytest
from pydantic import Field

from application.tools import Tool, ToolArguments, ToolExecutionError, ToolRegistry, create_default_registry, default_tools


class GreetArguments(ToolArguments):
    name: str = Field(description="Who to greet.")
    excited: bool = False


class GreetTool(Tool):
    name = "greet"
    description = "Say hello."
    arguments_model = GreetArguments

    async def run(self, args: GreetArguments) -> str:
        return f"Hello, {args.name}{'!' if args.excited else '.'}"


class OtherGreetTool(GreetTool):
    description = "Another greeter with the same name."

    async def run(self, args: Any) -> str:
        return "hi"


class TestToolRegistry:
    """Tests for the name-to-tool lookup."""

    def test_get_returns_registered_tool(self) -> None:
        """Tools are found by exact name."""
        tool = GreetTool()
        registry = ToolRegistry([tool])

        assert registry.get("greet") is tool
        assert "greet" in registry
        assert len(registry) == 1

    def test_get_unknown_returns_none(self) -> None:
        """A miss is not an exception."""
        registry = ToolRegistry([GreetTool()])

        assert registry.get("teleport") is None
        assert "teleport" not in registry

    def test_duplicate_names_are_rejected(self) -> None:
        """Two tools may not share a name."""
        with pytest.raises(ValueError, match="Duplicate tool name: greet"):
            ToolRegistry([GreetTool(), OtherGreetTool()])

    def test_mapping_is_read_only(self) -> None:
        """The registry cannot be changed after construction."""
        registry = ToolRegistry([GreetTool()])

        with pytest.raises(TypeError):
            registry.tools["other"] = GreetTool()  # type: ignore[index]

    def test_definitions_follow_registration_order(self) -> None:
        """Definitions are advertised in the order tools were given."""
        registry = create_default_registry()

        assert [d.name for d in registry.definitions()] == registry.names()

    def test_empty_registry(self) -> None:
        """A registry without tools advertises nothing."""
        registry = ToolRegistry()

        assert registry.definitions() == []
        assert list(registry) == []


class TestDefaultTools:
    """Tests for the built-in tool set."""

    def test_default_tool_names(self) -> None:
        """All seven built-in tools are registered."""
        assert create_default_registry().names() == [
            "list_directory",
            "read_file",
            "write_file",
            "search_file_content",
            "glob",
            "replace",
            "run_shell_command",
        ]

    def test_mutating_tools_require_confirmation(self) -> None:
        """Only tools that change the system ask the user first."""
        gated = {tool.name for tool in default_tools() if tool.requires_confirmation}

        assert gated == {"write_file", "replace", "run_shell_command"}

    def test_every_definition_has_an_object_schema(self) -> None:
        """Parameters are JSON schemas of type object."""
        for definition in create_default_registry().definitions():
            assert definition.parameters["type"] == "object"
            assert "properties" in definition.parameters
            assert definition.description


class TestToolBase:
    """Tests for schema generation and argument handling."""

    def test_parameters_schema(self) -> None:
        """The schema lists properties and required fields without titles."""
        parameters = GreetTool().parameters

        assert parameters["type"] == "object"
        assert set(parameters["properties"]) == {"name", "excited"}
        assert parameters["required"] == ["name"]
        assert "title" not in parameters
        assert "title" not in parameters["properties"]["name"]
        assert parameters["properties"]["name"]["description"] == "Who to greet."

    def test_definition_to_openai_format(self) -> None:
        """The definition wraps the schema in a function entry."""
        formatted = GreetTool().definition().to_openai_format()

        assert formatted["type"] == "function"
        assert formatted["function"]["name"] == "greet"
        assert formatted["function"]["description"] == "Say hello."

    @pytest.mark.asyncio
    async def test_execute_parses_raw_json(self) -> None:
        """Raw argument text is validated before running."""
        result = await GreetTool().execute('{"name": "Ada", "excited": true, "ignored": 1}')

        assert result == "Hello, Ada!"

    @pytest.mark.asyncio
    async def test_invalid_json_raises_execution_error(self) -> None:
        """Text that is not JSON is reported as invalid arguments."""
        with pytest.raises(ToolExecutionError, match="invalid arguments for greet"):
            await GreetTool().execute("{oops")

    @pytest.mark.asyncio
    async def test_missing_required_argument(self) -> None:
        """The missing field is named in the error."""
        with pytest.raises(ToolExecutionError) as exc_info:
            await GreetTool().execute("")

        assert "name" in exc_info.value.message
        assert exc_info.value.tool_name == "greet"
