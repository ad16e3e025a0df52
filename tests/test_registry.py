"""
Tool registry tests
"""

import pytest
from pydantic import BaseModel, ConfigDict, Field

from mcp_memory.core.exceptions import InvalidParamsError, MethodNotFoundError
from mcp_memory.mcp.registry import ToolRegistry


class EchoInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., min_length=1)
    times: int = Field(default=1, ge=1, le=3)


def make_registry(allow=None) -> ToolRegistry:
    registry = ToolRegistry(allow=allow)

    @registry.tool("echo", "Repeat text", EchoInput)
    async def echo(args: EchoInput):
        return {"text": args.text * args.times}

    @registry.tool("other", "Another tool", EchoInput)
    async def other(args: EchoInput):
        return {}

    return registry


class TestToolRegistry:
    def test_discovery(self):
        registry = make_registry()
        tools = registry.list_tools()
        assert [t["name"] for t in tools] == ["echo", "other"]
        schema = tools[0]["inputSchema"]
        assert schema["type"] == "object"
        assert schema["required"] == ["text"]
        assert tools[0]["description"] == "Repeat text"

    def test_allow_list(self):
        registry = make_registry(allow=["other"])
        assert registry.names() == ["other"]
        assert "echo" not in registry
        with pytest.raises(MethodNotFoundError):
            registry.get("echo")

    def test_duplicate_registration(self):
        registry = make_registry()
        with pytest.raises(ValueError):
            registry.register("echo", "again", EchoInput, lambda args: None)

    @pytest.mark.asyncio
    async def test_call(self):
        registry = make_registry()
        assert await registry.call("echo", {"text": "ab", "times": 2}) == {"text": "abab"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        with pytest.raises(MethodNotFoundError) as exc_info:
            await make_registry().call("nope", {})
        assert exc_info.value.data == {"tool": "nope"}

    @pytest.mark.asyncio
    async def test_invalid_arguments_do_not_echo_input(self):
        secret = "do-not-leak-this-value"
        with pytest.raises(InvalidParamsError) as exc_info:
            await make_registry().call("echo", {"text": "ok", "times": 9, "extra": secret})
        errors = exc_info.value.data["errors"]
        assert {e["field"] for e in errors} == {"times", "extra"}
        assert all(set(e) == {"field", "constraint", "message"} for e in errors)
        assert secret not in repr(exc_info.value.data)

    @pytest.mark.asyncio
    async def test_arguments_must_be_object(self):
        with pytest.raises(InvalidParamsError):
            await make_registry().call("echo", ["text"])

    @pytest.mark.asyncio
    async def test_missing_arguments_are_empty(self):
        with pytest.raises(InvalidParamsError) as exc_info:
            await make_registry().call("echo", None)
        assert exc_info.value.data["errors"][0]["field"] == "text"
