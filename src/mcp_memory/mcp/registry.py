"""
Tool Registry
=============
Name -> tool table. Each tool pairs a pydantic argument model with an
async handler; arguments are validated against the model before the
handler runs and discovery publishes the model's JSON schema.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Type

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mcp_memory.core.exceptions import InvalidParamsError, MethodNotFoundError

ToolHandler = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: ToolHandler

    def definition(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_model.model_json_schema(),
        }


def format_validation_errors(exc: PydanticValidationError) -> List[dict]:
    """Field/constraint/message triples. Input values are never included."""
    errors = []
    for err in exc.errors(include_url=False, include_input=False, include_context=False):
        loc = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
        errors.append({
            "field": loc,
            "constraint": err.get("type", "invalid"),
            "message": err.get("msg", "invalid value"),
        })
    return errors


class ToolRegistry:
    """
    Insertion-ordered tool table.

    Args:
        allow: Optional allow-list of tool names; tools outside it are
            skipped at registration time.
    """

    def __init__(self, allow: Optional[Iterable[str]] = None):
        self._tools: dict[str, Tool] = {}
        self._allow = set(allow) if allow is not None else None

    def register(
        self,
        name: str,
        description: str,
        input_model: Type[BaseModel],
        handler: ToolHandler,
    ) -> bool:
        if self._allow is not None and name not in self._allow:
            logger.info(f"Skipping disabled MCP tool: {name}")
            return False
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = Tool(name, description, input_model, handler)
        return True

    def tool(self, name: str, description: str, input_model: Type[BaseModel]):
        """Decorator form of register()."""
        def decorator(fn: ToolHandler) -> ToolHandler:
            self.register(name, description, input_model, fn)
            return fn
        return decorator

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise MethodNotFoundError(f"Unknown tool: {name}", data={"tool": name})
        return tool

    def names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[dict]:
        return [tool.definition() for tool in self._tools.values()]

    def validate(self, name: str, arguments: Any) -> tuple[Tool, BaseModel]:
        tool = self.get(name)
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError(
                "Tool arguments must be an object",
                data={"errors": [{"field": "arguments", "constraint": "dict_type",
                                  "message": "Input should be a valid dictionary"}]},
            )
        try:
            parsed = tool.input_model.model_validate(arguments)
        except PydanticValidationError as e:
            raise InvalidParamsError(
                f"Invalid arguments for tool {name}",
                data={"errors": format_validation_errors(e)},
            )
        return tool, parsed

    async def call(self, name: str, arguments: Any) -> Any:
        tool, parsed = self.validate(name, arguments)
        return await tool.handler(parsed)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
