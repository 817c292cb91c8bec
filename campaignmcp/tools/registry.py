"""Fixed catalog of MCP tools and their execution."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from campaignmcp.tools.base import Tool, text_content
from campaignmcp.utils.exceptions import CampaignMcpError, ToolError, sanitize_error_message


@dataclass(slots=True)
class ToolResult:
    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"content": list(self.content)}
        if self.is_error:
            out["isError"] = True
        return out


def _format_validation_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "Invalid arguments: " + "; ".join(parts)


def error_result(tool_name: str, message: str) -> ToolResult:
    return ToolResult(content=[text_content(ToolError(tool_name, message).message)], is_error=True)


class ToolRegistry:
    """
    Tools in insertion order. The set is fixed at construction; list() is
    stable for the life of the registry.
    """

    def __init__(self, tools: Iterable[Tool]):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool
        self._descriptors = tuple(t.to_descriptor() for t in self._tools.values())

    def list(self) -> list[dict[str, Any]]:
        return copy.deepcopy(list(self._descriptors))

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Run a tool. Every failure comes back as an isError result, never raised."""
        tool = self._tools.get(name)
        if tool is None:
            logger.info("tools/call for unknown tool {}", name)
            return error_result(name, f"Unknown tool: {name}")
        if not isinstance(arguments, dict):
            arguments = {}

        try:
            args = tool.coerce(arguments)
        except PydanticValidationError as e:
            return error_result(name, _format_validation_error(e))

        try:
            payload = await tool.run(args)
        except CampaignMcpError as e:
            logger.info("Tool {} failed: {}", name, e.message)
            return error_result(name, e.message)
        except Exception as e:
            logger.exception("Tool {} raised", name)
            return error_result(name, sanitize_error_message(str(e)) or type(e).__name__)
        return ToolResult(content=[text_content(payload)])
