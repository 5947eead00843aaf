from __future__ import annotations

import asyncio
import inspect
import logging
import time

from tierstream.tools.base import Tool
from tierstream.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)


def _accepts_context(tool: Tool) -> bool:
    return "context" in inspect.signature(tool.execute).parameters


class ToolRegistry:
    def __init__(self, tool_timeout: float | None = 30.0):
        self._tools: dict[str, Tool] = {}
        self.tool_timeout = tool_timeout

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        tool = self.get(name)
        if tool is None:
            raise KeyError(f"Unknown tool: {name}")
        return tool

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def to_openai_schema(self) -> list[dict]:
        return [t.to_openai_schema() for t in self.list()]

    async def execute_tool(
        self,
        name: str,
        arguments: dict,
        context: dict | None = None,
    ) -> ToolResult:
        """
        Run one tool call.

        Never raises for tool-side problems: unknown names, timeouts and
        exceptions come back as unsuccessful ``ToolResult`` objects so the
        model sees them in the next round.
        """
        tool = self.get(name)
        if tool is None:
            return ToolResult(
                success=False,
                content=f"Unknown tool: {name}",
                error=f"Unknown tool: {name}",
                error_code=ErrorCode.UNKNOWN_TOOL,
            )

        kwargs = dict(arguments)
        if _accepts_context(tool):
            kwargs["context"] = context

        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                tool.execute(**kwargs), timeout=self.tool_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", name, self.tool_timeout)
            return ToolResult(
                success=False,
                content=f"Tool timed out after {self.tool_timeout}s",
                error=f"Timeout after {self.tool_timeout}s",
                error_code=ErrorCode.TIMEOUT,
            )
        except Exception as e:
            logger.exception("Tool %s raised", name)
            return ToolResult(
                success=False,
                content=f"Tool exception: {e}",
                error=str(e),
                error_code=ErrorCode.TOOL_EXCEPTION,
            )

        result.metadata.setdefault("duration_ms", int((time.monotonic() - start) * 1000))
        return result
