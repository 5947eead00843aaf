"""Tool definitions and the dispatcher used by the round loop."""

from tierstream.tools.base import Tool
from tierstream.tools.builtin import CurrentDateTimeTool
from tierstream.tools.registry import ToolRegistry

__all__ = ["CurrentDateTimeTool", "Tool", "ToolRegistry"]
