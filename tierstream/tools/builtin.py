"""Built-in tools available to every chat."""

from __future__ import annotations

from datetime import datetime, timezone

from tierstream.tools.base import Tool
from tierstream.types import ToolResult


class CurrentDateTimeTool(Tool):
    @property
    def name(self) -> str:
        return "get_current_datetime"

    @property
    def description(self) -> str:
        return (
            "Get the current date and time. Use when the user asks about today's "
            "date, what day it is, or needs temporal context."
        )

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        now = datetime.now(timezone.utc)
        return ToolResult(
            success=True,
            content=now.strftime("%A, %d %B %Y %H:%M UTC"),
            data={"iso": now.isoformat()},
        )
