"""Built-in utility tools."""

from __future__ import annotations

import zoneinfo
from datetime import datetime
from typing import TYPE_CHECKING

from doris.tools.base import ToolResult

if TYPE_CHECKING:
    from doris.tools.registry import ToolRegistry


def register_utility_tools(registry: ToolRegistry, timezone: str = "UTC") -> None:
    """Register get_time, reporting local time in *timezone*."""
    tz = zoneinfo.ZoneInfo(timezone)

    @registry.tool(
        name="get_time",
        description=(
            "Get the current local date, time and day of the week. Use whenever "
            "the user asks what time or day it is."
        ),
        category="utility",
    )
    async def get_time() -> ToolResult:
        now = datetime.now(tz)
        return ToolResult(
            data={
                "datetime": now.isoformat(),
                "date": now.strftime("%Y-%m-%d"),
                "time": now.strftime("%I:%M %p").lstrip("0"),
                "day_of_week": now.strftime("%A"),
                "timezone": timezone,
            }
        )
