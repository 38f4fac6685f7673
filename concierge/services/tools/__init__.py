from concierge.services.tools.registry import TOOL_SPECS, ToolContext, ToolRegistry, ToolSpec
from concierge.services.tools.scheduling_client import SchedulingClient

__all__ = ["SchedulingClient", "TOOL_SPECS", "ToolContext", "ToolRegistry", "ToolSpec"]
