from dashboard_assistant.tools.catalog import all_tools, get_tool, tools_by_category
from dashboard_assistant.tools.dashboard import build_local_handlers

__all__ = ["all_tools", "get_tool", "tools_by_category", "build_local_handlers"]
