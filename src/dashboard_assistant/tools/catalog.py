"""Static tool catalog.

Local ``dashboard.*`` tools are first-party and always available. Remote
``mcp.*`` tools run behind the execution proxy and must be enabled per user
with a credential and an action grant. ``api.*`` tools are declared but have
no execution path yet.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set, Tuple

from dashboard_assistant.domain.errors import CatalogConfigurationError
from dashboard_assistant.domain.tools import (
    KIND_GENERIC_API,
    KIND_LOCAL,
    KIND_REMOTE_PROTOCOL,
    GenericApiExecution,
    LocalExecution,
    RemoteProtocolExecution,
    ToolAction,
    ToolDefinition,
    ToolParameter,
)


def _p(name: str, type_: str, description: str, required: bool = False, default=None) -> ToolParameter:
    return ToolParameter(name=name, type=type_, description=description, required=required, default=default)


def _a(action_id: str, name: str, description: str, *params: ToolParameter) -> ToolAction:
    return ToolAction(action_id=action_id, name=name, description=description, parameters=tuple(params))


def _local(tool_id: str, name: str, category: str, description: str, handler: str, *actions: ToolAction) -> ToolDefinition:
    return ToolDefinition(
        tool_id=tool_id,
        name=name,
        kind=KIND_LOCAL,
        execution=LocalExecution(handler=handler),
        category=category,
        description=description,
        actions=tuple(actions),
        pre_configured=True,
        requires_credential=False,
    )


def _mcp(tool_id: str, name: str, category: str, description: str, package: str, *actions: ToolAction) -> ToolDefinition:
    return ToolDefinition(
        tool_id=tool_id,
        name=name,
        kind=KIND_REMOTE_PROTOCOL,
        execution=RemoteProtocolExecution(command="npx", args=("-y", package)),
        category=category,
        description=description,
        actions=tuple(actions),
        pre_configured=True,
        requires_credential=True,
    )


# ---------------------------------------------------------------------------
# Dashboard-native tools
# ---------------------------------------------------------------------------

DASHBOARD_TOOLS: Tuple[ToolDefinition, ...] = (
    _local(
        "dashboard.api_keys", "API Keys Manager", "productivity",
        "Manage API keys and access tokens", "api_keys",
        _a("list", "List API Keys", "Get all API keys for the user"),
        _a(
            "create", "Create API Key", "Generate a new API key",
            _p("name", "string", "Key name", required=True),
            _p("scope", "array", "Permissions"),
        ),
        _a("revoke", "Revoke API Key", "Disable an API key", _p("key_id", "string", "Key ID", required=True)),
    ),
    _local(
        "dashboard.memory", "Memory Manager", "productivity",
        "Search and store memories", "memory",
        _a(
            "search", "Search Memories", "Search through stored context",
            _p("query", "string", "Search query", required=True),
            _p("limit", "number", "Max results", default=10),
        ),
        _a(
            "create", "Store Memory", "Save context for future use",
            _p("title", "string", "Memory title", required=True),
            _p("content", "string", "Memory content", required=True),
            _p("tags", "array", "Tags"),
        ),
    ),
    _local(
        "dashboard.workflow", "Workflow Manager", "productivity",
        "Create and manage workflows", "workflow",
        _a("create", "Create Workflow", "Generate a new workflow plan", _p("goal", "string", "Workflow goal", required=True)),
        _a("list", "List Workflows", "Get workflow history", _p("limit", "number", "Max results", default=10)),
    ),
    _local(
        "dashboard.analytics", "Analytics", "analytics",
        "View usage analytics and metrics", "analytics",
        _a("get_usage", "Get Usage Stats", "Fetch API usage statistics", _p("timeframe", "string", "Time range", default="7d")),
    ),
    _local(
        "dashboard.mcp_services", "MCP Services Manager", "automation",
        "Manage external API service integrations", "mcp_services",
        _a(
            "list", "List Services", "Get all available MCP services from the catalog",
            _p("category", "string", "Filter by category"),
        ),
        _a("list_configured", "List Configured Services", "Get services that are already configured for the user"),
        _a("configure", "Configure Service", "Set up a new service with credentials", _p("service_key", "string", "Service identifier", required=True)),
        _a("enable", "Enable Service", "Enable a configured service", _p("service_key", "string", "Service identifier", required=True)),
        _a("disable", "Disable Service", "Disable a service", _p("service_key", "string", "Service identifier", required=True)),
        _a("test", "Test Connection", "Test service connection and credentials", _p("service_key", "string", "Service identifier", required=True)),
    ),
    _local(
        "dashboard.mcp_usage", "MCP Usage Analytics", "analytics",
        "View MCP Router usage statistics, request logs, and performance metrics", "mcp_usage",
        _a("get_stats", "Get Usage Stats", "Fetch MCP Router usage statistics", _p("timeframe", "string", "Time range (7d, 30d, 90d)", default="30d")),
        _a(
            "get_logs", "Get Request Logs", "Fetch recent request logs",
            _p("service", "string", "Filter by service"),
            _p("status", "string", "Filter by status (success, error, rate_limited)"),
            _p("limit", "number", "Max results", default=50),
        ),
        _a("get_service_breakdown", "Get Service Breakdown", "Get usage breakdown by service", _p("timeframe", "string", "Time range", default="30d")),
        _a("get_top_actions", "Get Top Actions", "Get most frequently used actions", _p("limit", "number", "Max results", default=10)),
    ),
    _local(
        "dashboard.mcp_api_keys", "MCP API Keys Manager", "productivity",
        "Manage API keys for MCP Router with scoping and rate limits", "mcp_api_keys",
        _a("list", "List API Keys", "Get all MCP Router API keys"),
        _a(
            "create", "Create API Key", "Generate a new MCP Router API key with scoping",
            _p("name", "string", "Key name", required=True),
            _p("scope_type", "string", "Scope type (all_services or specific_services)", required=True),
            _p("services", "array", "List of service keys if scope is specific"),
            _p("rate_limit_per_minute", "number", "Rate limit per minute"),
            _p("rate_limit_per_day", "number", "Rate limit per day"),
        ),
        _a("revoke", "Revoke API Key", "Revoke an MCP Router API key", _p("key_id", "string", "Key ID", required=True)),
        _a("rotate", "Rotate API Key", "Generate new secret for an existing key", _p("key_id", "string", "Key ID", required=True)),
    ),
)

# ---------------------------------------------------------------------------
# Pre-configured remote tools (user supplies the credential)
# ---------------------------------------------------------------------------

PRECONFIGURED_MCP_TOOLS: Tuple[ToolDefinition, ...] = (
    _mcp(
        "mcp.github", "GitHub", "productivity",
        "Manage repositories, issues, and pull requests", "@modelcontextprotocol/server-github",
        _a(
            "create_issue", "Create Issue", "Create a new GitHub issue",
            _p("repo", "string", "Repository name", required=True),
            _p("title", "string", "Issue title", required=True),
            _p("body", "string", "Issue description"),
        ),
        _a("list_repos", "List Repositories", "Get user repositories"),
    ),
    _mcp(
        "mcp.clickup", "ClickUp", "productivity", "Manage tasks and projects", "clickup-mcp",
        _a(
            "create_task", "Create Task", "Create a new task",
            _p("list_id", "string", "List ID", required=True),
            _p("name", "string", "Task name", required=True),
        ),
        _a("search_tasks", "Search Tasks", "Find tasks", _p("query", "string", "Search query", required=True)),
    ),
    _mcp(
        "mcp.supabase", "Supabase", "database", "Database and backend operations", "supabase-mcp-server",
        _a("search_docs", "Search Documentation", "Search Supabase docs", _p("query", "string", "Search query", required=True)),
        _a("list_projects", "List Projects", "Get Supabase projects"),
    ),
    _mcp(
        "mcp.stripe", "Stripe", "finance", "Payment and subscription management", "stripe-mcp",
        _a("list_customers", "List Customers", "Get Stripe customers", _p("limit", "number", "Max results", default=10)),
        _a("create_payment_link", "Create Payment Link", "Generate payment link", _p("amount", "number", "Amount in cents", required=True)),
    ),
    _mcp(
        "mcp.brave_search", "Brave Search", "analytics", "Web search capabilities", "brave-search-mcp",
        _a("web_search", "Web Search", "Search the web", _p("query", "string", "Search query", required=True)),
    ),
    _mcp(
        "mcp.browserbase", "Browserbase", "automation", "Web automation and scraping", "browserbase-mcp",
        _a("navigate", "Navigate", "Navigate to URL", _p("url", "string", "URL to visit", required=True)),
        _a("extract", "Extract Data", "Extract data from page", _p("selector", "string", "CSS selector", required=True)),
    ),
)

# ---------------------------------------------------------------------------
# Generic API tools (declared, not executable yet)
# ---------------------------------------------------------------------------

GENERIC_API_TOOLS: Tuple[ToolDefinition, ...] = (
    ToolDefinition(
        tool_id="api.webhook",
        name="Outgoing Webhook",
        kind=KIND_GENERIC_API,
        execution=GenericApiExecution(base_url="https://hooks.example.invalid", auth_type="bearer"),
        category="automation",
        description="Post a JSON payload to a user-configured webhook",
        actions=(
            _a("post", "Post Payload", "Send a JSON payload", _p("payload", "object", "Body to send", required=True)),
        ),
        pre_configured=False,
        requires_credential=True,
    ),
)


def build_catalog(tools: Sequence[ToolDefinition]) -> Tuple[ToolDefinition, ...]:
    """Validate a tool table and freeze it.

    Duplicate tool ids, or duplicate action ids inside one tool, are a
    configuration error and must stop the process from starting.
    """
    seen: Set[str] = set()
    for tool in tools:
        if not tool.tool_id or "." not in tool.tool_id:
            raise CatalogConfigurationError(f"Tool id '{tool.tool_id}' must be a dotted namespace.")
        if tool.tool_id in seen:
            raise CatalogConfigurationError(f"Duplicate tool id '{tool.tool_id}' in catalog.")
        seen.add(tool.tool_id)
        action_ids: Set[str] = set()
        for action in tool.actions:
            if not action.action_id or "." in action.action_id:
                raise CatalogConfigurationError(
                    f"Invalid action id '{action.action_id}' on tool '{tool.tool_id}'."
                )
            if action.action_id in action_ids:
                raise CatalogConfigurationError(
                    f"Duplicate action id '{action.action_id}' on tool '{tool.tool_id}'."
                )
            action_ids.add(action.action_id)
    return tuple(tools)


_CATALOG: Tuple[ToolDefinition, ...] = build_catalog(
    DASHBOARD_TOOLS + PRECONFIGURED_MCP_TOOLS + GENERIC_API_TOOLS
)
_BY_ID: Dict[str, ToolDefinition] = {tool.tool_id: tool for tool in _CATALOG}


def all_tools() -> List[ToolDefinition]:
    return list(_CATALOG)


def get_tool(tool_id: str) -> Optional[ToolDefinition]:
    return _BY_ID.get(tool_id)


def tools_by_category(category: str) -> List[ToolDefinition]:
    return [tool for tool in _CATALOG if tool.category == category]
