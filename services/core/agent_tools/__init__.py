# Agent tool contract
from .commands import ToolContext, ToolResult, parse_command, TOOL_NAMES
from .executor import AgentToolExecutor
from .tool_definitions import tool_definitions
