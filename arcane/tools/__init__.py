from arcane.tools.sandbox import (
    ls, read, write, edit, glob, grep, bash,
    dispatch, ToolResult, ALL_SCHEMAS, TOOL_CALLABLES, TOOL_NAMES, SCHEMA_VERSION,
)
from arcane.tools.summary import summarize
__all__ = [
    "ls", "read", "write", "edit", "glob", "grep", "bash",
    "dispatch", "ToolResult", "ALL_SCHEMAS", "TOOL_CALLABLES", "TOOL_NAMES", "SCHEMA_VERSION",
    "summarize",
]
