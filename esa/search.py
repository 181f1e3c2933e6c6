"""Searching the tools an agent offers by name and description."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from esa.functions import FunctionConfig

TOOL_SEARCH_NAME = "tool_search"
DEFAULT_LIMIT = 8


@dataclass
class ToolSummary:
    """A short description of one tool."""

    name: str
    description: str = ""
    parameters: list[str] = field(default_factory=list)
    source: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out empty fields."""
        data: dict[str, Any] = {"name": self.name}
        if self.description:
            data["description"] = self.description
        if self.parameters:
            data["parameters"] = list(self.parameters)
        if self.source:
            data["source"] = self.source
        return data


@dataclass
class ToolSearchResult:
    """The tools that matched a query, best first."""

    query: str
    results: list[ToolSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"query": self.query, "results": [r.to_dict() for r in self.results]}


def _score(tool: ToolSummary, query: str) -> int:
    if not query:
        return 1
    needle = query.lower()
    if needle in tool.name.lower():
        return 3
    if needle in tool.description.lower():
        return 1
    return 0


class SearchIndex:
    """Ranks tools against a query: name matches above description matches."""

    def __init__(self, tools: Iterable[ToolSummary] = ()) -> None:
        self._tools = list(tools)

    def search(self, query: str, limit: int = 0) -> ToolSearchResult:
        """Return up to ``limit`` matching tools (8 when limit is not positive)."""
        query = query.strip()
        if limit <= 0:
            limit = DEFAULT_LIMIT
        scored = [(score, tool) for tool in self._tools if (score := _score(tool, query)) > 0]
        scored.sort(key=lambda item: (-item[0], item[1].name))
        return ToolSearchResult(query=query, results=[tool for _, tool in scored[:limit]])


def build_search_index(
    functions: Iterable[FunctionConfig], mcp_tools: Iterable[Mapping[str, Any]] | None
) -> SearchIndex:
    """Index configured functions and tool definitions from MCP servers."""
    items = [
        ToolSummary(
            name=fn.name,
            description=fn.description.strip(),
            parameters=[p.name for p in fn.parameters if p.name],
            source="function",
        )
        for fn in functions
        if fn.name
    ]
    for tool in mcp_tools or ():
        function = tool.get("function")
        if not function or not function.get("name"):
            continue
        items.append(
            ToolSummary(
                name=function["name"],
                description=(function.get("description") or "").strip(),
                source="mcp",
            )
        )
    return SearchIndex(items)


def search_tool_definition() -> dict[str, Any]:
    """Return the definition of the tool that searches the other tools."""
    return {
        "type": "function",
        "function": {
            "name": TOOL_SEARCH_NAME,
            "description": "Search available tools by name or description.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query."},
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of tools to return.",
                    },
                },
                "required": ["query"],
            },
        },
    }