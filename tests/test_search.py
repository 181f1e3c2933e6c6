from esa.functions import FunctionConfig, ParameterConfig
from esa.search import (
    SearchIndex,
    ToolSummary,
    build_search_index,
    search_tool_definition,
)


def _index():
    functions = [
        FunctionConfig(name="list_files", description="List directory contents"),
        FunctionConfig(name="disk_usage", description="Show filesystem usage"),
    ]
    mcp_tools = [
        {
            "type": "function",
            "function": {
                "name": "mcp_filesystem_read_file",
                "description": "Read a file from disk",
            },
        }
    ]
    return build_search_index(functions, mcp_tools)


def test_search_index_finds_by_name_and_description():
    index = _index()
    result = index.search("list", 10)
    assert result.results
    assert result.results[0].name == "list_files"

    result = index.search("usage", 10)
    assert result.results
    assert result.results[0].name == "disk_usage"


def test_search_index_limit():
    functions = [
        FunctionConfig(name="a", description="alpha"),
        FunctionConfig(name="b", description="beta"),
        FunctionConfig(name="c", description="charlie"),
    ]
    index = build_search_index(functions, None)
    result = index.search("a", 1)
    assert len(result.results) == 1


def test_name_match_ranks_above_description_match():
    functions = [
        FunctionConfig(name="alpha", description="uses disk"),
        FunctionConfig(name="disk_tool", description="nothing"),
    ]
    result = build_search_index(functions, []).search("disk")
    assert [t.name for t in result.results] == ["disk_tool", "alpha"]


def test_empty_query_returns_all_sorted_by_name():
    result = _index().search("   ")
    assert result.query == ""
    names = [t.name for t in result.results]
    assert names == sorted(names)
    assert len(names) == 3


def test_default_limit_applies():
    functions = [FunctionConfig(name=f"tool{i:02d}") for i in range(12)]
    result = build_search_index(functions, []).search("tool", 0)
    assert len(result.results) == 8
    assert result.results[0].name == "tool00"


def test_no_match_returns_empty():
    assert _index().search("zzz").results == []


def test_sources_and_parameters():
    functions = [
        FunctionConfig(
            name="grep",
            description="  Search text  ",
            parameters=[ParameterConfig(name="pattern"), ParameterConfig(name="")],
        ),
        FunctionConfig(name=""),
    ]
    mcp_tools = [{"type": "function", "function": None}, {"function": {"name": "mcp_x_y"}}]
    result = build_search_index(functions, mcp_tools).search("")
    by_name = {t.name: t for t in result.results}
    assert set(by_name) == {"grep", "mcp_x_y"}
    assert by_name["grep"].source == "function"
    assert by_name["grep"].description == "Search text"
    assert by_name["grep"].parameters == ["pattern"]
    assert by_name["mcp_x_y"].source == "mcp"


def test_search_case_insensitive():
    index = SearchIndex([ToolSummary(name="ReadFile")])
    assert [t.name for t in index.search("readfile").results] == ["ReadFile"]


def test_to_dict_omits_empty_fields():
    result = SearchIndex([ToolSummary(name="a")]).search("a")
    assert result.to_dict() == {"query": "a", "results": [{"name": "a"}]}


def test_search_tool_definition():
    tool = search_tool_definition()
    function = tool["function"]
    assert tool["type"] == "function"
    assert function["name"] == "tool_search"
    assert function["description"] == "Search available tools by name or description."
    assert function["parameters"]["required"] == ["query"]
    assert function["parameters"]["properties"]["limit"]["type"] == "integer"