import os

import pytest

from esa.functions import (
    ExecutionResult,
    FunctionConfig,
    ParameterConfig,
    convert_functions_to_tools,
    execute_function,
    needs_confirmation,
)


def _echo(**kwargs):
    return FunctionConfig(
        name="echo",
        description="Echo text",
        command="echo {{msg}}",
        parameters=[ParameterConfig(name="msg", type="string", required=True)],
        **kwargs,
    )


def test_convert_functions_to_tools_structure():
    fc = FunctionConfig(
        name="list_files",
        description="List files",
        command="ls {{dir}}",
        parameters=[
            ParameterConfig(name="dir", type="string", description="Directory", required=True),
            ParameterConfig(name="sort", type="string", options=["name", "size"]),
        ],
    )
    [tool] = convert_functions_to_tools([fc])
    assert tool["type"] == "function"
    function = tool["function"]
    assert function["name"] == "list_files"
    assert function["description"] == (
        "List files\n\nThe templated cli command that will be ran is: `ls {{dir}}`"
    )
    params = function["parameters"]
    assert params["type"] == "object"
    assert params["required"] == ["dir"]
    assert params["properties"]["dir"] == {"type": "string", "description": "Directory"}
    assert params["properties"]["sort"]["enum"] == ["name", "size"]
    assert "enum" not in params["properties"]["dir"]


def test_convert_functions_to_tools_empty():
    assert convert_functions_to_tools([]) == []


@pytest.mark.parametrize(
    "ask_level, is_safe, expected",
    [
        ("", False, True),
        ("", True, False),
        ("unsafe", False, True),
        ("unsafe", True, False),
        ("all", True, True),
        ("all", False, True),
        ("none", False, False),
        ("none", True, False),
    ],
)
def test_needs_confirmation(ask_level, is_safe, expected):
    assert needs_confirmation(ask_level, is_safe) is expected


def test_execute_function_runs_command():
    result = execute_function("none", _echo(), '{"msg": "hello"}')
    assert result == ExecutionResult(executed=True, command="echo hello", stdin="", output="hello")


def test_execute_function_drops_missing_optional_parameter():
    fc = FunctionConfig(
        name="f",
        command="echo {{a}}   {{b}} end",
        parameters=[
            ParameterConfig(name="a", required=True),
            ParameterConfig(name="b"),
        ],
    )
    result = execute_function("none", fc, '{"a": "x"}')
    assert result.command == "echo x end"
    assert result.output == "x end"


def test_execute_function_missing_required():
    with pytest.raises(ValueError, match="missing required parameters: msg"):
        execute_function("none", _echo(), '{"other": 1}')


def test_execute_function_null_required_counts_as_missing():
    with pytest.raises(ValueError, match="missing required parameters"):
        execute_function("none", _echo(), '{"msg": null}')


def test_execute_function_bad_json():
    with pytest.raises(ValueError, match="error parsing arguments"):
        execute_function("none", _echo(), "{not json")


def test_execute_function_format_without_percent_inserts_literal():
    fc = FunctionConfig(
        name="f",
        command="echo {{verbose}}",
        parameters=[ParameterConfig(name="verbose", format="--verbose")],
    )
    assert execute_function("none", fc, '{"verbose": "yes"}').command == "echo --verbose"


def test_execute_function_format_with_verb():
    fc = FunctionConfig(
        name="f",
        command="echo {{name}}",
        parameters=[ParameterConfig(name="name", format="--name=%s")],
    )
    assert execute_function("none", fc, '{"name": "bob"}').output == "--name=bob"


def test_execute_function_boolean_format():
    fc = FunctionConfig(
        name="f",
        command="echo start {{flag}}",
        parameters=[ParameterConfig(name="flag", format="boolean")],
    )
    assert execute_function("none", fc, '{"flag": true}').command == "echo start boolean"
    assert execute_function("none", fc, '{"flag": false}').command == "echo start"
    with pytest.raises(ValueError, match="invalid boolean value"):
        execute_function("none", fc, '{"flag": "maybe"}')


def test_execute_function_number_rendering():
    fc = FunctionConfig(
        name="f",
        command="echo {{n}}",
        parameters=[ParameterConfig(name="n", format="%v")],
    )
    assert execute_function("none", fc, '{"n": 3}').output == "3"
    assert execute_function("none", fc, '{"n": 2.0}').output == "2"


def test_execute_function_stdin_template():
    fc = FunctionConfig(
        name="f",
        command="cat",
        stdin="value={{msg}}",
        parameters=[ParameterConfig(name="msg")],
    )
    result = execute_function("none", fc, '{"msg": "hello"}')
    assert result.stdin == "value=hello"
    assert result.output == "value=hello"


def test_execute_function_pwd(tmp_path):
    fc = FunctionConfig(name="f", command="pwd", pwd=str(tmp_path))
    result = execute_function("none", fc, "")
    assert os.path.realpath(result.output) == os.path.realpath(str(tmp_path))


def test_execute_function_output_template_printed(capsys):
    fc = _echo(output="running {{msg}}\n")
    execute_function("none", fc, '{"msg": "hello"}')
    assert capsys.readouterr().out.startswith("running hello\n")


def test_execute_function_failure_raises():
    fc = FunctionConfig(name="f", command="echo oops; exit 3")
    with pytest.raises(RuntimeError) as info:
        execute_function("none", fc, "")
    assert "exit status 3" in str(info.value)
    assert "oops" in str(info.value)


def test_execute_function_timeout():
    fc = FunctionConfig(name="f", command="exec sleep 5", timeout=1)
    with pytest.raises(TimeoutError, match="command timed out after 1 seconds"):
        execute_function("none", fc, "")