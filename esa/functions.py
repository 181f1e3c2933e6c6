"""Shell-command functions that an agent exposes to the model as tools."""

from __future__ import annotations

import json
import os
import re
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from esa.paths import expand_home_path
from esa.shellblocks import process_shell_blocks
from esa.userinput import confirm

DEFAULT_TIMEOUT = 60
_KILL_GRACE = 3.0

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}

_VERB = re.compile(r"%([-+# 0]*)(\d*)(?:\.(\d+))?([a-zA-Z%])")
_ENV_REF = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z0-9_]+)")


@dataclass
class ParameterConfig:
    """One parameter of a function and how it is put into the command."""

    name: str
    type: str = ""
    description: str = ""
    required: bool = False
    format: str = ""
    options: list[str] = field(default_factory=list)


@dataclass
class FunctionConfig:
    """A templated shell command offered to the model as a tool."""

    name: str
    description: str = ""
    command: str = ""
    parameters: list[ParameterConfig] = field(default_factory=list)
    safe: bool = False
    stdin: str = ""
    output: str = ""
    pwd: str = ""
    timeout: int = 0


@dataclass(frozen=True)
class ExecutionResult:
    """What running a function produced.

    ``executed`` is False when the user declined; ``output`` then holds the
    message passed back to the model.
    """

    executed: bool
    command: str
    stdin: str
    output: str


def _format_float(value: float) -> str:
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _go_value(value: Any) -> str:
    """Render a decoded JSON value the way the default formatter prints it."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _format_float(float(value))
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        items = " ".join(f"{key}:{_go_value(value[key])}" for key in sorted(value))
        return f"map[{items}]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_go_value(item) for item in value) + "]"
    return str(value)


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "float64"
    return "string"


def _format_verb(flags: str, width: str, precision: str | None, verb: str, value: Any) -> str:
    if value is None:
        text = "<nil>" if verb == "v" else f"%!{verb}(<nil>)"
    elif isinstance(value, (Mapping, list, tuple)):
        text = _go_value(value)
    elif isinstance(value, bool):
        text = _go_value(value) if verb in "vt" else f"%!{verb}(bool={_go_value(value)})"
    elif isinstance(value, (int, float)):
        if verb == "v" or (verb in "gG" and precision is None):
            text = _go_value(value)
        elif verb in "fFeEgG":
            spec = "%" + (f".{precision}" if precision is not None else "") + verb
            text = spec % float(value)
        else:
            text = f"%!{verb}(float64={_go_value(value)})"
    elif verb in "vs":
        text = value
    elif verb == "q":
        text = json.dumps(value, ensure_ascii=False)
    elif verb == "x":
        text = value.encode("utf-8").hex()
    else:
        text = f"%!{verb}({_type_name(value)}={value})"
    if width:
        size = int(width)
        if "-" in flags:
            text = text.ljust(size)
        else:
            text = text.rjust(size, "0" if "0" in flags and isinstance(value, (int, float)) else " ")
    return text


def _sprintf(fmt: str, value: Any) -> str:
    used = False

    def substitute(match: re.Match[str]) -> str:
        nonlocal used
        flags, width, precision, verb = match.groups()
        if verb == "%":
            return "%"
        if used:
            return f"%!{verb}(MISSING)"
        used = True
        return _format_verb(flags, width, precision, verb, value)

    return _VERB.sub(substitute, fmt)


def _replacement(param: ParameterConfig, value: Any) -> str:
    if param.format == "boolean":
        word = _go_value(value)
        if word in _TRUE_WORDS:
            return param.format
        if word in _FALSE_WORDS:
            return ""
        raise ValueError(f"invalid boolean value: {word}")
    if param.format and "%" not in param.format:
        return param.format
    if param.format:
        return _sprintf(param.format, value)
    return _go_value(value)


def _fill(template: str, fc: FunctionConfig, args: Mapping[str, Any], drop_optional: bool) -> str:
    for param in fc.parameters:
        placeholder = "{{" + param.name + "}}"
        if param.name in args:
            template = template.replace(placeholder, _replacement(param, args[param.name]))
        elif drop_optional and not param.required:
            template = template.replace(placeholder, "")
    return template


def _tool_for(fc: FunctionConfig) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in fc.parameters:
        props: dict[str, Any] = {"type": param.type, "description": param.description}
        if param.options:
            props["enum"] = list(param.options)
        properties[param.name] = props
        if param.required:
            required.append(param.name)
    description = (
        f"{fc.description}\n\nThe templated cli command that will be ran is: `{fc.command}`"
    )
    return {
        "type": "function",
        "function": {
            "name": fc.name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


def convert_functions_to_tools(functions: Iterable[FunctionConfig]) -> list[dict[str, Any]]:
    """Describe each function as a tool definition for the chat API."""
    return [_tool_for(fc) for fc in functions]


def needs_confirmation(ask_level: str, is_safe: bool) -> bool:
    """Tell whether the user must approve a call at this ask level."""
    ask_level = ask_level or "unsafe"
    return ask_level == "all" or (ask_level == "unsafe" and not is_safe)


def _parse_args(fc: FunctionConfig, args: str) -> dict[str, Any]:
    if args == "":
        return {}
    try:
        parsed = json.loads(args)
    except ValueError as exc:
        raise ValueError(f"error parsing arguments: {exc}") from exc
    if parsed is None:
        parsed = {}
    if not isinstance(parsed, dict):
        raise ValueError("error parsing arguments: arguments must be a JSON object")
    missing = [p.name for p in fc.parameters if p.required and parsed.get(p.name) is None]
    if missing:
        raise ValueError(f"missing required parameters: {', '.join(missing)}")
    return parsed


def _prepare_command(fc: FunctionConfig, args: Mapping[str, Any]) -> str:
    command = _fill(process_shell_blocks(fc.command), fc, args, drop_optional=True)
    return " ".join(command.split())


def _prepare_stdin(template: str, args: Mapping[str, Any]) -> str:
    processed = process_shell_blocks(template)
    for key, value in args.items():
        processed = processed.replace("{{" + key + "}}", _go_value(value))
    return processed


def _expand_env(text: str) -> str:
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1) or m.group(2), ""), text)


def _exit_description(code: int) -> str:
    if code < 0:
        return f"signal: {-code}"
    return f"exit status {code}"


def _run(command: str, fc: FunctionConfig, args: Mapping[str, Any]) -> tuple[str, str]:
    if fc.output:
        sys.stdout.write(_fill(process_shell_blocks(fc.output), fc, args, drop_optional=False))
        sys.stdout.flush()

    timeout = fc.timeout if fc.timeout > 0 else DEFAULT_TIMEOUT
    cwd = None
    if fc.pwd:
        cwd = _expand_env(expand_home_path(_fill(fc.pwd, fc, args, drop_optional=False)))

    stdin_content = _prepare_stdin(fc.stdin, args) if fc.stdin else ""
    try:
        process = subprocess.Popen(
            ["sh", "-c", command],
            stdin=subprocess.PIPE if fc.stdin else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
        )
    except OSError as exc:
        raise RuntimeError(f"{exc}\nCommand: {command}\nOutput: ") from exc

    data = stdin_content.encode("utf-8") if fc.stdin else None
    try:
        raw, _ = process.communicate(input=data, timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        try:
            process.communicate(timeout=_KILL_GRACE)
        except subprocess.TimeoutExpired:
            pass
        raise TimeoutError(f"command timed out after {timeout} seconds: {command}") from None

    output = raw.decode("utf-8", errors="replace")
    if process.returncode != 0:
        raise RuntimeError(
            f"{_exit_description(process.returncode)}\nCommand: {command}\nOutput: {output}"
        )
    return output, stdin_content


def execute_function(ask_level: str, fc: FunctionConfig, args: str) -> ExecutionResult:
    """Fill in the command from JSON ``args``, ask if needed, and run it.

    Raises ValueError for bad arguments, TimeoutError when the command runs
    too long and RuntimeError when it fails.
    """
    parsed = _parse_args(fc, args)
    original = _prepare_command(fc, parsed)
    command = expand_home_path(original)

    if needs_confirmation(ask_level, fc.safe):
        response = confirm(f"Execute `{command}`?")
        if not response.approved:
            if response.message:
                message = f"Message from user: {response.message}"
            else:
                message = "Command execution cancelled by user."
            return ExecutionResult(executed=False, command=command, stdin="", output=message)

    output, stdin_content = _run(command, fc, parsed)
    return ExecutionResult(
        executed=True, command=original, stdin=stdin_content, output=output.strip()
    )