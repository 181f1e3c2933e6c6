"""Clients for MCP servers that run as child processes speaking JSON-RPC over stdio."""

from __future__ import annotations

import json
import os
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from esa.functions import needs_confirmation
from esa.userinput import ConfirmResponse, confirm

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "esa"
CLIENT_VERSION = "1.0.0"
MAX_RESPONSE_SIZE = 10 * 1024 * 1024
_STDERR_PEEK = 1024

Ask = Callable[[str], ConfirmResponse]


@dataclass
class MCPServerConfig:
    """How to start an MCP server and which of its tools to offer."""

    command: str
    args: list[str] = field(default_factory=list)
    safe: bool = False
    allowed_functions: list[str] = field(default_factory=list)
    safe_functions: list[str] = field(default_factory=list)


class MCPError(Exception):
    """Raised when an MCP server cannot be reached or reports a failure.

    ``code`` and ``data`` are set when the server sent a JSON-RPC error.
    """

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


def _encode(message: Mapping[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + b"\n"


def _tool_prefix(server_name: str) -> str:
    return f"mcp_{server_name}_"


class MCPClient:
    """A connection to one MCP server process."""

    def __init__(self, name: str, config: MCPServerConfig, ask: Ask | None = None) -> None:
        self.name = name
        self.config = config
        self._ask: Ask = ask or confirm
        self._process: subprocess.Popen[bytes] | None = None
        self._tools: list[dict[str, Any]] = []
        self._function_safety: dict[str, bool] = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def __enter__(self) -> MCPClient:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Start the server process, initialise the session and load its tools."""
        with self._lock:
            if self._running:
                return
            try:
                self._process = subprocess.Popen(
                    [self.config.command, *self.config.args],
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as exc:
                raise MCPError(f"failed to start MCP server {self.name}: {exc}") from exc
            self._running = True

            try:
                self._initialize()
            except MCPError as exc:
                self._stop_locked()
                raise MCPError(f"failed to initialize MCP server {self.name}: {exc}") from exc
            try:
                self._load_tools()
            except MCPError as exc:
                self._stop_locked()
                raise MCPError(
                    f"failed to load tools from MCP server {self.name}: {exc}"
                ) from exc

    def stop(self) -> None:
        """Close the pipes and terminate the server process."""
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if not self._running:
            return
        self._running = False
        process = self._process
        if process is None:
            return
        for stream in (process.stdin, process.stdout, process.stderr):
            if stream is not None:
                try:
                    stream.close()
                except OSError:
                    pass
        try:
            process.kill()
        except OSError:
            pass
        process.wait()

    def _initialize(self) -> None:
        response = self._send_request(
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "initialize",
                "params": {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
                },
            }
        )
        error = _response_error(response)
        if error is not None:
            raise MCPError(f"initialization failed: {error.message}", error.code, error.data)
        self._send_notification(
            {"jsonrpc": "2.0", "id": None, "method": "notifications/initialized"}
        )

    def _load_tools(self) -> None:
        response = self._send_request({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
        error = _response_error(response)
        if error is not None:
            raise MCPError(f"failed to list tools: {error.message}", error.code, error.data)

        result = response.get("result")
        if result is None:
            result = {}
        if not isinstance(result, dict):
            raise MCPError("failed to unmarshal tools result: expected an object")
        listed = result.get("tools") or []
        if not isinstance(listed, list) or not all(isinstance(t, dict) for t in listed):
            raise MCPError("failed to unmarshal tools result: tools must be a list of objects")

        allowed = set(self.config.allowed_functions)
        safe = set(self.config.safe_functions)
        tools: list[dict[str, Any]] = []
        for entry in listed:
            name = entry.get("name") or ""
            description = entry.get("description") or ""
            if not isinstance(name, str) or not isinstance(description, str):
                raise MCPError("failed to unmarshal tools result: name and description must be strings")
            if allowed and name not in allowed:
                continue
            self._function_safety[name] = self.config.safe or name in safe
            tools.append(
                {
                    "type": "function",
                    "function": {
                        "name": f"{_tool_prefix(self.name)}{name}",
                        "description": description,
                        "parameters": entry.get("inputSchema"),
                    },
                }
            )
        self._tools = tools

    def get_tools(self) -> list[dict[str, Any]]:
        """Return the tool definitions this server offers, prefixed with its name."""
        with self._lock:
            return list(self._tools)

    def call_tool(self, tool_name: str, arguments: Any, ask_level: str) -> str:
        """Call a prefixed tool on the server, asking the user first if needed.

        Returns the tool's text output, or the user's reply when the call was
        declined. Raises MCPError when the call fails.
        """
        with self._lock:
            if not self._running:
                raise MCPError(f"MCP server {self.name} is not running")
            prefix = _tool_prefix(self.name)
            if not tool_name.startswith(prefix):
                raise MCPError(f"invalid tool name format: {tool_name}")
            actual = tool_name[len(prefix):]
            is_safe = self._function_safety.get(actual, self.config.safe)

            if needs_confirmation(ask_level, is_safe):
                if arguments is None:
                    shown = "{}"
                else:
                    try:
                        shown = json.dumps(arguments, separators=(",", ":"), ensure_ascii=False)
                    except (TypeError, ValueError):
                        shown = str(arguments)
                response = self._ask(f"Call {self.name}:{actual}({shown})?")
                if not response.approved:
                    if response.message:
                        return f"Message from user: {response.message}"
                    return "MCP tool execution cancelled by user."

            params: dict[str, Any] = {"name": actual}
            if arguments is not None:
                params["arguments"] = arguments
            reply = self._send_request(
                {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": params}
            )
            error = _response_error(reply)
            if error is not None:
                raise MCPError(f"tool call failed: {error.message}", error.code, error.data)

            result = reply.get("result")
            if result is None:
                result = {}
            if not isinstance(result, dict):
                raise MCPError("failed to unmarshal tool result: expected an object")
            content = result.get("content") or []
            if not isinstance(content, list) or not all(isinstance(c, dict) for c in content):
                raise MCPError("failed to unmarshal tool result: content must be a list of objects")
            text = "\n".join(str(item.get("text") or "") for item in content)
            if result.get("isError"):
                raise MCPError("Tool execution error\n" + text)
            return text or "(No output)"

    def _write(self, payload: bytes, what: str) -> None:
        assert self._process is not None and self._process.stdin is not None
        try:
            self._process.stdin.write(payload)
            self._process.stdin.flush()
        except (OSError, ValueError) as exc:
            raise MCPError(f"failed to write {what}: {exc}") from exc

    def _send_notification(self, notification: Mapping[str, Any]) -> None:
        self._write(_encode(notification), "notification")

    def _send_request(self, request: Mapping[str, Any]) -> dict[str, Any]:
        self._write(_encode(request), "request")
        process = self._process
        assert process is not None and process.stdout is not None
        try:
            raw = process.stdout.readline(MAX_RESPONSE_SIZE + 1)
        except (OSError, ValueError) as exc:
            raise MCPError(f"failed to read response (scanner error): {exc}") from exc
        if len(raw) > MAX_RESPONSE_SIZE:
            raise MCPError("failed to read response (scanner error): token too long")
        if not raw:
            stderr_text = self._peek_stderr()
            if stderr_text:
                raise MCPError(
                    f"failed to read response, stderr from MCP server: {stderr_text}"
                )
            raise MCPError("failed to read response (no data from MCP server)")

        line = raw.rstrip(b"\n").rstrip(b"\r").decode("utf-8", errors="replace")
        try:
            response = json.loads(line)
        except ValueError as exc:
            raise MCPError(
                f"failed to unmarshal response: {exc}, raw response: {line}"
            ) from exc
        if not isinstance(response, dict):
            raise MCPError(
                f"failed to unmarshal response: expected an object, raw response: {line}"
            )
        return response

    def _peek_stderr(self) -> str:
        process = self._process
        if process is None or process.stderr is None:
            return ""
        try:
            data = os.read(process.stderr.fileno(), _STDERR_PEEK)
        except (OSError, ValueError):
            return ""
        return data.decode("utf-8", errors="replace")


def _response_error(response: Mapping[str, Any]) -> MCPError | None:
    error = response.get("error")
    if error is None:
        return None
    if not isinstance(error, dict):
        return MCPError(str(error))
    code = error.get("code")
    return MCPError(
        str(error.get("message") or ""),
        code if isinstance(code, int) else None,
        error.get("data"),
    )


class MCPManager:
    """Starts, stops and routes calls to several MCP servers."""

    def __init__(self, ask: Ask | None = None) -> None:
        self._ask = ask
        self._clients: dict[str, MCPClient] = {}
        self._lock = threading.RLock()

    def __enter__(self) -> MCPManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop_all_servers()

    def start_servers(self, mcp_servers: Mapping[str, MCPServerConfig]) -> None:
        """Start every configured server; on a failure stop those already started."""
        with self._lock:
            for name, config in mcp_servers.items():
                client = MCPClient(name, config, ask=self._ask)
                try:
                    client.start()
                except MCPError as exc:
                    self._stop_all_locked()
                    raise MCPError(f"failed to start MCP server {name}: {exc}") from exc
                self._clients[name] = client

    def stop_all_servers(self) -> None:
        """Stop every running server."""
        with self._lock:
            self._stop_all_locked()

    def _stop_all_locked(self) -> None:
        for name, client in self._clients.items():
            try:
                client.stop()
            except Exception as exc:
                print(f"Warning: failed to stop MCP server {name}: {exc}", file=sys.stderr)
        self._clients = {}

    def get_all_tools(self) -> list[dict[str, Any]]:
        """Return the tools of all servers."""
        with self._lock:
            return [tool for client in self._clients.values() for tool in client.get_tools()]

    def call_tool(self, tool_name: str, arguments: Any, ask_level: str) -> str:
        """Call a tool on the server whose prefix it carries."""
        with self._lock:
            for server_name, client in self._clients.items():
                if tool_name.startswith(_tool_prefix(server_name)):
                    return client.call_tool(tool_name, arguments, ask_level)
        raise MCPError(f"no MCP server found for tool: {tool_name}")