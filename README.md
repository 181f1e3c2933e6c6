# esa

Building blocks for a command-line LLM agent: the parts that sit around the
model itself. Everything uses only the Python standard library, from
Python 3.11 on. Shell commands are run with `sh`, and interactive prompts read
from `/dev/tty` (falling back to stdin), so a POSIX system is expected.

## Modules

- `esa.functions`: shell commands described as tools. `FunctionConfig` and
  `ParameterConfig` describe a templated command; `convert_functions_to_tools`
  turns them into chat-API tool definitions; `execute_function(ask_level, fc,
  args)` fills `{{name}}` placeholders from JSON arguments, asks the user when
  `needs_confirmation` says so, runs the command with a timeout (60 seconds by
  default) and returns an `ExecutionResult`. It raises `ValueError` for bad or
  missing arguments, `TimeoutError` when the command runs too long and
  `RuntimeError` when it exits with an error.
- `esa.shellblocks`: `process_shell_blocks` replaces `{{$command}}` blocks with
  the command's output and `{{#prompt}}` blocks with text the user types.
- `esa.search`: `build_search_index` indexes functions and MCP tool
  definitions; `SearchIndex.search(query, limit)` ranks name matches above
  description matches (8 results by default). `search_tool_definition` returns
  the definition of the `tool_search` tool.
- `esa.mcp`: `MCPClient` starts a Model Context Protocol server as a child
  process, speaks JSON-RPC over its stdin and stdout, lists its tools (named
  `mcp_<server>_<tool>`) and calls them, honouring `allowed_functions`,
  `safe_functions` and the server-wide `safe` setting of `MCPServerConfig`.
  `MCPManager` runs several servers and routes calls by prefix. Failures raise
  `MCPError`.
- `esa.security`: `GateChain` runs gates in order; the first gate that does
  not return `Decision.ABSTAIN` decides, and if all abstain the call is
  denied. `DenyGate` denies everything; `HumanGate` asks the user.
- `esa.redaction`: redaction policies. `build_policy(cfg, legacy_name)`
  returns a policy and its kind: `none` (`NoopPolicy`),
  `builtin/marker-regex` (`MarkerRegexPolicy`, read from a TOML file,
  `esa.redaction.toml` in the current directory by default) or
  `external/http` (`ExternalHTTPPolicy`, which POSTs the text as JSON to a
  service). With `fail_open` set, a failing policy returns the original text.
  `register_policy` and `register_policy_builder` add further kinds;
  `glob_match` is the path matcher used for scopes (`**`, `*`, `?`, `[...]`,
  `{a,b}`).
- `esa.telemetry`: event contexts (`TurnContext`, `ToolCallContext`,
  `CompactionContext`, `RetryContext`, `ErrorContext`), the `Telemetry`
  protocol, `Fanout` to several sinks, `Noop`, and `LoggingAdapter`, which
  writes events as `logging` records with the fields in `extra`.
- `esa.telemetry_work`: `WorkTelemetry` turns events into named `Job`s handed
  to an `Enqueuer` you supply, directly or through a bounded buffer drained by
  a background thread (`WorkQueueOptions`); `WorkConsumer` turns jobs back
  into events for a sink.
- `esa.history_files`: naming and finding conversation history files in the
  cache directory, by conversation id or by 1-based recency index.
- `esa.tape`: `build_tape` gives a linear view of a decoded history file;
  `TextRenderer` and `JSONRenderer` format it.
- `esa.usage`: `Usage`, a running count of prompt and completion tokens.
- `esa.tokenizer`: `FallbackCounter` estimates tokens from a
  characters-per-token ratio (4 by default); `MapProvider` picks a counter by
  provider name.
- `esa.model_context`: `ModelContextTools` looks up context-window sizes from
  overrides keyed by provider and model.
- `esa.logsetup`: `setup_logging(LoggingConfig)` sends `logging` output to a
  rotating file (size limit, backup count and age pruning) and/or stderr, as
  text or JSON lines.
- `esa.paths`, `esa.userinput`, `esa.options`: home and cache directory
  helpers, terminal prompts (`confirm`, `read_user_input`, `read_stdin`) and
  the `CLIOptions` record.

## Examples

Decide whether a tool call needs the user's approval:

```python
from esa.functions import needs_confirmation

needs_confirmation("unsafe", is_safe=True)   # False
needs_confirmation("all", is_safe=True)      # True
```

Search the tools an agent has:

```python
from esa.functions import FunctionConfig
from esa.search import build_search_index

index = build_search_index(
    [
        FunctionConfig(name="list_files", description="List directory contents"),
        FunctionConfig(name="disk_usage", description="Show filesystem usage"),
    ],
    [],
)
result = index.search("usage", 10)
print([tool.name for tool in result.results])   # ['disk_usage']
```

Chain security gates:

```python
from esa.security import Decision, DenyGate, GateChain, ToolIntent

chain = GateChain([DenyGate()])
decision, signed = chain.evaluate(ToolIntent(tool_name="rm", args_json="{}"))
assert decision is Decision.DENY
```

Redact text with a marker/regex policy:

```python
from esa.redaction import RedactionConfig, RedactionContext, build_policy

policy, kind = build_policy(
    RedactionConfig(kind="builtin/marker-regex", config_file="esa.redaction.toml"),
    "",
)
policy.redact(RedactionContext(resource_path="notes/todo.md"), "secret=abc")
```

A policy file holds path scopes and rules:

```toml
[paths]
include = ["**/*"]

[[rules]]
name = "marker"
type = "marker"
open = "\\[private"
close = "private\\]"
scope = ["**/*.md"]

[[rules]]
name = "assignments"
type = "regex"
pattern = "secret=[A-Za-z0-9_]+"
replacement = "[REDACTED]"
```

Keep a running token count:

```python
from esa.usage import Usage

usage = Usage()
usage.add(100, 25)
usage.add(200, 50)
usage.to_dict()   # {'prompt_tokens': 300, 'completion_tokens': 75, 'total_tokens': 375}
```

Render a stored conversation:

```python
from esa.tape import TextRenderer, build_tape

history = {
    "agent_path": "builtin:default",
    "messages": [{"role": "user", "content": "hello"}],
}
tape = build_tape("session---agent-20240101-120000.json", history)
print(TextRenderer().render(tape))
```

## Files

History files and the default log file (`esa.log`) live in the user cache
directory under `esa/` (for example `~/.cache/esa` on Linux or
`~/Library/Caches/esa` on macOS). New history files are named
`<conversation>---<agent>-<YYYYMMDD-HHMMSS>.json`, or
`---<agent>-<YYYYMMDD-HHMMSS>.json` when the conversation is a number.

## What it does not do

This is a library, not a finished agent. It installs no command and has no
chat loop: it does not talk to a model provider, load agent definitions or
read and write the contents of history files; it only names and finds them
and renders their decoded contents. Token estimates come from
`FallbackCounter` alone, with no model-specific tokenizer. `WorkTelemetry`
does not ship a queue backend; you pass in an object with an `enqueue`
method.