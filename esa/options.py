"""Command-line options shared across the application."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CLIOptions:
    """Options gathered from the command line."""

    debug_mode: bool = False
    continue_chat: bool = False
    conversation: str = ""
    retry_chat: bool = False
    repl_mode: bool = False
    agent_path: str = ""
    ask_level: str = ""
    show_commands: bool = False
    show_tool_calls: bool = False
    hide_progress: bool = False
    command_str: str = ""
    agent_name: str = ""
    agent_version: str = ""
    model: str = ""
    config_path: str = ""
    output_format: str = ""
    show_agent: bool = False
    list_agents: bool = False
    list_user_agents: bool = False
    list_history: bool = False
    show_history: bool = False
    show_output: bool = False
    show_stats: bool = False
    show_all: bool = False
    inspect: bool = False
    inspect_format: str = ""
    system_prompt: str = ""
    pretty: bool = False
    think: bool = False
    no_think: bool = False
    compaction: bool = False
    no_compaction: bool = False