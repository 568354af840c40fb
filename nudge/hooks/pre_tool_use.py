#!/usr/bin/env python3
"""
Nudge Pre-Tool-Use Hook

Runs before each tool call:
- Task: opens a usage record for the helper being spawned
- Read/View: stops re-reading a file the session already has
- Grep: stops repeating a search whose results won't change

Modes:
  - off: approve everything
  - warn: approve, with the loop explained in the reason
  - block: refuse the repeated read or search

Input (stdin): JSON with tool_name, tool_input, tool_use_id, session_id
Output (stdout): JSON {"decision": "approve"|"block", "reason"?}
"""

from pathlib import PurePath
from typing import Any, Dict, Optional

from nudge.config import NudgeConfig, NudgeMode
from nudge.hooks.utils import (
    APPROVE,
    resolve_config,
    resolve_store,
    run_hook,
    session_id_for,
)
from nudge.learning.queries import (
    learning_begin_usage,
    learning_count_file_reads,
    learning_count_pattern_searches,
)
from nudge.learning.store import READ_TOOLS, SEARCH_TOOLS, LearningStore


def _target_file(tool_input: Dict[str, Any]) -> Optional[str]:
    value = tool_input.get("file_path") or tool_input.get("path")
    return value if isinstance(value, str) and value else None


def _loop_answer(config: NudgeConfig, reason: str) -> Dict[str, Any]:
    if config.mode == NudgeMode.BLOCK:
        return {"decision": "block", "reason": reason}
    return {"decision": "approve", "reason": reason}


def check_read_loop(
    tool_input: Dict[str, Any],
    config: NudgeConfig,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Dict[str, Any]:
    file_path = _target_file(tool_input)
    if not file_path:
        return dict(APPROVE)

    count = learning_count_file_reads(file_path, session_id, store=store)
    if count < config.loop_blocking.read_threshold:
        return dict(APPROVE)

    name = PurePath(file_path).name
    return _loop_answer(config, "\n".join([
        f'Loop blocked: You\'ve already read "{name}" {count} times.',
        "",
        "You have the information. Instead of re-reading:",
        "  - Make the edit you need",
        "  - Or move on to a different task",
        "",
        "If you truly need to re-read, raise loop_blocking.read_threshold in .nudge/config.yaml.",
    ]))


def check_search_loop(
    tool_input: Dict[str, Any],
    config: NudgeConfig,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Dict[str, Any]:
    pattern = tool_input.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        return dict(APPROVE)

    count = learning_count_pattern_searches(pattern, session_id, store=store)
    if count < config.loop_blocking.search_threshold:
        return dict(APPROVE)

    return _loop_answer(config, "\n".join([
        f'Loop blocked: You\'ve already searched for "{pattern}" {count} times.',
        "",
        "The results won't change. Use what you already found.",
        "",
        "If you need different results, try:",
        "  - A different search pattern",
        "  - Searching in a different directory",
    ]))


def record_spawn(
    input_data: Dict[str, Any],
    config: NudgeConfig,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> None:
    tool_input = input_data.get("tool_input") or {}
    agent_name = tool_input.get("subagent_type")
    if not isinstance(agent_name, str) or not agent_name:
        return
    learning_begin_usage(
        agent_name,
        config.resolve_agent_type(agent_name),
        trigger_context=tool_input.get("description"),
        correlation_id=input_data.get("tool_use_id"),
        session_id=session_id,
        store=store,
    )


def process_hook(
    input_data: Dict[str, Any],
    store: Optional[LearningStore] = None,
    config: Optional[NudgeConfig] = None,
) -> Dict[str, Any]:
    """Decide on one tool call. Returns the host's approve/block answer."""
    config = resolve_config(input_data, config)
    if not config.enabled:
        return dict(APPROVE)
    store = resolve_store(input_data, store)
    if store is None:
        return dict(APPROVE)

    tool_name = input_data.get("tool_name", "")
    tool_input = input_data.get("tool_input") or {}
    if not isinstance(tool_input, dict):
        return dict(APPROVE)
    session_id = session_id_for(input_data)

    if tool_name == "Task":
        if config.features.effectiveness_tracking:
            record_spawn(input_data, config, session_id, store)
        return dict(APPROVE)

    if config.mode == NudgeMode.OFF or not config.loop_blocking.enabled:
        return dict(APPROVE)

    if tool_name in READ_TOOLS:
        return check_read_loop(tool_input, config, session_id, store)
    if tool_name in SEARCH_TOOLS:
        return check_search_loop(tool_input, config, session_id, store)
    return dict(APPROVE)


def main():
    """Entry point for the hook."""
    run_hook(process_hook, dict(APPROVE))


if __name__ == "__main__":
    main()
