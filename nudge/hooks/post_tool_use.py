#!/usr/bin/env python3
"""
Nudge Post-Tool-Use Hook

Records what each tool call did so the learning core has evidence:
1. Logs the event with a derived success flag and output summary
2. Clusters the failure text when the call failed, and suggests a helper
   once the same failure has recurred past its learned threshold
3. Looks for read/search loops after reads and searches
4. Scores a helper when its Task call completes, crediting it with the
   session's open failures when it succeeded

Input (stdin): JSON with tool_name, tool_input, tool_response, tool_use_id
Output (stdout): JSON with additionalContext when there is something to say
"""

from typing import Any, Dict, List, Optional

from nudge.config import NudgeConfig
from nudge.hooks.utils import (
    additional_context,
    load_warning_cache,
    project_dir_for,
    resolve_config,
    resolve_store,
    run_hook,
    save_warning_cache,
    session_id_for,
)
from nudge.learning.queries import (
    learning_detect_loops,
    learning_finish_usage,
    learning_log_event,
    learning_process_error,
    learning_record_fixes,
    learning_recurring_error_suggestion,
    learning_suggest_agent_for_error,
)
from nudge.learning.schemas import AgentUsageRecord
from nudge.learning.store import READ_TOOLS, SEARCH_TOOLS, LearningStore

# Shorter failure text carries too little to cluster
MIN_ERROR_LENGTH = 10

_STRING_FAILURE_MARKERS = ("does not exist", "ENOENT")
_STDERR_FAILURE_WORDS = ("error", "failed", "exception")


def is_successful(tool_name: str, tool_response: Any) -> bool:
    """Derive success from a tool response."""
    if tool_response is None:
        return True

    if isinstance(tool_response, str):
        if "error" in tool_response.lower():
            return False
        return not any(marker in tool_response for marker in _STRING_FAILURE_MARKERS)

    if isinstance(tool_response, dict):
        if tool_response.get("error") or tool_response.get("interrupted"):
            return False
        stderr = tool_response.get("stderr")
        if tool_name == "Bash" and isinstance(stderr, str) and stderr:
            lowered = stderr.lower()
            if any(word in lowered for word in _STDERR_FAILURE_WORDS):
                return False

    return True


def extract_output_text(tool_response: Any) -> str:
    """Text content of a tool response: file content, stdout, or error."""
    if isinstance(tool_response, str):
        return tool_response
    if not isinstance(tool_response, dict):
        return ""

    file_info = tool_response.get("file")
    if isinstance(file_info, dict) and isinstance(file_info.get("content"), str):
        if file_info["content"]:
            return file_info["content"]
    for key in ("stdout", "error"):
        value = tool_response.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def extract_error_text(tool_name: str, tool_response: Any) -> str:
    """The text that explains a failure: the error, failing stderr, or output."""
    if isinstance(tool_response, dict):
        error = tool_response.get("error")
        if isinstance(error, str) and error:
            return error
        stderr = tool_response.get("stderr")
        if tool_name == "Bash" and isinstance(stderr, str) and stderr:
            lowered = stderr.lower()
            if any(word in lowered for word in _STDERR_FAILURE_WORDS):
                return stderr
    return extract_output_text(tool_response)


def _helper_name(tool_input: Dict[str, Any], usage: Optional[AgentUsageRecord]) -> Optional[str]:
    if usage is not None:
        return usage.agent_name
    name = tool_input.get("subagent_type")
    return name if isinstance(name, str) and name else None


def process_hook(
    input_data: Dict[str, Any],
    store: Optional[LearningStore] = None,
    config: Optional[NudgeConfig] = None,
) -> Dict[str, Any]:
    """Main entry point for the PostToolUse hook."""
    config = resolve_config(input_data, config)
    if not config.enabled:
        return {}
    store = resolve_store(input_data, store)
    if store is None:
        return {}

    tool_name = input_data.get("tool_name", "")
    tool_input = input_data.get("tool_input") or {}
    if not isinstance(tool_input, dict):
        tool_input = {}
    tool_response = input_data.get("tool_response")
    session_id = session_id_for(input_data)
    project_dir = project_dir_for(input_data)

    success = is_successful(tool_name, tool_response)
    output_text = extract_output_text(tool_response)

    learning_log_event(
        tool_name,
        tool_input=tool_input,
        success=success,
        output_summary=output_text,
        session_id=session_id,
        store=store,
    )

    messages: List[str] = []
    cache = load_warning_cache(project_dir, config)

    error_text = extract_error_text(tool_name, tool_response) if not success else ""
    if len(error_text) >= MIN_ERROR_LENGTH and config.features.error_learning:
        processed = learning_process_error(error_text, session_id=session_id, store=store)
        if processed and not processed.is_new_pattern:
            agent = processed.normalized.suggested_agent or learning_suggest_agent_for_error(
                error_text, store=store
            )
            if agent:
                suggestion = learning_recurring_error_suggestion(processed, agent, store=store)
                if suggestion is not None:
                    category = processed.normalized.category or "uncategorized"
                    if cache.should_warn(suggestion.key):
                        messages.append(f"Recurring {category} error. {suggestion.message}")

    if (tool_name in READ_TOOLS or tool_name in SEARCH_TOOLS) and config.features.loop_detection:
        warnings = learning_detect_loops(
            session_id,
            read_threshold=config.loop_blocking.read_threshold,
            search_threshold=config.loop_blocking.search_threshold,
            store=store,
        )
        # One loop warning per call: the newest not yet warned about
        for warning in warnings:
            if cache.should_warn(warning.key):
                messages.append(warning.message)
                break

    if tool_name == "Task":
        usage = None
        if config.features.effectiveness_tracking:
            usage = learning_finish_usage(
                success,
                correlation_id=input_data.get("tool_use_id"),
                session_id=session_id,
                store=store,
                project_root=project_dir,
            )
        if success and config.features.error_learning:
            learning_record_fixes(
                _helper_name(tool_input, usage), session_id=session_id, store=store
            )

    if messages:
        save_warning_cache(cache, project_dir)

    return additional_context("PostToolUse", "\n".join(messages))


def main():
    """Read hook input from stdin, process, and output the answer."""
    run_hook(process_hook, {})


if __name__ == "__main__":
    main()
