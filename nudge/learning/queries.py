"""
Nudge Learning Query Functions

Hook entry points for reading and writing learned state during the host's
lifecycle events. All functions are best-effort: a broken or locked store
is logged and turned into a neutral result so the host is never blocked.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from nudge.learning.clusterer import ErrorClusterer
from nudge.learning.effectiveness import EffectivenessTracker
from nudge.learning.engine import LearningEngine
from nudge.learning.hygiene import calculate_efficiency
from nudge.learning.loops import detect_loops
from nudge.learning.predictor import (
    MIN_PREDICTION_CONFIDENCE,
    MIN_SNAPSHOT_EFFECTIVENESS,
    AgentPredictor,
    format_prediction,
)
from nudge.learning.schemas import (
    AgentUsageRecord,
    ErrorPattern,
    HelperSuggestion,
    LearningReport,
    LoopWarning,
    ProcessedError,
    SessionEfficiency,
    ThresholdAdjustment,
)
from nudge.learning.store import (
    LearningStore,
    UsageAlreadyOpenError,
    get_learning_store,
)
from nudge.learning.thresholds import ThresholdManager
from nudge.learning.triggers import HelperTriggers

logger = logging.getLogger(__name__)

ProjectRoot = Optional[Union[str, Path]]


def learning_start_session(
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Optional[str]:
    """Start (or resume) a session. Returns its id, or None on failure."""
    try:
        store = store or get_learning_store()
        return store.start_session(session_id)
    except Exception as e:
        logger.warning("could not start learning session: %s", e)
        return None


def learning_log_event(
    tool: str,
    tool_input: Optional[dict] = None,
    success: bool = True,
    output_summary: Optional[str] = None,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Optional[int]:
    try:
        store = store or get_learning_store()
        return store.log_event(
            tool,
            tool_input=tool_input,
            success=success,
            output_summary=output_summary,
            session_id=session_id,
        )
    except Exception as e:
        logger.warning("could not log %s event: %s", tool, e)
        return None


def learning_count_file_reads(
    file_path: str,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> int:
    try:
        store = store or get_learning_store()
        return store.count_file_reads(file_path, session_id)
    except Exception as e:
        logger.debug("read count unavailable for %s: %s", file_path, e)
        return 0


def learning_count_pattern_searches(
    pattern: str,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> int:
    try:
        store = store or get_learning_store()
        return store.count_pattern_searches(pattern, session_id)
    except Exception as e:
        logger.debug("search count unavailable for %r: %s", pattern, e)
        return 0


def learning_process_error(
    raw: str,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Optional[ProcessedError]:
    """Cluster a failure into a learned pattern."""
    try:
        return ErrorClusterer(store).process_error(raw, session_id=session_id)
    except Exception as e:
        logger.warning("could not learn from error: %s", e)
        return None


def learning_suggest_agent_for_error(
    raw: str,
    store: Optional[LearningStore] = None,
) -> Optional[str]:
    try:
        return ErrorClusterer(store).suggest_agent_for_error(raw)
    except Exception as e:
        logger.debug("no helper suggestion for error: %s", e)
        return None


def learning_begin_usage(
    agent_name: str,
    agent_type: str,
    trigger_context: Optional[str] = None,
    correlation_id: Optional[str] = None,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Optional[int]:
    """Open a usage record for a spawned helper.

    Returns None when the store fails or the helper type is already open
    in the session.
    """
    try:
        return EffectivenessTracker(store).begin_usage(
            agent_name,
            agent_type,
            trigger_context=trigger_context,
            correlation_id=correlation_id,
            session_id=session_id,
        )
    except UsageAlreadyOpenError as e:
        logger.debug("%s", e)
        return None
    except Exception as e:
        logger.warning("could not record spawn of %s: %s", agent_name, e)
        return None


def learning_finish_usage(
    task_success: bool,
    correlation_id: Optional[str] = None,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
    project_root: ProjectRoot = None,
) -> Optional[AgentUsageRecord]:
    """Close and score a helper usage.

    A helper that scored well enough also labels the session's current
    shape as one where it was useful.
    """
    try:
        usage = EffectivenessTracker(store).finish_usage(
            task_success, correlation_id=correlation_id, session_id=session_id
        )
        if usage is None:
            return None
        score = usage.effectiveness_score or 0.0
        if score >= MIN_SNAPSHOT_EFFECTIVENESS:
            AgentPredictor(store, project_root).record_useful_agent(
                usage.agent_name, score, session_id=usage.session_id
            )
        return usage
    except Exception as e:
        logger.warning("could not complete helper usage: %s", e)
        return None


def learning_record_fixes(
    agent_name: Optional[str] = None,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> List[ErrorPattern]:
    """Credit a helper that completed successfully with the session's open failures."""
    try:
        return ErrorClusterer(store).record_session_fixes(agent_name, session_id=session_id)
    except Exception as e:
        logger.warning("could not record fixes for %s: %s", agent_name, e)
        return []


def learning_detect_loops(
    session_id: Optional[str] = None,
    read_threshold: int = 3,
    search_threshold: int = 2,
    store: Optional[LearningStore] = None,
) -> List[LoopWarning]:
    try:
        store = store or get_learning_store()
        return detect_loops(
            store,
            session_id=session_id,
            read_threshold=read_threshold,
            search_threshold=search_threshold,
        )
    except Exception as e:
        logger.debug("loop detection skipped: %s", e)
        return []


def learning_session_suggestions(
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
    project_root: ProjectRoot = None,
) -> List[HelperSuggestion]:
    """Helpers the session's activity has earned under the current thresholds."""
    try:
        return HelperTriggers(store, project_root).session_suggestions(session_id)
    except Exception as e:
        logger.debug("helper triggers skipped: %s", e)
        return []


def learning_recurring_error_suggestion(
    processed: ProcessedError,
    agent_name: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Optional[HelperSuggestion]:
    try:
        return HelperTriggers(store).recurring_error_suggestion(processed, agent_name)
    except Exception as e:
        logger.debug("recurring error trigger skipped: %s", e)
        return None


def learning_suggest_agent(
    session_id: Optional[str] = None,
    min_confidence: float = MIN_PREDICTION_CONFIDENCE,
    store: Optional[LearningStore] = None,
    project_root: ProjectRoot = None,
) -> Optional[str]:
    """Formatted helper prediction for the session, or None."""
    try:
        prediction = AgentPredictor(store, project_root).suggest_agent(
            session_id, min_confidence=min_confidence
        )
        return format_prediction(prediction) if prediction else None
    except Exception as e:
        logger.debug("prediction skipped: %s", e)
        return None


def learning_session_efficiency(
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> Optional[SessionEfficiency]:
    try:
        return calculate_efficiency(store, session_id)
    except Exception as e:
        logger.debug("efficiency unavailable: %s", e)
        return None


def learning_claim_efficiency(
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
) -> bool:
    """True the first time a session's efficiency is allowed to move thresholds."""
    try:
        store = store or get_learning_store()
        return store.claim_efficiency_adjustment(session_id)
    except Exception as e:
        logger.debug("efficiency claim failed: %s", e)
        return False


def learning_adjust_for_efficiency(
    score: float,
    store: Optional[LearningStore] = None,
) -> List[ThresholdAdjustment]:
    try:
        return ThresholdManager(store).adjust_for_efficiency(score)
    except Exception as e:
        logger.warning("threshold adjustment for efficiency failed: %s", e)
        return []


def learning_run_cycle(
    window_days: int = 30,
    session_id: Optional[str] = None,
    store: Optional[LearningStore] = None,
    project_root: ProjectRoot = None,
) -> Optional[LearningReport]:
    try:
        return LearningEngine(store, project_root).run_learning_cycle(
            window_days, session_id=session_id
        )
    except Exception as e:
        logger.warning("learning cycle failed: %s", e)
        return None
