"""
Nudge Helper Triggers

Turns session metrics into helper suggestions, each gated on the learned
threshold of its helper type:

- wide-activity-detector: edits in the busiest folder
- re-read-detector: reads of the most re-read file
- recurring-failure-detector: occurrences of a failure pattern

Because the thresholds adapt (effectiveness and session efficiency), the
same session can surface a suggestion sooner or later than the defaults.
"""

import logging
from collections import Counter
from pathlib import Path, PurePosixPath
from typing import List, Optional, Union

from nudge.learning.predictor import ROOT_FOLDER, features_from_events
from nudge.learning.schemas import HelperSuggestion, ProcessedError
from nudge.learning.store import READ_TOOLS, LearningStore, get_learning_store
from nudge.learning.thresholds import ThresholdManager

logger = logging.getLogger(__name__)

WIDE_ACTIVITY = "wide-activity-detector"
RECURRING_FAILURE = "recurring-failure-detector"
RE_READ = "re-read-detector"

CONTEXT_KEEPER = "context-keeper"
ERROR_FIXER = "error-fixer"


def folder_expert_name(folder: str) -> str:
    return f"{folder}-expert" if folder != ROOT_FOLDER else "project-expert"


class HelperTriggers:
    """Threshold-gated helper suggestions for the current session."""

    def __init__(
        self,
        store: Optional[LearningStore] = None,
        project_root: Optional[Union[str, Path]] = None,
    ):
        self.store = store or get_learning_store()
        self.project_root = project_root
        self.thresholds = ThresholdManager(self.store)

    def _suggest(
        self, agent_type: str, agent_name: str, target: str, metric: float, reason: str
    ) -> Optional[HelperSuggestion]:
        if not self.thresholds.should_suggest(agent_type, metric):
            logger.debug("%s: %s at %s, below threshold", agent_type, target, metric)
            return None
        return HelperSuggestion(
            agent_name=agent_name,
            agent_type=agent_type,
            target=target,
            metric=metric,
            threshold=self.thresholds.get_threshold(agent_type),
            reason=reason,
        )

    def session_suggestions(self, session_id: Optional[str] = None) -> List[HelperSuggestion]:
        """Folder and re-read suggestions the session has earned, in that order."""
        events = self.store.get_session_events(session_id)
        suggestions = []

        features = features_from_events(events, self.project_root)
        if features.folder_activity:
            folder, edits = max(features.folder_activity.items(), key=lambda item: item[1])
            suggestion = self._suggest(
                WIDE_ACTIVITY, folder_expert_name(folder), folder, edits,
                f"{edits} edits in {folder}/",
            )
            if suggestion:
                suggestions.append(suggestion)

        reads = Counter(e.file_path for e in events if e.tool in READ_TOOLS and e.file_path)
        if reads:
            file_path, count = reads.most_common(1)[0]
            suggestion = self._suggest(
                RE_READ, CONTEXT_KEEPER, file_path, count,
                f"{PurePosixPath(file_path).name} read {count}x",
            )
            if suggestion:
                suggestions.append(suggestion)

        return suggestions

    def recurring_error_suggestion(
        self,
        processed: ProcessedError,
        agent_name: Optional[str] = None,
    ) -> Optional[HelperSuggestion]:
        """Suggestion once a failure pattern has recurred often enough."""
        pattern = self.store.get_error_pattern(processed.pattern_id)
        if pattern is None:
            return None
        category = pattern.category or "uncategorized"
        return self._suggest(
            RECURRING_FAILURE,
            agent_name or pattern.suggested_agent or ERROR_FIXER,
            pattern.pattern_hash,
            pattern.occurrence_count,
            f"{pattern.occurrence_count}x {category} errors",
        )
