"""
Nudge Error Pattern Clusterer

Groups observed failures into learned patterns keyed by their keyword
fingerprint, and tracks how often each pattern gets fixed.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from nudge.learning.normalizer import find_similar_errors, normalize_error
from nudge.learning.schemas import (
    ErrorPattern,
    NormalizedError,
    ProcessedError,
    SimilarError,
)
from nudge.learning.store import LearningStore, get_learning_store

logger = logging.getLogger(__name__)

# How many stored patterns similar_patterns() compares against
SIMILARITY_SCAN_LIMIT = 200


class ErrorClusterer:
    """Finds or creates patterns for failures and records fixes."""

    def __init__(self, store: Optional[LearningStore] = None):
        self.store = store or get_learning_store()

    def process_error(self, raw: str, session_id: Optional[str] = None) -> ProcessedError:
        """Normalize a failure, bump (or create) its pattern, log an instance."""
        normalized = normalize_error(raw)
        pattern_id, is_new = self.store.find_or_create_error_pattern(normalized)
        instance_id = self.store.log_error_instance(
            pattern_id,
            normalized.raw,
            file_path=normalized.file_path,
            session_id=session_id,
        )
        logger.debug(
            "error pattern %s (%s) %s, instance %s",
            pattern_id, normalized.category or "uncategorized",
            "created" if is_new else "repeated", instance_id,
        )
        return ProcessedError(
            pattern_id=pattern_id,
            instance_id=instance_id,
            normalized=normalized,
            is_new_pattern=is_new,
        )

    def record_fix(self, instance_id: int, agent_name: Optional[str] = None) -> Optional[ErrorPattern]:
        """Mark an instance fixed; returns the refreshed pattern.

        Returns None when the instance is unknown or already fixed.
        """
        pattern = self.store.mark_error_fixed(instance_id, fix_agent=agent_name)
        if pattern is None:
            logger.debug("record_fix: instance %s unknown or already fixed", instance_id)
        return pattern

    def record_session_fixes(
        self, agent_name: Optional[str] = None, session_id: Optional[str] = None
    ) -> List[ErrorPattern]:
        """Credit a helper with every failure still open in the session."""
        fixed = []
        for instance in self.store.get_unfixed_error_instances(session_id):
            pattern = self.record_fix(instance.id, agent_name)
            if pattern is not None:
                fixed.append(pattern)
        if fixed:
            logger.debug("%s credited with %d fixes", agent_name or "unknown helper", len(fixed))
        return fixed

    def get_learned_patterns(self, limit: int = 20) -> List[ErrorPattern]:
        return self.store.get_top_error_patterns(limit=limit)

    def similar_patterns(
        self,
        error: Union[str, NormalizedError],
        limit: int = 5,
    ) -> List[SimilarError]:
        """Stored patterns whose keywords overlap the given error's.

        The pattern with the identical fingerprint is included (similarity
        1.0) when the error has been seen before.
        """
        target = normalize_error(error) if isinstance(error, str) else error
        patterns = self.store.get_top_error_patterns(limit=SIMILARITY_SCAN_LIMIT)
        ranked = find_similar_errors(target, ((p.canonical_form, p) for p in patterns))
        return [SimilarError(pattern=p, similarity=score) for p, score in ranked[:limit]]

    def suggest_agent_for_error(self, raw: str) -> Optional[str]:
        """Helper suggestion for a failure.

        Uses the category mapping; uncategorized failures borrow the
        suggestion of the closest known pattern.
        """
        normalized = normalize_error(raw)
        if normalized.suggested_agent:
            return normalized.suggested_agent
        for match in self.similar_patterns(normalized, limit=3):
            if match.pattern.suggested_agent:
                return match.pattern.suggested_agent
        return None

    def get_error_summary(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        return self.store.get_error_summary(session_id)
