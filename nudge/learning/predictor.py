"""
Nudge Context Feature Extractor & Similarity Matcher

Summarizes a session's shape (which folders and file types it edits, how
often it fails, how often it re-reads) and predicts a helper by
nearest-neighbor vote over past sessions where a helper proved useful.
"""

import logging
from collections import Counter
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Union

from nudge.learning.normalizer import jaccard
from nudge.learning.schemas import (
    AgentPrediction,
    ContextFeatures,
    ContextMatch,
    SessionEvent,
)
from nudge.learning.store import (
    EDIT_TOOLS,
    READ_TOOLS,
    LearningStore,
    get_learning_store,
)

logger = logging.getLogger(__name__)

# Similarity blend weights
FOLDER_WEIGHT = 0.4
FILE_TYPE_WEIGHT = 0.2
ERROR_RATE_WEIGHT = 0.2
LOOP_RATE_WEIGHT = 0.2

MIN_SNAPSHOT_EFFECTIVENESS = 0.4
MIN_CONTEXT_SIMILARITY = 0.3
SNAPSHOT_SCAN_LIMIT = 100

PREDICTION_NEIGHBORS = 5
MIN_PREDICTION_SCORE = 0.3
MIN_PREDICTION_CONFIDENCE = 0.4

ROOT_FOLDER = "."


# =========================================================================
# Features
# =========================================================================


def folder_of(file_path: str, project_root: Optional[Union[str, Path]] = None) -> str:
    """First path segment of a file, relative to the project root if inside it."""
    path = PurePosixPath(file_path.replace("\\", "/"))
    if project_root is not None:
        try:
            path = path.relative_to(PurePosixPath(str(project_root).replace("\\", "/")))
        except ValueError:
            pass
    parts = [p for p in path.parts if p not in ("/", ".", "..")]
    return parts[0] if len(parts) > 1 else ROOT_FOLDER


def extension_of(file_path: str) -> Optional[str]:
    name = PurePosixPath(file_path.replace("\\", "/")).name
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem or not ext:
        return None
    return ext.lower()


def features_from_events(
    events: Iterable[SessionEvent],
    project_root: Optional[Union[str, Path]] = None,
) -> ContextFeatures:
    """Build a ContextFeatures vector from a session's events."""
    folders: Counter = Counter()
    file_types: Counter = Counter()
    tools: Counter = Counter()
    reads: Counter = Counter()
    total = failed = 0

    for event in events:
        total += 1
        tools[event.tool] += 1
        if not event.success:
            failed += 1

        path = event.file_path
        if not path:
            continue
        if event.tool in EDIT_TOOLS:
            folders[folder_of(path, project_root)] += 1
            ext = extension_of(path)
            if ext:
                file_types[ext] += 1
        elif event.tool in READ_TOOLS:
            reads[path] += 1

    reread = sum(1 for count in reads.values() if count > 1)
    return ContextFeatures(
        folder_activity=dict(folders),
        file_types=dict(file_types),
        error_rate=failed / total if total else 0.0,
        loop_rate=reread / len(reads) if reads else 0.0,
        tool_distribution=dict(tools),
    )


def compute_similarity(a: ContextFeatures, b: ContextFeatures) -> float:
    """Blend of folder/extension overlap and error/loop rate proximity.

    Only which folders and file types were touched counts, not how often.
    """
    folder_sim = jaccard(set(a.folder_activity), set(b.folder_activity))
    type_sim = jaccard(set(a.file_types), set(b.file_types))
    error_sim = 1 - min(1.0, abs(a.error_rate - b.error_rate))
    loop_sim = 1 - min(1.0, abs(a.loop_rate - b.loop_rate))
    return (
        folder_sim * FOLDER_WEIGHT
        + type_sim * FILE_TYPE_WEIGHT
        + error_sim * ERROR_RATE_WEIGHT
        + loop_sim * LOOP_RATE_WEIGHT
    )


def format_prediction(prediction: AgentPrediction) -> str:
    """One-line, human-readable rendering of a prediction."""
    percent = round(prediction.confidence * 100)
    return f"Suggested: {prediction.agent_name} ({percent}% confidence) - {prediction.reason}"


# =========================================================================
# Predictor
# =========================================================================


class AgentPredictor:
    """Nearest-neighbor helper prediction over stored context snapshots."""

    def __init__(
        self,
        store: Optional[LearningStore] = None,
        project_root: Optional[Union[str, Path]] = None,
    ):
        self.store = store or get_learning_store()
        self.project_root = project_root

    def extract_current_features(self, session_id: Optional[str] = None) -> ContextFeatures:
        return features_from_events(
            self.store.get_session_events(session_id), self.project_root
        )

    def find_similar_contexts(
        self, features: ContextFeatures, limit: int = PREDICTION_NEIGHBORS
    ) -> List[ContextMatch]:
        """Stored snapshots most similar to `features`, best first.

        Only snapshots whose helper scored >= 0.4 are considered, and only
        matches with similarity >= 0.3 are kept.
        """
        snapshots = self.store.get_context_snapshots(
            min_effectiveness=MIN_SNAPSHOT_EFFECTIVENESS, limit=SNAPSHOT_SCAN_LIMIT
        )
        matches = []
        for snapshot in snapshots:
            similarity = compute_similarity(features, snapshot.features)
            if similarity >= MIN_CONTEXT_SIMILARITY:
                matches.append(ContextMatch(snapshot=snapshot, similarity=similarity))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    def predict_agent(self, session_id: Optional[str] = None) -> Optional[AgentPrediction]:
        """Vote among the closest past contexts for the helper to use now.

        Returns None when nothing is similar enough or the winning vote is
        below 0.3.
        """
        features = self.extract_current_features(session_id)
        matches = self.find_similar_contexts(features, limit=PREDICTION_NEIGHBORS)
        if not matches:
            return None

        votes: Counter = Counter()
        supporters: Counter = Counter()
        for match in matches:
            agent = match.snapshot.useful_agent
            votes[agent] += match.similarity * match.snapshot.agent_effectiveness
            supporters[agent] += 1

        # Ties go to the agent whose first vote came earliest (best match)
        best_agent, best_score = max(votes.items(), key=lambda item: item[1])
        if best_score < MIN_PREDICTION_SCORE:
            logger.debug("prediction withheld: %s scored %.2f", best_agent, best_score)
            return None

        confidence = min(1.0, best_score / len(matches))
        return AgentPrediction(
            agent_name=best_agent,
            confidence=confidence,
            score=best_score,
            reason=(
                f"Similar to {supporters[best_agent]} previous contexts "
                f"where {best_agent} was helpful"
            ),
            similar_contexts=matches,
        )

    def suggest_agent(
        self,
        session_id: Optional[str] = None,
        min_confidence: float = MIN_PREDICTION_CONFIDENCE,
    ) -> Optional[AgentPrediction]:
        """predict_agent() gated by a minimum confidence."""
        prediction = self.predict_agent(session_id)
        if prediction is None or prediction.confidence < min_confidence:
            return None
        return prediction

    def record_useful_agent(
        self,
        agent_name: str,
        effectiveness: float,
        session_id: Optional[str] = None,
    ) -> int:
        """Snapshot the session's features, labeled with a helper that worked."""
        features = self.extract_current_features(session_id)
        return self.store.save_context_snapshot(
            features, agent_name, effectiveness, session_id=session_id
        )
