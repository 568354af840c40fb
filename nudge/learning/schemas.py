"""
Nudge Learning Data Schemas

Dataclasses for learned state and for the results the learning core
hands back to hooks and the CLI.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


# =========================================================================
# Session evidence
# =========================================================================


@dataclass
class SessionEvent:
    """One logged tool use."""

    id: int
    session_id: str
    timestamp: str
    tool: str
    tool_input: Dict[str, Any] = field(default_factory=dict)
    output_summary: Optional[str] = None
    success: bool = True
    duration_ms: int = 0

    @property
    def file_path(self) -> Optional[str]:
        value = self.tool_input.get("file_path") or self.tool_input.get("path")
        return value if isinstance(value, str) and value else None

    @property
    def pattern(self) -> Optional[str]:
        value = self.tool_input.get("pattern")
        return value if isinstance(value, str) and value else None


# =========================================================================
# Error patterns
# =========================================================================


@dataclass
class NormalizedError:
    """Result of running a raw failure message through the normalizer."""

    raw: str
    canonical: str
    keywords: Set[str]
    pattern_hash: str
    category: Optional[str] = None
    file_path: Optional[str] = None
    suggested_agent: Optional[str] = None


@dataclass
class ErrorPattern:
    """A cluster of failures sharing one keyword fingerprint."""

    id: int
    pattern_hash: str
    canonical_form: str
    category: Optional[str]
    suggested_agent: Optional[str] = None
    occurrence_count: int = 1
    fix_count: int = 0
    fix_success_rate: float = 0.0
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None


@dataclass
class ErrorInstance:
    """One concrete failure occurrence."""

    id: int
    pattern_id: int
    raw_error: str
    file_path: Optional[str]
    session_id: Optional[str] = None
    was_fixed: bool = False
    fix_agent: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class ProcessedError:
    """What process_error() hands back."""

    pattern_id: int
    instance_id: int
    normalized: NormalizedError
    is_new_pattern: bool = False


@dataclass
class SimilarError:
    pattern: ErrorPattern
    similarity: float


# =========================================================================
# Agent usage
# =========================================================================


@dataclass
class AgentBaseline:
    """Session metrics captured when a helper is spawned."""

    reads_at_spawn: int = 0
    errors_at_spawn: int = 0


@dataclass
class AgentOutcome:
    """Session metrics captured when a helper completes.

    ``reads_after`` and ``errors_after`` count what happened after the
    spawn, not session totals.
    """

    reads_after: int = 0
    errors_after: int = 0
    task_success: bool = False


@dataclass
class AgentUsageRecord:
    """One helper invocation, from spawn to completion."""

    id: int
    session_id: str
    agent_name: str
    agent_type: str
    trigger_context: Optional[str] = None
    correlation_id: Optional[str] = None
    reads_at_spawn: int = 0
    errors_at_spawn: int = 0
    completed: bool = False
    task_success: Optional[bool] = None
    reads_after: Optional[int] = None
    errors_after: Optional[int] = None
    effectiveness_score: Optional[float] = None
    timestamp: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class AgentEffectivenessStats:
    """Aggregated effectiveness for one helper type over a window."""

    agent_type: str
    sample_count: int
    avg_effectiveness: float
    success_rate: float


# =========================================================================
# Thresholds
# =========================================================================


class PersistStatus(str, Enum):
    """Whether a computed change reached the store."""
    PERSISTED = "persisted"
    NOT_PERSISTED = "not_persisted"


@dataclass
class ThresholdConfig:
    """Trigger threshold state for one helper type."""

    agent_type: str
    threshold_value: float
    min_value: float
    max_value: float
    effectiveness_avg: float = 0.5
    sample_count: int = 0
    last_adjusted: Optional[str] = None
    adjustment_history: List[Dict[str, Any]] = field(default_factory=list)
    stored: bool = False  # False when materialized from built-in defaults


@dataclass
class ThresholdAdjustment:
    """A threshold change, and whether it was written."""

    agent_type: str
    old_value: float
    new_value: float
    reason: str
    effectiveness_avg: Optional[float] = None
    sample_count: Optional[int] = None
    timestamp: Optional[str] = None
    status: PersistStatus = PersistStatus.PERSISTED
    error: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.status == PersistStatus.PERSISTED


# =========================================================================
# Context features & prediction
# =========================================================================


@dataclass
class ContextFeatures:
    """Shape of a session: where it edits, what it edits, how healthy it is."""

    folder_activity: Dict[str, int] = field(default_factory=dict)
    file_types: Dict[str, int] = field(default_factory=dict)
    error_rate: float = 0.0
    loop_rate: float = 0.0
    tool_distribution: Dict[str, int] = field(default_factory=dict)


@dataclass
class ContextSnapshot:
    """A stored, labeled ContextFeatures example."""

    id: int
    features: ContextFeatures
    useful_agent: str
    agent_effectiveness: float
    session_id: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class ContextMatch:
    snapshot: ContextSnapshot
    similarity: float


@dataclass
class AgentPrediction:
    """Which helper the current session most resembles a good use of."""

    agent_name: str
    confidence: float
    score: float
    reason: str
    similar_contexts: List[ContextMatch] = field(default_factory=list)


# =========================================================================
# Session hygiene
# =========================================================================


@dataclass
class LoopWarning:
    """A repeated read or search spotted in the recent event window."""

    kind: str  # repeated_read/repeated_search
    target: str
    count: int
    message: str

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.target}"


@dataclass
class HelperSuggestion:
    """A helper whose trigger metric has reached its learned threshold."""

    agent_name: str
    agent_type: str
    target: str
    metric: float
    threshold: float
    reason: str

    @property
    def key(self) -> str:
        return f"suggest:{self.agent_type}:{self.target}"

    @property
    def message(self) -> str:
        return f"Suggested agent: {self.agent_name} - {self.reason}"


@dataclass
class SessionEfficiency:
    """0-100 efficiency score for a session, with its inputs."""

    score: int
    focus_ratio: float
    loop_count: int
    search_efficiency: float
    verification_failures: int = 0
    files_read: int = 0
    files_edited: int = 0


# =========================================================================
# Learning report
# =========================================================================


@dataclass
class LearningReport:
    """Plain-data result of one learning cycle."""

    agent_effectiveness: List[AgentEffectivenessStats] = field(default_factory=list)
    effective_agents: List[str] = field(default_factory=list)
    ineffective_agents: List[str] = field(default_factory=list)
    threshold_adjustments: List[ThresholdAdjustment] = field(default_factory=list)
    error_patterns: List[ErrorPattern] = field(default_factory=list)
    top_error_categories: List[Dict[str, Any]] = field(default_factory=list)
    current_prediction: Optional[AgentPrediction] = None
    insights: List[str] = field(default_factory=list)
    total_agent_usages: int = 0
    average_effectiveness: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for adj in data["threshold_adjustments"]:
            adj["status"] = PersistStatus(adj["status"]).value
        return data
