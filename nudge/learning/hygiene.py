"""
Nudge Session Hygiene

Scores how efficiently a session turns reading and searching into edits.
The 0-100 score feeds the threshold manager's efficiency path.
"""

from collections import Counter
from typing import List, Optional

from nudge.learning.schemas import SessionEfficiency, SessionEvent
from nudge.learning.store import (
    EDIT_TOOLS,
    READ_TOOLS,
    SEARCH_TOOLS,
    LearningStore,
    get_learning_store,
)

BASE_SCORE = 50
FOCUS_WEIGHT = 50
MAX_FOCUS_BONUS = 40
LOOP_PENALTY = 5
MAX_LOOP_PENALTY = 20
SEARCH_WEIGHT = 30
VERIFY_PENALTY = 5
MAX_VERIFY_PENALTY = 10

# A file read this many times counts as a loop
LOOP_READ_COUNT = 3


def score_events(events: List[SessionEvent], verification_failures: int = 0) -> SessionEfficiency:
    """Efficiency of a session from its ordered events."""
    reads: Counter = Counter()
    edited = set()
    last_edit_index = -1
    grep_indexes = []

    for index, event in enumerate(events):
        path = event.file_path
        if event.tool in READ_TOOLS and path:
            reads[path] += 1
        elif event.tool in EDIT_TOOLS and path:
            edited.add(path)
            last_edit_index = index
        elif event.tool in SEARCH_TOOLS:
            grep_indexes.append(index)

    focus_ratio = len(edited) / len(reads) if reads else 1.0
    loop_count = sum(1 for count in reads.values() if count >= LOOP_READ_COUNT)
    if grep_indexes:
        converted = sum(1 for i in grep_indexes if i < last_edit_index)
        search_efficiency = converted / len(grep_indexes)
    else:
        search_efficiency = 1.0

    score = (
        BASE_SCORE
        + min(focus_ratio * FOCUS_WEIGHT, MAX_FOCUS_BONUS)
        - min(loop_count * LOOP_PENALTY, MAX_LOOP_PENALTY)
        + search_efficiency * SEARCH_WEIGHT
        - min(verification_failures * VERIFY_PENALTY, MAX_VERIFY_PENALTY)
    )
    return SessionEfficiency(
        score=int(round(max(0, min(100, score)))),
        focus_ratio=focus_ratio,
        loop_count=loop_count,
        search_efficiency=search_efficiency,
        verification_failures=verification_failures,
        files_read=len(reads),
        files_edited=len(edited),
    )


def calculate_efficiency(
    store: Optional[LearningStore] = None,
    session_id: Optional[str] = None,
    verification_failures: int = 0,
) -> SessionEfficiency:
    """Efficiency of a stored session (the current one by default)."""
    store = store or get_learning_store()
    return score_events(store.get_session_events(session_id), verification_failures)


def format_efficiency_warning(efficiency: SessionEfficiency, warn_below: int = 40) -> Optional[str]:
    """Short hint when a session is running inefficiently, else None."""
    if efficiency.score >= warn_below:
        return None
    parts = [f"Session efficiency {efficiency.score}/100"]
    if efficiency.loop_count:
        parts.append(f"{efficiency.loop_count} file(s) read {LOOP_READ_COUNT}+ times")
    if efficiency.files_read and efficiency.focus_ratio < 0.5:
        parts.append(f"{efficiency.files_read} files read, {efficiency.files_edited} edited")
    return " - ".join(parts)
