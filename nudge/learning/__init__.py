"""
Nudge Self-Learning

Persistent, per-project learning that turns a session's evidence into
better guidance over time.

Features:
- Error pattern clustering by keyword fingerprint
- Helper effectiveness scoring from before/after session metrics
- Adaptive per-type trigger thresholds
- Context-similarity prediction of a useful helper
- Session hygiene scoring and loop detection

Guarantees:
- Thresholds never leave their per-type [min, max] bounds
- At most one open usage record per (session, helper type)
- No threshold moves on fewer than 5 samples
- Full audit trail for every store mutation
"""

from nudge.learning.engine import LearningEngine
from nudge.learning.store import LearningStore, get_learning_store

__all__ = ["LearningEngine", "LearningStore", "get_learning_store"]
