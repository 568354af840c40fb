"""
Nudge Loop Detection

Spots an agent going in circles: the same file read again and again, or
the same search repeated, within the last few events.

Repeat warnings are suppressed through a WarningCache the caller owns.
Hooks run as separate processes, so they load the cache from a JSON
state file and save it back after use.
"""

import json
import time
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

from nudge.learning.schemas import LoopWarning, SessionEvent
from nudge.learning.store import READ_TOOLS, SEARCH_TOOLS, LearningStore

LOOP_WINDOW = 10
READ_LOOP_COUNT = 3
SEARCH_LOOP_COUNT = 2
WARNING_COOLDOWN_SECONDS = 300


class WarningCache:
    """Remembers when each loop was last warned about.

    Keys are LoopWarning.key values; values are epoch seconds.
    """

    def __init__(self, warned: Optional[Dict[str, float]] = None,
                 cooldown_seconds: float = WARNING_COOLDOWN_SECONDS):
        self.warned: Dict[str, float] = dict(warned or {})
        self.cooldown_seconds = cooldown_seconds

    def should_warn(self, key: str, now: Optional[float] = None) -> bool:
        """True (and remembered) unless `key` was warned about within the cooldown."""
        now = time.time() if now is None else now
        last = self.warned.get(key)
        if last is not None and now - last < self.cooldown_seconds:
            return False
        self.warned[key] = now
        return True

    def clear(self) -> None:
        self.warned.clear()

    def __len__(self) -> int:
        return len(self.warned)

    @classmethod
    def load(cls, path: Path, cooldown_seconds: float = WARNING_COOLDOWN_SECONDS) -> "WarningCache":
        """Load from a JSON state file; a missing or corrupt file is an empty cache."""
        if not path.exists():
            return cls(cooldown_seconds=cooldown_seconds)
        try:
            with open(path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            return cls(cooldown_seconds=cooldown_seconds)
        warned = data.get("warned", {}) if isinstance(data, dict) else {}
        return cls(
            {k: float(v) for k, v in warned.items() if isinstance(v, (int, float))},
            cooldown_seconds=cooldown_seconds,
        )

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump({"warned": self.warned}, f, indent=2)


def _last_seen(events: List[SessionEvent], key) -> Dict[str, int]:
    last: Dict[str, int] = {}
    for position, event in enumerate(events):
        target = key(event)
        if target:
            last[target] = position
    return last


def find_loops(
    events: List[SessionEvent],
    read_threshold: int = READ_LOOP_COUNT,
    search_threshold: int = SEARCH_LOOP_COUNT,
) -> List[LoopWarning]:
    """Every loop in a window of events (oldest first).

    Repeated reads come before repeated searches; within each kind the
    most recently touched target comes first.
    """
    reads: Counter = Counter()
    searches: Counter = Counter()
    for event in events:
        if event.tool in READ_TOOLS and event.file_path:
            reads[event.file_path] += 1
        elif event.tool in SEARCH_TOOLS and event.pattern:
            searches[event.pattern] += 1

    last_read = _last_seen(events, lambda e: e.file_path if e.tool in READ_TOOLS else None)
    last_search = _last_seen(events, lambda e: e.pattern if e.tool in SEARCH_TOOLS else None)

    warnings = []
    for file_path in sorted(reads, key=last_read.get, reverse=True):
        count = reads[file_path]
        if count >= read_threshold:
            warnings.append(LoopWarning(
                kind="repeated_read",
                target=file_path,
                count=count,
                message=(
                    f'Loop detected: You\'ve read "{file_path}" {count} times. '
                    "You have the information - make the edit or move on."
                ),
            ))

    for pattern in sorted(searches, key=last_search.get, reverse=True):
        count = searches[pattern]
        if count >= search_threshold:
            warnings.append(LoopWarning(
                kind="repeated_search",
                target=pattern,
                count=count,
                message=(
                    f'Loop detected: You\'ve searched for "{pattern}" {count} times. '
                    "The results won't change - use what you found."
                ),
            ))

    return warnings


def detect_loops(
    store: LearningStore,
    session_id: Optional[str] = None,
    window: int = LOOP_WINDOW,
    read_threshold: int = READ_LOOP_COUNT,
    search_threshold: int = SEARCH_LOOP_COUNT,
) -> List[LoopWarning]:
    """find_loops() over the session's last `window` events."""
    return find_loops(
        store.get_recent_events(limit=window, session_id=session_id),
        read_threshold=read_threshold,
        search_threshold=search_threshold,
    )
