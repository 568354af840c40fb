"""
Nudge Learning Store

Core SQLite-backed storage for Nudge's learning system.
Handles schema creation, session evidence, learned state, and audit logging.

Storage location:
- Per-project: .nudge/learning.db (inside the project directory)

Writes are single auto-committed statements so a status display in
another process can read while a hook writes.
"""

import json
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from nudge.learning.schemas import (
    AgentBaseline,
    AgentEffectivenessStats,
    AgentOutcome,
    AgentUsageRecord,
    ContextFeatures,
    ContextSnapshot,
    ErrorInstance,
    ErrorPattern,
    NormalizedError,
    SessionEvent,
    ThresholdConfig,
)


PROJECT_DIR_NAME = ".nudge"

LEARNING_DB_NAME = "learning.db"

# Default learning DB path, relative so it resolves against the working
# directory at open time
DEFAULT_LEARNING_PATH = Path(PROJECT_DIR_NAME) / LEARNING_DB_NAME

READ_TOOLS = ("Read", "View")
EDIT_TOOLS = ("Edit", "Write", "MultiEdit")
SEARCH_TOOLS = ("Grep",)

OUTPUT_SUMMARY_LIMIT = 200
HISTORY_LIMIT = 10

LEARNED_TABLES = (
    "sessions",
    "events",
    "agent_usage",
    "error_instances",
    "learned_error_patterns",
    "agent_thresholds",
    "context_features",
)


class UsageAlreadyOpenError(Exception):
    """Raised when a helper type already has an open usage in the session."""

    def __init__(self, agent_type: str, session_id: str):
        self.agent_type = agent_type
        self.session_id = session_id
        super().__init__(
            f"Agent type '{agent_type}' already has an open usage in session {session_id}"
        )


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string (the store's timestamp format)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def window_start(days: int) -> str:
    """ISO timestamp `days` days ago."""
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat(timespec="microseconds")


class LearningStore:
    """SQLite-backed persistent learning state.

    Manages 8 tables:
    - sessions / events: raw session evidence
    - agent_usage: helper invocations with baselines and outcomes
    - learned_error_patterns / error_instances: clustered failures
    - agent_thresholds: per helper type trigger thresholds
    - context_features: labeled session-shape snapshots
    - learning_audit: accountability log
    """

    SCHEMA_VERSION = 2

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or DEFAULT_LEARNING_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._ensure_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create a SQLite connection with WAL mode."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=5.0,
                isolation_level=None,  # autocommit
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    def close(self):
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _ensure_schema(self):
        """Create tables and indexes if they don't exist."""
        conn = self._get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );

            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                is_current INTEGER NOT NULL DEFAULT 0,
                efficiency_adjusted_at TEXT
            );

            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                tool TEXT NOT NULL,
                input_json TEXT,
                output_summary TEXT,
                success INTEGER NOT NULL DEFAULT 1,
                duration_ms INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_ev_session_tool
                ON events(session_id, tool);

            CREATE TABLE IF NOT EXISTS agent_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                agent_name TEXT NOT NULL,
                agent_type TEXT NOT NULL,
                trigger_context TEXT,
                correlation_id TEXT,
                reads_at_spawn INTEGER NOT NULL DEFAULT 0,
                errors_at_spawn INTEGER NOT NULL DEFAULT 0,
                completed INTEGER NOT NULL DEFAULT 0,
                task_success INTEGER,
                reads_after INTEGER,
                errors_after INTEGER,
                effectiveness_score REAL,
                completed_at TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_au_single_open
                ON agent_usage(session_id, agent_type) WHERE completed = 0;
            CREATE INDEX IF NOT EXISTS idx_au_type_time
                ON agent_usage(agent_type, timestamp);

            CREATE TABLE IF NOT EXISTS learned_error_patterns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_hash TEXT NOT NULL UNIQUE,
                canonical_form TEXT NOT NULL,
                category TEXT,
                suggested_agent TEXT,
                occurrence_count INTEGER NOT NULL DEFAULT 1,
                fix_count INTEGER NOT NULL DEFAULT 0,
                fix_success_rate REAL NOT NULL DEFAULT 0.0,
                first_seen TEXT NOT NULL,
                last_seen TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS error_instances (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id INTEGER NOT NULL
                    REFERENCES learned_error_patterns(id) ON DELETE CASCADE,
                session_id TEXT,
                timestamp TEXT NOT NULL,
                raw_error TEXT NOT NULL,
                file_path TEXT,
                was_fixed INTEGER NOT NULL DEFAULT 0,
                fix_agent TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_ei_pattern
                ON error_instances(pattern_id);

            CREATE TABLE IF NOT EXISTS agent_thresholds (
                agent_type TEXT PRIMARY KEY,
                threshold_value REAL NOT NULL,
                min_value REAL NOT NULL,
                max_value REAL NOT NULL,
                effectiveness_avg REAL NOT NULL DEFAULT 0.5,
                sample_count INTEGER NOT NULL DEFAULT 0,
                last_adjusted TEXT,
                adjustment_history_json TEXT NOT NULL DEFAULT '[]',
                CHECK (threshold_value BETWEEN min_value AND max_value)
            );

            CREATE TABLE IF NOT EXISTS context_features (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT,
                timestamp TEXT NOT NULL,
                folder_activity_json TEXT NOT NULL,
                file_types_json TEXT NOT NULL,
                error_rate REAL NOT NULL,
                loop_rate REAL NOT NULL,
                tool_distribution_json TEXT NOT NULL,
                useful_agent TEXT NOT NULL,
                agent_effectiveness REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_cf_effectiveness
                ON context_features(agent_effectiveness);

            CREATE TABLE IF NOT EXISTS learning_audit (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                table_name TEXT NOT NULL,
                key_info TEXT,
                result TEXT,
                timestamp TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_la_timestamp
                ON learning_audit(timestamp);
        """)

        # Version 1 databases predate efficiency_adjusted_at
        columns = {r["name"] for r in conn.execute("PRAGMA table_info(sessions)")}
        if "efficiency_adjusted_at" not in columns:
            conn.execute("ALTER TABLE sessions ADD COLUMN efficiency_adjusted_at TEXT")

        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,),
        )

    # =====================================================================
    # Sessions
    # =====================================================================

    def start_session(self, session_id: Optional[str] = None) -> str:
        """Make `session_id` (or a fresh id) the current session.

        A host that resumes a session may send the same id again; the
        existing row becomes current again instead of being duplicated.
        """
        conn = self._get_connection()
        session_id = session_id or uuid.uuid4().hex
        now = utc_now()

        conn.execute(
            "UPDATE sessions SET is_current = 0, ended_at = ? WHERE is_current = 1 AND id != ?",
            (now, session_id),
        )
        conn.execute(
            """
            INSERT INTO sessions (id, started_at, is_current) VALUES (?, ?, 1)
            ON CONFLICT(id) DO UPDATE SET is_current = 1, ended_at = NULL
            """,
            (session_id, now),
        )
        self._audit("write", "sessions", session_id, "started")
        return session_id

    def get_current_session_id(self) -> str:
        """Return the current session id, starting one if none exists."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT id FROM sessions WHERE is_current = 1 ORDER BY started_at DESC LIMIT 1"
        ).fetchone()
        if row:
            return row["id"]
        return self.start_session()

    def _resolve_session(self, session_id: Optional[str]) -> str:
        return session_id or self.get_current_session_id()

    def claim_efficiency_adjustment(self, session_id: Optional[str] = None) -> bool:
        """Mark a session's efficiency as applied to thresholds.

        True for the first claim of a session, False on every later one.
        A session the host never announced gets its row here.
        """
        conn = self._get_connection()
        session_id = self._resolve_session(session_id)
        now = utc_now()
        cursor = conn.execute(
            """
            INSERT INTO sessions (id, started_at, is_current, efficiency_adjusted_at)
            VALUES (?, ?, 0, ?)
            ON CONFLICT(id) DO UPDATE SET efficiency_adjusted_at = excluded.efficiency_adjusted_at
            WHERE sessions.efficiency_adjusted_at IS NULL
            """,
            (session_id, now, now),
        )
        claimed = cursor.rowcount == 1
        self._audit(
            "write", "sessions", session_id,
            "efficiency_claimed" if claimed else "efficiency_already_applied",
        )
        return claimed

    # =====================================================================
    # Events
    # =====================================================================

    def log_event(
        self,
        tool: str,
        tool_input: Optional[Dict[str, Any]] = None,
        success: bool = True,
        output_summary: Optional[str] = None,
        session_id: Optional[str] = None,
        duration_ms: int = 0,
        timestamp: Optional[str] = None,
    ) -> int:
        """Append one tool use to the session's event log.

        Returns the row ID of the inserted event.
        """
        conn = self._get_connection()
        session_id = self._resolve_session(session_id)
        summary = output_summary[:OUTPUT_SUMMARY_LIMIT] if output_summary else None

        cursor = conn.execute(
            """
            INSERT INTO events (session_id, timestamp, tool, input_json,
                output_summary, success, duration_ms)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                timestamp or utc_now(),
                tool,
                json.dumps(tool_input or {}, default=str),
                summary,
                1 if success else 0,
                duration_ms,
            ),
        )
        return cursor.lastrowid

    def get_session_events(self, session_id: Optional[str] = None) -> List[SessionEvent]:
        """All events of a session, oldest first."""
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT * FROM events WHERE session_id = ? ORDER BY id",
            (self._resolve_session(session_id),),
        ).fetchall()
        return [_row_to_event(r) for r in rows]

    def get_recent_events(
        self, limit: int = 10, session_id: Optional[str] = None
    ) -> List[SessionEvent]:
        """The last `limit` events of a session, oldest first."""
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT * FROM events WHERE session_id = ? ORDER BY id DESC LIMIT ?",
            (self._resolve_session(session_id), limit),
        ).fetchall()
        return [_row_to_event(r) for r in reversed(rows)]

    def count_session_reads(self, session_id: Optional[str] = None) -> int:
        conn = self._get_connection()
        placeholders = ",".join("?" for _ in READ_TOOLS)
        row = conn.execute(
            f"SELECT COUNT(*) AS cnt FROM events WHERE session_id = ? AND tool IN ({placeholders})",
            (self._resolve_session(session_id), *READ_TOOLS),
        ).fetchone()
        return row["cnt"]

    def count_session_errors(self, session_id: Optional[str] = None) -> int:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT COUNT(*) AS cnt FROM events WHERE session_id = ? AND success = 0",
            (self._resolve_session(session_id),),
        ).fetchone()
        return row["cnt"]

    def count_file_reads(self, file_path: str, session_id: Optional[str] = None) -> int:
        """How many times `file_path` has been read in the session."""
        return sum(
            1 for e in self.get_session_events(session_id)
            if e.tool in READ_TOOLS and e.file_path == file_path
        )

    def count_pattern_searches(self, pattern: str, session_id: Optional[str] = None) -> int:
        """How many times `pattern` has been searched for in the session."""
        return sum(
            1 for e in self.get_session_events(session_id)
            if e.tool in SEARCH_TOOLS and e.pattern == pattern
        )

    # =====================================================================
    # Agent Usage
    # =====================================================================

    def record_agent_spawn(
        self,
        agent_name: str,
        agent_type: str,
        baseline: AgentBaseline,
        trigger_context: Optional[str] = None,
        correlation_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> int:
        """Open a usage record for a freshly spawned helper.

        Raises UsageAlreadyOpenError if the session already has an open
        usage of the same helper type.
        """
        conn = self._get_connection()
        session_id = self._resolve_session(session_id)

        try:
            cursor = conn.execute(
                """
                INSERT INTO agent_usage (session_id, timestamp, agent_name, agent_type,
                    trigger_context, correlation_id, reads_at_spawn, errors_at_spawn)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    utc_now(),
                    agent_name,
                    agent_type,
                    trigger_context,
                    correlation_id,
                    baseline.reads_at_spawn,
                    baseline.errors_at_spawn,
                ),
            )
        except sqlite3.IntegrityError as e:
            self._audit("write", "agent_usage", f"{agent_type}:{session_id}",
                        "REJECTED: usage already open")
            raise UsageAlreadyOpenError(agent_type, session_id) from e

        row_id = cursor.lastrowid
        self._audit(
            "write", "agent_usage", f"{agent_type}:{agent_name}",
            f"id={row_id}, reads={baseline.reads_at_spawn}, errors={baseline.errors_at_spawn}",
        )
        return row_id

    def get_open_agent_usage(
        self,
        session_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Optional[AgentUsageRecord]:
        """Find the open usage a completion signal belongs to.

        With a correlation id the match is exact; without one the most
        recent open usage of the session is returned.
        """
        conn = self._get_connection()
        if correlation_id:
            row = conn.execute(
                """
                SELECT * FROM agent_usage
                WHERE correlation_id = ? AND completed = 0
                ORDER BY id DESC LIMIT 1
                """,
                (correlation_id,),
            ).fetchone()
        else:
            row = conn.execute(
                """
                SELECT * FROM agent_usage
                WHERE session_id = ? AND completed = 0
                ORDER BY timestamp DESC, id DESC LIMIT 1
                """,
                (self._resolve_session(session_id),),
            ).fetchone()
        return _row_to_usage(row) if row else None

    def complete_agent_usage(
        self,
        usage_id: int,
        outcome: AgentOutcome,
        effectiveness_score: float,
    ) -> bool:
        """Close an open usage record with its outcome and score.

        Returns False if the record does not exist or was already closed.
        """
        conn = self._get_connection()
        cursor = conn.execute(
            """
            UPDATE agent_usage SET
                completed = 1,
                task_success = ?,
                reads_after = ?,
                errors_after = ?,
                effectiveness_score = ?,
                completed_at = ?
            WHERE id = ? AND completed = 0
            """,
            (
                1 if outcome.task_success else 0,
                outcome.reads_after,
                outcome.errors_after,
                effectiveness_score,
                utc_now(),
                usage_id,
            ),
        )
        closed = cursor.rowcount == 1
        self._audit(
            "write", "agent_usage", f"id={usage_id}",
            f"score={effectiveness_score:.2f}" if closed else "no_open_record",
        )
        return closed

    def get_agent_usage(self, usage_id: int) -> Optional[AgentUsageRecord]:
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM agent_usage WHERE id = ?", (usage_id,)).fetchone()
        return _row_to_usage(row) if row else None

    def get_agent_effectiveness(self, agent_type: str, days: int = 30) -> AgentEffectivenessStats:
        """Aggregate completed usages of one helper type within the window."""
        conn = self._get_connection()
        row = conn.execute(
            """
            SELECT
                COUNT(*) AS sample_count,
                AVG(effectiveness_score) AS avg_effectiveness,
                AVG(CASE WHEN task_success = 1 THEN 1.0 ELSE 0.0 END) AS success_rate
            FROM agent_usage
            WHERE agent_type = ? AND completed = 1 AND timestamp >= ?
            """,
            (agent_type, window_start(days)),
        ).fetchone()
        return AgentEffectivenessStats(
            agent_type=agent_type,
            sample_count=row["sample_count"] or 0,
            avg_effectiveness=row["avg_effectiveness"] or 0.0,
            success_rate=row["success_rate"] or 0.0,
        )

    def get_all_agent_effectiveness(self, days: int = 30) -> List[AgentEffectivenessStats]:
        """Per-type aggregates for every helper type with completed usages."""
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT
                agent_type,
                COUNT(*) AS sample_count,
                AVG(effectiveness_score) AS avg_effectiveness,
                AVG(CASE WHEN task_success = 1 THEN 1.0 ELSE 0.0 END) AS success_rate
            FROM agent_usage
            WHERE completed = 1 AND timestamp >= ?
            GROUP BY agent_type
            ORDER BY avg_effectiveness DESC
            """,
            (window_start(days),),
        ).fetchall()
        return [
            AgentEffectivenessStats(
                agent_type=r["agent_type"],
                sample_count=r["sample_count"],
                avg_effectiveness=r["avg_effectiveness"] or 0.0,
                success_rate=r["success_rate"] or 0.0,
            )
            for r in rows
        ]

    def get_agent_types_with_usage(self) -> List[str]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT DISTINCT agent_type FROM agent_usage WHERE completed = 1 ORDER BY agent_type"
        ).fetchall()
        return [r["agent_type"] for r in rows]

    def count_agent_usages(self, completed_only: bool = True) -> int:
        conn = self._get_connection()
        sql = "SELECT COUNT(*) AS cnt FROM agent_usage"
        if completed_only:
            sql += " WHERE completed = 1"
        return conn.execute(sql).fetchone()["cnt"]

    # =====================================================================
    # Error Patterns
    # =====================================================================

    def find_or_create_error_pattern(self, normalized: NormalizedError) -> Tuple[int, bool]:
        """Upsert the pattern for a normalized error.

        Returns (pattern_id, is_new). A repeat bumps occurrence_count and
        last_seen and keeps fix_success_rate = fix_count / occurrence_count.
        """
        conn = self._get_connection()
        now = utc_now()
        conn.execute(
            """
            INSERT INTO learned_error_patterns (pattern_hash, canonical_form, category,
                suggested_agent, first_seen, last_seen)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(pattern_hash) DO UPDATE SET
                occurrence_count = occurrence_count + 1,
                last_seen = excluded.last_seen,
                fix_success_rate = CAST(fix_count AS REAL) / (occurrence_count + 1)
            """,
            (
                normalized.pattern_hash,
                normalized.canonical,
                normalized.category,
                normalized.suggested_agent,
                now,
                now,
            ),
        )
        row = conn.execute(
            "SELECT id, occurrence_count FROM learned_error_patterns WHERE pattern_hash = ?",
            (normalized.pattern_hash,),
        ).fetchone()

        is_new = row["occurrence_count"] == 1
        self._audit(
            "write", "learned_error_patterns", normalized.pattern_hash,
            f"id={row['id']}, occurrences={row['occurrence_count']}, category={normalized.category}",
        )
        return row["id"], is_new

    def log_error_instance(
        self,
        pattern_id: int,
        raw_error: str,
        file_path: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> int:
        conn = self._get_connection()
        cursor = conn.execute(
            """
            INSERT INTO error_instances (pattern_id, session_id, timestamp, raw_error, file_path)
            VALUES (?, ?, ?, ?, ?)
            """,
            (pattern_id, self._resolve_session(session_id), utc_now(), raw_error, file_path),
        )
        return cursor.lastrowid

    def mark_error_fixed(
        self, instance_id: int, fix_agent: Optional[str] = None
    ) -> Optional[ErrorPattern]:
        """Mark an instance fixed and refresh its pattern's fix statistics.

        Returns the updated pattern, or None if the instance does not exist
        or was already marked fixed.
        """
        conn = self._get_connection()
        instance = self.get_error_instance(instance_id)
        if instance is None or instance.was_fixed:
            self._audit("write", "error_instances", f"id={instance_id}", "no_change")
            return None

        conn.execute(
            "UPDATE error_instances SET was_fixed = 1, fix_agent = ? WHERE id = ? AND was_fixed = 0",
            (fix_agent, instance_id),
        )
        # SET expressions see pre-update values, so the rate uses fix_count + 1
        conn.execute(
            """
            UPDATE learned_error_patterns SET
                fix_count = fix_count + 1,
                fix_success_rate = MIN(1.0, CAST(fix_count + 1 AS REAL) / occurrence_count)
            WHERE id = ?
            """,
            (instance.pattern_id,),
        )
        pattern = self.get_error_pattern(instance.pattern_id)
        self._audit(
            "write", "learned_error_patterns", f"id={instance.pattern_id}",
            f"fixed instance={instance_id}, agent={fix_agent}, "
            f"rate={pattern.fix_success_rate:.2f}" if pattern else "pattern_missing",
        )
        return pattern

    def get_error_pattern(self, pattern_id: int) -> Optional[ErrorPattern]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM learned_error_patterns WHERE id = ?", (pattern_id,)
        ).fetchone()
        return _row_to_pattern(row) if row else None

    def get_error_instance(self, instance_id: int) -> Optional[ErrorInstance]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM error_instances WHERE id = ?", (instance_id,)
        ).fetchone()
        return _row_to_instance(row) if row else None

    def get_unfixed_error_instances(self, session_id: Optional[str] = None) -> List[ErrorInstance]:
        """A session's failures not yet marked fixed, oldest first."""
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT * FROM error_instances WHERE session_id = ? AND was_fixed = 0 ORDER BY id",
            (self._resolve_session(session_id),),
        ).fetchall()
        return [_row_to_instance(r) for r in rows]

    def get_top_error_patterns(self, limit: int = 10) -> List[ErrorPattern]:
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT * FROM learned_error_patterns
            ORDER BY occurrence_count DESC, last_seen DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [_row_to_pattern(r) for r in rows]

    def get_error_summary(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Instance counts for a session: total, fixed, and per category."""
        conn = self._get_connection()
        session_id = self._resolve_session(session_id)
        rows = conn.execute(
            """
            SELECT COALESCE(p.category, 'uncategorized') AS category,
                   COUNT(*) AS total,
                   SUM(i.was_fixed) AS fixed
            FROM error_instances i
            JOIN learned_error_patterns p ON p.id = i.pattern_id
            WHERE i.session_id = ?
            GROUP BY category
            ORDER BY total DESC
            """,
            (session_id,),
        ).fetchall()
        by_category = {r["category"]: r["total"] for r in rows}
        return {
            "session_id": session_id,
            "total": sum(by_category.values()),
            "fixed": sum(r["fixed"] or 0 for r in rows),
            "by_category": by_category,
        }

    def count_error_patterns(self) -> int:
        conn = self._get_connection()
        return conn.execute("SELECT COUNT(*) AS cnt FROM learned_error_patterns").fetchone()["cnt"]

    # =====================================================================
    # Thresholds
    # =====================================================================

    def get_threshold_row(self, agent_type: str) -> Optional[ThresholdConfig]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM agent_thresholds WHERE agent_type = ?", (agent_type,)
        ).fetchone()
        return _row_to_threshold(row) if row else None

    def get_all_threshold_rows(self) -> List[ThresholdConfig]:
        conn = self._get_connection()
        rows = conn.execute("SELECT * FROM agent_thresholds ORDER BY agent_type").fetchall()
        return [_row_to_threshold(r) for r in rows]

    def save_threshold(self, config: ThresholdConfig) -> None:
        """Upsert a helper type's threshold state."""
        conn = self._get_connection()
        history = config.adjustment_history[-HISTORY_LIMIT:]
        conn.execute(
            """
            INSERT INTO agent_thresholds (agent_type, threshold_value, min_value, max_value,
                effectiveness_avg, sample_count, last_adjusted, adjustment_history_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(agent_type) DO UPDATE SET
                threshold_value = excluded.threshold_value,
                min_value = excluded.min_value,
                max_value = excluded.max_value,
                effectiveness_avg = excluded.effectiveness_avg,
                sample_count = excluded.sample_count,
                last_adjusted = excluded.last_adjusted,
                adjustment_history_json = excluded.adjustment_history_json
            """,
            (
                config.agent_type,
                config.threshold_value,
                config.min_value,
                config.max_value,
                config.effectiveness_avg,
                config.sample_count,
                config.last_adjusted,
                json.dumps(history),
            ),
        )
        self._audit(
            "write", "agent_thresholds", config.agent_type,
            f"value={config.threshold_value}, samples={config.sample_count}",
        )

    # =====================================================================
    # Context Features
    # =====================================================================

    def save_context_snapshot(
        self,
        features: ContextFeatures,
        useful_agent: str,
        agent_effectiveness: float,
        session_id: Optional[str] = None,
    ) -> int:
        conn = self._get_connection()
        cursor = conn.execute(
            """
            INSERT INTO context_features (session_id, timestamp, folder_activity_json,
                file_types_json, error_rate, loop_rate, tool_distribution_json,
                useful_agent, agent_effectiveness)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self._resolve_session(session_id),
                utc_now(),
                json.dumps(features.folder_activity),
                json.dumps(features.file_types),
                features.error_rate,
                features.loop_rate,
                json.dumps(features.tool_distribution),
                useful_agent,
                agent_effectiveness,
            ),
        )
        row_id = cursor.lastrowid
        self._audit(
            "write", "context_features", useful_agent,
            f"id={row_id}, effectiveness={agent_effectiveness:.2f}",
        )
        return row_id

    def get_context_snapshots(
        self, min_effectiveness: float = 0.4, limit: int = 100
    ) -> List[ContextSnapshot]:
        """Most recent snapshots whose helper scored at least `min_effectiveness`."""
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT * FROM context_features
            WHERE agent_effectiveness >= ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (min_effectiveness, limit),
        ).fetchall()
        return [
            ContextSnapshot(
                id=r["id"],
                features=ContextFeatures(
                    folder_activity=json.loads(r["folder_activity_json"]),
                    file_types=json.loads(r["file_types_json"]),
                    error_rate=r["error_rate"],
                    loop_rate=r["loop_rate"],
                    tool_distribution=json.loads(r["tool_distribution_json"]),
                ),
                useful_agent=r["useful_agent"],
                agent_effectiveness=r["agent_effectiveness"],
                session_id=r["session_id"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]

    # =====================================================================
    # Stats & Export
    # =====================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get overall learning store statistics."""
        conn = self._get_connection()
        stats = {}

        for table in LEARNED_TABLES + ("learning_audit",):
            row = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}").fetchone()
            stats[table] = row["cnt"]

        row = conn.execute(
            "SELECT MAX(last_adjusted) AS ts FROM agent_thresholds"
        ).fetchone()
        stats["last_threshold_adjustment"] = row["ts"]

        try:
            stats["db_size_bytes"] = self.db_path.stat().st_size
        except OSError:
            stats["db_size_bytes"] = 0

        return stats

    def get_audit_log(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get recent audit log entries."""
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT * FROM learning_audit ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]

    def export_all(self) -> Dict[str, Any]:
        """Export all learned data as a JSON-serializable dict."""
        conn = self._get_connection()
        data = {}

        for table in LEARNED_TABLES:
            rows = conn.execute(f"SELECT * FROM {table}").fetchall()
            data[table] = [dict(r) for r in rows]

        data["stats"] = self.get_stats()
        return data

    def clear_table(self, table_name: str) -> int:
        """Clear all data from a specific table.

        Returns the number of deleted rows.
        """
        valid_tables = set(LEARNED_TABLES) | {"learning_audit"}
        if table_name not in valid_tables:
            raise ValueError(f"Invalid table: {table_name}. Must be one of {sorted(valid_tables)}")

        conn = self._get_connection()
        cursor = conn.execute(f"DELETE FROM {table_name}")
        count = cursor.rowcount

        self._audit("clear", table_name, None, f"deleted={count}")
        return count

    def clear_all(self) -> Dict[str, int]:
        """Clear all learned data. Returns counts per table."""
        results = {}
        # error_instances precedes learned_error_patterns in LEARNED_TABLES
        for table in LEARNED_TABLES:
            results[table] = self.clear_table(table)

        # Clear audit last (so the clear operations are logged first)
        results["learning_audit"] = self.clear_table("learning_audit")
        return results

    # =====================================================================
    # Audit
    # =====================================================================

    def _audit(
        self,
        operation: str,
        table_name: str,
        key_info: Optional[str],
        result: Optional[str],
    ) -> None:
        """Log an operation to the learning audit table."""
        try:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO learning_audit (operation, table_name, key_info, result, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (operation, table_name, key_info, result, utc_now()),
            )
        except sqlite3.Error:
            pass  # Audit logging should never block operations


# =========================================================================
# Row mapping
# =========================================================================


def _row_to_event(row: sqlite3.Row) -> SessionEvent:
    try:
        tool_input = json.loads(row["input_json"] or "{}")
    except json.JSONDecodeError:
        tool_input = {}
    if not isinstance(tool_input, dict):
        tool_input = {}
    return SessionEvent(
        id=row["id"],
        session_id=row["session_id"],
        timestamp=row["timestamp"],
        tool=row["tool"],
        tool_input=tool_input,
        output_summary=row["output_summary"],
        success=bool(row["success"]),
        duration_ms=row["duration_ms"],
    )


def _row_to_usage(row: sqlite3.Row) -> AgentUsageRecord:
    task_success = row["task_success"]
    return AgentUsageRecord(
        id=row["id"],
        session_id=row["session_id"],
        agent_name=row["agent_name"],
        agent_type=row["agent_type"],
        trigger_context=row["trigger_context"],
        correlation_id=row["correlation_id"],
        reads_at_spawn=row["reads_at_spawn"],
        errors_at_spawn=row["errors_at_spawn"],
        completed=bool(row["completed"]),
        task_success=None if task_success is None else bool(task_success),
        reads_after=row["reads_after"],
        errors_after=row["errors_after"],
        effectiveness_score=row["effectiveness_score"],
        timestamp=row["timestamp"],
        completed_at=row["completed_at"],
    )


def _row_to_pattern(row: sqlite3.Row) -> ErrorPattern:
    return ErrorPattern(
        id=row["id"],
        pattern_hash=row["pattern_hash"],
        canonical_form=row["canonical_form"],
        category=row["category"],
        suggested_agent=row["suggested_agent"],
        occurrence_count=row["occurrence_count"],
        fix_count=row["fix_count"],
        fix_success_rate=row["fix_success_rate"],
        first_seen=row["first_seen"],
        last_seen=row["last_seen"],
    )


def _row_to_instance(row: sqlite3.Row) -> ErrorInstance:
    return ErrorInstance(
        id=row["id"],
        pattern_id=row["pattern_id"],
        raw_error=row["raw_error"],
        file_path=row["file_path"],
        session_id=row["session_id"],
        was_fixed=bool(row["was_fixed"]),
        fix_agent=row["fix_agent"],
        timestamp=row["timestamp"],
    )


def _row_to_threshold(row: sqlite3.Row) -> ThresholdConfig:
    try:
        history = json.loads(row["adjustment_history_json"] or "[]")
    except json.JSONDecodeError:
        history = []
    return ThresholdConfig(
        agent_type=row["agent_type"],
        threshold_value=row["threshold_value"],
        min_value=row["min_value"],
        max_value=row["max_value"],
        effectiveness_avg=row["effectiveness_avg"],
        sample_count=row["sample_count"],
        last_adjusted=row["last_adjusted"],
        adjustment_history=history,
        stored=True,
    )


# =========================================================================
# Module-level singleton
# =========================================================================

_global_store: Optional[LearningStore] = None


def get_learning_store(db_path: Optional[Path] = None) -> LearningStore:
    """Get the LearningStore singleton.

    Args:
        db_path: Override path for the database. If None, uses .nudge/learning.db.
    """
    global _global_store
    if db_path:
        # Custom path - return new instance (don't cache)
        return LearningStore(db_path=db_path)

    if _global_store is None:
        _global_store = LearningStore()
    return _global_store


def reset_learning_store() -> None:
    """Reset the singleton (for testing)."""
    global _global_store
    if _global_store is not None:
        _global_store.close()
    _global_store = None


def learning_store_for(project_dir: Path) -> LearningStore:
    """The singleton, re-pointed at `project_dir`'s learning DB if needed."""
    global _global_store
    db_path = (Path(project_dir) / PROJECT_DIR_NAME / LEARNING_DB_NAME).resolve()
    if _global_store is not None and Path(_global_store.db_path).resolve() == db_path:
        return _global_store
    store = LearningStore(db_path=db_path)
    if _global_store is not None:
        _global_store.close()
    _global_store = store
    return store
