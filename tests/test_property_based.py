"""
Property-based tests for Nudge using Hypothesis.

Tests the pure parts of the learning core with generated inputs:
1. Error normalization (normalize_error) - no crashes on arbitrary strings
2. Effectiveness scoring - scores always in [0, 1]
3. Thresholds - clamped values stay inside their bounds
4. Session hygiene (score_events) - efficiency always in [0, 100]
5. Context similarity - always in [0, 1], symmetric
6. Config validation (NudgeConfig) - only ValidationError on arbitrary dicts
"""

import string

import pytest
from hypothesis import given, settings, assume
from hypothesis import strategies as st
from pydantic import ValidationError

# Global Hypothesis settings: the first normalize_error call compiles the
# category rules, which can blow the default deadline
settings.register_profile("nudge", deadline=None, print_blob=True)
settings.load_profile("nudge")

pytestmark = pytest.mark.learning

from nudge.config import NudgeConfig
from nudge.learning.effectiveness import calculate_effectiveness
from nudge.learning.hygiene import score_events
from nudge.learning.normalizer import fingerprint, jaccard, normalize_error
from nudge.learning.predictor import compute_similarity
from nudge.learning.schemas import AgentBaseline, AgentOutcome, ContextFeatures, SessionEvent
from nudge.learning.thresholds import DEFAULT_THRESHOLDS, clamp_threshold


# ============================================================================
# Strategies
# ============================================================================

# Arbitrary text including Unicode, control chars, null bytes
fuzz_text = st.text(
    alphabet=st.characters(codec="utf-8"),
    min_size=0,
    max_size=5000,
)

# Tokens that push messages toward the known error categories
error_tokens = st.sampled_from([
    "Error:", "Cannot find module", "'lodash'", "TS2322", "Type", "is not assignable",
    "SyntaxError", "Unexpected token", "FAIL", "expect(received)", "eslint",
    "npm ERR!", "Traceback", "line 42", "/src/app.ts:10:5", "undefined", "0x7ff",
])

error_message = st.builds(
    lambda parts: " ".join(parts),
    st.lists(st.one_of(error_tokens, st.text(min_size=1, max_size=20)), min_size=1, max_size=15),
)

counts = st.integers(min_value=0, max_value=500)

rates = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)

small_names = st.text(alphabet=string.ascii_lowercase, min_size=1, max_size=6)

context_features = st.builds(
    ContextFeatures,
    folder_activity=st.dictionaries(small_names, st.integers(1, 20), max_size=5),
    file_types=st.dictionaries(small_names, st.integers(1, 20), max_size=5),
    error_rate=rates,
    loop_rate=rates,
)

session_events = st.lists(
    st.builds(
        lambda i, tool, target: SessionEvent(
            id=i,
            session_id="s",
            timestamp="2026-01-01T00:00:00",
            tool=tool,
            tool_input={"pattern": target} if tool in ("Grep", "Glob") else {"file_path": f"/p/{target}"},
        ),
        st.integers(min_value=1, max_value=10_000),
        st.sampled_from(["Read", "Edit", "Write", "Grep", "Glob", "Bash"]),
        st.sampled_from(["a", "b", "c", "d", "e", "f"]),
    ),
    max_size=60,
)


# ============================================================================
# 1. Error normalization
# ============================================================================


class TestNormalizeErrorProperties:

    @given(raw=fuzz_text)
    @settings(max_examples=200)
    def test_never_raises(self, raw):
        result = normalize_error(raw)
        assert result.raw == raw
        assert len(result.pattern_hash) == 16

    @given(raw=error_message)
    @settings(max_examples=200)
    def test_suggestion_follows_category(self, raw):
        result = normalize_error(raw)
        if result.category is None:
            assert result.suggested_agent is None

    @given(raw=error_message)
    def test_deterministic(self, raw):
        assert normalize_error(raw).pattern_hash == normalize_error(raw).pattern_hash

    @given(keywords=st.sets(small_names, max_size=10), seed=st.randoms())
    def test_fingerprint_order_insensitive(self, keywords, seed):
        shuffled = list(keywords)
        seed.shuffle(shuffled)
        assert fingerprint(shuffled) == fingerprint(sorted(keywords))

    @given(a=st.sets(small_names, max_size=8), b=st.sets(small_names, max_size=8))
    def test_jaccard_bounded_and_symmetric(self, a, b):
        value = jaccard(a, b)
        assert 0.0 <= value <= 1.0
        assert value == jaccard(b, a)


# ============================================================================
# 2. Effectiveness scoring
# ============================================================================


class TestEffectivenessProperties:

    @given(
        reads_at_spawn=counts, errors_at_spawn=counts,
        reads_after=counts, errors_after=counts, success=st.booleans(),
    )
    def test_score_in_unit_interval(self, reads_at_spawn, errors_at_spawn,
                                    reads_after, errors_after, success):
        score = calculate_effectiveness(
            AgentBaseline(reads_at_spawn=reads_at_spawn, errors_at_spawn=errors_at_spawn),
            AgentOutcome(reads_after=reads_after, errors_after=errors_after, task_success=success),
        )
        assert 0.0 <= score <= 1.0

    @given(reads_at_spawn=counts, errors_at_spawn=counts, reads_after=counts, errors_after=counts)
    def test_success_never_lowers_score(self, reads_at_spawn, errors_at_spawn,
                                        reads_after, errors_after):
        baseline = AgentBaseline(reads_at_spawn=reads_at_spawn, errors_at_spawn=errors_at_spawn)
        failed = calculate_effectiveness(
            baseline, AgentOutcome(reads_after=reads_after, errors_after=errors_after)
        )
        succeeded = calculate_effectiveness(
            baseline,
            AgentOutcome(reads_after=reads_after, errors_after=errors_after, task_success=True),
        )
        assert succeeded >= failed


# ============================================================================
# 3. Thresholds
# ============================================================================


class TestThresholdProperties:

    @given(
        agent_type=st.sampled_from(sorted(DEFAULT_THRESHOLDS)),
        value=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False),
    )
    def test_clamp_within_bounds(self, agent_type, value):
        bounds = DEFAULT_THRESHOLDS[agent_type]
        clamped = clamp_threshold(value, bounds.min_value, bounds.max_value)
        assert bounds.min_value <= clamped <= bounds.max_value

    @given(value=st.floats(min_value=2, max_value=30, allow_nan=False))
    def test_clamp_is_idempotent(self, value):
        once = clamp_threshold(value, 2, 30)
        assert clamp_threshold(once, 2, 30) == once


# ============================================================================
# 4. Session hygiene
# ============================================================================


class TestHygieneProperties:

    @given(events=session_events, verification_failures=st.integers(0, 50))
    @settings(max_examples=200)
    def test_efficiency_in_range(self, events, verification_failures):
        efficiency = score_events(events, verification_failures)
        assert 0 <= efficiency.score <= 100
        assert efficiency.files_edited <= len(events)

    @given(events=session_events)
    def test_verification_failures_never_help(self, events):
        assert score_events(events, 3).score <= score_events(events, 0).score


# ============================================================================
# 5. Context similarity
# ============================================================================


class TestSimilarityProperties:

    @given(a=context_features, b=context_features)
    def test_bounded_and_symmetric(self, a, b):
        value = compute_similarity(a, b)
        assert 0.0 <= value <= 1.0 + 1e-9
        assert value == pytest.approx(compute_similarity(b, a))

    @given(a=context_features)
    def test_self_similarity_is_maximal_for_active_sessions(self, a):
        assume(a.folder_activity and a.file_types)
        assert compute_similarity(a, a) == pytest.approx(1.0)


# ============================================================================
# 6. Config validation
# ============================================================================

config_values = st.recursive(
    st.one_of(st.none(), st.booleans(), st.integers(), st.floats(allow_nan=False), st.text(max_size=10)),
    lambda children: st.one_of(
        st.lists(children, max_size=3),
        st.dictionaries(st.text(max_size=10), children, max_size=3),
    ),
    max_leaves=10,
)

config_dicts = st.dictionaries(
    st.sampled_from([
        "enabled", "mode", "features", "loop_blocking", "hygiene", "learning",
        "agent_types", "unknown_key",
    ]),
    config_values,
    max_size=6,
)


class TestConfigProperties:

    @given(data=config_dicts)
    @settings(max_examples=200)
    def test_only_validation_errors(self, data):
        try:
            config = NudgeConfig.model_validate(data)
        except ValidationError:
            return
        assert config.loop_blocking.read_threshold >= 1
        assert 0 <= config.hygiene.warn_on_low_efficiency <= 100
