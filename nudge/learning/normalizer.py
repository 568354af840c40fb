"""
Nudge Error Normalizer

Turns raw failure text into a canonical, variable-stripped form, a keyword
set, a fingerprint hash, and a category.

Two messages that differ only in literals, line numbers, addresses, or
file locations produce the same keyword set and therefore the same
fingerprint.

Every step is a plain regex substitution, total over any string:
normalize_error() never raises on odd input.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from nudge.learning.schemas import NormalizedError


# =========================================================================
# Placeholders & patterns
# =========================================================================

FILE_PLACEHOLDER = "<FILE>"
NUM_PLACEHOLDER = "<N>"
VAR_PLACEHOLDER = "<VAR>"
ADDR_PLACEHOLDER = "<ADDR>"

_PLACEHOLDER_MARKERS = tuple(
    p.lower() for p in (FILE_PLACEHOLDER, NUM_PLACEHOLDER, VAR_PLACEHOLDER, ADDR_PLACEHOLDER)
)

# Path kept aside before normalization: needs a slash and a letter-led extension
_EXTRACT_PATH_RE = re.compile(
    r"(?<![\w.~@/-])(?:[A-Za-z]:)?(?:[\w.~@-]*/)+[\w.@-]*\w\.[A-Za-z][A-Za-z0-9]*"
)

# dir/.../file.ext -> <FILE>/file.ext
_PATH_WITH_FILE_RE = re.compile(
    r"(?<![\w.~@/-])(?:[A-Za-z]:)?(?:[\w.~@-]*/)+([\w.@-]*\w\.[A-Za-z][A-Za-z0-9]*)"
)
# /usr/lib/node and similar extension-less absolute paths
_BARE_PATH_RE = re.compile(r"(?<![\w<>])(?:/[\w.@-]+){2,}/?")

_LINE_RE = re.compile(r"\b(line)\s+\d+", re.IGNORECASE)
_COLON_POS_RE = re.compile(r":\d+:\d+")
_PAREN_POS_RE = re.compile(r"\(\s*\d+\s*,\s*\d+\s*\)")

_SINGLE_QUOTED_RE = re.compile(r"(?<!\w)'[^'\n]*'")
_DOUBLE_QUOTED_RE = re.compile(r'(?<!\w)"[^"\n]*"')

_HEX_RE = re.compile(r"\b0x[0-9a-fA-F]+\b")
_INT_RE = re.compile(r"\b\d+\b")
_WHITESPACE_RE = re.compile(r"\s+")

_TOKEN_PUNCTUATION = ".,:;!?()[]{}'\"`"


# =========================================================================
# Vocabulary & categories
# =========================================================================

ERROR_VOCABULARY: Tuple[str, ...] = (
    # type system
    "type", "assignable", "property", "argument", "overload", "generic",
    # imports
    "import", "module", "export", "resolve", "cannot", "find",
    # syntax
    "syntax", "unexpected", "token", "parse", "indent",
    # build
    "build", "compile",
    # runtime
    "exception", "traceback", "panic", "segmentation", "timeout", "denied",
    "undefined", "null",
    # tests
    "test", "assert", "expect",
    # lint
    "lint", "unused",
)


class ErrorCategory:
    """Category labels assigned by CATEGORY_RULES."""
    TYPE_MISMATCH = "type-mismatch"
    IMPORT_RESOLUTION = "import-resolution"
    SYNTAX = "syntax"
    TEST_FAILURE = "test-failure"
    LINT = "lint"
    BUILD = "build"
    RUNTIME = "runtime"
    UNCATEGORIZED = "uncategorized"


@dataclass(frozen=True)
class CategoryRule:
    """A category matches when all of `required` and at least one of
    `any_of` (if given) appear in the keyword set.

    Each group in `alternatives` also matches on its own when all of its
    terms appear.
    """

    category: str
    required: FrozenSet[str] = frozenset()
    any_of: FrozenSet[str] = frozenset()
    alternatives: Tuple[FrozenSet[str], ...] = ()

    def matches(self, keywords: Set[str]) -> bool:
        if self.required and all(_has(keywords, t) for t in self.required):
            if not self.any_of or any(_has(keywords, t) for t in self.any_of):
                return True
        return any(
            all(_has(keywords, t) for t in group) for group in self.alternatives
        )


def _rule(category: str, *groups: Sequence[str], required: Sequence[str] = (),
          any_of: Sequence[str] = ()) -> CategoryRule:
    return CategoryRule(
        category=category,
        required=frozenset(required),
        any_of=frozenset(any_of),
        alternatives=tuple(frozenset(g) for g in groups),
    )


# Evaluated in order; first match wins
CATEGORY_RULES: Tuple[CategoryRule, ...] = (
    _rule(ErrorCategory.TYPE_MISMATCH, required=("type",), any_of=("assignable", "property")),
    _rule(ErrorCategory.IMPORT_RESOLUTION, ("import",), ("module",), ("cannot", "find")),
    _rule(ErrorCategory.SYNTAX, ("syntax",), ("unexpected", "token"), ("parse",)),
    _rule(ErrorCategory.TEST_FAILURE, ("test",), ("assert",), ("expect",)),
    _rule(ErrorCategory.LINT, ("lint",), ("unused",)),
    _rule(ErrorCategory.BUILD, ("build",), ("compile",)),
    _rule(
        ErrorCategory.RUNTIME,
        ("exception",), ("traceback",), ("panic",), ("segmentation",),
        ("timeout",), ("denied",), ("undefined",), ("null",),
    ),
)

CATEGORY_AGENTS: Dict[str, str] = {
    ErrorCategory.TYPE_MISMATCH: "type-expert",
    ErrorCategory.IMPORT_RESOLUTION: "module-resolver",
    ErrorCategory.SYNTAX: "syntax-fixer",
    ErrorCategory.TEST_FAILURE: "test-specialist",
    ErrorCategory.LINT: "lint-fixer",
    ErrorCategory.BUILD: "build-doctor",
    ErrorCategory.RUNTIME: "runtime-debugger",
}

SIMILARITY_THRESHOLD = 0.3

# Only the head of very long output is normalized
MAX_NORMALIZE_LENGTH = 4000


# =========================================================================
# Pipeline
# =========================================================================


def extract_file_path(raw: str) -> Optional[str]:
    """Best-effort file path from failure text, or None."""
    match = _EXTRACT_PATH_RE.search(raw or "")
    return match.group(0) if match else None


def canonicalize(raw: str) -> str:
    """Apply the substitution pipeline and return the canonical text."""
    text = raw or ""
    text = _PATH_WITH_FILE_RE.sub(lambda m: f"{FILE_PLACEHOLDER}/{m.group(1)}", text)
    text = _BARE_PATH_RE.sub(FILE_PLACEHOLDER, text)
    text = _LINE_RE.sub(lambda m: f"{m.group(1)} {NUM_PLACEHOLDER}", text)
    text = _COLON_POS_RE.sub(f":{NUM_PLACEHOLDER}:{NUM_PLACEHOLDER}", text)
    text = _PAREN_POS_RE.sub(f"({NUM_PLACEHOLDER},{NUM_PLACEHOLDER})", text)
    text = _SINGLE_QUOTED_RE.sub(f"'{VAR_PLACEHOLDER}'", text)
    text = _DOUBLE_QUOTED_RE.sub(f'"{VAR_PLACEHOLDER}"', text)
    text = _HEX_RE.sub(ADDR_PLACEHOLDER, text)
    text = _INT_RE.sub(NUM_PLACEHOLDER, text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_keywords(canonical: str) -> Set[str]:
    """Vocabulary-bearing tokens of a canonical message."""
    keywords = set()
    for token in canonical.lower().split():
        if any(marker in token for marker in _PLACEHOLDER_MARKERS):
            continue
        token = token.strip(_TOKEN_PUNCTUATION)
        if token and any(term in token for term in ERROR_VOCABULARY):
            keywords.add(token)
    return keywords


def fingerprint(keywords: Iterable[str]) -> str:
    """Stable hash of a keyword set (order-insensitive)."""
    joined = "|".join(sorted(keywords))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:16]


def categorize(keywords: Set[str]) -> Optional[str]:
    """First matching category in CATEGORY_RULES, or None."""
    for rule in CATEGORY_RULES:
        if rule.matches(keywords):
            return rule.category
    return None


def suggest_agent_for_category(category: Optional[str]) -> Optional[str]:
    if category is None:
        return None
    return CATEGORY_AGENTS.get(category)


def normalize_error(raw: str) -> NormalizedError:
    """Run the full pipeline over one raw failure message."""
    raw = raw or ""
    head = raw[:MAX_NORMALIZE_LENGTH]
    file_path = extract_file_path(head)
    canonical = canonicalize(head)
    keywords = extract_keywords(canonical)
    category = categorize(keywords)
    return NormalizedError(
        raw=raw,
        canonical=canonical,
        keywords=keywords,
        pattern_hash=fingerprint(keywords),
        category=category,
        file_path=file_path,
        suggested_agent=suggest_agent_for_category(category),
    )


# =========================================================================
# Similarity
# =========================================================================


def jaccard(a: Set[str], b: Set[str]) -> float:
    """|a & b| / |a | b|, 0.0 when both are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def find_similar_errors(
    target: NormalizedError,
    candidates: Iterable[Tuple[str, object]],
    threshold: float = SIMILARITY_THRESHOLD,
) -> List[Tuple[object, float]]:
    """Rank candidates by keyword overlap with `target`.

    Args:
        target: The normalized error to compare against.
        candidates: (canonical_text, payload) pairs; keywords are
            recomputed from each canonical text.
        threshold: Scores must be strictly above this to be kept.

    Returns:
        (payload, similarity) pairs, most similar first.
    """
    scored = []
    for canonical, payload in candidates:
        score = jaccard(target.keywords, extract_keywords(canonical))
        if score > threshold:
            scored.append((payload, score))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored


def _has(keywords: Set[str], term: str) -> bool:
    return any(term in kw for kw in keywords)
