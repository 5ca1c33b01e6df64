"""Keyword heuristics that classify a free-text goal.

Best effort only: nothing here raises, unmatched goals fall back to
``MODULE`` / ``MODERATE``.
"""

from __future__ import annotations

import re

from .models import Approach, Complexity, PlanStrategy, ProblemAnalysis, Scope

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9_-]*")
_QUESTION_RE = re.compile(r"[^.!?\n]*\?")

# Checked in order; first hit wins.
_SCOPE_KEYWORDS: tuple[tuple[Scope, frozenset[str]], ...] = (
    (
        Scope.PROJECT_WIDE,
        frozenset({"project", "entire", "all", "every", "codebase", "everywhere"}),
    ),
    (
        Scope.CROSS_MODULE,
        frozenset({"modules", "across", "cross-module", "integration"}),
    ),
    (Scope.MODULE, frozenset({"module", "package", "component", "service"})),
    (Scope.MULTI_FILE, frozenset({"files", "multiple", "several"})),
    (Scope.SINGLE_FILE, frozenset({"file", "function", "method", "line", "typo"})),
)

_COMPLEX_WORDS = frozenset(
    {
        "complex",
        "difficult",
        "major",
        "redesign",
        "refactor",
        "migrate",
        "rewrite",
        "overhaul",
    }
)
_ARCHITECTURE_WORDS = frozenset({"architecture", "rearchitect"})
_SIMPLE_WORDS = frozenset({"simple", "quick", "small", "minor"})
_TRIVIAL_WORDS = frozenset({"typo", "rename", "trivial"})

DEFAULT_SCOPE = Scope.MODULE
DEFAULT_COMPLEXITY = Complexity.MODERATE


def _words(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


def _classify_scope(words: set[str]) -> Scope:
    for scope, keywords in _SCOPE_KEYWORDS:
        if words & keywords:
            return scope
    return DEFAULT_SCOPE


def _classify_complexity(words: set[str], scope: Scope) -> Complexity:
    if words & _COMPLEX_WORDS:
        if scope == Scope.PROJECT_WIDE and words & _ARCHITECTURE_WORDS:
            return Complexity.VERY_COMPLEX
        return Complexity.COMPLEX
    if words & _TRIVIAL_WORDS:
        return Complexity.TRIVIAL
    if words & _SIMPLE_WORDS:
        return Complexity.SIMPLE
    return DEFAULT_COMPLEXITY


def analyze_goal(text: str | None) -> ProblemAnalysis:
    if not isinstance(text, str) or not text.strip():
        return ProblemAnalysis(DEFAULT_SCOPE, DEFAULT_COMPLEXITY)

    words = _words(text)
    scope = _classify_scope(words)
    complexity = _classify_complexity(words, scope)
    unknowns = tuple(
        question.strip() for question in _QUESTION_RE.findall(text) if question.strip()
    )
    return ProblemAnalysis(scope=scope, complexity=complexity, unknowns=unknowns)


def suggest_strategy(analysis: ProblemAnalysis) -> PlanStrategy:
    # Open questions outrank scope: investigate before committing.
    if analysis.unknowns:
        return PlanStrategy.spike()
    if analysis.scope in (Scope.PROJECT_WIDE, Scope.CROSS_MODULE):
        return PlanStrategy(
            approach=Approach.INCREMENTAL,
            reasoning="Large scope requires careful incremental changes",
        )
    return PlanStrategy.default()
