"""Per-test-case scoring.

Evaluation criteria arrive as free-form JSON on the test case. They are parsed
into one of a few known policies; anything unrecognized scores 0.0 rather than
failing, so new criteria types can be stored before the scorer learns them.

Policies, in priority order:
  - none (absent/empty criteria, or only `exact_match: false`): trimmed,
    case-insensitive exact match; 0.0 when there is no expected output
  - exact_match: same rule
  - keywords: fraction of keywords present as whole whitespace tokens
  - anything else: 0.0
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union


@dataclass(frozen=True)
class NoCriteria:
    pass


@dataclass(frozen=True)
class ExactMatch:
    pass


@dataclass(frozen=True)
class Keywords:
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class Unrecognized:
    raw: Any = None


Criteria = Union[NoCriteria, ExactMatch, Keywords, Unrecognized]


def parse_criteria(raw: Any) -> Criteria:
    if raw is None:
        return NoCriteria()
    if isinstance(raw, str):
        if not raw.strip():
            return NoCriteria()
        try:
            raw = json.loads(raw)
        except ValueError:
            return Unrecognized(raw)
    if not isinstance(raw, dict):
        return Unrecognized(raw)
    if not raw:
        return NoCriteria()
    if raw.get("exact_match"):
        return ExactMatch()
    if set(raw) == {"exact_match"}:
        return NoCriteria()
    keywords = raw.get("keywords")
    if isinstance(keywords, (list, tuple)) and keywords:
        return Keywords(tuple(str(k) for k in keywords))
    return Unrecognized(raw)


def _normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def _exact(response: str, expected: Optional[str]) -> float:
    if expected is None:
        return 0.0
    return 1.0 if _normalize(response) == _normalize(expected) else 0.0


def score(response: str, expected: Optional[str], criteria: Any = None) -> float:
    """Score a model response against the expected output; always in [0, 1]."""
    policy = criteria if isinstance(criteria, (NoCriteria, ExactMatch, Keywords, Unrecognized)) else parse_criteria(criteria)
    if isinstance(policy, (NoCriteria, ExactMatch)):
        return _exact(response, expected)
    if isinstance(policy, Keywords):
        tokens = set((response or "").lower().split())
        found = sum(1 for k in policy.keywords if k.lower() in tokens)
        return found / len(policy.keywords)
    return 0.0
