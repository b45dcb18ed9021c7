"""Heuristic investor matching: keyword scorers and batch ranking.

Scoring
-------
Each investor is scored against the company profile from five signals:

- **Investment score** (20%): the investor's own score, normalized from
  ``85``, ``"85/100"`` or ``"85%"`` to 0-100.  Missing scores contribute 0
  and the remaining weights are *not* rescaled.
- **Description / overview / practice areas / business models** (30/25/15/10%):
  keyword relevance of each free-text field.
- **Investor type** (10%): fixed points for type phrases ("venture capital", "angel", ...).
- **Additional signals**: unweighted bonus (0-25) for website, LinkedIn,
  founding year and tech-hub location.

The final score is ``round(sum)`` and is not clamped after the bonus, so it
can exceed 100.  An investor is provisionally top rated at 80+.

Ranking
-------
:meth:`InvestorAnalyzer.analyze_all` sorts a batch by score (ties by investor
id) and forces the top ``ceil(10%)`` to top rated.  Provisional flags outside
the top decile are kept, so top rated can be earned either way.
"""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pitchdesk.models import MatchAnalysis
from pitchdesk.profile import (
    COMPANY_PROFILE,
    INVESTOR_FOCUS_AREAS,
    INVESTOR_INTEREST_KEYWORDS,
    CompanyProfile,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Weights and thresholds
# ---------------------------------------------------------------------------

INVESTMENT_SCORE_WEIGHT = 0.20
DESCRIPTION_WEIGHT = 0.30
OVERVIEW_WEIGHT = 0.25
PRACTICE_AREAS_WEIGHT = 0.15
INVESTOR_TYPE_WEIGHT = 0.10
BUSINESS_MODELS_WEIGHT = 0.10

TOP_RATED_THRESHOLD = 80
TOP_RATED_FRACTION = 0.1

NO_REASON = "Limited information available for analysis"

INTEREST_POINTS = 5
FOCUS_AREA_POINTS = 8
COMPANY_KEYWORD_POINTS = 10
DETAIL_BONUS_POINTS = 5
DETAIL_LENGTH = 200

# (phrases, points); every matching row adds its points
INVESTOR_TYPE_POINTS: list[tuple[tuple[str, ...], int]] = [
    (("venture capital", "vc"), 25),
    (("angel", "seed"), 20),
    (("early stage", "startup"), 20),
    (("technology", "tech"), 15),
    (("ai", "artificial intelligence"), 30),
    (("software", "saas"), 15),
    (("enterprise",), 15),
    (("growth",), 10),
    (("private equity",), 8),
    (("investment",), 5),
]

TECH_HUBS = (
    "united states", "usa", "us", "canada", "uk", "united kingdom",
    "germany", "france", "singapore", "israel",
)

_FLOAT_PREFIX_RE = re.compile(r"\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")


# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------


def _field(investor: Any, name: str) -> Any:
    """Read a field from an ORM row, plain object or mapping."""
    if isinstance(investor, Mapping):
        return investor.get(name)
    return getattr(investor, name, None)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return min(max(value, low), high)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _parse_float(text: str) -> float | None:
    """Parse the leading number of *text* ("85abc" -> 85.0); None if there is none."""
    m = _FLOAT_PREFIX_RE.match(text)
    if not m:
        return None
    value = float(m.group(1))
    return value if math.isfinite(value) else None


# ---------------------------------------------------------------------------
# Scorers
# ---------------------------------------------------------------------------


def score_text(
    text: str | None,
    profile: CompanyProfile = COMPANY_PROFILE,
    interest_keywords: Iterable[str] = INVESTOR_INTEREST_KEYWORDS,
    focus_areas: Mapping[str, Iterable[str]] = INVESTOR_FOCUS_AREAS,
) -> float:
    """Keyword relevance of a free-text field, 0-100.

    Matching is case-insensitive and unanchored, so a keyword also matches
    inside a longer word ("ai" in "maintain").
    """
    if not text:
        return 0
    lower = text.lower()
    score = 0

    for keyword in interest_keywords:
        if keyword.lower() in lower:
            score += INTEREST_POINTS

    for keywords in focus_areas.values():
        matches = sum(1 for keyword in keywords if keyword.lower() in lower)
        score += matches * FOCUS_AREA_POINTS

    for keyword in profile.keywords():
        if keyword.lower() in lower:
            score += COMPANY_KEYWORD_POINTS

    if len(text) > DETAIL_LENGTH:
        score += DETAIL_BONUS_POINTS

    return _clamp(score)


def score_investor_type(investor_type: str | None) -> float:
    """Relevance of an investor-type label such as "Venture Capital", 0-100."""
    if not investor_type:
        return 0
    lower = investor_type.lower()
    score = sum(points for phrases, points in INVESTOR_TYPE_POINTS
                if any(p in lower for p in phrases))
    return _clamp(score)


def normalize_investment_score(value: Any) -> float:
    """Normalize ``85``, ``"85/100"``, ``"85%"`` or ``"85"`` to 0-100.

    Unparseable input yields 0; this never raises.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return 0.0
        return _clamp(float(value))
    if not isinstance(value, str):
        return 0.0

    if "/" in value:
        numerator, denominator = (value.split("/") + [""])[:2]
        num = _parse_float(numerator)
        den = _parse_float(denominator)
        if num is None or den is None or den <= 0:
            return 0.0
        return _clamp(num / den * 100)

    if "%" in value:
        num = _parse_float(value.replace("%", ""))
        return _clamp(num) if num is not None else 0.0

    num = _parse_float(value)
    return _clamp(num) if num is not None else 0.0


def score_additional_signals(investor: Any, current_year: int | None = None) -> int:
    """Bonus points (0-25) for profile completeness and location."""
    score = 0
    if _field(investor, "website"):
        score += 5
    if _field(investor, "company_linkedin"):
        score += 5

    founded = _field(investor, "founded_year")
    if founded:
        year = current_year or datetime.now(UTC).year
        try:
            age = year - int(founded)
        except (TypeError, ValueError, OverflowError):
            age = None
        if age is not None:
            if age <= 10:
                score += 10
            elif age <= 20:
                score += 5

    country = _field(investor, "country")
    if country and any(hub in str(country).lower() for hub in TECH_HUBS):
        score += 5
    return score


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


@dataclass
class AnalysisResult:
    """Score for one investor before batch ranking."""
    investor_id: int
    score: int
    reasons: list[str] = field(default_factory=list)
    top_rated: bool = False

    @property
    def reason(self) -> str:
        fragments = [r for r in self.reasons if r]
        if not fragments:
            return NO_REASON
        return ". ".join(fragments[:3])


class InvestorAnalyzer:
    """Scores investors against a company profile."""

    def __init__(self, profile: CompanyProfile = COMPANY_PROFILE, current_year: int | None = None):
        self.profile = profile
        self.current_year = current_year

    def _text(self, text: Any) -> float:
        return score_text(text if isinstance(text, str) else None, self.profile)

    def analyze_investor(self, investor: Any) -> AnalysisResult:
        total = 0.0
        reasons: list[str] = []

        raw_score = _field(investor, "investment_score")
        if raw_score:
            total += normalize_investment_score(raw_score) * INVESTMENT_SCORE_WEIGHT
            reasons.append(f"Base investment score: {raw_score}")

        total += self._text(_field(investor, "description")) * DESCRIPTION_WEIGHT
        total += self._text(_field(investor, "overview")) * OVERVIEW_WEIGHT
        total += self._text(_field(investor, "practice_areas")) * PRACTICE_AREAS_WEIGHT
        investor_type = _field(investor, "investor_type")
        total += score_investor_type(investor_type if isinstance(investor_type, str) else None) * INVESTOR_TYPE_WEIGHT
        total += self._text(_field(investor, "business_models")) * BUSINESS_MODELS_WEIGHT
        total += score_additional_signals(investor, self.current_year)

        score = _round_half_up(total)
        return AnalysisResult(
            investor_id=_field(investor, "id"),
            score=score,
            reasons=reasons,
            top_rated=score >= TOP_RATED_THRESHOLD,
        )

    def analyze_all(self, investors: Iterable[Any]) -> list[MatchAnalysis]:
        """Score and rank a batch; returns unsaved rows sorted by score."""
        results = [self.analyze_investor(inv) for inv in investors]
        results.sort(key=lambda r: (-r.score, r.investor_id if r.investor_id is not None else 0))

        top_count = math.ceil(len(results) * TOP_RATED_FRACTION)
        for idx, result in enumerate(results):
            if idx < top_count:
                result.top_rated = True

        log.debug("Analyzed %d investors, %d in top decile", len(results), top_count)
        return [
            MatchAnalysis(
                investor_id=r.investor_id,
                score=r.score,
                reason=r.reason,
                top_rated=r.top_rated,
            )
            for r in results
        ]
