"""
Structured journal analysis and the parser for free-form model output.

The parser is a small line classifier: each known label maps to a setter on a
draft report, and every other long line is sorted into insights,
recommendations or patterns by keyword. `parse` never raises.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date as date_type
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

MAX_LIST_ITEMS = 3

DEFAULT_REASON = "Positive self-reflection practice"
DEFAULT_MINDSET = "Thoughtful self-reflection"
DEFAULT_SUGGESTION = "Continue this daily practice for personal growth"
DEFAULT_ENCOURAGEMENT = "Keep up the great work! 🌟"
GENERIC_AFFIRMATION = "Great work on your self-reflection journey! 🌟"
DEFAULT_ALTERNATIVE = "Consider healthier alternatives"

DEFAULT_INSIGHTS = [
    "Regular journaling builds self-awareness and emotional intelligence",
    "Consistent reflection helps identify patterns and growth opportunities",
]
DEFAULT_RECOMMENDATIONS = [
    "Continue daily journaling practice",
    "Try to journal at the same time each day",
    "Focus on specific actions and their outcomes",
]
DEFAULT_PATTERNS = ["Self-reflection and mindfulness practice"]


class Verdict(str, Enum):
    POSITIVE = "Positive"
    CAUTION = "Caution"
    SEVERE = "Severe"

    @property
    def severity(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def downgraded(self) -> "Verdict":
        index = min(self.severity + 1, len(_SEVERITY_ORDER) - 1)
        return _SEVERITY_ORDER[index]


_SEVERITY_ORDER = (Verdict.POSITIVE, Verdict.CAUTION, Verdict.SEVERE)


class EvidenceLabel(str, Enum):
    SUPPORTED = "Supported"
    DISPUTED = "Disputed"
    RISKY = "Risky"


class EvidenceCheck(BaseModel):
    verdict_label: EvidenceLabel = EvidenceLabel.SUPPORTED
    evidence: str
    alternative: str = DEFAULT_ALTERNATIVE


class Finding(BaseModel):
    """Assessment of one segment of a journal entry."""

    segment: str
    verdict: Verdict
    reason_line: str
    mindset: str
    suggestion: str
    encouragement: str
    citation: str | None = None
    evidence_check: EvidenceCheck | None = None


class AnalysisReport(BaseModel):
    verdict: Verdict
    reason_line: str
    citation: str | None = None
    evidence_check: EvidenceCheck | None = None
    mindset: str = DEFAULT_MINDSET
    suggestion: str
    encouragement: str
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)

    date: str = Field(default_factory=lambda: date_type.today().isoformat())
    day_name: str = Field(default_factory=lambda: date_type.today().strftime("%A"))
    source: Literal["model", "fallback"] = "model"
    model_used: str | None = None
    findings: list[Finding] = Field(default_factory=list)
    diagnostics: list[str] = Field(default_factory=list)


@dataclass
class _Draft:
    verdict: Verdict | None = None
    reason_line: str | None = None
    citation: str | None = None
    evidence_check: EvidenceCheck | None = None
    mindset: str | None = None
    suggestion: str | None = None
    encouragement: str | None = None
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)


# Emoji markers win over marker words.
_MARKERS = (
    (Verdict.SEVERE, "⛔"),
    (Verdict.CAUTION, "⚠"),
    (Verdict.POSITIVE, "✅"),
    (Verdict.SEVERE, "severe"),
    (Verdict.CAUTION, "caution"),
    (Verdict.POSITIVE, "positive"),
)
_MARKER_STRIP_RE = re.compile(r"[✅⚠️⛔—⬜]")
_BULLET_RE = re.compile(r"^[\-–•*]+\s*")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_IF_RE = re.compile(r"\bif\b", re.IGNORECASE)
_ALTERNATIVE_RE = re.compile(r"(?:safer\s+)?alternative\s*[:\-–]\s*(.+)$", re.IGNORECASE)
# Label echoes and en-dash section lines never become list items.
_SKIP_FREE_RE = re.compile(r"^(date|assessment|positive|science|suggestion|reward|final|–)", re.IGNORECASE)


def _after_label(line: str) -> str:
    return line.split(":", 1)[1].strip() if ":" in line else ""


def _verdict_from(text: str) -> Verdict:
    lowered = text.lower()
    for verdict, marker in _MARKERS:
        if marker in lowered:
            return verdict
    return Verdict.POSITIVE


def _set_assessment(draft: _Draft, line: str) -> None:
    body = _after_label(line)
    draft.verdict = _verdict_from(body)
    draft.reason_line = _MARKER_STRIP_RE.sub("", body).strip(" -:") or "Positive reflection"


def _set_citation(draft: _Draft, line: str) -> None:
    quote = _after_label(line)
    if quote:
        draft.citation = quote


def _set_evidence(draft: _Draft, line: str) -> None:
    body = _after_label(line)
    lowered = body.lower()
    if "risk" in lowered:
        label = EvidenceLabel.RISKY
    elif any(word in lowered for word in ("disputed", "incorrect", "contested", "myth")):
        label = EvidenceLabel.DISPUTED
    else:
        label = EvidenceLabel.SUPPORTED
    alt_match = _ALTERNATIVE_RE.search(body)
    alternative = alt_match.group(1).strip() if alt_match else DEFAULT_ALTERNATIVE
    draft.evidence_check = EvidenceCheck(verdict_label=label, evidence=body or "No evidence given", alternative=alternative)


def _set_suggestion(draft: _Draft, line: str) -> None:
    text = _after_label(line)
    if text:
        draft.suggestion = text


def _set_encouragement(draft: _Draft, line: str) -> None:
    draft.encouragement = _after_label(line) or DEFAULT_ENCOURAGEMENT


def _dash_stripped(line: str) -> str:
    return _BULLET_RE.sub("", line).strip()


def _add_insight(draft: _Draft, line: str) -> None:
    draft.insights.append(_dash_stripped(line))


def _add_recommendation(draft: _Draft, line: str) -> None:
    draft.recommendations.append(_dash_stripped(line))


def _add_pattern(draft: _Draft, line: str) -> None:
    draft.patterns.append(_dash_stripped(line))


def _ignore(_draft: _Draft, _line: str) -> None:
    return None


LineRule = tuple[re.Pattern[str], Callable[[_Draft, str], None]]

LINE_RULES: list[LineRule] = [
    (re.compile(r"^assessment\s*:", re.IGNORECASE), _set_assessment),
    (re.compile(r"^positive quote", re.IGNORECASE), _set_citation),
    (re.compile(r"^science check\s*:", re.IGNORECASE), _set_evidence),
    (re.compile(r"^suggestion\s*:", re.IGNORECASE), _set_suggestion),
    (re.compile(r"^(reward|final encouragement)\s*:", re.IGNORECASE), _set_encouragement),
    (re.compile(r"^date\s*:", re.IGNORECASE), _ignore),
    # Values sections: a definition with a colon is an insight, a bare heading is a pattern.
    (re.compile(r"^[–-]\s*(character building|moral values|ethical values)\s*:", re.IGNORECASE), _add_insight),
    (re.compile(r"^[–-]\s*(missing core values|\d+\s*[–-]\s*\d+ micro-habits)", re.IGNORECASE), _add_recommendation),
    (re.compile(r"^[–-]\s*(character building|moral values|ethical values)", re.IGNORECASE), _add_pattern),
]


def _sort_free_line(draft: _Draft, line: str) -> None:
    if _SKIP_FREE_RE.match(line):
        return
    text = _dash_stripped(line)
    if len(text) <= 20:
        return
    lowered = text.lower()
    if "pattern" in lowered or "insight" in lowered:
        draft.patterns.append(text)
    elif (
        "recommend" in lowered
        or "suggest" in lowered
        or "micro-habit" in lowered
        or "missing core value" in lowered
        or _IF_RE.search(text)
    ):
        draft.recommendations.append(text)
    else:
        draft.insights.append(text)


def split_sentences(text: str, *, min_length: int = 10) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if len(s.strip()) > min_length]


def _degrade(draft: _Draft, raw_text: str) -> None:
    sentences = split_sentences(raw_text)
    picks = [s[:100] for s in sentences[:3]]
    draft.verdict = Verdict.POSITIVE
    draft.reason_line = picks[0] if len(picks) > 0 else "AI-analyzed reflection"
    draft.mindset = picks[1] if len(picks) > 1 else DEFAULT_MINDSET
    draft.suggestion = picks[2] if len(picks) > 2 else "Continue this reflective practice"
    draft.encouragement = GENERIC_AFFIRMATION


def parse(raw_text: str | None) -> AnalysisReport:
    text = raw_text if isinstance(raw_text, str) else ""
    draft = _Draft()
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        for pattern, setter in LINE_RULES:
            if pattern.match(line):
                setter(draft, line)
                break
        else:
            _sort_free_line(draft, line)

    if draft.verdict is None and draft.suggestion is None and draft.encouragement is None:
        _degrade(draft, text)

    return AnalysisReport(
        verdict=draft.verdict or Verdict.POSITIVE,
        reason_line=draft.reason_line or DEFAULT_REASON,
        citation=draft.citation,
        evidence_check=draft.evidence_check,
        mindset=draft.mindset or DEFAULT_MINDSET,
        suggestion=draft.suggestion or DEFAULT_SUGGESTION,
        encouragement=draft.encouragement or DEFAULT_ENCOURAGEMENT,
        insights=draft.insights[:MAX_LIST_ITEMS] or list(DEFAULT_INSIGHTS),
        recommendations=draft.recommendations[:MAX_LIST_ITEMS] or list(DEFAULT_RECOMMENDATIONS),
        patterns=draft.patterns[:MAX_LIST_ITEMS] or list(DEFAULT_PATTERNS),
        source="model",
    )
