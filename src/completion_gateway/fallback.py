from __future__ import annotations

from dataclasses import dataclass

import structlog

from .analysis import (
    AnalysisReport,
    EvidenceCheck,
    EvidenceLabel,
    Finding,
    Verdict,
    split_sentences,
)
from .metrics import fallback_analyses_total

log = structlog.get_logger()

MAX_SEGMENTS = 4
DEFAULT_MOOD = 3

POSITIVE_WORDS = (
    "happy", "grateful", "thankful", "appreciate", "love", "joy",
    "excited", "proud", "accomplished", "peaceful", "content", "blessed",
)
CHALLENGE_WORDS = (
    "difficult", "hard", "struggle", "challenge", "problem", "stress",
    "worry", "anxious", "frustrated", "overwhelmed", "tired", "sad",
)
GROWTH_WORDS = (
    "learn", "grow", "improve", "develop", "practice", "try",
    "goal", "progress", "better", "change", "effort", "work",
)
SOCIAL_WORDS = (
    "friend", "family", "talk", "share", "help", "support",
    "together", "connect", "relationship", "team", "group",
)
HEALTH_WORDS = (
    "exercise", "walk", "run", "eat", "sleep", "rest",
    "healthy", "workout", "meditation", "breathe", "relax",
)
WORK_WORDS = (
    "work", "study", "school", "project", "assignment", "meeting",
    "deadline", "task", "job", "career", "focus",
)


@dataclass(frozen=True)
class Template:
    category: str
    verdict: Verdict
    reason: str
    mindset: str
    suggestion: str
    encouragement: str
    citation: str | None = None
    evidence: EvidenceCheck | None = None


TEMPLATES: dict[str, Template] = {
    t.category: t
    for t in (
        Template(
            "positive",
            Verdict.POSITIVE,
            "Positive emotional experience",
            "Cultivating positive emotions and gratitude",
            "Continue nurturing these positive experiences and consider sharing them with others",
            "Your positive outlook is a strength that builds resilience! ✨",
            citation="Whatever is true, noble and lovely, think on these things.",
            evidence=EvidenceCheck(
                verdict_label=EvidenceLabel.SUPPORTED,
                evidence="Neuroscience research links gratitude practice with higher dopamine and serotonin activity",
                alternative="Keep a daily gratitude journal to strengthen these neural pathways",
            ),
        ),
        Template(
            "challenge_growth",
            Verdict.CAUTION,
            "Constructively addressing challenges",
            "Growth mindset: viewing challenges as opportunities",
            "Break down this challenge into smaller, manageable steps you can tackle tomorrow",
            "Your willingness to grow through challenges shows real wisdom! 💪",
            citation="Trials, met with patience, grow perseverance.",
        ),
        Template(
            "challenge",
            Verdict.CAUTION,
            "Experiencing difficulties that need attention",
            "Processing difficult emotions and situations",
            "Consider reaching out for support or breaking this challenge into smaller parts",
            "Acknowledging difficulties takes courage. You're stronger than you know! 🌟",
            evidence=EvidenceCheck(
                verdict_label=EvidenceLabel.RISKY,
                evidence="Chronic stress without coping strategies can impact mental and physical health",
                alternative="Practice stress-reduction techniques like deep breathing or talking to someone you trust",
            ),
        ),
        Template(
            "social",
            Verdict.POSITIVE,
            "Building meaningful connections",
            "Investing in relationships and community",
            "Continue nurturing these relationships with regular check-ins and quality time",
            "Strong relationships are the foundation of wellbeing! 🤝",
            evidence=EvidenceCheck(
                verdict_label=EvidenceLabel.SUPPORTED,
                evidence="Long-running adult development studies find close relationships predict happiness and health",
                alternative="Schedule regular time for meaningful conversations with people you care about",
            ),
        ),
        Template(
            "health",
            Verdict.POSITIVE,
            "Prioritizing physical wellbeing",
            "Understanding the mind-body connection",
            "Build on this healthy habit by setting a specific time and goal for tomorrow",
            "Taking care of your body is taking care of your mind! 🏃",
            evidence=EvidenceCheck(
                verdict_label=EvidenceLabel.SUPPORTED,
                evidence="Meta-analyses show regular exercise reduces symptoms of anxiety and depression",
                alternative="Even 10 minutes of daily movement can noticeably lift mood and energy",
            ),
        ),
        Template(
            "work",
            Verdict.POSITIVE,
            "Engaging with responsibilities",
            "Balancing productivity with personal wellbeing",
            "Consider how to make this work more meaningful or efficient tomorrow",
            "Your dedication to your responsibilities shows character! 📚",
        ),
        Template(
            "growth",
            Verdict.POSITIVE,
            "Commitment to personal development",
            "Embracing continuous learning and improvement",
            "Set one specific, measurable goal based on what you want to learn or improve",
            "Your growth mindset is your superpower! Keep evolving! 🌱",
        ),
        Template(
            "reflection",
            Verdict.POSITIVE,
            "Thoughtful self-reflection",
            "Developing self-awareness through reflection",
            "Continue this practice of mindful reflection to deepen self-understanding",
            "Self-reflection is the first step to wisdom! 🧠",
        ),
    )
}

LOW_MOOD_POSITIVE = (
    "Low mood needs gentle attention",
    "Focus on one small, nurturing action for yourself tomorrow",
    "Even small steps count. You're doing better than you think! 💙",
)
LOW_MOOD_CAUTION = (
    "Low mood alongside difficulties deserves real care",
    "Reach out to someone you trust today and share how you are feeling",
    "You don't have to carry this alone. Asking for help is strength! 💙",
)


def _has_any(text: str, words: tuple[str, ...]) -> bool:
    return any(word in text for word in words)


def classify(segment: str) -> Template:
    lowered = segment.lower()
    positive = _has_any(lowered, POSITIVE_WORDS)
    challenge = _has_any(lowered, CHALLENGE_WORDS)
    growth = _has_any(lowered, GROWTH_WORDS)

    if positive and not challenge:
        return TEMPLATES["positive"]
    if challenge and growth:
        return TEMPLATES["challenge_growth"]
    if challenge:
        return TEMPLATES["challenge"]
    if _has_any(lowered, SOCIAL_WORDS):
        return TEMPLATES["social"]
    if _has_any(lowered, HEALTH_WORDS):
        return TEMPLATES["health"]
    if _has_any(lowered, WORK_WORDS):
        return TEMPLATES["work"]
    if growth:
        return TEMPLATES["growth"]
    return TEMPLATES["reflection"]


class RuleBasedAnalyzer:
    """Deterministic keyword analysis used when no model could answer."""

    def __init__(self, *, low_mood_threshold: int = 2):
        self.low_mood_threshold = low_mood_threshold

    def _finding(self, segment: str, mood: int) -> Finding:
        template = classify(segment)
        verdict = template.verdict
        reason, suggestion, encouragement = template.reason, template.suggestion, template.encouragement
        if mood <= self.low_mood_threshold:
            low = LOW_MOOD_POSITIVE if verdict is Verdict.POSITIVE else LOW_MOOD_CAUTION
            verdict = verdict.downgraded()
            reason, suggestion, encouragement = low
        return Finding(
            segment=segment.strip() or "Daily reflection practice",
            verdict=verdict,
            reason_line=reason,
            mindset=template.mindset,
            suggestion=suggestion,
            encouragement=encouragement,
            citation=template.citation,
            evidence_check=template.evidence,
        )

    def analyze(self, text: str | None, mood: int | None = DEFAULT_MOOD, *, diagnostics: list[str] | None = None) -> AnalysisReport:
        text = text or ""
        mood = DEFAULT_MOOD if mood is None else int(mood)
        segments = split_sentences(text)[:MAX_SEGMENTS] or [text]
        findings = [self._finding(segment, mood) for segment in segments]

        # Most severe finding leads; the first one wins a tie.
        lead = max(findings, key=lambda f: f.verdict.severity)
        fallback_analyses_total.inc()
        log.info("fallback_analysis", segments=len(findings), verdict=lead.verdict.value, mood=mood)

        return AnalysisReport(
            verdict=lead.verdict,
            reason_line=lead.reason_line,
            citation=lead.citation,
            evidence_check=lead.evidence_check,
            mindset=lead.mindset,
            suggestion=lead.suggestion,
            encouragement=lead.encouragement,
            insights=contextual_insights(text, mood),
            recommendations=personalized_recommendations(text, mood),
            patterns=identify_patterns(text, mood),
            source="fallback",
            findings=findings,
            diagnostics=list(diagnostics or []),
        )


def contextual_insights(text: str, mood: int) -> list[str]:
    lowered = text.lower()
    insights: list[str] = []
    if mood >= 4:
        insights.append("Your positive mood reflects healthy emotional patterns and good self-care")
    elif mood <= 2:
        insights.append("Low mood periods are normal; acknowledging them is the first step to improvement")
        insights.append("Consider reaching out for support when you need it; connection helps healing")
    else:
        insights.append("Neutral moods provide good opportunities for balanced self-reflection")

    if _has_any(lowered, ("grateful", "thankful")):
        insights.append("Gratitude practice is linked to better mental health and life satisfaction")
    if _has_any(lowered, ("challenge", "difficult")):
        insights.append("Facing challenges with awareness shows emotional maturity and growth potential")
    if _has_any(lowered, ("friend", "family", "social")):
        insights.append("Social connections are fundamental to wellbeing and personal development")

    insights.append("Regular journaling builds self-awareness and emotional intelligence")
    insights.append("Your commitment to reflection demonstrates dedication to personal growth")
    return insights[:4]


def personalized_recommendations(text: str, mood: int) -> list[str]:
    lowered = text.lower()
    recs: list[str] = []
    if mood <= 2:
        recs.append("Practice one small self-care activity daily (walk, tea, music)")
        recs.append("Consider talking to someone you trust about how you're feeling")
    elif mood >= 4:
        recs.append("Share your positive energy with others; it multiplies the joy")
        recs.append("Note what contributed to this good mood for future reference")

    if _has_any(lowered, ("stress", "overwhelm")):
        recs.append("Try the 4-7-8 breathing technique when feeling overwhelmed")
        recs.append("Break large tasks into smaller, manageable steps")
    if _has_any(lowered, ("goal", "improve")):
        recs.append("Set SMART goals (Specific, Measurable, Achievable, Relevant, Time-bound)")

    recs.append("Continue your daily journaling practice for consistent growth")
    recs.append("Try to journal at the same time each day to build a strong habit")
    recs.append("Focus on specific actions and their outcomes for deeper insights")
    return recs[:4]


def identify_patterns(text: str, mood: int) -> list[str]:
    lowered = text.lower()
    patterns: list[str] = []
    if mood >= 4:
        patterns.append("Positive emotional regulation and mood management")
    elif mood <= 2:
        patterns.append("Processing challenging emotions with self-awareness")

    if _has_any(lowered, ("routine", "habit")):
        patterns.append("Building structured daily routines and habits")
    if _has_any(lowered, ("reflect", "think")):
        patterns.append("Regular self-reflection and mindfulness practice")
    if _has_any(lowered, ("goal", "plan")):
        patterns.append("Goal-oriented thinking and future planning")

    patterns.append("Commitment to personal growth through journaling")
    return patterns[:3]
