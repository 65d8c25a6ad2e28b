from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, Field

from .analysis import AnalysisReport, parse
from .dispatcher import CompletionDispatcher
from .errors import DispatchError, GatewayError
from .fallback import RuleBasedAnalyzer

log = structlog.get_logger()

MENTOR_SYSTEM_PROMPT = (
    "You are a compassionate mentor reviewing a daily journal entry. Reply with these lines: "
    "Assessment: (✅/⚠️/⛔ plus a one-line reason), Positive Quote: , Science Check: , "
    "Suggestion: (an If..., then... intention), Reward: , Final Encouragement: ."
)

CANNED_PROMPTS = [
    "What is one small action you can take today to improve your well-being?",
    "Reflect on a moment today when you felt most aligned with your values.",
    "What pattern in your behavior would you like to change, and what's one tiny step toward that change?",
]


class JournalAnalysisRequest(BaseModel):
    journal_text: str = ""
    mood: int = Field(default=3, ge=1, le=5)
    values: list[str] = Field(default_factory=list)
    user_age: int | None = None
    user_religion: str | None = None


def build_analysis_prompt(req: JournalAnalysisRequest) -> str:
    lines = [
        "Please analyze this journal entry:",
        "",
        f'Journal Text: "{req.journal_text}"',
        f"Mood Rating: {req.mood}/5",
        f"Values Explored: {', '.join(req.values)}",
    ]
    if req.user_age:
        lines.append(f"User Age: {req.user_age}")
    lines.append(f"Religion: {req.user_religion or 'All Religions/Universal Ethics'}")
    return "\n".join(lines)


class JournalAnalyzer:
    """
    Journal analysis that always produces a report.

    A successful dispatch is parsed; a failed dispatch is replaced by the
    rule-based analyzer, with the dispatch log kept as diagnostics.
    """

    def __init__(
        self,
        dispatcher: CompletionDispatcher,
        *,
        fallback: RuleBasedAnalyzer | None = None,
        system_prompt: str = MENTOR_SYSTEM_PROMPT,
        generation: dict[str, Any] | None = None,
    ):
        self.dispatcher = dispatcher
        self.fallback = fallback or RuleBasedAnalyzer()
        self.system_prompt = system_prompt
        self.generation = generation or {"temperature": 0.7, "max_tokens": 2048, "top_p": 1.0}

    async def analyze(self, req: JournalAnalysisRequest) -> AnalysisReport:
        try:
            result = await self.dispatcher.generate_completion(
                build_analysis_prompt(req), self.system_prompt, **self.generation
            )
        except GatewayError as e:
            diagnostics = list(e.errors) if isinstance(e, DispatchError) else []
            log.warning("journal_analysis_fallback", error_type=e.__class__.__name__, attempts=len(diagnostics))
            return self.fallback.analyze(req.journal_text, req.mood, diagnostics=diagnostics or [str(e)])

        report = parse(result.text)
        report.model_used = result.provider_used
        log.info("journal_analysis_parsed", provider=result.provider_used, attempts=result.attempt_count)
        return report

    async def suggest_prompts(self, history: list[str], mood: int) -> list[str]:
        prompt = (
            f"Based on this user's journaling history and current mood ({mood}/5), "
            "suggest 3 personalized reflection prompts:\n\n"
            f"Recent entries: {' | '.join(history[-5:])}\n\n"
            "Please provide 3 specific, actionable prompts that would help this user continue their growth journey."
        )
        try:
            result = await self.dispatcher.generate_completion(prompt, **self.generation)
        except GatewayError as e:
            log.warning("prompt_suggestions_fallback", error_type=e.__class__.__name__)
            return list(CANNED_PROMPTS)
        lines = [line.strip() for line in result.text.splitlines() if line.strip()]
        return lines[:3] or list(CANNED_PROMPTS)
