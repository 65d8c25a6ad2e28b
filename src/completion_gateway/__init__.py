from .analysis import AnalysisReport, Verdict, parse
from .config import GatewayConfig
from .contracts import ChatMessage, CompletionRequest, CompletionResult
from .dispatcher import CompletionDispatcher
from .fallback import RuleBasedAnalyzer
from .gateway import CompletionGateway
from .health import HealthTracker
from .mentor import JournalAnalysisRequest, JournalAnalyzer
from .registry import ProviderDescriptor, ProviderRegistry

__all__ = [
    "AnalysisReport",
    "ChatMessage",
    "CompletionDispatcher",
    "CompletionGateway",
    "CompletionRequest",
    "CompletionResult",
    "GatewayConfig",
    "HealthTracker",
    "JournalAnalysisRequest",
    "JournalAnalyzer",
    "ProviderDescriptor",
    "ProviderRegistry",
    "RuleBasedAnalyzer",
    "Verdict",
    "parse",
]
