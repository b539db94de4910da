"""Kill-chain core: step analyses, decision ledger, state machine, memo assembly."""

from buffett_mcp.killchain.derivation import TextGenerator, derive_analysis, parse_analysis
from buffett_mcp.killchain.errors import (
    AnalysisError,
    AnalysisTimeoutError,
    FundamentalsNotFoundError,
    IncompleteStateError,
    KillChainError,
    MalformedResponseError,
    NavigationError,
    ProviderError,
    SequenceError,
    StorageUnavailable,
    WatchlistConflictError,
)
from buffett_mcp.killchain.ledger import OutcomeLedger
from buffett_mcp.killchain.machine import AnalysisStatus, KillChain, start_run
from buffett_mcp.killchain.memo import assemble
from buffett_mcp.killchain.models import (
    VERDICT_FAIL,
    VERDICT_PASS,
    BusinessAnalysis,
    FundamentalsRecord,
    ManagementAnalysis,
    Memo,
    MemoStep,
    MoatAnalysis,
    StepAnalysis,
    StepOutcome,
    ValuationAnalysis,
)
from buffett_mcp.killchain.state import KillChainState, overall_verdict

__all__ = [
    # Models
    "VERDICT_FAIL",
    "VERDICT_PASS",
    "BusinessAnalysis",
    "FundamentalsRecord",
    "ManagementAnalysis",
    "Memo",
    "MemoStep",
    "MoatAnalysis",
    "StepAnalysis",
    "StepOutcome",
    "ValuationAnalysis",
    # Derivation
    "TextGenerator",
    "derive_analysis",
    "parse_analysis",
    # State machine
    "AnalysisStatus",
    "KillChain",
    "KillChainState",
    "OutcomeLedger",
    "assemble",
    "overall_verdict",
    "start_run",
    # Errors
    "AnalysisError",
    "AnalysisTimeoutError",
    "FundamentalsNotFoundError",
    "IncompleteStateError",
    "KillChainError",
    "MalformedResponseError",
    "NavigationError",
    "ProviderError",
    "SequenceError",
    "StorageUnavailable",
    "WatchlistConflictError",
]
