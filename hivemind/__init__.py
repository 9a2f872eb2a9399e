"""
HiveMind Core

Multi-model consensus for code generation and time-travel debugging backed
by a shared corpus of error patterns and community fixes.
"""

__version__ = "0.1.0"

# Error canonicalization
from hivemind.canonicalize import CanonicalPattern, ErrorReport, PatternCanonicalizer

# Configuration
from hivemind.config import Settings

# Consensus
from hivemind.consensus import ConsensusEngine, ConsensusResult, Decision, ModelResponse

# Cost tracking
from hivemind.costs import ModelPricing, TokenUsage

# Debugging
from hivemind.debugger import ApplyResult, DebugStage, Diagnosis, SimilarError, TimeTravelDebugger
from hivemind.errors import (
    AllProvidersFailedError,
    ConsensusCancelledError,
    HiveMindError,
    InvalidThresholdError,
    PatternStoreError,
    ProviderError,
)
from hivemind.fixes import FixRecommender, RecommendedFix

# Persistence
from hivemind.models import ConsensusStatistic, ErrorOccurrence, ErrorPattern, ErrorResolution
from hivemind.store import InMemoryPatternStore, PatternStore

__all__ = [
    # Version
    "__version__",
    # Models
    "ErrorPattern",
    "ErrorOccurrence",
    "ErrorResolution",
    "ConsensusStatistic",
    # Config
    "Settings",
    # Canonicalization
    "ErrorReport",
    "CanonicalPattern",
    "PatternCanonicalizer",
    # Consensus
    "ConsensusEngine",
    "ConsensusResult",
    "ModelResponse",
    "Decision",
    # Costs
    "ModelPricing",
    "TokenUsage",
    # Debugging
    "TimeTravelDebugger",
    "Diagnosis",
    "SimilarError",
    "ApplyResult",
    "DebugStage",
    "FixRecommender",
    "RecommendedFix",
    # Storage
    "PatternStore",
    "InMemoryPatternStore",
    # Errors
    "HiveMindError",
    "PatternStoreError",
    "ProviderError",
    "AllProvidersFailedError",
    "ConsensusCancelledError",
    "InvalidThresholdError",
]
