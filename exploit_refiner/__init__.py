"""
Exploit Refiner - iterative generation and refinement of smart contract
penetration tests against a local Hardhat harness
"""

__version__ = "0.1.0"

from .agent import RefinementAgent
from .config import Config
from .models import (
    ConcurrencyPolicy,
    Outcome,
    ParallelRunResult,
    SessionResult,
    StrategyTier,
    Target,
    targets_from_analysis,
)

__all__ = [
    "RefinementAgent",
    "Config",
    "ConcurrencyPolicy",
    "Outcome",
    "ParallelRunResult",
    "SessionResult",
    "StrategyTier",
    "Target",
    "targets_from_analysis",
]
