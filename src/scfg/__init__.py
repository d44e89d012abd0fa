from .errors import (
    DerivationDepthExceededError,
    GrammarConsistencyError,
    GrammarDefinitionError,
    ParseFailureError,
    ProbabilityConsistencyError,
    ScfgError,
    TokenizationError,
)
from .grammar import BinaryRule, Grammar, TerminalRule
from .model import Optimizable, Scfg
from .parameters import Formula, Parameter, ParameterSet

__all__ = [
    "BinaryRule",
    "DerivationDepthExceededError",
    "Formula",
    "Grammar",
    "GrammarConsistencyError",
    "GrammarDefinitionError",
    "Optimizable",
    "Parameter",
    "ParameterSet",
    "ParseFailureError",
    "ProbabilityConsistencyError",
    "Scfg",
    "ScfgError",
    "TerminalRule",
    "TokenizationError",
]
