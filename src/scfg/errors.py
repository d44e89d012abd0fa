class ScfgError(Exception):
    """Base class for everything the grammar engine raises."""


class GrammarDefinitionError(ScfgError):
    """A rule is malformed, or the terminal literals are not a prefix code."""


class GrammarConsistencyError(ScfgError):
    """A non-terminal is unreachable, has no rules, or derives no string."""

    def __init__(self, message, nonterminal=None):
        super().__init__(message)
        self.nonterminal = nonterminal


class TokenizationError(ScfgError):
    """A corpus string cannot be split into terminal literals."""

    def __init__(self, message, string_index=None, offset=None):
        super().__init__(message)
        self.string_index = string_index
        self.offset = offset


class ProbabilityConsistencyError(ScfgError):
    """Rule probabilities are outside [0,1] or do not sum to 1 per non-terminal."""

    def __init__(self, message, violations=()):
        super().__init__(message)
        self.violations = list(violations)


class ParseFailureError(ScfgError):
    """The start symbol derives the string with probability 0."""


class DerivationDepthExceededError(ScfgError):
    """Random generation went deeper than the allowed depth."""
