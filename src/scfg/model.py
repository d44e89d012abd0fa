from typing import Protocol

from .cyk import CykParser
from .generate import DEFAULT_MAX_DEPTH, spawn_random_string
from .grammar import Grammar
from .inside_outside import InsideOutside
from . import training


class Optimizable(Protocol):
    """What an optimizer needs: a scalar to maximise and a way to move the parameters."""

    def objective(self) -> float:
        ...

    def set_parameters(self, values: dict) -> None:
        ...


class Scfg:
    """
    A stochastic context-free grammar together with its string corpus.

    >>> g = Scfg([{"lhs": 1, "terminal": "A"}, {"lhs": 2, "terminal": "B"}],
    ...          [{"lhs": 0, "rhs1": 1, "rhs2": 2}])
    >>> g.set_corpus("AB")
    >>> g.compute()
    0.0
    """

    def __init__(self, terminal_rules, binary_rules, start=0, parameters=None):
        self.grammar = Grammar(terminal_rules, binary_rules, start, parameters)
        self._setup()

    @classmethod
    def from_grammar(cls, grammar):
        obj = cls.__new__(cls)
        obj.grammar = grammar
        obj._setup()
        return obj

    def _setup(self):
        self.engine = InsideOutside(self.grammar)
        self.parser = CykParser(self.grammar)
        self.last_optimization = None

    @property
    def parameters(self):
        return self.grammar.parameters

    def __str__(self):
        return str(self.grammar)

    def rule_string(self, index):
        return self.grammar.rule_string(index)

    # corpus and probabilities

    def set_corpus(self, strings):
        self.engine.set_corpus(strings)

    @property
    def corpus(self):
        return [c.text for c in self.engine.corpus]

    def inside_probability(self, s, t, j, nt=None, fresh_inside=False):
        return self.engine.inside_probability(s, t, j, nt, fresh_inside)

    def outside_probability(self, s, t, j, nt=None, fresh_inside=False, fresh_outside=False):
        return self.engine.outside_probability(s, t, j, nt, fresh_inside, fresh_outside)

    def expected_rule_counts(self, j):
        return self.engine.expected_rule_counts(j)

    def compute(self):
        """Log-likelihood of the whole corpus under the current parameter values."""
        return training.log_likelihood(self.engine)

    # Optimizable

    def objective(self):
        return self.compute()

    def set_parameters(self, values):
        self.grammar.parameters.update(values)

    # verification and training

    def check_values(self, tolerance=training.PROBABILITY_TOLERANCE):
        return training.check_values(self.grammar, tolerance)

    def verify_values(self, tolerance=training.PROBABILITY_TOLERANCE):
        training.verify_values(self.grammar, tolerance)

    def random_sample_verify(self, n, seed=None):
        return training.random_sample_verify(self.grammar, n, seed)

    def optimize(self, options=None):
        self.last_optimization = training.optimize(self.engine, options)
        return self.last_optimization

    # parsing and generation

    def best_parse(self, j):
        return self.parser.parse(self.engine.corpus[j].tokens)

    def parse_string(self, text):
        return self.parser.parse(self.grammar.tokenize(text))

    def spawn_random_string(self, nt=None, max_depth=DEFAULT_MAX_DEPTH, rng=None):
        return spawn_random_string(self.grammar, nt, max_depth, rng)

    def diagnostics(self):
        info = self.grammar.diagnostics()
        info["corpus"] = self.engine.stats()
        return info
