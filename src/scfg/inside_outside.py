import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy.special import logsumexp

from .chart import CONSTANT_ONE, Chart, ensure_recursion_limit
from .errors import TokenizationError
from .grammar import TerminalRule

logger = logging.getLogger(__name__)


@dataclass
class CorpusString:
    text: str
    tokens: list


class InsideOutside:
    """
    Memoised inside/outside probabilities over a corpus.

    Each corpus string owns one inside chart and one outside chart. Charts are
    filled lazily by recursion and pruned with the grammar's start/end and
    precursor/follower tables. When the grammar's parameters move to a new
    epoch, every chart forgets which triples it has visited so that the next
    query refreshes the parameter-dependent values.
    """

    def __init__(self, grammar):
        self.grammar = grammar
        self.corpus = []
        self.inside_charts = []
        self.outside_charts = []
        self.inside_calls = 0
        self.outside_calls = 0
        self._epoch = None
        self._probs = None

    def set_corpus(self, strings):
        """Replace the corpus. Nothing changes if any string fails to tokenize."""
        if isinstance(strings, str):
            strings = [strings]
        corpus = []
        for j, text in enumerate(strings):
            if not isinstance(text, str):
                raise TokenizationError(f"corpus entry {j} is not a string: {text!r}", string_index=j)
            if not text:
                raise TokenizationError(f"corpus entry {j} is empty", string_index=j, offset=0)
            corpus.append(CorpusString(text, self.grammar.tokenize(text, j)))

        nt_count = self.grammar.nt_count
        self.corpus = corpus
        self.inside_charts = [Chart(len(c.tokens), nt_count) for c in corpus]
        self.outside_charts = [Chart(len(c.tokens), nt_count) for c in corpus]
        self.inside_calls = 0
        self.outside_calls = 0
        self._epoch = None

        longest = max((len(c.tokens) for c in corpus), default=0)
        ensure_recursion_limit(longest)

        logger.info("[CORPUS] %d strings, longest %d tokens", len(corpus), longest)

    def __len__(self):
        return len(self.corpus)

    def _sync(self):
        epoch = self.grammar.parameters.epoch
        if epoch != self._epoch:
            self._probs = self.grammar.rule_probabilities()
            for chart in self.inside_charts:
                chart.invalidate()
            for chart in self.outside_charts:
                chart.invalidate()
            self._epoch = epoch

    def _check_query(self, s, t, j, nt):
        if not 0 <= j < len(self.corpus):
            raise IndexError(f"corpus string {j} does not exist ({len(self.corpus)} strings loaded)")
        length = len(self.corpus[j].tokens)
        if not 0 <= s <= t < length:
            raise IndexError(f"span [{s}, {t}] is outside corpus string {j} of length {length}")
        if not 0 <= nt < self.grammar.nt_count:
            raise IndexError(f"non-terminal {nt} does not exist")

    def inside_probability(self, s, t, j, nt=None, fresh_inside=False):
        """Probability that `nt` (default: the start symbol) derives tokens s..t of string j."""
        nt = self.grammar.start if nt is None else nt
        self._check_query(s, t, j, nt)
        self._sync()
        if fresh_inside:
            self.inside_charts[j].invalidate()
        return self._inside(s, t, j, nt)[0]

    def outside_probability(self, s, t, j, nt=None, fresh_inside=False, fresh_outside=False):
        """
        Probability of deriving string j from the start symbol with `nt`
        covering exactly tokens s..t, excluding what `nt` itself produces.
        """
        nt = self.grammar.start if nt is None else nt
        self._check_query(s, t, j, nt)
        self._sync()
        if fresh_inside:
            self.inside_charts[j].invalidate()
        if fresh_outside:
            self.outside_charts[j].invalidate()
        return self._outside(s, t, j, nt)[0]

    def string_probability(self, j):
        tokens = self.corpus[j].tokens
        return self.inside_probability(0, len(tokens) - 1, j)

    def string_log_probability(self, j):
        """
        log of string_probability(j). When the probability underflows to 0 the
        string is summed again in log space, so long strings keep a finite value.
        """
        p = self.string_probability(j)
        if p > 0.0 or math.isnan(p):
            return math.log(p)
        return self._log_inside(self.corpus[j].tokens)

    def _log_inside(self, tokens):
        g = self.grammar
        log_probs = [math.log(p) if p > 0.0 else -math.inf for p in self._probs]
        memo = {}

        def inside(s, t, nt):
            if not (g.can_start_with[nt, tokens[s]] and g.can_end_with[nt, tokens[t]]):
                return -math.inf
            key = (s, t, nt)
            if key in memo:
                return memo[key]
            if s == t:
                r = g.nt_terminal_rule[nt, tokens[s]]
                value = log_probs[r] if r >= 0 else -math.inf
            else:
                terms = []
                for r in g.rules_by_lhs_binary[nt]:
                    rule = g.rules[r]
                    if log_probs[r] == -math.inf:
                        continue
                    for k in range(s, t):
                        left = inside(s, k, rule.rhs1)
                        if left == -math.inf:
                            continue
                        right = inside(k + 1, t, rule.rhs2)
                        if right == -math.inf:
                            continue
                        terms.append(log_probs[r] + left + right)
                value = float(logsumexp(terms)) if terms else -math.inf
            memo[key] = value
            return value

        return inside(0, len(tokens) - 1, g.start)

    def _inside(self, s, t, j, nt):
        g = self.grammar
        tokens = self.corpus[j].tokens
        if not (g.can_start_with[nt, tokens[s]] and g.can_end_with[nt, tokens[t]]):
            return 0.0, False

        chart = self.inside_charts[j]
        key = chart.key(s, t, nt)
        slot = chart.entries.get(key)
        if slot == CONSTANT_ONE:
            return 1.0, False
        if chart.flags[key]:
            return chart.lookup(key)

        self.inside_calls += 1
        probs = self._probs

        if s == t:
            r = g.nt_terminal_rule[nt, tokens[s]]
            if r < 0:
                value, dependent = 0.0, False
            else:
                value, dependent = float(probs[r]), not g.rules[r].is_deterministic
            chart.store(key, value, dependent)
            return value, dependent

        total = 0.0
        dependent = False
        for r in g.rules_by_lhs_binary[nt]:
            rule = g.rules[r]
            if not (g.can_start_with[rule.rhs1, tokens[s]] and g.can_end_with[rule.rhs2, tokens[t]]):
                continue
            p = probs[r]
            if p == 0.0:
                dependent = dependent or not rule.is_deterministic
                continue
            for k in range(s, t):
                if not (g.can_end_with[rule.rhs1, tokens[k]] and g.can_start_with[rule.rhs2, tokens[k + 1]]):
                    continue
                left, left_dep = self._inside(s, k, j, rule.rhs1)
                if left == 0.0:
                    dependent = dependent or left_dep
                    continue
                right, right_dep = self._inside(k + 1, t, j, rule.rhs2)
                if right == 0.0:
                    dependent = dependent or right_dep
                    continue
                total += p * left * right
                dependent = dependent or left_dep or right_dep or not rule.is_deterministic

        chart.store(key, total, dependent)
        return total, dependent

    def _outside(self, s, t, j, nt):
        g = self.grammar
        tokens = self.corpus[j].tokens
        last = len(tokens) - 1
        if s == 0 and t == last:
            return (1.0, False) if nt == g.start else (0.0, False)
        if s > 0 and not g.has_precursor_starting_with[nt, tokens[s - 1]]:
            return 0.0, False
        if t < last and not g.has_follower_ending_with[nt, tokens[t + 1]]:
            return 0.0, False

        chart = self.outside_charts[j]
        key = chart.key(s, t, nt)
        slot = chart.entries.get(key)
        if slot == CONSTANT_ONE:
            return 1.0, False
        if chart.flags[key]:
            return chart.lookup(key)

        self.outside_calls += 1
        probs = self._probs
        total = 0.0
        dependent = False

        def add(p, rule, parent, sibling):
            nonlocal total, dependent
            parent_value, parent_dep = parent
            sibling_value, sibling_dep = sibling
            if parent_value == 0.0 or sibling_value == 0.0:
                dependent = dependent or (parent_dep if parent_value == 0.0 else sibling_dep)
                return
            total += p * parent_value * sibling_value
            dependent = dependent or parent_dep or sibling_dep or not rule.is_deterministic

        # nt is the left child: parent spans s..e, right sibling t+1..e
        for r in g.rules_by_rhs1[nt]:
            rule = g.rules[r]
            p = probs[r]
            if p == 0.0:
                dependent = dependent or not rule.is_deterministic
                continue
            for e in range(t + 1, last + 1):
                sibling = self._inside(t + 1, e, j, rule.rhs2)
                if sibling[0] == 0.0:
                    dependent = dependent or sibling[1]
                    continue
                add(p, rule, self._outside(s, e, j, rule.lhs), sibling)

        # nt is the right child: parent spans b..t, left sibling b..s-1
        for r in g.rules_by_rhs2[nt]:
            rule = g.rules[r]
            p = probs[r]
            if p == 0.0:
                dependent = dependent or not rule.is_deterministic
                continue
            for b in range(0, s):
                sibling = self._inside(b, s - 1, j, rule.rhs1)
                if sibling[0] == 0.0:
                    dependent = dependent or sibling[1]
                    continue
                add(p, rule, self._outside(b, t, j, rule.lhs), sibling)

        chart.store(key, total, dependent)
        return total, dependent

    def expected_rule_counts(self, j):
        """Expected number of uses of every rule in the derivations of string j."""
        g = self.grammar
        self._sync()
        tokens = self.corpus[j].tokens
        length = len(tokens)
        counts = np.zeros(len(g.rules), dtype=float)
        total = self._inside(0, length - 1, j, g.start)[0]
        if total == 0.0:
            return counts

        probs = self._probs
        for r, rule in enumerate(g.rules):
            p = probs[r]
            if p == 0.0:
                continue
            if isinstance(rule, TerminalRule):
                for s in range(length):
                    if tokens[s] == rule.terminal:
                        counts[r] += self._outside(s, s, j, rule.lhs)[0] * p
                continue
            for s in range(length - 1):
                if not g.can_start_with[rule.rhs1, tokens[s]]:
                    continue
                for t in range(s + 1, length):
                    outside = self._outside(s, t, j, rule.lhs)[0]
                    if outside == 0.0:
                        continue
                    for k in range(s, t):
                        left = self._inside(s, k, j, rule.rhs1)[0]
                        if left == 0.0:
                            continue
                        counts[r] += outside * p * left * self._inside(k + 1, t, j, rule.rhs2)[0]
        return counts / total

    def stats(self):
        return {
            "strings": len(self.corpus),
            "lengths": [len(c.tokens) for c in self.corpus],
            "inside_calls": self.inside_calls,
            "outside_calls": self.outside_calls,
            "inside_charts": [c.stats() for c in self.inside_charts],
            "outside_charts": [c.stats() for c in self.outside_charts],
        }
