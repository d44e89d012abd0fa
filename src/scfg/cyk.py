import math
import sys
from dataclasses import dataclass, field

from nltk import Tree

from .chart import ensure_recursion_limit
from .errors import ParseFailureError
from .grammar import TerminalRule, nt_label

TIE_TOLERANCE = 1e-12


@dataclass
class ParseNode:
    start: int
    end: int
    rule: int
    split: int = None
    children: list = field(default_factory=list)


@dataclass
class ParseResult:
    tree: ParseNode
    probability: float
    log_probability: float
    bracketed: str


class CykParser:
    """
    Maximum-probability derivations. Same recursion as the inside probability,
    with max in place of sum, scored in log space so long strings do not
    underflow. The first rule (in declaration order) and then the first split
    point reaching the maximum is kept.
    """

    def __init__(self, grammar):
        self.grammar = grammar

    def parse(self, tokens):
        g = self.grammar
        if not tokens:
            raise ParseFailureError("cannot parse an empty token sequence")
        ensure_recursion_limit(len(tokens))
        log_probs = [math.log(p) if p > 0.0 else -math.inf for p in g.rule_probabilities()]
        best = {}

        def viterbi(s, t, nt):
            if not (g.can_start_with[nt, tokens[s]] and g.can_end_with[nt, tokens[t]]):
                return -math.inf
            key = (s, t, nt)
            if key in best:
                return best[key][0]

            if s == t:
                r = g.nt_terminal_rule[nt, tokens[s]]
                choice = (log_probs[r], int(r), None) if r >= 0 else (-math.inf, -1, None)
                best[key] = choice
                return choice[0]

            choice = (-math.inf, -1, None)
            for r in g.rules_by_lhs_binary[nt]:
                rule = g.rules[r]
                lp = log_probs[r]
                if lp == -math.inf:
                    continue
                for k in range(s, t):
                    left = viterbi(s, k, rule.rhs1)
                    if left == -math.inf:
                        continue
                    score = lp + left + viterbi(k + 1, t, rule.rhs2)
                    # equal products can differ in the last bits once summed as logs
                    if score > choice[0] and not math.isclose(score, choice[0], rel_tol=TIE_TOLERANCE):
                        choice = (score, r, k)
            best[key] = choice
            return choice[0]

        top = viterbi(0, len(tokens) - 1, g.start)
        if top == -math.inf:
            raise ParseFailureError(
                f"string {g.terminals.detokenize(tokens)!r} has probability 0 under the grammar")

        def traceback(s, t, nt):
            _, r, k = best[(s, t, nt)]
            node = ParseNode(s, t, r, k)
            rule = g.rules[r]
            if not isinstance(rule, TerminalRule):
                node.children = [traceback(s, k, rule.rhs1), traceback(k + 1, t, rule.rhs2)]
            return node

        root = traceback(0, len(tokens) - 1, g.start)
        return ParseResult(root, math.exp(top), top, self.to_tree(root).pformat(margin=sys.maxsize))

    def to_tree(self, node):
        """Convert a ParseNode into an nltk Tree labelled N<i> with terminal literals as leaves."""
        rule = self.grammar.rules[node.rule]
        if isinstance(rule, TerminalRule):
            return Tree(nt_label(rule.lhs), [self.grammar.terminals.literals[rule.terminal]])
        return Tree(nt_label(rule.lhs), [self.to_tree(child) for child in node.children])
