import random

from .errors import DerivationDepthExceededError, ProbabilityConsistencyError
from .grammar import TerminalRule, nt_label

DEFAULT_MAX_DEPTH = 500


def choose_rule(grammar, nt, rng, probs=None):
    """Pick one of `nt`'s rules with probability proportional to its current value."""
    probs = grammar.rule_probabilities() if probs is None else probs
    candidates = grammar.rules_for(nt)
    total = float(sum(probs[r] for r in candidates))
    if not total > 0.0:
        raise ProbabilityConsistencyError(f"no rule of {nt_label(nt)} has positive probability")

    u = rng.random() * total
    acc = 0.0
    chosen = None
    for r in candidates:
        if probs[r] <= 0.0:
            continue
        chosen = r
        acc += probs[r]
        if u < acc:
            break
    return chosen


def spawn_random_string(grammar, nt=None, max_depth=DEFAULT_MAX_DEPTH, rng=None):
    """
    Expand `nt` (default: the start symbol) top-down, left child first, and
    return the concatenated terminal literals.
    """
    rng = rng if rng is not None else random.Random()
    probs = grammar.rule_probabilities()
    start = grammar.start if nt is None else nt
    if not 0 <= start < grammar.nt_count:
        raise IndexError(f"non-terminal {start} does not exist")

    out = []
    stack = [(start, 0)]
    while stack:
        sym, depth = stack.pop()
        if depth > max_depth:
            raise DerivationDepthExceededError(
                f"derivation from {nt_label(start)} went deeper than {max_depth} levels")
        rule = grammar.rules[choose_rule(grammar, sym, rng, probs)]
        if isinstance(rule, TerminalRule):
            out.append(grammar.terminals.literals[rule.terminal])
        else:
            # push in reverse so that the left child expands first
            stack.append((rule.rhs2, depth + 1))
            stack.append((rule.rhs1, depth + 1))
    return "".join(out)


def spawn_many(grammar, n, nt=None, max_depth=DEFAULT_MAX_DEPTH, rng=None):
    rng = rng if rng is not None else random.Random()
    return [spawn_random_string(grammar, nt, max_depth, rng) for _ in range(n)]
