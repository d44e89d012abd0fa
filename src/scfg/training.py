import logging
import math
from dataclasses import dataclass, field

import numpy as np
from scipy.optimize import minimize
from scipy.stats import qmc

from .errors import ProbabilityConsistencyError
from .grammar import nt_label

logger = logging.getLogger(__name__)

PROBABILITY_TOLERANCE = 1e-6
LOG_ZERO_PENALTY = 1e10
DEFAULT_OPTIMIZER = "L-BFGS-B"
DEFAULT_MAXITER = 200


@dataclass
class Violation:
    kind: str            # "range" or "sum"
    message: str
    rule: int = None
    nonterminal: int = None
    value: float = None


@dataclass
class SampleVerification:
    samples: int
    failures: list = field(default_factory=list)   # (sample number, parameter values, violations)

    @property
    def ok(self):
        return not self.failures


@dataclass
class OptimizationResult:
    values: dict
    log_likelihood: float
    iterations: int
    success: bool
    message: str
    trace: list = field(default_factory=list)
    violations: list = field(default_factory=list)


def check_values(grammar, tolerance=PROBABILITY_TOLERANCE):
    """
    Check the current rule probabilities: each must lie in [0,1] and, for every
    non-terminal, the probabilities of its rules must add up to 1.
    Returns the list of violations (empty when everything is consistent).
    """
    probs = grammar.rule_probabilities()
    violations = []
    for r, p in enumerate(probs):
        if not (0.0 <= p <= 1.0):
            violations.append(Violation(
                "range", f"rule {grammar.rule_string(r)} has probability {p} outside [0,1]",
                rule=r, value=float(p)))
    for nt in range(grammar.nt_count):
        total = float(sum(probs[r] for r in grammar.rules_for(nt)))
        if not abs(total - 1.0) <= tolerance:
            violations.append(Violation(
                "sum", f"rule probabilities for {nt_label(nt)} sum to {total}, not 1",
                nonterminal=nt, value=total))
    return violations


def verify_values(grammar, tolerance=PROBABILITY_TOLERANCE):
    violations = check_values(grammar, tolerance)
    if violations:
        message = "; ".join(v.message for v in violations[:5])
        if len(violations) > 5:
            message += f" (and {len(violations) - 5} more)"
        raise ProbabilityConsistencyError(message, violations)


def random_sample_verify(grammar, n, seed=None, tolerance=PROBABILITY_TOLERANCE):
    """
    Draw `n` Latin hypercube samples over the bounds of the grammar's parameters
    and check each one as in check_values. Parameter values are restored afterwards.
    """
    params = grammar.parameters
    names = list(grammar.variables)
    if not names:
        violations = check_values(grammar, tolerance)
        report = SampleVerification(1)
        if violations:
            report.failures.append((0, {}, violations))
        return report

    bounds = np.array(params.bounds(names))
    sampler = qmc.LatinHypercube(d=len(names), seed=seed)
    points = bounds[:, 0] + sampler.random(n) * (bounds[:, 1] - bounds[:, 0])

    report = SampleVerification(n)
    saved = params.snapshot()
    try:
        for i, point in enumerate(points):
            values = dict(zip(names, (float(x) for x in point)))
            params.update(values)
            violations = check_values(grammar, tolerance)
            if violations:
                logger.info("[VERIFY] sample %d %s: %s", i, values, violations[0].message)
                report.failures.append((i, values, violations))
    finally:
        params.restore(saved)

    logger.info("[VERIFY] %d/%d samples valid", n - len(report.failures), n)
    return report


def log_likelihood(engine):
    """Sum of log inside probabilities of the start symbol over every corpus string."""
    total = 0.0
    for j in range(len(engine)):
        lp = engine.string_log_probability(j)
        if lp == -math.inf:
            return -math.inf
        total += lp
    return total


def optimize(engine, options=None):
    """
    Maximise the corpus log-likelihood over the grammar's parameters with
    scipy.optimize.minimize. Options: method, maxiter, tolerance.
    """
    options = dict(options or {})
    grammar = engine.grammar
    params = grammar.parameters
    names = list(grammar.variables)

    violations = check_values(grammar)
    if violations:
        for v in violations:
            logger.error("[TRAIN] %s", v.message)
        return OptimizationResult(params.values(), float("nan"), 0, False,
                                  "starting values are not a valid set of probabilities",
                                  violations=violations)

    if not names:
        ll = log_likelihood(engine)
        return OptimizationResult({}, ll, 0, True, "no free parameters", [ll])

    bounds = params.bounds(names)
    lower = np.array([b[0] for b in bounds])
    upper = np.array([b[1] for b in bounds])
    x0 = np.array([params[name] for name in names])
    trace = []

    def objective(x):
        params.update(dict(zip(names, np.clip(x, lower, upper))))
        if check_values(grammar):
            return LOG_ZERO_PENALTY
        ll = log_likelihood(engine)
        if not math.isfinite(ll):
            return LOG_ZERO_PENALTY
        trace.append(ll)
        logger.debug("[TRAIN] step %d log L = %.6f", len(trace), ll)
        return -ll

    method = options.get("method", DEFAULT_OPTIMIZER)
    res = minimize(objective, x0, method=method, bounds=bounds,
                   tol=options.get("tolerance"),
                   options={"maxiter": int(options.get("maxiter", DEFAULT_MAXITER))})

    final = dict(zip(names, (float(x) for x in np.clip(res.x, lower, upper))))
    params.update(final)
    ll = log_likelihood(engine)
    logger.info("[TRAIN] %s finished after %s iterations, log L = %.6f",
                method, getattr(res, "nit", "?"), ll)
    return OptimizationResult(final, ll, int(getattr(res, "nit", 0)), bool(res.success),
                              str(res.message), trace)
