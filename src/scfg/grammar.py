import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from .errors import GrammarConsistencyError, GrammarDefinitionError
from .parameters import Formula, ParameterSet
from .tokenizer import TerminalTrie

logger = logging.getLogger(__name__)

# short keys used by older grammar files
_KEY_ALIASES = {"L": "lhs", "T": "terminal", "1": "rhs1", "2": "rhs2", "P": "p"}


@dataclass(frozen=True)
class TerminalRule:
    lhs: int
    terminal: int
    probability: Formula = None

    @property
    def is_deterministic(self):
        return self.probability is None


@dataclass(frozen=True)
class BinaryRule:
    lhs: int
    rhs1: int
    rhs2: int
    probability: Formula = None

    @property
    def is_deterministic(self):
        return self.probability is None


def nt_label(nt):
    return f"N{nt}"


def _normalise_record(record, kind, position):
    if not isinstance(record, Mapping):
        raise GrammarDefinitionError(f"{kind} rule {position} must be a mapping, got {record!r}")
    normalised = {}
    for key, value in record.items():
        normalised[_KEY_ALIASES.get(key, key)] = value
    return normalised


def _check_index(value, field, kind, position, record):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise GrammarDefinitionError(
            f"{kind} rule {position} {record!r}: field '{field}' must be a non-negative integer")
    return value


def _parse_probability(value, kind, position, record, parameters):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise GrammarDefinitionError(f"{kind} rule {position} {record!r}: probability cannot be a boolean")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise GrammarDefinitionError(f"{kind} rule {position} {record!r}: probability must be finite")
        value = repr(float(value))
    if not isinstance(value, str):
        raise GrammarDefinitionError(
            f"{kind} rule {position} {record!r}: probability must be a parameter name, number or formula")
    try:
        formula = Formula(value)
    except ValueError as err:
        raise GrammarDefinitionError(f"{kind} rule {position} {record!r}: {err}") from None
    missing = [name for name in formula.names if name not in parameters]
    if missing:
        raise GrammarDefinitionError(
            f"{kind} rule {position} {record!r}: undefined parameter(s) {', '.join(missing)}")
    return formula


class Grammar:
    """
    A validated stochastic context-free grammar in Chomsky normal form.

    Rules live in one ordered list, terminal rules first, then binary rules.
    The by-LHS / by-RHS indices, the (non-terminal, terminal) -> rule lookup and
    the four pruning matrices are derived from that list once and never change;
    only the probability values move, through the attached ParameterSet.
    """

    def __init__(self, terminal_rules, binary_rules, start=0, parameters=None):
        self.parameters = parameters if parameters is not None else ParameterSet()
        self.names = None
        self.terminals = TerminalTrie()
        self.rules = []

        if isinstance(start, bool) or not isinstance(start, int) or start < 0:
            raise GrammarDefinitionError(f"start symbol must be a non-negative integer, got {start!r}")
        self.start = start

        # 1) validate every record
        terminal_records = []
        seen_pairs = set()
        for position, raw in enumerate(terminal_rules):
            record = _normalise_record(raw, "terminal", position)
            lhs = _check_index(record.get("lhs"), "lhs", "terminal", position, raw)
            literal = record.get("terminal")
            if not isinstance(literal, str) or not literal:
                raise GrammarDefinitionError(
                    f"terminal rule {position} {raw!r}: field 'terminal' must be a non-empty string")
            probability = _parse_probability(record.get("p"), "terminal", position, raw, self.parameters)
            if (lhs, literal) in seen_pairs:
                raise GrammarDefinitionError(
                    f"terminal rule {position} {raw!r}: duplicate rule {nt_label(lhs)} -> {literal!r}")
            seen_pairs.add((lhs, literal))
            terminal_records.append((position, raw, lhs, literal, probability))

        binary = []
        for position, raw in enumerate(binary_rules):
            record = _normalise_record(raw, "binary", position)
            lhs = _check_index(record.get("lhs"), "lhs", "binary", position, raw)
            rhs1 = _check_index(record.get("rhs1"), "rhs1", "binary", position, raw)
            rhs2 = _check_index(record.get("rhs2"), "rhs2", "binary", position, raw)
            probability = _parse_probability(record.get("p"), "binary", position, raw, self.parameters)
            binary.append(BinaryRule(lhs, rhs1, rhs2, probability))

        if not terminal_records and not binary:
            raise GrammarDefinitionError("grammar has no rules")

        # 2) terminal alphabet
        for position, raw, lhs, literal, probability in terminal_records:
            if literal in self.terminals:
                terminal = self.terminals.index(literal)
            else:
                try:
                    terminal = self.terminals.insert(literal)
                except GrammarDefinitionError as err:
                    raise GrammarDefinitionError(f"terminal rule {position} {raw!r}: {err}") from None
            self.rules.append(TerminalRule(lhs, terminal, probability))

        self.terminal_rule_count = len(self.rules)
        self.rules.extend(binary)

        referenced = [self.start]
        for rule in self.rules:
            referenced.append(rule.lhs)
            if isinstance(rule, BinaryRule):
                referenced.extend((rule.rhs1, rule.rhs2))
        self.nt_count = max(referenced) + 1

        # 3) indices
        self._build_indices()
        # 4) consistency
        self._check_rules_present()
        self._check_reachable()
        self._check_productive()
        # 5) pruning tables
        self._build_pruning_tables()

        self.variables = []
        for rule in self.rules:
            if rule.probability is not None:
                for name in rule.probability.names:
                    if name not in self.variables:
                        self.variables.append(name)

        self._prob_epoch = None
        self._probabilities = None

        logger.debug("[GRAMMAR] %d non-terminals, %d terminals, %d terminal rules, %d binary rules",
                     self.nt_count, len(self.terminals), self.terminal_rule_count,
                     len(self.rules) - self.terminal_rule_count)

    @classmethod
    def from_table(cls, table, start=None, parameters=None):
        """
        Build a grammar from a {name: [(rhs, probability), ...]} table.
        Keys are the non-terminals (numbered in insertion order); any right-hand
        symbol that is not a key is a terminal literal.
        """
        names = list(table)
        index = {name: i for i, name in enumerate(names)}
        terminal_rules, binary_rules = [], []
        for lhs, productions in table.items():
            for rhs, p in productions:
                rhs = list(rhs)
                if len(rhs) == 1 and rhs[0] not in index:
                    terminal_rules.append({"lhs": index[lhs], "terminal": rhs[0], "p": p})
                elif len(rhs) == 2 and all(sym in index for sym in rhs):
                    binary_rules.append({"lhs": index[lhs], "rhs1": index[rhs[0]],
                                         "rhs2": index[rhs[1]], "p": p})
                else:
                    raise GrammarDefinitionError(
                        f"rule {lhs} -> {' '.join(rhs)} is not in Chomsky normal form")
        if start is None:
            start_index = 0
        elif start in index:
            start_index = index[start]
        else:
            raise GrammarDefinitionError(f"unknown start symbol {start!r}")
        grammar = cls(terminal_rules, binary_rules, start_index, parameters)
        grammar.names = names
        return grammar

    def _build_indices(self):
        n, k = self.nt_count, len(self.terminals)
        self.rules_by_lhs_terminal = [[] for _ in range(n)]
        self.rules_by_lhs_binary = [[] for _ in range(n)]
        self.rules_by_rhs1 = [[] for _ in range(n)]
        self.rules_by_rhs2 = [[] for _ in range(n)]
        self.nt_terminal_rule = np.full((n, k), -1, dtype=np.int64)

        for i, rule in enumerate(self.rules):
            if isinstance(rule, TerminalRule):
                self.rules_by_lhs_terminal[rule.lhs].append(i)
                self.nt_terminal_rule[rule.lhs, rule.terminal] = i
            else:
                self.rules_by_lhs_binary[rule.lhs].append(i)
                self.rules_by_rhs1[rule.rhs1].append(i)
                self.rules_by_rhs2[rule.rhs2].append(i)

    def _check_rules_present(self):
        for nt in range(self.nt_count):
            if not self.rules_by_lhs_terminal[nt] and not self.rules_by_lhs_binary[nt]:
                raise GrammarConsistencyError(f"non-terminal {nt_label(nt)} has no rules", nonterminal=nt)

    def _check_reachable(self):
        reached = {self.start}
        stack = [self.start]
        while stack:
            nt = stack.pop()
            for i in self.rules_by_lhs_binary[nt]:
                rule = self.rules[i]
                for child in (rule.rhs1, rule.rhs2):
                    if child not in reached:
                        reached.add(child)
                        stack.append(child)
        for nt in range(self.nt_count):
            if nt not in reached:
                raise GrammarConsistencyError(
                    f"non-terminal {nt_label(nt)} is not reachable from the start symbol "
                    f"{nt_label(self.start)}", nonterminal=nt)

    def _check_productive(self):
        productive = [bool(self.rules_by_lhs_terminal[nt]) for nt in range(self.nt_count)]
        changed = True
        while changed:
            changed = False
            for rule in self.rules[self.terminal_rule_count:]:
                if not productive[rule.lhs] and productive[rule.rhs1] and productive[rule.rhs2]:
                    productive[rule.lhs] = True
                    changed = True
        for nt, ok in enumerate(productive):
            if not ok:
                raise GrammarConsistencyError(
                    f"non-terminal {nt_label(nt)} cannot derive any terminal string", nonterminal=nt)

    def _build_pruning_tables(self):
        """
        can_start_with[i, a]              i =>* a ...
        can_end_with[i, a]                i =>* ... a
        has_precursor_starting_with[i, a] start =>* ... a i ...
        has_follower_ending_with[i, a]    start =>* ... i a ...
        """
        n, k = self.nt_count, len(self.terminals)
        first = np.zeros((n, k), dtype=bool)
        last = np.zeros((n, k), dtype=bool)
        for rule in self.rules[:self.terminal_rule_count]:
            first[rule.lhs, rule.terminal] = True
            last[rule.lhs, rule.terminal] = True

        binary = self.rules[self.terminal_rule_count:]
        changed = True
        while changed:
            changed = False
            for rule in binary:
                if np.any(first[rule.rhs1] & ~first[rule.lhs]):
                    first[rule.lhs] |= first[rule.rhs1]
                    changed = True
                if np.any(last[rule.rhs2] & ~last[rule.lhs]):
                    last[rule.lhs] |= last[rule.rhs2]
                    changed = True

        precursor = np.zeros((n, k), dtype=bool)
        follower = np.zeros((n, k), dtype=bool)
        changed = True
        while changed:
            changed = False
            for rule in binary:
                for target, source in ((precursor[rule.rhs2], last[rule.rhs1]),
                                       (precursor[rule.rhs1], precursor[rule.lhs]),
                                       (follower[rule.rhs1], first[rule.rhs2]),
                                       (follower[rule.rhs2], follower[rule.lhs])):
                    if np.any(source & ~target):
                        target |= source
                        changed = True

        self.can_start_with = first
        self.can_end_with = last
        self.has_precursor_starting_with = precursor
        self.has_follower_ending_with = follower

    def tokenize(self, text, string_index=None):
        return self.terminals.tokenize(text, string_index)

    def rule_probabilities(self):
        """Current probability of every rule, re-evaluated once per parameter epoch."""
        if self._prob_epoch != self.parameters.epoch:
            values = self.parameters.values()
            probs = np.ones(len(self.rules), dtype=float)
            for i, rule in enumerate(self.rules):
                if rule.probability is not None:
                    try:
                        probs[i] = rule.probability.evaluate(values)
                    except (ZeroDivisionError, OverflowError, TypeError):
                        probs[i] = np.nan
            self._probabilities = probs
            self._prob_epoch = self.parameters.epoch
        return self._probabilities

    def rules_for(self, nt):
        """Indices of every rule with `nt` on the left, in declaration order."""
        return sorted(self.rules_by_lhs_terminal[nt] + self.rules_by_lhs_binary[nt])

    def rule_string(self, index):
        rule = self.rules[index]
        if isinstance(rule, TerminalRule):
            text = f'{nt_label(rule.lhs)} -> "{self.terminals.literals[rule.terminal]}"'
        else:
            text = f"{nt_label(rule.lhs)} -> {nt_label(rule.rhs1)} {nt_label(rule.rhs2)}"
        if rule.probability is not None:
            text += f" {{{rule.probability}}}"
        return text

    def __str__(self):
        return "\n".join(self.rule_string(i) for i in range(len(self.rules)))

    def to_pcfg_string(self):
        """Render the rules with their current probabilities in nltk's PCFG syntax."""
        probs = self.rule_probabilities()
        lines = []
        order = [self.start] + [nt for nt in range(self.nt_count) if nt != self.start]
        for nt in order:
            for i in self.rules_for(nt):
                rule = self.rules[i]
                if isinstance(rule, TerminalRule):
                    rhs = "'" + self.terminals.literals[rule.terminal] + "'"
                else:
                    rhs = f"{nt_label(rule.rhs1)} {nt_label(rule.rhs2)}"
                lines.append(f"{nt_label(rule.lhs)} -> {rhs} [{float(probs[i])!r}]")
        return "\n".join(lines)

    def diagnostics(self):
        k = len(self.terminals)
        cells = max(self.nt_count * k, 1)
        return {
            "non_terminals": self.nt_count,
            "terminals": list(self.terminals.literals),
            "terminal_rules": self.terminal_rule_count,
            "binary_rules": len(self.rules) - self.terminal_rule_count,
            "start_symbol": self.start,
            "names": list(self.names) if self.names else None,
            "variables": list(self.variables),
            "rules": [self.rule_string(i) for i in range(len(self.rules))],
            "rules_per_non_terminal": [len(self.rules_for(nt)) for nt in range(self.nt_count)],
            "pruning": {
                name: {
                    "density": float(matrix.sum()) / cells,
                    "rows": [[self.terminals.literals[a] for a in np.flatnonzero(row)] for row in matrix],
                }
                for name, matrix in (("can_start_with", self.can_start_with),
                                     ("can_end_with", self.can_end_with),
                                     ("has_precursor_starting_with", self.has_precursor_starting_with),
                                     ("has_follower_ending_with", self.has_follower_ending_with))
            },
        }
