import math
import unittest

from scfg.def_grammars import load_grammar
from scfg.errors import TokenizationError
from scfg.grammar import TerminalRule
from scfg.inside_outside import InsideOutside


def naive_inside(grammar, tokens, s, t, nt):
    """Unmemoised inside probability, used as a reference."""
    probs = grammar.rule_probabilities()
    total = 0.0
    for r, rule in enumerate(grammar.rules):
        if rule.lhs != nt:
            continue
        if isinstance(rule, TerminalRule):
            if s == t and tokens[s] == rule.terminal:
                total += probs[r]
            continue
        for k in range(s, t):
            total += probs[r] * naive_inside(grammar, tokens, s, k, rule.rhs1) \
                * naive_inside(grammar, tokens, k + 1, t, rule.rhs2)
    return total


class InsideProbabilityTests(unittest.TestCase):
    def test_matches_naive_recursion(self):
        cases = [
            ("Parentheses", ["()", "(())", "()()()", "(()())()"]),
            ("Nucleotides", ["A", "ACGU", "GGAUCA"]),
            ("Sums", ["x", "x+x", "x+x+x+x"]),
            ("AnBn", ["AB", "AAABBB", "AAB", "BA"]),
        ]
        for name, strings in cases:
            grammar = load_grammar(name)
            engine = InsideOutside(grammar)
            engine.set_corpus(strings)
            for j, corpus_string in enumerate(engine.corpus):
                tokens = corpus_string.tokens
                last = len(tokens) - 1
                expected = naive_inside(grammar, tokens, 0, last, grammar.start)
                self.assertAlmostEqual(engine.inside_probability(0, last, j), expected, places=12,
                                       msg=f"{name} {corpus_string.text}")
                # every sub-span and non-terminal, not only the root
                for s in range(len(tokens)):
                    for t in range(s, len(tokens)):
                        for nt in range(grammar.nt_count):
                            self.assertAlmostEqual(
                                engine.inside_probability(s, t, j, nt),
                                naive_inside(grammar, tokens, s, t, nt), places=12)

    def test_anbn_probabilities(self):
        engine = InsideOutside(load_grammar("AnBn"))
        engine.set_corpus(["AB", "AABB", "AAB"])
        self.assertEqual(engine.corpus[1].tokens, [0, 0, 1, 1])
        self.assertAlmostEqual(engine.string_probability(0), 0.5)
        self.assertAlmostEqual(engine.string_probability(1), 0.25)
        self.assertEqual(engine.string_probability(2), 0.0)

    def test_log_space_sum_matches_plain_sum(self):
        engine = InsideOutside(load_grammar("Parentheses"))
        engine.set_corpus(["()()()", "(()())()", "(()"])
        engine.string_probability(0)
        for j in range(2):
            self.assertAlmostEqual(engine._log_inside(engine.corpus[j].tokens),
                                   math.log(engine.string_probability(j)), places=10)
        self.assertEqual(engine._log_inside(engine.corpus[2].tokens), -math.inf)
        self.assertEqual(engine.string_log_probability(2), -math.inf)

    def test_parameter_change_refreshes_values(self):
        grammar = load_grammar("AnBn")
        engine = InsideOutside(grammar)
        engine.set_corpus("AABB")
        self.assertAlmostEqual(engine.string_probability(0), 0.25)
        grammar.parameters.update({"stop": 0.2})
        self.assertAlmostEqual(engine.string_probability(0), 0.8 * 0.2)

    def test_fresh_inside_recomputes(self):
        engine = InsideOutside(load_grammar("AnBn"))
        engine.set_corpus("AABB")
        engine.string_probability(0)
        calls = engine.inside_calls
        engine.inside_probability(0, 3, 0)
        self.assertEqual(engine.inside_calls, calls)
        engine.inside_probability(0, 3, 0, fresh_inside=True)
        self.assertGreater(engine.inside_calls, calls)

    def test_deterministic_derivations_use_constant_entries(self):
        grammar = load_grammar("Fixed")
        engine = InsideOutside(grammar)
        engine.set_corpus("abcab")
        self.assertEqual(engine.corpus[0].tokens, [0, 1, 0])
        self.assertEqual(engine.string_probability(0), 1.0)
        chart = engine.inside_charts[0]
        self.assertTrue(chart.is_constant(chart.key(0, 2, grammar.start)))
        self.assertEqual(chart.values, [])

        # constant entries survive a parameter epoch change without recomputation
        grammar.parameters.update({})
        calls = engine.inside_calls
        self.assertEqual(engine.string_probability(0), 1.0)
        self.assertEqual(engine.inside_calls, calls)

    def test_parametric_entries_are_buffered(self):
        grammar = load_grammar("AnBn")
        engine = InsideOutside(grammar)
        engine.set_corpus("AB")
        engine.string_probability(0)
        chart = engine.inside_charts[0]
        self.assertTrue(chart.is_constant(chart.key(0, 0, 2)))
        self.assertFalse(chart.is_constant(chart.key(0, 1, 0)))
        self.assertEqual(chart.values, [0.5])

    def test_zero_parameter_does_not_freeze_entries(self):
        grammar = load_grammar("AnBn")
        grammar.parameters.update({"stop": 0.0})
        engine = InsideOutside(grammar)
        engine.set_corpus("AB")
        self.assertEqual(engine.string_probability(0), 0.0)
        grammar.parameters.update({"stop": 0.7})
        self.assertAlmostEqual(engine.string_probability(0), 0.7)

    def test_query_bounds(self):
        engine = InsideOutside(load_grammar("AnBn"))
        engine.set_corpus("AB")
        with self.assertRaises(IndexError):
            engine.inside_probability(0, 2, 0)
        with self.assertRaises(IndexError):
            engine.inside_probability(0, 1, 1)
        with self.assertRaises(IndexError):
            engine.inside_probability(0, 1, 0, nt=9)


class CorpusTests(unittest.TestCase):
    def test_failed_corpus_keeps_previous_one(self):
        engine = InsideOutside(load_grammar("AnBn"))
        engine.set_corpus(["AB"])
        with self.assertRaises(TokenizationError) as ctx:
            engine.set_corpus(["AABB", "ACB"])
        self.assertEqual(ctx.exception.string_index, 1)
        self.assertEqual([c.text for c in engine.corpus], ["AB"])
        self.assertAlmostEqual(engine.string_probability(0), 0.5)

    def test_empty_string_rejected(self):
        engine = InsideOutside(load_grammar("AnBn"))
        with self.assertRaises(TokenizationError):
            engine.set_corpus(["AB", ""])

    def test_replacing_corpus_resets_tables(self):
        engine = InsideOutside(load_grammar("AnBn"))
        engine.set_corpus(["AB"])
        engine.string_probability(0)
        engine.set_corpus(["AAABBB"])
        self.assertEqual(engine.inside_calls, 0)
        self.assertAlmostEqual(engine.string_probability(0), 0.125)


class OutsideProbabilityTests(unittest.TestCase):
    def assert_position_identity(self, name, text):
        grammar = load_grammar(name)
        engine = InsideOutside(grammar)
        engine.set_corpus(text)
        total = engine.string_probability(0)
        self.assertGreater(total, 0.0)
        length = len(engine.corpus[0].tokens)
        # every derivation covers each position with exactly one terminal rule
        for s in range(length):
            acc = sum(engine.inside_probability(s, s, 0, nt) * engine.outside_probability(s, s, 0, nt)
                      for nt in range(grammar.nt_count))
            self.assertAlmostEqual(acc, total, places=12, msg=f"{name} {text} position {s}")

    def test_identity_holds(self):
        self.assert_position_identity("Parentheses", "(()())()")
        self.assert_position_identity("Nucleotides", "ACGUAG")
        self.assert_position_identity("Sums", "x+x+x+x")
        self.assert_position_identity("AnBn", "AAABBB")

    def test_start_symbol_over_full_span(self):
        grammar = load_grammar("AnBn")
        engine = InsideOutside(grammar)
        engine.set_corpus("AABB")
        self.assertEqual(engine.outside_probability(0, 3, 0), 1.0)
        self.assertEqual(engine.outside_probability(0, 3, 0, nt=1), 0.0)

    def test_outside_of_inner_span(self):
        grammar = load_grammar("AnBn")
        engine = InsideOutside(grammar)
        engine.set_corpus("AABB")
        # S over "AB" sits inside S -> PA T, T -> S PB
        self.assertAlmostEqual(engine.outside_probability(1, 2, 0, nt=0), 0.5)
        self.assertEqual(engine.outside_probability(0, 1, 0, nt=0), 0.0)

    def test_outside_refresh_after_parameter_change(self):
        grammar = load_grammar("AnBn")
        engine = InsideOutside(grammar)
        engine.set_corpus("AABB")
        self.assertAlmostEqual(engine.outside_probability(1, 2, 0, nt=0), 0.5)
        grammar.parameters.update({"stop": 0.1})
        self.assertAlmostEqual(engine.outside_probability(1, 2, 0, nt=0), 0.9)
        self.assertAlmostEqual(engine.outside_probability(1, 2, 0, nt=0, fresh_inside=True,
                                                          fresh_outside=True), 0.9)


class ExpectedCountTests(unittest.TestCase):
    def test_unambiguous_counts(self):
        engine = InsideOutside(load_grammar("AnBn"))
        engine.set_corpus("AABB")
        counts = engine.expected_rule_counts(0)
        for got, want in zip(counts, [2, 2, 1, 1, 1]):
            self.assertAlmostEqual(got, want)

    def test_counts_for_each_terminal_match_string_length(self):
        grammar = load_grammar("Sums")
        grammar.parameters.update({"p": 0.5})
        engine = InsideOutside(grammar)
        engine.set_corpus("x+x+x")
        counts = engine.expected_rule_counts(0)
        terminal_total = sum(c for c, rule in zip(counts, grammar.rules) if isinstance(rule, TerminalRule))
        self.assertAlmostEqual(terminal_total, 5.0)
        self.assertFalse(any(math.isnan(c) for c in counts))


if __name__ == "__main__":
    unittest.main()
