import contextlib
import io
import json
import math
import os
import tempfile
import unittest

from scfg.main import main


def run(argv):
    out = io.StringIO()
    with contextlib.redirect_stdout(out), contextlib.redirect_stderr(io.StringIO()):
        rc = main(argv)
    return rc, out.getvalue()


class CommandLineTests(unittest.TestCase):
    def test_info(self):
        rc, out = run(["--grammar", "AnBn", "info", "AB", "AABB"])
        self.assertEqual(rc, 0)
        info = json.loads(out)
        self.assertEqual(info["non_terminals"], 4)
        self.assertEqual(info["corpus"]["lengths"], [2, 4])

    def test_parse(self):
        rc, out = run(["--grammar", "AnBn", "parse", "AB", "AAB"])
        self.assertEqual(rc, 1)
        self.assertIn("(N0 (N2 A) (N3 B))", out)
        self.assertIn("[PARSE FAILURE] AAB", out)

    def test_parse_needs_strings(self):
        rc, _ = run(["parse"])
        self.assertEqual(rc, 2)

    def test_bad_corpus_string(self):
        rc, _ = run(["--grammar", "AnBn", "parse", "AXB"])
        self.assertEqual(rc, 2)

    def test_sample(self):
        rc, out = run(["--grammar", "Fixed", "sample", "-n", "5", "--seed", "3"])
        self.assertEqual(rc, 0)
        self.assertEqual(out.split(), ["abcab"] * 5)

    def test_verify(self):
        rc, out = run(["--grammar", "Parentheses", "verify", "-n", "20", "--seed", "0"])
        self.assertEqual(rc, 1)
        self.assertIn("sampled parameter sets valid", out)
        rc, _ = run(["--grammar", "AnBn", "verify", "-n", "20", "--seed", "0"])
        self.assertEqual(rc, 0)

    def test_train_with_plot_and_grammar_file(self):
        definition = {
            "terminal_rules": [{"lhs": 1, "terminal": "a"}, {"lhs": 0, "terminal": "b", "p": "1-p"}],
            "binary_rules": [{"lhs": 0, "rhs1": 1, "rhs2": 0, "p": "p"}],
            "parameters": {"p": [0.5, 0.0, 1.0]},
        }
        with tempfile.TemporaryDirectory() as tmp:
            grammar_path = os.path.join(tmp, "grammar.json")
            corpus_path = os.path.join(tmp, "corpus.txt")
            plot_path = os.path.join(tmp, "plots", "trace.png")
            with open(grammar_path, "w") as f:
                json.dump(definition, f)
            with open(corpus_path, "w") as f:
                f.write("ab\naab\naaab\n\nb\n")
            rc, out = run(["--grammar_file", grammar_path, "train", "--corpus", corpus_path,
                           "--plot", plot_path])
            self.assertEqual(rc, 0)
            result = json.loads(out[out.index("{"):out.rindex("}") + 1])
            self.assertTrue(result["success"])
            # a^k b has probability p^k (1-p); with k = 1, 2, 3, 0 the maximum is at 6 / (6 + 4)
            self.assertAlmostEqual(result["values"]["p"], 0.6, places=3)
            self.assertAlmostEqual(result["log_likelihood"], 6 * math.log(0.6) + 4 * math.log(0.4),
                                   places=4)
            self.assertTrue(os.path.exists(plot_path))


if __name__ == "__main__":
    unittest.main()
