import argparse
import json
import logging
import random
import sys

from .def_grammars import GRAMMARS, load_grammar
from .errors import ParseFailureError, ScfgError
from .generate import DEFAULT_MAX_DEPTH
from .grammar import Grammar
from .model import Scfg
from .parameters import ParameterSet
from .plot import plot_training_trace


def load_grammar_file(path):
    """
    JSON grammar: either {"terminal_rules": [...], "binary_rules": [...], "start": 0}
    or {"table": {...}, "start": "S"}, both with an optional "parameters" map of
    name -> value or [value, lower, upper].
    """
    with open(path, "r") as f:
        definition = json.load(f)
    params = ParameterSet.from_dict(definition.get("parameters", {}))
    if "table" in definition:
        return Grammar.from_table(definition["table"], definition.get("start"), params)
    return Grammar(definition.get("terminal_rules", []), definition.get("binary_rules", []),
                   definition.get("start", 0), params)


def read_corpus(args):
    strings = list(args.strings or [])
    if args.corpus:
        with open(args.corpus, "r") as f:
            strings.extend(line.strip() for line in f if line.strip())
    return strings


def build_model(args):
    grammar = load_grammar_file(args.grammar_file) if args.grammar_file else load_grammar(args.grammar)
    return Scfg.from_grammar(grammar)


def cmd_info(model, args):
    strings = read_corpus(args)
    if strings:
        model.set_corpus(strings)
    print(json.dumps(model.diagnostics(), indent=2))


def cmd_parse(model, args):
    strings = read_corpus(args)
    model.set_corpus(strings)
    failures = 0
    for j, text in enumerate(strings):
        try:
            result = model.best_parse(j)
        except ParseFailureError as err:
            failures += 1
            print(f"[PARSE FAILURE] {text}: {err}")
            continue
        print(f"{text}\t{result.log_probability:.6f}\t{result.bracketed}")
    return 1 if failures else 0


def cmd_sample(model, args):
    rng = random.Random(args.seed)
    for _ in range(args.n):
        print(model.spawn_random_string(max_depth=args.max_depth, rng=rng))


def cmd_verify(model, args):
    violations = model.check_values()
    for v in violations:
        print(f"[VALIDITY] {v.message}")
    report = model.random_sample_verify(args.n, seed=args.seed)
    print(f"[VALIDITY] current values: {'ok' if not violations else f'{len(violations)} violation(s)'}")
    print(f"[VALIDITY] {report.samples - len(report.failures)}/{report.samples} sampled parameter sets valid")
    for i, values, sample_violations in report.failures[:args.show]:
        print(f"  sample {i} {values}: {sample_violations[0].message}")
    return 1 if violations or report.failures else 0


def cmd_train(model, args):
    model.set_corpus(read_corpus(args))
    print(f"[TRAIN] initial log L = {model.compute():.6f}")
    result = model.optimize({"method": args.method, "maxiter": args.maxiter})
    print(json.dumps({
        "values": result.values,
        "log_likelihood": result.log_likelihood,
        "iterations": result.iterations,
        "success": result.success,
        "message": result.message,
    }, indent=2))
    if args.plot and result.trace:
        plot_training_trace(result.trace, args.plot, args.grammar_file or args.grammar)
        print(f"[TRAIN] saved plot to {args.plot}")
    return 0 if result.success else 1


COMMANDS = {
    "info": cmd_info,
    "parse": cmd_parse,
    "sample": cmd_sample,
    "verify": cmd_verify,
    "train": cmd_train,
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Stochastic context-free grammar toolkit.")
    parser.add_argument("--grammar", choices=sorted(GRAMMARS), default="AnBn",
                        help="Name of a built-in grammar.")
    parser.add_argument("--grammar_file", type=str, default=None,
                        help="JSON grammar definition (overrides --grammar).")
    parser.add_argument("--verbose", "-v", action="count", default=0)
    sub = parser.add_subparsers(dest="command", required=True)

    def corpus_args(p, required):
        p.add_argument("strings", nargs="*", help="Corpus strings.")
        p.add_argument("--corpus", type=str, default=None,
                       help="Text file with one corpus string per line.")
        p.set_defaults(corpus_required=required)

    corpus_args(sub.add_parser("info", help="Dump grammar diagnostics as JSON."), False)
    corpus_args(sub.add_parser("parse", help="Best parse of each string."), True)

    p = sub.add_parser("sample", help="Generate random strings.")
    p.add_argument("-n", type=int, default=10)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--max_depth", type=int, default=DEFAULT_MAX_DEPTH)

    p = sub.add_parser("verify", help="Check rule probabilities, also over sampled parameters.")
    p.add_argument("-n", type=int, default=100, help="Number of Latin hypercube samples.")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--show", type=int, default=5, help="How many failing samples to print.")

    p = sub.add_parser("train", help="Fit the grammar's parameters to a corpus.")
    corpus_args(p, True)
    p.add_argument("--method", type=str, default="L-BFGS-B")
    p.add_argument("--maxiter", type=int, default=200)
    p.add_argument("--plot", type=str, default=None, help="Where to save the log-likelihood trace.")

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if getattr(args, "corpus_required", False) and not read_corpus(args):
        print("error: no corpus strings given", file=sys.stderr)
        return 2

    try:
        model = build_model(args)
        return COMMANDS[args.command](model, args) or 0
    except (ScfgError, KeyError, ValueError, OSError) as err:
        print(f"error: {err}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
