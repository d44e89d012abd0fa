from .grammar import Grammar
from .parameters import ParameterSet

# Each table maps a non-terminal to its productions; the first key is the start
# symbol. A production is (rhs, probability) where probability is None for a
# deterministic rule, or a parameter name / formula from PARAMETERS.
GRAMMARS = {
    "AnBn": {
        "S": [
            (["PA", "PB"], "stop"),
            (["PA", "T"], "1-stop"),
        ],
        "T": [
            (["S", "PB"], None),
        ],
        "PA": [
            (["A"], None),
        ],
        "PB": [
            (["B"], None),
        ],
    },

    "Parentheses": {
        "S": [
            (["L", "R"], "close"),
            (["L", "T"], "nest"),
            (["S", "S"], "1-close-nest"),
        ],
        "T": [
            (["S", "R"], None),
        ],
        "L": [
            (["("], None),
        ],
        "R": [
            ([")"], None),
        ],
    },

    "Nucleotides": {
        "S": [
            (["N", "S"], "q"),
            (["A"], "(1-q)*a"),
            (["C"], "(1-q)*c"),
            (["G"], "(1-q)*g"),
            (["U"], "(1-q)*(1-a-c-g)"),
        ],
        "N": [
            (["A"], "a"),
            (["C"], "c"),
            (["G"], "g"),
            (["U"], "1-a-c-g"),
        ],
    },

    "Sums": {
        "E": [
            (["E", "P"], "p"),
            (["x"], "1-p"),
        ],
        "P": [
            (["O", "E"], None),
        ],
        "O": [
            (["+"], None),
        ],
    },

    "Fixed": {
        "S": [
            (["X", "Y"], None),
        ],
        "X": [
            (["ab"], None),
        ],
        "Y": [
            (["Z", "X"], None),
        ],
        "Z": [
            (["c"], None),
        ],
    },
}

# name -> {parameter: (value, lower, upper)}
PARAMETERS = {
    "AnBn": {"stop": (0.5, 0.0, 1.0)},
    "Parentheses": {"close": (0.4, 0.0, 1.0), "nest": (0.3, 0.0, 1.0)},
    "Nucleotides": {"q": (0.8, 0.0, 1.0), "a": (0.25, 0.0, 1.0),
                    "c": (0.25, 0.0, 1.0), "g": (0.25, 0.0, 1.0)},
    "Sums": {"p": (0.3, 0.0, 1.0)},
    "Fixed": {},
}


def load_grammar(name):
    """Build a fresh Grammar (with its own parameter set) from GRAMMARS[name]."""
    if name not in GRAMMARS:
        raise KeyError(f"unknown grammar {name!r}; choose from {', '.join(sorted(GRAMMARS))}")
    params = ParameterSet.from_dict(PARAMETERS.get(name, {}))
    return Grammar.from_table(GRAMMARS[name], parameters=params)
