import ast
import operator
from dataclasses import dataclass

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


@dataclass
class Parameter:
    name: str
    value: float
    lower: float = 0.0
    upper: float = 1.0


class ParameterSet:
    """
    Named, bounded floating point parameters that rule probabilities are
    written over. Every mutation bumps `epoch`, which is how the inside/outside
    engine notices that its cached values are stale.
    """

    def __init__(self, parameters=None):
        self._params = {}
        self.epoch = 0
        for p in parameters or []:
            if isinstance(p, Parameter):
                self.add(p.name, p.value, p.lower, p.upper)
            else:
                self.add(*p)

    @classmethod
    def from_dict(cls, table):
        """Build from {name: value} or {name: (value, lower, upper)}."""
        params = cls()
        for name, entry in table.items():
            if isinstance(entry, (tuple, list)):
                params.add(name, *entry)
            else:
                params.add(name, entry)
        return params

    def add(self, name, value, lower=0.0, upper=1.0):
        if not isinstance(name, str) or not name.isidentifier():
            raise ValueError(f"invalid parameter name {name!r}")
        if name in self._params:
            raise ValueError(f"parameter {name!r} is already defined")
        if lower > upper:
            raise ValueError(f"parameter {name!r} has lower bound {lower} above upper bound {upper}")
        value = float(value)
        if not lower <= value <= upper:
            raise ValueError(f"parameter {name!r}={value} is outside [{lower}, {upper}]")
        self._params[name] = Parameter(name, value, float(lower), float(upper))
        self.epoch += 1
        return self._params[name]

    def __contains__(self, name):
        return name in self._params

    def __getitem__(self, name):
        return self._params[name].value

    def __iter__(self):
        return iter(self._params)

    def __len__(self):
        return len(self._params)

    def get(self, name):
        return self._params[name]

    def names(self):
        return list(self._params)

    def bounds(self, names=None):
        names = self.names() if names is None else names
        return [(self._params[n].lower, self._params[n].upper) for n in names]

    def values(self):
        return {name: p.value for name, p in self._params.items()}

    def update(self, new_values):
        """
        Set several parameters at once. Either every value is applied or, if any
        name is unknown or any value is out of bounds, none is.
        """
        checked = {}
        for name, value in new_values.items():
            if name not in self._params:
                raise ValueError(f"unknown parameter {name!r}")
            p = self._params[name]
            value = float(value)
            if not p.lower <= value <= p.upper:
                raise ValueError(f"parameter {name!r}={value} is outside [{p.lower}, {p.upper}]")
            checked[name] = value

        for name, value in checked.items():
            self._params[name].value = value
        self.epoch += 1

    def snapshot(self):
        return self.values()

    def restore(self, snapshot):
        self.update(snapshot)


class Formula:
    """
    An arithmetic expression over parameter names, e.g. "1-p" or "p*q".
    Only numbers, names, parentheses, unary +/- and + - * / ** are accepted.
    """

    def __init__(self, text):
        self.text = text
        try:
            tree = ast.parse(text.strip(), mode="eval")
        except SyntaxError as err:
            raise ValueError(f"cannot parse formula {text!r}: {err.msg}") from None
        self._body = tree.body
        self.names = []
        self._check(self._body)

    def _check(self, node):
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            self._check(node.left)
            self._check(node.right)
        elif isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            self._check(node.operand)
        elif isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) \
                and not isinstance(node.value, bool):
            pass
        elif isinstance(node, ast.Name):
            if node.id not in self.names:
                self.names.append(node.id)
        else:
            raise ValueError(f"unsupported syntax in formula {self.text!r}")

    @property
    def is_constant(self):
        return not self.names

    def evaluate(self, params):
        return float(self._eval(self._body, params))

    def _eval(self, node, params):
        if isinstance(node, ast.BinOp):
            return _BINARY_OPS[type(node.op)](self._eval(node.left, params), self._eval(node.right, params))
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](self._eval(node.operand, params))
        if isinstance(node, ast.Constant):
            return node.value
        return params[node.id]

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"Formula({self.text!r})"
