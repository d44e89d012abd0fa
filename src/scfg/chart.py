import sys

import numpy as np

# chart entry meaning "probability is 1 whatever the parameter values are"
CONSTANT_ONE = -1


def span_count(length):
    return length * (length + 1) // 2


def span_index(s, t, length):
    """Position of span [s, t] (0 <= s <= t < length) in row-major upper-triangular order."""
    if not 0 <= s <= t < length:
        raise IndexError(f"span [{s}, {t}] is outside a string of length {length}")
    return s * length - s * (s - 1) // 2 + (t - s)


def triple_key(s, t, nt, length, nt_count):
    """Linearise (start, end, non-terminal) into a single integer."""
    if not 0 <= nt < nt_count:
        raise IndexError(f"non-terminal {nt} is outside 0..{nt_count - 1}")
    return span_index(s, t, length) * nt_count + nt


def unpack_triple_key(key, length, nt_count):
    """Inverse of triple_key."""
    if not 0 <= key < span_count(length) * nt_count:
        raise IndexError(f"key {key} is outside a chart for length {length}")
    span, nt = divmod(key, nt_count)
    s = 0
    row = length
    while span >= row:
        span -= row
        s += 1
        row -= 1
    return s, s + span, nt


def ensure_recursion_limit(length):
    """Memoised span recursion nests about once per token (inside and outside stack on each other)."""
    needed = 4 * length + 1000
    if sys.getrecursionlimit() < needed:
        sys.setrecursionlimit(needed)


class ComputeFlags:
    """One bit per (s, t, nt) triple: has it been visited in the current pass."""

    def __init__(self, size):
        self._bits = np.zeros(size, dtype=bool)

    def __len__(self):
        return len(self._bits)

    def __getitem__(self, key):
        return bool(self._bits[key])

    def set(self, key):
        self._bits[key] = True

    def clear(self):
        self._bits[:] = False

    def count(self):
        return int(self._bits.sum())


class Chart:
    """
    Sparse inside or outside table for one corpus string.

    `entries` maps a triple key to CONSTANT_ONE or to a position in `values`,
    the dense buffer of parameter-dependent probabilities. A missing key means
    probability 0 (for a visited triple: 0 for every parameter value). The
    buffer is refilled in place on every parameter change; constant entries
    are never recomputed.
    """

    def __init__(self, length, nt_count):
        self.length = length
        self.nt_count = nt_count
        self.entries = {}
        self.values = []
        self.flags = ComputeFlags(span_count(length) * nt_count)
        self.epoch = None

    def key(self, s, t, nt):
        return triple_key(s, t, nt, self.length, self.nt_count)

    def is_constant(self, key):
        return self.entries.get(key) == CONSTANT_ONE

    def lookup(self, key):
        """Return (probability, depends_on_parameters) for a stored triple."""
        slot = self.entries.get(key)
        if slot is None:
            return 0.0, False
        if slot == CONSTANT_ONE:
            return 1.0, False
        return self.values[slot], True

    def store(self, key, value, dependent):
        self.flags.set(key)
        if not dependent and value == 1.0:
            self.entries[key] = CONSTANT_ONE
            return
        if not dependent and value == 0.0:
            return
        slot = self.entries.get(key)
        if slot is None:
            self.entries[key] = len(self.values)
            self.values.append(value)
        elif slot != CONSTANT_ONE:
            self.values[slot] = value

    def invalidate(self):
        """Forget which triples were visited; stored values will be recomputed on demand."""
        self.flags.clear()

    def stats(self):
        constant = sum(1 for slot in self.entries.values() if slot == CONSTANT_ONE)
        return {
            "entries": len(self.entries),
            "constant_one": constant,
            "buffered": len(self.values),
            "visited": self.flags.count(),
        }
