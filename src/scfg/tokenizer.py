from .errors import GrammarDefinitionError, TokenizationError


class _Node:
    __slots__ = ("children", "terminal")

    def __init__(self):
        self.children = {}
        self.terminal = None


class TerminalTrie:
    """
    Character trie over the terminal literals. Literals must form a prefix
    code, so walking the trie from any position reaches at most one complete
    literal and the split of a string into terminals is unique.
    """

    def __init__(self, literals=()):
        self._root = _Node()
        self.literals = []
        for literal in literals:
            self.insert(literal)

    def __len__(self):
        return len(self.literals)

    def index(self, literal):
        node = self._walk(literal)
        if node is None or node.terminal is None:
            raise KeyError(literal)
        return node.terminal

    def __contains__(self, literal):
        node = self._walk(literal)
        return node is not None and node.terminal is not None

    def _walk(self, literal):
        node = self._root
        for ch in literal:
            node = node.children.get(ch)
            if node is None:
                return None
        return node

    def insert(self, literal):
        """Add a literal and return its index; refuses anything that breaks the prefix code."""
        if not isinstance(literal, str) or not literal:
            raise GrammarDefinitionError(f"terminal literal must be a non-empty string, got {literal!r}")

        node = self._root
        for ch in literal:
            if node.terminal is not None:
                raise GrammarDefinitionError(
                    f"terminal {self.literals[node.terminal]!r} is a prefix of terminal {literal!r}")
            node = node.children.setdefault(ch, _Node())

        if node.terminal is not None:
            raise GrammarDefinitionError(f"duplicate terminal {literal!r}")
        if node.children:
            longer = self._any_literal_below(node)
            raise GrammarDefinitionError(f"terminal {literal!r} is a prefix of terminal {longer!r}")

        node.terminal = len(self.literals)
        self.literals.append(literal)
        return node.terminal

    def _any_literal_below(self, node):
        stack = [node]
        while stack:
            current = stack.pop()
            if current.terminal is not None:
                return self.literals[current.terminal]
            stack.extend(current.children.values())
        return None

    def tokenize(self, text, string_index=None):
        """Convert `text` to a list of terminal indices, or raise TokenizationError."""
        tokens = []
        pos = 0
        while pos < len(text):
            node = self._root
            end = pos
            while node.terminal is None:
                if end == len(text):
                    node = None
                    break
                node = node.children.get(text[end])
                if node is None:
                    break
                end += 1
            if node is None:
                where = f" in string {string_index}" if string_index is not None else ""
                raise TokenizationError(
                    f"cannot match a terminal at offset {pos}{where}: {text[pos:pos + 20]!r}",
                    string_index=string_index, offset=pos)
            tokens.append(node.terminal)
            pos = end
        return tokens

    def detokenize(self, tokens):
        return "".join(self.literals[t] for t in tokens)
