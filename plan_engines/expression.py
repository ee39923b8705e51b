"""
PlanNavigator — Expression Engine
Small arithmetic parser used by computed variables.
parse(formula) -> Expression; Expression.evaluate(scope) -> float.
Supports + - * / % ^, parentheses, unary sign, numbers, identifiers and a
handful of functions (min, max, abs, round, floor, ceil, sqrt).
"""
import math
import re

_TOKEN_RE = re.compile(r'\s*(?:(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?|([A-Za-z_][A-Za-z0-9_]*)|(\*\*|[-+*/%^(),]))')

FUNCTIONS = {
    'min': min, 'max': max, 'abs': abs,
    'round': lambda x, n=0: round(x, int(n)),
    'floor': math.floor, 'ceil': math.ceil, 'sqrt': math.sqrt,
}

CONSTANTS = {'pi': math.pi, 'e': math.e}


class ExpressionError(ValueError):
    """Formula could not be parsed or evaluated."""


class UnknownIdentifierError(ExpressionError):
    def __init__(self, name):
        super().__init__(f"Undefined symbol {name}")
        self.name = name


def tokenize(formula):
    tokens = []
    pos = 0
    text = formula.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ExpressionError(f"Unexpected character '{text[pos:].strip()[:1]}' at position {pos}")
        num, exp, name, op = m.groups()
        if num is not None:
            value = float(num + (exp or ''))
            if not math.isfinite(value):
                raise ExpressionError(f"Number out of range at position {pos}")
            tokens.append(('num', value))
        elif name is not None:
            tokens.append(('name', name))
        else:
            tokens.append(('op', '^' if op == '**' else op))
        pos = m.end()
    return tokens


# ── AST nodes: tuples (kind, ...) ──
# ('num', value) | ('var', name) | ('neg', node) | ('bin', op, left, right) | ('call', name, [args])

class _Parser:
    def __init__(self, tokens):
        self.tokens = tokens; self.i = 0

    def peek(self):
        return self.tokens[self.i] if self.i < len(self.tokens) else (None, None)

    def take(self):
        tok = self.peek(); self.i += 1
        return tok

    def expect(self, op):
        kind, val = self.take()
        if kind != 'op' or val != op:
            raise ExpressionError(f"Expected '{op}'" + (f" but found '{val}'" if val is not None else " at end of formula"))

    def parse(self):
        if not self.tokens:
            raise ExpressionError('Empty formula')
        node = self.additive()
        if self.i < len(self.tokens):
            raise ExpressionError(f"Unexpected token '{self.tokens[self.i][1]}'")
        return node

    def additive(self):
        node = self.term()
        while self.peek() in (('op', '+'), ('op', '-')):
            op = self.take()[1]
            node = ('bin', op, node, self.term())
        return node

    def term(self):
        node = self.unary()
        while self.peek() in (('op', '*'), ('op', '/'), ('op', '%')):
            op = self.take()[1]
            node = ('bin', op, node, self.unary())
        return node

    def unary(self):
        if self.peek() == ('op', '-'):
            self.take()
            return ('neg', self.unary())
        if self.peek() == ('op', '+'):
            self.take()
            return self.unary()
        return self.power()

    def power(self):
        node = self.atom()
        if self.peek() == ('op', '^'):
            self.take()
            # right-associative, binds tighter than unary on the left
            node = ('bin', '^', node, self.unary())
        return node

    def atom(self):
        kind, val = self.take()
        if kind == 'num':
            return ('num', val)
        if kind == 'name':
            if self.peek() == ('op', '('):
                self.take()
                if val not in FUNCTIONS:
                    raise ExpressionError(f"Unknown function {val}")
                args = []
                if self.peek() != ('op', ')'):
                    args.append(self.additive())
                    while self.peek() == ('op', ','):
                        self.take(); args.append(self.additive())
                self.expect(')')
                return ('call', val, args)
            return ('var', val)
        if (kind, val) == ('op', '('):
            node = self.additive()
            self.expect(')')
            return node
        if kind is None:
            raise ExpressionError('Unexpected end of formula')
        raise ExpressionError(f"Unexpected token '{val}'")


def _eval(node, scope):
    kind = node[0]
    if kind == 'num':
        return node[1]
    if kind == 'var':
        name = node[1]
        if name in scope:
            return float(scope[name])
        if name in CONSTANTS:
            return CONSTANTS[name]
        raise UnknownIdentifierError(name)
    if kind == 'neg':
        return -_eval(node[1], scope)
    if kind == 'call':
        args = [_eval(a, scope) for a in node[2]]
        try:
            return float(FUNCTIONS[node[1]](*args))
        except (TypeError, ValueError, OverflowError) as e:
            raise ExpressionError(f"{node[1]}(): {e}") from e
    _, op, left, right = node
    a = _eval(left, scope); b = _eval(right, scope)
    if op == '+': return a + b
    if op == '-': return a - b
    if op == '*': return a * b
    if op in ('/', '%') and b == 0:
        raise ExpressionError('Division by zero')
    if op == '/': return a / b
    if op == '%': return math.fmod(a, b)
    try:
        result = a ** b
    except (OverflowError, ZeroDivisionError) as e:
        raise ExpressionError(str(e)) from e
    if isinstance(result, complex):
        raise ExpressionError('Result is not a real number')
    return result


def _collect(node, out):
    kind = node[0]
    if kind == 'var':
        if node[1] not in out:
            out.append(node[1])
    elif kind == 'neg':
        _collect(node[1], out)
    elif kind == 'call':
        for a in node[2]:
            _collect(a, out)
    elif kind == 'bin':
        _collect(node[2], out); _collect(node[3], out)


class Expression:
    def __init__(self, source, tree):
        self.source = source
        self.tree = tree

    def evaluate(self, scope=None):
        return _eval(self.tree, scope or {})

    def variables(self):
        """Identifiers referenced by the expression, in first-seen order."""
        out = []
        _collect(self.tree, out)
        return [v for v in out if v not in CONSTANTS]

    def __repr__(self):
        return f"Expression({self.source!r})"


def parse(formula):
    if not isinstance(formula, str):
        raise ExpressionError('Formula must be a string')
    return Expression(formula, _Parser(tokenize(formula)).parse())
