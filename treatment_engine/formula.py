"""
Formula evaluator for stored quantity formulas.

Formulas come from catalog configuration (bundle rules, assembly lines) and
are treated as untrusted text. They are tokenized and parsed by a small
recursive-descent parser into a tuple AST, then walked. Nothing is ever
handed to eval/exec.

Grammar:
    expr    := or ( "?" expr ":" expr )?
    or      := and ( "||" and )*
    and     := cmp ( "&&" cmp )*
    cmp     := sum ( ("=="|"!="|"<"|"<="|">"|">=") sum )?
    sum     := term ( ("+"|"-") term )*
    term    := unary ( ("*"|"/") unary )*
    unary   := ("-"|"+"|"!") unary | primary
    primary := NUMBER | IDENT | FUNC "(" expr ("," expr)* ")" | "(" expr ")"

Functions: ceil, floor, round, max, min (case-insensitive, optional "Math." prefix).
"""

import logging
import math
import re
from functools import lru_cache

from .errors import FormulaEvaluationError

logger = logging.getLogger(__name__)

ALLOWED_CHARS = set(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    "_. \t\n+-*/(),?:<>=!&|"
)

TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<number>\d+\.?\d*|\.\d+)"
    r"|(?P<ident>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?)"
    r"|(?P<op>===|!==|==|!=|<=|>=|&&|\|\||[-+*/()?:<>!,])"
    r")"
)

MAX_ROUND_DIGITS = 10


def _require_finite(name, args):
    if any(math.isnan(a) or math.isinf(a) for a in args):
        raise FormulaEvaluationError(f"{name}() received a non-finite argument")


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10.0 ** digits
    return math.floor(value * factor + 0.5) / factor


def _fn_round(*args):
    if len(args) not in (1, 2):
        raise FormulaEvaluationError("round() takes 1 or 2 arguments")
    _require_finite("round", args)
    digits = int(args[1]) if len(args) == 2 else 0
    if not 0 <= digits <= MAX_ROUND_DIGITS:
        raise FormulaEvaluationError(
            f"round() digits must be between 0 and {MAX_ROUND_DIGITS}, got {digits}"
        )
    return _round_half_up(args[0], digits)


def _fn_single(fn, name):
    def wrapped(*args):
        if len(args) != 1:
            raise FormulaEvaluationError(f"{name}() takes exactly 1 argument")
        _require_finite(name, args)
        return float(fn(args[0]))
    return wrapped


def _fn_many(fn, name):
    def wrapped(*args):
        if not args:
            raise FormulaEvaluationError(f"{name}() needs at least 1 argument")
        _require_finite(name, args)
        return float(fn(args))
    return wrapped


FUNCTIONS = {
    "ceil": _fn_single(math.ceil, "ceil"),
    "floor": _fn_single(math.floor, "floor"),
    "round": _fn_round,
    "max": _fn_many(max, "max"),
    "min": _fn_many(min, "min"),
}

ROUNDING_FUNCTIONS = {"ceil", "floor"}

# --- Tokenizer ---

def tokenize(formula: str) -> list:
    """Split a formula into (kind, value) tokens, rejecting anything off-whitelist."""
    bad = sorted({ch for ch in formula if ch not in ALLOWED_CHARS})
    if bad:
        raise FormulaEvaluationError(
            f"Disallowed character(s) {''.join(bad)!r} in formula",
            formula=formula,
        )

    tokens = []
    pos = 0
    text = formula.rstrip()
    while pos < len(text):
        match = TOKEN_RE.match(text, pos)
        if not match or match.end() == pos:
            raise FormulaEvaluationError(
                f"Unexpected input at position {pos}", formula=formula
            )
        pos = match.end()
        if match.group("number") is not None:
            tokens.append(("number", float(match.group("number"))))
        elif match.group("ident") is not None:
            tokens.append(("ident", match.group("ident")))
        else:
            op = match.group("op")
            # JS-style strict comparisons are plain comparisons here
            op = {"===": "==", "!==": "!="}.get(op, op)
            tokens.append(("op", op))
    tokens.append(("end", None))
    return tokens


# --- Parser ---

class _Parser:
    def __init__(self, formula: str):
        self.formula = formula
        self.tokens = tokenize(formula)
        self.pos = 0

    def peek(self):
        return self.tokens[self.pos]

    def advance(self):
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def accept(self, *ops):
        kind, value = self.peek()
        if kind == "op" and value in ops:
            self.pos += 1
            return value
        return None

    def expect(self, op):
        if not self.accept(op):
            kind, value = self.peek()
            found = "end of formula" if kind == "end" else repr(value)
            raise FormulaEvaluationError(
                f"Expected '{op}' but found {found}", formula=self.formula
            )

    def parse(self):
        if self.peek()[0] == "end":
            raise FormulaEvaluationError("Empty formula", formula=self.formula)
        node = self.expr()
        if self.peek()[0] != "end":
            raise FormulaEvaluationError(
                f"Unexpected token {self.peek()[1]!r}", formula=self.formula
            )
        return node

    def expr(self):
        cond = self.or_expr()
        if self.accept("?"):
            when_true = self.expr()
            self.expect(":")
            when_false = self.expr()
            return ("ternary", cond, when_true, when_false)
        return cond

    def or_expr(self):
        node = self.and_expr()
        while self.accept("||"):
            node = ("binop", "||", node, self.and_expr())
        return node

    def and_expr(self):
        node = self.comparison()
        while self.accept("&&"):
            node = ("binop", "&&", node, self.comparison())
        return node

    def comparison(self):
        node = self.sum()
        op = self.accept("==", "!=", "<=", ">=", "<", ">")
        if op:
            node = ("binop", op, node, self.sum())
        return node

    def sum(self):
        node = self.term()
        while True:
            op = self.accept("+", "-")
            if not op:
                return node
            node = ("binop", op, node, self.term())

    def term(self):
        node = self.unary()
        while True:
            op = self.accept("*", "/")
            if not op:
                return node
            node = ("binop", op, node, self.unary())

    def unary(self):
        op = self.accept("-", "+", "!")
        if op:
            return ("unary", op, self.unary())
        return self.primary()

    def primary(self):
        kind, value = self.advance()
        if kind == "number":
            return ("number", value)
        if kind == "op" and value == "(":
            node = self.expr()
            self.expect(")")
            return node
        if kind == "ident":
            if self.accept("("):
                return self.call(value)
            if value.lower() == "true":
                return ("number", 1.0)
            if value.lower() == "false":
                return ("number", 0.0)
            return ("name", value)
        found = "end of formula" if kind == "end" else repr(value)
        raise FormulaEvaluationError(f"Unexpected {found}", formula=self.formula)

    def call(self, raw_name):
        name = raw_name.lower()
        if name.startswith("math."):
            name = name[len("math."):]
        if name not in FUNCTIONS:
            raise FormulaEvaluationError(
                f"Function '{raw_name}' is not allowed "
                f"(allowed: {', '.join(sorted(FUNCTIONS))})",
                formula=self.formula,
            )
        args = [self.expr()]
        while self.accept(","):
            args.append(self.expr())
        self.expect(")")
        return ("call", name, tuple(args))


@lru_cache(maxsize=512)
def parse_formula(formula: str):
    """Parse a formula string into an AST. Cached per formula text."""
    return _Parser(formula).parse()


def uses_rounding_function(formula: str) -> bool:
    """True when the formula explicitly calls ceil() or floor()."""
    return _calls(parse_formula(formula)) & ROUNDING_FUNCTIONS != set()


def _calls(node) -> set:
    kind = node[0]
    if kind == "call":
        found = {node[1]}
        for arg in node[2]:
            found |= _calls(arg)
        return found
    if kind == "unary":
        return _calls(node[2])
    if kind == "binop":
        return _calls(node[2]) | _calls(node[3])
    if kind == "ternary":
        return _calls(node[1]) | _calls(node[2]) | _calls(node[3])
    return set()


# --- Evaluation ---

def _lookup(name: str, context: dict, formula: str) -> float:
    if name in context:
        value = context[name]
    else:
        lowered = {k.lower(): k for k in context}
        key = lowered.get(name.lower())
        if key is None:
            raise FormulaEvaluationError(
                f"Unknown identifier '{name}'", formula=formula, identifier=name
            )
        value = context[key]
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    raise FormulaEvaluationError(
        f"Identifier '{name}' is not numeric ({value!r})",
        formula=formula, identifier=name,
    )


def _eval(node, context: dict, formula: str) -> float:
    kind = node[0]
    if kind == "number":
        return node[1]
    if kind == "name":
        return _lookup(node[1], context, formula)
    if kind == "unary":
        operand = _eval(node[2], context, formula)
        if node[1] == "-":
            return -operand
        if node[1] == "!":
            return 0.0 if operand else 1.0
        return operand
    if kind == "ternary":
        if _eval(node[1], context, formula):
            return _eval(node[2], context, formula)
        return _eval(node[3], context, formula)
    if kind == "call":
        args = [_eval(arg, context, formula) for arg in node[2]]
        return FUNCTIONS[node[1]](*args)

    op, left_node, right_node = node[1], node[2], node[3]
    left = _eval(left_node, context, formula)
    # short-circuit logic
    if op == "&&":
        return 1.0 if left and _eval(right_node, context, formula) else 0.0
    if op == "||":
        return 1.0 if left or _eval(right_node, context, formula) else 0.0
    right = _eval(right_node, context, formula)
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        if right == 0:
            raise FormulaEvaluationError("Division by zero", formula=formula)
        return left / right
    comparisons = {
        "==": left == right,
        "!=": left != right,
        "<": left < right,
        "<=": left <= right,
        ">": left > right,
        ">=": left >= right,
    }
    return 1.0 if comparisons[op] else 0.0


def evaluate(formula: str, context: dict) -> float:
    """
    Evaluate a formula against a context of numeric (or boolean) values.

    Returns a non-negative float; negative results clamp to 0 so callers
    treat them like any other non-positive quantity.
    """
    if not isinstance(formula, str):
        raise FormulaEvaluationError(f"Formula must be text, got {formula!r}")
    try:
        tree = parse_formula(formula.strip())
        result = _eval(tree, context, formula)
    except (OverflowError, RecursionError) as e:
        raise FormulaEvaluationError(
            f"Formula could not be evaluated: {type(e).__name__}", formula=formula
        )
    if math.isnan(result) or math.isinf(result):
        raise FormulaEvaluationError("Formula produced a non-finite result", formula=formula)
    logger.debug(f"formula {formula!r} -> {result}")
    return max(result, 0.0)


def evaluate_quantity(formula: str, context: dict, whole_units: bool = True) -> float:
    """
    Evaluate a quantity formula.

    Discrete items round half-up to the nearest whole unit unless the formula
    already calls ceil()/floor(). Pass whole_units=False for continuous
    measures (metres, square metres).
    """
    value = evaluate(formula, context)
    if whole_units and not uses_rounding_function(formula.strip()):
        value = _round_half_up(value)
    return value
