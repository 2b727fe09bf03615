"""
Custom scoring formulas.

A formula is a small arithmetic expression over raw layer values, e.g.::

    score = (slope < 20) * (weight(2) * SIN(slope, 5, 20) + weight(1) * INVSIN(forest, 10, 80)) / weights

Grammar (lowest to highest precedence):

    expr       := additive (("==" | "!=" | "<=" | ">=" | "<" | ">") additive)*
    additive   := term (("+" | "-") term)*
    term       := unary (("*" | "/") unary)*
    unary      := ("-" | "+") unary | power
    power      := primary ("^" unary)?
    primary    := NUMBER | NAME "(" args ")" | NAME | "(" expr ")"

``[`` and ``]`` are accepted as parentheses and a leading ``score =`` is
ignored. Function names are case-insensitive. Variable names are matched
after lower-casing and dropping anything but letters and digits, so
``air_quality_pm10`` and ``airQualityPM10`` name the same value.

Scoring functions:
- SIN / INVSIN / RANGE / INVRANGE(x, M, N[, high, low]): transfer functions
  evaluated with :func:`evaluate_grid` (RANGE is the linear shape)
- ORIENTATION(bearing, S, SW, W, NW, N, NE, E, SE[, damping]): aspect
  preference evaluated with :func:`score_aspect`
- weight(n) returns n; ``weights`` is the sum of every weight() argument

Missing values:
- An unknown variable reads as NaN
- Transfer functions score NaN input at their low end; ORIENTATION scores
  it neutral
- A comparison with a NaN operand is true, so missing data never vetoes
- A non-finite final result scores 0; everything else is clipped to [0, 1]
"""

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Mapping, Optional, Union

import numpy as np

from livability import config
from livability.scoring.aspect import AspectPreferences, damp_aspect_score, score_aspect
from livability.scoring.layers import LayerKind, ScoringConfig
from livability.scoring.transforms import TransferFunction, evaluate_grid

logger = logging.getLogger(__name__)

NumericType = Union[float, np.ndarray]


class FormulaError(ValueError):
    """Raised for formulas that cannot be parsed or evaluated."""


# =============================================================================
# AST
# =============================================================================


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple


Node = Union[Number, Variable, UnaryOp, BinaryOp, Call]

COMPARISON_OPS = ("==", "!=", "<=", ">=", "<", ">")

# Binding strength used when printing; higher binds tighter
PRECEDENCE = {
    "==": 1, "!=": 1, "<=": 1, ">=": 1, "<": 1, ">": 1,
    "+": 2, "-": 2,
    "*": 3, "/": 3,
    "^": 5,
}
UNARY_PRECEDENCE = 4


# =============================================================================
# PARSING
# =============================================================================

_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<op>==|!=|<=|>=|[-+*/^<>(),])"
    r")"
)
_PREFIX_RE = re.compile(r"^\s*score\s*=(?!=)\s*", re.IGNORECASE)


def normalize_name(name: str) -> str:
    """Lower-case a variable name and drop everything but letters and digits."""
    return re.sub(r"[^a-z0-9]", "", name.lower())


def tokenize(source: str) -> list[tuple[str, str]]:
    """Split formula source into (kind, text) tokens."""
    source = _PREFIX_RE.sub("", source).replace("[", "(").replace("]", ")")
    tokens = []
    pos = 0
    end = len(source.rstrip())
    while pos < end:
        match = _TOKEN_RE.match(source, pos)
        if match is None or match.end() == pos:
            raise FormulaError(f"Unexpected character {source[pos:].lstrip()[:1]!r} at position {pos}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: list[tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[str]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos][1]
        return None

    def next(self) -> tuple[str, str]:
        if self.pos >= len(self.tokens):
            raise FormulaError("Unexpected end of formula")
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def expect(self, text: str) -> None:
        kind, value = self.next()
        if value != text:
            raise FormulaError(f"Expected '{text}', got '{value}'")

    def parse(self) -> Node:
        if not self.tokens:
            raise FormulaError("Empty formula")
        node = self.expression()
        if self.pos != len(self.tokens):
            raise FormulaError(f"Unexpected '{self.tokens[self.pos][1]}' after end of expression")
        return node

    def expression(self) -> Node:
        node = self.additive()
        while self.peek() in COMPARISON_OPS:
            op = self.next()[1]
            node = BinaryOp(op, node, self.additive())
        return node

    def additive(self) -> Node:
        node = self.term()
        while self.peek() in ("+", "-"):
            op = self.next()[1]
            node = BinaryOp(op, node, self.term())
        return node

    def term(self) -> Node:
        node = self.unary()
        while self.peek() in ("*", "/"):
            op = self.next()[1]
            node = BinaryOp(op, node, self.unary())
        return node

    def unary(self) -> Node:
        if self.peek() in ("-", "+"):
            op = self.next()[1]
            return UnaryOp(op, self.unary())
        return self.power()

    def power(self) -> Node:
        node = self.primary()
        if self.peek() == "^":
            self.next()
            node = BinaryOp("^", node, self.unary())
        return node

    def primary(self) -> Node:
        kind, value = self.next()
        if kind == "number":
            return Number(float(value))
        if kind == "name":
            if self.peek() == "(":
                self.next()
                return Call(value.upper(), self.arguments())
            return Variable(value)
        if value == "(":
            node = self.expression()
            self.expect(")")
            return node
        raise FormulaError(f"Unexpected '{value}'")

    def arguments(self) -> tuple:
        args = []
        if self.peek() == ")":
            self.next()
            return ()
        while True:
            args.append(self.expression())
            kind, value = self.next()
            if value == ")":
                return tuple(args)
            if value != ",":
                raise FormulaError(f"Expected ',' or ')' in argument list, got '{value}'")


@lru_cache(maxsize=64)
def parse_formula(source: str) -> Node:
    """
    Parse formula source into an AST.

    Raises:
        FormulaError: On syntax errors or unknown functions
    """
    node = _Parser(tokenize(source)).parse()
    _check_calls(node)
    return node


def _walk(node: Node):
    yield node
    if isinstance(node, UnaryOp):
        yield from _walk(node.operand)
    elif isinstance(node, BinaryOp):
        yield from _walk(node.left)
        yield from _walk(node.right)
    elif isinstance(node, Call):
        for arg in node.args:
            yield from _walk(arg)


def _check_calls(node: Node) -> None:
    for child in _walk(node):
        if not isinstance(child, Call):
            continue
        if child.name not in FUNCTIONS:
            raise FormulaError(f"Unknown function '{child.name}'. Available: {sorted(FUNCTIONS)}")
        _, min_args, max_args = FUNCTIONS[child.name]
        if not min_args <= len(child.args) <= max_args:
            expected = str(min_args) if min_args == max_args else f"{min_args}-{max_args}"
            raise FormulaError(f"{child.name} takes {expected} arguments, got {len(child.args)}")


def formula_variables(node: Node) -> set[str]:
    """Normalised names of the variables a formula reads."""
    names = {normalize_name(n.name) for n in _walk(node) if isinstance(n, Variable)}
    return names - set(CONSTANTS) - {"weights"}


def serialize(node: Node, parent: int = 0) -> str:
    """Print an AST back to source with only the parentheses it needs."""
    if isinstance(node, Number):
        value = node.value
        return str(int(value)) if value.is_integer() and abs(value) < 1e15 else repr(value)
    if isinstance(node, Variable):
        return node.name
    if isinstance(node, Call):
        return f"{node.name}({', '.join(serialize(a) for a in node.args)})"
    if isinstance(node, UnaryOp):
        text = f"{node.op}{serialize(node.operand, UNARY_PRECEDENCE)}"
        return f"({text})" if parent > UNARY_PRECEDENCE else text

    prec = PRECEDENCE[node.op]
    if node.op == "^":
        left_prec, right_prec = prec + 1, UNARY_PRECEDENCE
    else:
        left_prec, right_prec = prec, prec + 1
    text = f"{serialize(node.left, left_prec)} {node.op} {serialize(node.right, right_prec)}"
    return f"({text})" if prec < parent else text


def format_number(value: float) -> str:
    """Up to four decimals; whole numbers print without a decimal point."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


# =============================================================================
# EVALUATION
# =============================================================================


def _scalar(value: NumericType, name: str) -> float:
    if np.ndim(value) != 0:
        raise FormulaError(f"{name} parameters must be constants")
    return float(value)


def _transfer(shape: str) -> Callable:
    def call(x, m, n, high=1.0, low=0.0):
        name = shape.upper()
        try:
            tf = TransferFunction(
                _scalar(m, name), _scalar(n, name), floor=_scalar(low, name), ceiling=_scalar(high, name), shape=shape
            )
        except FormulaError:
            raise
        except ValueError as e:
            raise FormulaError(f"{name}: {e}") from e
        x = np.asarray(x, dtype=np.float64)
        return np.where(np.isnan(x), tf.floor, evaluate_grid(x, tf))

    return call


# Argument order of ORIENTATION's direction preferences
ORIENTATION_ORDER = ("S", "SW", "W", "NW", "N", "NE", "E", "SE")


def _orientation(bearing, *args):
    prefs_args = [_scalar(a, "ORIENTATION") for a in args[:8]]
    damping = _scalar(args[8], "ORIENTATION") if len(args) > 8 else 1.0
    try:
        prefs = AspectPreferences(**dict(zip(ORIENTATION_ORDER, prefs_args)))
    except ValueError as e:
        raise FormulaError(f"ORIENTATION: {e}") from e
    bearing = np.asarray(bearing, dtype=np.float64)
    scores = damp_aspect_score(score_aspect(bearing, prefs), damping)
    return np.where(np.isnan(bearing), config.NEUTRAL_SCORE, scores)


def _if(condition, when_true, when_false):
    return np.where(np.asarray(condition) != 0, when_true, when_false)


def _min(*args):
    return np.minimum.reduce(np.broadcast_arrays(*args))


def _max(*args):
    return np.maximum.reduce(np.broadcast_arrays(*args))


# name -> (implementation, min args, max args)
FUNCTIONS: dict[str, tuple[Callable, int, int]] = {
    "SIN": (_transfer("sin"), 3, 5),
    "INVSIN": (_transfer("invsin"), 3, 5),
    "RANGE": (_transfer("range"), 3, 5),
    "INVRANGE": (_transfer("invrange"), 3, 5),
    "ORIENTATION": (_orientation, 9, 10),
    "WEIGHT": (lambda n: n, 1, 1),
    "MIN": (_min, 1, 64),
    "MAX": (_max, 1, 64),
    "ABS": (np.abs, 1, 1),
    "SQRT": (np.sqrt, 1, 1),
    "POW": (np.power, 2, 2),
    "LOG": (np.log, 1, 1),
    "EXP": (np.exp, 1, 1),
    "SIGN": (np.sign, 1, 1),
    "FLOOR": (np.floor, 1, 1),
    "CEIL": (np.ceil, 1, 1),
    "ROUND": (np.round, 1, 1),
    "CLAMP": (np.clip, 3, 3),
    "IF": (_if, 3, 3),
}

CONSTANTS = {"pi": np.pi, "true": 1.0, "false": 0.0}

_BINARY = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": np.divide,
    "^": np.power,
    "==": np.equal,
    "!=": np.not_equal,
    "<=": np.less_equal,
    ">=": np.greater_equal,
    "<": np.less,
    ">": np.greater,
}


class _Evaluator:
    def __init__(self, values: Mapping[str, NumericType], weights: float):
        self.values = {normalize_name(k): np.asarray(v, dtype=np.float64) for k, v in values.items()}
        self.weights = weights

    def visit(self, node: Node) -> NumericType:
        if isinstance(node, Number):
            return node.value
        if isinstance(node, Variable):
            name = normalize_name(node.name)
            if name == "weights":
                return self.weights
            if name in CONSTANTS:
                return CONSTANTS[name]
            return self.values.get(name, np.nan)
        if isinstance(node, UnaryOp):
            operand = self.visit(node.operand)
            return -operand if node.op == "-" else operand
        if isinstance(node, BinaryOp):
            left = self.visit(node.left)
            right = self.visit(node.right)
            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                result = _BINARY[node.op](left, right)
            if node.op in COMPARISON_OPS:
                missing = np.isnan(left) | np.isnan(right)
                result = np.where(missing, 1.0, result.astype(np.float64))
            return result
        func = FUNCTIONS[node.name][0]
        args = [self.visit(arg) for arg in node.args]
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return func(*args)


def weights_total(node: Node) -> float:
    """Sum of every weight() argument; 1 when there are none."""
    evaluator = _Evaluator({}, 1.0)
    total = 0.0
    for child in _walk(node):
        if isinstance(child, Call) and child.name == "WEIGHT":
            total += _scalar(evaluator.visit(child.args[0]), "weight")
    return total or 1.0


def evaluate_formula(
    formula: Union[str, Node],
    values: Mapping[str, NumericType],
    shape=(),
) -> NumericType:
    """
    Evaluate a formula over raw layer values.

    Args:
        formula: Formula source or a parsed AST
        values: Variable name -> raw values broadcastable to ``shape``
        shape: Output shape

    Returns:
        Scores in [0, 1] of the given shape; float for shape ()
    """
    node = parse_formula(formula) if isinstance(formula, str) else formula
    result = _Evaluator(values, weights_total(node)).visit(node)
    result = np.broadcast_to(np.asarray(result, dtype=np.float64), shape)
    result = np.where(np.isfinite(result), np.clip(result, 0.0, 1.0), 0.0)
    if result.ndim == 0:
        return float(result)
    return result


# =============================================================================
# CONFIG -> FORMULA
# =============================================================================

# Formula variable read by each terrain layer kind
TERRAIN_VARIABLES = {
    LayerKind.SLOPE: "slope",
    LayerKind.ELEVATION: "elevation",
    LayerKind.ASPECT: "aspect",
}

SHAPE_FUNCTIONS = {
    "sin": "SIN",
    "invsin": "INVSIN",
    "linear": "RANGE",
    "invlinear": "INVRANGE",
}


def config_to_formula(scoring_config: ScoringConfig) -> str:
    """
    Formula equivalent to a layer configuration's weighted average.

    Each enabled layer adds ``weight(w) * FN(var, M, N[, high, low])``;
    mandatory layers add a guard, ``(var < N)`` or ``(var > M)`` for
    inverted curves, multiplied in front of the sum.
    """
    terms = []
    guards = []
    for layer in scoring_config.enabled_layers():
        variable = TERRAIN_VARIABLES.get(layer.kind, layer.variable)
        weight = format_number(layer.effective_weight)

        if layer.kind is LayerKind.ASPECT:
            prefs = scoring_config.aspect_preferences
            args = [variable] + [format_number(getattr(prefs, d)) for d in ORIENTATION_ORDER]
            if scoring_config.aspect_damping != 1.0:
                args.append(format_number(scoring_config.aspect_damping))
            terms.append(f"weight({weight}) * ORIENTATION({', '.join(args)})")
            continue

        tf = layer.transfer
        args = [variable, format_number(tf.plateau_start), format_number(tf.decay_end)]
        if tf.ceiling != 1.0 or tf.floor != 0.0:
            args += [format_number(tf.ceiling), format_number(tf.floor)]
        terms.append(f"weight({weight}) * {SHAPE_FUNCTIONS[tf.shape]}({', '.join(args)})")

        if tf.mandatory:
            if tf.inverted:
                guards.append(f"({variable} > {format_number(tf.plateau_start)})")
            else:
                guards.append(f"({variable} < {format_number(tf.decay_end)})")

    if not terms:
        return "0"
    body = terms[0] if len(terms) == 1 else f"({' + '.join(terms)})"
    if guards:
        body = " * ".join(guards) + " * " + body
    formula = f"{body} / weights"
    logger.debug(f"Config '{scoring_config.name}' as formula: {formula}")
    return formula
