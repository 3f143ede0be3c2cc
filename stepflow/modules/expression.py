"""Restricted arithmetic evaluator used for formulas in workflow steps.

Formulas may only use numeric literals, known variables, ``+ - * /`` and
parentheses. Variables are substituted first; whatever remains is checked
against a whitelist of characters and then parsed by a small
recursive-descent parser. Nothing is ever handed to ``eval``.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal
from typing import Dict, List, Mapping, Tuple, Union

from ..errors import UnsafeExpressionError

Number = Union[int, float]

IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*")
_ALLOWED_RE = re.compile(r"^[0-9+\-*/.()\s]*$")
_TOKEN_RE = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|([+\-*/()]))")
_MAX_DEPTH = 64


def identifiers(expression: str) -> List[str]:
    """Return the variable names referenced by ``expression``, in order."""
    seen: List[str] = []
    for match in IDENTIFIER_RE.finditer(expression):
        if match.group(0) not in seen:
            seen.append(match.group(0))
    return seen


def _format_number(value: Number) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise UnsafeExpressionError(f"Variable value is not numeric: {value!r}")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise UnsafeExpressionError(f"Variable value is not finite: {value!r}")
        text = format(Decimal(repr(value)), "f")
    else:
        text = str(value)
    return f"({text})"


def substitute(expression: str, variables: Mapping[str, Number]) -> str:
    """Replace every known variable in ``expression`` with its parenthesized value.

    Parentheses keep a value from merging with adjacent digits, so ``2x``
    becomes ``2(3)`` and is rejected by the parser.
    """

    def _replace(match: re.Match) -> str:
        name = match.group(0)
        if name not in variables:
            return name
        return _format_number(variables[name])

    return IDENTIFIER_RE.sub(_replace, expression)


def _tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    stripped = expression.rstrip()
    while pos < len(stripped):
        match = _TOKEN_RE.match(stripped, pos)
        if not match:
            raise UnsafeExpressionError(
                f"Unexpected input at position {pos} in expression: {expression!r}"
            )
        number, op = match.groups()
        tokens.append(("num", number) if number is not None else ("op", op))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]], source: str) -> None:
        self.tokens = tokens
        self.pos = 0
        self.source = source

    def _peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        token = self._peek()
        if token is None:
            raise UnsafeExpressionError(f"Unexpected end of expression: {self.source!r}")
        self.pos += 1
        return token

    def parse(self) -> Number:
        if not self.tokens:
            raise UnsafeExpressionError("Empty expression")
        value = self._expr(0)
        if self._peek() is not None:
            raise UnsafeExpressionError(
                f"Unexpected token {self._peek()[1]!r} in expression: {self.source!r}"
            )
        return value

    def _expr(self, depth: int) -> Number:
        value = self._term(depth)
        while self._peek() in (("op", "+"), ("op", "-")):
            _, op = self._take()
            rhs = self._term(depth)
            value = value + rhs if op == "+" else value - rhs
        return value

    def _term(self, depth: int) -> Number:
        value = self._factor(depth)
        while self._peek() in (("op", "*"), ("op", "/")):
            _, op = self._take()
            rhs = self._factor(depth)
            value = value * rhs if op == "*" else value / rhs
        return value

    def _factor(self, depth: int) -> Number:
        if depth > _MAX_DEPTH:
            raise UnsafeExpressionError("Expression is nested too deeply")
        kind, text = self._take()
        if kind == "num":
            return float(text) if "." in text else int(text)
        if text == "+":
            return self._factor(depth + 1)
        if text == "-":
            return -self._factor(depth + 1)
        if text == "(":
            value = self._expr(depth + 1)
            if self._take() != ("op", ")"):
                raise UnsafeExpressionError(f"Unbalanced parentheses: {self.source!r}")
            return value
        raise UnsafeExpressionError(f"Unexpected token {text!r} in expression: {self.source!r}")


def evaluate(expression: str, variables: Mapping[str, Number] | None = None) -> Number:
    """Evaluate an arithmetic ``expression`` with ``variables`` bound.

    Raises:
        UnsafeExpressionError: If the expression contains anything besides
            numbers, known variables, ``+ - * /``, ``.``, parentheses and
            whitespace, or is malformed.
        ZeroDivisionError: On division by zero.
    """
    resolved = substitute(expression, variables or {})
    if not _ALLOWED_RE.match(resolved):
        raise UnsafeExpressionError(f"Expression contains disallowed characters: {expression!r}")
    return _Parser(_tokenize(resolved), expression).parse()


def numeric_variables(names: List[str], resolver) -> Dict[str, Number]:
    """Bind ``names`` through ``resolver``; missing or non-numeric values become 0."""
    bound: Dict[str, Number] = {}
    for name in names:
        value = resolver(name)
        if isinstance(value, str):
            try:
                value = float(value) if "." in value else int(value)
            except ValueError:
                value = 0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            value = 0
        elif isinstance(value, float) and not math.isfinite(value):
            value = 0
        bound[name] = value
    return bound


__all__ = ["evaluate", "identifiers", "substitute", "numeric_variables"]
