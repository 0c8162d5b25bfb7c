"""Tokenizer and validator for calculated-metric formulas.

A formula is a flat arithmetic expression over metric codes and numeric
literals::

    sold_items / quoted_households
    (new_policies + renewals) * 100 / quotes

Tokens are metric codes (``[a-zA-Z_][a-zA-Z0-9_]*``, lowercased), numbers
(digits with at most one decimal point, never starting with ``.``), the four
binary operators ``+ - * /`` and parentheses. No tree is built: the token
stream is checked against adjacency rules and re-serialized with single
spaces, which is the canonical form persisted in ``metric_formulas``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal

FormulaTokenType = Literal["metric", "operator", "paren", "number"]

OPERATORS = frozenset({"+", "-", "*", "/"})
WHITESPACE = frozenset({" ", "\t", "\n", "\r"})

_IDENT_START = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_")
_IDENT_CHARS = _IDENT_START | frozenset("0123456789")


@dataclass(frozen=True)
class FormulaToken:
    type: FormulaTokenType
    value: str


@dataclass(frozen=True)
class FormulaParseResult:
    success: bool
    tokens: list[FormulaToken] = field(default_factory=list)
    normalized_expression: str = ""
    error: str | None = None


@dataclass(frozen=True)
class FormulaValidationResult:
    success: bool
    tokens: list[FormulaToken] = field(default_factory=list)
    metric_codes: list[str] = field(default_factory=list)
    normalized_expression: str = ""
    error: str | None = None


def _fail(error: str) -> FormulaParseResult:
    return FormulaParseResult(success=False, error=error)


def _is_digit(char: str) -> bool:
    return "0" <= char <= "9"


def _scan(text: str) -> tuple[list[FormulaToken], str | None]:
    tokens: list[FormulaToken] = []
    index = 0
    length = len(text)

    while index < length:
        char = text[index]

        if char in WHITESPACE:
            index += 1
            continue

        if char in OPERATORS:
            tokens.append(FormulaToken("operator", char))
            index += 1
            continue

        if char in "()":
            tokens.append(FormulaToken("paren", char))
            index += 1
            continue

        if _is_digit(char) or char == ".":
            end = index
            seen_dot = False
            while end < length:
                current = text[end]
                if current == ".":
                    # A second dot ends the number; it starts the next (invalid) token.
                    if seen_dot:
                        break
                    seen_dot = True
                elif not _is_digit(current):
                    break
                end += 1

            number = text[index:end]
            if number.startswith("."):
                return tokens, f'Invalid number token "{number}".'

            tokens.append(FormulaToken("number", number))
            index = end
            continue

        if char in _IDENT_START:
            end = index + 1
            while end < length and text[end] in _IDENT_CHARS:
                end += 1
            tokens.append(FormulaToken("metric", text[index:end].lower()))
            index = end
            continue

        return tokens, f'Invalid token "{char}".'

    return tokens, None


def _check_adjacency(tokens: list[FormulaToken]) -> str | None:
    depth = 0
    previous = "start"

    for token in tokens:
        if token.type in ("metric", "number"):
            if previous in ("operand", "close"):
                return f'Missing operator before "{token.value}".'
            previous = "operand"
        elif token.value == "(":
            if previous in ("operand", "close"):
                return 'Missing operator before "(".'
            depth += 1
            previous = "open"
        elif token.value == ")":
            if depth == 0:
                return "Unmatched closing parenthesis."
            if previous in ("start", "operator", "open"):
                return "Parentheses cannot be empty."
            depth -= 1
            previous = "close"
        else:
            if previous in ("start", "operator", "open"):
                return f'Operator "{token.value}" is in an invalid position.'
            previous = "operator"

    if depth != 0:
        return "Unclosed parenthesis in formula."
    if previous in ("start", "operator", "open"):
        return "Formula cannot end with an operator."
    return None


def serialize_formula_tokens(tokens: Iterable[FormulaToken]) -> str:
    return " ".join(token.value for token in tokens)


def parse_formula_expression(expression: str | None) -> FormulaParseResult:
    """Tokenize and check ``expression``; never raises for bad input."""

    text = (expression or "").strip()
    if not text:
        return _fail("Formula expression is required.")

    tokens, error = _scan(text)
    if error:
        return _fail(error)

    error = _check_adjacency(tokens)
    if error:
        return _fail(error)

    return FormulaParseResult(
        success=True,
        tokens=tokens,
        normalized_expression=serialize_formula_tokens(tokens),
    )


def validate_formula_expression(
    expression: str | None,
    *,
    known_metric_codes: Iterable[str] | None = None,
    disallow_metric_codes: Iterable[str] | None = None,
) -> FormulaValidationResult:
    """Parse ``expression`` and check the metric codes it references.

    ``known_metric_codes`` restricts references to a catalog and
    ``disallow_metric_codes`` rejects specific codes (the metric being
    edited). Both are compared case-insensitively. On a code failure the
    tokens and referenced codes are still returned for display.
    """

    parsed = parse_formula_expression(expression)
    if not parsed.success:
        return FormulaValidationResult(success=False, error=parsed.error)

    # dict keeps first-occurrence order.
    metric_codes = list(
        dict.fromkeys(token.value for token in parsed.tokens if token.type == "metric")
    )

    if known_metric_codes is not None:
        known = {str(code).lower() for code in known_metric_codes}
        unknown = next((code for code in metric_codes if code not in known), None)
        if unknown:
            return FormulaValidationResult(
                success=False,
                tokens=parsed.tokens,
                metric_codes=metric_codes,
                error=f'Unknown metric code "{unknown}" in formula.',
            )

    if disallow_metric_codes is not None:
        disallowed = {str(code).lower() for code in disallow_metric_codes}
        blocked = next((code for code in metric_codes if code in disallowed), None)
        if blocked:
            return FormulaValidationResult(
                success=False,
                tokens=parsed.tokens,
                metric_codes=metric_codes,
                error=f'Metric "{blocked}" cannot reference itself.',
            )

    return FormulaValidationResult(
        success=True,
        tokens=parsed.tokens,
        metric_codes=metric_codes,
        normalized_expression=parsed.normalized_expression,
    )
