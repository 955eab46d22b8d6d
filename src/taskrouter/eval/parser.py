"""
Predicate Parser

Parses the RSQL-like predicate grammar used by queues and plan rules:

    expression  := and_expr ((',' | 'or') and_expr)*
    and_expr    := constraint ((';' | 'and') constraint)*
    constraint  := '(' expression ')' | comparison | 'true' | 'false'
    comparison  := selector operator arguments
    arguments   := value | '(' value (',' value)* ')'

Operators: ``==  !=  =gt= >  =ge= >=  =lt= <  =le= <=  =in=  =out=``.
Values are bare words or single/double-quoted strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Final

from taskrouter.errors import ExpressionError

# Operator aliases normalised to one symbol
OPERATORS: Final[dict[str, str]] = {
    "==": "==",
    "!=": "!=",
    "=gt=": ">",
    ">": ">",
    "=ge=": ">=",
    ">=": ">=",
    "=lt=": "<",
    "<": "<",
    "=le=": "<=",
    "<=": "<=",
    "=in=": "=in=",
    "=out=": "=out=",
}

SINGLE_ARGUMENT_OPERATORS: Final = frozenset({"==", "!=", ">", ">=", "<", "<="})

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<semi>;)
    |(?P<comma>,)
    |(?P<op>=[a-z]*=|!=|>=|<=|>|<)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<word>[^\s'"();,=!<>]+)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class AndNode:
    children: tuple[Node, ...]


@dataclass(frozen=True)
class OrNode:
    children: tuple[Node, ...]


@dataclass(frozen=True)
class ComparisonNode:
    selector: str
    operator: str
    arguments: tuple[str, ...]

    def __str__(self) -> str:
        if len(self.arguments) == 1:
            return f"{self.selector}{self.operator}{self.arguments[0]}"
        return f"{self.selector}{self.operator}({','.join(self.arguments)})"


@dataclass(frozen=True)
class ConstantNode:
    value: bool


Node = AndNode | OrNode | ComparisonNode | ConstantNode


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if match is None:
            raise ExpressionError("Unexpected character", expression, position)
        kind = match.lastgroup or ""
        if kind != "ws":
            text = match.group()
            if kind == "string":
                text = re.sub(r"\\(.)", r"\1", text[1:-1])
            tokens.append(_Token(kind, text, position))
        position = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over the token list."""

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = _tokenize(expression)
        self.index = 0

    def _peek(self) -> _Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self, expected: str) -> _Token:
        token = self._peek()
        if token is None:
            raise ExpressionError(f"Expected {expected} but input ended", self.expression)
        self.index += 1
        return token

    def _error(self, message: str, token: _Token | None) -> ExpressionError:
        position = token.position if token else len(self.expression)
        return ExpressionError(message, self.expression, position)

    def _is_keyword(self, token: _Token | None, keyword: str) -> bool:
        return token is not None and token.kind == "word" and token.text.lower() == keyword

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError("Empty predicate", self.expression)
        node = self._parse_or()
        token = self._peek()
        if token is not None:
            raise self._error(f"Unexpected '{token.text}'", token)
        return node

    def _parse_or(self) -> Node:
        children = [self._parse_and()]
        while True:
            token = self._peek()
            if token is not None and (token.kind == "comma" or self._is_keyword(token, "or")):
                self.index += 1
                children.append(self._parse_and())
            else:
                break
        return children[0] if len(children) == 1 else OrNode(tuple(children))

    def _parse_and(self) -> Node:
        children = [self._parse_constraint()]
        while True:
            token = self._peek()
            if token is not None and (token.kind == "semi" or self._is_keyword(token, "and")):
                self.index += 1
                children.append(self._parse_constraint())
            else:
                break
        return children[0] if len(children) == 1 else AndNode(tuple(children))

    def _parse_constraint(self) -> Node:
        token = self._next("a constraint")
        if token.kind == "lparen":
            node = self._parse_or()
            closing = self._next("')'")
            if closing.kind != "rparen":
                raise self._error(f"Expected ')' but found '{closing.text}'", closing)
            return node
        if token.kind not in ("word", "string"):
            raise self._error(f"Expected selector but found '{token.text}'", token)

        operator = self._peek()
        if operator is None or operator.kind != "op":
            if token.kind == "word" and token.text.lower() in ("true", "false"):
                return ConstantNode(token.text.lower() == "true")
            raise self._error(f"Expected operator after '{token.text}'", operator)
        self.index += 1
        if operator.text not in OPERATORS:
            raise self._error(f"Unsupported operator '{operator.text}'", operator)

        return ComparisonNode(
            selector=token.text,
            operator=OPERATORS[operator.text],
            arguments=self._parse_arguments(),
        )

    def _parse_arguments(self) -> tuple[str, ...]:
        token = self._next("an argument")
        if token.kind != "lparen":
            return (self._value(token),)
        values = [self._value(self._next("an argument"))]
        while True:
            token = self._next("',' or ')'")
            if token.kind == "rparen":
                return tuple(values)
            if token.kind != "comma":
                raise self._error(f"Expected ',' or ')' but found '{token.text}'", token)
            values.append(self._value(self._next("an argument")))

    def _value(self, token: _Token) -> str:
        if token.kind not in ("word", "string"):
            raise self._error(f"Expected argument but found '{token.text}'", token)
        return token.text


@lru_cache(maxsize=1024)
def parse(expression: str) -> Node:
    """Parse predicate text into an immutable node tree."""
    return _Parser(expression).parse()


def validate(expression: str) -> Node:
    """Parse and check argument arity of every comparison."""
    node = parse(expression)
    _check_arity(node, expression)
    return node


def _check_arity(node: Node, expression: str) -> None:
    if isinstance(node, (AndNode, OrNode)):
        for child in node.children:
            _check_arity(child, expression)
    elif isinstance(node, ComparisonNode):
        if node.operator in SINGLE_ARGUMENT_OPERATORS and len(node.arguments) != 1:
            raise ExpressionError(
                f"Operator '{node.operator}' in '{node}' expects 1 argument "
                f"but found {len(node.arguments)}",
                expression,
            )
