"""Predicate evaluation against an attribute group."""

from __future__ import annotations

from functools import singledispatch
from typing import Any

from taskrouter.errors import EvaluatorError, InternalError
from taskrouter.eval.parser import (
    AndNode,
    ComparisonNode,
    ConstantNode,
    Node,
    OrNode,
    parse,
)
from taskrouter.model.attributes import Attribute, AttributeGroup, AttributeType, AttributeValue


def evaluate(expression: str | Node, attributes: AttributeGroup) -> bool:
    """Evaluate predicate text (or a parsed tree) against ``attributes``."""
    node = parse(expression) if isinstance(expression, str) else expression
    return evaluate_node(node, attributes)


@singledispatch
def evaluate_node(node: Any, attributes: AttributeGroup) -> bool:
    raise InternalError(f"Unexpected predicate node {type(node).__name__}")


@evaluate_node.register
def _(node: AndNode, attributes: AttributeGroup) -> bool:
    for child in node.children:
        if not evaluate_node(child, attributes):
            return False
    return True


@evaluate_node.register
def _(node: OrNode, attributes: AttributeGroup) -> bool:
    for child in node.children:
        if evaluate_node(child, attributes):
            return True
    return False


@evaluate_node.register
def _(node: ConstantNode, attributes: AttributeGroup) -> bool:
    return node.value


@evaluate_node.register
def _(node: ComparisonNode, attributes: AttributeGroup) -> bool:
    matched = attributes.get(node.selector)
    operator = node.operator

    if not matched:
        # A missing attribute never satisfies a positive test
        if operator in ("==", ">", ">=", "<", "<="):
            _single_argument(node)
            return False
        if operator == "!=":
            _single_argument(node)
            return True
        if operator == "=in=":
            return False
        if operator == "=out=":
            return True
        raise EvaluatorError(f"Unsupported operator: {operator}")

    attr_type = matched[0].type

    if operator == "==":
        return _parse_argument(_single_argument(node), attr_type) in _values(matched)
    if operator == "!=":
        return _parse_argument(_single_argument(node), attr_type) not in _values(matched)
    if operator == ">":
        return _compare_single(node, matched) > 0
    if operator == ">=":
        return _compare_single(node, matched) >= 0
    if operator == "<":
        return _compare_single(node, matched) < 0
    if operator == "<=":
        return _compare_single(node, matched) <= 0
    if operator == "=in=":
        _single_attribute(node, matched)
        return matched[0].value in _parse_arguments(node.arguments, attr_type)
    if operator == "=out=":
        _single_attribute(node, matched)
        return matched[0].value not in _parse_arguments(node.arguments, attr_type)
    raise EvaluatorError(f"Unsupported operator: {operator}")


def _values(attributes: list[Attribute]) -> list[AttributeValue]:
    return [a.value for a in attributes]


def _parse_argument(argument: str, attr_type: AttributeType) -> AttributeValue:
    if attr_type is AttributeType.STRING:
        return argument
    if attr_type is AttributeType.DOUBLE:
        try:
            return float(argument)
        except ValueError as e:
            raise InternalError(f"Cannot parse '{argument}' as {attr_type}") from e
    if attr_type is AttributeType.BOOLEAN:
        return argument.lower() == "true"
    raise InternalError(f"Unexpected attribute type {attr_type}")


def _parse_arguments(arguments: tuple[str, ...], attr_type: AttributeType) -> list[AttributeValue]:
    return [_parse_argument(a, attr_type) for a in arguments]


def _single_argument(node: ComparisonNode) -> str:
    if len(node.arguments) != 1:
        raise EvaluatorError(
            f"Invalid arguments number for operator '{node.operator}'. "
            f"Expected 1 but found {len(node.arguments)}"
        )
    return node.arguments[0]


def _single_attribute(node: ComparisonNode, attributes: list[Attribute]) -> Attribute:
    if len(attributes) != 1:
        raise EvaluatorError(
            f"Invalid attributes number for operator '{node.operator}' on '{node.selector}'. "
            f"Expected no more than 1 but found {len(attributes)}"
        )
    return attributes[0]


def _compare_single(node: ComparisonNode, attributes: list[Attribute]) -> int:
    argument = _parse_argument(_single_argument(node), attributes[0].type)
    value = _single_attribute(node, attributes).value
    # str, float and bool all order naturally; bool as False < True
    if value < argument:  # type: ignore[operator]
        return -1
    if value > argument:  # type: ignore[operator]
        return 1
    return 0
