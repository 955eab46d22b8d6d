"""Predicate parsing and evaluation."""

from taskrouter.eval.evaluator import evaluate, evaluate_node
from taskrouter.eval.parser import (
    AndNode,
    ComparisonNode,
    ConstantNode,
    Node,
    OrNode,
    parse,
    validate,
)

__all__ = [
    "AndNode",
    "ComparisonNode",
    "ConstantNode",
    "Node",
    "OrNode",
    "evaluate",
    "evaluate_node",
    "parse",
    "validate",
]
