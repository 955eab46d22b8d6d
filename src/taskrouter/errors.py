"""Error kinds raised by the routing core."""

from __future__ import annotations


class RouterError(Exception):
    """Base class for every error surfaced by taskrouter."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadValueError(RouterError):
    """Caller supplied a disallowed value."""

    kind = "bad_value"


class ExpressionError(BadValueError):
    """Predicate text could not be parsed or validated."""

    kind = "expression"

    def __init__(self, message: str, expression: str, position: int | None = None) -> None:
        if position is not None:
            message = f"{message} at position {position} in '{expression}'"
        super().__init__(message)
        self.expression = expression
        self.position = position


class InvalidStateError(RouterError):
    """Operation not permitted in the entity's current state."""

    kind = "invalid_state"


class EvaluatorError(RouterError):
    """Operator/operand mismatch while evaluating a predicate."""

    kind = "evaluator"


class NotFoundError(RouterError):
    """Referenced entity does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, ref: object) -> None:
        super().__init__(f"{entity} {ref} not found")
        self.entity = entity
        self.ref = ref


class InternalError(RouterError):
    """Invariant violation or malformed stored data."""

    kind = "internal"
