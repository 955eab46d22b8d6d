"""Agent availability state machine."""

from __future__ import annotations

from dataclasses import dataclass

from taskrouter.errors import BadValueError, InternalError, InvalidStateError
from taskrouter.model.entities import AgentState

# Only the dispatcher sets busy; only availability sweeps set unavailable
NOT_SETTABLE_STATES = frozenset({AgentState.BUSY, AgentState.UNAVAILABLE})


@dataclass(frozen=True)
class StateUpdate:
    """Result of one transition; ``became_ready`` triggers a dispatch."""

    new_state: AgentState
    became_ready: bool = False


def check_settable(requested: AgentState | None) -> None:
    """Reject states a caller may not request directly."""
    if requested in NOT_SETTABLE_STATES:
        raise BadValueError(f"Setting agent state to '{requested}' not allowed")


def update_state(old: AgentState, requested: AgentState | None) -> StateUpdate:
    """
    Compute the transition ``old -> requested``.

    Raises:
        InvalidStateError: the agent is busy; it leaves busy only when its
            task completes.
        InternalError: ``old`` is not a known state.
    """
    if requested is None or requested is old:
        return StateUpdate(old)

    if old is AgentState.BUSY:
        raise InvalidStateError(
            "Changing state of a busy agent is not allowed. Complete the corresponding task."
        )
    if old in (AgentState.OFFLINE, AgentState.UNAVAILABLE):
        return StateUpdate(requested, became_ready=requested is AgentState.READY)
    if old is AgentState.READY:
        return StateUpdate(requested)
    raise InternalError(f"Unexpected agent state: {old}")
