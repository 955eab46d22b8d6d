"""Binding maintenance, plan resolution, agent state machine and dispatch."""

from taskrouter.engine.agent_state import StateUpdate, check_settable, update_state
from taskrouter.engine.bindings import BindingMaintainer, capabilities_equal
from taskrouter.engine.callbacks import (
    CallbackNotifier,
    HttpCallbackNotifier,
    LoggingCallbackNotifier,
)
from taskrouter.engine.dispatcher import TaskDispatcher
from taskrouter.engine.plans import resolve, validate_plan
from taskrouter.engine.timer import RouteTimer, TimeoutScheduler

__all__ = [
    "BindingMaintainer",
    "CallbackNotifier",
    "HttpCallbackNotifier",
    "LoggingCallbackNotifier",
    "RouteTimer",
    "StateUpdate",
    "TaskDispatcher",
    "TimeoutScheduler",
    "capabilities_equal",
    "check_settable",
    "resolve",
    "update_state",
    "validate_plan",
]
