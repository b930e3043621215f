"""Exception hierarchy for the conversation orchestrator."""

from __future__ import annotations


class WorkchatError(Exception):
    """Base class for all workchat errors."""


class NoToolsAvailableError(WorkchatError):
    """Raised when a request arrives with an empty tool catalog."""

    def __init__(self, message: str = "No tools available. Please check your credentials.") -> None:
        super().__init__(message)


class ModelGatewayError(WorkchatError):
    """The model gateway failed; fatal for the current request."""


class ToolBindingError(ModelGatewayError):
    """The model gateway cannot be bound to a tool catalog."""


class StoreError(WorkchatError):
    """A conversation store read or write failed."""


class TurnCancelledError(WorkchatError):
    """The caller cancelled an in-flight turn."""
