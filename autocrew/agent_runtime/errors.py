"""Domain exceptions.

Stores, managers and services raise these; routers translate them into
HTTP status codes.  Nothing below the router layer raises ``HTTPException``.
"""

from __future__ import annotations

# -- Lookup ------------------------------------------------------------------


class UnitNotFoundError(LookupError):
    """Raised when a unit of work does not exist."""


class WorkItemNotFoundError(LookupError):
    """Raised when a work item does not exist."""


class ExecutionNotFoundError(LookupError):
    """Raised when an execution does not exist."""


class DuplicateUnitError(ValueError):
    """Raised when a unit with the given ID already exists."""


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed from the current status."""


# -- Dispatch ----------------------------------------------------------------


class ShuttingDownError(RuntimeError):
    """Raised when attempting to start an execution during shutdown."""


class ActorBusyError(RuntimeError):
    """Raised by explicit triggers when the actor already has a running execution."""


class UnitDisabledError(ValueError):
    """Raised when triggering a unit that is not active."""


# -- Provider ----------------------------------------------------------------


class ProviderError(RuntimeError):
    """The agent provider failed or reported an error result."""


# -- Tool bridge -------------------------------------------------------------


class ToolBridgeError(RuntimeError):
    """Base class for tool process bridge failures."""


class ToolSpawnError(ToolBridgeError):
    """The tool server could not be started or failed its handshake."""


class MissingCredentialsError(ToolBridgeError):
    """The tool server requires credentials the owner has not provided."""


class ToolCallError(ToolBridgeError):
    """A request failed: timeout, JSON-RPC error response, or transport error."""


class ToolProcessExited(ToolCallError):  # noqa: N818
    """The tool process exited while requests were outstanding."""
