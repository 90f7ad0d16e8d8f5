"""Bridge error taxonomy.

Handlers raise these; the session dispatcher turns them into error envelopes
so that no client mistake ever tears down a connection or the process.
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base exception for bridge domain errors.

    Keyword details are echoed back to the client in the error envelope.
    """

    code = "error"

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.details = details


class MissingFieldError(BridgeError):
    """Raised when a command lacks a required field."""

    code = "missing_field"

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Missing required field: {field_name}", field=field_name)


class InvalidRequestError(BridgeError):
    """Raised when a well-formed message has fields of the wrong shape."""

    code = "invalid_request"


class UnknownCommandError(BridgeError):
    """Raised for an unrecognised command type or relay action."""

    code = "unknown_command"


class NotFoundError(BridgeError):
    """Raised when a queried agent or channel does not exist."""

    code = "not_found"


class UnauthorizedError(BridgeError):
    """Raised when a session acts before authenticating."""

    code = "unauthorized"


class NotJoinedError(BridgeError):
    """Raised when a relay session sends to a channel it has not joined."""

    code = "not_joined"

    def __init__(self, channel: str) -> None:
        super().__init__("Not joined to channel", channel=channel)


class PolicyViolationError(BridgeError):
    """Raised when a send targets a channel that may not cross transports."""

    code = "policy_violation"

    def __init__(self, channel: str) -> None:
        super().__init__("Channel is not relayable to the network", channel=channel)
