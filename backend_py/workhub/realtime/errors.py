"""Failure taxonomy of the real-time layer.

Each exception carries a ``message`` that is safe to send back to the
client in an ``error`` event. Only ``AuthenticationFailure`` ends a
connection attempt; the others are reported to the acting connection
and the operation is dropped.
"""

from __future__ import annotations


class RealtimeError(Exception):
    """Base class for every failure surfaced to a socket client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationFailure(RealtimeError):
    """Missing, malformed or expired credential, or an inactive account."""


class AuthorizationFailure(RealtimeError):
    """Membership or ownership check failed."""


class ValidationFailure(RealtimeError):
    """Inbound payload is missing a field or has empty content."""


class CollaboratorFailure(RealtimeError):
    """A persistence or lookup call raised."""


class InvariantViolation(RealtimeError):
    """In-memory bookkeeping is inconsistent; the connection must be closed."""
