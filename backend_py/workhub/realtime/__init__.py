"""In-process real-time core: connections, presence, typing and message fan-out."""

from .errors import (  # noqa: F401
    AuthenticationFailure,
    AuthorizationFailure,
    CollaboratorFailure,
    InvariantViolation,
    RealtimeError,
    ValidationFailure,
)
from .hub import RealtimeHub  # noqa: F401
from .registry import Identity  # noqa: F401
