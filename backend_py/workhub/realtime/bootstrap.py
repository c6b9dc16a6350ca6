"""Connection-time authentication.

A socket is only accepted once its bearer token verifies and the user it
names is still active. The resolved ``Identity`` is fixed for the life of
the connection; there is no re-authentication mid-connection.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from .errors import AuthenticationFailure
from .registry import Identity

logger = logging.getLogger(__name__)


def extract_token(auth: Any, environ: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Find the bearer token in the Socket.IO handshake.

    Looks at the ``auth`` payload first, then the ``token`` query
    parameter, then an ``Authorization: Bearer`` header.
    """
    if isinstance(auth, dict) and auth.get("token"):
        return str(auth["token"])
    environ = environ or {}
    query = parse_qs(environ.get("QUERY_STRING", ""))
    if query.get("token"):
        return query["token"][0]
    header = environ.get("HTTP_AUTHORIZATION", "")
    if header.startswith("Bearer "):
        return header.split(" ", 1)[1]
    return None


class SessionBootstrap:

    def __init__(self, verifier, user_store) -> None:
        self.verifier = verifier
        self.user_store = user_store

    async def authenticate(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthenticationFailure("Authentication required")

        claims = self.verifier.verify(token)
        if not claims or not claims.get("sub"):
            raise AuthenticationFailure("Invalid token")

        try:
            identity = await self.user_store.find_active_by_id(str(claims["sub"]))
        except Exception as exc:
            logger.exception("Socket authentication error")
            raise AuthenticationFailure("Authentication failed") from exc

        if identity is None:
            raise AuthenticationFailure("User not found or inactive")
        return identity
