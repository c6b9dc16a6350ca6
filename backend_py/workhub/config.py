"""Runtime configuration.

Every setting is read once from the environment at import time. Defaults
are tuned for local development: a SQLite file database, permissive
secrets and a frontend served from ``localhost:3000``. Production
deployments must at least override ``DATABASE_URL``, ``JWT_SECRET`` and
``JWT_REFRESH_SECRET``.
"""

from __future__ import annotations

import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./workhub.db")

JWT_SECRET = os.getenv("JWT_SECRET", "change-this-in-production")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "change-this-refresh-secret")
JWT_ISSUER = os.getenv("JWT_ISSUER", "WorkHub Management Suite")
JWT_EXPIRES_SECONDS = int(os.getenv("JWT_EXPIRES_SECONDS", str(15 * 60)))
JWT_REFRESH_EXPIRES_SECONDS = int(os.getenv("JWT_REFRESH_EXPIRES_SECONDS", str(7 * 24 * 60 * 60)))

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")

# Socket.IO heartbeat, in seconds
SOCKET_PING_TIMEOUT = int(os.getenv("SOCKET_PING_TIMEOUT", "60"))
SOCKET_PING_INTERVAL = int(os.getenv("SOCKET_PING_INTERVAL", "25"))

# A typing indicator with no refresh for this long is dropped
TYPING_TIMEOUT_MS = int(os.getenv("TYPING_TIMEOUT_MS", "5000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SEED_OWNER_EMAIL = os.getenv("SEED_OWNER_EMAIL")
SEED_OWNER_PASSWORD = os.getenv("SEED_OWNER_PASSWORD")
