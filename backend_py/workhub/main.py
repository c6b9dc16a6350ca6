from __future__ import annotations
import logging
import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import CLIENT_URL, LOG_LEVEL, SEED_OWNER_EMAIL, SEED_OWNER_PASSWORD, TYPING_TIMEOUT_MS
from .db import Base, engine, SessionLocal, wait_for_db

# Import models so SQLAlchemy knows about all tables before create_all()
from . import models  # noqa: F401
from .models import Role, User
from .auth_utils import hash_password
from .realtime import RealtimeHub
from .services.stores import (
    JWTCredentialVerifier,
    SqlMembershipStore,
    SqlMessageStore,
    SqlNotificationStore,
    SqlUserStore,
)
from .sockets import sio, bind
from .routes import auth, channels, messages, notifications, presence

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("uvicorn.error")

app = FastAPI(title="WorkHub API (Python)")

notification_store = SqlNotificationStore()
hub = RealtimeHub(
    sio,
    verifier=JWTCredentialVerifier(),
    user_store=SqlUserStore(),
    membership_store=SqlMembershipStore(),
    message_store=SqlMessageStore(),
    notification_store=notification_store,
    typing_timeout_ms=TYPING_TIMEOUT_MS,
)
bind(sio, hub)
app.state.hub = hub
app.state.notification_store = notification_store


def _seed_owner(db):
    """Create the bootstrap OWNER account if configured and missing."""
    if not (SEED_OWNER_EMAIL and SEED_OWNER_PASSWORD):
        return
    if db.query(User).filter(User.email == SEED_OWNER_EMAIL).first():
        return
    db.add(User(
        email=SEED_OWNER_EMAIL,
        password=hash_password(SEED_OWNER_PASSWORD),
        first_name="WorkHub",
        last_name="Owner",
        role=Role.OWNER,
    ))
    db.commit()
    log.info("Seeded owner account %s", SEED_OWNER_EMAIL)


@app.on_event("startup")
async def on_startup():
    # Wait until the database is accepting connections (handles container race)
    try:
        log.info("Waiting for database to be ready...")
        wait_for_db(max_tries=60, delay_seconds=1.0)
        log.info("Database is ready. Creating tables if they don't exist...")
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        # Let Uvicorn crash early with a clear reason
        log.exception("Startup failed while preparing the database: %s", e)
        raise

    with SessionLocal() as db:
        _seed_owner(db)

    hub.start()
    log.info("Real-time hub started (typing timeout %d ms)", TYPING_TIMEOUT_MS)


@app.on_event("shutdown")
async def on_shutdown():
    await hub.stop()


app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL], allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
)

# Routes
app.include_router(auth.router,          prefix="/api", tags=["auth"])
app.include_router(channels.router,      prefix="/api", tags=["channels"])
app.include_router(messages.router,      prefix="/api", tags=["messages"])
app.include_router(notifications.router, prefix="/api", tags=["notifications"])
app.include_router(presence.router,      prefix="/api", tags=["presence"])


@app.get("/health")
def health():
    return {"status": "ok", "online": hub.get_online_users_count()}


# Socket.IO + FastAPI combined ASGI app
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)
