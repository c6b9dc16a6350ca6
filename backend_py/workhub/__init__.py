"""Backend package for the WorkHub management suite.

This package exposes the ASGI application via ``workhub.main.asgi_app``
which combines a FastAPI instance and a Socket.IO server into a single
ASGI app. The real-time core lives in ``workhub.realtime``; the HTTP
endpoints for authentication, channels, messages, notifications and
presence live in ``workhub.routes``.

Run it from within the ``backend_py`` directory with::

    uvicorn workhub.main:asgi_app
"""
