"""Expose API routers for FastAPI.

Each module defines a ``router`` object which is registered in
``workhub.main`` under the ``/api`` prefix.
"""

from . import auth  # noqa: F401
from . import channels  # noqa: F401
from . import messages  # noqa: F401
from . import notifications  # noqa: F401
from . import presence  # noqa: F401
