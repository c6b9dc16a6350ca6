"""Persist a notification and push it to the recipient's live sockets."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


async def notify_user(
    hub,
    notification_store,
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Store a notification for ``user_id`` and deliver it if they are online.

    The stored row is returned whether or not any connection took it; an
    offline user sees it the next time they list notifications.
    """
    notification = await notification_store.create(user_id, type, title, message, data)
    delivered = await hub.send_notification(user_id, notification)
    logger.debug("Notification %s delivered to %d connection(s)", notification["id"], delivered)
    return notification
