"""
Notification dispatch adapter
Hands user-facing messages to the notification dispatch API, which owns
channel selection (email, SMS, push)
"""

import logging
from typing import Optional

import httpx

from ..config import (
    NOTIFICATION_DISPATCH_TOKEN,
    NOTIFICATION_DISPATCH_URL,
    NOTIFICATION_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """The dispatch API rejected or did not receive a notification"""


async def notify(user_id: int, message: str, metadata: Optional[dict] = None) -> bool:
    """
    Send one notification to a user

    Returns:
        True when dispatched, False when no dispatch endpoint is configured

    Raises:
        NotificationDeliveryError: If the dispatch API call fails
    """
    if not NOTIFICATION_DISPATCH_URL:
        logger.info(f"ℹ️ Notification dispatch not configured, skipping message to user {user_id}")
        return False

    headers = {}
    if NOTIFICATION_DISPATCH_TOKEN:
        headers["Authorization"] = f"Bearer {NOTIFICATION_DISPATCH_TOKEN}"

    try:
        async with httpx.AsyncClient(timeout=NOTIFICATION_TIMEOUT_SECONDS) as client:
            response = await client.post(
                NOTIFICATION_DISPATCH_URL,
                headers=headers,
                json={"user_id": user_id, "message": message, "metadata": metadata or {}},
            )
    except httpx.HTTPError as e:
        raise NotificationDeliveryError(f"Notification dispatch unreachable: {e}") from e

    if response.status_code >= 400:
        logger.error(f"❌ Notification dispatch failed for user {user_id}: {response.text}")
        raise NotificationDeliveryError(f"Dispatch failed with status {response.status_code}")

    logger.info(f"📨 Notification sent to user {user_id}")
    return True
