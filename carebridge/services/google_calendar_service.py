"""
Google Calendar Service
Mirrors shift blocks into a specialist's connected Google Calendar
"""
import base64
import hashlib
import logging
from datetime import datetime, timedelta

import httpx
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ..config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, SECRET_KEY
from ..models_calendar import CalendarIntegration
from ..shared.timeutils import utcnow

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
REQUEST_TIMEOUT = 15.0


class CalendarSyncError(Exception):
    """A calendar mirror call failed; the outbox records it and retries"""


def get_cipher() -> Fernet:
    """Fernet cipher keyed from SECRET_KEY, used for OAuth tokens at rest"""
    key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest())
    return Fernet(key)


def encrypt_token(token: str) -> str:
    return get_cipher().encrypt(token.encode()).decode()


def decrypt_token(token: str) -> str:
    return get_cipher().decrypt(token.encode()).decode()


async def get_valid_access_token(integration: CalendarIntegration, db: Session) -> str:
    """
    Get a valid access token, refreshing if it expires within 5 minutes

    Raises:
        CalendarSyncError: If the stored token cannot be decrypted or refreshed
    """
    try:
        if integration.token_expires_at > utcnow() + timedelta(minutes=5):
            return decrypt_token(integration.access_token)

        logger.info(f"🔄 Google Calendar token expired for integration {integration.id}, refreshing...")
        refresh_token = decrypt_token(integration.refresh_token)
    except InvalidToken as e:
        raise CalendarSyncError("Stored calendar token could not be decrypted") from e

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    if response.status_code != 200:
        logger.error(f"❌ Token refresh failed: {response.text}")
        raise CalendarSyncError(f"Token refresh failed with status {response.status_code}")

    tokens = response.json()
    new_access_token = tokens.get("access_token")
    if not new_access_token:
        raise CalendarSyncError("No access token in refresh response")

    integration.access_token = encrypt_token(new_access_token)
    integration.token_expires_at = utcnow() + timedelta(seconds=tokens.get("expires_in", 3600))
    db.commit()

    logger.info("✅ Google Calendar token refreshed successfully")
    return new_access_token


def build_shift_event(title: str, starts_at: datetime, ends_at: datetime, location: str = None) -> dict:
    event_data = {
        "summary": f"Shift: {title}",
        "description": "Clinic shift booked through CareBridge. Patient bookings are blocked for this time.",
        "start": {"dateTime": starts_at.isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": ends_at.isoformat(), "timeZone": "UTC"},
        "transparency": "opaque",
    }
    if location:
        event_data["location"] = location
    return event_data


async def create_shift_event(integration: CalendarIntegration, event_data: dict, db: Session) -> str:
    """
    Create the calendar event for a shift block

    Returns:
        The Google Calendar event ID

    Raises:
        CalendarSyncError: On any provider failure
    """
    access_token = await get_valid_access_token(integration, db)
    calendar_id = integration.calendar_id or "primary"

    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            response = await client.post(
                f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id}/events",
                headers={"Authorization": f"Bearer {access_token}"},
                json=event_data,
            )
    except httpx.HTTPError as e:
        raise CalendarSyncError(f"Calendar provider unreachable: {e}") from e

    if response.status_code not in (200, 201):
        logger.error(f"❌ Failed to create calendar event: {response.text}")
        raise CalendarSyncError(f"Event create failed with status {response.status_code}")

    event_id = response.json().get("id")
    if not event_id:
        raise CalendarSyncError("Calendar provider returned no event id")

    logger.info(f"✅ Google Calendar event created: {event_id}")
    return event_id


async def delete_shift_event(integration: CalendarIntegration, event_id: str, db: Session) -> None:
    """
    Delete a mirrored shift event. An event that is already gone counts as deleted.

    Raises:
        CalendarSyncError: On any other provider failure
    """
    access_token = await get_valid_access_token(integration, db)
    calendar_id = integration.calendar_id or "primary"

    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            response = await client.delete(
                f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id}/events/{event_id}",
                headers={"Authorization": f"Bearer {access_token}"},
            )
    except httpx.HTTPError as e:
        raise CalendarSyncError(f"Calendar provider unreachable: {e}") from e

    if response.status_code in (404, 410):
        logger.info(f"ℹ️ Google Calendar event {event_id} already removed")
        return
    if response.status_code not in (200, 204):
        logger.error(f"❌ Failed to delete calendar event: {response.text}")
        raise CalendarSyncError(f"Event delete failed with status {response.status_code}")

    logger.info(f"✅ Google Calendar event deleted: {event_id}")
