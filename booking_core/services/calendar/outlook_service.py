from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging

import msal
import requests
from sqlalchemy.orm import Session

from booking_core.config.settings import get_settings
from booking_core.core.exceptions import CalendarSyncError
from booking_core.models.calendar_integration import CalendarIntegration
from booking_core.schemas.booking import BookingRecord
from booking_core.services.availability.availability_service import resolve_timezone
from booking_core.services.calendar.base import CalendarProvider, event_title, event_window
from booking_core.services.scheduling.time_window import TimeWindow
from booking_core.utils.encryption import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)
settings = get_settings()


class OutlookCalendarProvider(CalendarProvider):
    provider_name = "microsoft"
    SCOPES = ['Calendars.ReadWrite']
    AUTHORITY = 'https://login.microsoftonline.com/common'
    GRAPH_ENDPOINT = 'https://graph.microsoft.com/v1.0'
    PAGE_SIZE = 500

    def __init__(self, integration: CalendarIntegration, db: Session, http=None):
        super().__init__(integration, db)
        self.http = http or requests
        self.timeout = settings.CALENDAR_REQUEST_TIMEOUT_SECONDS

    def _calendar_path(self) -> str:
        calendar_id = self.calendar_id
        return f"/me/calendars/{calendar_id}" if calendar_id else "/me"

    def _get_valid_access_token(self) -> str:
        """Get valid access token, refreshing if necessary"""
        if self.token_needs_refresh():
            self.refresh_access_token()
        return decrypt_token(self.integration.access_token_encrypted)

    def refresh_access_token(self):
        """Refresh expired access token"""
        app = msal.ConfidentialClientApplication(
            settings.MICROSOFT_CLIENT_ID,
            authority=self.AUTHORITY,
            client_credential=settings.MICROSOFT_CLIENT_SECRET
        )

        result = app.acquire_token_by_refresh_token(
            refresh_token=decrypt_token(self.integration.refresh_token_encrypted),
            scopes=self.SCOPES
        )

        if "error" in result:
            raise CalendarSyncError(f"Token refresh failed: {result.get('error_description')}")

        self.integration.access_token_encrypted = encrypt_token(result['access_token'])
        if result.get('refresh_token'):
            self.integration.refresh_token_encrypted = encrypt_token(result['refresh_token'])
        self.integration.token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=result['expires_in'])
        self.db.commit()
        logger.info(f"Refreshed Microsoft token for integration {self.integration.id}")

    def _headers(self) -> dict:
        return {
            'Authorization': f'Bearer {self._get_valid_access_token()}',
            'Content-Type': 'application/json',
        }

    def get_busy_intervals(self, range_start: datetime, range_end: datetime) -> List[TimeWindow]:
        """calendarView expands recurring events into their occurrences"""
        tz = resolve_timezone(self.integration.user.timezone if self.integration.user else None)
        headers = self._headers()
        url = f"{self.GRAPH_ENDPOINT}{self._calendar_path()}/calendarView"
        params = {
            'startDateTime': range_start.astimezone(timezone.utc).isoformat(),
            'endDateTime': range_end.astimezone(timezone.utc).isoformat(),
            '$select': 'start,end,isCancelled,showAs,isAllDay',
            '$top': self.PAGE_SIZE,
        }

        busy = []
        while url:
            try:
                response = self.http.get(url, headers=headers, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                raise CalendarSyncError(f"Microsoft Graph request failed: {e}") from e

            if response.status_code != 200:
                logger.error(f"Microsoft Graph API error: {response.text}")
                raise CalendarSyncError(f"Failed to fetch calendar events: {response.status_code}")

            payload = response.json()
            for event in payload.get('value', []):
                if event.get('isCancelled'):
                    continue
                window = event_window(event.get('start') or {}, event.get('end') or {}, tz)
                if window:
                    busy.append(window)

            # nextLink already carries the query string
            url = payload.get('@odata.nextLink')
            params = None

        logger.info(f"Found {len(busy)} Microsoft busy intervals for user {self.integration.user_id}")
        return busy

    def create_external_event(self, booking: BookingRecord) -> Optional[str]:
        event = {
            'subject': event_title(booking),
            'body': {
                'contentType': 'text',
                'content': f"Booking {booking.id}",
            },
            'start': {
                'dateTime': booking.start_time.astimezone(timezone.utc).replace(tzinfo=None).isoformat(),
                'timeZone': 'UTC'
            },
            'end': {
                'dateTime': booking.end_time.astimezone(timezone.utc).replace(tzinfo=None).isoformat(),
                'timeZone': 'UTC'
            },
            'attendees': [
                {
                    'emailAddress': {'address': booking.customer_email, 'name': booking.customer_name},
                    'type': 'required'
                }
            ],
        }

        try:
            response = self.http.post(
                f"{self.GRAPH_ENDPOINT}{self._calendar_path()}/events",
                headers=self._headers(),
                json=event,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CalendarSyncError(f"Microsoft Graph request failed: {e}") from e

        if response.status_code not in [200, 201]:
            raise CalendarSyncError(f"Failed to create event: {response.text}")

        event_id = response.json().get('id')
        logger.info(f"Microsoft Calendar event created for booking {booking.id}: {event_id}")
        return event_id
