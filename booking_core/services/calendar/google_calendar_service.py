from datetime import datetime, timezone
from typing import List, Optional
import logging

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from sqlalchemy.orm import Session

from booking_core.config.settings import get_settings
from booking_core.core.exceptions import CalendarSyncError
from booking_core.models.calendar_integration import CalendarIntegration
from booking_core.schemas.booking import BookingRecord
from booking_core.services.availability.availability_service import resolve_timezone
from booking_core.services.calendar.base import CalendarProvider, event_title, event_window
from booking_core.services.scheduling.time_window import TimeWindow
from booking_core.utils.encryption import decrypt_token, encrypt_token

settings = get_settings()

logger = logging.getLogger(__name__)


class GoogleCalendarProvider(CalendarProvider):
    provider_name = "google"
    SCOPES = ['https://www.googleapis.com/auth/calendar']
    TOKEN_URI = "https://oauth2.googleapis.com/token"

    def __init__(self, integration: CalendarIntegration, db: Session, service=None):
        super().__init__(integration, db)
        self._service = service

    @property
    def calendar_id(self) -> str:
        return super().calendar_id or 'primary'

    def get_valid_credentials(self) -> Credentials:
        """Get valid credentials, refreshing if necessary"""
        if self.token_needs_refresh():
            return self.refresh_access_token()
        return Credentials(
            token=decrypt_token(self.integration.access_token_encrypted),
            refresh_token=decrypt_token(self.integration.refresh_token_encrypted),
            token_uri=self.TOKEN_URI,
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            scopes=self.SCOPES,
        )

    def refresh_access_token(self) -> Credentials:
        """Refresh expired access token using refresh token"""
        credentials = Credentials(
            token=None,
            refresh_token=decrypt_token(self.integration.refresh_token_encrypted),
            token_uri=self.TOKEN_URI,
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            scopes=self.SCOPES,
        )
        try:
            credentials.refresh(Request())
        except Exception as e:
            raise CalendarSyncError(f"Google token refresh failed: {e}") from e

        self.integration.access_token_encrypted = encrypt_token(credentials.token)
        expiry = credentials.expiry
        if expiry is not None and expiry.tzinfo is None:
            # google-auth reports expiry as naive UTC
            expiry = expiry.replace(tzinfo=timezone.utc)
        self.integration.token_expires_at = expiry
        self.db.commit()
        logger.info(f"Refreshed Google token for integration {self.integration.id}")
        return credentials

    def service(self):
        if self._service is None:
            self._service = build('calendar', 'v3', credentials=self.get_valid_credentials(), cache_discovery=False)
        return self._service

    def get_busy_intervals(self, range_start: datetime, range_end: datetime) -> List[TimeWindow]:
        """Every non-cancelled event overlapping the range, recurring events expanded"""
        tz = resolve_timezone(self.integration.user.timezone if self.integration.user else None)
        busy = []
        page_token = None
        try:
            while True:
                response = self.service().events().list(
                    calendarId=self.calendar_id,
                    timeMin=range_start.isoformat(),
                    timeMax=range_end.isoformat(),
                    singleEvents=True,
                    orderBy='startTime',
                    pageToken=page_token,
                ).execute()

                for event in response.get('items', []):
                    if event.get('status') == 'cancelled':
                        continue
                    window = event_window(event.get('start', {}), event.get('end', {}), tz)
                    if window:
                        busy.append(window)

                page_token = response.get('nextPageToken')
                if not page_token:
                    break
        except HttpError as e:
            logger.error(f"Google Calendar API error for integration {self.integration.id}: {e}")
            raise CalendarSyncError(f"Failed to fetch Google events: {e}") from e

        logger.info(f"Found {len(busy)} Google busy intervals for user {self.integration.user_id}")
        return busy

    def create_external_event(self, booking: BookingRecord) -> Optional[str]:
        event = {
            'summary': event_title(booking),
            'description': f"Booking {booking.id}",
            'start': {'dateTime': booking.start_time.isoformat(), 'timeZone': booking.timezone},
            'end': {'dateTime': booking.end_time.isoformat(), 'timeZone': booking.timezone},
            'attendees': [{'email': booking.customer_email}],
        }
        try:
            created = self.service().events().insert(
                calendarId=self.calendar_id,
                body=event,
                sendUpdates='all',
            ).execute()
        except HttpError as e:
            logger.error(f"Failed to create Google event for booking {booking.id}: {e}")
            raise CalendarSyncError(f"Failed to create Google event: {e}") from e

        event_id = created.get('id')
        logger.info(f"Google Calendar event created for booking {booking.id}: {event_id}")
        return event_id
