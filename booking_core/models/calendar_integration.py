from sqlalchemy import Column, String, Boolean, LargeBinary, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
import uuid

from booking_core.models.base import Base, UTCDateTime, utcnow


class CalendarIntegration(Base):
    __tablename__ = "calendar_integrations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = Column(String(20), nullable=False)  # 'google', 'microsoft'
    is_active = Column(Boolean, default=True)
    is_primary = Column(Boolean, default=True)

    # OAuth tokens, Fernet-encrypted
    access_token_encrypted = Column(LargeBinary)
    refresh_token_encrypted = Column(LargeBinary)
    token_expires_at = Column(UTCDateTime)

    # Provider-specific config, e.g. {"selected_calendar_id": "primary"}
    provider_config = Column(JSON, default=dict)

    last_sync_at = Column(UTCDateTime)
    last_sync_status = Column(String(20))  # 'success', 'failed'

    created_at = Column(UTCDateTime, default=utcnow)

    user = relationship("User")
