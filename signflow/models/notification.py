from sqlalchemy import Column, String, Boolean, DateTime, Text
from signflow.db import Base
from signflow.utils.datetime import utc_now
import uuid


class Notification(Base):
    """In-app copy of a message sent to a workflow participant."""
    __tablename__ = "notifications"

    # use a callable for default so new UUIDs are generated per-row
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_address = Column(String, nullable=False, index=True)
    convention_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)  # URL or route path
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
