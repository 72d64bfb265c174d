import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from forumfiles.core.database import Base


class FileShare(Base):
    __tablename__ = "file_shares"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    file_id = Column(String(36), ForeignKey("files.id"), nullable=False, index=True)
    shared_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    recipient_email = Column(String(255), nullable=False, index=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
