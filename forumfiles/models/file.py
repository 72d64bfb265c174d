import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from forumfiles.core.database import Base

DESCRIPTION_TEXT = "text"
DESCRIPTION_STRUCTURED = "structured"


class File(Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    object_name = Column(String(500), nullable=False)
    filename = Column(String(255), nullable=False, index=True)
    description = Column(Text, default="")
    description_kind = Column(String(20), default=DESCRIPTION_TEXT, nullable=False)
    size = Column(Integer, nullable=False)
    content_type = Column(String(100))
    sha256 = Column(String(64), nullable=False, index=True)
    download_count = Column(Integer, default=0, nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    storage_purged_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    owner = relationship("User", lazy="raise")
    links = relationship("PublicLink", back_populates="file", lazy="raise")
