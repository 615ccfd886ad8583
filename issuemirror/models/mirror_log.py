"""Mirror log model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from datetime import datetime
import enum
from issuemirror.models.base import Base


class MirrorLogStatus(str, enum.Enum):
    """Mirror operation outcome"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    DRIFT = "drift"


class MirrorAction(str, enum.Enum):
    """Mirror operation kind"""
    CREATE = "create"
    UPDATE = "update"
    PUBLISH = "publish"
    REFRESH = "refresh"
    SNAPSHOT = "snapshot"


class MirrorLog(Base):
    """Log of publish / refresh operations"""

    __tablename__ = "mirror_logs"

    id = Column(Integer, primary_key=True, index=True)

    canonical_id = Column(String(50), nullable=False, index=True)
    external_id = Column(Integer, nullable=True)

    status = Column(Enum(MirrorLogStatus), nullable=False)
    action = Column(Enum(MirrorAction), nullable=False)
    message = Column(Text, nullable=True)
    details = Column(Text, nullable=True)  # JSON

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<MirrorLog(canonical_id={self.canonical_id}, action={self.action}, status={self.status})>"
