from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.core.database import Base
from app.core.types import GUID, generate_uuid


class ProjectStatus(str, enum.Enum):
    """Project status"""
    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    BUILDING = "building"
    READY = "ready"
    FAILED = "failed"
    ARCHIVED = "archived"


class Project(Base):
    """
    Authoritative record of one logical end-user project.

    A project outlives the sessions that touch it; ``last_session_id`` links
    the most recent one. ``archive_url`` is the source snapshot that the next
    modification starts from.
    """
    __tablename__ = "projects"

    __table_args__ = (
        Index('ix_projects_user_id', 'user_id'),
        Index('ix_projects_last_session_id', 'last_session_id'),
        Index('ix_projects_build_id', 'build_id'),
        Index('ix_projects_updated_at', 'updated_at'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # Stored as plain string so new statuses need no enum migration
    status = Column(String(50), default=ProjectStatus.PENDING.value, nullable=False)

    archive_url = Column(Text, nullable=True)  # Source ZIP, base for modifications
    download_url = Column(Text, nullable=True)  # Built artifact
    deployment_url = Column(Text, nullable=True)  # Public preview
    build_id = Column(String(64), nullable=True)

    last_session_id = Column(String(100), nullable=True)
    last_message_at = Column(DateTime, nullable=True)
    message_count = Column(Integer, default=0, nullable=False)

    framework = Column(String(50), default="react")
    template = Column(String(100), default="vite-react-ts")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="projects")

    @property
    def is_fully_deployed(self) -> bool:
        return (
            self.status == ProjectStatus.READY.value
            and bool(self.archive_url and self.download_url and self.deployment_url)
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "archive_url": self.archive_url,
            "download_url": self.download_url,
            "deployment_url": self.deployment_url,
            "build_id": self.build_id,
            "last_session_id": self.last_session_id,
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.name} ({self.status})>"
