"""
Conversation models - rolling message window and the single growing summary
Used for: context assembly for the generation engine, history display
"""

from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, JSON, Index, UniqueConstraint
from datetime import datetime
import enum

from app.core.database import Base
from app.core.types import GUID, generate_uuid


class MessageRole(str, enum.Enum):
    """Message sender role"""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(Base):
    """
    One message in a conversation scope.

    Only the most recent messages of a scope stay in this table; older ones
    are folded into ConversationSummary and deleted.
    """
    __tablename__ = "conversation_messages"

    __table_args__ = (
        Index('ix_conversation_messages_scope_created', 'scope', 'created_at'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    scope = Column(String(255), nullable=False)
    project_id = Column(GUID, nullable=True)

    role = Column(String(50), nullable=False)
    content = Column(Text, nullable=False)

    file_modifications = Column(JSON, nullable=True)  # ["src/App.tsx", ...]
    approach = Column(String(50), nullable=True)  # FULL_FILE, TARGETED_NODES, ...
    success = Column(Boolean, nullable=True)
    extra_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ConversationMessage {self.role}: {self.content[:50]}...>"


class ConversationSummary(Base):
    """The single growing summary of a scope; message_count only grows"""
    __tablename__ = "conversation_summaries"

    __table_args__ = (
        UniqueConstraint('scope', name='uq_conversation_summaries_scope'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    scope = Column(String(255), nullable=False)
    summary = Column(Text, nullable=False)
    message_count = Column(Integer, default=0, nullable=False)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ActiveProjectSummary(Base):
    """
    Latest project summary produced by a pipeline run.

    Used as the modification base when neither the cache nor an explicit
    project points at an archive.
    """
    __tablename__ = "project_summaries"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    project_id = Column(GUID, nullable=True)
    summary = Column(Text, nullable=False)
    original_prompt = Column(Text, nullable=True)
    archive_url = Column(Text, nullable=True)
    build_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_used_at = Column(DateTime, default=datetime.utcnow)
