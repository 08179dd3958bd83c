# Re-export all models for convenient imports
from app.models.user import User
from app.models.project import Project, ProjectStatus
from app.models.conversation import (
    ConversationMessage,
    ConversationSummary,
    ActiveProjectSummary,
    MessageRole,
)

__all__ = [
    "User",
    "Project",
    "ProjectStatus",
    "ConversationMessage",
    "ConversationSummary",
    "ActiveProjectSummary",
    "MessageRole",
]
