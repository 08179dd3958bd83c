# API endpoints
from . import generation, conversation, projects, health

__all__ = ["generation", "conversation", "projects", "health"]
