from app.services.session_cache import SessionCacheService, SessionRecord, TTLClass
from app.services.project_repository import ProjectRepository, ConversationRepository
from app.services.project_resolver import ProjectIdentityResolver

# External platforms
from app.services.workspace import WorkspaceManager
from app.services.storage_service import ObjectStorageService
from app.services.build_service import BuildPlatformClient
from app.services.modification_engine import ModificationEngineClient

# Generation helpers
from app.services.response_parser import GenerationResponseParser
from app.services.conversation_context import ConversationContextAssembler

__all__ = [
    # Core services
    "SessionCacheService",
    "SessionRecord",
    "TTLClass",
    "ProjectRepository",
    "ConversationRepository",
    "ProjectIdentityResolver",
    # External platforms
    "WorkspaceManager",
    "ObjectStorageService",
    "BuildPlatformClient",
    "ModificationEngineClient",
    # Generation helpers
    "GenerationResponseParser",
    "ConversationContextAssembler",
]
