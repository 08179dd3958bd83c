"""
Request dependencies

Services are built once in the application lifespan and stored on
``app.state``; endpoints receive them through these accessors so tests can
swap any of them on the app instance.
"""

from fastapi import Request

from app.modules.orchestrator.pipeline_orchestrator import PipelineOrchestrator
from app.services.conversation_context import ConversationContextAssembler
from app.services.project_repository import ProjectRepository
from app.services.session_cache import SessionCacheService


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator


def get_context_assembler(request: Request) -> ConversationContextAssembler:
    return request.app.state.context_assembler


def get_project_repository(request: Request) -> ProjectRepository:
    return request.app.state.projects


def get_session_cache(request: Request) -> SessionCacheService:
    return request.app.state.session_cache
