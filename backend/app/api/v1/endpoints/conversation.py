from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_context_assembler
from app.core.config import settings
from app.services.conversation_context import ConversationContextAssembler
from app.schemas.pipeline import (
    ConversationResponse,
    ConversationContextResponse,
    ClearConversationResponse,
)

router = APIRouter(prefix="/conversation", tags=["Conversation"])


def resolve_scope(scope: Optional[str], project_id: Optional[str]) -> str:
    """Explicit scope wins, then the project's own scope, then the shared default"""
    if scope:
        return scope
    if project_id:
        return f"project:{project_id}"
    return settings.DEFAULT_CONVERSATION_SCOPE


@router.get("", response_model=ConversationResponse)
async def get_conversation(
    scope: Optional[str] = Query(None),
    project_id: Optional[str] = Query(None),
    assembler: ConversationContextAssembler = Depends(get_context_assembler),
):
    """Recent messages plus the rolling summary of older ones"""
    return await assembler.get_conversation(resolve_scope(scope, project_id))


@router.get("/context", response_model=ConversationContextResponse)
async def get_conversation_context(
    scope: Optional[str] = Query(None),
    project_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    assembler: ConversationContextAssembler = Depends(get_context_assembler),
):
    """The context block a modification request in this scope would receive"""
    resolved = resolve_scope(scope, project_id)
    context = await assembler.get_context(resolved, session_id)
    return {"scope": resolved, "session_id": session_id, "context": context}


@router.delete("", response_model=ClearConversationResponse)
async def clear_conversation(
    scope: Optional[str] = Query(None),
    project_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    assembler: ConversationContextAssembler = Depends(get_context_assembler),
):
    resolved = resolve_scope(scope, project_id)
    removed = await assembler.clear(resolved, session_id)
    return {"scope": resolved, "removed": removed}
