"""
Pydantic schemas for the generation / modification endpoints
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any


class GenerateRequest(BaseModel):
    """Request to generate a new project"""
    prompt: str = Field(..., min_length=1, description="What to build")
    session_id: Optional[str] = Field(None, description="Client session; generated when missing")
    user_id: Optional[str] = Field(None, description="Owner; a user is created when missing or unknown")
    scope: Optional[str] = Field(None, description="Conversation scope; defaults to the project")


class ModifyRequest(GenerateRequest):
    """Request to change an existing project"""
    project_id: Optional[str] = Field(None, description="Project to modify; resolved from the session when missing")


class PipelineResponse(BaseModel):
    """Final result of a non-streaming run"""
    success: bool
    state: str
    build_id: str
    session_id: str
    project_id: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    file_count: int = 0
    files_created: List[str] = Field(default_factory=list)
    files_modified: List[str] = Field(default_factory=list)
    preview_url: Optional[str] = None
    download_url: Optional[str] = None
    archive_url: Optional[str] = None
    duplicate: bool = False
    deployment_failed: bool = False
    approach: Optional[str] = None
    parse_strategy: Optional[str] = None
    summary: Optional[str] = None
    message: str = ""
    error: Optional[Dict[str, Any]] = None
    duration_ms: float = 0


class ConversationMessageSchema(BaseModel):
    id: str
    role: str
    content: str
    file_modifications: List[str] = Field(default_factory=list)
    approach: Optional[str] = None
    success: Optional[bool] = None
    created_at: Optional[str] = None


class ConversationSummarySchema(BaseModel):
    summary: str
    message_count: int
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class ConversationResponse(BaseModel):
    scope: str
    messages: List[ConversationMessageSchema] = Field(default_factory=list)
    summary: Optional[ConversationSummarySchema] = None
    total_messages: int = 0


class ConversationContextResponse(BaseModel):
    scope: str
    session_id: Optional[str] = None
    context: str


class ClearConversationResponse(BaseModel):
    scope: str
    removed: int


class ProjectUrlsResponse(BaseModel):
    project_id: str
    name: Optional[str] = None
    status: str
    archive_url: Optional[str] = None
    download_url: Optional[str] = None
    deployment_url: Optional[str] = None
    build_id: Optional[str] = None
    last_session_id: Optional[str] = None


class ProjectStatsResponse(BaseModel):
    user_id: str
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    latest_project: Optional[Dict[str, Any]] = None
