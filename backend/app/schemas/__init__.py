# Pydantic schemas
from app.schemas.pipeline import (
    GenerateRequest,
    ModifyRequest,
    PipelineResponse,
    ConversationMessageSchema,
    ConversationSummarySchema,
    ConversationResponse,
    ConversationContextResponse,
    ClearConversationResponse,
    ProjectUrlsResponse,
    ProjectStatsResponse,
)
