from fastapi import APIRouter
from app.api.v1.endpoints import generation, conversation, projects

api_router = APIRouter()

# Generation / modification pipeline (streaming and blocking)
api_router.include_router(generation.router)

# Conversation history and assembled context
api_router.include_router(conversation.router)

# Project URLs and per-user statistics
api_router.include_router(projects.router)
