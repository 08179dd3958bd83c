"""
Generation and modification endpoints

The streaming variants relay the run's ProgressChannel as Server-Sent
Events. The run itself is a background task: a client that goes away stops
receiving events but never stops the pipeline.
"""

from typing import AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.api.deps import get_orchestrator
from app.core.logging_config import logger
from app.modules.orchestrator.events import ProgressChannel
from app.modules.orchestrator.pipeline_orchestrator import PipelineOrchestrator, PipelineRequest
from app.schemas.pipeline import GenerateRequest, ModifyRequest, PipelineResponse

router = APIRouter(tags=["Pipeline"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def _pipeline_request(body: GenerateRequest, is_modification: bool) -> PipelineRequest:
    return PipelineRequest(
        prompt=body.prompt,
        session_id=body.session_id,
        user_id=body.user_id,
        project_id=getattr(body, "project_id", None),
        scope=body.scope,
        is_modification=is_modification,
    )


def _event_stream(channel: ProgressChannel) -> StreamingResponse:
    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for event in channel.events():
                yield event.to_sse()
        finally:
            if not channel.finished:
                logger.info(f"Client left stream for build {channel.build_id}, run continues")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/generate/stream")
async def generate_stream(
    body: GenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Generate a new project, streaming progress as SSE"""
    channel, _ = orchestrator.start(_pipeline_request(body, is_modification=False))
    return _event_stream(channel)


@router.post("/generate", response_model=PipelineResponse)
async def generate(
    body: GenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Generate a new project and return the final result"""
    outcome = await orchestrator.execute(_pipeline_request(body, is_modification=False))
    return outcome.to_dict()


@router.post("/modify/stream")
async def modify_stream(
    body: ModifyRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Modify an existing project, streaming progress as SSE"""
    channel, _ = orchestrator.start(_pipeline_request(body, is_modification=True))
    return _event_stream(channel)


@router.post("/modify", response_model=PipelineResponse)
async def modify(
    body: ModifyRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Modify an existing project and return the final result"""
    outcome = await orchestrator.execute(_pipeline_request(body, is_modification=True))
    return outcome.to_dict()
