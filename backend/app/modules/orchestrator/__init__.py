"""
Orchestration Module - generation / modification pipeline

Components:
- PipelineStateMachine: validated stage transitions and tagged stage results
- ProgressChannel: queue of progress events relayed as SSE
- WorkspaceCleanup: exactly-once workspace removal with a timeout fallback
- PipelineOrchestrator: runs one request end to end

Usage:
    from app.modules.orchestrator import PipelineOrchestrator, PipelineRequest

    channel, task = orchestrator.start(PipelineRequest(prompt="Build a bakery website"))
    async for event in channel.events():
        yield event.to_sse()
"""

from app.modules.orchestrator.state_machine import (
    PipelineState,
    PipelineStateMachine,
    PIPELINE_TRANSITIONS,
    TERMINAL_STATES,
    StateTransition,
    StageResult,
    StageSuccess,
    StageDegraded,
    StageFailure,
)

from app.modules.orchestrator.events import (
    EventType,
    PipelineEvent,
    ProgressChannel,
)

from app.modules.orchestrator.cleanup import WorkspaceCleanup

from app.modules.orchestrator.pipeline_orchestrator import (
    PipelineOrchestrator,
    PipelineRequest,
    PipelineOutcome,
    PipelineRun,
)

__all__ = [
    # State Machine
    "PipelineState",
    "PipelineStateMachine",
    "PIPELINE_TRANSITIONS",
    "TERMINAL_STATES",
    "StateTransition",
    "StageResult",
    "StageSuccess",
    "StageDegraded",
    "StageFailure",

    # Events
    "EventType",
    "PipelineEvent",
    "ProgressChannel",

    # Cleanup
    "WorkspaceCleanup",

    # Orchestrator
    "PipelineOrchestrator",
    "PipelineRequest",
    "PipelineOutcome",
    "PipelineRun",
]
