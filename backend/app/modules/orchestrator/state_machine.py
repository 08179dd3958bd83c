"""
State Machine for the generation/modification pipeline

    RESOLVING → MATERIALIZING → GENERATING | MODIFYING → PARSING → PERSISTING
              → PACKAGING → BUILDING → DEPLOYING → FINALIZING → DONE

FAILED is reachable from every non-terminal state and RESOLVING may end in
DUPLICATE_SHORT_CIRCUIT. A modification answered directly by the AST engine
skips PARSING; a failed build or deploy goes straight to FINALIZING so the
generated source is still recorded.

Every stage reports a StageResult:
- StageSuccess   the stage did its job
- StageDegraded  the stage fell back to a weaker path and the run continues
- StageFailure   fatal failures end the run, non-fatal ones only lose deployment
"""

from typing import Dict, Any, Optional, List, Set, Union
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque

from app.core.exceptions import InvalidPipelineTransitionError
from app.core.logging_config import logger


class PipelineState(str, Enum):
    """Pipeline workflow states"""
    RESOLVING = "resolving"
    MATERIALIZING = "materializing"
    GENERATING = "generating"
    MODIFYING = "modifying"
    PARSING = "parsing"
    PERSISTING = "persisting"
    PACKAGING = "packaging"
    BUILDING = "building"
    DEPLOYING = "deploying"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"
    DUPLICATE_SHORT_CIRCUIT = "duplicate_short_circuit"


TERMINAL_STATES = {PipelineState.DONE, PipelineState.FAILED, PipelineState.DUPLICATE_SHORT_CIRCUIT}

# Valid state transitions
PIPELINE_TRANSITIONS: Dict[PipelineState, Set[PipelineState]] = {
    PipelineState.RESOLVING: {PipelineState.MATERIALIZING, PipelineState.DUPLICATE_SHORT_CIRCUIT, PipelineState.FAILED},
    PipelineState.MATERIALIZING: {PipelineState.GENERATING, PipelineState.MODIFYING, PipelineState.FAILED},
    PipelineState.GENERATING: {PipelineState.PARSING, PipelineState.FAILED},
    PipelineState.MODIFYING: {PipelineState.PARSING, PipelineState.PERSISTING, PipelineState.FAILED},
    PipelineState.PARSING: {PipelineState.PERSISTING, PipelineState.FAILED},
    PipelineState.PERSISTING: {PipelineState.PACKAGING, PipelineState.FAILED},
    PipelineState.PACKAGING: {PipelineState.BUILDING, PipelineState.FAILED},
    PipelineState.BUILDING: {PipelineState.DEPLOYING, PipelineState.FINALIZING, PipelineState.FAILED},
    PipelineState.DEPLOYING: {PipelineState.FINALIZING, PipelineState.FAILED},
    PipelineState.FINALIZING: {PipelineState.DONE, PipelineState.FAILED},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
    PipelineState.DUPLICATE_SHORT_CIRCUIT: set(),
}


@dataclass
class StateTransition:
    """Record of a state transition"""
    from_state: str
    to_state: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state,
            "to": self.to_state,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


@dataclass
class StageSuccess:
    stage: PipelineState
    data: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="success", init=False)


@dataclass
class StageDegraded:
    stage: PipelineState
    warning: str
    data: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="degraded", init=False)


@dataclass
class StageFailure:
    stage: PipelineState
    error: Exception
    fatal: bool = True
    kind: str = field(default="failure", init=False)


StageResult = Union[StageSuccess, StageDegraded, StageFailure]


class PipelineStateMachine:
    """
    Tracks the state of one pipeline run.

    Invalid transitions raise instead of being ignored: a stage trying to move
    somewhere it cannot is a programming error.
    """

    def __init__(self, name: str, initial_state: PipelineState = PipelineState.RESOLVING, max_history: int = 50):
        self.name = name
        self._state = initial_state
        self._history: deque = deque(maxlen=max_history)

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def can_transition(self, to_state: PipelineState) -> bool:
        return to_state in PIPELINE_TRANSITIONS.get(self._state, set())

    def transition(self, to_state: PipelineState, reason: Optional[str] = None) -> StateTransition:
        if not self.can_transition(to_state):
            raise InvalidPipelineTransitionError(self._state.value, to_state.value)

        record = StateTransition(from_state=self._state.value, to_state=to_state.value, reason=reason)
        self._history.append(record)
        self._state = to_state

        logger.info(
            f"[{self.name}] State transition: {record.from_state} → {record.to_state}"
            + (f" ({reason})" if reason else "")
        )
        return record

    def get_history(self, limit: int = 20) -> List[StateTransition]:
        return list(self._history)[-limit:]
