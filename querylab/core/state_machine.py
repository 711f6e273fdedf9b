"""State machine for a single SQL execution request."""

from enum import Enum
from typing import Optional, List
from dataclasses import dataclass
from datetime import datetime


class ExecutionState(Enum):
    """Enumeration of execution retry states."""

    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class StateTransition:
    """Represents a state transition in an execution."""

    from_state: ExecutionState
    to_state: ExecutionState
    timestamp: datetime
    reason: Optional[str] = None
    attempt: int = 0

    def to_dict(self) -> dict:
        """Convert state transition to dictionary."""
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "attempt": self.attempt,
        }


class ExecutionStateMachine:
    """Tracks execution state and rejects invalid transitions."""

    VALID_TRANSITIONS = {
        ExecutionState.ATTEMPTING: {
            ExecutionState.SUCCEEDED,
            ExecutionState.RETRYING,
            ExecutionState.EXHAUSTED,
        },
        ExecutionState.RETRYING: {
            ExecutionState.ATTEMPTING,
        },
        ExecutionState.SUCCEEDED: set(),  # Terminal state
        ExecutionState.EXHAUSTED: set(),  # Terminal state
    }

    def __init__(self, initial_state: ExecutionState = ExecutionState.ATTEMPTING):
        """Initialize state machine with initial state."""
        self.current_state = initial_state
        self.attempt = 0
        self.transitions: List[StateTransition] = []

    def can_transition_to(self, target_state: ExecutionState) -> bool:
        """Check if transition to target state is valid."""
        valid_targets = self.VALID_TRANSITIONS.get(self.current_state, set())
        return target_state in valid_targets

    def transition_to(
        self,
        target_state: ExecutionState,
        reason: Optional[str] = None,
    ) -> None:
        """Transition to a new state.

        Entering ATTEMPTING from RETRYING advances the attempt counter.

        Args:
            target_state: The state to transition to
            reason: Optional reason for the transition

        Raises:
            ValueError: If transition is not valid
        """
        if not self.can_transition_to(target_state):
            raise ValueError(
                f"Invalid state transition from {self.current_state.value} "
                f"to {target_state.value}"
            )

        self.transitions.append(StateTransition(
            from_state=self.current_state,
            to_state=target_state,
            timestamp=datetime.now(),
            reason=reason,
            attempt=self.attempt,
        ))

        if target_state == ExecutionState.ATTEMPTING:
            self.attempt += 1

        self.current_state = target_state

    def is_terminal_state(self) -> bool:
        """Check if current state is terminal."""
        return not self.VALID_TRANSITIONS.get(self.current_state)

    def to_dict(self) -> dict:
        """Convert state machine to dictionary."""
        return {
            "current_state": self.current_state.value,
            "attempt": self.attempt,
            "transitions": [t.to_dict() for t in self.transitions],
        }
