"""State machine for the resend coordinator."""

from __future__ import annotations

from enum import Enum, auto
from typing import Final


class ClientState(Enum):
    """Connection lifecycle states of a push client."""

    IDLE = auto()
    ACTIVE = auto()
    RECOVERING = auto()
    FAILED = auto()
    SHUTDOWN = auto()


class StateTransitionError(Exception):
    """Exception raised when a state transition is not allowed."""

    def __init__(
        self,
        message: str,
        from_state: ClientState,
        to_state: ClientState,
    ) -> None:
        """Initialize state transition error.

        Args:
            message: Error message
            from_state: Source state of failed transition
            to_state: Target state of failed transition
        """
        super().__init__(message)
        self.from_state: ClientState = from_state
        self.to_state: ClientState = to_state


# Allowed target states for each source state
CLIENT_TRANSITIONS: Final[dict[ClientState, frozenset[ClientState]]] = {
    ClientState.IDLE: frozenset({ClientState.ACTIVE, ClientState.FAILED, ClientState.SHUTDOWN}),
    ClientState.ACTIVE: frozenset({ClientState.RECOVERING, ClientState.SHUTDOWN}),
    ClientState.RECOVERING: frozenset(
        {ClientState.ACTIVE, ClientState.FAILED, ClientState.SHUTDOWN}
    ),
    ClientState.FAILED: frozenset({ClientState.SHUTDOWN}),
    ClientState.SHUTDOWN: frozenset(),
}


class StateMachine:
    """Client lifecycle state with the history of every state entered.

    Only the coordinator's event loop drives transitions, so no locking is
    needed.
    """

    def __init__(self) -> None:
        self._history: list[ClientState] = [ClientState.IDLE]

    @property
    def current_state(self) -> ClientState:
        """Get current state of the machine."""
        return self._history[-1]

    @property
    def history(self) -> list[ClientState]:
        """States entered so far, in chronological order."""
        return self._history.copy()

    def transition_to(self, to_state: ClientState) -> None:
        """Transition to the specified state.

        Args:
            to_state: Target state

        Raises:
            StateTransitionError: If transition is not allowed
        """
        current_state = self.current_state
        if to_state not in CLIENT_TRANSITIONS[current_state]:
            raise StateTransitionError(
                f"Cannot transition from {current_state.name} to {to_state.name}",
                from_state=current_state,
                to_state=to_state,
            )
        self._history.append(to_state)
