"""Tests for the client lifecycle state machine."""

from __future__ import annotations

import pytest

from apns_resend.core.state_machine import (
    ClientState,
    StateMachine,
    StateTransitionError,
)


class TestClientState:
    """Test cases for ClientState enum."""

    def test_client_state_values(self) -> None:
        """Test that all expected client states are defined."""
        expected_states = {"IDLE", "ACTIVE", "RECOVERING", "FAILED", "SHUTDOWN"}
        actual_states = {state.name for state in ClientState}
        assert actual_states == expected_states


class TestStateMachine:
    """Test cases for the client state machine."""

    def test_starts_idle(self) -> None:
        """Test the machine starts in IDLE."""
        machine = StateMachine()

        assert machine.current_state is ClientState.IDLE
        assert machine.history == [ClientState.IDLE]

    def test_recovery_cycle(self) -> None:
        """Test ACTIVE and RECOVERING alternate and history is kept."""
        machine = StateMachine()

        for state in (
            ClientState.ACTIVE,
            ClientState.RECOVERING,
            ClientState.ACTIVE,
            ClientState.SHUTDOWN,
        ):
            machine.transition_to(state)

        assert machine.history == [
            ClientState.IDLE,
            ClientState.ACTIVE,
            ClientState.RECOVERING,
            ClientState.ACTIVE,
            ClientState.SHUTDOWN,
        ]

    def test_history_is_a_copy(self) -> None:
        """Test callers cannot rewrite the recorded history."""
        machine = StateMachine()

        machine.history.append(ClientState.FAILED)

        assert machine.history == [ClientState.IDLE]

    @pytest.mark.parametrize(
        ("path", "target"),
        [
            ((), ClientState.RECOVERING),
            ((ClientState.ACTIVE,), ClientState.FAILED),
            ((ClientState.ACTIVE, ClientState.RECOVERING, ClientState.FAILED), ClientState.ACTIVE),
            ((ClientState.FAILED,), ClientState.RECOVERING),
            ((ClientState.SHUTDOWN,), ClientState.ACTIVE),
        ],
    )
    def test_invalid_transitions(
        self, path: tuple[ClientState, ...], target: ClientState
    ) -> None:
        """Test disallowed transitions raise StateTransitionError and change nothing."""
        machine = StateMachine()
        for state in path:
            machine.transition_to(state)
        before = machine.history

        with pytest.raises(StateTransitionError) as exc_info:
            machine.transition_to(target)

        assert exc_info.value.to_state is target
        assert exc_info.value.from_state is machine.current_state
        assert machine.history == before

    def test_failed_can_shut_down(self) -> None:
        """Test FAILED still allows shutdown."""
        machine = StateMachine()
        machine.transition_to(ClientState.FAILED)

        machine.transition_to(ClientState.SHUTDOWN)

        assert machine.current_state is ClientState.SHUTDOWN
