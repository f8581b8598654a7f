"""
Tests for the static transition table and its pure lookups.

Includes property-based tests that hold for every pair of stages.
"""

import pytest
from hypothesis import given, strategies as st

from models.status import (
    ENGAGEMENT_STATES,
    INITIAL_STATE,
    TERMINAL_STATES,
    PipelineState,
)
from models.transitions import (
    TRANSITION_TABLE,
    TransitionTableError,
    validate_transition_table,
)
from utils.state_machine import can_transition, is_terminal, next_states

S = PipelineState
states = st.sampled_from(list(PipelineState))


class TestPipelineStateEnum:
    """Tests for the stage enum itself."""

    def test_thirty_stages(self):
        assert len(PipelineState) == 30

    def test_values_are_names(self):
        for state in PipelineState:
            assert state.value == state.name

    def test_str_comparison(self):
        assert S.CV_SUBMITTED == "CV_SUBMITTED"

    def test_initial_and_terminal(self):
        assert INITIAL_STATE is S.JD_RECEIVED
        assert TERMINAL_STATES == {S.CLOSED_PLACED, S.CLOSED_DROPPED}

    def test_engagement_region(self):
        assert ENGAGEMENT_STATES <= set(PipelineState)
        assert ENGAGEMENT_STATES.isdisjoint(TERMINAL_STATES)


class TestTransitionTableShape:
    """Tests for the encoded topology."""

    def test_every_state_has_entry(self):
        assert set(TRANSITION_TABLE) == set(PipelineState)

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            TRANSITION_TABLE[S.JD_RECEIVED] = (S.CLOSED_PLACED,)

    def test_retry_loops(self):
        assert TRANSITION_TABLE[S.NOT_REACHED] == (S.CALLING,)
        assert S.INTERVIEW_ROUNDS in TRANSITION_TABLE[S.INTERVIEW_ROUNDS]

    def test_cv_rejection_loops_back_to_sourcing(self):
        assert TRANSITION_TABLE[S.CV_REJECTED] == (S.SOURCING,)

    def test_negative_outcomes_close_dropped(self):
        for state in (
            S.NOT_INTERESTED,
            S.CANDIDATE_NOT_INTERESTED,
            S.REJECTED,
            S.NEGOTIATION_NEGATIVE,
            S.NOT_POSITIVE,
        ):
            assert TRANSITION_TABLE[state] == (S.CLOSED_DROPPED,)

    def test_placement_paths(self):
        assert TRANSITION_TABLE[S.INVOICE_RAISED] == (S.PAYMENT_FOLLOWUP, S.CLOSED_PLACED)
        assert TRANSITION_TABLE[S.PAYMENT_FOLLOWUP] == (S.CLOSED_PLACED,)

    def test_successor_order_is_preserved(self):
        assert next_states(S.CALLING) == (S.CONSENTED, S.NOT_INTERESTED, S.NOT_REACHED)


class TestTransitionTableProperties:
    """Property tests over all stage pairs."""

    @given(from_state=states, to_state=states)
    def test_can_transition_matches_table(self, from_state, to_state):
        """can_transition(a, b) holds exactly when b is listed under a."""
        assert can_transition(from_state, to_state) == (to_state in TRANSITION_TABLE[from_state])

    @given(state=states)
    def test_terminal_iff_no_successors(self, state):
        assert is_terminal(state) == (len(next_states(state)) == 0)
        assert is_terminal(state) == (state in TERMINAL_STATES)

    @given(state=states)
    def test_successors_are_known_states(self, state):
        for successor in next_states(state):
            assert successor in TRANSITION_TABLE

    @given(terminal=st.sampled_from(sorted(TERMINAL_STATES)), target=states)
    def test_nothing_leaves_a_terminal_state(self, terminal, target):
        assert not can_transition(terminal, target)


class TestValidateTransitionTable:
    """Tests for the import-time table validation."""

    def test_shipped_table_is_valid(self):
        validate_transition_table(TRANSITION_TABLE)

    def test_missing_state_rejected(self):
        table = dict(TRANSITION_TABLE)
        del table[S.PAYMENT_FOLLOWUP]
        with pytest.raises(TransitionTableError, match="PAYMENT_FOLLOWUP"):
            validate_transition_table(table)

    def test_terminal_with_successor_rejected(self):
        table = dict(TRANSITION_TABLE)
        table[S.CLOSED_DROPPED] = (S.SOURCING,)
        with pytest.raises(TransitionTableError, match="terminal state CLOSED_DROPPED"):
            validate_transition_table(table)

    def test_dead_end_rejected(self):
        table = dict(TRANSITION_TABLE)
        table[S.DOCUMENTATION] = ()
        with pytest.raises(TransitionTableError, match="non-terminal state DOCUMENTATION"):
            validate_transition_table(table)

    def test_duplicate_successor_rejected(self):
        table = dict(TRANSITION_TABLE)
        table[S.CALLING] = (S.CONSENTED, S.CONSENTED, S.NOT_INTERESTED, S.NOT_REACHED)
        with pytest.raises(TransitionTableError, match="more than once"):
            validate_transition_table(table)

    def test_unreachable_state_rejected(self):
        table = dict(TRANSITION_TABLE)
        # PAYMENT_FOLLOWUP is only reachable from INVOICE_RAISED
        table[S.INVOICE_RAISED] = (S.CLOSED_PLACED,)
        with pytest.raises(TransitionTableError, match="unreachable states: PAYMENT_FOLLOWUP"):
            validate_transition_table(table)
