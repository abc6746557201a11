"""Tests for the person lifecycle state machine."""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from aidir.pipeline.fsm import PersonLifecycleSM, create_fsm


class TestLifecycleTransitions:
    """pending -> building -> {ready, error}, and refresh back to building."""

    def test_initial_state_is_pending(self):
        fsm = PersonLifecycleSM()
        assert fsm.current_state_value == "pending"

    def test_happy_path(self):
        fsm = create_fsm("pending")
        fsm.begin_build()
        assert fsm.current_state_value == "building"
        fsm.complete_build()
        assert fsm.current_state_value == "ready"

    def test_failure_path(self):
        fsm = create_fsm("building")
        fsm.fail_build()
        assert fsm.current_state_value == "error"

    @pytest.mark.parametrize("start", ["ready", "error"])
    def test_refresh_from_terminal_states(self, start):
        fsm = create_fsm(start)
        fsm.begin_build()
        assert fsm.current_state_value == "building"

    def test_building_cannot_begin_again(self):
        fsm = create_fsm("building")
        with pytest.raises(TransitionNotAllowed):
            fsm.begin_build()

    @pytest.mark.parametrize("start", ["pending", "ready", "error"])
    def test_complete_requires_building(self, start):
        fsm = create_fsm(start)
        with pytest.raises(TransitionNotAllowed):
            fsm.complete_build()
