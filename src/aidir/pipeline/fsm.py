"""Person lifecycle finite state machine.

Each run builds an FSM at the person's stored status and uses it to
check that a transition is legal before the store persists it. The FSM
never writes to the database itself.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class PersonLifecycleSM(StateMachine):
    """Four-state lifecycle of a person profile.

    States:
        pending  -- Created, never enriched.
        building -- An enrichment run holds the advisory lock.
        ready    -- Last run finished (possibly with soft-skipped stages).
        error    -- Last run hit a fatal condition; partial data retained.

    ``ready`` and ``error`` are not final: a refresh moves them back to
    ``building``.
    """

    pending = State("pending", initial=True, value="pending")
    building = State("building", value="building")
    ready = State("ready", value="ready")
    error = State("error", value="error")

    begin_build = pending.to(building) | ready.to(building) | error.to(building)
    complete_build = building.to(ready)
    fail_build = building.to(error)


def create_fsm(current_state: str) -> PersonLifecycleSM:
    """Create an FSM positioned at *current_state*.

    Args:
        current_state: One of 'pending', 'building', 'ready', 'error'.
    """
    return PersonLifecycleSM(start_value=current_state)
