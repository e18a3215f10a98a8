import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping


class TransitionError(ValueError):
    """Raised when a transition is not in the machine's table"""

    def __init__(self, subject: str, from_state: Enum, to_state: Enum):
        super().__init__(
            f"Invalid transition for {subject}: "
            f"{from_state.value} -> {to_state.value}",
        )
        self.subject = subject
        self.from_state = from_state
        self.to_state = to_state


class StateMachine:
    """
    Table-driven state machine.

    Holds the allowed transitions for one kind of entity and validates
    state changes against them. The entity itself stores its state; this
    class only decides whether a move is legal and logs it.
    """

    def __init__(
        self,
        transitions: Mapping[Enum, Iterable[Enum]],
        initial_states: Iterable[Enum],
        name: str = "state_machine",
    ):
        self.logger = logging.getLogger(__name__)
        self.name = name
        self._transitions: Dict[Enum, FrozenSet[Enum]] = {
            state: frozenset(targets) for state, targets in transitions.items()
        }
        self._initial_states = frozenset(initial_states)

        self.logger.debug(
            f"State machine '{name}' initialized with "
            f"{len(self._transitions)} states",
        )

    @property
    def initial_states(self) -> FrozenSet[Enum]:
        return self._initial_states

    def allowed_targets(self, state: Enum) -> FrozenSet[Enum]:
        """States reachable from `state` in one step"""
        return self._transitions.get(state, frozenset())

    def can_transition(self, from_state: Enum, to_state: Enum) -> bool:
        return to_state in self.allowed_targets(from_state)

    def is_final(self, state: Enum) -> bool:
        """True if nothing is reachable from `state`"""
        return not self.allowed_targets(state)

    def validate(
        self,
        subject: str,
        from_state: Enum,
        to_state: Enum,
        reason: str = "",
    ) -> None:
        """
        Check a transition and log it.

        Raises:
            TransitionError: If the table does not allow the move
        """
        if not self.can_transition(from_state, to_state):
            raise TransitionError(subject, from_state, to_state)

        log_msg = f"{subject}: {from_state.value} -> {to_state.value}"
        if reason:
            log_msg += f" ({reason})"
        self.logger.info(log_msg)

    def get_status_info(self) -> Dict:
        """Get the transition table for debugging/monitoring"""
        return {
            "name": self.name,
            "initial_states": sorted(s.value for s in self._initial_states),
            "transitions": {
                state.value: sorted(t.value for t in targets)
                for state, targets in self._transitions.items()
            },
        }
