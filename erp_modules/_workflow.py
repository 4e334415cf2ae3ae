"""
erp_modules._workflow
=====================

Responsibility:
    Workflow primitives shared by the sales and procurement state machines:
    frozen ``Guard`` / ``Transition`` / ``Workflow`` declarations and the
    lookup that turns an illegal action into ``InvalidStateTransitionError``.

Architecture:
    Module layer (erp_modules).  Pure data plus lookups -- no I/O.  Each
    module declares its own graph in ``<module>/workflows.py``; services
    call ``Workflow.require`` before every status write.

Invariants enforced:
    - ``initial_state`` and every transition endpoint are members of
      ``states`` (checked at construction).
    - A status change is only ever written after ``require`` has found a
      matching transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from erp_kernel.exceptions import InvalidStateTransitionError


@dataclass(frozen=True)
class Guard:
    """
    A condition that must hold for a transition.

    Contract:
        Metadata only.  The service that performs the transition evaluates
        the named condition (stock availability, credit limit, ...).
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """An edge in the workflow graph."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    touches_stock: bool = False  # if True, the transition moves inventory


def _state(value: str | Enum) -> str:
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class Workflow:
    """
    A state machine definition.

    Contract:
        Frozen declaration of states and transitions.  Self-loop
        transitions (``from_state == to_state``) declare actions that are
        legal in a state without changing it, such as edits.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} is not a state")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.from_state}->{t.to_state} "
                    f"references an unknown state"
                )

    def find(
        self,
        from_state: str | Enum,
        action: str,
        to_state: str | Enum | None = None,
    ) -> Transition | None:
        """First transition for ``action`` out of ``from_state`` (optionally into ``to_state``)."""
        source = _state(from_state)
        target = None if to_state is None else _state(to_state)
        for t in self.transitions:
            if t.from_state != source or t.action != action:
                continue
            if target is None or t.to_state == target:
                return t
        return None

    def require(
        self,
        entity_id: str,
        from_state: str | Enum,
        action: str,
        to_state: str | Enum | None = None,
    ) -> Transition:
        """
        Return the transition or raise.

        Raises:
            InvalidStateTransitionError: ``action`` is not legal from
                ``from_state`` (or cannot reach ``to_state``).
        """
        transition = self.find(from_state, action, to_state)
        if transition is None:
            described = action if to_state is None else f"{action} to '{_state(to_state)}'"
            raise InvalidStateTransitionError(
                self.name, entity_id, _state(from_state), described
            )
        return transition

    def allowed_actions(self, from_state: str | Enum) -> tuple[str, ...]:
        source = _state(from_state)
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == source and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)

    def is_terminal(self, state: str | Enum) -> bool:
        return _state(state) in self.terminal_states
