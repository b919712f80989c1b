"""
Canonical workflow types (``supply_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Used by every module
(procurement, payables, credit) so that Guard, Transition, and Workflow
are defined once, and so that "which action is legal from which status"
is answered by data rather than scattered ``if`` chains.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* At most one transition per (from_state, action) pair.

Failure modes
-------------
* ``ValueError`` at module load if a workflow definition is malformed.
* ``InvalidTransitionError`` from ``Workflow.require`` when a document
  attempts an action that is not declared for its current status.
"""

from __future__ import annotations

from dataclasses import dataclass

from supply_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the owning service evaluates the condition.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``system_only=True`` marks transitions driven by other documents
    (e.g. a PO moving to completed because a GRN completed) rather than
    by a direct user action.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    system_only: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise ValueError(
                        f"Workflow {self.name}: transition {t.action!r} "
                        f"references unknown state {state!r}"
                    )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    f"has outgoing transition {t.action!r}"
                )
            pair = (t.from_state, t.action)
            if pair in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition {pair!r}"
                )
            seen.add(pair)

    def find(self, from_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` from ``from_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def require(
        self,
        document_id: object,
        from_state: str,
        action: str,
    ) -> Transition:
        """Return the transition or raise InvalidTransitionError."""
        transition = self.find(from_state, action)
        if transition is None:
            raise InvalidTransitionError(self.name, document_id, from_state, action)
        return transition

    def actions_from(self, state: str) -> tuple[str, ...]:
        """Actions available from ``state``."""
        return tuple(t.action for t in self.transitions if t.from_state == state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
