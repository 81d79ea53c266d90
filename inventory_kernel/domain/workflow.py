"""
Order workflows (``inventory_kernel.domain.workflow``).

Responsibility
--------------
Pure state machine definitions for purchase and sales order headers, and the
single function that resolves an action against the current status.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* Terminal states have no outgoing transitions; every action on a terminal
  order is rejected.
* Purchase:  DRAFT -> ORDERED -> RECEIVED, or -> CANCELLED from DRAFT/ORDERED.
* Sales:     DRAFT -> CONFIRMED -> FULFILLED, or -> CANCELLED from
  DRAFT/CONFIRMED.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from inventory_kernel.exceptions import InvalidOrderTransitionError


class PurchaseOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    ORDERED = "ORDERED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class SalesOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"


class OrderAction(str, Enum):
    """Operations a caller can request on an order header."""

    ADD_LINE = "add_line"
    PLACE = "place"
    CONFIRM = "confirm"
    RECEIVE = "receive"
    SHIP = "ship"
    COMPLETE = "complete"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition:
    """A legal action from one state.

    ``to_state`` equal to ``from_state`` marks an action that is allowed but
    does not move the header (adding lines, partial receipt or shipment).
    """
    from_state: str
    to_state: str
    action: OrderAction


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an order header.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """
    name: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t} references unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state} has a transition")

    def is_terminal(self, state: object) -> bool:
        return state_value(state) in self.terminal_states

    def resolve(self, current: str, action: OrderAction) -> str | None:
        """Target state for ``action`` from ``current``, or None if illegal."""
        current = state_value(current)
        for t in self.transitions:
            if t.from_state == current and t.action == action:
                return t.to_state
        return None


_PO = PurchaseOrderStatus
_SO = SalesOrderStatus

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase",
    initial_state=_PO.DRAFT.value,
    states=tuple(s.value for s in _PO),
    transitions=(
        Transition(_PO.DRAFT.value, _PO.DRAFT.value, OrderAction.ADD_LINE),
        Transition(_PO.DRAFT.value, _PO.ORDERED.value, OrderAction.PLACE),
        Transition(_PO.DRAFT.value, _PO.CANCELLED.value, OrderAction.CANCEL),
        Transition(_PO.ORDERED.value, _PO.ORDERED.value, OrderAction.RECEIVE),
        Transition(_PO.ORDERED.value, _PO.RECEIVED.value, OrderAction.COMPLETE),
        Transition(_PO.ORDERED.value, _PO.CANCELLED.value, OrderAction.CANCEL),
    ),
    terminal_states=(_PO.RECEIVED.value, _PO.CANCELLED.value),
)

SALES_ORDER_WORKFLOW = Workflow(
    name="sales",
    initial_state=_SO.DRAFT.value,
    states=tuple(s.value for s in _SO),
    transitions=(
        Transition(_SO.DRAFT.value, _SO.DRAFT.value, OrderAction.ADD_LINE),
        Transition(_SO.DRAFT.value, _SO.CONFIRMED.value, OrderAction.CONFIRM),
        Transition(_SO.DRAFT.value, _SO.CANCELLED.value, OrderAction.CANCEL),
        Transition(_SO.CONFIRMED.value, _SO.CONFIRMED.value, OrderAction.SHIP),
        Transition(_SO.CONFIRMED.value, _SO.FULFILLED.value, OrderAction.COMPLETE),
        Transition(_SO.CONFIRMED.value, _SO.CANCELLED.value, OrderAction.CANCEL),
    ),
    terminal_states=(_SO.FULFILLED.value, _SO.CANCELLED.value),
)


def state_value(state: object) -> str:
    """Plain string form of a status, whether an enum member or a column value."""
    if isinstance(state, Enum):
        return state.value
    return str(state)


def require_transition(
    workflow: Workflow,
    order_id: object,
    current: str,
    action: OrderAction,
) -> str:
    """Return the target state or raise InvalidOrderTransitionError."""
    current = state_value(current)
    target = workflow.resolve(current, action)
    if target is None:
        raise InvalidOrderTransitionError(
            order_kind=workflow.name,
            order_id=str(order_id),
            current_status=current,
            action=action.value,
        )
    return target
