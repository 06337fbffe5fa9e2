"""
Shipment status workflow.

One table drives every decision about shipment status: which action buttons a
dashboard shows for a given (status, role), and which transitions the server
accepts in ``update_shipment_status``. Dashboards only ever *suggest* actions;
the server re-checks the same table and may still refuse.
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from .errors import Conflict


class Role(str, Enum):
    admin = "admin"
    generator = "generator"
    transporter = "transporter"
    recycler = "recycler"
    driver = "driver"


class CompanyType(str, Enum):
    generator = "generator"
    transporter = "transporter"
    recycler = "recycler"


class ShipmentStatus(str, Enum):
    pending = "pending"
    in_transit = "in_transit"
    delivered = "delivered"
    sorting = "sorting"
    sorted = "sorted"
    recycling = "recycling"
    completed = "completed"


class Action(str, Enum):
    start_delivery = "start_delivery"
    end_delivery = "end_delivery"
    start_sorting = "start_sorting"
    end_sorting = "end_sorting"
    start_recycling = "start_recycling"
    end_recycling = "end_recycling"
    manual_status_change = "manual_status_change"


class WorkflowError(Conflict):
    """Raised when a requested transition is not allowed."""


ALL_ROLES: FrozenSet[str] = frozenset(r.value for r in Role)
ALL_STATUSES: Tuple[str, ...] = tuple(s.value for s in ShipmentStatus)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({ShipmentStatus.completed.value})

# action -> (from status, to status, roles allowed)
STEP_TRANSITIONS: Dict[Action, Tuple[ShipmentStatus, ShipmentStatus, FrozenSet[Role]]] = {
    Action.start_delivery: (ShipmentStatus.pending, ShipmentStatus.in_transit,
                            frozenset({Role.driver, Role.transporter, Role.admin})),
    Action.end_delivery: (ShipmentStatus.in_transit, ShipmentStatus.delivered,
                          frozenset({Role.driver, Role.transporter, Role.admin})),
    Action.start_sorting: (ShipmentStatus.delivered, ShipmentStatus.sorting,
                           frozenset({Role.recycler, Role.admin})),
    Action.end_sorting: (ShipmentStatus.sorting, ShipmentStatus.sorted,
                         frozenset({Role.recycler, Role.admin})),
    Action.start_recycling: (ShipmentStatus.sorted, ShipmentStatus.recycling,
                             frozenset({Role.recycler, Role.admin})),
    Action.end_recycling: (ShipmentStatus.recycling, ShipmentStatus.completed,
                           frozenset({Role.recycler, Role.admin})),
}

# Roles that may open the manual status-change dialog for any status
MANUAL_CHANGE_ROLES: FrozenSet[Role] = frozenset({Role.transporter, Role.admin})

# Which stage timestamp column a status entry stamps
STATUS_TIMESTAMP_FIELDS: Dict[str, str] = {
    ShipmentStatus.in_transit.value: "departure_time",
    ShipmentStatus.delivered.value: "arrival_time",
    ShipmentStatus.sorting.value: "sorting_start_time",
    ShipmentStatus.sorted.value: "sorting_end_time",
    ShipmentStatus.recycling.value: "recycling_start_time",
    ShipmentStatus.completed.value: "completed_at",
}


def _coerce_role(role: str) -> Optional[Role]:
    try:
        return Role(role)
    except ValueError:
        return None


def _coerce_status(status: str) -> Optional[ShipmentStatus]:
    try:
        return ShipmentStatus(status)
    except ValueError:
        return None


def is_allowed(status: str, role: str, action: str) -> bool:
    """Look up ``(status, role, action)`` in the transition table."""
    r = _coerce_role(role)
    s = _coerce_status(status)
    if r is None or s is None:
        return False
    try:
        a = Action(action)
    except ValueError:
        return False
    if a is Action.manual_status_change:
        return r in MANUAL_CHANGE_ROLES
    src, _dst, roles = STEP_TRANSITIONS[a]
    return s is src and r in roles


def allowed_actions(status: str, role: str) -> Set[str]:
    """All actions a dashboard for ``role`` should enable for a shipment in ``status``.

    Unknown roles or statuses yield an empty set.
    """
    return {a.value for a in Action if is_allowed(status, role, a.value)}


def target_status(status: str, action: str) -> str:
    a = Action(action)
    if a is Action.manual_status_change:
        raise WorkflowError("manual_status_change has no fixed target status")
    src, dst, _roles = STEP_TRANSITIONS[a]
    if status != src.value:
        raise WorkflowError(f"Cannot {a.value} a shipment in status '{status}'")
    return dst.value


def resolve_transition(current: str, new_status: str, role: str) -> str:
    """Validate a status change requested by ``role``; return the action it amounts to.

    A step along the chain is accepted for the roles listed in ``STEP_TRANSITIONS``.
    Any other change is a manual status change and needs a manual-change role.
    Terminal statuses never change.
    """
    if _coerce_status(new_status) is None:
        raise WorkflowError(f"Unknown status '{new_status}'")
    if _coerce_status(current) is None:
        raise WorkflowError(f"Shipment has unknown status '{current}'")
    if new_status == current:
        raise WorkflowError(f"Shipment is already '{current}'")
    if current in TERMINAL_STATUSES:
        raise WorkflowError(f"Shipment is '{current}' and can no longer change status")
    for action, (src, dst, _roles) in STEP_TRANSITIONS.items():
        if src.value == current and dst.value == new_status and is_allowed(current, role, action.value):
            return action.value
    if is_allowed(current, role, Action.manual_status_change.value):
        return Action.manual_status_change.value
    raise WorkflowError(f"Role '{role}' cannot move a shipment from '{current}' to '{new_status}'")


def next_statuses(status: str) -> List[str]:
    """Statuses reachable in one step along the chain."""
    return [dst.value for src, dst, _ in STEP_TRANSITIONS.values() if src.value == status]


# role -> dashboard view name; shared by the client router and GET /dashboard
DASHBOARD_FOR_ROLE: Dict[str, str] = {
    Role.admin.value: "AdminDashboard",
    Role.generator.value: "GeneratorDashboard",
    Role.transporter.value: "TransporterDashboard",
    Role.recycler.value: "RecyclerDashboard",
    Role.driver.value: "DriverDashboard",
}
UNKNOWN_ROLE_VIEW = "UnknownRoleView"
