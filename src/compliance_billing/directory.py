"""Firm and client directory lookups consumed by the billing workflow.

The engine never manages firms, clients or employees itself. It only needs
state codes for interstate detection and a way to resolve who should be
notified.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class EmployeeRef:
    """Minimal view of an employee."""

    employee_id: UUID
    name: str
    role: str = "staff"
    is_active: bool = True


class Directory(Protocol):
    """Protocol for firm/client/employee lookups."""

    async def get_firm_state(self, firm_id: UUID) -> str | None:
        """Two-digit GST state code of the firm, if known."""
        ...

    async def get_client_state(self, client_id: UUID) -> str | None:
        """Two-digit GST state code of the client, if known."""
        ...

    async def resolve_employee(self, employee_id: UUID) -> EmployeeRef | None:
        ...

    async def get_approvers(self, firm_id: UUID) -> list[UUID]:
        """Employees who approve quotations for the firm."""
        ...


def state_code_from_gstin(gstin: str | None) -> str | None:
    """Return the state code encoded in the first two digits of a GSTIN."""
    if not gstin:
        return None
    prefix = gstin.strip()[:2]
    if len(prefix) == 2 and prefix.isdigit():
        return prefix
    return None


def is_interstate(firm_state: str | None, client_state: str | None) -> bool:
    """Supply is interstate only when both states are known and differ."""
    if not firm_state or not client_state:
        return False
    return firm_state != client_state


@dataclass
class StaticDirectory:
    """In-memory directory for development and tests.

    States may be given directly as codes or derived from GSTINs.
    """

    firm_states: dict[UUID, str] = field(default_factory=dict)
    client_states: dict[UUID, str] = field(default_factory=dict)
    employees: dict[UUID, EmployeeRef] = field(default_factory=dict)
    approvers: dict[UUID, list[UUID]] = field(default_factory=dict)

    def register_firm(self, firm_id: UUID, gstin: str | None = None, state: str | None = None) -> None:
        code = state or state_code_from_gstin(gstin)
        if code:
            self.firm_states[firm_id] = code

    def register_client(
        self, client_id: UUID, gstin: str | None = None, state: str | None = None
    ) -> None:
        code = state or state_code_from_gstin(gstin)
        if code:
            self.client_states[client_id] = code

    def register_employee(self, employee: EmployeeRef, firm_id: UUID | None = None) -> None:
        self.employees[employee.employee_id] = employee
        if firm_id is not None and employee.role == "admin":
            self.approvers.setdefault(firm_id, []).append(employee.employee_id)

    async def get_firm_state(self, firm_id: UUID) -> str | None:
        return self.firm_states.get(firm_id)

    async def get_client_state(self, client_id: UUID) -> str | None:
        return self.client_states.get(client_id)

    async def resolve_employee(self, employee_id: UUID) -> EmployeeRef | None:
        employee = self.employees.get(employee_id)
        if employee is None or not employee.is_active:
            return None
        return employee

    async def get_approvers(self, firm_id: UUID) -> list[UUID]:
        return list(self.approvers.get(firm_id, []))
