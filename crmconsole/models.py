# Overview: Read-only views of backend-owned entities as the console consumes them.

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Optional


def _int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _float(value: Any) -> float:
    # The dashboard reports amounts as strings, the list endpoints as numbers.
    if value is None or value == "":
        return 0.0
    return float(value)


@dataclass
class Option:
    """Minimal shape a dropdown needs."""
    id: int
    label: str


@dataclass
class Store:
    id: int
    code: str
    name: str
    status: str
    city: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "Store":
        return cls(
            id=int(data["id"]),
            code=data.get("code") or "",
            name=data.get("name") or "",
            status=data.get("status") or "",
            city=data.get("city"),
            address=data.get("address"),
        )

    def form_values(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "city": self.city or "",
            "address": self.address or "",
            "status": self.status,
        }


@dataclass
class Employee:
    id: int
    name: str
    status: Optional[str] = None
    store_id: Optional[int] = None
    title: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "Employee":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            status=data.get("status"),
            store_id=_int(data.get("storeId")),
            title=data.get("title"),
        )


@dataclass
class Customer:
    id: int
    name: str
    phone: str
    gender: Optional[str] = None
    birthday: Optional[str] = None
    source: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    preferred_store_id: Optional[int] = None
    owner_employee_id: Optional[int] = None
    status: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "Customer":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            phone=data.get("phone") or "",
            gender=data.get("gender"),
            birthday=data.get("birthday"),
            source=data.get("source"),
            tags=list(data.get("tags") or []),
            preferred_store_id=_int(data.get("preferredStoreId")),
            owner_employee_id=_int(data.get("ownerEmployeeId")),
            status=data.get("status"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def form_values(self) -> dict:
        return {
            "name": self.name,
            "phone": self.phone,
            "gender": self.gender or "",
            "birthday": (self.birthday or "")[:10],
            "source": self.source or "",
            "preferredStoreId": self.preferred_store_id or "",
            "ownerEmployeeId": self.owner_employee_id or "",
            "status": self.status or "active",
        }


@dataclass
class Fulfillment:
    id: int
    customer_id: int
    store_id: int
    amount: float
    currency: str
    status: str
    employee_id: Optional[int] = None
    channel: Optional[str] = None
    note: Optional[str] = None
    paid_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    customer: Optional[Customer] = None
    store: Optional[Store] = None
    employee: Optional[Employee] = None

    @classmethod
    def from_api(cls, data: dict) -> "Fulfillment":
        customer = data.get("customer")
        store = data.get("store")
        employee = data.get("employee")
        return cls(
            id=int(data["id"]),
            customer_id=int(data["customerId"]),
            store_id=int(data["storeId"]),
            amount=_float(data.get("amount")),
            currency=data.get("currency") or "CNY",
            status=data.get("status") or "ordered",
            employee_id=_int(data.get("employeeId")),
            channel=data.get("channel"),
            note=data.get("note"),
            paid_at=data.get("paidAt"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            customer=Customer.from_api(customer) if customer else None,
            store=Store.from_api(store) if store else None,
            employee=Employee.from_api(employee) if employee else None,
        )

    @property
    def customer_label(self) -> str:
        return self.customer.name if self.customer else f"Customer #{self.customer_id}"

    @property
    def store_label(self) -> str:
        return self.store.name if self.store else f"Store #{self.store_id}"

    @property
    def employee_label(self) -> str:
        if self.employee:
            return self.employee.name
        return str(self.employee_id) if self.employee_id else "-"

    def form_values(self) -> dict:
        return {
            "customerId": self.customer_id,
            "storeId": self.store_id,
            "employeeId": self.employee_id or "",
            "amount": f"{self.amount:.2f}",
            "currency": self.currency,
            "status": self.status,
            "channel": self.channel or "",
            "note": self.note or "",
            "paidAt": (self.paid_at or "")[:16],
        }


def to_dict(entity) -> dict:
    return asdict(entity)
