"""
Data models for storage layer.

Typed records for clients, estimates and invoices plus the parsing that turns
caller payloads and stored JSON into them. Stored JSON uses camelCase keys.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Mapping, Optional, Tuple, Type, TypeVar

from .errors import InvalidStatusError, ValidationError
from .schema import EstimateStatus, InvoiceStatus

S = TypeVar("S", bound=Enum)

# createdAt is an indexed SQLite INTEGER column
MIN_TIMESTAMP = -(2 ** 63)
MAX_TIMESTAMP = 2 ** 63 - 1


def parse_status(value: Any, status_type: Type[S]) -> S:
    """Coerce a label to its status enum.

    Raises:
        InvalidStatusError: If the label is not one of the enum values
    """
    if isinstance(value, status_type):
        return value
    try:
        return status_type(value)
    except ValueError:
        raise InvalidStatusError(value, [s.value for s in status_type]) from None


def parse_text(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"'{field_name}' must be a string")
    return value


def _required_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field_name} is required")
    return value


def _number(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{field_name}' must be a number")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        # int too large for a float
        finite = False
    if not finite:
        raise ValidationError(f"'{field_name}' must be finite")
    return value


def _timestamp(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("'createdAt' must be a millisecond timestamp")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("'createdAt' must be finite")
    stamp = int(value)
    if not MIN_TIMESTAMP <= stamp <= MAX_TIMESTAMP:
        raise ValidationError("'createdAt' is out of range")
    return stamp


@dataclass(frozen=True)
class LineItem:
    """One priced line on an estimate or invoice."""
    description: str
    quantity: float
    unit_price: float

    @classmethod
    def from_value(cls, value: Any, position: int = 0) -> "LineItem":
        """Build a line item from a LineItem or a mapping.

        Mappings may use ``unit_price``, ``unitPrice`` or the older ``price``.
        """
        if isinstance(value, LineItem):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f"Item {position} must be an object")
        price = value.get("unit_price", value.get("unitPrice", value.get("price")))
        if "quantity" not in value or price is None:
            raise ValidationError(f"Item {position} needs quantity and unit price")
        return cls(
            description=parse_text(value.get("description"), f"items[{position}].description"),
            quantity=_number(value["quantity"], f"items[{position}].quantity"),
            unit_price=_number(price, f"items[{position}].unitPrice"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
        }


def parse_items(value: Any) -> Tuple[LineItem, ...]:
    """Validate an item sequence.

    Raises:
        ValidationError: If items are missing, not a list, or malformed
    """
    if value is None:
        raise ValidationError("items array is required")
    if not isinstance(value, (list, tuple)):
        raise ValidationError("items must be an array")
    return tuple(LineItem.from_value(item, i) for i, item in enumerate(value))


@dataclass(frozen=True)
class Client:
    """A customer. Deleting one leaves its estimates and invoices in place."""
    KEY_FIELD: ClassVar[str] = "clientId"

    client_id: str
    name: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""

    @property
    def key(self) -> str:
        return self.client_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Client":
        if not isinstance(data, Mapping):
            raise ValidationError("client must be an object")
        return cls(
            client_id=_required_text(data.get("clientId"), "clientId"),
            name=parse_text(data.get("name"), "name"),
            phone=parse_text(data.get("phone"), "phone"),
            email=parse_text(data.get("email"), "email"),
            address=parse_text(data.get("address"), "address"),
        )


@dataclass(frozen=True)
class Estimate:
    """A priced proposal for a client."""
    KEY_FIELD: ClassVar[str] = "estimateId"

    estimate_id: str
    client_id: str
    items: Tuple[LineItem, ...]
    total: float
    created_at: int
    status: EstimateStatus = EstimateStatus.DRAFT

    @property
    def key(self) -> str:
        return self.estimate_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimateId": self.estimate_id,
            "clientId": self.client_id,
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "createdAt": self.created_at,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Estimate":
        if not isinstance(data, Mapping):
            raise ValidationError("estimate must be an object")
        return cls(
            estimate_id=_required_text(data.get("estimateId"), "estimateId"),
            client_id=_required_text(data.get("clientId"), "clientId"),
            items=parse_items(data.get("items")),
            total=_number(data.get("total", 0.0), "total"),
            created_at=_timestamp(data.get("createdAt")),
            status=parse_status(data.get("status", "draft"), EstimateStatus),
        )


@dataclass(frozen=True)
class Invoice:
    """A bill for a client, optionally raised from an estimate.

    ``tax_rate`` is frozen when the invoice is created.
    """
    KEY_FIELD: ClassVar[str] = "invoiceId"

    invoice_id: str
    client_id: str
    items: Tuple[LineItem, ...]
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    created_at: int
    status: InvoiceStatus = InvoiceStatus.DRAFT
    estimate_id: Optional[str] = None

    @property
    def key(self) -> str:
        return self.invoice_id

    @property
    def is_paid(self) -> bool:
        return self.status is InvoiceStatus.PAID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoiceId": self.invoice_id,
            "clientId": self.client_id,
            "estimateId": self.estimate_id,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "taxRate": self.tax_rate,
            "taxAmount": self.tax_amount,
            "total": self.total,
            "createdAt": self.created_at,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Invoice":
        if not isinstance(data, Mapping):
            raise ValidationError("invoice must be an object")
        estimate_id = data.get("estimateId")
        if estimate_id is not None and not isinstance(estimate_id, str):
            raise ValidationError("'estimateId' must be a string")
        tax_rate = _number(data.get("taxRate", 0.0), "taxRate")
        if tax_rate < 0:
            raise ValidationError("'taxRate' cannot be negative")
        return cls(
            invoice_id=_required_text(data.get("invoiceId"), "invoiceId"),
            client_id=_required_text(data.get("clientId"), "clientId"),
            estimate_id=estimate_id or None,
            items=parse_items(data.get("items")),
            subtotal=_number(data.get("subtotal", 0.0), "subtotal"),
            tax_rate=tax_rate,
            tax_amount=_number(data.get("taxAmount", 0.0), "taxAmount"),
            total=_number(data.get("total", 0.0), "total"),
            created_at=_timestamp(data.get("createdAt")),
            status=parse_status(data.get("status", "draft"), InvoiceStatus),
        )


def records_to_dicts(records: Iterable[Any]) -> list:
    return [record.to_dict() for record in records]
