"""
Repository pattern for data access.

Typed CRUD and query operations for clients, estimates and invoices, layered
on the storage engine. Repositories own the money derivation and status
validation; nothing reaches the engine unvalidated.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import (
    Any, Callable, ClassVar, Dict, FrozenSet, Generic, List, Mapping, Optional,
    Type, TypeVar,
)

from offline_books.config.loader import DEFAULT_BUSINESS, BusinessConfig
from offline_books.core.pricing import estimate_total, invoice_totals

from .db import DEFAULT_DB_PATH, ObjectStore, StorageEngine, TransactionMode
from .errors import NotFoundError, ValidationError
from .models import (
    Client, Estimate, Invoice, parse_items, parse_status, parse_text,
)
from .schema import STORES, EstimateStatus, InvoiceStatus

logger = logging.getLogger(__name__)

R = TypeVar("R", Client, Estimate, Invoice)

READONLY = TransactionMode.READONLY
READWRITE = TransactionMode.READWRITE


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def _status_value(status: Any) -> Any:
    return getattr(status, "value", status)


class RecordRepository(Generic[R]):
    """Shared CRUD over one store.

    Subclasses declare which payload fields they accept and how an update is
    applied; this class handles transactions and record (de)serialization.
    """
    store_name: ClassVar[str]
    record_type: ClassVar[Type]
    # Fields a payload may carry
    payload_fields: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, engine: StorageEngine, clock: Optional[Callable[[], int]] = None):
        self._engine = engine
        self._clock = clock or now_ms

    @property
    def engine(self) -> StorageEngine:
        return self._engine

    def _payload(self, payload: Optional[Mapping[str, Any]], fields: Dict[str, Any]) -> Dict[str, Any]:
        if payload is not None and not isinstance(payload, Mapping):
            raise ValidationError(f"{self.store_name} payload must be a mapping")
        merged = dict(payload or {})
        merged.update(fields)
        unknown = set(merged) - self.payload_fields
        if unknown:
            raise ValidationError(
                f"Unknown fields for {self.store_name}: {sorted(unknown)}"
            )
        return merged

    def _load(self, data: Optional[Dict[str, Any]]) -> Optional[R]:
        return self.record_type.from_dict(data) if data is not None else None

    def _insert(self, record: R) -> R:
        self._engine.run_transaction(
            self.store_name, READWRITE, lambda store: store.add(record.to_dict())
        )
        logger.debug("Created %s %s", self.store_name, record.key)
        return record

    def get(self, key: str) -> Optional[R]:
        """Fetch one record, or None if the key does not resolve."""
        data = self._engine.run_transaction(
            self.store_name, READONLY, lambda store: store.get(key)
        )
        return self._load(data)

    def list_all(self) -> List[R]:
        """Every record in the store, in no particular order."""
        rows = self._engine.run_transaction(
            self.store_name, READONLY, lambda store: store.get_all()
        )
        return [self.record_type.from_dict(row) for row in rows]

    def _list_by_index(self, index_name: str, value: Any) -> List[R]:
        rows = self._engine.run_transaction(
            self.store_name,
            READONLY,
            lambda store: store.get_all_by_index(index_name, value),
        )
        return [self.record_type.from_dict(row) for row in rows]

    def count(self) -> int:
        return self._engine.run_transaction(
            self.store_name, READONLY, lambda store: store.count()
        )

    def update(
        self,
        key: str,
        changes: Optional[Mapping[str, Any]] = None,
        **fields: Any,
    ) -> R:
        """Merge ``changes`` onto the stored record and persist it.

        The read, merge and write run in one read-write transaction. The
        identifier and creation time are never changed.

        Raises:
            NotFoundError: If the key does not resolve
            ValidationError: If the payload is invalid; nothing is written
        """
        changes = self._payload(changes, fields)

        def apply(store: ObjectStore) -> R:
            current = self._load(store.get(key))
            if current is None:
                raise NotFoundError(self.store_name, key)
            updated = self._apply_update(current, changes)
            store.put(updated.to_dict())
            return updated

        updated = self._engine.run_transaction(self.store_name, READWRITE, apply)
        logger.debug("Updated %s %s (%s)", self.store_name, key, sorted(changes))
        return updated

    def delete(self, key: str) -> None:
        """Hard delete. Records referencing this one are left alone."""
        self._engine.run_transaction(
            self.store_name, READWRITE, lambda store: store.delete(key)
        )
        logger.debug("Deleted %s %s", self.store_name, key)

    def clear(self) -> None:
        self._engine.run_transaction(
            self.store_name, READWRITE, lambda store: store.clear()
        )

    def normalize(self, record: R) -> R:
        """Return ``record`` with derived fields recomputed."""
        return record

    def insert_record(self, record: R) -> R:
        """Store a complete record; fails if its key exists.

        Raises:
            ConstraintError: If a record with the same key is stored
        """
        record = self.normalize(record)
        return self._insert(record)

    def put_record(self, record: R) -> R:
        """Store a complete record, overwriting any record with its key."""
        record = self.normalize(record)
        self._engine.run_transaction(
            self.store_name, READWRITE, lambda store: store.put(record.to_dict())
        )
        return record

    def _apply_update(self, current: R, changes: Dict[str, Any]) -> R:
        raise NotImplementedError


class ClientRepository(RecordRepository[Client]):
    """Clients keyed by ``clientId``."""
    store_name = STORES.CLIENTS
    record_type = Client
    payload_fields = frozenset({"client_id", "name", "phone", "email", "address"})
    _editable = ("name", "phone", "email", "address")

    def create(self, payload: Optional[Mapping[str, Any]] = None, **fields: Any) -> Client:
        data = self._payload(payload, fields)
        client = Client(
            client_id=self._engine.generate_id(),
            **{f: parse_text(data.get(f), f) for f in self._editable},
        )
        return self._insert(client)

    def _apply_update(self, current: Client, changes: Dict[str, Any]) -> Client:
        values = {f: parse_text(changes[f], f) for f in self._editable if f in changes}
        return replace(current, **values)

    def search_by_name(self, term: str) -> List[Client]:
        """Clients whose name contains ``term``, ignoring case."""
        needle = term.lower()
        return [c for c in self.list_all() if needle in c.name.lower()]

    def list_by_phone(self, phone: str) -> List[Client]:
        return self._list_by_index("phone", phone)

    def list_by_email(self, email: str) -> List[Client]:
        return self._list_by_index("email", email)


class EstimateRepository(RecordRepository[Estimate]):
    """Estimates keyed by ``estimateId``; ``total`` is always derived."""
    store_name = STORES.ESTIMATES
    record_type = Estimate
    payload_fields = frozenset(
        {"estimate_id", "client_id", "items", "total", "created_at", "status"}
    )

    def create(self, payload: Optional[Mapping[str, Any]] = None, **fields: Any) -> Estimate:
        """Create an estimate for a client.

        The client id is required but not checked against the clients store.

        Raises:
            ValidationError: If client_id or items are missing or malformed
        """
        data = self._payload(payload, fields)
        if not data.get("client_id"):
            raise ValidationError("client_id is required to create an estimate")
        client_id = parse_text(data["client_id"], "client_id")
        items = parse_items(data.get("items"))
        status = parse_status(data.get("status") or EstimateStatus.DRAFT, EstimateStatus)
        estimate = Estimate(
            estimate_id=self._engine.generate_id(),
            client_id=client_id,
            items=items,
            total=estimate_total(items),
            created_at=self._clock(),
            status=status,
        )
        return self._insert(estimate)

    def _apply_update(self, current: Estimate, changes: Dict[str, Any]) -> Estimate:
        items = parse_items(changes["items"]) if "items" in changes else current.items
        status = current.status
        if "status" in changes:
            status = parse_status(changes["status"], EstimateStatus)
        return replace(current, items=items, status=status, total=estimate_total(items))

    def normalize(self, record: Estimate) -> Estimate:
        return replace(record, total=estimate_total(record.items))

    def list_by_client(self, client_id: str) -> List[Estimate]:
        return self._list_by_index("clientId", client_id)

    def list_by_status(self, status: Any) -> List[Estimate]:
        return self._list_by_index("status", _status_value(status))

    def update_status(self, estimate_id: str, status: Any) -> Estimate:
        """Set the status label; any label may follow any other.

        Raises:
            InvalidStatusError: If status is not an estimate label
            NotFoundError: If the estimate does not exist
        """
        status = parse_status(status, EstimateStatus)
        return self.update(estimate_id, status=status)

    def convert_to_invoice(self, estimate_id: str) -> Dict[str, Any]:
        """Invoice ``create`` payload built from an estimate.

        Does not create the invoice.

        Raises:
            NotFoundError: If the estimate does not exist
        """
        estimate = self.get(estimate_id)
        if estimate is None:
            raise NotFoundError(self.store_name, estimate_id)
        return {
            "client_id": estimate.client_id,
            "estimate_id": estimate.estimate_id,
            "items": list(estimate.items),
        }


class InvoiceRepository(RecordRepository[Invoice]):
    """Invoices keyed by ``invoiceId``.

    The sales tax rate is read from the business configuration when an
    invoice is created and then frozen on the record.
    """
    store_name = STORES.INVOICES
    record_type = Invoice
    payload_fields = frozenset({
        "invoice_id", "client_id", "estimate_id", "items", "subtotal",
        "tax_rate", "tax_amount", "total", "created_at", "status",
    })

    def __init__(
        self,
        engine: StorageEngine,
        business: BusinessConfig = DEFAULT_BUSINESS,
        clock: Optional[Callable[[], int]] = None,
    ):
        super().__init__(engine, clock)
        self._business = business

    @property
    def business(self) -> BusinessConfig:
        return self._business

    def create(self, payload: Optional[Mapping[str, Any]] = None, **fields: Any) -> Invoice:
        """Create an invoice for a client.

        Raises:
            ValidationError: If client_id or items are missing or malformed
        """
        data = self._payload(payload, fields)
        if not data.get("client_id"):
            raise ValidationError("client_id is required to create an invoice")
        client_id = parse_text(data["client_id"], "client_id")
        estimate_id = parse_text(data.get("estimate_id"), "estimate_id") or None
        items = parse_items(data.get("items"))
        status = parse_status(data.get("status") or InvoiceStatus.DRAFT, InvoiceStatus)
        totals = invoice_totals(items, self._business.sales_tax_rate)
        invoice = Invoice(
            invoice_id=self._engine.generate_id(),
            client_id=client_id,
            estimate_id=estimate_id,
            items=items,
            subtotal=totals.subtotal,
            tax_rate=totals.tax_rate,
            tax_amount=totals.tax_amount,
            total=totals.total,
            created_at=self._clock(),
            status=status,
        )
        return self._insert(invoice)

    def _apply_update(self, current: Invoice, changes: Dict[str, Any]) -> Invoice:
        items = parse_items(changes["items"]) if "items" in changes else current.items
        status = current.status
        if "status" in changes:
            status = parse_status(changes["status"], InvoiceStatus)
        estimate_id = current.estimate_id
        if estimate_id is None and changes.get("estimate_id"):
            estimate_id = parse_text(changes["estimate_id"], "estimate_id")
        return self._with_totals(
            replace(current, items=items, status=status, estimate_id=estimate_id)
        )

    @staticmethod
    def _with_totals(invoice: Invoice) -> Invoice:
        totals = invoice_totals(invoice.items, invoice.tax_rate)
        return replace(
            invoice,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            total=totals.total,
        )

    def normalize(self, record: Invoice) -> Invoice:
        return self._with_totals(record)

    def list_by_client(self, client_id: str) -> List[Invoice]:
        return self._list_by_index("clientId", client_id)

    def list_by_status(self, status: Any) -> List[Invoice]:
        return self._list_by_index("status", _status_value(status))

    def list_by_estimate(self, estimate_id: str) -> List[Invoice]:
        """Invoices raised from the given estimate."""
        return self._list_by_index("estimateId", estimate_id)

    def update_status(self, invoice_id: str, status: Any) -> Invoice:
        """Set the status label.

        Raises:
            InvalidStatusError: If status is not an invoice label
            NotFoundError: If the invoice does not exist
        """
        status = parse_status(status, InvoiceStatus)
        return self.update(invoice_id, status=status)

    def mark_as_paid(self, invoice_id: str) -> Invoice:
        return self.update_status(invoice_id, InvoiceStatus.PAID)

    def list_unpaid(self) -> List[Invoice]:
        """Draft and sent invoices."""
        return (
            self.list_by_status(InvoiceStatus.DRAFT)
            + self.list_by_status(InvoiceStatus.SENT)
        )

    def list_paid(self) -> List[Invoice]:
        return self.list_by_status(InvoiceStatus.PAID)


@dataclass
class Books:
    """One storage engine wired to the three repositories."""
    engine: StorageEngine
    clients: ClientRepository
    estimates: EstimateRepository
    invoices: InvoiceRepository

    def __enter__(self) -> "Books":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.engine.close()


def open_books(
    db_path: str = DEFAULT_DB_PATH,
    business: BusinessConfig = DEFAULT_BUSINESS,
    clock: Optional[Callable[[], int]] = None,
) -> Books:
    """Open the database at ``db_path`` and build its repositories.

    Args:
        db_path: Path to SQLite database file
        business: Business configuration supplying the sales tax rate
        clock: Optional millisecond clock, used for ``created_at``

    Returns:
        Books sharing one open StorageEngine

    Raises:
        EngineError: If the database cannot be opened
    """
    engine = StorageEngine(db_path).open()
    return Books(
        engine=engine,
        clients=ClientRepository(engine, clock),
        estimates=EstimateRepository(engine, clock),
        invoices=InvoiceRepository(engine, business, clock),
    )
