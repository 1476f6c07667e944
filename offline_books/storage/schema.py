"""
Schema registry for the local record store.

Declares every store, its primary key field and its non-unique secondary
indexes. The storage engine reads this description once when it opens the
database; raising ``DB_VERSION`` is the only way to add stores or indexes to
an existing database file.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple

DB_NAME = "offline_books"
DB_VERSION = 1

# Column the storage engine keeps the serialized record in
BODY_COLUMN = "body"


class STORES:
    """Names of the record stores."""
    CLIENTS = "clients"
    ESTIMATES = "estimates"
    INVOICES = "invoices"


class EstimateStatus(str, Enum):
    """Estimate labels. Any label may follow any other."""
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"


class InvoiceStatus(str, Enum):
    """Invoice labels."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"


@dataclass(frozen=True)
class IndexSpec:
    """A non-unique secondary index over a single record field."""
    name: str
    key_path: str
    unique: bool = False

    def __post_init__(self):
        if not self.name or not self.key_path:
            raise ValueError("index name and key_path are required")


@dataclass(frozen=True)
class StoreSchema:
    """One named store keyed by ``key_path``."""
    name: str
    key_path: str
    indexes: Tuple[IndexSpec, ...] = ()

    def __post_init__(self):
        if not self.name or not self.key_path:
            raise ValueError("store name and key_path are required")
        names = [index.name for index in self.indexes]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate index names in store '{self.name}'")
        if any(index.key_path == self.key_path for index in self.indexes):
            raise ValueError(f"Store '{self.name}' indexes its own key path")
        if BODY_COLUMN in (self.key_path, *self.index_fields):
            raise ValueError(f"'{BODY_COLUMN}' is reserved in store '{self.name}'")

    @property
    def index_fields(self) -> Tuple[str, ...]:
        """Record fields that need their own column, in index order."""
        seen = []
        for index in self.indexes:
            if index.key_path not in seen:
                seen.append(index.key_path)
        return tuple(seen)

    def get_index(self, name: str) -> IndexSpec:
        for index in self.indexes:
            if index.name == name:
                return index
        raise KeyError(f"Store '{self.name}' has no index '{name}'")


@dataclass(frozen=True)
class SchemaRegistry:
    """Immutable description of the whole database."""
    name: str
    version: int
    stores: Tuple[StoreSchema, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.version < 1:
            raise ValueError("schema version must be >= 1")
        names = [store.name for store in self.stores]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate store names in schema")

    @property
    def store_names(self) -> Tuple[str, ...]:
        return tuple(store.name for store in self.stores)

    def get_store(self, name: str) -> StoreSchema:
        """Look up a store by name.

        Raises:
            KeyError: If the store is not part of this schema
        """
        for store in self.stores:
            if store.name == name:
                return store
        raise KeyError(f"Unknown store: {name}")

    def as_dict(self) -> Dict[str, Dict]:
        return {
            store.name: {
                "keyPath": store.key_path,
                "indexes": [
                    {"name": i.name, "keyPath": i.key_path, "unique": i.unique}
                    for i in store.indexes
                ],
            }
            for store in self.stores
        }


DEFAULT_SCHEMA = SchemaRegistry(
    name=DB_NAME,
    version=DB_VERSION,
    stores=(
        StoreSchema(
            name=STORES.CLIENTS,
            key_path="clientId",
            indexes=(
                IndexSpec("name", "name"),
                IndexSpec("email", "email"),
                IndexSpec("phone", "phone"),
            ),
        ),
        StoreSchema(
            name=STORES.ESTIMATES,
            key_path="estimateId",
            indexes=(
                IndexSpec("clientId", "clientId"),
                IndexSpec("status", "status"),
                IndexSpec("createdAt", "createdAt"),
            ),
        ),
        StoreSchema(
            name=STORES.INVOICES,
            key_path="invoiceId",
            indexes=(
                IndexSpec("clientId", "clientId"),
                IndexSpec("estimateId", "estimateId"),
                IndexSpec("status", "status"),
                IndexSpec("createdAt", "createdAt"),
            ),
        ),
    ),
)
