"""
Export, import and shareable backups for moving data between devices.

The sync engine is a batch client of the three repositories. Export reads
each store in its own transaction and import writes one record per
transaction, so neither is atomic across stores: an interrupted import leaves
the records written so far in place.

Import modes:
1. merge - upsert every record; an existing identifier is overwritten
2. replace - erase all stores, then insert strictly; a duplicate identifier
   inside the bundle is counted as skipped
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from offline_books.storage.errors import (
    ConstraintError,
    DecodeError,
    EngineError,
    StoreError,
    ValidationError,
)
from offline_books.storage.models import records_to_dicts
from offline_books.storage.repository import (
    Books,
    ClientRepository,
    EstimateRepository,
    InvoiceRepository,
    RecordRepository,
)

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1

# Bundle keys, in import order
RECORD_KINDS = ("clients", "estimates", "invoices")


class ImportMode(str, Enum):
    """How an import treats records already in the store."""
    MERGE = "merge"
    REPLACE = "replace"


@dataclass
class ImportTally:
    """Per-kind import outcome."""
    imported: int = 0
    skipped: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.imported + self.skipped + self.errors

    def as_dict(self) -> Dict[str, int]:
        return {"imported": self.imported, "skipped": self.skipped, "errors": self.errors}


@dataclass
class ImportResult:
    """Outcome of one import, tallied per record kind."""
    clients: ImportTally = field(default_factory=ImportTally)
    estimates: ImportTally = field(default_factory=ImportTally)
    invoices: ImportTally = field(default_factory=ImportTally)

    @property
    def total_imported(self) -> int:
        return self.clients.imported + self.estimates.imported + self.invoices.imported

    @property
    def total_errors(self) -> int:
        return self.clients.errors + self.estimates.errors + self.invoices.errors

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {kind: getattr(self, kind).as_dict() for kind in RECORD_KINDS}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_mode(mode: Union[ImportMode, str]) -> ImportMode:
    try:
        return ImportMode(mode)
    except ValueError:
        valid = [m.value for m in ImportMode]
        raise ValidationError(f"Invalid import mode: {mode}. Must be one of: {valid}") from None


def validate_bundle(bundle: Any) -> Dict[str, List[Any]]:
    """Check the shape of an export bundle before anything is written.

    Args:
        bundle: Parsed export object

    Returns:
        Mapping of record kind to its list of raw records

    Raises:
        ValidationError: If the bundle has no data section, a record list is
            not a list, or the bundle comes from a newer export version
    """
    if not isinstance(bundle, Mapping) or not isinstance(bundle.get("data"), Mapping):
        raise ValidationError("Invalid import data format")

    version = bundle.get("version", EXPORT_VERSION)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValidationError("Export version must be an integer")
    if version > EXPORT_VERSION:
        raise ValidationError(
            f"Export version {version} is newer than supported version {EXPORT_VERSION}"
        )

    data = bundle["data"]
    records = {}
    for kind in RECORD_KINDS:
        value = data.get(kind)
        if value is None:
            value = []
        if not isinstance(value, list):
            raise ValidationError(f"'data.{kind}' must be a list")
        records[kind] = value
    return records


def encode_backup(bundle: Mapping[str, Any]) -> str:
    """Compact JSON, then base64, for text-only channels."""
    text = json.dumps(bundle, separators=(",", ":"))
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_backup(backup: str) -> Dict[str, Any]:
    """Exact inverse of ``encode_backup``.

    Whitespace picked up in transport (line breaks in an SMS) is ignored.

    Raises:
        DecodeError: If the string is not base64-encoded JSON object text
    """
    if not isinstance(backup, str):
        raise DecodeError("Failed to restore backup: backup must be a string")
    compact = "".join(backup.split())
    try:
        raw = base64.b64decode(compact, validate=True)
        bundle = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Failed to restore backup: {e}") from e
    if not isinstance(bundle, dict):
        raise DecodeError("Failed to restore backup: payload is not an object")
    return bundle


class SyncEngine:
    """Full-dataset export and import across the three repositories."""

    def __init__(
        self,
        clients: ClientRepository,
        estimates: EstimateRepository,
        invoices: InvoiceRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.clients = clients
        self.estimates = estimates
        self.invoices = invoices
        self._clock = clock or _utc_now

    @classmethod
    def from_books(cls, books: Books, clock: Optional[Callable[[], datetime]] = None) -> "SyncEngine":
        return cls(books.clients, books.estimates, books.invoices, clock)

    def _repositories(self) -> Tuple[Tuple[str, RecordRepository], ...]:
        return (
            ("clients", self.clients),
            ("estimates", self.estimates),
            ("invoices", self.invoices),
        )

    def export_all(self) -> Dict[str, Any]:
        """Snapshot every store.

        Each store is read in its own transaction, so writes landing between
        reads may be partially reflected.
        """
        clients = self.clients.list_all()
        estimates = self.estimates.list_all()
        invoices = self.invoices.list_all()
        return {
            "version": EXPORT_VERSION,
            "exportDate": _iso(self._clock()),
            "data": {
                "clients": records_to_dicts(clients),
                "estimates": records_to_dicts(estimates),
                "invoices": records_to_dicts(invoices),
            },
            "metadata": {
                "clientCount": len(clients),
                "estimateCount": len(estimates),
                "invoiceCount": len(invoices),
            },
        }

    def clear_all_data(self) -> None:
        """Erase every record in all three stores."""
        for _, repository in self._repositories():
            repository.clear()
        logger.info("Cleared all stores")

    def import_all(
        self,
        bundle: Mapping[str, Any],
        mode: Union[ImportMode, str] = ImportMode.MERGE,
    ) -> ImportResult:
        """Import an export bundle.

        Bad records are counted and skipped; the rest still import. There is
        no rollback if the import stops part-way.

        Args:
            bundle: Export object as produced by ``export_all``
            mode: ``merge`` or ``replace``

        Returns:
            ImportResult with imported/skipped/errors per record kind

        Raises:
            ValidationError: If the bundle or mode is invalid; nothing is written
            EngineError: If the database fails; records already written stay
        """
        mode = parse_mode(mode)
        records = validate_bundle(bundle)

        if mode is ImportMode.REPLACE:
            self.clear_all_data()
        strict = mode is ImportMode.REPLACE

        result = ImportResult()
        for kind, repository in self._repositories():
            tally = getattr(result, kind)
            for raw in records[kind]:
                self._import_record(kind, repository, raw, strict, tally)

        logger.info(
            "Imported %d records (%s mode, %d errors)",
            result.total_imported, mode.value, result.total_errors,
        )
        return result

    @staticmethod
    def _import_record(
        kind: str,
        repository: RecordRepository,
        raw: Any,
        strict: bool,
        tally: ImportTally,
    ) -> None:
        try:
            record = repository.record_type.from_dict(raw)
            if strict:
                repository.insert_record(record)
            else:
                repository.put_record(record)
        except ConstraintError:
            tally.skipped += 1
        except EngineError:
            raise
        except StoreError as e:
            tally.errors += 1
            logger.warning("Error importing %s record: %s", kind, e)
        else:
            tally.imported += 1
            dropped = sorted(str(key) for key in set(raw) - set(record.to_dict()))
            if dropped:
                logger.warning(
                    "Dropped unknown fields from %s record %s: %s",
                    kind, record.key, ", ".join(dropped),
                )

    def get_stats(self) -> Dict[str, int]:
        """Record counts per store. Read-only."""
        total_clients = self.clients.count()
        total_estimates = self.estimates.count()
        total_invoices = self.invoices.count()
        return {
            "totalClients": total_clients,
            "totalEstimates": total_estimates,
            "totalInvoices": total_invoices,
            "totalRecords": total_clients + total_estimates + total_invoices,
        }

    def create_shareable_backup(self) -> str:
        """Whole dataset as a single base64 string."""
        return encode_backup(self.export_all())

    def restore_from_shareable_backup(
        self,
        backup: str,
        mode: Union[ImportMode, str] = ImportMode.MERGE,
    ) -> ImportResult:
        """Decode and import a shareable backup.

        The payload is fully decoded and checked before any store is touched.

        Raises:
            DecodeError: If the backup is corrupt or not an export bundle
        """
        mode = parse_mode(mode)
        bundle = decode_backup(backup)
        try:
            validate_bundle(bundle)
        except ValidationError as e:
            raise DecodeError(f"Failed to restore backup: {e}") from e
        return self.import_all(bundle, mode)

    def export_to_file(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Write the export as pretty-printed JSON.

        Args:
            path: Target file; defaults to books-backup-YYYY-MM-DD.json

        Returns:
            Path of the written file
        """
        bundle = self.export_all()
        if path is None:
            path = f"books-backup-{self._clock().date().isoformat()}.json"
        target = Path(path)
        target.write_text(json.dumps(bundle, indent=2), encoding="utf-8")
        logger.info("Exported %s", target)
        return target

    def import_from_file(
        self,
        path: Union[str, Path],
        mode: Union[ImportMode, str] = ImportMode.MERGE,
    ) -> ImportResult:
        """Import an export file written by ``export_to_file``.

        Raises:
            DecodeError: If the file cannot be read or is not JSON
        """
        mode = parse_mode(mode)
        try:
            bundle = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise DecodeError(f"Failed to import data: {e}") from e
        return self.import_all(bundle, mode)
