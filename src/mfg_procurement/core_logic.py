"""Shared runtime for the procurement workflow modules.

This module holds the pieces every workflow needs: the error taxonomy, the
:class:`RuntimeContext` handed to each operation, context lifecycle helpers
that bridge to the Data Access Layer (DAL), and the small validation guards
reused across requisitions, receiving, invoicing and payments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, Collection
from .ledger_store import LedgerStore, MemoryLedgerStore, StoreAccessError, join_path
from .notifications import Notifier, StoreNotifier


class ProcurementError(Exception):
    """Base class for every rule violation raised by the engine."""


class ValidationError(ProcurementError, ValueError):
    """Raised when input is malformed or a required field is missing."""


class InvalidStateError(ProcurementError):
    """Raised when an operation is attempted from a state that forbids it."""


class OverAllocationError(ProcurementError):
    """Raised when supplier allocations exceed the approved quantity."""


class InvalidAmountError(ProcurementError, ValueError):
    """Raised when a payment is not positive or exceeds the balance due."""


class NotFoundError(ProcurementError, LookupError):
    """Raised when a referenced document or master record is absent."""


class DuplicateOperationError(ProcurementError):
    """Raised when an idempotency check finds the operation already done."""

    def __init__(self, message: str, *, existing_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.existing_id = existing_id


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the ledger store and collaborators."""

    settings: data_manager.ConfigSettings
    store: LedgerStore
    workbook: Optional[Workbook] = None
    notifier: Optional[Notifier] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.notifier is None:
            object.__setattr__(self, "notifier", StoreNotifier(self.store))

    @classmethod
    def in_memory(
        cls,
        settings: data_manager.ConfigSettings,
        *,
        store: Optional[LedgerStore] = None,
        notifier: Optional[Notifier] = None,
    ) -> "RuntimeContext":
        """Build a workbook-less context, mainly for embedding and tests."""

        return cls(
            settings=settings,
            store=store if store is not None else MemoryLedgerStore(),
            notifier=notifier,
        )


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` unchanged, or the current UTC time when ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _iso(moment: datetime) -> str:
    return moment.isoformat()


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings, the workbook and the ledger it holds.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer performs its
            upward search from the current working directory.

    Returns:
        RuntimeContext: Context whose store mirrors the workbook contents.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = data_manager.load_store(workbook)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Write the ledger back into the workbook and save it to disk.

    Raises:
        RuntimeError: If the context was built without a workbook or its
            store cannot be snapshotted.
        ValueError: If a record is too large for a workbook cell; the file
            on disk is left untouched.
    """
    if context.workbook is None or not isinstance(context.store, MemoryLedgerStore):
        raise RuntimeError("Context is not backed by a workbook")
    data_manager.dump_store(context.store, context.workbook)
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new context is returned; its store and notifier are rebuilt from the
    reloaded workbook.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    store = data_manager.load_store(workbook)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store, workbook=workbook)


def fetch_record(context: RuntimeContext, collection: Collection, record_id: str, *, label: str) -> Dict[str, Any]:
    """Read one record for a write path; absence is a hard error.

    Raises:
        NotFoundError: If no record exists under ``collection/record_id``.
    """
    if not record_id:
        raise ValidationError(f"A {label} id is required")
    raw = context.store.read(join_path(collection.value, record_id))
    if not isinstance(raw, Mapping):
        log.warning("%s lookup failed for id '%s'", label.capitalize(), record_id)
        raise NotFoundError(f"Unknown {label} id: {record_id}")
    return dict(raw)


def read_collection(context: RuntimeContext, collection: Collection, *, tolerate_denied: bool = False) -> Dict[str, Any]:
    """Return every record of a collection keyed by id.

    Dashboard-style listings pass ``tolerate_denied=True`` so a refused read
    degrades to an empty result; write paths let :class:`StoreAccessError`
    propagate.
    """
    try:
        raw = context.store.read(collection.value)
    except StoreAccessError:
        if not tolerate_denied:
            raise
        log.warning("Access denied reading '%s'; treating as empty", collection.value)
        return {}
    return dict(raw) if isinstance(raw, Mapping) else {}


def require_positive_quantity(quantity: Decimal, *, label: str = "Quantity") -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValidationError: If ``quantity`` is zero or negative.
    """
    if quantity <= Decimal("0"):
        log.error("%s validation failed: %s", label, quantity)
        raise ValidationError(f"{label} must be greater than zero")


def require_nonnegative_money(amount: Decimal, *, label: str = "Amount") -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValidationError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")


def require_text(value: Optional[str], *, label: str) -> str:
    """Return ``value`` stripped, rejecting missing or blank text."""

    if value is None or not str(value).strip():
        log.error("Missing required field: %s", label)
        raise ValidationError(f"{label} is required")
    return str(value).strip()
