"""Data access layer for the procurement engine.

This module owns everything that touches the filesystem. Business rules
live in the workflow modules and only ever talk to a
:class:`~mfg_procurement.ledger_store.LedgerStore`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Store persistence: loading the ledger tree from the workbook sheets and
   writing it back, one sheet per top-level collection.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import Collection
from .ledger_store import MemoryLedgerStore, join_path, split_path


CONFIG_FILE_NAME = "config.ini"
RECORD_ID_HEADER = "RecordID"
PAYLOAD_HEADER = "Payload"
SHEET_HEADERS = (RECORD_ID_HEADER, PAYLOAD_HEADER)
# Excel caps cell text at this length and openpyxl truncates longer strings.
MAX_PAYLOAD_CHARS = 32_767
# Collections whose records sit below a grouping key, e.g. notifications/<userId>/<id>.
RECORD_DEPTH = {Collection.NOTIFICATIONS.value: 2}

DEFAULT_TAX_RATE = Decimal("0.10")
DEFAULT_DISCOUNT_RATE = Decimal("0")
DEFAULT_PAYMENT_TERMS_DAYS = 30
DEFAULT_CURRENCY = "LKR"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    plant_name: str
    schema_version: str
    tax_rate: Decimal = DEFAULT_TAX_RATE
    discount_rate: Decimal = DEFAULT_DISCOUNT_RATE
    payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS
    currency: str = DEFAULT_CURRENCY


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory looking for ``CONFIG_FILE_NAME``; the first
    match on disk wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of
            performing the upward search.

    Returns:
        Path: The path provided by the caller or the discovered file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of individual entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion
            and resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _parse_decimal(parser: configparser.ConfigParser, option: str, default: Decimal) -> Decimal:
    raw = parser.get("Invoicing", option, fallback=None)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid decimal for Invoicing.{option}: {raw!r}") from exc


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The ``[Invoicing]`` section is
    optional and falls back to a 10% tax rate, no discount and net 30 days.
    Relative ``DataFile`` entries are anchored to ``base_path`` (or the
    current working directory) and resolved to an absolute path.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an invoicing rate or term is not numeric.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        plant_name = parser.get("System", "PlantName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    tax_rate = _parse_decimal(parser, "TaxRate", DEFAULT_TAX_RATE)
    discount_rate = _parse_decimal(parser, "DiscountRate", DEFAULT_DISCOUNT_RATE)
    payment_terms_days = parser.getint("Invoicing", "PaymentTermsDays", fallback=DEFAULT_PAYMENT_TERMS_DAYS)
    currency = parser.get("Invoicing", "Currency", fallback=DEFAULT_CURRENCY)

    return ConfigSettings(
        data_file=data_file_path,
        plant_name=plant_name,
        schema_version=schema_version,
        tax_rate=tax_rate,
        discount_rate=discount_rate,
        payment_terms_days=payment_terms_days,
        currency=currency,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion
            and resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def encode_payload(value: Any) -> str:
    """Serialize a record node to the JSON text stored in a ``Payload`` cell.

    Decimals are written as strings; the record deserializers coerce them
    back on read.
    """

    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


def decode_payload(raw: object) -> Any:
    """Parse a ``Payload`` cell back into Python values."""

    if raw is None or raw == "":
        return None
    return json.loads(str(raw))


def iter_sheet_records(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[str, Any]]:
    """Yield ``(record_id, payload)`` pairs from one collection sheet.

    Header and fully empty rows are skipped.

    Raises:
        KeyError: If the sheet header does not match ``SHEET_HEADERS``.
    """

    sheet = workbook[sheet_name]
    header = tuple(cell.value for cell in sheet[1])[: len(SHEET_HEADERS)]
    if header != SHEET_HEADERS:
        raise KeyError(f"Unexpected header in sheet '{sheet_name}': {header}")
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        record_id, payload = raw[0], raw[1] if len(raw) > 1 else None
        yield str(record_id), decode_payload(payload)


def ensure_collection_sheet(workbook: Workbook, sheet_name: str) -> None:
    """Create a collection sheet with its header row when it is missing."""

    if sheet_name in workbook.sheetnames:
        return
    sheet = workbook.create_sheet(title=sheet_name)
    sheet.append(list(SHEET_HEADERS))


def load_store(workbook: Workbook) -> MemoryLedgerStore:
    """Build a :class:`MemoryLedgerStore` from every collection sheet.

    Sheets that are not named after a :class:`Collection` are ignored so the
    workbook may carry extra, human-maintained tabs.
    """

    known = {collection.value for collection in Collection}
    tree: Dict[str, Any] = {}
    for sheet_name in workbook.sheetnames:
        if sheet_name not in known:
            continue
        records: Dict[str, Any] = {}
        for record_id, payload in iter_sheet_records(workbook, sheet_name):
            *groups, leaf = split_path(record_id)
            node = records
            for group in groups:
                node = node.setdefault(group, {})
            node[leaf] = payload
        if records:
            tree[sheet_name] = records
    log.debug("Loaded %d collections from workbook", len(tree))
    return MemoryLedgerStore(tree)


def flatten_records(records: Dict[str, Any], depth: int) -> Iterable[Tuple[str, Any]]:
    """Yield ``(record_id, payload)`` pairs, joining grouping keys with ``/``."""

    for key, value in records.items():
        if depth > 1 and isinstance(value, dict):
            for child_id, payload in flatten_records(value, depth - 1):
                yield join_path(key, child_id), payload
        else:
            yield key, value


def dump_store(store: MemoryLedgerStore, workbook: Workbook) -> None:
    """Rewrite every collection sheet from the current store contents.

    Each collection sheet is cleared below its header and repopulated in
    record-id order so the workbook mirrors the store exactly. Grouped
    collections get one row per record, keyed ``<group>/<recordId>``.

    Raises:
        ValueError: If a record encodes to more than ``MAX_PAYLOAD_CHARS``
            characters. Nothing is written in that case.
    """

    tree = store.snapshot()
    rows: Dict[str, list] = {}
    for collection in Collection:
        depth = RECORD_DEPTH.get(collection.value, 1)
        encoded = []
        for record_id, payload in flatten_records(tree.get(collection.value) or {}, depth):
            text = encode_payload(payload)
            if len(text) > MAX_PAYLOAD_CHARS:
                log.error("Record '%s/%s' encodes to %d characters", collection.value, record_id, len(text))
                raise ValueError(
                    f"Record '{collection.value}/{record_id}' is too large for a workbook cell "
                    f"({len(text)} > {MAX_PAYLOAD_CHARS} characters)"
                )
            encoded.append((record_id, text))
        rows[collection.value] = sorted(encoded)

    for collection in Collection:
        ensure_collection_sheet(workbook, collection.value)
        sheet = workbook[collection.value]
        if sheet.max_row > 1:
            sheet.delete_rows(2, sheet.max_row - 1)
        # Rows are addressed explicitly; append() would resume below the deleted rows.
        for row_index, (record_id, text) in enumerate(rows[collection.value], start=2):
            sheet.cell(row=row_index, column=1, value=record_id)
            sheet.cell(row=row_index, column=2, value=text)
    log.debug("Dumped %d collections into workbook", len(tree))
