"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from mfg_procurement import constants, data_manager
from mfg_procurement.ledger_store import MemoryLedgerStore
from mfg_procurement.notifications import StoreNotifier


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=procurement_master.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_read_config_loads_sections(config_file: Path):
    parser = data_manager.read_config(config_file)
    assert parser.get("System", "PlantName") == "Test Plant"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.plant_name == "Test Plant"


def test_parse_settings_defaults_invoicing_section(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=x.xlsx\nPlantName=P\nSchemaVersion=1.0.0\n")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.tax_rate == Decimal("0.10")
    assert settings.discount_rate == Decimal("0")
    assert settings.payment_terms_days == 30
    assert settings.currency == "LKR"


def test_parse_settings_reads_invoicing_overrides(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=x.xlsx\nPlantName=P\nSchemaVersion=1.0.0\n"
        "[Invoicing]\nTaxRate=0.15\nDiscountRate=0.02\nPaymentTermsDays=45\nCurrency=USD\n"
    )

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.tax_rate == Decimal("0.15")
    assert settings.discount_rate == Decimal("0.02")
    assert settings.payment_terms_days == 45
    assert settings.currency == "USD"


def test_parse_settings_rejects_bad_rate(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=x.xlsx\nPlantName=P\nSchemaVersion=1.0.0\n[Invoicing]\nTaxRate=ten\n")

    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(workbook_factory):
    workbook = data_manager.open_workbook(workbook_factory())
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_master_workbook_has_one_sheet_per_collection(workbook_factory):
    workbook = openpyxl.load_workbook(workbook_factory())

    assert set(workbook.sheetnames) == {collection.value for collection in constants.Collection}
    for name in workbook.sheetnames:
        header = tuple(cell.value for cell in workbook[name][1])
        assert header == data_manager.SHEET_HEADERS


def test_load_store_reads_seeded_roles(workbook_factory):
    path = workbook_factory(role_subscribers={constants.Role.ACCOUNTS: ["acc-1", "acc-2"]})

    store = data_manager.load_store(data_manager.open_workbook(path))

    assert store.read("roles/Accounts") == ["acc-1", "acc-2"]


def test_dump_and_load_round_trip_preserves_tree(workbook_factory, tmp_path):
    path = workbook_factory()
    workbook = data_manager.open_workbook(path)
    store = MemoryLedgerStore()
    store.write("suppliers/S1", {"name": "Acme", "averageGradePoints": "3.5", "totalDeliveries": 2})
    store.write("counters/GRN2025", 7)

    data_manager.dump_store(store, workbook)
    destination = tmp_path / "saved" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination)
    reloaded = data_manager.load_store(data_manager.open_workbook(destination))

    assert reloaded.snapshot() == store.snapshot()


def test_dump_store_replaces_previous_rows(workbook_factory):
    workbook = data_manager.open_workbook(workbook_factory())
    store = MemoryLedgerStore()
    store.write("suppliers/S1", {"name": "Acme"})
    data_manager.dump_store(store, workbook)
    store.write("suppliers/S1", None)
    store.write("suppliers/S2", {"name": "Beta"})

    data_manager.dump_store(store, workbook)

    records = list(data_manager.iter_sheet_records(workbook, "suppliers"))
    assert records == [("S2", {"name": "Beta"})]


def test_load_store_ignores_unknown_sheets(workbook_factory):
    workbook = data_manager.open_workbook(workbook_factory())
    extra = workbook.create_sheet("Notes")
    extra.append(["anything", "goes"])

    store = data_manager.load_store(workbook)

    assert store.read("Notes") is None


def test_iter_sheet_records_rejects_bad_header():
    workbook = openpyxl.Workbook()
    workbook.active.title = "suppliers"
    workbook.active.append(["ID", "Data"])

    with pytest.raises(KeyError):
        list(data_manager.iter_sheet_records(workbook, "suppliers"))


def test_encode_payload_writes_decimals_as_strings():
    assert data_manager.encode_payload({"amount": Decimal("1.50")}) == '{"amount":"1.50"}'
    assert data_manager.decode_payload('{"amount":"1.50"}') == {"amount": "1.50"}
    assert data_manager.decode_payload(None) is None


def test_large_inbox_is_saved_one_row_per_notification(workbook_factory, tmp_path):
    path = workbook_factory(role_subscribers={constants.Role.HEAD_OF_OPERATIONS: ["ho-1"]})
    workbook = data_manager.open_workbook(path)
    store = data_manager.load_store(workbook)
    notifier = StoreNotifier(store)
    for index in range(250):
        notifier.notify(
            constants.Role.HEAD_OF_OPERATIONS,
            {"type": "material_request", "message": f"New material request #{index} awaits approval", "data": {}},
        )

    data_manager.dump_store(store, workbook)
    destination = tmp_path / "inbox.xlsx"
    data_manager.save_workbook(workbook, destination)
    reopened = data_manager.open_workbook(destination)
    reloaded = data_manager.load_store(reopened)

    assert reloaded.snapshot() == store.snapshot()
    assert len(reloaded.read("notifications/ho-1")) == 250
    record_ids = [record_id for record_id, _ in data_manager.iter_sheet_records(reopened, "notifications")]
    assert len(record_ids) == 250
    assert all(record_id.startswith("ho-1/") for record_id in record_ids)


def test_dump_store_refuses_records_larger_than_a_cell(workbook_factory):
    workbook = data_manager.open_workbook(workbook_factory())
    store = MemoryLedgerStore()
    store.write("suppliers/S1", {"name": "Acme"})
    data_manager.dump_store(store, workbook)
    store.write("suppliers/S2", {"notes": "x" * data_manager.MAX_PAYLOAD_CHARS})

    with pytest.raises(ValueError, match="too large"):
        data_manager.dump_store(store, workbook)

    records = list(data_manager.iter_sheet_records(workbook, "suppliers"))
    assert records == [("S1", {"name": "Acme"})]
