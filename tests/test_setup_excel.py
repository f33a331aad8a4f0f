"""Unit tests for the master workbook setup script."""

from __future__ import annotations

from pathlib import Path

import openpyxl
import pytest

from mfg_procurement import data_manager, setup_excel
from mfg_procurement.constants import Collection, Role


def _write_config(directory: Path, body: str) -> Path:
    config_path = directory / "config.ini"
    config_path.write_text(body)
    return config_path


def test_create_master_workbook_builds_collection_sheets(tmp_path):
    destination = setup_excel.create_master_workbook(tmp_path / "nested" / "master.xlsx")

    workbook = openpyxl.load_workbook(destination)
    assert workbook.sheetnames == [collection.value for collection in Collection]
    header = [cell.value for cell in workbook[Collection.INVOICES.value][1]]
    assert tuple(header) == data_manager.SHEET_HEADERS
    assert workbook[Collection.INVOICES.value]["A1"].font.bold


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    destination = setup_excel.create_master_workbook(tmp_path / "master.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(destination)

    assert setup_excel.create_master_workbook(destination, overwrite=True) == destination


def test_create_master_workbook_seeds_role_subscribers(tmp_path):
    destination = setup_excel.create_master_workbook(
        tmp_path / "master.xlsx",
        role_subscribers={Role.QC_OFFICER: ["qc-1", "qc-2"]},
    )

    workbook = openpyxl.load_workbook(destination)
    records = dict(data_manager.iter_sheet_records(workbook, Collection.ROLES.value))
    assert records == {Role.QC_OFFICER.value: ["qc-1", "qc-2"]}


def test_load_settings_resolves_relative_path_and_roles(tmp_path):
    config_path = _write_config(
        tmp_path,
        "[System]\nDataFile = data/master.xlsx\n"
        "[Roles]\nAccounts = acc-1, acc-2\nHeadOfOperations = ho-1\n",
    )

    settings = setup_excel.load_settings(config_path)

    assert settings.data_file == (tmp_path / "data" / "master.xlsx").resolve()
    assert settings.role_subscribers == {
        Role.HEAD_OF_OPERATIONS: ["ho-1"],
        Role.ACCOUNTS: ["acc-1", "acc-2"],
    }


def test_load_settings_requires_data_file(tmp_path):
    config_path = _write_config(tmp_path, "[System]\nPlantName = Test\n")

    with pytest.raises(KeyError):
        setup_excel.load_settings(config_path)


def test_main_creates_workbook_and_reports_success(tmp_path, capsys):
    config_path = _write_config(tmp_path, "[System]\nDataFile = master.xlsx\n")

    assert setup_excel.main(["--config", str(config_path)]) == 0

    assert (tmp_path / "master.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out


def test_main_returns_error_code_for_existing_workbook(tmp_path, capsys):
    config_path = _write_config(tmp_path, "[System]\nDataFile = master.xlsx\n")
    setup_excel.main(["--config", str(config_path)])

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_main_returns_error_code_for_missing_config(tmp_path):
    assert setup_excel.main(["--config", str(tmp_path / "absent.ini")]) == 1
