"""Shared pytest fixtures and utilities for procurement engine tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from mfg_procurement import (  # noqa: E402
    allocation,
    constants,
    core_logic,
    data_manager,
    inventory,
    requisitions,
    suppliers,
)
from mfg_procurement.ledger_store import MemoryLedgerStore  # noqa: E402
from mfg_procurement.notifications import RoleDirectory  # noqa: E402
from mfg_procurement.records import RequisitionItem  # noqa: E402
from mfg_procurement.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_MOMENT = datetime(2025, 3, 14, 9, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "PlantName = {plant_name}\n"
    "SchemaVersion = {schema_version}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    plant_name: str


@dataclass(frozen=True)
class ApprovedRequest:
    """An MD-approved requisition with its first preparation row."""

    requisition_id: str
    preparation_id: str
    material_id: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Workbook and configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "procurement_master.xlsx",
        role_subscribers=None,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, role_subscribers=role_subscribers, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        plant_name: str = "Test Plant",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        extra: str = "",
        role_subscribers=None,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name, role_subscribers=role_subscribers)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                plant_name=plant_name,
                schema_version=schema_version,
            )
            + extra
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            plant_name=plant_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# In-memory engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "procurement_master.xlsx",
        plant_name="Test Plant",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, store: MemoryLedgerStore) -> core_logic.RuntimeContext:
    """Assemble a workbook-less runtime context over a fresh store."""

    return core_logic.RuntimeContext.in_memory(settings, store=store)


@pytest.fixture
def moment() -> datetime:
    return FIXED_MOMENT


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


@pytest.fixture
def role_users(store: MemoryLedgerStore) -> dict[constants.Role, str]:
    """Subscribe one user to every role topic."""

    directory = RoleDirectory(store)
    users = {
        constants.Role.WAREHOUSE_STAFF: "wh-1",
        constants.Role.HEAD_OF_OPERATIONS: "ho-1",
        constants.Role.MANAGING_DIRECTOR: "md-1",
        constants.Role.QC_OFFICER: "qc-1",
        constants.Role.ACCOUNTS: "acc-1",
    }
    for role, user_id in users.items():
        directory.subscribe_role(role, user_id)
    return users


@pytest.fixture
def master_data(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Register the material and the two suppliers used across scenarios."""

    inventory.register_material(
        context,
        "M-SUGAR",
        "Sugar",
        unit="kg",
        reorder_level=Decimal("50"),
    )
    suppliers.add_supplier(context, "Supplier X", supplier_id="SUP-X")
    suppliers.add_supplier(context, "Supplier Y", supplier_id="SUP-Y")
    return context


@pytest.fixture
def approve_request(master_data: core_logic.RuntimeContext, moment: datetime) -> Callable[..., ApprovedRequest]:
    """Factory taking a requisition for ``M-SUGAR`` through both approvals."""

    def _approve(quantity: Decimal = Decimal("100")) -> ApprovedRequest:
        context = master_data
        requisition = requisitions.submit(
            context,
            requisitions.RequisitionCommand(
                items=[RequisitionItem("M-SUGAR", "Sugar", quantity, "kg")],
                requested_by="wh-1",
                timestamp=moment,
            ),
        )
        requisitions.ho_approve(context, requisition.requisition_id, approved_by="ho-1", timestamp=moment)
        requisitions.md_approve(context, requisition.requisition_id, approved_by="md-1", timestamp=moment)
        preparation = allocation.list_preparations(context, request_id=requisition.requisition_id)[0]
        return ApprovedRequest(
            requisition_id=requisition.requisition_id,
            preparation_id=preparation.preparation_id,
            material_id="M-SUGAR",
        )

    return _approve


@pytest.fixture
def issued_order(approve_request, master_data, moment):
    """A purchase order for 100 kg of sugar at 2.50 from ``SUP-X``."""

    request = approve_request(Decimal("100"))
    result = allocation.allocate(
        master_data,
        request.preparation_id,
        [allocation.AllocationLine("SUP-X", Decimal("100"), Decimal("2.50"), "2025-03-20")],
        timestamp=moment,
    )
    return result.purchase_orders[0]
