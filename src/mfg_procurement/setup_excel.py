"""Utility for initializing the procurement master workbook.

The module doubles as a script (``python -m mfg_procurement.setup_excel``)
and as a library used by tests or other tooling. The workbook gets one
``RecordID | Payload`` sheet per ledger collection; the ``roles`` sheet can
be seeded with the users subscribed to each role's notifications.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from .constants import Collection, Role
from .data_manager import CONFIG_FILE_NAME, SHEET_HEADERS, encode_payload


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    role_subscribers: Mapping[Role, Sequence[str]] = field(default_factory=dict)


def _parse_roles(parser: configparser.ConfigParser) -> dict[Role, list[str]]:
    if not parser.has_section("Roles"):
        return {}
    roles: dict[Role, list[str]] = {}
    for role in Role:
        # Option lookup is case-insensitive.
        raw = parser.get("Roles", role.value, fallback="")
        user_ids = [user_id.strip() for user_id in raw.split(",") if user_id.strip()]
        if user_ids:
            roles[role] = user_ids
    return roles


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config file's
    directory. The optional ``[Roles]`` section maps role names to
    comma-separated user ids.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, role_subscribers=_parse_roles(parser))


def create_master_workbook(
    destination: Path,
    *,
    role_subscribers: Mapping[Role, Sequence[str]] | None = None,
    overwrite: bool = False,
) -> Path:
    """Create the procurement master workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for collection in Collection:
        worksheet = workbook.create_sheet(title=collection.value)
        for column_index, column_name in enumerate(SHEET_HEADERS, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    roles_sheet = workbook[Collection.ROLES.value]
    for role, user_ids in sorted((role_subscribers or {}).items(), key=lambda entry: Role(entry[0]).value):
        roles_sheet.append([Role(role).value, encode_payload(list(user_ids))])

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        role_subscribers=settings.role_subscribers,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the procurement master workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Procurement Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
