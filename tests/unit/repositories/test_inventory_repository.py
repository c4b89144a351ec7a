"""
Unit tests for the inventory/software repository.
"""
import warnings

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SAWarning

from vehicle_reconciliation.models.database import (
    HardwareInterchangeTable,
    InventoryTable,
    SoftwareTable,
)
from vehicle_reconciliation.models.domain import HardwareInterchangeRow, HardwareSoftwareRow
from vehicle_reconciliation.repositories.inventory_repository import InventoryRepository


@pytest.fixture
def inventory(session):
    return InventoryRepository(session)


def pairs(*values):
    return [HardwareSoftwareRow(inventory_no=inv, mfr_software_no=sw) for inv, sw in values]


def count(session, table):
    return session.execute(select(func.count()).select_from(table)).scalar_one()


class TestReconcileStaged:
    """Test staging and set-based reconciliation"""

    def test_inserts_inventory_and_software(self, session, inventory):
        inventory.stage_hardware_software(pairs(("INV-1", "SW-1"), ("INV-1", "SW-2"), ("INV-2", "SW-3")))

        assert inventory.reconcile_staged() == (2, 3)
        software = session.execute(
            select(SoftwareTable.mfr_software_no, InventoryTable.inventory_no).join(
                InventoryTable, InventoryTable.inventory_id == SoftwareTable.inventory_id
            )
        ).all()
        assert sorted(software) == [("SW-1", "INV-1"), ("SW-2", "INV-1"), ("SW-3", "INV-2")]

    def test_reconcile_emits_no_sqlalchemy_warnings(self, inventory):
        inventory.stage_hardware_software(pairs(("INV-1", "SW-1"), ("INV-1", "SW-2")))

        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            assert inventory.reconcile_staged() == (1, 2)

    def test_duplicate_staging_rows_ignored(self, inventory):
        assert inventory.stage_hardware_software(pairs(("INV-1", "SW-1"), ("INV-1", "SW-1"))) == 1

    def test_rerun_inserts_nothing(self, inventory):
        inventory.stage_hardware_software(pairs(("INV-1", "SW-1")))
        inventory.reconcile_staged()
        inventory.clear_staging()
        inventory.stage_hardware_software(pairs(("INV-1", "SW-1")))

        assert inventory.reconcile_staged() == (0, 0)

    def test_existing_rows_never_mutated(self, session, inventory):
        inventory.stage_hardware_software(pairs(("INV-1", "SW-1")))
        inventory.reconcile_staged()
        inventory.clear_staging()

        inventory.stage_hardware_software(pairs(("INV-2", "SW-1")))
        assert inventory.reconcile_staged() == (1, 0)

        software = session.execute(select(SoftwareTable)).scalar_one()
        assert session.get(InventoryTable, software.inventory_id).inventory_no == "INV-1"

    def test_software_under_two_inventories_inserted_once(self, session, inventory):
        inventory.stage_hardware_software(pairs(("INV-1", "SW-1"), ("INV-2", "SW-1")))

        assert inventory.reconcile_staged() == (2, 1)
        assert count(session, SoftwareTable) == 1


class TestInterchanges:
    """Test hardware interchange pairs"""

    def test_creates_inventory_and_pair(self, session, inventory):
        rows = [HardwareInterchangeRow(inventory_no="INV-1", related_inventory_no="INV-2")]

        assert inventory.add_interchanges(rows) == 1
        assert count(session, InventoryTable) == 2
        assert inventory.add_interchanges(rows) == 0

    def test_pairs_are_directed(self, session, inventory):
        inventory.add_interchanges(
            [
                HardwareInterchangeRow(inventory_no="INV-1", related_inventory_no="INV-2"),
                HardwareInterchangeRow(inventory_no="INV-2", related_inventory_no="INV-1"),
            ]
        )

        assert count(session, HardwareInterchangeTable) == 2

    def test_self_pairs_skipped(self, inventory):
        rows = [HardwareInterchangeRow(inventory_no="INV-1", related_inventory_no="INV-1")]

        assert inventory.add_interchanges(rows) == 0
