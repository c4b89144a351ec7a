"""
Inventory and software repository.

Hardware/software pairs are staged in ``t_hs`` and folded into the canonical
``inventory`` and ``software`` tables with set-based INSERT ... SELECT
statements that skip every natural key already present.
"""
from collections.abc import Iterable

from sqlalchemy import delete, exists, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from vehicle_reconciliation.models.database import (
    HardwareInterchangeTable,
    HardwareSoftwareStagingTable,
    InventoryTable,
    SoftwareTable,
)
from vehicle_reconciliation.models.domain import (
    HardwareInterchangeRow,
    HardwareSoftwareRow,
)
from vehicle_reconciliation.repositories.base import BaseRepository, insert_missing


class InventoryRepository(BaseRepository):
    """Canonical inventory/software tables and their staging table"""

    def clear_staging(self) -> None:
        try:
            self.session.execute(delete(HardwareSoftwareStagingTable))
        except SQLAlchemyError as e:
            raise self._fail("clear hardware/software staging", e) from e

    def stage_hardware_software(self, rows: Iterable[HardwareSoftwareRow]) -> int:
        """Stage pairs, ignoring duplicates"""
        try:
            return insert_missing(
                self.session,
                HardwareSoftwareStagingTable,
                [row.model_dump() for row in rows],
                ["inventory_no", "mfr_software_no"],
            )
        except SQLAlchemyError as e:
            raise self._fail("stage hardware/software rows", e) from e

    def reconcile_staged(self) -> tuple[int, int]:
        """
        Insert staged inventory and software numbers that are new.

        A software number staged under several inventory numbers is attached
        to the first inventory row only, since software numbers are unique.

        Returns:
            (inventory rows inserted, software rows inserted)
        """
        staging = HardwareSoftwareStagingTable
        try:
            inventory_insert = insert(InventoryTable.__table__).from_select(
                ["inventory_no"],
                select(staging.inventory_no).distinct().where(
                    ~exists().where(InventoryTable.inventory_no == staging.inventory_no)
                ),
            )
            inventory_count = self.session.execute(inventory_insert).rowcount

            software_insert = insert(SoftwareTable.__table__).from_select(
                ["inventory_id", "mfr_software_no"],
                select(func.min(InventoryTable.inventory_id), staging.mfr_software_no)
                .join(InventoryTable, InventoryTable.inventory_no == staging.inventory_no)
                .where(
                    ~exists().where(
                        SoftwareTable.mfr_software_no == staging.mfr_software_no
                    )
                )
                .group_by(staging.mfr_software_no),
            )
            software_count = self.session.execute(software_insert).rowcount

            self.logger.info(
                "Reconciled staged hardware/software",
                inventory_inserted=inventory_count,
                software_inserted=software_count,
            )
            return inventory_count, software_count
        except SQLAlchemyError as e:
            raise self._fail("reconcile staged hardware/software", e) from e

    def ensure_inventory(self, inventory_numbers: Iterable[str]) -> dict[str, int]:
        """Insert missing inventory numbers and return their ids"""
        numbers = sorted(set(inventory_numbers))
        try:
            insert_missing(
                self.session,
                InventoryTable,
                [{"inventory_no": number} for number in numbers],
                ["inventory_no"],
            )
            rows = self.session.execute(
                select(InventoryTable.inventory_no, InventoryTable.inventory_id).where(
                    InventoryTable.inventory_no.in_(numbers)
                )
            )
            return {number: inventory_id for number, inventory_id in rows}
        except SQLAlchemyError as e:
            raise self._fail("ensure inventory rows", e) from e

    def add_interchanges(self, rows: Iterable[HardwareInterchangeRow]) -> int:
        """Record directed hardware interchange pairs, creating inventory rows as needed"""
        rows = [row for row in rows if row.inventory_no != row.related_inventory_no]
        if not rows:
            return 0
        ids = self.ensure_inventory(
            [row.inventory_no for row in rows] + [row.related_inventory_no for row in rows]
        )
        try:
            return insert_missing(
                self.session,
                HardwareInterchangeTable,
                [
                    {
                        "inventory_id": ids[row.inventory_no],
                        "related_inventory_id": ids[row.related_inventory_no],
                    }
                    for row in rows
                ],
                ["inventory_id", "related_inventory_id"],
            )
        except SQLAlchemyError as e:
            raise self._fail("insert hardware interchanges", e) from e
