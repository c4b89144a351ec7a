"""
Vehicle identity repository.

Identities are unique per (vds_id, year_digit). Writers decide between update
and insert with :meth:`IdentityRepository.existing_pairs`, never by catching
constraint violations.
"""
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from vehicle_reconciliation.models.database import (
    MakeTable,
    ModelTable,
    VdsTable,
    VehicleIdentityTable,
    VehicleSoftwareMapTable,
    WmiTable,
    YearDigitTable,
)
from vehicle_reconciliation.models.domain import parse_displacement
from vehicle_reconciliation.repositories.base import BaseRepository, insert_missing
from vehicle_reconciliation.services.vin import absolute_year


def pattern_expression():
    """SQL expression for an identity's VIN pattern (needs l_wmi and l_vds joined)"""
    return (
        WmiTable.wmi_code
        + VdsTable.vds_code
        + "_"
        + VehicleIdentityTable.year_digit
        + "%"
    )


class IdentityRepository(BaseRepository):
    """Vehicle identities and the vehicle/software association"""

    def existing_pairs(self, vds_ids: Iterable[int]) -> set[tuple[int, str]]:
        """(vds_id, year_digit) pairs that already have an identity"""
        ids = list(set(vds_ids))
        if not ids:
            return set()
        rows = self.session.execute(
            select(VehicleIdentityTable.vds_id, VehicleIdentityTable.year_digit).where(
                VehicleIdentityTable.vds_id.in_(ids)
            )
        )
        return {(vds_id, digit) for vds_id, digit in rows}

    def update_identity(self, vds_id: int, year_digit: str, values: Mapping[str, Any]) -> None:
        try:
            self.session.execute(
                update(VehicleIdentityTable)
                .where(
                    VehicleIdentityTable.vds_id == vds_id,
                    VehicleIdentityTable.year_digit == year_digit,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise self._fail(
                "update vehicle identity", e, vds_id=vds_id, year_digit=year_digit
            ) from e

    def insert_identities(self, rows: Iterable[Mapping[str, Any]]) -> list[int]:
        """
        Insert identities; columns missing from a row keep their defaults.

        Returns:
            The new vehicle ids, in row order
        """
        identities = [VehicleIdentityTable(**row) for row in rows]
        if not identities:
            return []
        try:
            self.session.add_all(identities)
            self.session.flush()
            return [identity.vehicle_id for identity in identities]
        except SQLAlchemyError as e:
            raise self._fail("insert vehicle identities", e, count=len(identities)) from e

    def spec_index(self) -> dict[tuple, int]:
        """
        Every identity with a model, keyed like ``SpecRecord.spec_key``.

        The absolute model year is recomputed from the year digit, the cycle
        and the VDS calibration. Keys are plain tuples, so NULL series or trim
        compare equal to NULL.
        """
        query = (
            select(
                VehicleIdentityTable.vehicle_id,
                MakeTable.make_name,
                ModelTable.model_name,
                YearDigitTable.sequence,
                VehicleIdentityTable.year_cycle,
                func.coalesce(VdsTable.year_increment, 0),
                VehicleIdentityTable.engine_displacement,
                VehicleIdentityTable.vehicle_series,
                VehicleIdentityTable.vehicle_trim,
            )
            .join(ModelTable, ModelTable.model_id == VehicleIdentityTable.model_id)
            .join(MakeTable, MakeTable.make_id == ModelTable.make_id)
            .join(
                YearDigitTable,
                YearDigitTable.year_digit == VehicleIdentityTable.year_digit,
            )
            .outerjoin(VdsTable, VdsTable.vds_id == VehicleIdentityTable.vds_id)
            .order_by(VehicleIdentityTable.vehicle_id)
        )
        index: dict[tuple, int] = {}
        for (
            vehicle_id,
            make_name,
            model_name,
            sequence,
            year_cycle,
            year_increment,
            displacement,
            series,
            trim,
        ) in self.session.execute(query):
            key = (
                make_name,
                model_name,
                absolute_year(sequence, year_cycle, year_increment),
                parse_displacement(displacement),
                series,
                trim,
            )
            index.setdefault(key, vehicle_id)
        return index

    def vehicle_ids_for_patterns(self, patterns: Iterable[str]) -> dict[str, int]:
        """Resolve VIN patterns to the identity they describe"""
        patterns = list(set(patterns))
        if not patterns:
            return {}
        expression = pattern_expression()
        query = (
            select(expression, VehicleIdentityTable.vehicle_id)
            .select_from(VehicleIdentityTable)
            .join(VdsTable, VdsTable.vds_id == VehicleIdentityTable.vds_id)
            .join(WmiTable, WmiTable.wmi_id == VdsTable.wmi_id)
            .where(expression.in_(patterns))
        )
        return {pattern: vehicle_id for pattern, vehicle_id in self.session.execute(query)}

    def link_software(self, pairs: Iterable[tuple[int, int]]) -> int:
        """Insert (vehicle_id, software_id) associations that are missing"""
        try:
            inserted = insert_missing(
                self.session,
                VehicleSoftwareMapTable,
                [
                    {"vehicle_id": vehicle_id, "software_id": software_id}
                    for vehicle_id, software_id in pairs
                ],
                ["vehicle_id", "software_id"],
            )
            if inserted:
                self.logger.info("Linked software to vehicles", count=inserted)
            return inserted
        except SQLAlchemyError as e:
            raise self._fail("link software to vehicles", e) from e
