"""
Software/vehicle staging repository (``t_sv``).

Rows are staged once per run and progressively resolved: first to a
``software_id``, then to a ``vehicle_id`` by one of the local matchers.
"""
from collections.abc import Iterable, Mapping
from typing import Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from vehicle_reconciliation.models.database import (
    SoftwareTable,
    SoftwareVehicleStagingTable,
    VdsTable,
    VehicleIdentityTable,
    WmiTable,
)
from vehicle_reconciliation.models.domain import SpecRecord, VinRecord
from vehicle_reconciliation.repositories.base import BaseRepository
from vehicle_reconciliation.repositories.identity_repository import pattern_expression

Staged = SoftwareVehicleStagingTable


class StagingRepository(BaseRepository):
    """Access to staged software/vehicle rows"""

    def clear(self) -> None:
        try:
            self.session.execute(delete(Staged))
        except SQLAlchemyError as e:
            raise self._fail("clear software/vehicle staging", e) from e

    def stage(self, records: Iterable[Union[VinRecord, SpecRecord]]) -> int:
        rows = [record.model_dump() for record in records]
        if not rows:
            return 0
        try:
            self.session.add_all(Staged(**row) for row in rows)
            self.session.flush()
            return len(rows)
        except SQLAlchemyError as e:
            raise self._fail("stage software/vehicle rows", e) from e

    def resolve_software_ids(self) -> int:
        """Attach software ids by manufacturer software number"""
        software_id = (
            select(SoftwareTable.software_id)
            .where(SoftwareTable.mfr_software_no == Staged.mfr_software_no)
            .scalar_subquery()
        )
        try:
            self.session.execute(
                update(Staged)
                .where(Staged.software_id.is_(None))
                .values(software_id=software_id)
                .execution_options(synchronize_session=False)
            )
            return self.session.execute(
                select(func.count()).select_from(Staged).where(Staged.software_id.is_not(None))
            ).scalar_one()
        except SQLAlchemyError as e:
            raise self._fail("resolve staged software ids", e) from e

    def count_without_software(self) -> int:
        return self.session.execute(
            select(func.count()).select_from(Staged).where(Staged.software_id.is_(None))
        ).scalar_one()

    def match_vins(self) -> int:
        """
        Resolve staged VINs against known identity patterns.

        Each VIN is compared case-insensitively with
        ``wmi_code || vds_code || '_' || year_digit || '%'``.

        Returns:
            Number of staged rows that received a vehicle id
        """
        query = (
            select(Staged.staging_id, VehicleIdentityTable.vehicle_id)
            .select_from(VehicleIdentityTable)
            .join(VdsTable, VdsTable.vds_id == VehicleIdentityTable.vds_id)
            .join(WmiTable, WmiTable.wmi_id == VdsTable.wmi_id)
            .join(Staged, func.upper(Staged.vin).like(pattern_expression()))
            .where(Staged.record_type == "vin", Staged.vehicle_id.is_(None))
            .order_by(Staged.staging_id, VehicleIdentityTable.vehicle_id)
        )
        try:
            matches: dict[int, int] = {}
            for staging_id, vehicle_id in self.session.execute(query):
                matches.setdefault(staging_id, vehicle_id)
            self.assign_vehicles(matches)
            return len(matches)
        except SQLAlchemyError as e:
            raise self._fail("match staged VINs", e) from e

    def unmatched_vins(self) -> list[tuple[str, int]]:
        """(VIN, software id) for staged VIN rows still without a vehicle"""
        rows = self.session.execute(
            select(Staged.vin, Staged.software_id)
            .where(
                Staged.record_type == "vin",
                Staged.vehicle_id.is_(None),
                Staged.software_id.is_not(None),
            )
            .order_by(Staged.staging_id)
        )
        return [(vin, software_id) for vin, software_id in rows]

    def spec_rows(self) -> list[tuple[int, SpecRecord]]:
        """(staging id, record) for staged spec rows that have a software id"""
        rows = self.session.execute(
            select(Staged)
            .where(Staged.record_type == "spec", Staged.software_id.is_not(None))
            .order_by(Staged.staging_id)
            .execution_options(populate_existing=True)
        ).scalars()
        return [
            (
                row.staging_id,
                SpecRecord(
                    mfr_software_no=row.mfr_software_no,
                    make_name=row.make_name,
                    model_name=row.model_name,
                    model_year=row.model_year,
                    engine_displacement=row.engine_displacement,
                    engine_type=row.engine_type,
                    vehicle_trim=row.vehicle_trim,
                    vehicle_series=row.vehicle_series,
                ),
            )
            for row in rows
        ]

    def assign_vehicles(self, vehicle_ids: Mapping[int, int]) -> None:
        """Set vehicle ids by staging id"""
        if not vehicle_ids:
            return
        try:
            self.session.execute(
                update(Staged),
                [
                    {"staging_id": staging_id, "vehicle_id": vehicle_id}
                    for staging_id, vehicle_id in vehicle_ids.items()
                ],
            )
        except SQLAlchemyError as e:
            raise self._fail("assign staged vehicle ids", e) from e

    def resolved_pairs(self) -> list[tuple[int, int]]:
        """Distinct (vehicle id, software id) pairs ready for mapping"""
        rows = self.session.execute(
            select(Staged.vehicle_id, Staged.software_id)
            .where(Staged.vehicle_id.is_not(None), Staged.software_id.is_not(None))
            .distinct()
        )
        return [(vehicle_id, software_id) for vehicle_id, software_id in rows]
