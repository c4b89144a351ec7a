"""
Unmatched-record store.

Durable checkpoint between local matching, external decoding and
synchronization. A pattern row moves through three states:

- pending: ``matched = false, attempted = false``
- decoded: ``matched = true`` with the decoded attributes filled in
- undecodable: ``matched = false, attempted = true``

Every phase reads its input from here, so a later process can pick up where a
terminated one stopped as long as the owner committed.
"""
from collections.abc import Iterable

from sqlalchemy import delete, func, select, tuple_, update
from sqlalchemy.exc import SQLAlchemyError

from vehicle_reconciliation.models.database import (
    UnmatchedSoftwareTable,
    UnmatchedVehicleTable,
)
from vehicle_reconciliation.models.domain import DecodedVehicle, PatternCandidate
from vehicle_reconciliation.repositories.base import BaseRepository, insert_missing

Unmatched = UnmatchedVehicleTable


class UnmatchedRecordStore(BaseRepository):
    """Patterns and software awaiting external resolution"""

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    def enqueue(
        self, vin_pattern: str, vds_id: int, year_digit: str, expected_year: int
    ) -> bool:
        """Add one pattern unless it is already tracked"""
        return (
            self.enqueue_candidates(
                [
                    PatternCandidate(
                        vin_pattern=vin_pattern,
                        vds_id=vds_id,
                        year_digit=year_digit,
                        expected_year=expected_year,
                    )
                ]
            )
            == 1
        )

    def enqueue_candidates(self, candidates: Iterable[PatternCandidate]) -> int:
        try:
            return insert_missing(
                self.session,
                Unmatched,
                [
                    {**candidate.model_dump(), "matched": False, "attempted": False}
                    for candidate in candidates
                ],
                ["vin_pattern"],
            )
        except SQLAlchemyError as e:
            raise self._fail("enqueue unmatched vehicles", e) from e

    def list_pending(self) -> list[PatternCandidate]:
        """Patterns never sent to the decoder, in the order they were enqueued"""
        rows = self.session.execute(
            select(
                Unmatched.vin_pattern,
                Unmatched.vds_id,
                Unmatched.year_digit,
                Unmatched.expected_year,
            )
            .where(Unmatched.matched.is_(False), Unmatched.attempted.is_(False))
            .order_by(Unmatched.unmatched_id)
        )
        return [
            PatternCandidate(
                vin_pattern=pattern,
                vds_id=vds_id,
                year_digit=digit,
                expected_year=expected_year,
            )
            for pattern, vds_id, digit, expected_year in rows
        ]

    def mark_matched(self, decoded: DecodedVehicle) -> None:
        """Store decoded attributes in place and flag the pattern as matched"""
        try:
            self.session.execute(
                update(Unmatched)
                .where(Unmatched.vin_pattern == decoded.vin_pattern)
                .values(
                    matched=True,
                    attempted=True,
                    make_name=decoded.make_name,
                    model_name=decoded.model_name,
                    model_year=decoded.model_year,
                    engine_displacement=decoded.engine_displacement,
                    engine_type_name=decoded.engine_type_name,
                    vehicle_trim=decoded.vehicle_trim,
                    vehicle_series=decoded.vehicle_series,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise self._fail("mark pattern matched", e, vin_pattern=decoded.vin_pattern) from e

    def mark_attempted(self, vin_pattern: str) -> None:
        """Record that the decoder had nothing for a pattern"""
        try:
            self.session.execute(
                update(Unmatched)
                .where(Unmatched.vin_pattern == vin_pattern)
                .values(attempted=True)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise self._fail("mark pattern attempted", e, vin_pattern=vin_pattern) from e

    def list_matched(self) -> list[DecodedVehicle]:
        """Decoded patterns not yet folded into the identity table"""
        rows = self.session.execute(
            select(Unmatched)
            .where(Unmatched.matched.is_(True))
            .order_by(Unmatched.unmatched_id)
            .execution_options(populate_existing=True)
        ).scalars()
        return [
            DecodedVehicle(
                vin_pattern=row.vin_pattern,
                vds_id=row.vds_id,
                year_digit=row.year_digit,
                expected_year=row.expected_year,
                make_name=row.make_name,
                model_name=row.model_name,
                model_year=row.model_year,
                engine_displacement=row.engine_displacement,
                engine_type_name=row.engine_type_name,
                vehicle_trim=row.vehicle_trim,
                vehicle_series=row.vehicle_series,
            )
            for row in rows
        ]

    def purge_unresolved(self) -> int:
        """Drop patterns the decoder returned nothing for"""
        try:
            result = self.session.execute(
                delete(Unmatched).where(
                    Unmatched.matched.is_(False), Unmatched.attempted.is_(True)
                )
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise self._fail("purge unresolved patterns", e) from e

    def purge_resolved(self) -> int:
        """Drop decoded patterns once their data lives in the identity table"""
        try:
            result = self.session.execute(
                delete(Unmatched).where(Unmatched.matched.is_(True))
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise self._fail("purge resolved patterns", e) from e

    # ------------------------------------------------------------------
    # Software
    # ------------------------------------------------------------------

    def enqueue_software(self, vin_pattern: str, software_id: int) -> bool:
        return self.enqueue_software_many([(vin_pattern, software_id)]) == 1

    def enqueue_software_many(self, pairs: Iterable[tuple[str, int]]) -> int:
        try:
            return insert_missing(
                self.session,
                UnmatchedSoftwareTable,
                [
                    {"vin_pattern": pattern, "software_id": software_id}
                    for pattern, software_id in pairs
                ],
                ["vin_pattern", "software_id"],
            )
        except SQLAlchemyError as e:
            raise self._fail("enqueue unmatched software", e) from e

    def list_software(self) -> list[tuple[str, int]]:
        rows = self.session.execute(
            select(UnmatchedSoftwareTable.vin_pattern, UnmatchedSoftwareTable.software_id)
            .order_by(UnmatchedSoftwareTable.vin_pattern, UnmatchedSoftwareTable.software_id)
        )
        return [(pattern, software_id) for pattern, software_id in rows]

    def delete_software(self, pairs: Iterable[tuple[str, int]]) -> int:
        pairs = list(pairs)
        if not pairs:
            return 0
        try:
            deleted = 0
            for start in range(0, len(pairs), 500):
                chunk = pairs[start : start + 500]
                result = self.session.execute(
                    delete(UnmatchedSoftwareTable).where(
                        tuple_(
                            UnmatchedSoftwareTable.vin_pattern,
                            UnmatchedSoftwareTable.software_id,
                        ).in_(chunk)
                    )
                )
                deleted += result.rowcount
            return deleted
        except SQLAlchemyError as e:
            raise self._fail("delete resolved software", e) from e

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def pending_counts(self) -> dict[str, int]:
        """Row counts per store state"""
        vehicle_rows = self.session.execute(
            select(Unmatched.matched, Unmatched.attempted, func.count()).group_by(
                Unmatched.matched, Unmatched.attempted
            )
        )
        counts = {"pending": 0, "matched": 0, "unresolved": 0}
        for matched, attempted, count in vehicle_rows:
            if matched:
                counts["matched"] += count
            elif attempted:
                counts["unresolved"] += count
            else:
                counts["pending"] += count
        counts["software"] = self.session.execute(
            select(func.count()).select_from(UnmatchedSoftwareTable)
        ).scalar_one()
        return counts
