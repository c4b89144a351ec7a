"""
Phase 4: Identity Synchronization

Folds decoded patterns into the permanent tables:

1. Title-case decoded makes and diff-insert makes, models and engine types
2. Update or insert one vehicle identity per (vds_id, year_digit)
3. Recalibrate ``year_increment`` per VDS from decoded model years
4. Map waiting software to the identities its patterns now resolve to
5. Remove folded-in rows from the unmatched-record store

Everything happens in one transaction.
"""
from typing import Any, Optional

from sqlalchemy.orm import Session

from vehicle_reconciliation.config.settings import ApplicationSettings
from vehicle_reconciliation.models.domain import DecodedVehicle, PipelinePhase, RunRequest
from vehicle_reconciliation.pipeline.stages.base_stage import BasePipelineStage
from vehicle_reconciliation.repositories.base import transaction
from vehicle_reconciliation.repositories.catalog_repository import CatalogRepository
from vehicle_reconciliation.repositories.identity_repository import IdentityRepository
from vehicle_reconciliation.repositories.unmatched_repository import UnmatchedRecordStore
from vehicle_reconciliation.services.vin import PREFIX_LENGTH, year_cycle_for_prefix


def title_case_make(make_name: Optional[str]) -> Optional[str]:
    return make_name.title() if make_name is not None else None


def calibrate_year_increments(decoded: list[DecodedVehicle]) -> dict[int, int]:
    """
    First non-zero year adjustment per VDS, in store order.

    Later adjustments for a VDS already calibrated in this pass are ignored,
    as are records without a decoded model year.
    """
    increments: dict[int, int] = {}
    for vehicle in decoded:
        adjustment = vehicle.year_adjustment
        if adjustment is None or adjustment == 0 or vehicle.vds_id in increments:
            continue
        increments[vehicle.vds_id] = adjustment
    return increments


class IdentitySynchronizationStage(BasePipelineStage):
    """Merge decoded results into the catalog and the identity table"""

    def __init__(self, session: Session, settings: ApplicationSettings) -> None:
        super().__init__(PipelinePhase.SYNCHRONIZE, session, settings)
        self.catalog = CatalogRepository(session)
        self.identities = IdentityRepository(session)
        self.store = UnmatchedRecordStore(session)

    def _execute_stage(self, request: RunRequest) -> dict[str, Any]:
        with transaction(self.session, "synchronize"):
            decoded = self._attach_catalog_ids(self.store.list_matched())
            updated, inserted = self._write_identities(decoded)

            increments = calibrate_year_increments(decoded)
            self.catalog.update_year_increments(increments)
            if increments:
                self.logger.info("Adjusted year increments", vds_count=len(increments))

            software_linked, software_waiting = self._map_software()
            purged = self.store.purge_resolved()

        return {
            "decoded_records": len(decoded),
            "identities_updated": updated,
            "identities_inserted": inserted,
            "year_increments_adjusted": len(increments),
            "software_links_inserted": software_linked,
            "software_still_waiting": software_waiting,
            "patterns_folded": purged,
        }

    def _extract_warnings(self, stage_data: dict[str, Any]) -> list[str]:
        waiting = stage_data.get("software_still_waiting", 0)
        if waiting:
            return [f"{waiting} software rows still have no vehicle"]
        return []

    def _attach_catalog_ids(self, decoded: list[DecodedVehicle]) -> list[DecodedVehicle]:
        decoded = [
            vehicle.model_copy(update={"make_name": title_case_make(vehicle.make_name)})
            for vehicle in decoded
        ]

        make_ids = self.catalog.sync_makes(
            vehicle.make_name for vehicle in decoded if vehicle.make_name is not None
        )
        model_ids = self.catalog.sync_models(
            (make_ids[vehicle.make_name], vehicle.model_name)
            for vehicle in decoded
            if vehicle.make_name is not None and vehicle.model_name is not None
        )
        engine_type_ids = self.catalog.sync_engine_types(
            vehicle.engine_type_name for vehicle in decoded
        )

        attached = []
        for vehicle in decoded:
            make_id = make_ids.get(vehicle.make_name) if vehicle.make_name else None
            attached.append(
                vehicle.model_copy(
                    update={
                        "make_id": make_id,
                        "model_id": model_ids.get((make_id, vehicle.model_name)),
                        "engine_type_id": engine_type_ids.get(vehicle.engine_type_name),
                    }
                )
            )
        return attached

    def _write_identities(self, decoded: list[DecodedVehicle]) -> tuple[int, int]:
        """
        Update existing identities and insert new ones.

        Updates overwrite every attribute, nulling the absent ones. Inserts omit
        absent attributes so column defaults apply.
        """
        existing = self.identities.existing_pairs(vehicle.vds_id for vehicle in decoded)
        new_rows = []
        updated = 0

        for vehicle in decoded:
            values = {
                "model_id": vehicle.model_id,
                "engine_type_id": vehicle.engine_type_id,
                "engine_displacement": vehicle.engine_displacement,
                "vehicle_trim": vehicle.vehicle_trim,
                "vehicle_series": vehicle.vehicle_series,
            }
            key = (vehicle.vds_id, vehicle.year_digit)
            if key in existing:
                self.identities.update_identity(vehicle.vds_id, vehicle.year_digit, values)
                updated += 1
                continue

            row = {
                "vds_id": vehicle.vds_id,
                "year_digit": vehicle.year_digit,
                "year_cycle": year_cycle_for_prefix(vehicle.vin_pattern[:PREFIX_LENGTH]),
            }
            row.update({column: value for column, value in values.items() if value is not None})
            new_rows.append(row)
            existing.add(key)

        self.identities.insert_identities(new_rows)
        return updated, len(new_rows)

    def _map_software(self) -> tuple[int, int]:
        """Link waiting software whose pattern now resolves to an identity"""
        waiting = self.store.list_software()
        vehicle_ids = self.identities.vehicle_ids_for_patterns(
            pattern for pattern, _ in waiting
        )
        resolved = [
            (pattern, software_id)
            for pattern, software_id in waiting
            if pattern in vehicle_ids
        ]

        linked = self.identities.link_software(
            (vehicle_ids[pattern], software_id) for pattern, software_id in resolved
        )
        self.store.delete_software(resolved)
        return linked, len(waiting) - len(resolved)
