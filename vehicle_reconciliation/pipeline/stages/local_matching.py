"""
Phase 2: Local Matching

Resolves staged software/vehicle rows against the identities already in the
database.

VIN mode matches each VIN against every identity pattern. VINs that stay
unmatched have their prefix expanded into candidate patterns, which are handed
to the unmatched-record store for external decoding.

Spec mode compares the full specification tuple. Specifications are
self-describing, so unmatched tuples become new identities immediately.
"""
from typing import Any

from sqlalchemy.orm import Session

from vehicle_reconciliation.config.settings import ApplicationSettings
from vehicle_reconciliation.core.exceptions import InputError
from vehicle_reconciliation.models.domain import (
    PatternCandidate,
    PipelinePhase,
    RunRequest,
    SpecRecord,
    VehicleInfoMode,
)
from vehicle_reconciliation.pipeline.stages.base_stage import BasePipelineStage
from vehicle_reconciliation.repositories.base import transaction
from vehicle_reconciliation.repositories.catalog_repository import CatalogRepository
from vehicle_reconciliation.repositories.identity_repository import IdentityRepository
from vehicle_reconciliation.repositories.staging_repository import StagingRepository
from vehicle_reconciliation.repositories.unmatched_repository import UnmatchedRecordStore
from vehicle_reconciliation.services.pattern_deriver import PatternDeriver
from vehicle_reconciliation.services.vin import PREFIX_LENGTH, vin_pattern_for, year_digit_for


class LocalMatchingStage(BasePipelineStage):
    """Match staged rows to existing vehicle identities"""

    def __init__(self, session: Session, settings: ApplicationSettings) -> None:
        super().__init__(PipelinePhase.LOCAL_MATCH, session, settings)
        self.catalog = CatalogRepository(session)
        self.identities = IdentityRepository(session)
        self.staging = StagingRepository(session)
        self.store = UnmatchedRecordStore(session)
        self.deriver = PatternDeriver(self.catalog)

    def _execute_stage(self, request: RunRequest) -> dict[str, Any]:
        with transaction(self.session, "local_match"):
            if request.mode == VehicleInfoMode.VIN:
                stage_data = self._match_vins()
            elif request.mode == VehicleInfoMode.SPEC:
                stage_data = self._match_specs()
            else:
                raise InputError(
                    "Local matching needs a vehicle info mode", phase=self.phase.value
                )

            stage_data["software_links_inserted"] = self.identities.link_software(
                self.staging.resolved_pairs()
            )
        return stage_data

    def _extract_warnings(self, stage_data: dict[str, Any]) -> list[str]:
        dropped = stage_data.get("records_without_software", 0)
        if dropped:
            return [f"{dropped} staged rows skipped: software number not on file"]
        return []

    # ------------------------------------------------------------------
    # VIN mode
    # ------------------------------------------------------------------

    def _match_vins(self) -> dict[str, Any]:
        matched = self.staging.match_vins()
        without_software = self.staging.count_without_software()
        if without_software:
            self.logger.debug("Skipping staged rows without software", count=without_software)

        unmatched = self.staging.unmatched_vins()
        prefixes = sorted({vin[:PREFIX_LENGTH] for vin, _ in unmatched})

        candidates: list[PatternCandidate] = []
        for prefix in prefixes:
            candidates.extend(self.deriver.derive(prefix))

        known = self.identities.existing_pairs(candidate.vds_id for candidate in candidates)
        candidates = [
            candidate
            for candidate in candidates
            if (candidate.vds_id, candidate.year_digit) not in known
        ]

        patterns_enqueued = self.store.enqueue_candidates(candidates)
        software_enqueued = self.store.enqueue_software_many(
            (vin_pattern_for(vin), software_id) for vin, software_id in unmatched
        )

        self.logger.info(
            "VIN matching finished",
            matched=matched,
            unmatched=len(unmatched),
            prefixes=len(prefixes),
        )
        return {
            "records_matched": matched,
            "records_unmatched": len(unmatched),
            "records_without_software": without_software,
            "prefixes_derived": len(prefixes),
            "patterns_enqueued": patterns_enqueued,
            "software_enqueued": software_enqueued,
        }

    # ------------------------------------------------------------------
    # Spec mode
    # ------------------------------------------------------------------

    def _match_specs(self) -> dict[str, Any]:
        rows = self.staging.spec_rows()
        without_software = self.staging.count_without_software()
        index = self.identities.spec_index()

        missing: dict[tuple, SpecRecord] = {}
        for _, record in rows:
            if record.spec_key not in index:
                missing.setdefault(record.spec_key, record)

        already_known = sum(1 for _, record in rows if record.spec_key not in missing)
        if missing:
            index.update(self._create_identities(list(missing.values())))

        self.staging.assign_vehicles(
            {staging_id: index[record.spec_key] for staging_id, record in rows}
        )

        self.logger.info(
            "Spec matching finished",
            records=len(rows),
            identities_created=len(missing),
        )
        return {
            "records_matched": already_known,
            "records_without_software": without_software,
            "identities_created": len(missing),
        }

    def _create_identities(self, records: list[SpecRecord]) -> dict[tuple, int]:
        """Catalog and insert one identity per distinct specification"""
        make_ids = self.catalog.sync_makes(record.make_name for record in records)
        model_ids = self.catalog.sync_models(
            (make_ids[record.make_name], record.model_name) for record in records
        )
        engine_type_ids = self.catalog.sync_engine_types(
            record.engine_type for record in records
        )

        rows = []
        for record in records:
            year_digit, year_cycle = year_digit_for(record.model_year)
            row = {
                "vds_id": None,
                "year_digit": year_digit,
                "year_cycle": year_cycle,
                "model_id": model_ids[(make_ids[record.make_name], record.model_name)],
                "engine_displacement": record.engine_displacement,
                "vehicle_trim": record.vehicle_trim,
                "vehicle_series": record.vehicle_series,
            }
            if record.engine_type is not None:
                row["engine_type_id"] = engine_type_ids[record.engine_type]
            rows.append(row)

        vehicle_ids = self.identities.insert_identities(rows)
        return {record.spec_key: vehicle_id for record, vehicle_id in zip(records, vehicle_ids)}
